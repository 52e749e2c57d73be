"""
Recall - Trigger Classifier
============================
Decides, per inbound message, whether the chat should consult memory.

Pure keyword and pattern matching with no I/O, so it can run on every
message.  False positives only cost an extra retrieval; false negatives
only cost recall.

Usage:
    from recall.src.core.trigger_classifier import should_retrieve
    if should_retrieve("what is my favorite animal?"):
        ...
"""

from __future__ import annotations

import re

from recall.config.prompt_templates import TRIGGER_KEYWORDS, TRIGGER_PATTERNS
from recall.src.utils.logger import get_logger, preview

logger = get_logger(__name__)

TriggerAssessment = dict[str, bool | list[str]]


class RecallTriggerClassifier:
    """
    Keyword + regex matcher over the lower-cased message.

    Parameters
    ----------
    keywords
        Category → substrings.  Defaults to ``TRIGGER_KEYWORDS``.
    patterns
        Category → regular expressions.  Defaults to ``TRIGGER_PATTERNS``.
    """

    __slots__ = ("_keywords", "_patterns")

    def __init__(self, keywords: dict[str, tuple[str, ...]] | None = None, patterns: dict[str, tuple[str, ...]] | None = None) -> None:
        self._keywords: list[tuple[str, str]] = [(category, kw.lower()) for category, words in (TRIGGER_KEYWORDS if keywords is None else keywords).items() for kw in words]
        self._patterns: list[tuple[str, re.Pattern[str]]] = [(category, re.compile(p, re.IGNORECASE)) for category, exprs in (TRIGGER_PATTERNS if patterns is None else patterns).items() for p in exprs]


    def classify(self, text: object) -> TriggerAssessment:
        """
        Return ``{"retrieve": bool, "categories": [...], "matched": [...]}``.

        Non-string and blank input never triggers.
        """
        if not isinstance(text, str) or not text.strip():
            return {"retrieve": False, "categories": [], "matched": []}

        lowered = text.lower()
        categories: list[str] = []
        matched: list[str] = []

        for category, keyword in self._keywords:
            if keyword in lowered:
                matched.append(keyword)
                if category not in categories:
                    categories.append(category)

        for category, pattern in self._patterns:
            if pattern.search(lowered):
                matched.append(pattern.pattern)
                if category not in categories:
                    categories.append(category)

        if matched:
            logger.debug("[TRIGGER] Retrieval triggered by %s for '%s'", categories, preview(text))
        return {"retrieve": bool(matched), "categories": categories, "matched": matched}


    def should_retrieve(self, text: object) -> bool:
        return bool(self.classify(text)["retrieve"])


_default_classifier = RecallTriggerClassifier()


def should_retrieve(text: object) -> bool:
    """True if *text* looks like a question about earlier conversations."""
    return _default_classifier.should_retrieve(text)
