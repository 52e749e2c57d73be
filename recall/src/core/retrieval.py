"""
Recall - Retrieval Engine
==========================
Thin orchestration over ``MemoryVectorStore.search`` plus the text the
chat model receives from its "search chat history" tool.

Two tiers:
    1. **Direct answer**: for a few recognised question shapes
       ("what is my favorite X", "who is X", "what did we discuss"),
       try to extract a crisp answer from the owner's own statements
       among the top hits.
    2. **Snippets**: otherwise, numbered hits with speaker, timestamp
       and source-conversation title.

Extraction is best-effort polish.  Its patterns are not exhaustive, and
any miss falls through to the snippet listing.
"""

from __future__ import annotations

import re

from recall.config.prompt_templates import FAVORITE_ANSWER, HISTORY_RESULT_ENTRY, HISTORY_RESULTS_FOOTER, HISTORY_RESULTS_HEADER, IDENTITY_ANSWER, NO_HISTORY_RESPONSE, PREFERENCE_ANSWER, TOPIC_STOPWORDS, TOPICS_ANSWER
from recall.config.settings import settings
from recall.src.core.errors import RecallError, ValidationError
from recall.src.database.models import Role, RetrievalResult
from recall.src.database.vector_store import MemoryVectorStore
from recall.src.utils.logger import get_logger, preview
from recall.src.utils.text_utils import format_timestamp, snippet

logger = get_logger(__name__)

# ── Question shapes ───────────────────────────────────────────────────
_FAVORITE_QUERY_RE = re.compile(r"\bfavou?rite\s+([a-z]+)", re.IGNORECASE)
_PREFERENCE_QUERY_RE = re.compile(r"\bprefer", re.IGNORECASE)
_WHO_IS_QUERY_RE = re.compile(r"\bwho(?:'s|\s+is|\s+was)\s+([^?.!,]+)", re.IGNORECASE)
_DISCUSS_QUERY_RE = re.compile(r"\bwhat did (?:we|i)\b|\bwhat we\b|\bdiscuss", re.IGNORECASE)

# ── Statement shapes (matched against the owner's own messages) ──────
_FAVORITE_STATEMENT_RE = re.compile(r"\bmy favou?rite\s+([a-z]+)\s+(?:is|are)\s+([^.,!?;\n]+)", re.IGNORECASE)
_PREFERENCE_STATEMENT_RE = re.compile(r"\bi prefer\s+([^.,!?;\n]+)", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z][a-z'\-]*")

_MAX_TOPICS = 5
_MIN_TOPIC_LENGTH = 5

# First person in the owner's words → second person in the answer
_PERSON_SWAP: dict[str, str] = {"i": "you", "me": "you", "my": "your", "mine": "yours", "myself": "yourself", "i'm": "you're", "am": "are"}


def _second_person(text: str) -> str:
    return " ".join(_PERSON_SWAP.get(word.lower(), word) for word in text.split())


class RetrievalEngine:
    """
    Owner-scoped retrieval over a ``MemoryVectorStore``.

    Parameters
    ----------
    vector_store
        The initialised store (injected).
    """

    __slots__ = ("_store",)

    def __init__(self, vector_store: MemoryVectorStore) -> None:
        self._store = vector_store


    async def retrieve(self, owner_id: str, query_text: str, k: int | str | None = None) -> list[RetrievalResult]:
        """
        Ranked memories of *owner_id* relevant to *query_text*.

        Raises ``ValidationError`` for a malformed owner id or *k*;
        upstream failures degrade inside the store.
        """
        results = await self._store.search(owner_id, query_text, settings.SEARCH_DEFAULT_K if k is None else k)
        logger.info("[RETRIEVE] %d result(s) for '%s'", len(results), preview(query_text))
        return results


    async def search_chat_history(self, owner_id: str, query_text: str, k: int | None = None) -> str:
        """
        Tool-facing text: a direct answer, numbered snippets, or a
        "nothing found" sentence.  Never raises.
        """
        try:
            results = await self.retrieve(owner_id, query_text, k)
        except ValidationError as exc:
            logger.warning("[RETRIEVE] Rejected chat-history search: %s", exc)
            results = []
        except RecallError:
            logger.exception("[RETRIEVE] Chat-history search failed.")
            results = []

        if not results:
            return NO_HISTORY_RESPONSE.format(query=query_text)

        answer = self.extract_answer(query_text, results)
        if answer is not None:
            logger.info("[RETRIEVE] Direct answer extracted for '%s'", preview(query_text))
            return answer
        return self.format_results(query_text, results)

    # ══════════════════════════════════════════════════════════════════
    #  DIRECT-ANSWER EXTRACTION
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def extract_answer(query_text: str, results: list[RetrievalResult]) -> str | None:
        """Best-effort answer from the owner's own statements, else ``None``."""
        statements = [r.text for r in results if r.role is Role.USER]
        if not statements:
            return None

        favorite = _FAVORITE_QUERY_RE.search(query_text)
        if favorite:
            wanted = favorite.group(1).lower()
            for text in statements:
                for subject, value in _FAVORITE_STATEMENT_RE.findall(text):
                    if subject.lower() == wanted:
                        return FAVORITE_ANSWER.format(subject=wanted, value=_second_person(value.strip()))

        if _PREFERENCE_QUERY_RE.search(query_text):
            for text in statements:
                match = _PREFERENCE_STATEMENT_RE.search(text)
                if match:
                    return PREFERENCE_ANSWER.format(value=_second_person(match.group(1).strip()))

        who = _WHO_IS_QUERY_RE.search(query_text)
        if who:
            name = who.group(1).strip()
            statement_re = re.compile(rf"\b{re.escape(name)}\s+(?:is|was)\s+([^.,!?;\n]+)", re.IGNORECASE)
            for text in statements:
                match = statement_re.search(text)
                if match:
                    return IDENTITY_ANSWER.format(name=name, value=_second_person(match.group(1).strip()))

        if _DISCUSS_QUERY_RE.search(query_text):
            topics = RetrievalEngine._topics(statements)
            if topics:
                return TOPICS_ANSWER.format(topics=", ".join(topics))

        return None


    @staticmethod
    def _topics(statements: list[str]) -> list[str]:
        topics: list[str] = []
        for text in statements:
            for word in _WORD_RE.findall(text.lower()):
                if len(word) >= _MIN_TOPIC_LENGTH and word not in TOPIC_STOPWORDS and word not in topics:
                    topics.append(word)
                    if len(topics) == _MAX_TOPICS:
                        return topics
        return topics

    # ══════════════════════════════════════════════════════════════════
    #  SNIPPET FORMATTING
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def format_results(query_text: str, results: list[RetrievalResult]) -> str:
        """Numbered hits with speaker label, timestamp and conversation title."""
        if not results:
            return NO_HISTORY_RESPONSE.format(query=query_text)

        entries = [HISTORY_RESULTS_HEADER.format(query=query_text), ""]
        for index, result in enumerate(results, 1):
            speaker = "You" if result.role is Role.USER else "Assistant"
            entries.append(HISTORY_RESULT_ENTRY.format(index=index, title=result.conversation_title or "Untitled chat", timestamp=format_timestamp(result.created_at), speaker=speaker, text=snippet(result.text, settings.SNIPPET_MAX_CHARS)))
        entries.append("")
        entries.append(HISTORY_RESULTS_FOOTER.format(count=len(results), plural="" if len(results) == 1 else "s"))
        return "\n".join(entries)
