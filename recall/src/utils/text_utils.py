"""
Recall - Text Utilities
========================
Helper functions for text normalisation, cache keys, lexical tokens
and display snippets.

These utilities are consumed by the embedding client, the vector store
and the retrieval engine, and must remain stateless and side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone

# Control characters plus BOM, zero-width chars, soft hyphens and
# directional marks.  \n, \r, \t are kept.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    """
    Sanitise an utterance before it is embedded or stored.

    Steps:
        1. Unicode NFC normalisation.
        2. Strip non-printable / zero-width characters.
        3. Strip leading / trailing whitespace.

    Internal whitespace is preserved so code snippets and lists keep
    their shape in retrieved context.
    """
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    return text.strip()


def is_blank(text: object) -> bool:
    """True for ``None``, non-strings and whitespace-only strings."""
    return not isinstance(text, str) or not text.strip()


def truncate(text: str, max_chars: int) -> str:
    """Hard-cut *text* to *max_chars* characters (no ellipsis)."""
    return text if len(text) <= max_chars else text[:max_chars]


def cache_key(text: str) -> str:
    """Embedding cache key: case-folded, trimmed text."""
    return text.strip().lower()


def query_words(query: str) -> list[str]:
    """Lower-cased whitespace tokens of *query*, duplicates kept."""
    return [w for w in _WHITESPACE_RE.split(query.lower()) if w]


def snippet(text: str, max_chars: int) -> str:
    """Single display line of *text*, ellipsised past *max_chars*."""
    return text if len(text) <= max_chars else text[:max_chars] + "..."


def title_from_first_turn(history: list[dict[str, str]]) -> str:
    """
    Derive a conversation title from the first turn of *history*.

    ``"New Chat"`` for an empty history, ``"Chat"`` when the first turn
    was not written by the user, otherwise its first 50 characters.
    """
    if not history:
        return "New Chat"
    first = history[0]
    text = first.get("text", "")
    if first.get("role") != "user" or not text:
        return "Chat"
    return text[:50] + "..."


def format_timestamp(millis: int) -> str:
    """Render epoch milliseconds as ``YYYY-MM-DD HH:MM UTC``; ``unknown date`` for 0."""
    if not millis:
        return "unknown date"
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
