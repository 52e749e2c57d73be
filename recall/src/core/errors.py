"""
Recall - Error Taxonomy
========================
Every failure the memory subsystem can raise.

``ValidationError``
    Malformed identifier, disallowed column, bad limit.  Always raised
    before any I/O and never partially applied.
``UpstreamError``
    Embedding or index call failed or timed out.  Recovered inside the
    vector store by the lexical fallback; never surfaced by ``search``.
``EmptyInputError``
    Blank text.  ``add`` skips it silently (debug log).
``IndexCorruptionError``
    The LanceDB store cannot be opened or created.  Fatal at startup.
"""

from __future__ import annotations


class RecallError(Exception):
    """Base class for all Recall errors."""


class ValidationError(RecallError, ValueError):
    def __init__(self, message: str, field: str = "unknown", error_type: str = "invalid") -> None:
        super().__init__(message)
        self.field = field
        self.error_type = error_type


class UpstreamError(RecallError):
    """Raised when the embedding service or the vector index is unavailable."""


class EmptyInputError(RecallError, ValueError):
    """Raised when text to embed or index is empty after trimming."""


class IndexCorruptionError(RecallError):
    """Raised when the on-disk vector store cannot be opened or created."""
