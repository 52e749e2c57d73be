"""
Recall - Embedding Client & Cache
==================================
Wraps the external embedding model with input normalisation,
truncation, a timeout and a bounded in-process cache.

``EmbeddingCache``
    LRU map ``normalised text → vector`` bounded three ways: entry
    count, aggregate byte size (``8 × dimensions + overhead`` per
    entry) and time-to-live.  Whichever limit is hit first evicts the
    least-recently-used entries.  Reads refresh recency *and* age.
    One instance is built at process start and injected into the
    client, so tests can build an isolated cache per case.

``EmbeddingClient``
    ``embed(text)``: cache hit, or one live call on a worker thread
    under ``EMBEDDING_TIMEOUT_SECONDS``.  ``embed_batch(texts)``: all
    texts concurrently, order preserved, first failure fails the batch.

Thread safety
-------------
The cache is the only mutable structure shared by concurrent turns;
a single ``threading.Lock`` guards every read, insert and eviction.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from recall.config.settings import settings
from recall.src.core.errors import EmptyInputError, UpstreamError
from recall.src.utils.logger import get_logger, preview
from recall.src.utils.text_utils import cache_key, clean_text, is_blank, truncate

logger = get_logger(__name__)

Vector = list[float]
CacheStats = dict[str, int | float]

# Bytes per stored float in the size estimate
_BYTES_PER_FLOAT = 8


# ── Embedder Protocol ─────────────────────────────────────────────────

@runtime_checkable
class Embedder(Protocol):
    """Structural type for any LangChain-compatible embedding model."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


def build_default_embedder() -> Embedder:
    """Gemini embeddings via LangChain, configured from settings."""
    from langchain_google_genai import GoogleGenerativeAIEmbeddings

    return GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())


# ══════════════════════════════════════════════════════════════════════
#  CACHE
# ══════════════════════════════════════════════════════════════════════


class EmbeddingCache:
    """
    Thread-safe LRU + TTL + byte-bounded embedding cache.

    Parameters
    ----------
    max_entries
        Entry-count ceiling.
    max_bytes
        Aggregate size ceiling.  A single vector larger than this is
        never stored.
    ttl_seconds
        Maximum age; refreshed on every read.
    entry_overhead
        Fixed bytes added to each entry's size estimate.
    clock
        Monotonic time source (injectable for tests).
    """

    __slots__ = ("_max_entries", "_max_bytes", "_ttl", "_overhead", "_clock", "_lock", "_entries", "_total_bytes", "_hits", "_misses")

    def __init__(self, max_entries: int | None = None, max_bytes: int | None = None, ttl_seconds: float | None = None, entry_overhead: int | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._max_entries = max_entries or settings.EMBEDDING_CACHE_MAX_ENTRIES
        self._max_bytes = max_bytes or settings.EMBEDDING_CACHE_MAX_BYTES
        self._ttl = ttl_seconds or settings.EMBEDDING_CACHE_TTL_SECONDS
        self._overhead = entry_overhead if entry_overhead is not None else settings.EMBEDDING_CACHE_ENTRY_OVERHEAD_BYTES
        self._clock = clock
        self._lock = threading.Lock()
        # key → (frozen vector, stored_at, size_bytes); order == recency == age
        self._entries: OrderedDict[str, tuple[tuple[float, ...], float, int]] = OrderedDict()
        self._total_bytes = 0
        self._hits = 0
        self._misses = 0


    def size_of(self, vector: Vector) -> int:
        return len(vector) * _BYTES_PER_FLOAT + self._overhead


    def get(self, key: str) -> Vector | None:
        """Return the cached vector and refresh its recency, or ``None``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            vector, stored_at, size = entry
            now = self._clock()
            if now - stored_at > self._ttl:
                self._remove(key)
                self._misses += 1
                return None

            self._entries[key] = (vector, now, size)
            self._entries.move_to_end(key)
            self._hits += 1
            return list(vector)


    def put(self, key: str, vector: Vector) -> None:
        """Insert (or replace) *key* and evict until every bound holds."""
        size = self.size_of(vector)
        if size > self._max_bytes:
            logger.warning("[EMBED] Vector of %d bytes exceeds cache size limit; not cached.", size)
            return

        with self._lock:
            if key in self._entries:
                self._remove(key)
            self._entries[key] = (tuple(vector), self._clock(), size)
            self._total_bytes += size
            self._evict()


    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0
        logger.info("[EMBED] Embedding cache cleared.")


    def stats(self) -> CacheStats:
        """Utilisation snapshot for observability."""
        with self._lock:
            size = len(self._entries)
            return {
                "size": size,
                "calculated_size": self._total_bytes,
                "max_entries": self._max_entries,
                "max_bytes": self._max_bytes,
                "hits": self._hits,
                "misses": self._misses,
                "utilization_percent": size / self._max_entries * 100,
                "memory_utilization_percent": self._total_bytes / self._max_bytes * 100,
            }


    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries


    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    # ── internals (caller holds the lock) ─────────────────────────────

    def _remove(self, key: str) -> None:
        _, _, size = self._entries.pop(key)
        self._total_bytes -= size


    def _evict(self) -> None:
        now = self._clock()
        evicted = 0
        while self._entries:
            oldest_key, (_, stored_at, _) = next(iter(self._entries.items()))
            expired = now - stored_at > self._ttl
            if not (expired or len(self._entries) > self._max_entries or self._total_bytes > self._max_bytes):
                break
            self._remove(oldest_key)
            evicted += 1
        if evicted:
            logger.debug("[EMBED] Evicted %d cache entr%s.", evicted, "y" if evicted == 1 else "ies")


# ══════════════════════════════════════════════════════════════════════
#  CLIENT
# ══════════════════════════════════════════════════════════════════════


class EmbeddingClient:
    """
    Cached, timed, truncating front-end to an ``Embedder``.

    Parameters
    ----------
    embedder
        Object satisfying the ``Embedder`` protocol (injected).
    cache
        Shared ``EmbeddingCache`` (injected; one per process).
    dimensions
        Expected vector length.  Anything else is an upstream error.
    """

    __slots__ = ("_embedder", "_cache", "_dimensions", "_timeout", "_max_chars")

    def __init__(self, embedder: Embedder, cache: EmbeddingCache, dimensions: int | None = None, timeout_seconds: float | None = None, max_text_length: int | None = None) -> None:
        self._embedder = embedder
        self._cache = cache
        self._dimensions = dimensions or settings.EMBEDDING_DIMENSIONS
        self._timeout = timeout_seconds or settings.EMBEDDING_TIMEOUT_SECONDS
        self._max_chars = max_text_length or settings.EMBEDDING_MAX_TEXT_LENGTH


    @property
    def cache(self) -> EmbeddingCache:
        return self._cache


    @property
    def dimensions(self) -> int:
        return self._dimensions


    async def embed(self, text: str) -> Vector:
        """
        Return the embedding of *text*.

        Raises
        ------
        EmptyInputError
            *text* is not a string or is blank.
        UpstreamError
            The model failed, timed out, or returned the wrong length.
        """
        if is_blank(text):
            raise EmptyInputError("text must be a non-empty string")

        text = clean_text(text)
        if len(text) > self._max_chars:
            logger.warning("[EMBED] Text too long (%d chars), truncating to %d.", len(text), self._max_chars)
            text = truncate(text, self._max_chars)

        key = cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("[EMBED] Cache hit: '%s'", preview(text))
            return cached

        logger.debug("[EMBED] Cache miss, generating: '%s'", preview(text))
        try:
            vector = await asyncio.wait_for(asyncio.to_thread(self._embedder.embed_query, text), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[EMBED] Embedding call timed out after %.1fs.", self._timeout)
            raise UpstreamError(f"embedding timed out after {self._timeout}s") from exc
        except Exception as exc:
            logger.error("[EMBED] Embedding call failed: %s", exc)
            raise UpstreamError(f"failed to generate embedding: {exc}") from exc

        vector = [float(v) for v in vector]
        if len(vector) != self._dimensions:
            raise UpstreamError(f"embedding has {len(vector)} dimensions, expected {self._dimensions}")

        self._cache.put(key, vector)
        return vector


    async def embed_batch(self, texts: list[str]) -> list[Vector]:
        """Embed *texts* concurrently; output order matches input order."""
        if not texts:
            return []
        try:
            return list(await asyncio.gather(*(self.embed(t) for t in texts)))
        except Exception:
            logger.error("[EMBED] Batch of %d text(s) failed.", len(texts))
            raise
