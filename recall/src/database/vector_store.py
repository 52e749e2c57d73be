"""
Recall - MemoryVectorStore
===========================
OOP wrapper around LanceDB holding one row per embedded chat message:
  • Table creation with a strict PyArrow schema (fixed-length vectors)
  • Idempotent per-message insertion (delete + re-insert)
  • Owner-scoped similarity search with a lexical fallback
  • Owner / conversation scoped deletion

Design decisions:
  • **Singleton DB connection**: ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Dependency Injection**: the ``EmbeddingClient`` is injected,
    making the store testable with in-process embedders.
  • **Owner isolation**: every read and delete is filtered by a
    validated ``owner_id`` built through the query sanitizer; nothing
    relies on caller-side exclusion.
  • **Degraded mode**: if the embedding or vector query fails or times
    out, ``search`` scores the owner's most recent rows by keyword
    overlap instead of raising.
  • **Never break the chat**: ``add`` logs and returns ``False``
    instead of raising.

Usage:
    from recall.src.core.embedding_client import EmbeddingCache, EmbeddingClient, build_default_embedder
    from recall.src.database.vector_store import MemoryVectorStore

    client = EmbeddingClient(build_default_embedder(), EmbeddingCache())
    store = MemoryVectorStore(client)
    await store.add(record)
    results = await store.search(owner_id, "what is my favorite animal", k=5)
"""

from __future__ import annotations

import asyncio
import heapq
import threading
from dataclasses import replace

import lancedb
import pyarrow as pa

from recall.config.settings import settings
from recall.src.core.embedding_client import EmbeddingClient
from recall.src.core.errors import EmptyInputError, IndexCorruptionError, UpstreamError, ValidationError
from recall.src.database.models import MemoryRecord, Role, RetrievalResult
from recall.src.utils.logger import get_logger, preview
from recall.src.utils.query_sanitizer import FILTER_COLUMNS, build_membership_clause, build_predicate, clamp_limit, require_identifier, validate_identifiers
from recall.src.utils.text_utils import clean_text, is_blank, query_words

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
StoreRow = dict[str, str | int | float | list[float]]
StoreStats = dict[str, int | str | list[str]]

# ── Constants ──────────────────────────────────────────────────────────
# Scaffold row written once at table creation and deleted immediately.
# "_init" can never pass identifier validation, so it cannot collide.
_SCAFFOLD_ID = "_init"
# Columns returned by the lexical fallback (no vectors loaded)
_TEXT_COLUMNS = ["owner_id", "conversation_id", "message_id", "role", "text", "created_at", "conversation_title"]
# Columns that identify a row and its age (recency window selection)
_KEY_COLUMNS = ["conversation_id", "message_id", "created_at"]

_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def build_schema(dimensions: int) -> pa.Schema:
    """LanceDB table schema for *dimensions*-long embeddings."""
    return pa.schema([
        pa.field("owner_id", pa.utf8()),
        pa.field("conversation_id", pa.utf8()),
        pa.field("message_id", pa.utf8()),
        pa.field("role", pa.utf8()),
        pa.field("text", pa.utf8()),
        pa.field("vector", pa.list_(pa.float32(), dimensions)),
        pa.field("created_at", pa.int64()),
        pa.field("conversation_title", pa.utf8()),
        pa.field("metadata", pa.utf8()),
    ])


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Thread-safe via ``_DB_LOCK``.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def lexical_score(text: str, words: list[str], phrase: str, exact_bonus: int) -> int:
    """
    Keyword-overlap score used when vector search is unavailable.

    One point per query word found in *text* plus *exact_bonus* when the
    whole query appears verbatim.  Case-insensitive.
    """
    lowered = text.lower()
    score = sum(1 for word in words if word in lowered)
    if phrase and phrase in lowered:
        score += exact_bonus
    return score


def _created_at(row: StoreRow) -> int:
    return int(row.get("created_at", 0) or 0)


class MemoryVectorStore:
    """
    Owner-partitioned chat memory backed by a LanceDB table.

    Parameters
    ----------
    embedding_client : EmbeddingClient
        Cached embedding front-end; its ``dimensions`` fix the schema.
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    search_timeout
        Seconds allowed for the LanceDB vector query.

    Raises
    ------
    IndexCorruptionError
        If the store cannot be opened or created.
    """

    __slots__ = ("_client", "_db_path", "_table_name", "_search_timeout", "_write_lock", "db", "table")

    def __init__(self, embedding_client: EmbeddingClient, db_path: str | None = None, table_name: str | None = None, search_timeout: float | None = None) -> None:
        self._client = embedding_client
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.LANCEDB_TABLE_NAME
        self._search_timeout = search_timeout or settings.SEARCH_TIMEOUT_SECONDS
        self._write_lock = threading.Lock()
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None
        self._connect()


    def _connect(self) -> None:
        """Open the existing table, or create it with a one-off scaffold row."""
        dimensions = self._client.dimensions
        try:
            self.db = _get_connection(self._db_path)
            existing = self.db.table_names()

            if self._table_name in existing:
                self.table = self.db.open_table(self._table_name)
                self._check_dimensions(dimensions)
                logger.info("[INDEX] Opened existing table '%s' (%d rows).", self._table_name, self.table.count_rows())
            else:
                scaffold = MemoryRecord(owner_id=_SCAFFOLD_ID, conversation_id=_SCAFFOLD_ID, message_id=_SCAFFOLD_ID, role=Role.USER, text="Initialization record", conversation_title="Init")
                self.table = self.db.create_table(self._table_name, data=[scaffold.to_row([0.0] * dimensions)], schema=build_schema(dimensions))
                self.table.delete(build_predicate(FILTER_COLUMNS, {"message_id": _SCAFFOLD_ID}))
                logger.info("[INDEX] Created new table '%s' (%d-dim vectors).", self._table_name, dimensions)

        except IndexCorruptionError:
            raise
        except Exception as exc:
            logger.exception("[INDEX] Cannot open LanceDB store at %s.", self._db_path)
            raise IndexCorruptionError(f"cannot open vector store at {self._db_path}: {exc}") from exc


    def _check_dimensions(self, expected: int) -> None:
        vector_type = self.table.schema.field("vector").type
        stored = getattr(vector_type, "list_size", expected)
        if stored != expected:
            raise IndexCorruptionError(f"table '{self._table_name}' holds {stored}-dim vectors, embedding model produces {expected}")

    # ══════════════════════════════════════════════════════════════════
    #  WRITE PATH
    # ══════════════════════════════════════════════════════════════════

    async def add(self, record: MemoryRecord) -> bool:
        """
        Embed and persist one message.

        Re-adding the same (owner, conversation, message) replaces the
        earlier row.  Never raises: invalid identifiers, blank text and
        embedding failures are logged and reported as ``False``.
        """
        valid, invalid_fields = validate_identifiers({"owner_id": record.owner_id, "conversation_id": record.conversation_id, "message_id": record.message_id})
        if not valid:
            logger.warning("[INDEX] Rejected record with invalid identifier(s): %s", ", ".join(invalid_fields))
            return False

        if is_blank(record.text):
            logger.debug("[INDEX] Skipping empty message %s.", record.message_id)
            return False

        text = clean_text(record.text)
        try:
            vector = await self._client.embed(text)
            row = replace(record, text=text).to_row(vector)
            await asyncio.to_thread(self._replace_row, row)
        except EmptyInputError:
            logger.debug("[INDEX] Skipping empty message %s.", record.message_id)
            return False
        except Exception:
            logger.exception("[INDEX] Failed to index message %s.", record.message_id)
            return False

        logger.info("[INDEX] Indexed %s message: '%s'", record.role.value, preview(text))
        return True


    def _replace_row(self, row: StoreRow) -> None:
        predicate = build_predicate(FILTER_COLUMNS, {"owner_id": row["owner_id"], "conversation_id": row["conversation_id"], "message_id": row["message_id"]})
        with self._write_lock:
            self.table.delete(predicate)
            self.table.add([row])

    # ══════════════════════════════════════════════════════════════════
    #  READ PATH
    # ══════════════════════════════════════════════════════════════════

    async def search(self, owner_id: str, query_text: str, k: int | str | None = None) -> list[RetrievalResult]:
        """
        Return up to *k* of *owner_id*'s records nearest to *query_text*.

        Falls back to lexical scoring when the embedding or vector query
        fails for any reason.  Only ``ValidationError`` escapes, and it is
        raised before any I/O.
        """
        require_identifier(owner_id, "owner_id")
        limit = clamp_limit(settings.SEARCH_DEFAULT_K if k is None else k, settings.SEARCH_MAX_K)
        if is_blank(query_text):
            return []

        predicate = build_predicate(FILTER_COLUMNS, {"owner_id": owner_id})
        try:
            vector = await self._client.embed(query_text)
            rows = await asyncio.wait_for(asyncio.to_thread(self._vector_query, vector, predicate, limit), timeout=self._search_timeout)
        except Exception as exc:
            logger.warning("[INDEX] Vector search failed, falling back to text search: %s", exc or type(exc).__name__)
            return await self._lexical_search(predicate, query_text, limit)

        results = [RetrievalResult.from_row(row, 1.0 / (1.0 + float(row.get("_distance", 0.0))), "vector") for row in rows]
        logger.info("[INDEX] Found %d similar message(s) for '%s'.", len(results), preview(query_text))
        return results


    def _vector_query(self, vector: list[float], predicate: str, limit: int) -> list[StoreRow]:
        return self.table.search(vector).where(predicate, prefilter=True).select(_TEXT_COLUMNS).limit(limit).to_list()


    async def _lexical_search(self, predicate: str, query_text: str, limit: int) -> list[RetrievalResult]:
        try:
            rows = await asyncio.to_thread(self._recent_rows, predicate)
        except Exception:
            logger.exception("[INDEX] Text search fallback failed.")
            return []

        words = query_words(query_text)
        phrase = query_text.strip().lower()
        scored: list[tuple[int, StoreRow]] = []
        for row in rows:
            score = lexical_score(str(row.get("text", "")), words, phrase, settings.EXACT_MATCH_BONUS)
            if score > 0:
                scored.append((score, row))

        # Highest score first; most recent first among equals
        scored.sort(key=lambda item: (item[0], _created_at(item[1])), reverse=True)
        results = [RetrievalResult.from_row(row, score, "lexical") for score, row in scored[:limit]]
        logger.info("[INDEX] Found %d text-matched message(s) for '%s'.", len(results), preview(query_text))
        return results


    def _recent_rows(self, predicate: str) -> list[StoreRow]:
        """
        The owner's newest rows by ``created_at``, at most
        ``FALLBACK_SCAN_LIMIT`` of them, newest first.

        Physical order says nothing about recency (re-adds and caller-set
        timestamps), so the window is chosen from a key-only projection
        and only those rows have their text loaded.
        """
        scan_limit = clamp_limit(settings.FALLBACK_SCAN_LIMIT, settings.QUERY_MAX_ROWS)
        total = self.table.count_rows(predicate)
        if not total:
            return []

        keys = self.table.search().where(predicate, prefilter=True).select(_KEY_COLUMNS).limit(total).to_list()
        newest = heapq.nlargest(scan_limit, keys, key=_created_at)
        wanted = {(row["conversation_id"], row["message_id"]) for row in newest}

        membership = build_membership_clause(FILTER_COLUMNS, "message_id", sorted({row["message_id"] for row in newest}))
        rows = self.table.search().where(f"{predicate} AND {membership}", prefilter=True).select(_TEXT_COLUMNS).limit(total).to_list()
        rows = [row for row in rows if (row["conversation_id"], row["message_id"]) in wanted]
        rows.sort(key=_created_at, reverse=True)
        return rows

    # ══════════════════════════════════════════════════════════════════
    #  DELETE PATH
    # ══════════════════════════════════════════════════════════════════

    async def delete_by_owner(self, owner_id: str) -> int:
        """Delete every record of *owner_id*; returns rows removed."""
        predicate = build_predicate(FILTER_COLUMNS, {"owner_id": require_identifier(owner_id, "owner_id")})
        removed = await self._delete(predicate)
        logger.info("[INDEX] Deleted %d record(s) for owner %s.", removed, owner_id)
        return removed


    async def delete_by_conversation(self, owner_id: str, conversation_id: str) -> int:
        """Delete one conversation of *owner_id*; returns rows removed."""
        conditions = {"owner_id": require_identifier(owner_id, "owner_id"), "conversation_id": require_identifier(conversation_id, "conversation_id")}
        removed = await self._delete(build_predicate(FILTER_COLUMNS, conditions))
        logger.info("[INDEX] Deleted %d record(s) of conversation %s for owner %s.", removed, conversation_id, owner_id)
        return removed


    async def _delete(self, predicate: str) -> int:
        if not predicate:
            raise ValidationError("refusing unscoped delete", field="predicate", error_type="required")
        try:
            return await asyncio.to_thread(self._delete_rows, predicate)
        except Exception as exc:
            logger.error("[INDEX] Delete failed (%s): %s", predicate, exc)
            raise UpstreamError(f"delete failed: {exc}") from exc


    def _delete_rows(self, predicate: str) -> int:
        with self._write_lock:
            count = self.table.count_rows(predicate)
            if count:
                self.table.delete(predicate)
            return count

    # ══════════════════════════════════════════════════════════════════
    #  MAINTENANCE
    # ══════════════════════════════════════════════════════════════════

    def stats(self) -> StoreStats:
        """Total record count, table names and storage location."""
        return {"total_records": self.count(), "tables": list(self.db.table_names()) if self.db is not None else [], "db_path": self._db_path}


    def count(self) -> int:
        """Return the total number of rows in the table."""
        if self.table is None:
            return 0
        return self.table.count_rows()


    def compact(self) -> None:
        """Merge fragments and purge deleted rows.  Manual, never scheduled."""
        with self._write_lock:
            self.table.optimize()
        logger.info("[INDEX] Table '%s' compacted (%d rows).", self._table_name, self.count())


    def drop_table(self) -> None:
        """Drop the vector table (full reset; admin CLI only)."""
        if self.db is None:
            logger.warning("No database connection; nothing to drop.")
            return
        try:
            self.db.drop_table(self._table_name)
            self.table = None
            logger.info("[INDEX] Dropped table '%s'.", self._table_name)
        except ValueError:
            logger.warning("Table '%s' does not exist; nothing to drop.", self._table_name)
        except OSError as exc:
            logger.error("Filesystem error dropping table '%s': %s", self._table_name, exc)
            raise


    def __repr__(self) -> str:
        return f"MemoryVectorStore(db='{self._db_path}', table='{self._table_name}', rows={self.count()})"
