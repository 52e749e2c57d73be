"""
Recall - Memory Store Administration Script
=============================================
CLI entry point for operating the LanceDB memory store:
    1. Validate settings (fail-fast on a missing ``GOOGLE_API_KEY``).
    2. Open (or create) the ``MemoryVectorStore``.
    3. Run the requested maintenance action.
    4. Print a structured summary with timing breakdown.

Flags:
    --stats                          Print record count and tables (default).
    --delete-owner OWNER             Delete every memory of one owner.
    --delete-conversation OWNER CONV Delete one conversation of one owner.
    --compact                        Merge fragments and purge deleted rows.
    --drop                           Drop the memory table (full reset).
    --db-path PATH                   Override ``LANCEDB_PATH``.

Exit codes: 0 ok, 1 settings or store unusable, 2 invalid identifier,
3 delete failed in storage.

Usage:
    python -m recall.scripts.setup_db
    python -m recall.scripts.setup_db --delete-owner USER-AB12CD-0001
    python -m recall.scripts.setup_db --compact
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="Recall: inspect and maintain the chat memory store.")
    parser.add_argument("--stats", action="store_true", default=False, help="Print record count, tables and storage location.")
    parser.add_argument("--delete-owner", metavar="OWNER", default=None, help="Delete every memory belonging to OWNER.")
    parser.add_argument("--delete-conversation", nargs=2, metavar=("OWNER", "CONV"), default=None, help="Delete one conversation of OWNER.")
    parser.add_argument("--compact", action="store_true", default=False, help="Compact the table and purge deleted rows.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the memory table (all owners).")
    parser.add_argument("--db-path", default=None, help="LanceDB directory (defaults to LANCEDB_PATH).")
    return parser.parse_args(argv)


# ── Main Orchestration ─────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    try:
        from recall.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error, check your .env file:\n")
        print(f"  {exc}")
        print()
        return 1
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from recall.src.utils.logger import get_logger
    logger = get_logger(__name__)

    db_path = args.db_path or str(settings.LANCEDB_PATH)
    _print_header(settings, db_path)

    # ── 1. Open MemoryVectorStore (timed) ──────────────────────────────
    from recall.src.core.embedding_client import EmbeddingCache, EmbeddingClient, build_default_embedder
    from recall.src.core.errors import IndexCorruptionError, RecallError, ValidationError
    from recall.src.database.vector_store import MemoryVectorStore

    t_lancedb = time.perf_counter()
    try:
        store = MemoryVectorStore(EmbeddingClient(build_default_embedder(), EmbeddingCache()), db_path=db_path)
    except IndexCorruptionError as exc:
        logger.error("Cannot open memory store: %s", exc)
        return 1
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
    logger.info("LanceDB opened in %.1fms", lancedb_ms)

    # ── 2. Run the requested action ────────────────────────────────────
    removed = 0
    try:
        if args.delete_owner:
            removed = asyncio.run(store.delete_by_owner(args.delete_owner))
            print(f"  Deleted {removed} record(s) for owner {args.delete_owner}")
        if args.delete_conversation:
            owner_id, conversation_id = args.delete_conversation
            removed += asyncio.run(store.delete_by_conversation(owner_id, conversation_id))
            print(f"  Deleted conversation {conversation_id} of owner {owner_id}")
    except ValidationError as exc:
        logger.error("Refusing to delete: %s", exc)
        return 2
    except RecallError as exc:
        logger.error("Delete failed: %s", exc)
        return 3

    if args.compact:
        store.compact()
        print("  Table compacted.")

    if args.drop:
        logger.warning("Dropping table '%s' as requested.", settings.LANCEDB_TABLE_NAME)
        store.drop_table()
        _print_footer({"total_records": 0, "tables": [], "db_path": db_path}, removed, settings_ms, lancedb_ms, time.perf_counter() - t_start)
        return 0

    # ── 3. Print execution summary ─────────────────────────────────────
    _print_footer(store.stats(), removed, settings_ms, lancedb_ms, time.perf_counter() - t_start)
    return 0


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object, db_path: str) -> None:
    api_key_val = settings.GOOGLE_API_KEY.get_secret_value()  # type: ignore[attr-defined]
    masked = f"****{api_key_val[-4:]}" if len(api_key_val) > 4 else "****"

    print()
    print("=" * 60)
    print("  RECALL: Memory Store Administration")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                        # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_MODEL} ({settings.EMBEDDING_DIMENSIONS} dims)")  # type: ignore[attr-defined]
    print(f"  LanceDB path : {db_path}")
    print(f"  Table        : {settings.LANCEDB_TABLE_NAME}")             # type: ignore[attr-defined]
    print(f"  API Key      : {masked}")
    print("=" * 60)
    print()


def _print_footer(stats: dict[str, object], removed: int, settings_ms: float, lancedb_ms: float, elapsed: float) -> None:
    print()
    print("=" * 60)
    print("  STORE SUMMARY")
    print("-" * 60)
    print(f"  Total records        : {stats['total_records']}")
    print(f"  Tables               : {', '.join(stats['tables']) or '(none)'}")  # type: ignore[arg-type]
    print(f"  Records deleted      : {removed}")
    print("-" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Settings + .env load : {settings_ms:>8.1f}ms")
    print(f"  LanceDB connection   : {lancedb_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    sys.exit(main())
