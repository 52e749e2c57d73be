import asyncio
import time

import pytest

from conftest import C1, C2, DIMS, U1, U2, HashingEmbedder, message_id

from recall.config.settings import settings
from recall.src.core.embedding_client import EmbeddingCache, EmbeddingClient
from recall.src.core.errors import IndexCorruptionError, ValidationError
from recall.src.database.models import MemoryRecord, Role
from recall.src.database.vector_store import MemoryVectorStore, lexical_score


def _record(owner_id, conversation_id, n, text, role=Role.USER, created_at=None, title="Test chat"):
    extra = {"created_at": created_at} if created_at is not None else {}
    return MemoryRecord(owner_id=owner_id, conversation_id=conversation_id, message_id=message_id(n), role=role, text=text, conversation_title=title, **extra)


def _add_all(store, records):
    async def run():
        return [await store.add(r) for r in records]
    return asyncio.run(run())


# ── Initialisation ────────────────────────────────────────────────────

def test_new_store_has_no_scaffold_rows(store):
    assert store.count() == 0
    stats = store.stats()
    assert stats["total_records"] == 0
    assert "chat_embeddings" in stats["tables"]
    assert stats["db_path"].endswith("lancedb")


def test_existing_store_is_reopened(client, tmp_path):
    path = str(tmp_path / "lancedb")
    first = MemoryVectorStore(client, db_path=path)
    _add_all(first, [_record(U1, C1, 1, "hello there")])

    reopened = MemoryVectorStore(client, db_path=path)
    assert reopened.count() == 1


def test_dimension_mismatch_refuses_to_open(client, tmp_path):
    path = str(tmp_path / "lancedb")
    MemoryVectorStore(client, db_path=path)

    other = EmbeddingClient(HashingEmbedder(dims=DIMS * 2), EmbeddingCache(), dimensions=DIMS * 2)
    with pytest.raises(IndexCorruptionError):
        MemoryVectorStore(other, db_path=path)


# ── add ───────────────────────────────────────────────────────────────

def test_add_and_search_round_trip(store):
    assert _add_all(store, [_record(U1, C1, 1, "my favorite animal is dogs", title="Pets")]) == [True]

    results = asyncio.run(store.search(U1, "what is my favorite animal", 5))

    assert len(results) == 1
    assert "dogs" in results[0].text
    assert results[0].role is Role.USER
    assert results[0].conversation_title == "Pets"
    assert results[0].source == "vector"
    assert 0.0 < results[0].score <= 1.0


def test_empty_text_is_skipped_without_embedding(store, embedder):
    assert _add_all(store, [_record(U1, C1, 1, ""), _record(U1, C1, 2, "   \n ")]) == [False, False]
    assert store.count() == 0
    assert embedder.calls == 0


def test_invalid_identifiers_are_rejected_without_raising(store, embedder):
    bad = MemoryRecord(owner_id="U1'; --", conversation_id=C1, message_id=message_id(1), role=Role.USER, text="hello")
    assert _add_all(store, [bad]) == [False]
    assert store.count() == 0
    assert embedder.calls == 0


def test_add_swallows_embedding_failure(store, embedder):
    embedder.fail = True
    assert _add_all(store, [_record(U1, C1, 1, "hello")]) == [False]
    assert store.count() == 0


def test_re_adding_a_message_replaces_it(store):
    _add_all(store, [_record(U1, C1, 1, "first draft about cats"), _record(U1, C1, 1, "final text about cats")])

    assert store.count() == 1
    results = asyncio.run(store.search(U1, "cats", 5))
    assert [r.text for r in results] == ["final text about cats"]


# ── search ────────────────────────────────────────────────────────────

def test_search_returns_nearest_first(store):
    _add_all(store, [
        _record(U1, C1, 1, "the weather today is sunny"),
        _record(U1, C1, 2, "my favorite animal is dogs"),
        _record(U1, C1, 3, "I am learning python programming"),
    ])

    results = asyncio.run(store.search(U1, "what is my favorite animal", 5))

    assert "dogs" in results[0].text
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_search_never_crosses_owners(store):
    _add_all(store, [
        _record(U1, C1, 1, "my favorite color is blue"),
        _record(U2, C2, 2, "my favorite color is blue"),
        _record(U2, C2, 3, "my favorite color is green"),
    ])

    results = asyncio.run(store.search(U1, "favorite color", 10))

    assert len(results) == 1
    assert all(r.conversation_id == C1 for r in results)


def test_search_caps_results_at_k(store):
    _add_all(store, [_record(U1, C1, n, f"note number {n} about gardening") for n in range(1, 8)])
    assert len(asyncio.run(store.search(U1, "gardening", 3))) == 3


def test_search_with_invalid_owner_raises_before_embedding(store, embedder):
    with pytest.raises(ValidationError):
        asyncio.run(store.search("not-a-valid-id", "q", 5))
    assert embedder.calls == 0


@pytest.mark.parametrize("k", [0, -5, "ten", 1.5])
def test_search_with_invalid_k_raises(store, embedder, k):
    with pytest.raises(ValidationError):
        asyncio.run(store.search(U1, "q", k))
    assert embedder.calls == 0


def test_blank_query_returns_nothing(store):
    _add_all(store, [_record(U1, C1, 1, "hello")])
    assert asyncio.run(store.search(U1, "   ", 5)) == []


def test_search_falls_back_to_lexical_scoring(store, embedder):
    _add_all(store, [
        _record(U1, C1, 1, "I went hiking in the mountains", created_at=1_000),
        _record(U1, C1, 2, "weekend plan: hiking mountains with friends", created_at=2_000),
        _record(U1, C1, 3, "hiking is fun", created_at=3_000),
        _record(U1, C1, 4, "cooking pasta tonight", created_at=4_000),
        _record(U1, C1, 5, "Mountains and HIKING again", created_at=5_000),
        _record(U2, C2, 6, "hiking mountains hiking mountains", created_at=6_000),
    ])
    embedder.fail = True

    results = asyncio.run(store.search(U1, "hiking mountains", 5))

    assert [r.text for r in results] == [
        "weekend plan: hiking mountains with friends",
        "Mountains and HIKING again",
        "I went hiking in the mountains",
        "hiking is fun",
    ]
    assert [r.score for r in results] == [7.0, 2.0, 2.0, 1.0]
    assert all(r.source == "lexical" for r in results)


def test_lexical_fallback_with_no_match_returns_empty(store, embedder):
    _add_all(store, [_record(U1, C1, 1, "cooking pasta tonight")])
    embedder.fail = True
    assert asyncio.run(store.search(U1, "astronomy", 5)) == []


def test_lexical_score_counts_words_and_exact_bonus():
    assert lexical_score("I like Green Tea", ["green", "tea"], "green tea", 5) == 7
    assert lexical_score("tea, then green", ["green", "tea"], "green tea", 5) == 2
    assert lexical_score("coffee", ["green", "tea"], "green tea", 5) == 0


# ── delete ────────────────────────────────────────────────────────────

def test_delete_owner_is_idempotent(store):
    _add_all(store, [_record(U1, C1, 1, "secret plans"), _record(U2, C2, 2, "secret plans")])

    assert asyncio.run(store.delete_by_owner(U1)) == 1
    assert asyncio.run(store.delete_by_owner(U1)) == 0
    assert asyncio.run(store.search(U1, "secret plans", 5)) == []
    assert len(asyncio.run(store.search(U2, "secret plans", 5))) == 1


def test_delete_conversation_only_touches_that_conversation(store):
    _add_all(store, [_record(U1, C1, 1, "trip to rome"), _record(U1, C2, 2, "trip to paris")])

    assert asyncio.run(store.delete_by_conversation(U1, C1)) == 1

    results = asyncio.run(store.search(U1, "trip", 5))
    assert [r.conversation_id for r in results] == [C2]


@pytest.mark.parametrize("owner_id", ["", "*", "x' OR '1'='1", None])
def test_delete_with_invalid_owner_is_refused(store, owner_id):
    _add_all(store, [_record(U1, C1, 1, "keep me")])
    with pytest.raises(ValidationError):
        asyncio.run(store.delete_by_owner(owner_id))
    with pytest.raises(ValidationError):
        asyncio.run(store.delete_by_conversation(owner_id, C1))
    assert store.count() == 1


def test_delete_with_invalid_conversation_is_refused(store):
    with pytest.raises(ValidationError):
        asyncio.run(store.delete_by_conversation(U1, "all"))
# ── degraded search ──────────────────────────────────────────────────

# ── maintenance ───────────────────────────────────────────────────────

def test_lexical_fallback_scans_only_the_newest_rows(store, embedder, monkeypatch):
    monkeypatch.setattr(settings, "FALLBACK_SCAN_LIMIT", 3)
    _add_all(store, [_record(U1, C1, n, f"alpha note {n}", created_at=n * 1_000) for n in range(1, 9)])
    _add_all(store, [_record(U2, C2, 20, "alpha from someone else", created_at=99_000)])
    # Re-adding an old message moves it to the physical tail of the table
    _add_all(store, [_record(U1, C1, 1, "alpha note 1 again", created_at=1_000)])
    store.compact()
    embedder.fail = True

    results = asyncio.run(store.search(U1, "alpha", 10))

    assert [r.created_at for r in results] == [8_000, 7_000, 6_000]
    assert all(r.source == "lexical" for r in results)


def test_vector_query_timeout_falls_back_to_lexical(client, tmp_path, monkeypatch):
    def slow_query(self, vector, predicate, limit):
        time.sleep(0.5)
        return []

    store = MemoryVectorStore(client, db_path=str(tmp_path / "lancedb"), search_timeout=0.05)
    _add_all(store, [_record(U1, C1, 1, "hiking trip"), _record(U1, C1, 2, "cooking pasta")])
    monkeypatch.setattr(MemoryVectorStore, "_vector_query", slow_query)

    results = asyncio.run(store.search(U1, "hiking", 5))

    assert [(r.text, r.source) for r in results] == [("hiking trip", "lexical")]


def test_vector_query_failure_falls_back_to_lexical(store, monkeypatch):
    def broken_query(self, vector, predicate, limit):
        raise OSError("index file unreadable")

    _add_all(store, [_record(U1, C1, 1, "hiking trip")])
    monkeypatch.setattr(MemoryVectorStore, "_vector_query", broken_query)

    results = asyncio.run(store.search(U1, "hiking", 5))

    assert [(r.text, r.source) for r in results] == [("hiking trip", "lexical")]


# ── maintenance ───────────────────────────────────────────────────────

def test_compact_keeps_live_rows(store):
    _add_all(store, [_record(U1, C1, n, f"message {n}") for n in range(1, 4)])
    asyncio.run(store.delete_by_conversation(U1, C1))
    _add_all(store, [_record(U1, C2, 9, "after compaction")])

    store.compact()

    assert store.count() == 1


def test_drop_table(store):
    store.drop_table()
    assert store.count() == 0
    assert "chat_embeddings" not in store.stats()["tables"]
