import asyncio

import pytest

from conftest import C1, C2, U1, U2, message_id

from recall.src.core.errors import ValidationError
from recall.src.core.retrieval import RetrievalEngine
from recall.src.database.models import MemoryRecord, Role, RetrievalResult


def _hit(text, role=Role.USER, title="Chat", created_at=1_700_000_000_000):
    return RetrievalResult(text=text, role=role, score=0.9, created_at=created_at, conversation_title=title)


def _seed(store, owner_id, conversation_id, texts):
    async def run():
        for n, text in enumerate(texts, 1):
            await store.add(MemoryRecord(owner_id=owner_id, conversation_id=conversation_id, message_id=message_id(n), role=Role.USER, text=text, conversation_title="Pets"))
    asyncio.run(run())


@pytest.fixture
def engine(store):
    return RetrievalEngine(store)


# ── retrieve ──────────────────────────────────────────────────────────

def test_favorite_animal_scenario(engine, store):
    _seed(store, U1, C1, ["my favorite animal is dogs", "I need to buy groceries", "the train was late again"])

    results = asyncio.run(engine.retrieve(U1, "what is my favorite animal", 5))

    assert "dogs" in results[0].text


def test_other_owners_memories_are_invisible(engine, store):
    _seed(store, U2, C2, ["anything at all", "more things about anything"])
    assert asyncio.run(engine.retrieve(U1, "anything", 5)) == []


def test_retrieve_rejects_malformed_owner(engine, embedder):
    with pytest.raises(ValidationError):
        asyncio.run(engine.retrieve("U1", "anything", 5))
    assert embedder.calls == 0


# ── direct-answer extraction ──────────────────────────────────────────

def test_extracts_favorite_from_own_statement():
    answer = RetrievalEngine.extract_answer("What is my favorite animal?", [_hit("My favorite animal is dogs, obviously")])
    assert answer == "Based on our previous conversations, your favorite animal is **dogs**!"


def test_favorite_for_a_different_subject_is_not_extracted():
    assert RetrievalEngine.extract_answer("what is my favorite animal", [_hit("my favorite color is blue")]) is None


def test_extracts_preference():
    answer = RetrievalEngine.extract_answer("what do I prefer to drink?", [_hit("I prefer tea over coffee")])
    assert answer == "Based on our previous conversations, you prefer **tea over coffee**."


def test_extracts_identity():
    answer = RetrievalEngine.extract_answer("who is Sam?", [_hit("Sam is my brother.")])
    assert answer == "Based on our previous conversations, Sam is **your brother**."


def test_extracts_discussion_topics():
    hits = [_hit("planning a vacation to Japan"), _hit("Japanese cuisine recommendations please")]
    answer = RetrievalEngine.extract_answer("what did we discuss last week?", hits)
    assert answer == "Based on our previous conversations, we've discussed: **planning, vacation, japan, japanese, cuisine**."


def test_agent_statements_are_never_extracted():
    assert RetrievalEngine.extract_answer("what is my favorite animal", [_hit("my favorite animal is cats", role=Role.AGENT)]) is None


def test_unrecognised_question_is_not_extracted():
    assert RetrievalEngine.extract_answer("tell me a joke", [_hit("my favorite animal is dogs")]) is None


# ── tool output ───────────────────────────────────────────────────────

def test_format_results_lists_numbered_snippets():
    hits = [_hit("x" * 250, title="Long one"), _hit("sure, here you go", role=Role.AGENT, title="", created_at=0)]

    text = RetrievalEngine.format_results("stuff", hits)

    assert text.startswith('Here\'s what we\'ve discussed before about "stuff":')
    assert '1. From "Long one" (2023-11-14 22:13 UTC)' in text
    assert "   You: " + "x" * 200 + "..." in text
    assert '2. From "Untitled chat" (unknown date)' in text
    assert "   Assistant: sure, here you go" in text
    assert text.endswith("Found 2 relevant past conversations.")


def test_search_chat_history_answers_directly(engine, store):
    _seed(store, U1, C1, ["my favorite animal is dogs"])
    answer = asyncio.run(engine.search_chat_history(U1, "what is my favorite animal"))
    assert answer == "Based on our previous conversations, your favorite animal is **dogs**!"


def test_search_chat_history_lists_snippets_when_no_answer(engine, store):
    _seed(store, U1, C1, ["booked flights to lisbon"])
    text = asyncio.run(engine.search_chat_history(U1, "lisbon flights"))
    assert '1. From "Pets"' in text
    assert "You: booked flights to lisbon" in text


@pytest.mark.parametrize("owner_id", [U1, "bad owner"])
def test_search_chat_history_reports_nothing_found(engine, owner_id):
    text = asyncio.run(engine.search_chat_history(owner_id, "quantum physics"))
    assert text.startswith('I couldn\'t find any relevant past conversations about "quantum physics".')
