"""
Recall - Memory Service
========================
The caller-facing surface of cross-session memory, consumed by the chat
service on every turn.

Architecture (OOP)
------------------
``MemoryService``
    Facade over the vector store, retrieval engine, trigger classifier
    and context injector.  Per turn:
        1. Trigger check → skip retrieval for ordinary chit-chat
        2. Retrieve → owner-scoped memories (degrades to none)
        3. Inject → four synthetic turns before the new message
        4. Call Gemini → async LLM invocation
        5. Index → user + agent messages, fire-and-forget
        6. Return answer

Background indexing never delays or fails the turn: tasks are kept in a
set so they are not garbage-collected, survive cancellation of the turn
that scheduled them, and report failures only through the log.

Usage:
    from recall.src.core.memory_service import build_memory_service
    memory = build_memory_service()
    answer = await memory.respond(owner_id, conversation_id, history, "what is my favorite animal?")
    await memory.drain()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path

from recall.config.settings import settings
from recall.src.core.context_injector import inject, to_langchain_messages
from recall.src.core.embedding_client import EmbeddingCache, EmbeddingClient, Embedder, build_default_embedder
from recall.src.core.errors import RecallError
from recall.src.core.retrieval import RetrievalEngine
from recall.src.core.trigger_classifier import RecallTriggerClassifier
from recall.src.database.models import ChatTurn, MemoryRecord, MetadataValue, Role, RetrievalResult
from recall.src.database.vector_store import MemoryVectorStore, StoreStats
from recall.src.utils.logger import get_logger, preview
from recall.src.utils.text_utils import title_from_first_turn

logger = get_logger(__name__)

LLM_ERROR_RESPONSE: str = "Sorry, something went wrong while generating a response. Please try again."


class MemoryService:
    """
    Cross-session memory for one chat deployment.

    Parameters
    ----------
    vector_store
        An initialised ``MemoryVectorStore``.
    retrieval_engine
        Optional custom ``RetrievalEngine`` (defaults to one over *vector_store*).
    classifier
        Optional custom ``RecallTriggerClassifier``.
    llm
        Optional LangChain chat model; ``ChatGoogleGenerativeAI`` is
        created on first use when omitted.
    """

    __slots__ = ("_store", "_engine", "_classifier", "_llm", "_pending")

    def __init__(self, vector_store: MemoryVectorStore, retrieval_engine: RetrievalEngine | None = None, classifier: RecallTriggerClassifier | None = None, llm: object | None = None) -> None:
        self._store = vector_store
        self._engine = retrieval_engine or RetrievalEngine(vector_store)
        self._classifier = classifier or RecallTriggerClassifier()
        self._llm = llm
        self._pending: set[asyncio.Task[int]] = set()


    @staticmethod
    def _init_llm() -> object:
        """Initialise the Gemini LLM via LangChain."""
        from langchain_google_genai import ChatGoogleGenerativeAI

        llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        logger.info("LLM initialised: %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
        return llm


    @property
    def retrieval_engine(self) -> RetrievalEngine:
        return self._engine

    # ══════════════════════════════════════════════════════════════════
    #  CALLER SURFACE
    # ══════════════════════════════════════════════════════════════════

    async def add_message(self, owner_id: str, conversation_id: str, message_id: str, role: Role | str, text: str, conversation_title: str = "", metadata: dict[str, MetadataValue] | None = None) -> bool:
        """Index one message.  Returns ``False`` (never raises) when it was not stored."""
        try:
            parsed_role = Role.parse(role)
        except ValueError:
            logger.warning("[MEMORY] Unknown role %r for message %s; not indexed.", role, message_id)
            return False

        record = MemoryRecord(owner_id=owner_id, conversation_id=conversation_id, message_id=message_id, role=parsed_role, text=text, conversation_title=conversation_title, metadata=dict(metadata or {}))
        return await self._store.add(record)


    async def retrieve(self, owner_id: str, query_text: str, k: int | str | None = None) -> list[RetrievalResult]:
        return await self._engine.retrieve(owner_id, query_text, k)


    async def delete_conversation(self, owner_id: str, conversation_id: str) -> int:
        """Remove one conversation's memories.  Raises ``ValidationError`` on bad ids."""
        return await self._store.delete_by_conversation(owner_id, conversation_id)


    async def delete_owner(self, owner_id: str) -> int:
        """Remove every memory of *owner_id*.  Raises ``ValidationError`` on a bad id."""
        return await self._store.delete_by_owner(owner_id)


    def should_retrieve(self, text: str) -> bool:
        return self._classifier.should_retrieve(text)


    @staticmethod
    def inject(history: list[ChatTurn], results: list[RetrievalResult]) -> list[ChatTurn]:
        return inject(history, results)


    def stats(self) -> StoreStats:
        return {**self._store.stats(), "pending_indexing": len(self._pending)}

    # ══════════════════════════════════════════════════════════════════
    #  RE-INDEXING
    # ══════════════════════════════════════════════════════════════════

    async def update_conversation(self, owner_id: str, conversation_id: str, messages: list[dict[str, str]], conversation_title: str = "") -> int:
        """
        Replace everything indexed for one conversation with *messages*.

        Each message is ``{"role", "text"}`` with optional ``message_id``
        (a fresh UUID otherwise).  Returns the number of messages stored.
        """
        await self._store.delete_by_conversation(owner_id, conversation_id)

        stored = 0
        for message in messages:
            message_id = message.get("message_id") or str(uuid.uuid4())
            if await self.add_message(owner_id, conversation_id, message_id, message.get("role", Role.USER.value), message.get("text", ""), conversation_title):
                stored += 1

        logger.info("[MEMORY] Re-indexed conversation %s: %d/%d message(s).", conversation_id, stored, len(messages))
        return stored

    # ══════════════════════════════════════════════════════════════════
    #  PER-TURN FLOW
    # ══════════════════════════════════════════════════════════════════

    async def prepare_history(self, owner_id: str, history: list[ChatTurn], message: str, k: int | None = None) -> list[ChatTurn]:
        """
        History to send to the model for *message*, with memories
        injected when the message warrants it.  Never raises.
        """
        if not self.should_retrieve(message):
            return history

        t_search = time.perf_counter()
        try:
            results = await self.retrieve(owner_id, message, k)
        except RecallError as exc:
            logger.warning("[MEMORY] Retrieval skipped: %s", exc)
            return history

        search_ms = (time.perf_counter() - t_search) * 1000
        logger.info("[MEMORY] Retrieved %d memor%s in %.1fms", len(results), "y" if len(results) == 1 else "ies", search_ms)
        return inject(history, results)


    async def respond(self, owner_id: str, conversation_id: str, history: list[ChatTurn], message: str) -> str:
        """
        Full turn: trigger → retrieve → inject → Gemini → background indexing.

        Returns the model's text.  An LLM failure returns a fixed apology
        and nothing is indexed for that turn.
        """
        t_start = time.perf_counter()
        augmented = await self.prepare_history(owner_id, history, message)

        if self._llm is None:
            self._llm = self._init_llm()

        t_llm = time.perf_counter()
        try:
            response_obj = await self._llm.ainvoke(to_langchain_messages(augmented, message))  # type: ignore[union-attr]
            answer = response_obj.content if hasattr(response_obj, "content") else str(response_obj)
        except Exception:
            logger.exception("[MEMORY] LLM call failed.")
            return LLM_ERROR_RESPONSE

        llm_ms = (time.perf_counter() - t_llm) * 1000
        self.schedule_indexing(owner_id, conversation_id, message, answer, history)

        total_ms = (time.perf_counter() - t_start) * 1000
        logger.info("[MEMORY] Turn total: %.1fms (llm=%.1f, %d chars)", total_ms, llm_ms, len(answer))
        return answer


    async def index_exchange(self, owner_id: str, conversation_id: str, user_text: str, agent_text: str, history: list[ChatTurn], metadata: dict[str, MetadataValue] | None = None) -> int:
        """
        Index a user message and the agent's reply concurrently.

        The conversation title comes from the first turn of *history*.
        Failures are logged and swallowed; returns messages stored.
        """
        title = title_from_first_turn(history)
        try:
            stored = await asyncio.gather(
                self.add_message(owner_id, conversation_id, str(uuid.uuid4()), Role.USER, user_text, title, metadata),
                self.add_message(owner_id, conversation_id, str(uuid.uuid4()), Role.AGENT, agent_text, title, metadata),
            )
        except Exception:
            logger.exception("[MEMORY] Background indexing failed for conversation %s.", conversation_id)
            return 0

        logger.debug("[MEMORY] Indexed %d/2 message(s) of '%s'", sum(stored), preview(user_text))
        return sum(stored)


    def schedule_indexing(self, owner_id: str, conversation_id: str, user_text: str, agent_text: str, history: list[ChatTurn], metadata: dict[str, MetadataValue] | None = None) -> asyncio.Task[int]:
        """Dispatch ``index_exchange`` as a fire-and-forget task."""
        task = asyncio.create_task(self.index_exchange(owner_id, conversation_id, user_text, agent_text, history, metadata))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task


    async def drain(self) -> None:
        """Wait for every scheduled indexing task (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


    async def search_chat_history(self, owner_id: str, query_text: str) -> str:
        return await self._engine.search_chat_history(owner_id, query_text)


def build_memory_service(db_path: str | Path | None = None, embedder: Embedder | None = None, cache: EmbeddingCache | None = None, llm: object | None = None) -> MemoryService:
    """
    Wire the production object graph: one cache, one client, one store.

    Raises ``IndexCorruptionError`` when the store cannot be opened.
    """
    client = EmbeddingClient(embedder or build_default_embedder(), cache or EmbeddingCache())
    store = MemoryVectorStore(client, db_path=str(db_path) if db_path else None)
    logger.info("[MEMORY] Memory service ready: %r", store)
    return MemoryService(store, llm=llm)
