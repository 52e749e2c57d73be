"""
Recall - Context Injector
==========================
Presents retrieved memories to the generative model as a prior exchange
rather than as text appended to the live question.

``inject(history, results)`` returns the history followed by four
synthetic turns, so they sit immediately before the user's new message:

    1. user   directive (retrieved facts follow, prefer them)
    2. agent  the formatted retrieval results
    3. user   re-assertion (answer only from what was just provided)
    4. agent  acknowledgement

``to_langchain_messages`` converts ``{"role", "text"}`` turns into
LangChain message objects for ``ChatGoogleGenerativeAI``.
"""

from __future__ import annotations

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from recall.config.prompt_templates import MEMORY_ACKNOWLEDGEMENT, MEMORY_CONTEXT_HEADER, MEMORY_CONTEXT_LINE, MEMORY_DIRECTIVE, MEMORY_REASSERTION
from recall.config.settings import settings
from recall.src.database.models import ChatTurn, Role, RetrievalResult
from recall.src.utils.logger import get_logger
from recall.src.utils.text_utils import format_timestamp, snippet

logger = get_logger(__name__)


def format_memories(results: list[RetrievalResult]) -> str:
    """Numbered, one-line-per-hit block used as the agent context turn."""
    lines = [MEMORY_CONTEXT_HEADER, ""]
    for index, result in enumerate(results, 1):
        speaker = "You" if result.role is Role.USER else "Assistant"
        lines.append(MEMORY_CONTEXT_LINE.format(index=index, speaker=speaker, timestamp=format_timestamp(result.created_at), title=result.conversation_title or "Untitled chat", text=snippet(result.text, settings.SNIPPET_MAX_CHARS)))
    return "\n".join(lines)


def inject(history: list[ChatTurn], results: list[RetrievalResult]) -> list[ChatTurn]:
    """
    Return *history* augmented with the four-turn memory exchange.

    With no results the same *history* object is returned untouched.
    The input list is never mutated.
    """
    if not results:
        return history

    synthetic: list[ChatTurn] = [
        {"role": Role.USER.value, "text": MEMORY_DIRECTIVE},
        {"role": Role.AGENT.value, "text": format_memories(results)},
        {"role": Role.USER.value, "text": MEMORY_REASSERTION},
        {"role": Role.AGENT.value, "text": MEMORY_ACKNOWLEDGEMENT},
    ]
    logger.info("[INJECT] Injected %d memor%s into a %d-turn history.", len(results), "y" if len(results) == 1 else "ies", len(history))
    return [*history, *synthetic]


def to_langchain_messages(history: list[ChatTurn], new_message: str | None = None) -> list[BaseMessage]:
    """
    Convert turns to LangChain messages, optionally ending with *new_message*.

    ``system`` turns become ``SystemMessage``; agent-side roles
    (``agent``, ``assistant``, ``model``) become ``AIMessage``.
    """
    messages: list[BaseMessage] = []
    for turn in history:
        role = str(turn.get("role", "")).strip().lower()
        text = turn.get("text", "")
        if role == "system":
            messages.append(SystemMessage(content=text))
        elif Role.parse(role) is Role.USER:
            messages.append(HumanMessage(content=text))
        else:
            messages.append(AIMessage(content=text))

    if new_message is not None:
        messages.append(HumanMessage(content=new_message))
    return messages
