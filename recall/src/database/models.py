"""
Recall - Record Types
======================
Value objects that cross the vector-store boundary.

``MemoryRecord``
    One embedded utterance as persisted in LanceDB.  Immutable; an
    update is a delete followed by a re-insert.
``RetrievalResult``
    One ranked hit handed to the caller for a single conversational
    turn and then discarded.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum

# Metadata values the store will round-trip through JSON
MetadataValue = str | int | float | bool | None
ChatTurn = dict[str, str]


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        """Accept enum members and the chat front-end's role spellings."""
        if isinstance(value, Role):
            return value
        lowered = str(value).strip().lower()
        if lowered in {"assistant", "model"}:
            return cls.AGENT
        return cls(lowered)


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class MemoryRecord:
    owner_id: str
    conversation_id: str
    message_id: str
    role: Role
    text: str
    conversation_title: str = ""
    created_at: int = field(default_factory=now_millis)
    metadata: dict[str, MetadataValue] = field(default_factory=dict)

    def to_row(self, vector: list[float]) -> dict[str, object]:
        """Flatten into a LanceDB row; metadata is stored as a JSON string."""
        return {
            "owner_id": self.owner_id,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "role": self.role.value,
            "text": self.text,
            "vector": vector,
            "created_at": self.created_at,
            "conversation_title": self.conversation_title,
            "metadata": json.dumps(self.metadata, default=str),
        }


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    text: str
    role: Role
    score: float
    created_at: int
    conversation_title: str
    conversation_id: str = ""
    # "vector" (similarity) or "lexical" (keyword overlap score)
    source: str = "vector"

    @classmethod
    def from_row(cls, row: dict[str, object], score: float, source: str) -> "RetrievalResult":
        return cls(
            text=str(row.get("text", "")),
            role=Role.parse(str(row.get("role", "user"))),
            score=float(score),
            created_at=int(row.get("created_at", 0) or 0),
            conversation_title=str(row.get("conversation_title", "") or ""),
            conversation_id=str(row.get("conversation_id", "") or ""),
            source=source,
        )
