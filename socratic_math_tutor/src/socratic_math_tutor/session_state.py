"""
Session State Data Model

Immutable snapshots for messages and tutoring sessions, plus the derived
per-turn context handed to prompt construction.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple


class Role(str, Enum):
    USER = "user"
    TUTOR = "tutor"


class DifficultyMode(str, Enum):
    ELEMENTARY = "elementary"
    MIDDLE = "middle"
    HIGH = "high"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value) -> "DifficultyMode":
        """Accept an enum member or its string value; unknown values fall back to middle."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MIDDLE


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Message:
    """One conversation turn. Never mutated after creation."""
    id: str
    role: Role
    content: str
    timestamp: float

    @classmethod
    def create(cls, role, content: str) -> "Message":
        return cls(
            id=str(uuid.uuid4()),
            role=Role(role),
            content=content,
            timestamp=time.time(),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            role=Role(data["role"]),
            content=data.get("content", ""),
            timestamp=float(data.get("timestamp") or time.time()),
        )


@dataclass(frozen=True)
class ProblemRef:
    """A parsed problem as handed over by the problem parser."""
    text: str
    problem_type: Optional[str] = None
    confidence: float = 1.0

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "type": self.problem_type,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ProblemRef"]:
        if not data or not data.get("text"):
            return None
        return cls(
            text=data["text"],
            problem_type=data.get("type"),
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass(frozen=True)
class Session:
    """
    Snapshot of a tutoring session.

    Mutations go through SessionManager, which swaps in a new snapshot
    built with `with_message` / `evolve`.
    """
    id: str
    problem: Optional[ProblemRef] = None
    messages: Tuple[Message, ...] = ()
    created_at: float = field(default_factory=time.time)
    user_id: Optional[str] = None
    difficulty: DifficultyMode = DifficultyMode.MIDDLE
    status: SessionStatus = SessionStatus.ACTIVE
    last_hint_level: int = 0
    last_activity: Optional[float] = None

    def with_message(self, message: Message, max_messages: int) -> "Session":
        # Keep the most recent `max_messages`, oldest dropped first
        messages = (self.messages + (message,))[-max_messages:]
        return replace(self, messages=messages, last_activity=message.timestamp)

    def evolve(self, **changes) -> "Session":
        return replace(self, **changes)

    def is_expired(self, timeout_seconds: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at > timeout_seconds


@dataclass(frozen=True)
class ConversationContext:
    """Per-turn view of a session. Recomputed every turn, never stored."""
    session_id: str
    problem: Optional[ProblemRef]
    messages: Tuple[Message, ...]
    stuck_count: int
    last_hint_level: int
    difficulty: DifficultyMode = DifficultyMode.MIDDLE
