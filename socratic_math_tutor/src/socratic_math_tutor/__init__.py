"""Socratic math tutor: session lifecycle, stuck detection and completion scoring."""
from .completion_detector import CompletionDetector, CompletionScore, CompletionThresholds
from .dialogue_orchestrator import DialogueOrchestrator, TurnResult
from .errors import (
    PersistenceDegraded,
    ProviderError,
    SessionExpired,
    SessionNotFound,
    TutorError,
)
from .session_manager import SessionManager
from .session_state import ConversationContext, DifficultyMode, Message, ProblemRef, Role, Session
from .stuck_counter import StuckCounter

__all__ = [
    "CompletionDetector",
    "CompletionScore",
    "CompletionThresholds",
    "ConversationContext",
    "DialogueOrchestrator",
    "DifficultyMode",
    "Message",
    "PersistenceDegraded",
    "ProblemRef",
    "ProviderError",
    "Role",
    "Session",
    "SessionExpired",
    "SessionManager",
    "SessionNotFound",
    "StuckCounter",
    "TurnResult",
    "TutorError",
]
