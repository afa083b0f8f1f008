"""
Error taxonomy for the tutoring engine.

Session errors are request-level failures surfaced to the caller.
Provider errors come from the completion-generation service and carry a
user-facing message plus a retry hint. Persistence problems are soft and
only ever logged.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all tutoring engine errors."""


class SessionNotFound(TutorError):
    """Raised when a session id is unknown to both storage tiers."""

    def __init__(self, session_id: str, message: Optional[str] = None):
        self.session_id = session_id
        super().__init__(message or f"Session {session_id} not found")


class SessionExpired(SessionNotFound):
    """Raised when a session exists but is past its time-to-live."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session {session_id} has expired")


class PersistenceDegraded(TutorError):
    """Persistence sink failed. Logged, never propagated to callers."""


class ProviderError(TutorError):
    """Failure reported by the completion-generation service."""

    kind = "unknown"
    retryable = False
    user_message = "The tutor is unavailable right now. Please try again."

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None):
        self.status = status
        super().__init__(message or self.user_message)


class ProviderAuthError(ProviderError):
    kind = "auth"
    user_message = (
        "Invalid API key. Please check your OpenAI API key. "
        "The key may be incorrect, expired, or revoked."
    )


class ProviderRateLimited(ProviderError):
    kind = "rate_limited"
    retryable = True
    user_message = "Rate limit exceeded. Please wait a moment and try again."


class ProviderQuotaExceeded(ProviderError):
    kind = "quota_exceeded"
    user_message = "OpenAI account quota exceeded. Please check your OpenAI account credits."


class ProviderTimeout(ProviderError):
    kind = "timeout"
    retryable = True
    user_message = "Request timed out. Please try again."


class ProviderUnknown(ProviderError):
    kind = "unknown"
