"""
Session Manager

Two-tier session storage:
- In-memory tier: the source of truth for a session's lifetime. Holds
  immutable Session snapshots; every mutation swaps in a new snapshot
  under a lock, so readers always see a consistent transcript.
- Persistent tier (optional): identified users' sessions are written
  behind to a SessionRepository and read through on a cache miss.
  Persistence never blocks a chat turn and its failures are only logged.

Guests (no user id) never touch the persistent tier.
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set, Tuple

from socratic_math_tutor.errors import PersistenceDegraded, SessionExpired, SessionNotFound
from socratic_math_tutor.session_repository import SessionRepository
from socratic_math_tutor.session_state import (
    DifficultyMode,
    Message,
    ProblemRef,
    Session,
    SessionStatus,
)

logger = logging.getLogger(__name__)

SESSION_TIMEOUT_SECONDS = 30 * 60
MAX_MESSAGES = 100


def _to_iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _from_iso(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value or "null") or default
    return value


class SessionManager:
    """
    Owns every Session. No other component mutates sessions directly.

    Usage:
        manager = SessionManager(repository=SupabaseSessionRepository(client))
        session = await manager.create_session(problem, user_id="...")
        session = await manager.append_message(session.id, Message.create("user", "7"))
    """

    def __init__(
        self,
        repository: Optional[SessionRepository] = None,
        timeout_seconds: float = SESSION_TIMEOUT_SECONDS,
        max_messages: int = MAX_MESSAGES,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize SessionManager.

        Args:
            repository: Persistence sink for identified users (optional)
            timeout_seconds: Session time-to-live measured from creation
            max_messages: Transcript cap; the oldest messages are dropped
            clock: Source of "now" in epoch seconds
        """
        self.repository = repository
        self.use_persistence = repository is not None
        self.timeout_seconds = timeout_seconds
        self.max_messages = max_messages
        self._clock = clock

        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

        # Write-behind bookkeeping: every scheduled write, and the latest
        # write per session so writes for one session land in order
        self._pending: Set[asyncio.Task] = set()
        self._tails: Dict[str, asyncio.Task] = {}
        # Deleted (id, owner) -> deleted at; blocks later writes and hydration
        self._deleted: Dict[Tuple[str, str], float] = {}
        self.persistence_failures = 0

    # ==================== Serialization ====================

    def session_to_dict(self, session: Session) -> Dict[str, Any]:
        """Convert a Session to a `sessions` table record."""
        return {
            "id": session.id,
            "user_id": session.user_id,
            "problem": session.problem.to_dict() if session.problem else None,
            "messages": [message.to_dict() for message in session.messages],
            "context": {"last_hint_level": session.last_hint_level},
            "difficulty_mode": session.difficulty.value,
            "status": session.status.value,
            "started_at": _to_iso(session.created_at),
            "last_activity": _to_iso(session.last_activity or session.created_at),
            "expires_at": _to_iso(session.created_at + self.timeout_seconds),
        }

    def dict_to_session(self, data: Dict[str, Any]) -> Session:
        """Convert a `sessions` table record back to a Session."""
        messages = _json_field(data.get("messages"), [])
        context = _json_field(data.get("context"), {})
        created_at = _from_iso(data.get("started_at")) or self._clock()

        return Session(
            id=str(data["id"]),
            problem=ProblemRef.from_dict(_json_field(data.get("problem"), None)),
            messages=tuple(Message.from_dict(m) for m in messages)[-self.max_messages:],
            created_at=created_at,
            user_id=data.get("user_id"),
            difficulty=DifficultyMode.parse(data.get("difficulty_mode") or "middle"),
            status=SessionStatus(data.get("status") or "active"),
            last_hint_level=int(context.get("last_hint_level", 0)),
            last_activity=_from_iso(data.get("last_activity")),
        )

    # ==================== Operations ====================

    async def create_session(
        self,
        problem: Optional[ProblemRef] = None,
        user_id: Optional[str] = None,
        difficulty: DifficultyMode = DifficultyMode.MIDDLE,
    ) -> Session:
        """
        Create a new empty session.

        For identified users a best-effort write is scheduled; if it fails
        the session still lives in memory for its full TTL.
        """
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            problem=problem,
            created_at=now,
            user_id=user_id,
            difficulty=DifficultyMode.parse(difficulty),
            last_activity=now,
        )
        with self._lock:
            self._sessions[session.id] = session

        logger.info(f"💾 [SessionManager] Created session {session.id[:8]} ({'user' if user_id else 'guest'})")
        self._write_behind(session)
        return session

    async def get_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[Session]:
        """
        Look a session up, memory first.

        On a miss with a user id the persistent tier is consulted; an
        expired persisted record is deleted and treated as not found.

        Returns:
            Session snapshot or None if not found / expired
        """
        expired = False
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and self._is_expired(session):
                del self._sessions[session_id]
                expired = True

        if expired:
            logger.info(f"⏰ [SessionManager] Session {session_id[:8]} expired on access")
            return None
        if session is not None:
            return session if self._owned_by(session, user_id) else None

        if user_id and self.use_persistence:
            return await self._hydrate(session_id, user_id)
        return None

    async def append_message(
        self,
        session_id: str,
        message: Message,
        user_id: Optional[str] = None,
    ) -> Session:
        """
        Append a message and apply the transcript cap.

        Raises:
            SessionNotFound: unknown id (in both tiers)
            SessionExpired: session is past its TTL; it is evicted

        Returns:
            The updated Session snapshot
        """
        with self._lock:
            known = session_id in self._sessions
        if not known and user_id and self.use_persistence:
            await self._hydrate(session_id, user_id, raise_expired=True)

        expired = False
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not self._owned_by(session, user_id):
                raise SessionNotFound(session_id)
            if self._is_expired(session):
                del self._sessions[session_id]
                expired = True
            else:
                session = session.with_message(message, self.max_messages)
                self._sessions[session_id] = session

        if expired:
            logger.info(f"⏰ [SessionManager] Session {session_id[:8]} expired, evicted")
            raise SessionExpired(session_id)

        self._write_behind(session)
        return session

    async def mark_completed(self, session_id: str) -> Optional[Session]:
        """
        Flag the session as completed.

        Returns:
            The updated snapshot, or None if the session is gone or was
            already completed
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status == SessionStatus.COMPLETED:
                return None
            session = session.evolve(status=SessionStatus.COMPLETED)
            self._sessions[session_id] = session

        self._write_behind(session)
        return session

    def record_hint_level(self, session_id: str, level: int) -> Optional[Session]:
        """Remember the adaptation tier used for the latest reply."""
        return self._update(session_id, last_hint_level=level)

    def sweep_expired(self) -> int:
        """
        Remove every in-memory session older than the TTL.

        Runs under the same lock as mutations, so a session is never
        evicted halfway through an append.

        Returns:
            Number of sessions evicted
        """
        with self._lock:
            expired_ids = [
                session_id for session_id, session in self._sessions.items()
                if self._is_expired(session)
            ]
            for session_id in expired_ids:
                del self._sessions[session_id]

            now = self._clock()
            for key, deleted_at in list(self._deleted.items()):
                if now - deleted_at > self.timeout_seconds:
                    del self._deleted[key]

        if expired_ids:
            logger.info(f"🧹 [SessionManager] Swept {len(expired_ids)} expired session(s)")
        return len(expired_ids)

    async def delete_session(self, session_id: str, user_id: Optional[str] = None) -> bool:
        """
        Evict a session from both tiers.

        The persistent delete is queued behind any pending writes for the
        session and awaited, so a queued save cannot bring the row back.

        Returns:
            True if the session was present in memory
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and not self._owned_by(session, user_id):
                return False
            removed = self._sessions.pop(session_id, None) is not None
            owner = user_id or (session.user_id if session is not None else None)
            if owner and self.use_persistence:
                self._deleted[(session_id, owner)] = self._clock()

        if owner and self.use_persistence:
            await self._schedule(session_id, self.repository.delete, session_id, owner)
        return removed

    async def flush(self) -> None:
        """Wait for all scheduled persistence writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            active = len(self._sessions)
        return {
            "active_sessions": active,
            "pending_writes": len(self._pending),
            "persistence_enabled": self.use_persistence,
            "persistence_failures": self.persistence_failures,
        }

    # ==================== Internals ====================

    def _is_expired(self, session: Session) -> bool:
        return session.is_expired(self.timeout_seconds, now=self._clock())

    @staticmethod
    def _owned_by(session: Session, user_id: Optional[str]) -> bool:
        # A session bound to a user is invisible to a different user
        return not (session.user_id and user_id and session.user_id != user_id)

    def _update(self, session_id: str, **changes) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session = session.evolve(**changes)
            self._sessions[session_id] = session
        return session

    async def _hydrate(
        self,
        session_id: str,
        user_id: str,
        raise_expired: bool = False,
    ) -> Optional[Session]:
        with self._lock:
            if (session_id, user_id) in self._deleted:
                return None

        try:
            record = await asyncio.to_thread(self.repository.load, session_id, user_id)
        except Exception as e:
            self._degraded("load", session_id, e)
            return None

        if not record:
            return None

        try:
            expires_at = _from_iso(record.get("expires_at"))
            session = self.dict_to_session(record)
        except (KeyError, ValueError, TypeError) as e:
            self._degraded("decode", session_id, e)
            return None

        now = self._clock()
        if (expires_at is not None and expires_at <= now) or self._is_expired(session):
            logger.info(f"⏰ [SessionManager] Persisted session {session_id[:8]} expired, deleting")
            self._schedule(session_id, self.repository.delete, session_id, user_id)
            if raise_expired:
                raise SessionExpired(session_id)
            return None

        with self._lock:
            if (session_id, user_id) in self._deleted:
                return None
            # A concurrent request may have hydrated it first
            session = self._sessions.setdefault(session_id, session)

        logger.info(f"✅ [SessionManager] Loaded session {session_id[:8]} with {len(session.messages)} messages")
        return session

    def _write_behind(self, session: Session) -> None:
        if not session.user_id or not self.use_persistence:
            return
        with self._lock:
            if (session.id, session.user_id) in self._deleted:
                return
        self._schedule(session.id, self.repository.save, self.session_to_dict(session))

    def _schedule(self, session_id: str, operation: Callable, *args) -> asyncio.Task:
        previous = self._tails.get(session_id)
        task = asyncio.get_running_loop().create_task(
            self._run_after(previous, session_id, operation, *args)
        )
        self._pending.add(task)
        self._tails[session_id] = task

        def _done(finished: asyncio.Task) -> None:
            self._pending.discard(finished)
            if self._tails.get(session_id) is finished:
                del self._tails[session_id]

        task.add_done_callback(_done)
        return task

    async def _run_after(
        self,
        previous: Optional[asyncio.Task],
        session_id: str,
        operation: Callable,
        *args,
    ) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        try:
            await asyncio.to_thread(operation, *args)
        except Exception as e:
            self._degraded(getattr(operation, "__name__", "write"), session_id, e)

    def _degraded(self, action: str, session_id: str, error: Exception) -> None:
        self.persistence_failures += 1
        degraded = PersistenceDegraded(f"{action} failed for session {session_id}: {error}")
        logger.warning(f"⚠️ [SessionManager] Persistence degraded, using in-memory tier: {degraded}")
