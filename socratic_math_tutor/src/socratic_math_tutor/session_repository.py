"""
Session Repository

Durable sink for identified users' sessions. The session store treats it
as optional: guests never touch it, and every call is made off the
request path.

Records are plain dicts shaped like the `sessions` table:
    id, user_id, problem, messages, context, difficulty_mode, status,
    started_at, last_activity, expires_at
"""

import threading
from typing import Any, Dict, Optional, Protocol, Tuple


class SessionRepository(Protocol):
    """Persistence port used by SessionManager. Implementations may block."""

    def save(self, record: Dict[str, Any]) -> None: ...

    def load(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]: ...

    def delete(self, session_id: str, user_id: str) -> None: ...


class SupabaseSessionRepository:
    """
    Stores session records in the Supabase `sessions` table.

    Errors from the client propagate; the session store decides how to
    degrade.
    """

    TABLE = "sessions"

    def __init__(self, supabase_client):
        """
        Args:
            supabase_client: supabase.Client instance
        """
        self.supabase = supabase_client

    def save(self, record: Dict[str, Any]) -> None:
        self.supabase.table(self.TABLE).upsert(record, on_conflict="id").execute()

    def load(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        result = (
            self.supabase.table(self.TABLE)
            .select("*")
            .eq("id", session_id)
            .eq("user_id", user_id)
            .execute()
        )
        if result.data and len(result.data) > 0:
            return result.data[0]
        return None

    def delete(self, session_id: str, user_id: str) -> None:
        (
            self.supabase.table(self.TABLE)
            .delete()
            .eq("id", session_id)
            .eq("user_id", user_id)
            .execute()
        )


class InMemorySessionRepository:
    """Process-local repository for development without Supabase."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[(record["id"], record["user_id"])] = dict(record)

    def load(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get((session_id, user_id))
            return dict(record) if record else None

    def delete(self, session_id: str, user_id: str) -> None:
        with self._lock:
            self._records.pop((session_id, user_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
