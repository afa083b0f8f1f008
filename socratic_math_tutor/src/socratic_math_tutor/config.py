"""
Runtime configuration loaded from the environment (.env supported).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TutorSettings:
    """Tunable settings for sessions, the LLM provider and persistence."""
    session_timeout_seconds: int = 30 * 60
    sweep_interval_seconds: int = 5 * 60
    max_messages: int = 100
    request_timeout_seconds: int = 30
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    persistence_enabled: bool = True

    @classmethod
    def from_env(cls) -> "TutorSettings":
        return cls(
            session_timeout_seconds=_env_int("SESSION_TIMEOUT_SECONDS", 30 * 60),
            sweep_interval_seconds=_env_int("SESSION_SWEEP_INTERVAL_SECONDS", 5 * 60),
            max_messages=_env_int("SESSION_MAX_MESSAGES", 100),
            request_timeout_seconds=_env_int("TUTOR_REQUEST_TIMEOUT_SECONDS", 30),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET"),
            persistence_enabled=_env_bool("SESSION_PERSISTENCE_ENABLED", True),
        )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)
