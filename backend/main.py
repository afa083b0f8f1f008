"""
FastAPI Backend for the Socratic Math Tutor

Provides REST API endpoints with:
- Optional JWT authentication (guests allowed)
- Hybrid in-memory / Supabase session storage
- Stuck-level adaptation and completion detection on every turn
- Background expiry sweep of idle sessions
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
import os
import sys
import time
import asyncio
import logging

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the socratic_math_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'socratic_math_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client
from lib.auth import get_optional_user

from socratic_math_tutor.config import TutorSettings
from socratic_math_tutor.dialogue_orchestrator import DialogueOrchestrator
from socratic_math_tutor.errors import (
    ProviderError,
    ProviderTimeout,
    SessionExpired,
    SessionNotFound,
)
from socratic_math_tutor.events import PROBLEM_COMPLETED, TutorEvent
from socratic_math_tutor.llm_client import OpenAITutorClient
from socratic_math_tutor.session_manager import SessionManager
from socratic_math_tutor.session_repository import SupabaseSessionRepository
from socratic_math_tutor.session_state import DifficultyMode, ProblemRef
from socratic_math_tutor.session_sweeper import SessionSweeper

settings = TutorSettings.from_env()

# Singletons shared by all requests
_orchestrator: Optional[DialogueOrchestrator] = None
_sweeper: Optional[SessionSweeper] = None


def _log_completion(event: TutorEvent):
    completion = event.data.get("completion", {})
    logger.success("Problem completed", data={
        "session_id": event.session_id[:8],
        "user_id": event.user_id or "guest",
        "score": completion.get("score"),
        "confidence": completion.get("confidence"),
    })


def get_orchestrator() -> DialogueOrchestrator:
    """Get or create the singleton DialogueOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        repository = None
        if settings.persistence_enabled:
            client = get_supabase_client()
            if client is not None:
                repository = SupabaseSessionRepository(client)
            else:
                logger.warning("Supabase not configured - identified sessions are memory-only")

        session_manager = SessionManager(
            repository=repository,
            timeout_seconds=settings.session_timeout_seconds,
            max_messages=settings.max_messages,
        )
        llm_client = OpenAITutorClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            timeout_seconds=settings.request_timeout_seconds,
        )
        _orchestrator = DialogueOrchestrator(session_manager, llm_client)
        _orchestrator.event_bus.on(PROBLEM_COMPLETED, _log_completion)
    return _orchestrator


def get_sweeper() -> SessionSweeper:
    """Get or create the background sweeper."""
    global _sweeper
    if _sweeper is None:
        _sweeper = SessionSweeper(
            get_orchestrator().session_manager,
            interval_seconds=settings.sweep_interval_seconds,
        )
    return _sweeper


app = FastAPI(
    title="Socratic Math Tutor API",
    description="Guided-dialogue math tutoring with completion detection",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class ProblemIn(BaseModel):
    text: str
    type: Optional[str] = None
    confidence: float = 1.0


class ChatRequest(BaseModel):
    session_id: Optional[str] = None
    message: Optional[str] = None
    problem: Optional[ProblemIn] = None
    difficulty_mode: Optional[str] = None


class TutorReply(BaseModel):
    text: str
    timestamp: float


class CompletionOut(BaseModel):
    score: int
    is_completed: bool
    confidence: str
    reasons: List[str]
    answer: Optional[str] = None


class ChatResponse(BaseModel):
    success: bool = True
    session_id: str
    response: TutorReply
    completion: Optional[CompletionOut] = None
    stuck_level: Optional[int] = None


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    timestamp: float


# ==================== Error Handling ====================

PROVIDER_STATUS = {
    "auth": 502,
    "quota_exceeded": 502,
    "rate_limited": 429,
    "timeout": 504,
    "unknown": 500,
}


def _error(status: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message, **extra})


@app.exception_handler(SessionExpired)
async def session_expired_handler(request: Request, exc: SessionExpired):
    return _error(410, "Session expired. Please start a new conversation.")


@app.exception_handler(SessionNotFound)
async def session_not_found_handler(request: Request, exc: SessionNotFound):
    return _error(404, "Session not found. Please start a new conversation.")


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error("Tutor provider failure", error=exc, data={"kind": exc.kind, "path": request.url.path})
    return _error(PROVIDER_STATUS.get(exc.kind, 500), exc.user_message, retryable=exc.retryable)


# ==================== API Endpoints ====================

@app.get("/")
async def root(orchestrator: DialogueOrchestrator = Depends(get_orchestrator)):
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Socratic Math Tutor API",
        "version": "1.0.0",
        "sessions": orchestrator.session_manager.stats(),
    }


@app.post("/api/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    user_id: Optional[str] = Depends(get_optional_user),
    orchestrator: DialogueOrchestrator = Depends(get_orchestrator),
):
    """
    Start a conversation (body has `problem`) or continue one
    (body has `session_id` and `message`).
    """
    start_time = time.time()
    difficulty = DifficultyMode.parse(body.difficulty_mode or "middle")

    if body.problem:
        logger.request("POST", "/api/chat", user_id=user_id, data={"action": "begin"})
        problem = ProblemRef(text=body.problem.text, problem_type=body.problem.type, confidence=body.problem.confidence)
        session = await orchestrator.begin(problem, user_id=user_id, difficulty=difficulty)

        try:
            opening = await asyncio.wait_for(
                orchestrator.opening_message(session.id, user_id=user_id, difficulty=difficulty),
                timeout=settings.request_timeout_seconds,
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning("Opening message unavailable, using fallback", data={"error": str(e) or type(e).__name__})
            opening = await orchestrator.add_fallback_opening(session.id, user_id=user_id)

        logger.response(200, "/api/chat", duration=time.time() - start_time, data={"session_id": session.id[:8]})
        return ChatResponse(
            session_id=session.id,
            response=TutorReply(text=opening.content, timestamp=opening.timestamp),
        )

    if not body.session_id or not body.message:
        raise HTTPException(status_code=400, detail="Missing required fields: session_id and message")

    logger.request("POST", "/api/chat", user_id=user_id, data={
        "action": "continue",
        "session_id": body.session_id[:8],
        "message_length": len(body.message),
    })

    try:
        turn = await asyncio.wait_for(
            orchestrator.continue_dialogue(body.session_id, body.message, user_id=user_id, difficulty=difficulty),
            timeout=settings.request_timeout_seconds,
        )
    except asyncio.TimeoutError:
        raise ProviderTimeout()

    logger.response(200, "/api/chat", duration=time.time() - start_time, data={
        "session_id": body.session_id[:8],
        "stuck_level": turn.stuck_level,
        "completion_score": turn.completion.score,
        "completed": turn.completion.is_completed,
    })
    return ChatResponse(
        session_id=turn.session_id,
        response=TutorReply(text=turn.tutor_message.content, timestamp=turn.tutor_message.timestamp),
        completion=CompletionOut(**turn.completion.to_dict()),
        stuck_level=turn.stuck_level,
    )


@app.get("/api/sessions/{session_id}/messages", response_model=List[MessageOut])
async def get_session_messages(
    session_id: str,
    user_id: Optional[str] = Depends(get_optional_user),
    orchestrator: DialogueOrchestrator = Depends(get_orchestrator),
):
    """Return the session transcript in order."""
    messages = await orchestrator.history(session_id, user_id=user_id)
    return [MessageOut(**message.to_dict()) for message in messages]


@app.delete("/api/sessions/{session_id}")
async def delete_session(
    session_id: str,
    user_id: Optional[str] = Depends(get_optional_user),
    orchestrator: DialogueOrchestrator = Depends(get_orchestrator),
):
    """End a session and remove it from both storage tiers."""
    removed = await orchestrator.end(session_id, user_id=user_id)
    if not removed and not user_id:
        raise SessionNotFound(session_id)
    return {"status": "deleted", "session_id": session_id}


@app.on_event("startup")
async def startup_event():
    """Start the background session sweeper."""
    await get_sweeper().start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the sweeper and let pending session writes land."""
    await get_sweeper().stop()
    await get_orchestrator().session_manager.flush()
    logger.info("🛑 Session sweeper stopped, pending writes flushed")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
