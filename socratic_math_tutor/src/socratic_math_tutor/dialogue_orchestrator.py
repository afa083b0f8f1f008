"""
Dialogue Orchestrator

Façade used by request handlers. One call per chat turn:

    user text -> SessionManager.append_message
              -> StuckCounter.compute + CompletionDetector.evaluate
                 (on the updated transcript, before the reply exists)
              -> SocraticPromptEngine.build_context
              -> TutorLLMClient.generate
              -> SessionManager.append_message (tutor reply)
              -> EventBus "problem_completed" when the verdict flips

The orchestrator holds no session state of its own.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from socratic_math_tutor.completion_detector import CompletionDetector, CompletionScore
from socratic_math_tutor.errors import SessionNotFound
from socratic_math_tutor.events import PROBLEM_COMPLETED, SESSION_STARTED, EventBus, TutorEvent
from socratic_math_tutor.llm_client import TutorLLMClient
from socratic_math_tutor.prompts import SocraticPromptEngine
from socratic_math_tutor.session_manager import SessionManager
from socratic_math_tutor.session_state import (
    ConversationContext,
    DifficultyMode,
    Message,
    ProblemRef,
    Role,
    Session,
)
from socratic_math_tutor.stuck_counter import StuckCounter

logger = logging.getLogger(__name__)

BASE_TEMPERATURE = 0.7
STUCK_TEMPERATURE = 0.8
STUCK_TEMPERATURE_LEVEL = 2
TURN_MAX_TOKENS = 250
OPENING_MAX_TOKENS = 200


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one `continue_dialogue` call."""
    tutor_message: Message
    completion: CompletionScore
    stuck_level: int
    session_id: str

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "tutor_message": self.tutor_message.to_dict(),
            "completion": self.completion.to_dict(),
            "stuck_level": self.stuck_level,
        }


class DialogueOrchestrator:
    """
    Drives a Socratic tutoring conversation.

    Usage:
        orchestrator = DialogueOrchestrator(SessionManager(), OpenAITutorClient())
        session = await orchestrator.begin(ProblemRef("2x + 5 = 13"))
        await orchestrator.opening_message(session.id)
        turn = await orchestrator.continue_dialogue(session.id, "x = 4")
    """

    def __init__(
        self,
        session_manager: SessionManager,
        llm_client: TutorLLMClient,
        stuck_counter: Optional[StuckCounter] = None,
        completion_detector: Optional[CompletionDetector] = None,
        prompt_engine: Optional[SocraticPromptEngine] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.session_manager = session_manager
        self.llm_client = llm_client
        self.stuck_counter = stuck_counter or StuckCounter()
        self.completion_detector = completion_detector or CompletionDetector()
        self.prompt_engine = prompt_engine or SocraticPromptEngine()
        self.event_bus = event_bus or EventBus()

    async def begin(
        self,
        problem: Optional[ProblemRef],
        user_id: Optional[str] = None,
        difficulty: DifficultyMode = DifficultyMode.MIDDLE,
    ) -> Session:
        """Start a session for a freshly submitted problem."""
        session = await self.session_manager.create_session(problem, user_id=user_id, difficulty=difficulty)
        await self.event_bus.emit(TutorEvent(
            type=SESSION_STARTED,
            session_id=session.id,
            user_id=user_id,
            data={"problem": problem.to_dict() if problem else None, "difficulty": session.difficulty.value},
        ))
        return session

    async def opening_message(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        difficulty: Optional[DifficultyMode] = None,
    ) -> Message:
        """
        Generate and store the tutor's first turn.

        Raises:
            SessionNotFound / SessionExpired, ProviderError
        """
        session = await self._require(session_id, user_id)
        difficulty = DifficultyMode.parse(difficulty or session.difficulty)

        reply = await self.llm_client.generate(
            self.prompt_engine.system_prompt(difficulty),
            self.prompt_engine.initial_prompt(session.problem),
            temperature=BASE_TEMPERATURE,
            max_tokens=OPENING_MAX_TOKENS,
        )
        tutor_message = Message.create(Role.TUTOR, reply)
        await self.session_manager.append_message(session_id, tutor_message, user_id=user_id)
        return tutor_message

    async def add_fallback_opening(self, session_id: str, user_id: Optional[str] = None) -> Message:
        """Store the static opening when the LLM could not produce one."""
        session = await self._require(session_id, user_id)
        tutor_message = Message.create(Role.TUTOR, self.prompt_engine.fallback_opening(session.problem))
        await self.session_manager.append_message(session_id, tutor_message, user_id=user_id)
        return tutor_message

    async def continue_dialogue(
        self,
        session_id: str,
        user_text: str,
        user_id: Optional[str] = None,
        difficulty: Optional[DifficultyMode] = None,
    ) -> TurnResult:
        """
        Process one student turn and produce the tutor's reply.

        Completion is judged on the transcript including the new student
        message but not the reply being generated.

        Raises:
            SessionNotFound / SessionExpired: before anything is generated
            ProviderError: the reply could not be generated; the student
                message stays in the transcript
        """
        user_message = Message.create(Role.USER, user_text)
        session = await self.session_manager.append_message(session_id, user_message, user_id=user_id)
        difficulty = DifficultyMode.parse(difficulty or session.difficulty)

        stuck_level, completion = self.assess(session)
        context = ConversationContext(
            session_id=session.id,
            problem=session.problem,
            messages=session.messages[-self.stuck_counter.WINDOW_SIZE:],
            stuck_count=stuck_level,
            last_hint_level=session.last_hint_level,
            difficulty=difficulty,
        )

        logger.info(
            f"🎯 [DialogueOrchestrator] Turn for {session_id[:8]}: stuck={stuck_level} "
            f"completion={completion.score} ({completion.confidence})"
        )

        temperature = STUCK_TEMPERATURE if stuck_level >= STUCK_TEMPERATURE_LEVEL else BASE_TEMPERATURE
        reply = await self.llm_client.generate(
            self.prompt_engine.system_prompt(difficulty),
            self.prompt_engine.build_context(context),
            temperature=temperature,
            max_tokens=TURN_MAX_TOKENS,
        )

        # Hint level first so the reply's write-behind carries it
        self.session_manager.record_hint_level(session_id, stuck_level)
        tutor_message = Message.create(Role.TUTOR, reply)
        await self.session_manager.append_message(session_id, tutor_message, user_id=user_id)

        if completion.is_completed:
            await self._complete(session, completion)

        return TurnResult(
            tutor_message=tutor_message,
            completion=completion,
            stuck_level=stuck_level,
            session_id=session_id,
        )

    def assess(self, session: Session) -> Tuple[int, CompletionScore]:
        """Stuck level and completion verdict for a transcript snapshot."""
        stuck_level = self.stuck_counter.compute(session.messages)
        completion = self.completion_detector.evaluate(session.messages, session.problem)
        return stuck_level, completion

    async def history(self, session_id: str, user_id: Optional[str] = None) -> Tuple[Message, ...]:
        session = await self._require(session_id, user_id)
        return session.messages

    async def end(self, session_id: str, user_id: Optional[str] = None) -> bool:
        return await self.session_manager.delete_session(session_id, user_id=user_id)

    async def _require(self, session_id: str, user_id: Optional[str]) -> Session:
        session = await self.session_manager.get_session(session_id, user_id=user_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def _complete(self, session: Session, completion: CompletionScore) -> None:
        # Only the turn that flips the status emits the event
        if await self.session_manager.mark_completed(session.id) is None:
            return
        logger.info(
            f"✅ [DialogueOrchestrator] Problem solved in session {session.id[:8]} "
            f"(score={completion.score}, confidence={completion.confidence})"
        )
        await self.event_bus.emit(TutorEvent(
            type=PROBLEM_COMPLETED,
            session_id=session.id,
            user_id=session.user_id,
            data={
                "problem": session.problem.to_dict() if session.problem else None,
                "completion": completion.to_dict(),
                "message_count": len(session.messages),
            },
        ))
