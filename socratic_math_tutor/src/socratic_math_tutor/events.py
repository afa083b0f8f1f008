"""
Event Bus

Lets other parts of the application (progress tracking, notifications)
react to tutoring events without the dialogue code knowing about them.
Handler failures are logged and never reach the emitter.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

SESSION_STARTED = "session_started"
PROBLEM_COMPLETED = "problem_completed"


@dataclass
class TutorEvent:
    """Event payload."""
    type: str
    session_id: str
    user_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


EventHandler = Callable[[TutorEvent], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe with a bounded event history."""

    def __init__(self, max_history: int = 100):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self.history: Deque[TutorEvent] = deque(maxlen=max_history)

    def on(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """
        Subscribe to an event type.

        Returns:
            A callable that removes the subscription
        """
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.off(event_type, handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: TutorEvent) -> None:
        """Deliver an event to every subscriber. Sync and async handlers are supported."""
        self.history.append(event)
        for handler in list(self._handlers.get(event.type, [])):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"❌ [EventBus] Handler for '{event.type}' failed: {e}", exc_info=True)

    def recent(self, event_type: Optional[str] = None) -> List[TutorEvent]:
        if event_type is None:
            return list(self.history)
        return [event for event in self.history if event.type == event_type]
