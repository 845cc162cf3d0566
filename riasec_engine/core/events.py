import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SECTION_COMPLETED = "section_completed"
    SESSION_COMPLETED = "session_completed"
    SESSION_ABANDONED = "session_abandoned"
    PATTERN_RECOGNIZED = "pattern_recognized"


class EngineEvent(BaseModel):
    """Signal handed to notification and gamification collaborators"""
    type: EventType
    session_id: str
    participant_id: str
    occurred_at: datetime = Field(default_factory=datetime.now)
    payload: Dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[EngineEvent], None]


class EventDispatcher:
    """Fan-out to subscribed handlers. A failing handler never affects the others"""

    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def dispatch(self, event: EngineEvent) -> int:
        """Deliver an event; returns how many handlers failed"""
        with self._lock:
            handlers = list(self._handlers)

        failures = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                failures += 1
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.type.value} on session {event.session_id}",
                    exc_info=True
                )

        logger.debug(f"Dispatched {event.type.value} for session {event.session_id} to {len(handlers)} handlers")
        return failures


class EventRecorder:
    """Keeps dispatched events in memory, most recent last"""

    def __init__(self, max_events: Optional[int] = 1000):
        self.max_events = max_events
        self.events: List[EngineEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: EngineEvent) -> None:
        with self._lock:
            self.events.append(event)
            if self.max_events and len(self.events) > self.max_events:
                del self.events[:len(self.events) - self.max_events]

    def of_type(self, event_type: EventType) -> List[EngineEvent]:
        with self._lock:
            return [event for event in self.events if event.type == event_type]
