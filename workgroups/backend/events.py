"""In-process publish/subscribe channel for session notifications.

Delivery is best effort: a failing subscriber is logged and skipped, and
never affects the state change that triggered the event.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

PARTICIPANT_JOINED = "participant_joined"
PARTICIPANT_UPDATED = "participant_updated"
PARTICIPANT_LEFT = "participant_left"
SESSION_PHASE_CHANGED = "session_phase_changed"
SCORE_SUBMITTED = "score_submitted"
SCORES_REVEALED = "scores_revealed"
SCORES_UNREVEALED = "scores_unrevealed"
ALL_READY = "all_ready"


@dataclass(frozen=True)
class SessionEvent:
    session_code: str
    type: str
    payload: dict[str, Any]

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type, "sessionCode": self.session_code, "payload": self.payload}


Subscriber = Callable[[SessionEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, session_code: str, event_type: str, payload: dict[str, Any]) -> SessionEvent:
        event = SessionEvent(session_code=session_code, type=event_type, payload=payload)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.warning(
                    "Dropping %s notification after subscriber failure",
                    event_type,
                    exc_info=True,
                    extra={"session_code": session_code, "event_type": event_type},
                )
        return event


class RecordingEventBus(EventBus):
    """Event bus that also keeps every published event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[SessionEvent] = []

    def publish(self, session_code: str, event_type: str, payload: dict[str, Any]) -> SessionEvent:
        event = super().publish(session_code, event_type, payload)
        self.events.append(event)
        return event

    def types(self) -> list[str]:
        return [event.type for event in self.events]
