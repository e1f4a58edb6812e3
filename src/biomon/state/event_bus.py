"""
Event bus for BIOMON state changes.

Provides decoupled communication between the session and whatever is
watching it (the websocket transport, tests, a log tail).

Usage:
    bus = manager.bus
    bus.on(EventType.ROLL_TRIGGERED, my_handler)

    # Manager emits when state changes
    bus.emit(EventType.ROLL_TRIGGERED, character_id="a1b2c3d4", total=7)

    # Handler receives event
    def my_handler(event: GameEvent):
        print(f"Rolled {event.data['total']}")
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Session events that can be published."""

    # Crew events
    CHARACTER_ADDED = "character.added"
    CHARACTER_REMOVED = "character.removed"
    CHARACTER_UPDATED = "character.updated"
    PARTY_CLEARED = "party.cleared"

    # Roll events
    ROLL_TRIGGERED = "roll.triggered"
    OUTCOME_APPLIED = "roll.applied"
    STRESS_DELTA_APPLIED = "roll.stress_delta_applied"
    OUTCOME_UNDONE = "roll.undone"
    OUTCOME_CLEARED = "roll.cleared"

    # Condition events
    CONDITION_ADDED = "condition.added"
    CONDITION_CLEARED = "condition.cleared"

    # Session events
    SESSION_LOADED = "session.loaded"
    SESSION_SAVED = "session.saved"
    SESSION_CLEARED = "session.cleared"


@dataclass
class GameEvent:
    """
    Event payload for the event bus.

    Attributes:
        type: The event type (from EventType enum)
        data: Event-specific payload as dict
        session_id: Session that produced the event
        timestamp: When the event was emitted
    """

    type: EventType
    data: dict = field(default_factory=dict)
    session_id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.type.value}] {self.data}"

    def to_dict(self) -> dict:
        return {
            "event_type": self.type.value,
            "data": self.data,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
        }


# Type alias for event handlers
EventHandler = Callable[[GameEvent], None]


class EventBus:
    """
    Synchronous event bus, one per session.

    Listeners run immediately on emit(), inside the command that caused the
    change. Async consumers should queue the event and do their I/O once
    the command has finished.
    """

    def __init__(self, history_limit: int = 100):
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: deque[GameEvent] = deque(maxlen=history_limit)

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe a handler to one event type. Re-subscribing is a no-op."""
        handlers = self._listeners.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def on_all(self, handler: EventHandler) -> None:
        """Subscribe a handler to every event type."""
        for event_type in EventType:
            self.on(event_type, handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_type: EventType, session_id: str = "", **data) -> GameEvent:
        """
        Publish an event to its subscribers.

        A handler that raises is logged and skipped; the remaining handlers
        still run.

        Returns:
            The published GameEvent
        """
        event = GameEvent(type=event_type, data=data, session_id=session_id)
        self._history.append(event)

        for handler in list(self._listeners.get(event_type, ())):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error in handler for {event_type.value}")

        return event

    def clear(self) -> None:
        """Drop every subscription."""
        self._listeners.clear()

    def get_history(self, event_type: EventType | None = None) -> list[GameEvent]:
        """Recent events, oldest first, optionally filtered by type."""
        return [e for e in self._history if event_type is None or e.type == event_type]

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, ()))
