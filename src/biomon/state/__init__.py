"""State management for BIOMON sessions."""

from .schema import (
    ApplyChoice,
    Character,
    Condition,
    GameState,
    LogEntry,
    LogType,
    RollEvent,
    RollOutcome,
    SessionMetadata,
    Severity,
)
from .manager import SessionManager
from .store import JsonSessionStore, MemorySessionStore, SessionStore
from .event_bus import (
    EventBus,
    EventType,
    GameEvent,
)

__all__ = [
    # Schema
    "ApplyChoice",
    "Character",
    "Condition",
    "GameState",
    "LogEntry",
    "LogType",
    "RollEvent",
    "RollOutcome",
    "SessionMetadata",
    "Severity",
    # Manager
    "SessionManager",
    # Store
    "SessionStore",
    "JsonSessionStore",
    "MemorySessionStore",
    # Events
    "EventBus",
    "EventType",
    "GameEvent",
]
