"""
Session lifecycle and domain operations.

SessionManager is the explicit session context: it owns the GameState and
every command goes through it. Roll resolution, application tracking and
the condition ledger live in biomon.systems and are reached through lazily
built properties.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from pydantic import ValidationError

from .event_bus import EventBus, EventType, GameEvent
from .schema import (
    DEFAULT_MAX_HEALTH,
    MAX_HEALTH_CAP,
    MAX_RESOLVE,
    MAX_STRESS,
    MISSION_LOG_LIMIT,
    NAME_MAX_LENGTH,
    Character,
    Condition,
    GameState,
    LogEntry,
    LogType,
    RollOutcome,
    Severity,
    clamp,
    generate_id,
)
from .store import JsonSessionStore, MemorySessionStore, SessionStore

if TYPE_CHECKING:
    from ..rules.tables import OutcomeTable
    from ..systems import ApplicationTracker, ConditionLedger, RollEngine
    from ..tools.dice import DieRoller

logger = logging.getLogger(__name__)

DEFAULT_NAME = "UNNAMED"


def clean_name(value, fallback: str = DEFAULT_NAME) -> str:
    return str(value if value is not None else "").strip()[:NAME_MAX_LENGTH] or fallback


class SessionManager:
    """
    Manages one BIOMON session.

    Storage is delegated to a SessionStore implementation:
    - JsonSessionStore for production (file-based)
    - MemorySessionStore for testing (in-memory)

    Every mutation calls mark_dirty(); whoever owns the manager decides
    when a dirty session actually reaches the store.
    """

    def __init__(
        self,
        store: SessionStore | Path | str | None = None,
        tables: dict[Severity, "OutcomeTable"] | None = None,
        roll_die: "DieRoller | None" = None,
        bus: EventBus | None = None,
        on_dirty: Callable[[], None] | None = None,
    ):
        """
        Initialize a session.

        Args:
            store: SessionStore instance, or path for JsonSessionStore.
                Defaults to an in-memory store.
            tables: Validated response tables (bundled tables if omitted)
            roll_die: d6 roller (uniform random if omitted)
            bus: Event bus to publish on (a private one if omitted)
            on_dirty: Called after every mutation
        """
        if store is None:
            self.store = MemorySessionStore()
        elif isinstance(store, (Path, str)):
            self.store = JsonSessionStore(store)
        else:
            self.store = store

        self.session_id = generate_id()
        self.state = GameState()
        self.bus = bus or EventBus()
        self.dirty = False
        self.on_dirty = on_dirty

        self._tables = tables
        self._roll_die = roll_die

        # Game systems (lazily initialized)
        self._roll_engine = None
        self._application_tracker = None
        self._condition_ledger = None

    @property
    def tables(self) -> dict[Severity, "OutcomeTable"]:
        """Response tables (bundled tables are loaded on first use)."""
        if self._tables is None:
            from ..rules.tables import load_tables
            self._tables = load_tables()
        return self._tables

    @property
    def rolls(self) -> "RollEngine":
        """Get the roll engine (lazy initialization)."""
        if self._roll_engine is None:
            from ..systems.rolls import RollEngine
            self._roll_engine = RollEngine(self, roll_die=self._roll_die)
        return self._roll_engine

    @property
    def application(self) -> "ApplicationTracker":
        """Get the application tracker (lazy initialization)."""
        if self._application_tracker is None:
            from ..systems.application import ApplicationTracker
            self._application_tracker = ApplicationTracker(self)
        return self._application_tracker

    @property
    def conditions(self) -> "ConditionLedger":
        """Get the condition ledger (lazy initialization)."""
        if self._condition_ledger is None:
            from ..systems.conditions import ConditionLedger
            self._condition_ledger = ConditionLedger(self)
        return self._condition_ledger

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def mark_dirty(self) -> None:
        """Flag the session as needing a save."""
        self.dirty = True
        if self.on_dirty:
            self.on_dirty()

    def mark_clean(self) -> None:
        self.dirty = False

    def emit(self, event_type: EventType, **data) -> GameEvent:
        return self.bus.emit(event_type, session_id=self.session_id, **data)

    def log(
        self,
        type: LogType | str,
        message: str,
        details: str | None = None,
    ) -> LogEntry:
        """Add a mission log line (newest first, oldest dropped past the cap)."""
        try:
            log_type = LogType(type)
        except ValueError:
            log_type = LogType.INFO
        entry = LogEntry(type=log_type, message=message, details=details)

        self.state.mission_log.insert(0, entry)
        if len(self.state.mission_log) > MISSION_LOG_LIMIT:
            del self.state.mission_log[MISSION_LOG_LIMIT:]
        return entry

    def get_character(self, character_id: str) -> Character | None:
        return self.state.get_character(str(character_id or ""))

    def _require_character(self, character_id: str) -> Character | None:
        character = self.get_character(character_id)
        if character is None:
            logger.debug(f"Ignoring command for unknown character {character_id!r}")
        return character

    # -------------------------------------------------------------------------
    # Snapshot Lifecycle
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict:
        """JSON-ready copy of the full session state."""
        return self.state.model_dump(mode="json")

    def load_snapshot(self, state: GameState | dict) -> GameState:
        """
        Replace the session state wholesale.

        Raises:
            ValidationError: if a dict snapshot doesn't match GameState
        """
        if isinstance(state, GameState):
            self.state = state.model_copy(deep=True)
        else:
            self.state = GameState.model_validate(state)

        for character in self.state.characters:
            self._normalize(character)

        logger.info(
            f"Session loaded: {len(self.state.characters)} characters, "
            f"campaign={self.state.metadata.campaign_name or 'unnamed'}"
        )
        self.emit(EventType.SESSION_LOADED, character_count=len(self.state.characters))
        return self.state

    def reset(self) -> None:
        """Start over with an empty session."""
        self.state = GameState()
        logger.info("[SESSION] Cleared")
        self.emit(EventType.SESSION_CLEARED)
        self.mark_dirty()

    def _normalize(self, character: Character) -> None:
        """Pull loaded vitals back into range (older or hand-edited saves)."""
        character.name = clean_name(character.name)
        character.max_health = clamp(character.max_health, 1, MAX_HEALTH_CAP)
        character.health = clamp(character.health, 0, character.max_health)
        character.stress = clamp(character.stress, 0, MAX_STRESS)
        character.resolve = clamp(character.resolve, 0, MAX_RESOLVE)
        outcome = character.last_roll_outcome
        if outcome is None:
            return
        if outcome.applied_condition_id is not None:
            condition = character.get_condition(outcome.applied_condition_id)
            if condition is None or not condition.is_live:
                logger.warning(
                    f"Dropping stale condition link {outcome.applied_condition_id} "
                    f"on {character.name}'s last roll"
                )
                outcome.reset_commit()
        outcome.sync_applied()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load_autosave(self) -> dict:
        """
        Restore the autosave if there is one.

        Returns an info dict for clients: found, plus timestamp,
        character_count and campaign_name when found.
        """
        try:
            state = self.store.load_autosave()
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"[AUTOSAVE] Failed to load: {e}")
            state = None

        if state is None:
            self.state = GameState()
            return {"found": False}

        self.load_snapshot(state)
        meta = self.state.metadata
        saved_at = meta.last_saved.isoformat() if meta.last_saved else None
        logger.info(f"[AUTOSAVE] Loaded previous session (saved: {saved_at or 'unknown time'})")
        return {
            "found": True,
            "timestamp": saved_at,
            "character_count": len(self.state.characters),
            "campaign_name": meta.campaign_name,
        }

    def autosave(self) -> bool:
        """Write the autosave and mark the session clean."""
        try:
            self.state.metadata.last_saved = datetime.now()
            self.store.save_autosave(self.state)
        except OSError as e:
            logger.error(f"[AUTOSAVE] Failed to save: {e}")
            return False
        self.mark_clean()
        logger.debug("[AUTOSAVE] State saved")
        return True

    def save_campaign(self, campaign_name: str) -> dict:
        """Save under a campaign name. Returns {success, filename | error}."""
        campaign_name = str(campaign_name or "").strip() or "unnamed"
        meta = self.state.metadata
        previous = meta.model_copy()

        meta.campaign_name = campaign_name
        meta.last_saved = datetime.now()
        meta.session_count += 1
        try:
            filename = self.store.save_campaign(self.state, campaign_name)
        except OSError as e:
            self.state.metadata = previous
            logger.error(f"[CAMPAIGN] Save failed: {e}")
            return {"success": False, "error": str(e)}

        logger.info(f"[CAMPAIGN] Saved: {filename}")
        self.log(LogType.SYSTEM, f"CAMPAIGN SAVED: {campaign_name}")
        self.emit(EventType.SESSION_SAVED, filename=filename, campaign_name=campaign_name)
        self.mark_dirty()
        return {"success": True, "filename": filename}

    def load_campaign(self, filename: str) -> dict:
        """Replace the session with a campaign save. Returns {success[, error]}."""
        filename = str(filename or "").strip()
        if not filename:
            return {"success": False, "error": "No filename provided"}

        try:
            state = self.store.load_campaign(filename)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"[CAMPAIGN] Load failed: {e}")
            return {"success": False, "error": str(e)}
        if state is None:
            return {"success": False, "error": "File not found"}

        self.load_snapshot(state)
        logger.info(f"[CAMPAIGN] Loaded: {filename}")
        self.log(
            LogType.SYSTEM,
            f"CAMPAIGN LOADED: {self.state.metadata.campaign_name or filename}",
        )
        self.mark_dirty()
        return {"success": True}

    def list_campaigns(self) -> list[dict]:
        try:
            return self.store.list_campaigns()
        except OSError as e:
            logger.error(f"[CAMPAIGN] List failed: {e}")
            return []

    def import_snapshot(self, data) -> dict:
        """Replace the session with a client-supplied export."""
        if not isinstance(data, dict):
            return {"success": False, "error": "Invalid data"}
        try:
            self.load_snapshot(data)
        except ValidationError as e:
            logger.warning(f"[SESSION] Import rejected: {e.error_count()} errors")
            return {"success": False, "error": "Invalid session data"}
        self.mark_dirty()
        return {"success": True}

    def clear_session(self) -> str | None:
        """Archive the autosave and start an empty session."""
        archived = None
        try:
            archived = self.store.archive_autosave()
        except OSError as e:
            logger.error(f"[SESSION] Archive failed: {e}")
        self.reset()
        self.log(LogType.SYSTEM, "SESSION CLEARED")
        return archived

    # -------------------------------------------------------------------------
    # Crew
    # -------------------------------------------------------------------------

    def add_character(
        self,
        name: str = "",
        max_health: int | None = None,
        health: int | None = None,
        stress: int = 0,
        resolve: int = 0,
    ) -> Character:
        """Add a crew member. Out-of-range vitals are clamped."""
        max_health = clamp(
            DEFAULT_MAX_HEALTH if max_health is None else max_health, 1, MAX_HEALTH_CAP
        )
        character = Character(
            name=clean_name(name),
            max_health=max_health,
            health=clamp(max_health if health is None else health, 0, max_health),
            stress=clamp(stress, 0, MAX_STRESS),
            resolve=clamp(resolve, 0, MAX_RESOLVE),
        )
        self.state.characters.append(character)

        logger.info(f"Character added: {character.name} ({character.id})")
        self.log(LogType.SYSTEM, f"CREW MEMBER ADDED: {character.name}")
        self.emit(EventType.CHARACTER_ADDED, character_id=character.id, name=character.name)
        self.mark_dirty()
        return character

    def remove_character(self, character_id: str) -> Character | None:
        character = self._require_character(character_id)
        if character is None:
            return None

        self.state.characters.remove(character)
        logger.info(f"Character removed: {character.name} ({character.id})")
        self.log(LogType.SYSTEM, f"CREW MEMBER REMOVED: {character.name}")
        self.emit(EventType.CHARACTER_REMOVED, character_id=character.id, name=character.name)
        self.mark_dirty()
        return character

    def update_character(
        self,
        character_id: str,
        name: str | None = None,
        max_health: int | None = None,
        health: int | None = None,
        stress: int | None = None,
        resolve: int | None = None,
    ) -> dict | None:
        """
        Edit a crew member's vitals.

        Only the fields passed are changed. Lowering max_health pulls health
        down with it. Dropping to 0 health is written to the mission log.

        Returns:
            Dict of changed fields as {field: (old, new)}, or None if the
            character doesn't exist
        """
        character = self._require_character(character_id)
        if character is None:
            return None

        before = character.model_dump(include={"name", "max_health", "health", "stress", "resolve"})

        if name is not None:
            character.name = clean_name(name, fallback=character.name)
        if max_health is not None:
            character.max_health = clamp(max_health, 1, MAX_HEALTH_CAP)
            character.health = min(character.health, character.max_health)
        if health is not None:
            character.health = clamp(health, 0, clamp(character.max_health, 1, MAX_HEALTH_CAP))
            if character.health == 0 and before["health"] != 0:
                self.log(LogType.HEALTH, f"{character.name} CRITICAL: HEALTH DROPPED TO 0")
        if stress is not None:
            character.stress = clamp(stress, 0, MAX_STRESS)
        if resolve is not None:
            character.resolve = clamp(resolve, 0, MAX_RESOLVE)

        after = character.model_dump(include=set(before))
        changes = {k: (before[k], after[k]) for k in before if before[k] != after[k]}

        if changes:
            logger.info(f"Character updated: {character.name} {sorted(changes)}")
            self.emit(
                EventType.CHARACTER_UPDATED,
                character_id=character.id,
                changes={k: v[1] for k, v in changes.items()},
            )
            self.mark_dirty()
        return changes

    def clear_party(self) -> None:
        """Remove every character along with roll history and mission log."""
        self.state.characters = []
        self.state.roll_events = []
        self.state.mission_log = []
        logger.info("Party cleared")
        self.log(LogType.SYSTEM, "PARTY CLEARED")
        self.emit(EventType.PARTY_CLEARED)
        self.mark_dirty()

    # -------------------------------------------------------------------------
    # Rolls & Conditions
    # -------------------------------------------------------------------------

    def trigger_roll(
        self,
        character_id: str,
        severity: Severity | str = Severity.STRESS,
        modifiers: int = 0,
    ) -> RollOutcome | None:
        character = self._require_character(character_id)
        if character is None:
            return None
        return self.rolls.trigger(character, severity, modifiers)

    def apply_outcome(
        self,
        character_id: str,
        event_id: str,
        chosen_entry_id: str | None = None,
    ) -> RollOutcome | None:
        character = self._require_character(character_id)
        if character is None:
            return None
        return self.application.apply(character, event_id, chosen_entry_id)

    def apply_stress_delta(self, character_id: str, event_id: str) -> RollOutcome | None:
        character = self._require_character(character_id)
        if character is None:
            return None
        return self.application.apply_stress_delta(character, event_id)

    def undo_outcome(self, character_id: str, event_id: str) -> RollOutcome | None:
        character = self._require_character(character_id)
        if character is None:
            return None
        return self.application.undo(character, event_id)

    def clear_outcome(self, character_id: str) -> bool:
        character = self._require_character(character_id)
        if character is None:
            return False
        return self.application.clear(character)

    def clear_condition(self, character_id: str, condition_id: str) -> Condition | None:
        character = self._require_character(character_id)
        if character is None:
            return None
        return self.conditions.clear(character, condition_id)

    def has_live_condition(self, character_id: str, condition_type: str) -> bool:
        character = self.get_character(character_id)
        if character is None:
            return False
        return self.conditions.has_live(character, condition_type)

    def toggle_condition(self, character_id: str, name: str) -> Condition | None:
        character = self._require_character(character_id)
        if character is None:
            return None
        return self.conditions.toggle(character, name)
