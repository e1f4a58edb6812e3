"""
Apply / undo tracking for BIOMON roll outcomes.

A fresh outcome is pending. The GM can commit it (apply), commit its
stress change (apply_stress_delta), or both, in either order. Undo
reverses whatever was committed and returns the outcome to pending.

Every entry point takes the event id the GM is looking at. If it no longer
matches the character's last roll the call is ignored, so a stale client
can never commit the wrong roll.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..rules.resolver import resolve_by_id, resolve_by_total
from ..state.event_bus import EventType
from ..state.schema import (
    MAX_STRESS,
    STRESS_DELTA_RANGE,
    Character,
    LogType,
    RollOutcome,
    Severity,
    clamp,
)
from .conditions import assert_consistent

if TYPE_CHECKING:
    from ..rules.tables import OutcomeEntry
    from ..state.manager import SessionManager

logger = logging.getLogger(__name__)

# Stress gained instead of a repeated stress response
DUPLICATE_STRESS_GAIN = 1


class ApplicationTracker:
    """State machine for committing and reversing roll outcomes."""

    def __init__(self, manager: "SessionManager"):
        self.manager = manager

    @property
    def _ledger(self):
        return self.manager.conditions

    def _current(self, character: Character, event_id: str) -> RollOutcome | None:
        outcome = character.last_roll_outcome
        if outcome is None or outcome.event_id != str(event_id or ""):
            logger.debug(f"Ignoring stale event {event_id!r} for {character.name}")
            return None
        return outcome

    def _choose_entry(
        self,
        outcome: RollOutcome,
        chosen_entry_id: str | None,
    ) -> "OutcomeEntry | None":
        """The entry to commit: the resolved one, or a permitted alternative."""
        table = self.manager.tables[outcome.severity]
        base = resolve_by_id(table, outcome.entry_id) or resolve_by_total(table, outcome.total)

        if chosen_entry_id is None or chosen_entry_id == "":
            return base

        allowed = {c.entry_id for c in outcome.apply_choices or []} or {base.id}
        if chosen_entry_id not in allowed:
            logger.debug(f"Rejecting choice {chosen_entry_id!r}, allowed: {sorted(allowed)}")
            return None
        return resolve_by_id(table, chosen_entry_id)

    def _commit_stress(
        self,
        character: Character,
        outcome: RollOutcome,
        delta: int,
        duplicate: bool,
    ) -> int:
        """Change stress and record the actual change so undo can reverse it."""
        before = clamp(character.stress, 0, MAX_STRESS)
        after = clamp(before + delta, 0, MAX_STRESS)
        character.stress = after

        outcome.stress_delta_applied = True
        outcome.stress_delta_applied_value = after - before
        outcome.applied_stress_duplicate = duplicate
        outcome.sync_applied()
        return after - before

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def apply(
        self,
        character: Character,
        event_id: str,
        chosen_entry_id: str | None = None,
    ) -> RollOutcome | None:
        """
        Commit the outcome, creating a condition if the entry is persistent.

        Args:
            character: Whose last roll is being applied
            event_id: The roll the GM is looking at
            chosen_entry_id: One of the outcome's apply choices (optional)

        Returns:
            The updated outcome, or None if nothing changed
        """
        outcome = self._current(character, event_id)
        if outcome is None:
            return None
        if outcome.committed:
            logger.debug(f"Outcome {outcome.event_id} already applied")
            return None

        entry = self._choose_entry(
            outcome,
            None if chosen_entry_id is None else str(chosen_entry_id),
        )
        if entry is None:
            return None

        stress_duplicate = (
            outcome.severity == Severity.STRESS
            and entry.persistent
            and self._ledger.has_live(character, entry.id)
        )

        # Nothing on the outcome is written until the condition exists
        condition = None
        if entry.persistent and not stress_duplicate:
            condition = self._ledger.create(character, entry)

        outcome.applied_entry_id = entry.id
        outcome.applied_entry_label = entry.label
        outcome.applied_entry_description = entry.description
        outcome.applied_entry_stress_delta = clamp(entry.stress_delta, *STRESS_DELTA_RANGE)
        outcome.applied_condition_id = condition.id if condition else None

        if stress_duplicate:
            # Repeated stress response: +1 stress instead of a second condition
            if not outcome.stress_delta_applied:
                self._commit_stress(character, outcome, DUPLICATE_STRESS_GAIN, duplicate=True)
            logger.info(
                f"[ROLL:APPLY] {character.name} stress duplicate={entry.id} "
                f"-> stress+1 (stress={character.stress})"
            )
        elif condition is not None:
            logger.info(
                f"[ROLL:APPLY] {character.name} {outcome.severity.value} "
                f"-> condition={condition.type} ({condition.id})"
            )
        else:
            logger.info(
                f"[ROLL:APPLY] {character.name} {outcome.severity.value} (no persistent condition)"
            )

        outcome.sync_applied()
        assert_consistent(character)

        log_type = LogType.PANIC if outcome.severity == Severity.PANIC else LogType.STRESS
        self.manager.log(log_type, f"{character.name} {entry.label} APPLIED")
        self.manager.emit(
            EventType.OUTCOME_APPLIED,
            character_id=character.id,
            event_id=outcome.event_id,
            entry_id=entry.id,
            condition_id=outcome.applied_condition_id,
            stress_duplicate=outcome.applied_stress_duplicate,
        )
        if outcome.applied_condition_id:
            self.manager.emit(
                EventType.CONDITION_ADDED,
                character_id=character.id,
                condition_id=outcome.applied_condition_id,
                condition_type=entry.id,
            )
        self.manager.mark_dirty()
        return outcome

    def apply_stress_delta(self, character: Character, event_id: str) -> RollOutcome | None:
        """
        Commit the outcome's stress change, at most once.

        Uses the applied entry's delta if the outcome was applied, otherwise
        the resolved entry's. A stress response the character already has
        live (from an earlier roll) is worth a flat +1 instead.
        """
        outcome = self._current(character, event_id)
        if outcome is None:
            return None
        if outcome.stress_delta_applied:
            logger.debug(f"Stress delta for {outcome.event_id} already applied")
            return None

        entry_type = outcome.applied_entry_id or outcome.entry_id
        duplicate = (
            outcome.severity == Severity.STRESS
            and self._ledger.find_live(
                character, entry_type, exclude_id=outcome.applied_condition_id
            ) is not None
        )
        delta = DUPLICATE_STRESS_GAIN if duplicate else outcome.pending_stress_delta
        if delta == 0:
            logger.debug(f"No stress delta to apply for {outcome.event_id}")
            return None

        change = self._commit_stress(character, outcome, delta, duplicate=duplicate)
        assert_consistent(character)

        logger.info(
            f"[ROLL:STRESS] {character.name} delta={delta:+d} duplicate={duplicate} "
            f"(stress={character.stress})"
        )
        self.manager.log(
            LogType.STRESS,
            f"{character.name} STRESS {change:+d} (NOW {character.stress})",
        )
        self.manager.emit(
            EventType.STRESS_DELTA_APPLIED,
            character_id=character.id,
            event_id=outcome.event_id,
            delta=change,
            duplicate=duplicate,
            stress=character.stress,
        )
        self.manager.mark_dirty()
        return outcome

    # -------------------------------------------------------------------------
    # Undo / Clear
    # -------------------------------------------------------------------------

    def undo(self, character: Character, event_id: str) -> RollOutcome | None:
        """
        Reverse everything committed for the outcome.

        Clears the condition apply created and takes back the recorded stress
        change. Roll history and mission log are left as they are.
        """
        outcome = self._current(character, event_id)
        if outcome is None:
            return None
        if not outcome.applied:
            logger.debug(f"Outcome {outcome.event_id} is not applied, nothing to undo")
            return None

        condition_id = outcome.applied_condition_id
        label = outcome.applied_entry_label or outcome.entry_label
        if condition_id:
            condition = character.get_condition(condition_id)
            if condition is not None:
                self._ledger.retire(character, condition)

        stress_change = 0
        if outcome.stress_delta_applied:
            stress_change = outcome.stress_delta_applied_value or 0
            character.stress = clamp(character.stress - stress_change, 0, MAX_STRESS)

        outcome.reset_commit()
        outcome.reset_stress_commit()
        assert_consistent(character)

        logger.info(
            f"[ROLL:UNDO] {character.name} event={outcome.event_id} "
            f"(condition_cleared={bool(condition_id)}, stress={-stress_change:+d})"
        )
        self.manager.log(LogType.INFO, f"{character.name} {label} UNDONE")
        self.manager.emit(
            EventType.OUTCOME_UNDONE,
            character_id=character.id,
            event_id=outcome.event_id,
            condition_id=condition_id,
            stress_restored=stress_change,
        )
        if condition_id:
            self.manager.emit(
                EventType.CONDITION_CLEARED,
                character_id=character.id,
                condition_id=condition_id,
            )
        self.manager.mark_dirty()
        return outcome

    def clear(self, character: Character) -> bool:
        """Detach the last roll outcome. Conditions and stress are untouched."""
        outcome = character.last_roll_outcome
        if outcome is None:
            return False

        character.last_roll_outcome = None
        logger.info(f"[ROLL:CLEAR] {character.name} event={outcome.event_id}")
        self.manager.emit(
            EventType.OUTCOME_CLEARED,
            character_id=character.id,
            event_id=outcome.event_id,
        )
        self.manager.mark_dirty()
        return True
