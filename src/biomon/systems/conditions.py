"""
Condition ledger for BIOMON.

Conditions are the lasting side of a roll: applying a persistent outcome
creates one, and clearing it (from the GM's condition list or via undo)
stamps cleared_at. A condition and the roll outcome that created it refer
to each other only by id. Clearing the condition resets the outcome's
commit so the two never disagree about whether the outcome is applied.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from ..state.event_bus import EventType
from ..state.schema import (
    SEVERITY_RANGE,
    Character,
    Condition,
    LogType,
    clamp,
)

if TYPE_CHECKING:
    from ..rules.tables import OutcomeEntry
    from ..state.manager import SessionManager

logger = logging.getLogger(__name__)

# Conditions the GM can toggle by hand, independent of any roll
MANUAL_CONDITIONS: dict[str, str] = {
    "fatigue": "FATIGUE",
}


def manual_condition_type(name: str) -> str:
    return f"condition_{name}"


def assert_consistent(character: Character) -> None:
    """
    Check that the last roll outcome agrees with the character's conditions.

    A failure here is a programming error, not a recoverable state.
    """
    outcome = character.last_roll_outcome
    if outcome is None:
        return
    assert outcome.applied == (outcome.committed or outcome.stress_delta_applied), (
        f"Outcome {outcome.event_id} applied flag out of sync"
    )
    if outcome.applied_condition_id is not None:
        assert outcome.committed, (
            f"Outcome {outcome.event_id} references a condition but was never applied"
        )
        condition = character.get_condition(outcome.applied_condition_id)
        assert condition is not None and condition.is_live, (
            f"Outcome {outcome.event_id} references cleared or missing condition "
            f"{outcome.applied_condition_id}"
        )


class ConditionLedger:
    """Creates, queries and clears conditions on a character."""

    def __init__(self, manager: "SessionManager"):
        self.manager = manager

    def create(
        self,
        character: Character,
        source: "OutcomeEntry | str",
        label: str | None = None,
        severity: int = 1,
    ) -> Condition:
        """
        Append a new live condition.

        Args:
            character: Who gets the condition
            source: The table entry being applied, or a manual condition type
            label: Display label (manual conditions only)
            severity: Severity rank (manual conditions only)
        """
        if isinstance(source, str):
            condition = Condition(
                type=source,
                label=label or source,
                severity=clamp(severity, *SEVERITY_RANGE),
            )
        else:
            condition = Condition(
                type=source.id,
                label=source.label,
                severity=clamp(source.severity, *SEVERITY_RANGE),
                duration_type=source.duration_type,
            )
        character.conditions.append(condition)
        logger.info(f"Condition added: {character.name} {condition.type} ({condition.id})")
        return condition

    def find_live(
        self,
        character: Character,
        condition_type: str,
        exclude_id: str | None = None,
    ) -> Condition | None:
        """First live condition of the given type, optionally skipping one id."""
        condition_type = str(condition_type or "")
        if not condition_type:
            return None
        for condition in character.conditions:
            if (
                condition.is_live
                and condition.type == condition_type
                and condition.id != exclude_id
            ):
                return condition
        return None

    def has_live(self, character: Character, condition_type: str) -> bool:
        return self.find_live(character, condition_type) is not None

    def retire(self, character: Character, condition: Condition) -> bool:
        """
        Stamp cleared_at and un-apply the roll that created the condition.

        Returns True if the condition was live before the call.
        """
        was_live = condition.is_live
        if was_live:
            condition.cleared_at = datetime.now()

        outcome = character.last_roll_outcome
        if outcome is not None and outcome.applied_condition_id == condition.id:
            outcome.reset_commit()

        assert_consistent(character)
        return was_live

    def clear(self, character: Character, condition_id: str) -> Condition | None:
        """
        Clear a condition by id.

        Clearing an already-cleared condition changes nothing. Unknown ids
        are ignored and return None.
        """
        condition = character.get_condition(str(condition_id or ""))
        if condition is None:
            logger.debug(f"Ignoring clear of unknown condition {condition_id!r}")
            return None

        if not self.retire(character, condition):
            return condition

        logger.info(f"Condition cleared: {character.name} {condition.type} ({condition.id})")
        self.manager.log(LogType.INFO, f"{character.name} CONDITION CLEARED: {condition.label}")
        self.manager.emit(
            EventType.CONDITION_CLEARED,
            character_id=character.id,
            condition_id=condition.id,
            condition_type=condition.type,
        )
        self.manager.mark_dirty()
        return condition

    def toggle(self, character: Character, name: str) -> Condition | None:
        """
        Toggle a manual condition on or off.

        Only names in MANUAL_CONDITIONS are accepted. Returns the condition
        that was added or cleared, or None if the name is unknown.
        """
        name = str(name or "").strip().lower()
        if name not in MANUAL_CONDITIONS:
            logger.debug(f"Ignoring toggle of unknown condition {name!r}")
            return None

        condition_type = manual_condition_type(name)
        label = MANUAL_CONDITIONS[name]
        existing = self.find_live(character, condition_type)

        if existing:
            self.retire(character, existing)
            self.manager.log(LogType.INFO, f"{character.name} RECOVERED FROM: {label}")
            self.manager.emit(
                EventType.CONDITION_CLEARED,
                character_id=character.id,
                condition_id=existing.id,
                condition_type=condition_type,
            )
            self.manager.mark_dirty()
            return existing

        condition = self.create(character, condition_type, label=label, severity=1)
        self.manager.log(LogType.INFO, f"{character.name} IS NOW {label}")
        self.manager.emit(
            EventType.CONDITION_ADDED,
            character_id=character.id,
            condition_id=condition.id,
            condition_type=condition_type,
        )
        self.manager.mark_dirty()
        return condition
