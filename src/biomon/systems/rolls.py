"""
Roll engine for BIOMON.

Computes stress and panic roll totals, resolves them against the response
tables and applies the duplicate policy:

- Panic: a persistent result the character already has live is escalated
  to the next distinct higher row.
- Stress: no escalation at roll time. A duplicate collapses to +1 stress
  when the GM commits it (see ApplicationTracker).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..rules.resolver import resolve_by_total, resolve_next_distinct_higher
from ..state.event_bus import EventType
from ..state.schema import (
    MAX_RESOLVE,
    MAX_STRESS,
    MODIFIER_RANGE,
    ROLL_HISTORY_LIMIT,
    STRESS_DELTA_RANGE,
    Character,
    LogType,
    RollEvent,
    RollOutcome,
    Severity,
    clamp,
)
from ..tools.dice import DieRoller, roll_d6

if TYPE_CHECKING:
    from ..state.manager import SessionManager

logger = logging.getLogger(__name__)


def as_severity(value) -> Severity:
    """Anything other than panic is treated as a stress roll."""
    if isinstance(value, Severity):
        return value
    return Severity.PANIC if str(value or "").strip().lower() == "panic" else Severity.STRESS


def roll_total(die: int, stress, resolve, modifiers) -> int:
    return (
        die
        + clamp(stress, 0, MAX_STRESS)
        - clamp(resolve, 0, MAX_RESOLVE)
        + clamp(modifiers, *MODIFIER_RANGE)
    )


def duplicate_note(label: str) -> str:
    return f"Duplicate result ({label}) already active. Showing next higher response."


class RollEngine:
    """Triggers rolls and records the resulting outcome on the character."""

    def __init__(self, manager: "SessionManager", roll_die: DieRoller | None = None):
        self.manager = manager
        self.roll_die = roll_die or roll_d6

    def trigger(
        self,
        character: Character,
        severity: Severity | str,
        modifiers: int = 0,
    ) -> RollOutcome:
        """
        Roll for a character and replace their last roll outcome.

        Args:
            character: Who is rolling
            severity: stress or panic (anything else is stress)
            modifiers: Situational modifier, clamped to [-10, 10]

        Returns:
            The new, unapplied RollOutcome
        """
        severity = as_severity(severity)
        table = self.manager.tables[severity]

        die = self.roll_die()
        stress = clamp(character.stress, 0, MAX_STRESS)
        resolve = clamp(character.resolve, 0, MAX_RESOLVE)
        modifiers = clamp(modifiers, *MODIFIER_RANGE)
        total = roll_total(die, stress, resolve, modifiers)

        entry = resolve_by_total(table, total)
        duplicate_from = None

        if (
            severity == Severity.PANIC
            and entry.persistent
            and self.manager.conditions.has_live(character, entry.id)
        ):
            bumped = resolve_next_distinct_higher(table, total, entry.id)
            if bumped is not None:
                duplicate_from = entry
                entry = bumped
            else:
                logger.debug(f"No higher panic response above {entry.id}, keeping duplicate")

        outcome = RollOutcome(
            severity=severity,
            die=die,
            stress=stress,
            resolve=resolve,
            modifiers=modifiers,
            total=total,
            entry_id=entry.id,
            entry_label=entry.label,
            entry_description=entry.description,
            entry_stress_delta=clamp(entry.stress_delta, *STRESS_DELTA_RANGE),
            entry_persistent=entry.persistent,
            apply_choices=[c.model_copy() for c in entry.apply_choices] or None,
        )
        if duplicate_from is not None:
            outcome.duplicate_adjusted = True
            outcome.duplicate_from_id = duplicate_from.id
            outcome.duplicate_from_label = duplicate_from.label
            outcome.duplicate_note = duplicate_note(duplicate_from.label)

        character.last_roll_outcome = outcome
        self._record(character, outcome)

        logger.info(
            f"[ROLL:{severity.value.upper()}] {character.name} d6={die} stress={stress} "
            f"resolve={resolve} mod={modifiers} => total={total} ({entry.id})"
        )
        return outcome

    def _record(self, character: Character, outcome: RollOutcome) -> None:
        """Append to roll history, mission log and event stream."""
        events = self.manager.state.roll_events
        events.append(RollEvent.from_outcome(character.id, outcome))
        if len(events) > ROLL_HISTORY_LIMIT:
            del events[: len(events) - ROLL_HISTORY_LIMIT]

        log_type = LogType.PANIC if outcome.severity == Severity.PANIC else LogType.STRESS
        self.manager.log(
            log_type,
            f"{character.name} {outcome.severity.value.upper()} ROLL: {outcome.entry_label}",
            details=f"d6={outcome.die} total={outcome.total}"
            + (f" ({outcome.duplicate_note})" if outcome.duplicate_note else ""),
        )
        self.manager.emit(
            EventType.ROLL_TRIGGERED,
            character_id=character.id,
            event_id=outcome.event_id,
            severity=outcome.severity.value,
            die=outcome.die,
            total=outcome.total,
            entry_id=outcome.entry_id,
            duplicate_adjusted=outcome.duplicate_adjusted,
        )
        self.manager.mark_dirty()
