"""
Pydantic models for BIOMON session state.

Everything a session needs lives under GameState, which is what gets
serialized to JSON for autosaves, campaign saves and state broadcasts.
"""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field


# -----------------------------------------------------------------------------
# Limits
# -----------------------------------------------------------------------------

DEFAULT_MAX_HEALTH = 5
MAX_HEALTH_CAP = 10
MAX_STRESS = 10
MAX_RESOLVE = 10
MODIFIER_RANGE: tuple[int, int] = (-10, 10)
STRESS_DELTA_RANGE: tuple[int, int] = (-10, 10)
SEVERITY_RANGE: tuple[int, int] = (1, 5)

ROLL_HISTORY_LIMIT = 200
MISSION_LOG_LIMIT = 100
NAME_MAX_LENGTH = 40


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class Severity(str, Enum):
    """Which roll is being resolved. Selects the table and duplicate policy."""
    STRESS = "stress"   # Mild response, duplicates collapse to +1 stress
    PANIC = "panic"     # Severe response, duplicates bump to the next row


class LogType(str, Enum):
    INFO = "info"
    STRESS = "stress"
    PANIC = "panic"
    HEALTH = "health"
    SYSTEM = "system"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def generate_id() -> str:
    return str(uuid4())[:8]


def clamp(value, lo: int, hi: int) -> int:
    """
    Clamp a number into [lo, hi], truncating toward zero first.

    Non-numeric input falls back to the lower bound.
    """
    try:
        n = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return lo
    return max(lo, min(hi, n))


# -----------------------------------------------------------------------------
# Core Models
# -----------------------------------------------------------------------------

class ApplyChoice(BaseModel):
    """An alternative outcome the GM may apply instead of the rolled one."""
    entry_id: str
    label: str


class Condition(BaseModel):
    """
    A persistent effect on a character.

    Live while cleared_at is None. Once cleared it stays cleared.
    """
    id: str = Field(default_factory=generate_id)
    type: str  # Table entry id, or condition_<name> for manual toggles
    label: str
    severity: int = 1
    created_at: datetime = Field(default_factory=datetime.now)
    duration_type: Literal["manual"] = "manual"
    cleared_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.cleared_at is None


class RollOutcome(BaseModel):
    """
    The most recent roll on a character, plus what the GM did with it.

    The entry_* fields describe what the table resolved (after any duplicate
    bump). The applied_* fields describe what was actually committed, which
    may be a different entry when the GM picked one of apply_choices.
    """
    event_id: str = Field(default_factory=generate_id)
    severity: Severity
    die: int
    stress: int
    resolve: int
    modifiers: int
    total: int

    entry_id: str
    entry_label: str
    entry_description: str = ""
    entry_stress_delta: int = 0
    entry_persistent: bool = False

    duplicate_adjusted: bool = False
    duplicate_from_id: str | None = None
    duplicate_from_label: str | None = None
    duplicate_note: str | None = None

    apply_choices: list[ApplyChoice] | None = None

    applied: bool = False
    applied_condition_id: str | None = None
    applied_entry_id: str | None = None
    applied_entry_label: str | None = None
    applied_entry_description: str | None = None
    applied_entry_stress_delta: int | None = None
    applied_stress_duplicate: bool = False
    stress_delta_applied: bool = False
    stress_delta_applied_value: int | None = None

    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def committed(self) -> bool:
        """Whether apply() has run for this outcome."""
        return self.applied_entry_id is not None

    @property
    def pending_stress_delta(self) -> int:
        """Stress change the GM would commit: applied entry first, then resolved."""
        if self.applied_entry_stress_delta is not None:
            return self.applied_entry_stress_delta
        return self.entry_stress_delta

    def reset_commit(self) -> None:
        """Forget the apply() side of the commit."""
        self.applied_condition_id = None
        self.applied_entry_id = None
        self.applied_entry_label = None
        self.applied_entry_description = None
        self.applied_entry_stress_delta = None
        self.sync_applied()

    def reset_stress_commit(self) -> None:
        """Forget the stress-delta side of the commit."""
        self.stress_delta_applied = False
        self.stress_delta_applied_value = None
        self.applied_stress_duplicate = False
        self.sync_applied()

    def sync_applied(self) -> None:
        self.applied = self.committed or self.stress_delta_applied


class Character(BaseModel):
    """One tracked crew member."""
    id: str = Field(default_factory=generate_id)
    name: str
    health: int = DEFAULT_MAX_HEALTH
    max_health: int = DEFAULT_MAX_HEALTH
    stress: int = 0
    resolve: int = 0
    conditions: list[Condition] = Field(default_factory=list)
    last_roll_outcome: RollOutcome | None = None

    def get_condition(self, condition_id: str) -> Condition | None:
        for condition in self.conditions:
            if condition.id == condition_id:
                return condition
        return None

    @property
    def live_conditions(self) -> list[Condition]:
        return [c for c in self.conditions if c.is_live]


class RollEvent(BaseModel):
    """History copy of a roll. Never mutated after it is recorded."""
    event_id: str
    character_id: str
    severity: Severity
    die: int
    stress: int
    resolve: int
    modifiers: int
    total: int
    entry_id: str
    label: str
    description: str = ""
    stress_delta: int = 0
    duplicate_adjusted: bool = False
    duplicate_from_id: str | None = None
    duplicate_from_label: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_outcome(cls, character_id: str, outcome: RollOutcome) -> "RollEvent":
        return cls(
            event_id=outcome.event_id,
            character_id=character_id,
            severity=outcome.severity,
            die=outcome.die,
            stress=outcome.stress,
            resolve=outcome.resolve,
            modifiers=outcome.modifiers,
            total=outcome.total,
            entry_id=outcome.entry_id,
            label=outcome.entry_label,
            description=outcome.entry_description,
            stress_delta=outcome.entry_stress_delta,
            duplicate_adjusted=outcome.duplicate_adjusted,
            duplicate_from_id=outcome.duplicate_from_id,
            duplicate_from_label=outcome.duplicate_from_label,
            timestamp=outcome.timestamp,
        )


class LogEntry(BaseModel):
    """A line in the mission log."""
    id: str = Field(default_factory=generate_id)
    timestamp: datetime = Field(default_factory=datetime.now)
    type: LogType = LogType.INFO
    message: str
    details: str | None = None


class SessionMetadata(BaseModel):
    campaign_name: str | None = None
    created_at: datetime | None = Field(default_factory=datetime.now)
    last_saved: datetime | None = None
    session_count: int = 0


class GameState(BaseModel):
    """
    Complete session state.

    This is the root model that gets serialized to JSON.
    """
    schema_version: str = "1.0.0"
    characters: list[Character] = Field(default_factory=list)
    roll_events: list[RollEvent] = Field(default_factory=list)
    mission_log: list[LogEntry] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    def get_character(self, character_id: str) -> Character | None:
        for character in self.characters:
            if character.id == character_id:
                return character
        return None
