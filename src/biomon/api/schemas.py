"""
Pydantic schemas for BIOMON websocket commands.

Every client message is a JSON object {"type": "<command>", ...payload}.
These models validate the payload and coerce primitives (numbers sent as
strings, ids sent as numbers) before anything reaches the session. Range
checks are left to the session, which clamps instead of rejecting.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

# Vitals accept floats; the session truncates and clamps them
Number = float


class Command(BaseModel):
    """Base for command payloads. The "type" key and unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


# -----------------------------------------------------------------------------
# Crew
# -----------------------------------------------------------------------------

class CharacterAddCommand(Command):
    name: str = ""
    max_health: Number | None = None
    health: Number | None = None
    stress: Number = 0
    resolve: Number = 0


class CharacterRemoveCommand(Command):
    character_id: str


class CharacterUpdateCommand(Command):
    character_id: str
    name: str | None = None
    max_health: Number | None = None
    health: Number | None = None
    stress: Number | None = None
    resolve: Number | None = None


# -----------------------------------------------------------------------------
# Rolls
# -----------------------------------------------------------------------------

class RollTriggerCommand(Command):
    character_id: str
    severity: str = "stress"
    modifiers: Number = 0


class RollApplyCommand(Command):
    character_id: str
    event_id: str
    chosen_entry_id: str | None = None


class RollEventCommand(Command):
    """Payload for commands that target one roll (stress delta, undo)."""
    character_id: str
    event_id: str


class RollClearCommand(Command):
    character_id: str


# -----------------------------------------------------------------------------
# Conditions
# -----------------------------------------------------------------------------

class ConditionClearCommand(Command):
    character_id: str
    condition_id: str


class ConditionToggleCommand(Command):
    character_id: str
    condition: str


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------

class SessionSaveCommand(Command):
    campaign_name: str = ""


class SessionLoadCommand(Command):
    filename: str = ""


class SessionImportCommand(Command):
    state: Any = None
