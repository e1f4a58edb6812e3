"""
Stress and panic response tables.

Tables are static data: loaded from YAML once at startup and validated
before any roll is resolved against them. A table that leaves a gap or
overlap anywhere in the reachable total range is a configuration error.
"""

import logging
from pathlib import Path
from typing import Iterator, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..state.schema import (
    MAX_RESOLVE,
    MAX_STRESS,
    MODIFIER_RANGE,
    SEVERITY_RANGE,
    STRESS_DELTA_RANGE,
    ApplyChoice,
    Severity,
)

logger = logging.getLogger(__name__)

DEFAULT_TABLES_PATH = Path(__file__).parent / "data" / "response_tables.yaml"

DIE_FACES = 6

# Reachable totals: d6 + stress - resolve + modifiers, all clamped
TOTAL_FLOOR = 1 - MAX_RESOLVE + MODIFIER_RANGE[0]
TOTAL_CEILING = DIE_FACES + MAX_STRESS + MODIFIER_RANGE[1]


class TableConfigError(Exception):
    """A response table is malformed. Sessions must not start on it."""
    pass


class OutcomeEntry(BaseModel):
    """One row of a response table."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min: int
    max: int
    id: str
    label: str
    description: str = ""
    severity: int = Field(default=1, ge=SEVERITY_RANGE[0], le=SEVERITY_RANGE[1])
    persistent: bool = False
    duration_type: Literal["manual"] = "manual"
    stress_delta: int = Field(default=0, ge=STRESS_DELTA_RANGE[0], le=STRESS_DELTA_RANGE[1])
    apply_choices: tuple[ApplyChoice, ...] = Field(default=(), alias="apply_options")

    def covers(self, total: int) -> bool:
        return self.min <= total <= self.max


class OutcomeTable:
    """
    An ordered, validated response table.

    Entries are kept in ascending range order. The last entry doubles as
    the ceiling for totals beyond every range.
    """

    def __init__(self, severity: Severity, entries: list[OutcomeEntry]):
        self.severity = severity
        self.entries: tuple[OutcomeEntry, ...] = tuple(
            sorted(entries, key=lambda e: e.min)
        )
        self._by_id = {e.id: e for e in self.entries}
        validate_table(self)

    def __iter__(self) -> Iterator[OutcomeEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"OutcomeTable({self.severity.value}, {len(self.entries)} entries)"

    @property
    def ceiling(self) -> OutcomeEntry:
        return self.entries[-1]

    def get(self, entry_id: str) -> OutcomeEntry | None:
        return self._by_id.get(entry_id)


def validate_table(table: OutcomeTable) -> None:
    """
    Check that a table maps every reachable total to exactly one entry.

    Raises:
        TableConfigError: on empty tables, inverted or non-contiguous ranges,
            duplicate ids, a floor above the lowest reachable total, or
            apply choices that point at unknown entries.
    """
    name = table.severity.value
    entries = table.entries
    if not entries:
        raise TableConfigError(f"{name} table is empty")

    seen: set[str] = set()
    for entry in entries:
        if entry.min > entry.max:
            raise TableConfigError(
                f"{name} table entry {entry.id!r} has min {entry.min} > max {entry.max}"
            )
        if entry.id in seen:
            raise TableConfigError(f"{name} table has duplicate entry id {entry.id!r}")
        seen.add(entry.id)

    if entries[0].min > TOTAL_FLOOR:
        raise TableConfigError(
            f"{name} table starts at {entries[0].min}, "
            f"but totals can be as low as {TOTAL_FLOOR}"
        )

    for prev, nxt in zip(entries, entries[1:]):
        if nxt.min <= prev.max:
            raise TableConfigError(
                f"{name} table entries {prev.id!r} and {nxt.id!r} overlap"
            )
        if nxt.min != prev.max + 1:
            raise TableConfigError(
                f"{name} table has a gap between {prev.max} and {nxt.min}"
            )

    for entry in entries:
        for choice in entry.apply_choices:
            if choice.entry_id not in seen:
                raise TableConfigError(
                    f"{name} table entry {entry.id!r} offers unknown choice "
                    f"{choice.entry_id!r}"
                )


def _parse_entry(raw: dict) -> dict:
    """Normalize the YAML shape of apply options to ApplyChoice fields."""
    data = dict(raw)
    options = data.pop("apply_options", None) or []
    data["apply_options"] = tuple(
        ApplyChoice(entry_id=str(o.get("id", "")), label=str(o.get("label", "")))
        for o in options
    )
    return data


def parse_tables(data: dict) -> dict[Severity, OutcomeTable]:
    """Build validated tables from already-loaded YAML data."""
    if not isinstance(data, dict):
        raise TableConfigError("Table definition must be a mapping of severity -> entries")

    tables: dict[Severity, OutcomeTable] = {}
    for severity in Severity:
        rows = data.get(severity.value)
        if not isinstance(rows, list):
            raise TableConfigError(f"Missing {severity.value} table")
        try:
            entries = [OutcomeEntry.model_validate(_parse_entry(r)) for r in rows]
        except (ValidationError, AttributeError, TypeError, ValueError) as e:
            raise TableConfigError(f"Invalid {severity.value} table entry: {e}") from e
        tables[severity] = OutcomeTable(severity, entries)
    return tables


def load_tables(path: Path | str | None = None) -> dict[Severity, OutcomeTable]:
    """
    Load and validate the stress and panic tables.

    Args:
        path: YAML file to read. Defaults to the bundled tables.

    Raises:
        TableConfigError: if the file can't be read or fails validation.
    """
    path = Path(path) if path else DEFAULT_TABLES_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise TableConfigError(f"Could not read tables from {path}: {e}") from e

    tables = parse_tables(data)
    logger.info(
        f"Loaded response tables from {path.name}: "
        + ", ".join(f"{s.value}={len(t)}" for s, t in tables.items())
    )
    return tables
