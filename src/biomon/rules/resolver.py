"""
Lookups over a validated response table.

All functions are pure. They assume the table passed validate_table(),
so a total always resolves to some entry.
"""

from .tables import OutcomeEntry, OutcomeTable


def resolve_by_total(table: OutcomeTable, total: int) -> OutcomeEntry:
    """
    Find the entry whose range contains total.

    Totals beyond every range land on the last (highest) entry.
    """
    for entry in table.entries:
        if entry.covers(total):
            return entry
    return table.ceiling


def resolve_by_id(table: OutcomeTable, entry_id: str) -> OutcomeEntry | None:
    return table.get(str(entry_id or ""))


def resolve_next_distinct_higher(
    table: OutcomeTable,
    total: int,
    exclude_id: str,
) -> OutcomeEntry | None:
    """
    Find the next row above the one that total currently resolves to.

    Used to escalate a duplicate panic result. Rows whose id is exclude_id
    are skipped. Returns None when nothing higher exists.
    """
    current = resolve_by_total(table, total)
    for entry in table.entries:
        if entry.min > current.max and entry.id != exclude_id:
            return entry
    return None
