"""Response tables and the lookups that resolve rolls against them."""

from .tables import (
    DEFAULT_TABLES_PATH,
    TOTAL_CEILING,
    TOTAL_FLOOR,
    OutcomeEntry,
    OutcomeTable,
    TableConfigError,
    load_tables,
    parse_tables,
    validate_table,
)
from .resolver import (
    resolve_by_id,
    resolve_by_total,
    resolve_next_distinct_higher,
)

__all__ = [
    # Tables
    "DEFAULT_TABLES_PATH",
    "TOTAL_CEILING",
    "TOTAL_FLOOR",
    "OutcomeEntry",
    "OutcomeTable",
    "TableConfigError",
    "load_tables",
    "parse_tables",
    "validate_table",
    # Resolver
    "resolve_by_id",
    "resolve_by_total",
    "resolve_next_distinct_higher",
]
