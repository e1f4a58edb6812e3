"""Roll, application and condition systems for BIOMON."""

from .application import ApplicationTracker
from .conditions import ConditionLedger, assert_consistent
from .rolls import RollEngine, as_severity, roll_total

__all__ = [
    "ApplicationTracker",
    "ConditionLedger",
    "RollEngine",
    "as_severity",
    "assert_consistent",
    "roll_total",
]
