"""Tools for BIOMON."""

from .dice import DieRoller, fixed_roller, make_roller, roll_d6

__all__ = [
    "DieRoller",
    "fixed_roller",
    "make_roller",
    "roll_d6",
]
