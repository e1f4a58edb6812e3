"""
Dice rolling tools for BIOMON.

Stress and panic rolls use a single d6. The RNG is injectable so a session
(or a test) can make rolls reproducible.
"""

import random
from typing import Callable

DieRoller = Callable[[], int]


def roll_d6(rng: random.Random | None = None) -> int:
    """Roll a single d6."""
    return (rng or random).randint(1, 6)


def make_roller(seed: int | None = None) -> DieRoller:
    """Build a d6 roller with its own RNG, seeded if a seed is given."""
    rng = random.Random(seed)
    return lambda: roll_d6(rng)


def fixed_roller(*faces: int) -> DieRoller:
    """
    Roller that replays the given faces in order, then repeats the last one.

    Meant for tests and demos where the die has to be forced.
    """
    if not faces:
        raise ValueError("fixed_roller needs at least one face")
    remaining = list(faces)

    def roll() -> int:
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return roll
