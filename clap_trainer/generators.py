"""
Random question generators.

Each generator returns a fresh ``Pattern``. Pass ``rng`` for repeatable
output; otherwise the module-level ``random`` state is used.
"""

import random

from .pattern import Pattern
from .positions import PATTERN_BEATS, SUBDIVISIONS

# Offsets within one beat
ON, E, AND, A = 0, 1, 2, 3

QUARTER_POSITIONS = [beat * SUBDIVISIONS for beat in range(PATTERN_BEATS)]

# (cumulative probability, offsets to enable) per beat; the remainder is a rest
_HARD_TABLE = (
    (0.15, (ON, E, A)),
    (0.30, (E, A)),
    (0.45, (ON, E)),
    (0.60, (ON, A)),
    (0.70, (E,)),
    (0.80, (A,)),
    (0.90, (ON,)),
)

_HELL_TABLE = (
    (0.20, (ON, E, AND, A)),
    (0.35, (E, AND, A)),
    (0.50, (ON, E, A)),
    (0.65, (ON, AND, A)),
    (0.75, (E, A)),
    (0.85, (E, AND)),
    (0.92, (AND, A)),
    (0.97, (AND,)),
)


def _from_table(table, rng) -> Pattern:
    pattern = Pattern()
    for beat in range(PATTERN_BEATS):
        roll = rng.random()
        for limit, offsets in table:
            if roll < limit:
                for offset in offsets:
                    pattern.set(beat * SUBDIVISIONS + offset, True)
                break
    return pattern


def generate_easy(rng: random.Random | None = None) -> Pattern:
    """1-6 claps, quarter notes only."""
    rng = rng or random
    count = rng.randint(1, 6)
    return Pattern.from_indices(rng.sample(QUARTER_POSITIONS, count))


def generate_medium(rng: random.Random | None = None) -> Pattern:
    """Quarter notes, sometimes followed by the 'a' that leads into the next beat."""
    rng = rng or random
    return _from_table(((0.4, (ON,)), (0.7, (ON, A))), rng)


def generate_hard(rng: random.Random | None = None) -> Pattern:
    """'e' and 'a' syncopation, never the '&'."""
    return _from_table(_HARD_TABLE, rng or random)


def generate_hell(rng: random.Random | None = None) -> Pattern:
    """Dense sixteenth figures including the '&'."""
    return _from_table(_HELL_TABLE, rng or random)


GENERATORS = {
    "easy": generate_easy,
    "medium": generate_medium,
    "hard": generate_hard,
    "hell": generate_hell,
}
