"""
Slot and musical-position arithmetic.

Every conversion between grid slots, ``bar:beat:sixteenth`` positions and
seconds goes through this module. The pattern grid is 8 quarter beats of
4 sixteenths each (32 slots); playback reserves beat 0 for the pickup, so
slot ``i`` sounds at sixteenth ``i + 4`` of the transport timeline. The
recording pass starts at beat 9, one full pattern later, which is why
captured claps are indexed from 32.
"""

import math
from dataclasses import dataclass

from .config import TOLERANCE_MS

# ─── Grid Geometry ───────────────────────────────────────────────────────────
SUBDIVISIONS = 4           # sixteenths per quarter beat
BEATS_PER_BAR = 4
PATTERN_BEATS = 8
SLOT_COUNT = PATTERN_BEATS * SUBDIVISIONS      # 32
PICKUP_BEATS = 1           # beat 0 is the pickup region
RECORDING_OFFSET = SLOT_COUNT                  # claps land on slots 32..63
PICKUP_SLOT = -1           # sentinel for the pickup cue

SUBDIVISION_LABELS = ("", "e", "&", "a")

# Floating point slack when comparing slot distances against the tolerance
_EPSILON = 1e-9


@dataclass(frozen=True, order=True)
class Position:
    """A transport position counted in sixteenth notes from the start."""

    sixteenths: int

    @classmethod
    def of(cls, bar: int = 0, beat: int = 0, sixteenth: int = 0) -> "Position":
        return cls((bar * BEATS_PER_BAR + beat) * SUBDIVISIONS + sixteenth)

    @classmethod
    def beats(cls, beats: int) -> "Position":
        return cls(beats * SUBDIVISIONS)

    @classmethod
    def parse(cls, text: str) -> "Position":
        """Parse ``"bar:beat:sixteenth"``; beat and sixteenth may overflow."""
        parts = text.split(":")
        if len(parts) != 3:
            raise ValueError(f"position must be bar:beat:sixteenth, got {text!r}")
        bar, beat, sixteenth = (int(p) for p in parts)
        return cls.of(bar, beat, sixteenth)

    @property
    def bar(self) -> int:
        return self.sixteenths // (BEATS_PER_BAR * SUBDIVISIONS)

    @property
    def beat(self) -> int:
        return (self.sixteenths // SUBDIVISIONS) % BEATS_PER_BAR

    @property
    def sixteenth(self) -> int:
        return self.sixteenths % SUBDIVISIONS

    def __str__(self) -> str:
        return f"{self.bar}:{self.beat}:{self.sixteenth}"


# Fixed landmarks on the transport timeline
PICKUP_POSITION = Position.of(0, 0, 2)      # "&" of the pickup beat
PREROLL_POSITION = Position.of(0, 0, 3)     # slot 31 echoed before beat 1
LOOP_START = Position.beats(PICKUP_BEATS)
LOOP_END = Position.beats(PICKUP_BEATS + PATTERN_BEATS)
RECORD_START = LOOP_END                                   # beat 9
RECORD_END = Position.beats(PICKUP_BEATS + 2 * PATTERN_BEATS)  # beat 17


# ─── Slot Properties ─────────────────────────────────────────────────────────

def slot_quarter(index: int) -> int:
    return index // SUBDIVISIONS


def slot_subdivision(index: int) -> int:
    return index % SUBDIVISIONS


def is_main_slot(index: int) -> bool:
    return slot_subdivision(index) == 0


def slot_label(index: int) -> str:
    """'1'..'8' on the beat, then 'e', '&', 'a'."""
    sub = slot_subdivision(index)
    if sub == 0:
        return str(slot_quarter(index) + 1)
    return SUBDIVISION_LABELS[sub]


def is_valid_slot(index: int) -> bool:
    return 0 <= index < SLOT_COUNT


def slot_to_position(index: int) -> Position:
    """Transport position where slot ``index`` sounds (after the pickup beat)."""
    return Position.of(0, slot_quarter(index) + PICKUP_BEATS, slot_subdivision(index))


# ─── Time Conversion ─────────────────────────────────────────────────────────

def sixteenth_duration(bpm: float) -> float:
    """Seconds per sixteenth note."""
    return 60.0 / bpm / SUBDIVISIONS


def position_to_seconds(position: Position, bpm: float) -> float:
    return position.sixteenths * sixteenth_duration(bpm)


def slot_index_from_time(seconds: float, bpm: float) -> int:
    """Nearest slot for a time measured from a slot-0 origin (halves round up)."""
    return math.floor(seconds / sixteenth_duration(bpm) + 0.5)


def recorded_slot(relative_seconds: float, bpm: float,
                  offset: int = RECORDING_OFFSET) -> int:
    """Slot index of a clap heard ``relative_seconds`` into the recording pass."""
    return slot_index_from_time(relative_seconds, bpm) + offset


def tolerance_slots(bpm: float, tolerance_ms: float = TOLERANCE_MS) -> float:
    """The fixed time tolerance expressed in slots at ``bpm``."""
    return (tolerance_ms / 1000.0) / sixteenth_duration(bpm)


def slot_distance(detected: int, expected: int) -> int:
    return abs(detected - expected)


def within_tolerance(detected: int, expected: int, bpm: float,
                     tolerance_ms: float = TOLERANCE_MS) -> bool:
    return slot_distance(detected, expected) <= tolerance_slots(bpm, tolerance_ms) + _EPSILON


def timing_error_ms(detected: int, expected: int, bpm: float) -> float:
    """Signed error in milliseconds; positive means late."""
    return (detected - expected) * sixteenth_duration(bpm) * 1000.0
