"""
Compile a pattern into the time-tagged events the sequencer schedules.
"""

from dataclasses import dataclass

from .pattern import Pattern
from .positions import (
    PICKUP_POSITION,
    PICKUP_SLOT,
    PREROLL_POSITION,
    SLOT_COUNT,
    Position,
    slot_to_position,
)


@dataclass(frozen=True, order=True)
class SequenceEvent:
    position: Position
    slot_index: int

    @property
    def musical_position(self) -> str:
        return str(self.position)


@dataclass(frozen=True)
class CompiledSequence:
    sound: tuple[SequenceEvent, ...]       # enabled slots only
    time: tuple[SequenceEvent, ...]        # all 32 slots
    pickup: SequenceEvent                  # cue on the '&' of beat 0
    preroll: SequenceEvent | None          # slot 31 echoed before beat 1


def compile_pattern(pattern: Pattern) -> CompiledSequence:
    sound = tuple(
        SequenceEvent(slot_to_position(beat.index), beat.index)
        for beat in pattern if beat.enabled
    )
    time = tuple(
        SequenceEvent(slot_to_position(index), index)
        for index in range(SLOT_COUNT)
    )
    last = SLOT_COUNT - 1
    preroll = SequenceEvent(PREROLL_POSITION, last) if pattern[last].enabled else None
    return CompiledSequence(
        sound=sound,
        time=time,
        pickup=SequenceEvent(PICKUP_POSITION, PICKUP_SLOT),
        preroll=preroll,
    )
