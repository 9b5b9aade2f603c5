"""
Sequencer - puts a compiled pattern onto the transport.

Sound events trigger the context's pattern voice on the audio channel and
report ``on_beat_sounding(slot)`` on the visual channel; time markers only
report ``on_time_marker(slot)``.
"""

import logging
from functools import partial
from typing import Callable, Optional

from .errors import report_misuse
from .pattern import Accent, Pattern
from .positions import LOOP_END, LOOP_START, PICKUP_SLOT, Position
from .sequence import CompiledSequence, compile_pattern
from .transport import Transport

logger = logging.getLogger(__name__)

LOOP_LENGTH = LOOP_END.sixteenths - LOOP_START.sixteenths
PICKUP_OFFSET_DB = Accent.WEAK.offset_db

SlotCallback = Callable[[int], None]


class Sequencer:
    """Schedules sound and time-marker events for one pattern."""

    def __init__(self, transport: Transport,
                 on_beat_sounding: Optional[SlotCallback] = None,
                 on_time_marker: Optional[SlotCallback] = None):
        self.transport = transport
        self.context = transport.context
        self.on_beat_sounding = on_beat_sounding
        self.on_time_marker = on_time_marker
        self.compiled: CompiledSequence | None = None

    def _visual(self, fn: Optional[SlotCallback], slot: int):
        return partial(fn, slot) if fn is not None else None

    def _sound(self, offset_db: float, at: float) -> None:
        voice = self.context.voice
        if voice is None:
            return
        voice.set_volume(self.context.volume_db + offset_db, at)
        voice.trigger_attack_release(self.context.sixteenth, at)

    def load(self, pattern: Pattern, loop: bool = False, use_pickup: bool = True) -> CompiledSequence:
        """Schedule ``pattern`` without starting the transport."""
        if self.transport.running:
            report_misuse("sequencer load while the transport is running", self.context.strict)
            return self.compiled

        compiled = compile_pattern(pattern)
        repeat = LOOP_LENGTH if loop else 0
        schedule = self.transport.schedule

        for event in compiled.sound:
            accent = pattern[event.slot_index].accent
            schedule(event.position, partial(self._sound, accent.offset_db),
                     self._visual(self.on_beat_sounding, event.slot_index), repeat)
        for event in compiled.time:
            schedule(event.position, None,
                     self._visual(self.on_time_marker, event.slot_index), repeat)

        if use_pickup:
            schedule(compiled.pickup.position, partial(self._sound, PICKUP_OFFSET_DB),
                     self._visual(self.on_beat_sounding, PICKUP_SLOT))
        if compiled.preroll is not None:
            slot = compiled.preroll.slot_index
            schedule(compiled.preroll.position,
                     partial(self._sound, pattern[slot].accent.offset_db),
                     self._visual(self.on_beat_sounding, slot))
            schedule(compiled.preroll.position, None,
                     self._visual(self.on_time_marker, slot))

        self.compiled = compiled
        logger.debug("loaded %d sound events (loop=%s, pickup=%s, preroll=%s)",
                     len(compiled.sound), loop, use_pickup, compiled.preroll is not None)
        return compiled

    def at(self, position: Position, callback=None, visual=None) -> None:
        """Schedule an extra one-shot callback alongside the pattern."""
        self.transport.schedule(position, callback, visual)

    def play(self, pattern: Pattern, loop: bool = False, use_pickup: bool = True) -> bool:
        if self.transport.running:
            report_misuse("play while already playing", self.context.strict)
            return False
        self.load(pattern, loop, use_pickup)
        return self.transport.start()

    def stop(self) -> None:
        self.transport.stop()
        if self.context.output is not None:
            self.context.output.clear()
        self.compiled = None
