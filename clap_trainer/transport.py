"""
Transport - the musical clock.

A ``Transport`` maps sixteenth-note positions to clock time at the tempo held
by its ``TransportContext`` and fires scheduled callbacks from a single
worker thread. Callbacks run on two channels:

* the audio channel, invoked ``lookahead`` seconds early with the exact
  clock time the event belongs to, so sounds can be placed precisely;
* the visual channel (``DrawChannel``), which receives the paired UI
  callback only after the audio callback returned and releases it no
  earlier than the event time, at most ``DRAW_HZ`` times per second.

An audio callback that raises stops the transport, after which every
function in ``Transport.error_handlers`` is called with the exception.

Both ``Transport.poll`` and ``DrawChannel.drain`` can be driven by hand
with ``threaded=False`` and an injected clock.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING

from .config import DEFAULT_BPM, DEFAULT_VOLUME_DB, DRAW_HZ, LOOKAHEAD, MAX_BPM, MIN_BPM
from .errors import report_misuse
from .positions import Position, position_to_seconds, sixteenth_duration

if TYPE_CHECKING:
    from .voices import AudioOutput, CueVoice, Voice

logger = logging.getLogger(__name__)

AudioCallback = Callable[[float], None]
VisualCallback = Callable[[], None]


class TransportContext:
    """
    Tempo, clock and output voices shared by one transport.

    Whoever holds the context owns the voices; the sequencer is the only
    component that triggers the pattern voice while playing.
    """

    def __init__(
        self,
        bpm: int = DEFAULT_BPM,
        clock: Callable[[], float] = time.monotonic,
        strict: bool = True,
        volume_db: float = DEFAULT_VOLUME_DB,
        output: AudioOutput | None = None,
        voice: Voice | None = None,
        cue: CueVoice | None = None,
    ):
        self._check_bpm(bpm)
        self._bpm = bpm
        self.clock = clock
        self.strict = strict
        self.volume_db = volume_db
        self.output = output
        self.voice = voice
        self.cue = cue
        self.locked = False

    @staticmethod
    def _check_bpm(bpm) -> None:
        if not MIN_BPM <= bpm <= MAX_BPM:
            raise ValueError(f"bpm must be within {MIN_BPM}-{MAX_BPM}, got {bpm}")

    @property
    def bpm(self) -> int:
        return self._bpm

    def set_bpm(self, bpm: int) -> bool:
        """Change tempo; refused while a session holds the tempo lock."""
        self._check_bpm(bpm)
        if self.locked:
            report_misuse(f"set_bpm({bpm}) while a session is active", self.strict)
            return False
        self._bpm = bpm
        return True

    @property
    def sixteenth(self) -> float:
        return sixteenth_duration(self._bpm)


@dataclass
class _Event:
    callback: Optional[AudioCallback]
    visual: Optional[VisualCallback]
    repeat: int = 0            # sixteenths between repeats, 0 for one-shot


class DrawChannel:
    """Low-priority queue of UI callbacks released at or after their due time."""

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 hz: float = DRAW_HZ, threaded: bool = True):
        self.clock = clock
        self.interval = 1.0 / hz
        self.threaded = threaded
        self._queue: list = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._generation = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if not self.threaded or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="draw-channel", daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._thread = None

    def post(self, due: float, fn: VisualCallback) -> None:
        with self._lock:
            heapq.heappush(self._queue, (due, next(self._seq), self._generation, fn))

    def post_now(self, fn: VisualCallback) -> None:
        self.post(self.clock(), fn)

    def cancel_all(self) -> None:
        with self._lock:
            self._queue.clear()
            self._generation += 1

    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def drain(self, now: float | None = None) -> int:
        """Run every callback due by ``now``; returns how many ran."""
        if now is None:
            now = self.clock()
        ran = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > now:
                    return ran
                _, _, generation, fn = heapq.heappop(self._queue)
                if generation != self._generation:
                    continue
            try:
                fn()
            except Exception:
                logger.exception("visual callback failed")
            ran += 1

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.drain()


class Transport:
    """Clock-driven scheduler for one playback session at a time."""

    def __init__(self, context: TransportContext, draw: DrawChannel | None = None,
                 lookahead: float = LOOKAHEAD, threaded: bool = True):
        self.context = context
        self.draw = draw or DrawChannel(clock=context.clock, threaded=threaded)
        self.lookahead = lookahead
        self.threaded = threaded

        # Held while callbacks fire; stop() takes it so nothing fires afterwards
        self.lock = threading.RLock()
        self._cond = threading.Condition(self.lock)
        self._heap: list = []
        self._seq = itertools.count()
        self._generation = 0
        self._running = False
        self._origin = 0.0
        self._thread: threading.Thread | None = None
        # Told about a failing audio callback after the transport has stopped
        self.error_handlers: list[Callable[[Exception], None]] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def origin(self) -> float:
        """Clock time of position 0 for the current run."""
        return self._origin

    def time_of(self, position: Position) -> float:
        return self._origin + position_to_seconds(position, self.context.bpm)

    def seconds(self) -> float:
        """Seconds since position 0, or 0 when stopped."""
        if not self._running:
            return 0.0
        return self.context.clock() - self._origin

    def pending(self) -> int:
        with self.lock:
            return len(self._heap)

    # ── scheduling ──────────────────────────────────────────────────

    def schedule(self, position: Position, callback: AudioCallback | None = None,
                 visual: VisualCallback | None = None, repeat: int = 0) -> None:
        """Register a callback at ``position``; ``repeat`` re-arms it every N sixteenths."""
        with self.lock:
            if self._running:
                report_misuse(f"schedule at {position} while the transport is running",
                              self.context.strict)
                return
            self._push(position.sixteenths, _Event(callback, visual, repeat))

    def _push(self, sixteenths: int, event: _Event) -> None:
        heapq.heappush(self._heap, (sixteenths, next(self._seq), event))

    def cancel_all(self) -> None:
        with self.lock:
            self._heap.clear()
            self._cond.notify_all()
        self.draw.cancel_all()

    # ── run control ─────────────────────────────────────────────────

    def start(self) -> bool:
        with self.lock:
            if self._running:
                report_misuse("start while the transport is running", self.context.strict)
                return False
            self._generation += 1
            self._origin = self.context.clock()
            self._running = True
            self.context.locked = True
            generation = self._generation
        logger.debug("transport started at %d bpm, %d events",
                     self.context.bpm, len(self._heap))
        if self.threaded:
            self.draw.start()
            self._thread = threading.Thread(
                target=self._run, args=(generation,), name="transport", daemon=True)
            self._thread.start()
        return True

    def stop(self) -> None:
        """Halt and discard everything pending; a restart begins at position 0."""
        with self.lock:
            was_running = self._running
            self._generation += 1
            self._running = False
            self.context.locked = False
            self._heap.clear()
            self._cond.notify_all()
        self.draw.cancel_all()
        self._thread = None
        if was_running:
            logger.debug("transport stopped")

    def poll(self, now: float | None = None) -> int:
        """Fire every audio callback whose deadline falls within the lookahead."""
        return self._poll(self._generation, now)

    def _deadline(self, sixteenths: int) -> float:
        return self._origin + sixteenths * self.context.sixteenth

    def _poll(self, generation: int, now: float | None) -> int:
        fired = 0
        with self.lock:
            if now is None:
                now = self.context.clock()
            while (self._running and generation == self._generation and self._heap
                   and self._deadline(self._heap[0][0]) - self.lookahead <= now):
                sixteenths, _, event = heapq.heappop(self._heap)
                if event.repeat:
                    self._push(sixteenths + event.repeat, event)
                at = self._deadline(sixteenths)
                if event.callback is not None:
                    try:
                        event.callback(at)
                    except Exception as e:
                        self._fail(e)
                        return fired
                if generation != self._generation:
                    # the callback stopped or restarted the transport
                    return fired + 1
                if event.visual is not None:
                    self.draw.post(at, event.visual)
                fired += 1
        return fired

    def _fail(self, error: Exception) -> None:
        logger.exception("transport callback failed, stopping")
        self.stop()
        for handler in list(self.error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("transport error handler failed")

    def _run(self, generation: int) -> None:
        while True:
            with self._cond:
                if generation != self._generation or not self._running:
                    return
                if not self._heap:
                    self._cond.wait()
                    continue
                wait = self._deadline(self._heap[0][0]) - self.lookahead - self.context.clock()
                if wait > 0:
                    self._cond.wait(timeout=wait)
                    continue
                self._poll(generation, None)
