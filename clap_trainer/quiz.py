"""
Quiz and practice sessions.

A quiz plays the pattern once (beats 1-8 after the pickup beat), records
claps during the next eight beats (9-17) and scores them:

    idle → playing → recording → evaluating → result → idle

Phase transitions happen on the transport's audio channel so the
recording origin is the exact clock time of beat 9; listeners are told
about them on the visual channel.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from .config import TOLERANCE_MS
from .detector import OnsetDetector
from .errors import AudioInputError, StorageError, report_misuse
from .evaluation import QuizEvaluation, evaluate
from .pattern import Pattern
from .positions import LOOP_END, RECORD_END, RECORD_START
from .recording import CapturedOnset, RecordingSession
from .sequencer import Sequencer
from .storage import QuizHistory, QuizRecord

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    RECORDING = "recording"
    EVALUATING = "evaluating"
    RESULT = "result"


class QuizSession:
    def __init__(
        self,
        sequencer: Sequencer,
        detector: OnsetDetector,
        history: QuizHistory | None = None,
        on_phase_change: Optional[Callable[[Phase], None]] = None,
        on_quiz_result: Optional[Callable[[QuizEvaluation], None]] = None,
        on_clap: Optional[Callable[[CapturedOnset], None]] = None,
        tolerance_ms: float = TOLERANCE_MS,
    ):
        self.sequencer = sequencer
        self.tolerance_ms = tolerance_ms
        self.transport = sequencer.transport
        self.context = sequencer.context
        self.history = history
        self.on_phase_change = on_phase_change
        self.on_quiz_result = on_quiz_result
        self.on_clap = on_clap
        self.recording = RecordingSession(detector, self.context, on_clap=self._clap)
        self.phase = Phase.IDLE
        self.result: QuizEvaluation | None = None
        self.record: QuizRecord | None = None
        self.error: Exception | None = None
        self._pattern: Pattern | None = None
        self._pattern_name = "Custom"
        self._use_pickup = True
        self.transport.error_handlers.append(self._on_transport_error)

    @property
    def detector(self) -> OnsetDetector:
        return self.recording.detector

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        logger.info("quiz phase: %s", phase.value)
        if self.on_phase_change is not None:
            callback = self.on_phase_change
            self.transport.draw.post_now(lambda: callback(phase))

    def _clap(self, onset: CapturedOnset) -> None:
        if self.on_clap is not None:
            callback = self.on_clap
            self.transport.draw.post_now(lambda: callback(onset))

    # ── transitions ─────────────────────────────────────────────────

    def start(self, pattern: Pattern, pattern_name: str = "Custom",
              use_pickup: bool = True) -> bool:
        """Begin an attempt; raises AudioInputError when the microphone is unavailable."""
        with self.transport.lock:
            if self.phase not in (Phase.IDLE, Phase.RESULT) or self.transport.running:
                report_misuse(f"quiz start during {self.phase.value}", self.context.strict)
                return False
            self._pattern = pattern.copy()
            self._pattern_name = pattern_name
            self._use_pickup = use_pickup
            self.result = None
            self.record = None
            self.error = None

            try:
                self.detector.open()
            except AudioInputError as e:
                logger.warning("quiz aborted: %s", e)
                self.error = e
                self.abort()
                raise

            self.recording.reset()
            self.sequencer.load(self._pattern, loop=False, use_pickup=use_pickup)
            self.sequencer.at(RECORD_START, self._begin_recording)
            self.sequencer.at(RECORD_END, self._finish)
            self._set_phase(Phase.PLAYING)
            self.transport.start()
            return True

    def _begin_recording(self, at: float) -> None:
        try:
            self.recording.begin(at)
        except AudioInputError as e:
            logger.warning("recording failed: %s", e)
            self.error = e
            self.abort()
            return
        self._set_phase(Phase.RECORDING)

    def _finish(self, at: float) -> None:
        onsets = self.recording.end()
        self.sequencer.stop()
        self._set_phase(Phase.EVALUATING)

        evaluation = evaluate(self._pattern, onsets, self.context.bpm,
                              tolerance_ms=self.tolerance_ms)
        self.result = evaluation
        self.record = QuizRecord(
            evaluation=evaluation,
            pattern=self._pattern.copy(),
            bpm=self.context.bpm,
            pattern_name=self._pattern_name,
            use_pickup=self._use_pickup,
        )
        if self.history is not None:
            try:
                self.history.add(self.record)
            except StorageError as e:
                logger.warning("quiz result not saved: %s", e)
                self.error = e

        self._set_phase(Phase.RESULT)
        if self.on_quiz_result is not None:
            callback = self.on_quiz_result
            self.transport.draw.post_now(lambda: callback(evaluation))

    def _on_transport_error(self, error: Exception) -> None:
        with self.transport.lock:
            if not self.busy:
                return
            logger.warning("quiz aborted: playback failed: %s", error)
            self.error = error
            self.abort()

    def abort(self) -> None:
        """Stop everything and return to idle; releases the microphone."""
        with self.transport.lock:
            self.sequencer.stop()
            self.recording.end()
            self.detector.close()
            if self.phase is not Phase.IDLE:
                self._set_phase(Phase.IDLE)

    def invalidate(self) -> None:
        """The pattern was edited: drop a finished result."""
        with self.transport.lock:
            if self.phase is Phase.RESULT:
                self.result = None
                self.record = None
                self._set_phase(Phase.IDLE)

    @property
    def busy(self) -> bool:
        return self.phase in (Phase.PLAYING, Phase.RECORDING, Phase.EVALUATING)


class PracticeSession:
    """Plays a pattern on its own, looping or once, with no recording."""

    def __init__(self, sequencer: Sequencer,
                 on_phase_change: Optional[Callable[[Phase], None]] = None):
        self.sequencer = sequencer
        self.transport = sequencer.transport
        self.on_phase_change = on_phase_change
        self.phase = Phase.IDLE
        self.transport.error_handlers.append(self._on_transport_error)

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        if self.on_phase_change is not None:
            callback = self.on_phase_change
            self.transport.draw.post_now(lambda: callback(phase))

    def start(self, pattern: Pattern, loop: bool = True, use_pickup: bool = True) -> bool:
        with self.transport.lock:
            if self.phase is Phase.PLAYING or self.transport.running:
                report_misuse("practice start while playing", self.sequencer.context.strict)
                return False
            self.sequencer.load(pattern.copy(), loop=loop, use_pickup=use_pickup)
            if not loop:
                self.sequencer.at(LOOP_END, self._finished)
            self._set_phase(Phase.PLAYING)
            return self.transport.start()

    def _finished(self, at: float) -> None:
        self.stop()

    def _on_transport_error(self, error: Exception) -> None:
        if self.phase is Phase.PLAYING:
            logger.warning("practice stopped: playback failed: %s", error)
            self.stop()

    def stop(self) -> None:
        with self.transport.lock:
            self.sequencer.stop()
            if self.phase is not Phase.IDLE:
                self._set_phase(Phase.IDLE)
