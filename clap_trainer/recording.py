"""
Recording session - turns claps heard during the recording pass into slots.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .detector import OnsetDetector
from .errors import report_misuse
from .positions import RECORDING_OFFSET, recorded_slot
from .transport import TransportContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapturedOnset:
    detected_at: float         # clock seconds
    slot_index: int            # already offset into the recording pass

    def to_dict(self) -> dict:
        return {"detectedAt": self.detected_at, "slotIndex": self.slot_index}


class RecordingSession:
    """
    Collects claps between ``begin(origin)`` and ``end()``.

    Slots are not bounds-checked: a clap before the pass or after slot 63
    stays in the buffer and is judged by the evaluator.
    """

    def __init__(self, detector: OnsetDetector, context: TransportContext,
                 offset: int = RECORDING_OFFSET,
                 on_clap: Optional[Callable[[CapturedOnset], None]] = None):
        self.detector = detector
        self.context = context
        self.offset = offset
        self.on_clap = on_clap
        self.origin = 0.0
        self._onsets: list[CapturedOnset] = []
        self._lock = threading.Lock()
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def onsets(self) -> tuple[CapturedOnset, ...]:
        with self._lock:
            return tuple(self._onsets)

    def reset(self) -> None:
        with self._lock:
            self._onsets.clear()

    def begin(self, origin: float) -> bool:
        if self._active:
            report_misuse("recording begin while already recording", self.context.strict)
            return False
        self.reset()
        self.origin = origin
        self._active = True
        try:
            self.detector.start(self._on_onset)
        except Exception:
            self._active = False
            self.detector.close()
            raise
        logger.info("recording from t=%.3f at %d bpm", origin, self.context.bpm)
        return True

    def _on_onset(self, detected_at: float) -> None:
        slot = recorded_slot(detected_at - self.origin, self.context.bpm, self.offset)
        onset = CapturedOnset(detected_at, slot)
        with self._lock:
            self._onsets.append(onset)
        logger.debug("clap at slot %d (%+.3fs)", slot, detected_at - self.origin)
        if self.on_clap is not None:
            self.on_clap(onset)

    def end(self) -> tuple[CapturedOnset, ...]:
        """Stop the detector, release the microphone and return the capture."""
        self.detector.close()
        was_active, self._active = self._active, False
        onsets = self.onsets
        if was_active:
            logger.info("recording ended with %d claps", len(onsets))
        return onsets
