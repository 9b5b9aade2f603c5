"""
Clap (onset) detection from the microphone.

A debounced energy threshold: the RMS of every input block (one analysis
frame) is compared against a fixed threshold, and a clap is reported when
it is exceeded and the dead time since the previous clap has passed.
Sustained loud sounds re-trigger once per dead time; that is a known
limitation of the approach and is not filtered.

The input stream callback only queues each block with its capture time
(audio thread); a separate polling thread analyses every queued block in
order, so no frame is skipped and onsets carry the time they were heard.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

import numpy as np

from .config import (
    ACQUIRE_TIMEOUT,
    ANALYSIS_BLOCK,
    DEBOUNCE_MS,
    ENERGY_THRESHOLD,
    POLL_HZ,
    SAMPLE_RATE,
)
from .errors import AudioInputError

logger = logging.getLogger(__name__)

OnsetCallback = Callable[[float], None]

# About three seconds of 512-sample blocks; older audio is dropped if analysis stalls
MAX_PENDING_BLOCKS = 256


def rms_energy(signal: np.ndarray) -> float:
    """Root-mean-square of a float signal in [-1, 1], clipped to [0, 1]."""
    if len(signal) == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(signal, dtype=np.float64))))
    return min(rms, 1.0)


class OnsetGate:
    """Threshold + dead-time decision, independent of any audio I/O."""

    def __init__(self, threshold: float = ENERGY_THRESHOLD, debounce_ms: float = DEBOUNCE_MS):
        self.threshold = threshold
        self.debounce = debounce_ms / 1000.0
        self.last_onset: float | None = None

    def reset(self) -> None:
        self.last_onset = None

    def feed(self, energy: float, now: float) -> bool:
        if energy <= self.threshold:
            return False
        if self.last_onset is not None and now - self.last_onset < self.debounce:
            return False
        self.last_onset = now
        return True


def _open_input_stream(**kwargs):
    # PortAudio's raw input applies no echo cancellation, noise suppression
    # or automatic gain, so the energy reaches us undistorted.
    import sounddevice as sd
    return sd.InputStream(**kwargs)


class OnsetDetector:
    """
    Owns the microphone stream and the analysis loop.

    ``open()`` acquires the device, ``start(on_onset)`` begins reporting
    claps, ``stop()`` halts reporting, ``close()`` releases the device.
    Usable as a context manager for the open/close pair.
    """

    def __init__(
        self,
        threshold: float = ENERGY_THRESHOLD,
        debounce_ms: float = DEBOUNCE_MS,
        sample_rate: int = SAMPLE_RATE,
        block_size: int = ANALYSIS_BLOCK,
        device=None,
        clock: Callable[[], float] = time.monotonic,
        stream_factory=_open_input_stream,
        poll_hz: float = POLL_HZ,
        threaded: bool = True,
    ):
        self.gate = OnsetGate(threshold, debounce_ms)
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self.clock = clock
        self.poll_interval = 1.0 / poll_hz
        self.threaded = threaded
        self._stream_factory = stream_factory

        self._stream = None
        # (capture time, samples) per input block, oldest first
        self._blocks: deque = deque(maxlen=MAX_PENDING_BLOCKS)
        self._buffer_lock = threading.Lock()

        self._on_onset: Optional[OnsetCallback] = None
        self._listening = False
        self._emit_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.level = 0.0

    # ── device ──────────────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def listening(self) -> bool:
        return self._listening

    def open(self, timeout: float = ACQUIRE_TIMEOUT) -> None:
        """Acquire the microphone, raising AudioInputError instead of hanging."""
        if self._stream is not None:
            return

        done = threading.Event()
        state: dict = {"abandoned": False}
        guard = threading.Lock()

        def acquire():
            stream = None
            try:
                stream = self._stream_factory(
                    samplerate=self.sample_rate,
                    blocksize=self.block_size,
                    channels=1,
                    dtype="float32",
                    device=self.device,
                    callback=self._callback,
                )
                stream.start()
            except Exception as e:
                if stream is not None:
                    stream.close()
                state["error"] = e
                done.set()
                return
            with guard:
                if state["abandoned"]:
                    stream.stop()
                    stream.close()
                else:
                    state["stream"] = stream
            done.set()

        worker = threading.Thread(target=acquire, name="mic-acquire", daemon=True)
        worker.start()
        finished = done.wait(timeout)
        with guard:
            if not finished and "stream" not in state:
                state["abandoned"] = True
                raise AudioInputError(f"cannot acquire audio input: no response after {timeout:.1f}s")
        if "error" in state:
            raise AudioInputError(f"cannot acquire audio input: {state['error']}") from state["error"]

        self._stream = state["stream"]
        self._reset_buffer()
        logger.info("microphone open (sr=%d, block=%d)", self.sample_rate, self.block_size)

    def close(self) -> None:
        """Stop listening and release the device; safe to call repeatedly."""
        self.stop()
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            logger.info("microphone closed")

    def __enter__(self) -> "OnsetDetector":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _reset_buffer(self) -> None:
        with self._buffer_lock:
            self._blocks.clear()

    def _callback(self, indata, frames, time_info, status):
        """Audio thread: copy the mono channel and its capture time, nothing else."""
        if status:
            logger.debug("input status: %s", status)
        captured = self.clock()
        if time_info is not None:
            # Map the ADC time of the first sample onto our clock
            captured -= time_info.currentTime - time_info.inputBufferAdcTime
        with self._buffer_lock:
            self._blocks.append((captured, indata[:, 0].copy()))

    # ── listening ───────────────────────────────────────────────────

    def start(self, on_onset: OnsetCallback) -> None:
        if not self.is_open:
            self.open()
        with self._emit_lock:
            self._on_onset = on_onset
            self.gate.reset()
            self._listening = True
        self._reset_buffer()
        if self.threaded:
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="onset-detector", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """No onset is reported once this returns."""
        with self._emit_lock:
            self._listening = False
            self._on_onset = None
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def poll(self) -> bool:
        """Analyse every block that arrived since the last poll; True if any was a clap."""
        with self._buffer_lock:
            blocks = list(self._blocks)
            self._blocks.clear()
        heard = False
        for captured, samples in blocks:
            self.level = rms_energy(samples)
            with self._emit_lock:
                if not self._listening or not self.gate.feed(self.level, captured):
                    continue
                callback = self._on_onset
                if callback is not None:
                    callback(captured)
            heard = True
        return heard

    def _run(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll()
            except Exception:
                logger.exception("onset analysis failed, detector stopped")
                with self._emit_lock:
                    self._listening = False
                return
