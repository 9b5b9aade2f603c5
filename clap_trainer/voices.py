"""
Percussive voices and the output mixer.

Every timbre is a ``Voice`` built from a parameter set; the four voice
kinds (noise, tonal, membrane, metallic) only differ in how the one-shot
buffer is synthesized. ``AudioOutput`` owns the ``sounddevice`` output
stream and mixes triggered buffers starting at the clock time they were
scheduled for.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np

from .config import OUTPUT_BLOCK, SAMPLE_RATE

logger = logging.getLogger(__name__)

# ─── Note Names ──────────────────────────────────────────────────────────────
NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def note_to_freq(note: str) -> float:
    """'A4' → 440.0, 'C#5' → 554.37."""
    name, octave = note[:-1], int(note[-1])
    midi = (octave + 1) * 12 + NOTE_NAMES.index(name)
    return 440.0 * (2.0 ** ((midi - 69) / 12.0))


def db_to_gain(db: float) -> float:
    return float(10.0 ** (db / 20.0))


class VoiceKind(Enum):
    NOISE = "noise"
    TONAL = "tonal"
    MEMBRANE = "membrane"
    METALLIC = "metallic"


@dataclass(frozen=True)
class Timbre:
    name: str
    kind: VoiceKind
    freq: float = 0.0          # base pitch (tonal / membrane / metallic)
    freq_end: float = 0.0      # pitch at the end of the sweep, 0 for none
    decay: float = 0.08        # seconds, always under 0.1
    band: tuple[float, float] = (0.0, 0.0)   # noise band-pass in Hz
    level: float = 0.8


TIMBRES: dict[str, Timbre] = {t.name: t for t in (
    Timbre("clap", VoiceKind.NOISE, decay=0.08, band=(1000.0, 2000.0)),
    Timbre("meow", VoiceKind.TONAL, freq=750.0, freq_end=480.0, decay=0.09),
    Timbre("woodblock", VoiceKind.TONAL, freq=820.0, decay=0.04),
    Timbre("kick", VoiceKind.MEMBRANE, freq=150.0, freq_end=50.0, decay=0.09, level=1.0),
    Timbre("snare", VoiceKind.NOISE, decay=0.07, band=(1500.0, 6000.0)),
    Timbre("hihat", VoiceKind.METALLIC, freq=400.0, decay=0.03, level=0.4),
    Timbre("cowbell", VoiceKind.METALLIC, freq=540.0, decay=0.09, level=0.5),
    Timbre("tom", VoiceKind.MEMBRANE, freq=200.0, freq_end=120.0, decay=0.09),
)}


# ─── Synthesis ───────────────────────────────────────────────────────────────

def _envelope(n: int, decay: float, sample_rate: int) -> np.ndarray:
    t = np.arange(n) / sample_rate
    env = np.exp(-t * (5.0 / decay))
    attack = int(0.002 * sample_rate)      # avoid a click at onset
    if 0 < attack < n:
        env[:attack] *= np.linspace(0, 1, attack)
    return env


def _sweep_phase(timbre: Timbre, n: int, sample_rate: int) -> np.ndarray:
    if timbre.freq_end:
        freqs = np.geomspace(timbre.freq, timbre.freq_end, n)
    else:
        freqs = np.full(n, timbre.freq)
    return 2 * np.pi * np.cumsum(freqs) / sample_rate


def synthesize(timbre: Timbre, sample_rate: int = SAMPLE_RATE,
               rng: np.random.Generator | None = None) -> np.ndarray:
    """Render one hit of ``timbre`` as float32 mono."""
    n = int(sample_rate * timbre.decay * 1.2)
    env = _envelope(n, timbre.decay, sample_rate)

    if timbre.kind is VoiceKind.NOISE:
        rng = rng or np.random.default_rng(0)
        spectrum = np.fft.rfft(rng.standard_normal(n))
        freqs = np.fft.rfftfreq(n, 1.0 / sample_rate)
        low, high = timbre.band
        spectrum[(freqs < low) | (freqs > high)] = 0
        wave = np.fft.irfft(spectrum, n)
        peak = np.max(np.abs(wave))
        if peak > 0:
            wave /= peak
    elif timbre.kind is VoiceKind.METALLIC:
        t = np.arange(n) / sample_rate
        ratios = (1.0, 1.48, 1.99, 2.63)
        wave = sum(np.sign(np.sin(2 * np.pi * timbre.freq * r * t)) for r in ratios)
        wave = wave / len(ratios)
    else:
        wave = np.sin(_sweep_phase(timbre, n, sample_rate))

    return (timbre.level * wave * env).astype(np.float32)


# ─── Output Mixer ────────────────────────────────────────────────────────────

@dataclass
class _Scheduled:
    samples: np.ndarray
    start: float               # clock time of the first sample
    position: int = 0


def _open_output_stream(**kwargs):
    import sounddevice as sd
    return sd.OutputStream(**kwargs)


class AudioOutput:
    """Mixes one-shot buffers into a mono output stream at their clock times."""

    def __init__(self, sample_rate: int = SAMPLE_RATE, block_size: int = OUTPUT_BLOCK,
                 clock: Callable[[], float] = time.monotonic,
                 stream_factory=_open_output_stream, max_voices: int = 32):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.clock = clock
        self.max_voices = max_voices
        self._stream_factory = stream_factory
        self._stream = None
        self._pending: list[_Scheduled] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> bool:
        if self._stream is not None:
            return True
        try:
            self._stream = self._stream_factory(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                channels=1,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except Exception as e:
            logger.warning("audio output unavailable, playing silently: %s", e)
            self._stream = None
            return False
        logger.info("audio output started (sr=%d, block=%d)", self.sample_rate, self.block_size)
        return True

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self.clear()

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def play(self, samples: np.ndarray, at: float | None = None, gain: float = 1.0) -> None:
        """Queue ``samples`` to begin at clock time ``at`` (now when omitted)."""
        start = self.clock() if at is None else at
        with self._lock:
            if len(self._pending) >= self.max_voices:
                self._pending.pop(0)
            self._pending.append(_Scheduled(samples * np.float32(gain), start))

    def active(self) -> int:
        with self._lock:
            return len(self._pending)

    def mix(self, frames: int, block_start: float) -> np.ndarray:
        """Render ``frames`` samples whose first sample plays at clock time ``block_start``."""
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            keep = []
            for item in self._pending:
                offset = 0
                if item.position == 0:
                    offset = int(round((item.start - block_start) * self.sample_rate))
                    if offset >= frames:
                        keep.append(item)
                        continue
                    offset = max(offset, 0)
                chunk = item.samples[item.position:item.position + frames - offset]
                out[offset:offset + len(chunk)] += chunk
                item.position += len(chunk)
                if item.position < len(item.samples):
                    keep.append(item)
            self._pending = keep
        np.clip(out, -1.0, 1.0, out=out)
        return out

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug("output status: %s", status)
        # Map the DAC time of this block onto our clock
        block_start = self.clock() + (time_info.outputBufferDacTime - time_info.currentTime)
        outdata[:, 0] = self.mix(frames, block_start)


# ─── Voices ──────────────────────────────────────────────────────────────────

class Voice:
    """
    A single percussive voice with scheduled volume.

    ``set_volume(db, time)`` takes effect for hits triggered at or after
    ``time``; ``trigger_attack_release(duration, time)`` queues one hit.
    """

    def __init__(self, timbre: Timbre, output: AudioOutput | None, volume_db: float = 0.0):
        self.timbre = timbre
        self.output = output
        self._buffer = synthesize(timbre, output.sample_rate if output else SAMPLE_RATE)
        self._volume: list[tuple[float, float]] = [(float("-inf"), volume_db)]
        self.disposed = False

    @classmethod
    def named(cls, name: str, output: AudioOutput | None, volume_db: float = 0.0) -> "Voice":
        try:
            timbre = TIMBRES[name]
        except KeyError:
            raise ValueError(f"unknown sound {name!r}; choose from {', '.join(TIMBRES)}") from None
        return cls(timbre, output, volume_db)

    def set_volume(self, db: float, at: float) -> None:
        # Drop automation points that can no longer apply
        self._volume = [p for p in self._volume if p[0] < at][-1:] + [(at, db)]

    def volume_at(self, at: float) -> float:
        db = self._volume[0][1]
        for when, value in self._volume:
            if when <= at:
                db = value
        return db

    def trigger_attack_release(self, duration: float, at: float) -> None:
        if self.disposed:
            return
        sr = self.output.sample_rate if self.output else SAMPLE_RATE
        # Hold for ``duration`` then let the envelope tail ring for its decay
        length = min(len(self._buffer), int((duration + self.timbre.decay) * sr))
        if self.output is not None:
            self.output.play(self._buffer[:length], at, db_to_gain(self.volume_at(at)))

    def dispose(self) -> None:
        self.disposed = True
        self._volume = self._volume[-1:]


class CueVoice:
    """Short pitched ticks for the countdown."""

    def __init__(self, output: AudioOutput | None, volume_db: float = -6.0):
        self.output = output
        self.volume_db = volume_db

    def tick(self, note: str, duration: float = 0.1, at: float | None = None) -> None:
        if self.output is None:
            return
        timbre = Timbre(note, VoiceKind.TONAL, freq=note_to_freq(note), decay=duration * 0.9)
        samples = synthesize(timbre, self.output.sample_rate)
        self.output.play(samples, at, db_to_gain(self.volume_db))
