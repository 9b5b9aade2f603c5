import threading

import numpy as np
import pytest

from clap_trainer.detector import OnsetDetector
from clap_trainer.sequencer import Sequencer
from clap_trainer.storage import JsonFileStore, QuizHistory
from clap_trainer.transport import Transport, TransportContext

BLOCK = 512
LOUD = np.full(BLOCK, 0.5, dtype=np.float32)
QUIET = np.zeros(BLOCK, dtype=np.float32)


class ManualClock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, dt):
        self.t += dt
        return self.t


class FakeInputStream:
    def __init__(self, callback=None, fail_start=False, **kwargs):
        self.callback = callback
        self.kwargs = kwargs
        self.fail_start = fail_start
        self.started = False
        self.closed = False

    def start(self):
        if self.fail_start:
            raise OSError("device busy")
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def feed(self, samples):
        samples = np.asarray(samples, dtype=np.float32).reshape(-1, 1)
        self.callback(samples, len(samples), None, None)


class FakeMic:
    """Stream factory that remembers every stream it opened."""

    def __init__(self, error=None, fail_start=False, gate=None):
        self.error = error
        self.fail_start = fail_start
        self.gate = gate
        self.streams = []

    def __call__(self, **kwargs):
        if self.gate is not None:
            self.gate.wait()
        if self.error is not None:
            raise self.error
        stream = FakeInputStream(fail_start=self.fail_start, **kwargs)
        self.streams.append(stream)
        return stream

    @property
    def stream(self):
        return self.streams[-1]


class FakeOutputStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


class FakeVoice:
    def __init__(self):
        self.volumes = []
        self.hits = []

    def set_volume(self, db, at):
        self.volumes.append((db, at))

    def trigger_attack_release(self, duration, at):
        self.hits.append(at)

    def dispose(self):
        pass


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def mic():
    return FakeMic()


@pytest.fixture
def context(clock):
    return TransportContext(bpm=120, clock=clock, voice=FakeVoice())


@pytest.fixture
def transport(context):
    return Transport(context, threaded=False)


@pytest.fixture
def sequencer(transport):
    return Sequencer(transport)


@pytest.fixture
def detector(clock, mic):
    return OnsetDetector(clock=clock, stream_factory=mic, threaded=False, block_size=BLOCK)


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "store.json")


@pytest.fixture
def history(store):
    return QuizHistory(store)


def clap(mic, detector, at):
    """Feed one loud block heard at clock time ``at`` and analyse it."""
    detector.clock.t = at
    mic.stream.feed(LOUD)
    return detector.poll()


def wait_until(predicate, timeout=1.0):
    done = threading.Event()
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        done.wait(0.01)
    return predicate()
