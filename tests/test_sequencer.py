import pytest

from clap_trainer.errors import SchedulingError
from clap_trainer.pattern import Pattern
from clap_trainer.positions import PICKUP_SLOT


def _run(sequencer, pattern, until, **kwargs):
    beats, markers = [], []
    sequencer.on_beat_sounding = beats.append
    sequencer.on_time_marker = markers.append
    sequencer.load(pattern, **kwargs)
    sequencer.transport.start()
    sequencer.transport.poll(until)
    sequencer.transport.draw.drain(until + 1)
    return beats, markers


def test_one_shot_with_pickup(sequencer):
    beats, markers = _run(sequencer, Pattern.from_indices([0, 6]), 10.0)
    assert beats == [PICKUP_SLOT, 0, 6]
    assert markers == list(range(32))


def test_without_pickup(sequencer):
    beats, _ = _run(sequencer, Pattern.from_indices([0]), 10.0, use_pickup=False)
    assert beats == [0]


def test_slot_31_is_echoed_before_beat_one(sequencer):
    beats, markers = _run(sequencer, Pattern.from_indices([0, 31]), 10.0)
    assert beats == [PICKUP_SLOT, 31, 0, 31]
    assert markers[:2] == [31, 0]


def test_loop_repeats_every_eight_beats(sequencer):
    # slot 0 at sixteenth 4, then every 32 sixteenths (4 s at 120 bpm)
    beats, markers = _run(sequencer, Pattern.from_indices([0]), 8.5, loop=True)
    assert beats == [PICKUP_SLOT, 0, 0, 0]
    assert markers.count(0) == 3


def test_accent_volumes(sequencer, context):
    _run(sequencer, Pattern.from_indices([0, 1, 4]), 10.0, use_pickup=False)
    assert [db for db, _ in context.voice.volumes] == [-6.0, -14.0, -10.0]
    assert context.voice.hits == pytest.approx([0.5, 0.625, 1.0])


def test_pickup_is_quiet(sequencer, context):
    _run(sequencer, Pattern(), 10.0)
    assert [db for db, _ in context.voice.volumes] == [-14.0]
    assert context.voice.hits == pytest.approx([0.25])


def test_load_while_playing_is_rejected(sequencer):
    sequencer.play(Pattern.from_indices([0]))
    with pytest.raises(SchedulingError):
        sequencer.load(Pattern())
    with pytest.raises(SchedulingError):
        sequencer.play(Pattern())
    sequencer.stop()
    assert not sequencer.transport.running
    assert sequencer.compiled is None
