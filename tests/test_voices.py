import numpy as np
import pytest

from conftest import FakeOutputStream

from clap_trainer.voices import (
    TIMBRES,
    AudioOutput,
    CueVoice,
    Voice,
    db_to_gain,
    note_to_freq,
    synthesize,
)


def test_note_to_freq():
    assert note_to_freq("A4") == pytest.approx(440.0)
    assert note_to_freq("C5") == pytest.approx(523.25, abs=0.01)
    assert db_to_gain(0.0) == 1.0
    assert db_to_gain(-20.0) == pytest.approx(0.1)


def test_every_timbre_is_short_and_bounded():
    for name, timbre in TIMBRES.items():
        samples = synthesize(timbre, 8000)
        assert samples.dtype == np.float32, name
        assert 0 < len(samples) <= int(8000 * 0.1 * 1.2), name
        assert np.max(np.abs(samples)) <= 1.0, name


def test_mix_places_samples_at_their_clock_time():
    output = AudioOutput(sample_rate=1000)
    output.play(np.ones(10, dtype=np.float32), at=1.0, gain=0.5)
    out = output.mix(100, block_start=0.95)
    assert np.all(out[50:60] == 0.5)
    assert np.all(out[:50] == 0) and np.all(out[60:] == 0)
    assert output.active() == 0


def test_mix_continues_across_blocks():
    output = AudioOutput(sample_rate=1000)
    output.play(np.ones(100, dtype=np.float32), at=1.0)
    assert output.mix(60, 0.95)[50:].sum() == 10
    assert output.mix(60, 1.01).sum() == 60
    assert output.mix(60, 1.07)[:30].sum() == 30
    assert output.active() == 0


def test_future_buffers_wait():
    output = AudioOutput(sample_rate=1000)
    output.play(np.ones(5, dtype=np.float32), at=2.0)
    assert output.mix(100, 0.0).sum() == 0
    assert output.active() == 1
    output.clear()
    assert output.active() == 0


def test_start_and_stop_with_stream():
    streams = []

    def factory(**kwargs):
        streams.append(FakeOutputStream(**kwargs))
        return streams[-1]

    output = AudioOutput(stream_factory=factory)
    assert output.start()
    assert streams[0].started and output.running
    output.stop()
    assert streams[0].closed and not output.running


def test_missing_output_device_plays_silently():
    def factory(**kwargs):
        raise OSError("no device")

    output = AudioOutput(stream_factory=factory)
    assert output.start() is False
    assert not output.running


def test_voice_volume_automation():
    output = AudioOutput(sample_rate=8000)
    voice = Voice.named("woodblock", output, volume_db=-10.0)
    voice.set_volume(-6.0, at=1.0)
    assert voice.volume_at(0.5) == -10.0
    assert voice.volume_at(1.5) == -6.0
    voice.set_volume(-14.0, at=2.0)
    assert voice.volume_at(1.5) == -6.0
    assert voice.volume_at(2.0) == -14.0

    voice.trigger_attack_release(0.125, at=1.0)
    assert output.active() == 1
    voice.dispose()
    voice.trigger_attack_release(0.125, at=3.0)
    assert output.active() == 1


def test_unknown_sound():
    with pytest.raises(ValueError, match="unknown sound"):
        Voice.named("banjo", None)


def test_cue_tick_queues_a_buffer():
    output = AudioOutput(sample_rate=8000)
    CueVoice(output).tick("C6", at=0.0)
    assert output.active() == 1
