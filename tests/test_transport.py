import logging

import pytest

from clap_trainer.errors import SchedulingError
from clap_trainer.positions import Position
from clap_trainer.transport import DrawChannel, Transport, TransportContext


def test_callbacks_fire_in_order_within_lookahead(transport):
    fired = []
    for sixteenths in (8, 4, 6):
        transport.schedule(Position(sixteenths), lambda at, s=sixteenths: fired.append((s, at)))
    transport.start()

    assert transport.poll(0.4) == 0
    assert transport.poll(0.48) == 1
    assert fired == [(4, 0.5)]
    transport.poll(10.0)
    assert [s for s, _ in fired] == [4, 6, 8]
    assert fired[-1][1] == pytest.approx(1.0)


def test_same_position_keeps_schedule_order(transport):
    fired = []
    transport.schedule(Position(4), lambda at: fired.append("a"))
    transport.schedule(Position(4), lambda at: fired.append("b"))
    transport.start()
    transport.poll(1.0)
    assert fired == ["a", "b"]


def test_visual_runs_after_audio_and_not_before_due(transport):
    order = []
    transport.schedule(Position(4), lambda at: order.append("audio"), lambda: order.append("visual"))
    transport.start()
    transport.poll(0.48)
    assert order == ["audio"]
    assert transport.draw.drain(0.49) == 0
    assert transport.draw.drain(0.5) == 1
    assert order == ["audio", "visual"]


def test_repeating_event(transport):
    fired = []
    transport.schedule(Position(4), fired.append, repeat=32)
    transport.start()
    transport.poll(8.5)
    assert fired == pytest.approx([0.5, 4.5, 8.5])


def test_stop_discards_pending_audio_and_visual(transport):
    fired = []
    transport.schedule(Position(4), fired.append, lambda: fired.append("visual"))
    transport.schedule(Position(8), fired.append)
    transport.start()
    transport.poll(0.5)
    transport.stop()

    assert transport.poll(10.0) == 0
    assert transport.draw.drain(10.0) == 0
    assert fired == [0.5]
    assert not transport.running


def test_immediate_restart_fires_nothing_twice(transport, clock):
    fired = []
    transport.schedule(Position(4), fired.append)
    transport.start()
    transport.stop()
    clock.t = 1.0
    transport.start()
    transport.poll(20.0)
    assert fired == []

    transport.stop()
    transport.schedule(Position(4), fired.append)
    clock.t = 2.0
    transport.start()
    transport.poll(20.0)
    assert fired == [2.5]


def test_callback_that_stops_transport(transport):
    fired = []
    transport.schedule(Position(4), lambda at: transport.stop())
    transport.schedule(Position(4), fired.append)
    transport.schedule(Position(5), fired.append)
    transport.start()
    transport.poll(10.0)
    assert fired == []


def test_schedule_while_running_is_rejected(transport):
    transport.start()
    with pytest.raises(SchedulingError):
        transport.schedule(Position(4), lambda at: None)
    with pytest.raises(SchedulingError):
        transport.start()


def test_lenient_misuse_logs_and_ignores(clock, caplog):
    context = TransportContext(bpm=120, clock=clock, strict=False)
    transport = Transport(context, threaded=False)
    transport.start()
    with caplog.at_level(logging.ERROR):
        transport.schedule(Position(4), lambda at: None)
        assert transport.start() is False
    assert transport.pending() == 0
    assert "scheduling misuse" in caplog.text


def test_bpm_locked_while_running(transport, context):
    transport.start()
    with pytest.raises(SchedulingError):
        context.set_bpm(90)
    assert context.bpm == 120
    transport.stop()
    assert context.set_bpm(90)
    assert context.sixteenth == pytest.approx(60 / 90 / 4)


def test_bpm_range(context):
    with pytest.raises(ValueError):
        context.set_bpm(59)
    with pytest.raises(ValueError):
        TransportContext(bpm=201)


def test_seconds_since_start(transport, clock):
    assert transport.seconds() == 0.0
    clock.t = 3.0
    transport.start()
    clock.t = 4.25
    assert transport.seconds() == pytest.approx(1.25)
    assert transport.time_of(Position(4)) == pytest.approx(3.5)


def test_draw_channel_cancel_and_errors(clock, caplog):
    draw = DrawChannel(clock=clock, threaded=False)
    ran = []
    draw.post(1.0, lambda: ran.append(1))
    draw.cancel_all()
    draw.post(1.0, lambda: 1 / 0)
    draw.post(1.0, lambda: ran.append(2))
    with caplog.at_level(logging.ERROR):
        assert draw.drain(1.0) == 2
    assert ran == [2]
    assert "visual callback failed" in caplog.text


def test_threaded_transport_fires_on_real_clock():
    import threading

    context = TransportContext(bpm=200)
    transport = Transport(context)
    done = threading.Event()
    transport.schedule(Position(1), lambda at: done.set())
    transport.start()
    try:
        assert done.wait(2.0)
    finally:
        transport.stop()
        transport.draw.close()


def test_failing_callback_stops_and_reports(transport, caplog):
    errors, fired = [], []

    def explode(at):
        raise OSError("output device lost")

    transport.error_handlers.append(errors.append)
    transport.schedule(Position(4), explode)
    transport.schedule(Position(4), fired.append)
    transport.schedule(Position(8), fired.append)
    transport.start()
    with caplog.at_level(logging.ERROR):
        transport.poll(10.0)

    assert not transport.running
    assert not transport.context.locked
    assert fired == []
    assert [str(e) for e in errors] == ["output device lost"]
    assert "transport callback failed" in caplog.text


def test_failing_error_handler_is_logged(transport, caplog):
    def explode(at):
        raise RuntimeError("boom")

    def bad_handler(error):
        raise ValueError("handler")

    seen = []
    transport.error_handlers.extend([bad_handler, seen.append])
    transport.schedule(Position(4), explode)
    transport.start()
    with caplog.at_level(logging.ERROR):
        transport.poll(1.0)
    assert len(seen) == 1
    assert "transport error handler failed" in caplog.text
