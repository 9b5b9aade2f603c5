from clap_trainer.pattern import Pattern
from clap_trainer.positions import PICKUP_SLOT
from clap_trainer.sequence import compile_pattern


def test_sound_events_only_for_enabled_slots():
    compiled = compile_pattern(Pattern.from_indices([0, 5, 12]))
    assert [e.slot_index for e in compiled.sound] == [0, 5, 12]
    assert [e.musical_position for e in compiled.sound] == ["0:1:0", "0:2:1", "1:0:0"]


def test_time_events_cover_every_slot():
    compiled = compile_pattern(Pattern())
    assert [e.slot_index for e in compiled.time] == list(range(32))
    assert compiled.sound == ()


def test_pickup_and_preroll():
    compiled = compile_pattern(Pattern.from_indices([0]))
    assert compiled.pickup.slot_index == PICKUP_SLOT
    assert compiled.pickup.musical_position == "0:0:2"
    assert compiled.preroll is None

    compiled = compile_pattern(Pattern.from_indices([31]))
    assert compiled.preroll.slot_index == 31
    assert compiled.preroll.musical_position == "0:0:3"
