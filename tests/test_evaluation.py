import pytest

from clap_trainer.evaluation import (
    BeatStatus,
    QuizEvaluation,
    accuracy_grade,
    evaluate,
    evaluation_summary,
    match_onsets,
)
from clap_trainer.pattern import Pattern
from clap_trainer.recording import CapturedOnset

QUARTERS = list(range(0, 32, 4))


def claps(*slots):
    return [CapturedOnset(0.0, s) for s in slots]


def test_silent_pattern_without_claps_is_perfect():
    result = evaluate(Pattern(), [], 120)
    assert result.accuracy == 100.0
    assert result.silent_count == 32
    assert all(b.status is BeatStatus.CORRECT_SILENT for b in result.beats)
    assert result.average_timing_error == 0


def test_exact_claps():
    result = evaluate(Pattern.from_indices([0, 4]), claps(32, 36), 120)
    assert result.accuracy == 100.0
    assert result.correct_count == 2
    assert result.average_timing_error == 0
    assert result.beats[4].detected_slot == 36
    assert result.beats[4].timing_error_ms == 0.0


def test_all_quarter_notes():
    result = evaluate(Pattern.from_indices(QUARTERS), claps(*[32 + i for i in QUARTERS]), 100)
    assert result.correct_count == 8
    assert result.accuracy == 100.0


def test_half_the_quarter_notes():
    result = evaluate(Pattern.from_indices(QUARTERS), claps(32, 36, 40, 44), 100)
    assert (result.correct_count, result.missed_count, result.accuracy) == (4, 4, 50.0)
    assert result.total_expected == 8
    assert [b.status for b in result.beats[16::4]] == [BeatStatus.MISSED] * 4


def test_late_clap_becomes_an_extra():
    result = evaluate(Pattern.from_indices([0]), claps(34), 120)
    assert result.beats[0].status is BeatStatus.MISSED
    assert result.beats[2].status is BeatStatus.EXTRA
    assert result.extra_count == 1
    assert result.accuracy == 0.0


def test_tolerance_boundary_at_150_and_148_bpm():
    hit = evaluate(Pattern.from_indices([0]), claps(33), 150)
    assert hit.beats[0].status is BeatStatus.CORRECT
    assert hit.beats[0].timing_error_ms == pytest.approx(100.0)
    assert hit.average_timing_error == 100

    miss = evaluate(Pattern.from_indices([0]), claps(33), 148)
    assert miss.beats[0].status is BeatStatus.MISSED
    assert miss.beats[1].status is BeatStatus.EXTRA


def test_one_clap_never_counts_twice():
    # at 200 bpm a sixteenth is 75 ms so neighbouring windows overlap
    result = evaluate(Pattern.from_indices([0, 1]), claps(32), 200)
    assert result.correct_count == 1
    assert result.missed_count == 1
    assert result.beats[0].status is BeatStatus.CORRECT


def test_clap_goes_to_the_nearest_expected_slot():
    result = evaluate(Pattern.from_indices([0, 1]), claps(33), 200)
    assert result.beats[1].status is BeatStatus.CORRECT
    assert result.beats[0].status is BeatStatus.MISSED


def test_expected_slots_win_over_silent_ones():
    # the clap is exactly on silent slot 1 but still within slot 0's window
    result = evaluate(Pattern.from_indices([0]), claps(33), 200)
    assert result.beats[0].status is BeatStatus.CORRECT
    assert result.beats[1].status is BeatStatus.CORRECT_SILENT
    assert result.average_timing_error == 75


def test_claps_outside_every_window_are_unmatched():
    result = evaluate(Pattern(), claps(10, 200), 120)
    assert result.unmatched_count == 2
    assert result.extra_count == 0
    assert result.accuracy == 100.0


def test_average_error_rounds_half_up():
    # 200 bpm: errors of 75 ms and 0 ms average to 37.5
    result = evaluate(Pattern.from_indices([0, 8]), claps(33, 40), 200)
    assert result.average_timing_error == 38


def test_accuracy_has_one_decimal():
    result = evaluate(Pattern.from_indices([0, 4, 8]), claps(32), 120)
    assert result.accuracy == 33.3


def test_match_onsets_custom_offset():
    assert match_onsets([True, False], [1], 120, offset=0) == {1: 0}
    assert match_onsets([True, False], [0], 120, offset=0) == {0: 0}


def test_evaluation_is_deterministic_and_serialisable():
    pattern = Pattern.from_indices([0, 3, 4, 9])
    onsets = claps(32, 35, 37, 45, 50)
    first = evaluate(pattern, onsets, 110)
    assert evaluate(pattern, onsets, 110) == first
    assert QuizEvaluation.from_dict(first.to_dict()) == first


def test_grades_and_summary():
    assert accuracy_grade(100.0) == "Perfect"
    assert accuracy_grade(50.0) == "Pass"
    assert accuracy_grade(49.9) == "Needs work"
    result = evaluate(Pattern.from_indices([0]), claps(33), 200)
    summary = evaluation_summary(result)
    assert "Accuracy: 100.0%" in summary
    assert "75ms" in summary
