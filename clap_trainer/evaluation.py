"""
Quiz scoring.

Every grid slot is judged by whether it should sound (pattern) and whether
a clap was credited to it. Claps are credited one-to-one: first to
expected slots in order of increasing distance, then whatever is left to
silent slots (those become "extra"). A clap never counts twice, even when
the tolerance windows of neighbouring slots overlap.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from .config import TOLERANCE_MS
from .pattern import Pattern
from .positions import (
    RECORDING_OFFSET,
    SLOT_COUNT,
    slot_distance,
    timing_error_ms,
    within_tolerance,
)
from .recording import CapturedOnset


class BeatStatus(Enum):
    CORRECT = "correct"
    MISSED = "missed"
    EXTRA = "extra"
    CORRECT_SILENT = "correct-silent"

    @classmethod
    def classify(cls, expected: bool, detected: bool) -> "BeatStatus":
        if expected:
            return cls.CORRECT if detected else cls.MISSED
        return cls.EXTRA if detected else cls.CORRECT_SILENT


@dataclass(frozen=True)
class BeatEvaluation:
    index: int
    expected: bool
    detected: bool
    status: BeatStatus
    detected_slot: int | None = None
    timing_error_ms: float | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "expected": self.expected,
            "detected": self.detected,
            "status": self.status.value,
            "detectedSlot": self.detected_slot,
            "timingError": self.timing_error_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BeatEvaluation":
        return cls(
            index=int(data["index"]),
            expected=bool(data["expected"]),
            detected=bool(data["detected"]),
            status=BeatStatus(data["status"]),
            detected_slot=data.get("detectedSlot"),
            timing_error_ms=data.get("timingError"),
        )


@dataclass(frozen=True)
class QuizEvaluation:
    beats: tuple[BeatEvaluation, ...]
    accuracy: float
    correct_count: int
    missed_count: int
    extra_count: int
    silent_count: int
    average_timing_error: int
    unmatched_count: int = 0

    @property
    def total_expected(self) -> int:
        return self.correct_count + self.missed_count

    def to_dict(self) -> dict:
        return {
            "beatEvaluations": [b.to_dict() for b in self.beats],
            "accuracy": self.accuracy,
            "correctCount": self.correct_count,
            "missedCount": self.missed_count,
            "extraCount": self.extra_count,
            "silentCount": self.silent_count,
            "averageTimingError": self.average_timing_error,
            "unmatchedCount": self.unmatched_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuizEvaluation":
        beats = tuple(BeatEvaluation.from_dict(b) for b in data["beatEvaluations"])
        return cls(
            beats=beats,
            accuracy=float(data["accuracy"]),
            correct_count=int(data["correctCount"]),
            missed_count=int(data["missedCount"]),
            extra_count=int(data["extraCount"]),
            silent_count=int(data.get("silentCount",
                                      sum(b.status is BeatStatus.CORRECT_SILENT for b in beats))),
            average_timing_error=int(data["averageTimingError"]),
            unmatched_count=int(data.get("unmatchedCount", 0)),
        )


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def match_onsets(expected: Sequence[bool], slots: Sequence[int], bpm: float,
                 offset: int = RECORDING_OFFSET,
                 tolerance_ms: float = TOLERANCE_MS) -> dict[int, int]:
    """Map grid slot → index into ``slots`` of the clap credited to it."""
    candidates = sorted(
        (slot_distance(detected, i + offset), i, j)
        for j, detected in enumerate(slots)
        for i in range(len(expected))
        if within_tolerance(detected, i + offset, bpm, tolerance_ms)
    )
    assigned: dict[int, int] = {}
    used: set[int] = set()
    for wanted in (True, False):
        for _, i, j in candidates:
            if expected[i] != wanted or i in assigned or j in used:
                continue
            assigned[i] = j
            used.add(j)
    return assigned


def evaluate(pattern: Pattern, onsets: Iterable[CapturedOnset], bpm: float,
             offset: int = RECORDING_OFFSET,
             tolerance_ms: float = TOLERANCE_MS) -> QuizEvaluation:
    """Score captured claps against ``pattern``. Pure and deterministic."""
    expected = pattern.flags()
    slots = [onset.slot_index for onset in onsets]
    assigned = match_onsets(expected, slots, bpm, offset, tolerance_ms)

    beats = []
    for i in range(SLOT_COUNT):
        j = assigned.get(i)
        detected = j is not None
        error = timing_error_ms(slots[j], i + offset, bpm) if detected else None
        beats.append(BeatEvaluation(
            index=i,
            expected=expected[i],
            detected=detected,
            status=BeatStatus.classify(expected[i], detected),
            detected_slot=slots[j] if detected else None,
            timing_error_ms=error,
        ))

    counts = {status: 0 for status in BeatStatus}
    for beat in beats:
        counts[beat.status] += 1

    total_expected = sum(expected)
    correct = counts[BeatStatus.CORRECT]
    accuracy = correct / total_expected * 100 if total_expected else 100.0

    errors = [abs(b.timing_error_ms) for b in beats if b.status is BeatStatus.CORRECT]
    average_error = _round_half_up(sum(errors) / len(errors)) if errors else 0

    return QuizEvaluation(
        beats=tuple(beats),
        accuracy=round(accuracy, 1),
        correct_count=correct,
        missed_count=counts[BeatStatus.MISSED],
        extra_count=counts[BeatStatus.EXTRA],
        silent_count=counts[BeatStatus.CORRECT_SILENT],
        average_timing_error=average_error,
        unmatched_count=len(slots) - len(assigned),
    )


# ─── Reporting ───────────────────────────────────────────────────────────────

GRADES = (
    (95, "Perfect"),
    (85, "Excellent"),
    (70, "Good"),
    (50, "Pass"),
)


def accuracy_grade(accuracy: float) -> str:
    for floor, grade in GRADES:
        if accuracy >= floor:
            return grade
    return "Needs work"


def evaluation_summary(evaluation: QuizEvaluation) -> str:
    lines = [
        f"Accuracy: {evaluation.accuracy}%",
        f"Correct: {evaluation.correct_count}, missed: {evaluation.missed_count}, "
        f"extra: {evaluation.extra_count}",
    ]
    if evaluation.average_timing_error > 0:
        lines.append(f"Average timing error: {evaluation.average_timing_error}ms")
    return "\n".join(lines)
