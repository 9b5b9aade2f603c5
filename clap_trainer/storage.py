"""
Durable storage for custom presets and quiz history.

Both live under namespaced keys of one JSON file. Loading never raises:
a missing, unreadable or malformed value is treated as empty. Saving
raises ``StorageError`` and leaves the in-memory lists as they were
updated, so the caller can retry or report.
"""

import contextlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import CUSTOM_PRESETS_KEY, HISTORY_LIMIT, QUIZ_HISTORY_KEY, SCHEMA_VERSION
from .errors import PatternError, StorageError
from .evaluation import QuizEvaluation
from .pattern import BUILT_IN_PRESETS, Pattern, Preset

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class JsonFileStore:
    """A tiny key-value store persisted as one JSON object."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning("cannot read %s: %s", self.path, e)
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("corrupt store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            tmp = None
            try:
                text = json.dumps(data, ensure_ascii=False, indent=2)
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp, self.path)
            except (OSError, TypeError, ValueError) as e:
                if tmp is not None:
                    with contextlib.suppress(OSError):
                        os.unlink(tmp)
                raise StorageError(f"save {key!r} to {self.path}: {e}") from e


class PresetLibrary:
    """Built-in presets plus user presets persisted under one key."""

    def __init__(self, store: JsonFileStore, key: str = CUSTOM_PRESETS_KEY):
        self.store = store
        self.key = key
        self.custom: list[Preset] = []

    def load(self) -> list[Preset]:
        raw = self.store.get(self.key)
        if isinstance(raw, dict):
            raw = raw.get("presets")
        presets = []
        if isinstance(raw, list):
            for item in raw:
                try:
                    presets.append(Preset.from_dict(item))
                except (PatternError, AttributeError) as e:
                    logger.warning("skipping malformed preset: %s", e)
        elif raw is not None:
            logger.warning("ignoring malformed preset list under %r", self.key)
        self.custom = presets
        return presets

    def _save(self) -> None:
        self.store.set(self.key, {
            "version": SCHEMA_VERSION,
            "presets": [p.to_dict() for p in self.custom],
        })

    def all(self) -> list[Preset]:
        return list(BUILT_IN_PRESETS) + self.custom

    def find(self, preset_id: str) -> Preset | None:
        for preset in self.all():
            if preset.id == preset_id:
                return preset
        return None

    def save_as(self, name: str, pattern: Pattern, use_pickup: bool = True) -> Preset:
        name = name.strip()
        if not name:
            raise ValueError("preset name is required")
        preset = Preset(f"custom-{_now_ms()}", name, pattern.copy(),
                        is_custom=True, use_pickup=use_pickup)
        self.custom.append(preset)
        self._save()
        return preset

    def delete(self, preset_id: str) -> bool:
        before = len(self.custom)
        self.custom = [p for p in self.custom if p.id != preset_id]
        if len(self.custom) == before:
            return False
        self._save()
        return True


@dataclass
class QuizRecord:
    evaluation: QuizEvaluation
    pattern: Pattern
    bpm: int
    pattern_name: str = "Custom"
    use_pickup: bool = True
    timestamp: int = field(default_factory=_now_ms)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"quiz-{self.timestamp}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "patternName": self.pattern_name,
            "bpm": self.bpm,
            "usePickup": self.use_pickup,
            "pattern": self.pattern.to_dicts(),
            "evaluation": self.evaluation.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuizRecord":
        return cls(
            evaluation=QuizEvaluation.from_dict(data["evaluation"]),
            pattern=Pattern.from_dicts(data["pattern"]),
            bpm=int(data["bpm"]),
            pattern_name=str(data.get("patternName", "Custom")),
            use_pickup=bool(data.get("usePickup", True)),
            timestamp=int(data["timestamp"]),
            id=str(data["id"]),
        )


@dataclass(frozen=True)
class HistoryStats:
    total_quizzes: int = 0
    average_accuracy: float = 0.0
    best_accuracy: float = 0.0
    average_timing_error: int = 0


class QuizHistory:
    """Newest-first list of quiz records, capped at ``limit``."""

    def __init__(self, store: JsonFileStore, limit: int = HISTORY_LIMIT,
                 key: str = QUIZ_HISTORY_KEY):
        self.store = store
        self.limit = limit
        self.key = key
        self.records: list[QuizRecord] = []

    def load(self) -> list[QuizRecord]:
        raw = self.store.get(self.key)
        items = raw.get("records") if isinstance(raw, dict) else None
        records = []
        if isinstance(items, list):
            for item in items:
                try:
                    records.append(QuizRecord.from_dict(item))
                except (KeyError, TypeError, ValueError, AttributeError, PatternError) as e:
                    logger.warning("skipping malformed quiz record: %s", e)
        elif raw is not None:
            logger.warning("ignoring malformed quiz history under %r", self.key)
        self.records = records[:self.limit]
        return self.records

    def _save(self) -> None:
        self.store.set(self.key, {
            "version": SCHEMA_VERSION,
            "records": [r.to_dict() for r in self.records],
            "maxRecords": self.limit,
        })

    def add(self, record: QuizRecord) -> None:
        self.records.insert(0, record)
        del self.records[self.limit:]
        self._save()

    def delete(self, record_id: str) -> bool:
        before = len(self.records)
        self.records = [r for r in self.records if r.id != record_id]
        if len(self.records) == before:
            return False
        self._save()
        return True

    def clear(self) -> None:
        self.records = []
        self._save()

    def recent(self, count: int = 10) -> list[QuizRecord]:
        return self.records[:count]

    def by_pattern(self, name: str) -> list[QuizRecord]:
        return [r for r in self.records if r.pattern_name == name]

    def statistics(self) -> HistoryStats:
        if not self.records:
            return HistoryStats()
        accuracies = [r.evaluation.accuracy for r in self.records]
        errors = [r.evaluation.average_timing_error for r in self.records]
        total = len(self.records)
        return HistoryStats(
            total_quizzes=total,
            average_accuracy=round(sum(accuracies) / total, 1),
            best_accuracy=max(accuracies),
            average_timing_error=round(sum(errors) / total),
        )
