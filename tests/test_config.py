from pathlib import Path

import pytest

from clap_trainer.config import TrainerConfig
from clap_trainer.errors import SchedulingError, report_misuse


def test_defaults():
    config = TrainerConfig()
    assert config.bpm == 100
    assert config.tolerance_ms == 100
    assert config.history_limit == 50
    assert config.store_path.name == "store.json"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("CLAP_TRAINER_HOME", str(tmp_path))
    monkeypatch.setenv("CLAP_TRAINER_STRICT", "0")
    monkeypatch.setenv("CLAP_TRAINER_DEVICE", "3")
    config = TrainerConfig.from_env(bpm=140, timbre=None)
    assert config.home == Path(tmp_path)
    assert config.store_path == Path(tmp_path) / "store.json"
    assert config.strict is False
    assert config.device == 3
    assert config.bpm == 140
    assert config.timbre == "clap"


def test_device_by_name(monkeypatch):
    monkeypatch.delenv("CLAP_TRAINER_STRICT", raising=False)
    monkeypatch.setenv("CLAP_TRAINER_DEVICE", "USB Mic")
    config = TrainerConfig.from_env()
    assert config.device == "USB Mic"
    assert config.strict is True


def test_report_misuse(caplog):
    report_misuse("lenient", strict=False)
    assert "lenient" in caplog.text
    with pytest.raises(SchedulingError, match="strict"):
        report_misuse("strict")
