"""
Settings for the clap trainer.

Module-level constants are the defaults; ``TrainerConfig`` bundles the
values a running session needs and can pick up environment overrides.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

# ─── Audio Settings ──────────────────────────────────────────────────────────
SAMPLE_RATE = 44100        # Hz
ANALYSIS_BLOCK = 512       # samples per analysis frame (~12ms at 44100 Hz)
OUTPUT_BLOCK = 256         # samples per output callback
CHANNELS = 1               # mono

# ─── Clap Detection Settings ─────────────────────────────────────────────────
ENERGY_THRESHOLD = 0.15    # RMS above this counts as a clap
DEBOUNCE_MS = 100          # dead time after an accepted clap
POLL_HZ = 60               # analysis loop rate
ACQUIRE_TIMEOUT = 5.0      # seconds to wait for the microphone

# ─── Timing Settings ─────────────────────────────────────────────────────────
MIN_BPM = 60
MAX_BPM = 200
DEFAULT_BPM = 100
TOLERANCE_MS = 100         # ± window for crediting a clap to a slot
LOOKAHEAD = 0.03           # seconds the scheduler wakes before a deadline
DRAW_HZ = 60               # visual channel refresh rate

# ─── Sound Settings ──────────────────────────────────────────────────────────
DEFAULT_TIMBRE = "clap"
DEFAULT_VOLUME_DB = -10.0
COUNTDOWN_TICKS = (("C5", 1.0), ("C5", 1.0), ("C6", 1.0))

# ─── Storage Settings ────────────────────────────────────────────────────────
HISTORY_LIMIT = 50
SCHEMA_VERSION = 1
STORE_FILENAME = "store.json"
CUSTOM_PRESETS_KEY = "rhythm-trainer-custom-presets"
QUIZ_HISTORY_KEY = "rhythm-trainer-quiz-history"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


@dataclass
class TrainerConfig:
    bpm: int = DEFAULT_BPM
    timbre: str = DEFAULT_TIMBRE
    volume_db: float = DEFAULT_VOLUME_DB
    sample_rate: int = SAMPLE_RATE
    threshold: float = ENERGY_THRESHOLD
    debounce_ms: float = DEBOUNCE_MS
    tolerance_ms: float = TOLERANCE_MS
    history_limit: int = HISTORY_LIMIT
    use_pickup: bool = True
    strict: bool = True
    device: str | int | None = None
    home: Path = field(default_factory=lambda: Path.home() / ".clap_trainer")

    @property
    def store_path(self) -> Path:
        return self.home / STORE_FILENAME

    @classmethod
    def from_env(cls, **overrides) -> "TrainerConfig":
        """Build a config from defaults, environment, then explicit overrides."""
        env = {}
        home = os.getenv("CLAP_TRAINER_HOME")
        if home:
            env["home"] = Path(home).expanduser()
        env["strict"] = _env_flag("CLAP_TRAINER_STRICT", True)
        device = os.getenv("CLAP_TRAINER_DEVICE")
        if device:
            env["device"] = int(device) if device.isdigit() else device
        env.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**env)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="[%(name)s] %(message)s",
    )
