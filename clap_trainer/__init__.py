"""Clap rhythm trainer: play a sixteenth-note pattern, hear it clapped back, score it."""

from .config import TrainerConfig
from .detector import OnsetDetector, OnsetGate
from .errors import AudioInputError, PatternError, SchedulingError, StorageError, TrainerError
from .evaluation import BeatStatus, QuizEvaluation, evaluate
from .pattern import BUILT_IN_PRESETS, Pattern, Preset
from .quiz import Phase, PracticeSession, QuizSession
from .sequencer import Sequencer
from .transport import DrawChannel, Transport, TransportContext

__version__ = "0.1.0"
