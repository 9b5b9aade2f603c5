"""Exceptions raised by the trainer core."""

import logging

logger = logging.getLogger(__name__)


class TrainerError(Exception):
    """Base class for every error the core raises."""


class AudioInputError(TrainerError):
    """The microphone could not be acquired (denied, missing, or timed out)."""


class SchedulingError(TrainerError):
    """Transport, recording, or quiz API used out of order."""


class StorageError(TrainerError):
    """A durable save or delete failed; in-memory state is unchanged."""


class PatternError(TrainerError):
    """Pattern data is malformed (wrong slot count, bad index)."""


def report_misuse(message: str, strict: bool = True) -> None:
    """Log a scheduling misuse and raise it when running strict."""
    logger.error("scheduling misuse: %s", message)
    if strict:
        raise SchedulingError(message)
