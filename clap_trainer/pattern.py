"""
The 32-slot sub-beat grid and preset definitions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence

from .errors import PatternError
from .positions import (
    SLOT_COUNT,
    is_main_slot,
    is_valid_slot,
    slot_label,
    slot_to_position,
)


class Role(Enum):
    MAIN = "main"
    SUB = "sub"


class Accent(Enum):
    """Relative loudness of a sounding slot, as a dB offset from master volume."""

    STRONG = 4.0
    MEDIUM = 0.0
    WEAK = -4.0
    SILENT = None

    @property
    def offset_db(self) -> float | None:
        return self.value


# Notes carried over from the preset file format: C2 on the beat, C1 off it
_MAIN_NOTE = "C2"
_SUB_NOTE = "C1"
_REST_NOTE = "Rest"


@dataclass
class SubBeat:
    index: int
    enabled: bool = False

    @property
    def role(self) -> Role:
        return Role.MAIN if is_main_slot(self.index) else Role.SUB

    @property
    def label(self) -> str:
        return slot_label(self.index)

    @property
    def accent(self) -> Accent:
        if not self.enabled:
            return Accent.SILENT
        if self.role is Role.SUB:
            return Accent.WEAK
        return Accent.STRONG if self.index == 0 else Accent.MEDIUM

    @property
    def note(self) -> str:
        if not self.enabled:
            return _REST_NOTE
        return _MAIN_NOTE if self.role is Role.MAIN else _SUB_NOTE

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "time": str(slot_to_position(self.index)),
            "label": self.label,
            "note": self.note,
            "isMain": self.role is Role.MAIN,
            "enabled": self.enabled,
        }


def _blank_slots() -> list[SubBeat]:
    return [SubBeat(i) for i in range(SLOT_COUNT)]


class Pattern:
    """A fixed-length grid of 32 sub-beats; only ``enabled`` ever changes."""

    def __init__(self, enabled: Iterable[bool] | None = None):
        self._slots = _blank_slots()
        if enabled is not None:
            self.load(list(enabled))

    @classmethod
    def from_indices(cls, indices: Iterable[int]) -> "Pattern":
        pattern = cls()
        for index in indices:
            pattern.set(index, True)
        return pattern

    @classmethod
    def from_dicts(cls, data: Sequence[dict]) -> "Pattern":
        """Rebuild from serialized sub-beats; raises PatternError when malformed."""
        if not isinstance(data, (list, tuple)) or len(data) != SLOT_COUNT:
            count = len(data) if isinstance(data, (list, tuple)) else type(data).__name__
            raise PatternError(f"load pattern: expected {SLOT_COUNT} slots, got {count}")
        try:
            flags = [bool(item.get("enabled", False)) for item in data]
        except AttributeError as e:
            raise PatternError(f"load pattern: slot is not a mapping ({e})") from e
        return cls(flags)

    def __len__(self) -> int:
        return SLOT_COUNT

    def __iter__(self):
        return iter(self._slots)

    def __getitem__(self, index: int) -> SubBeat:
        return self._slots[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, Pattern):
            return NotImplemented
        return self.flags() == other.flags()

    def __repr__(self) -> str:
        return f"Pattern({self.enabled_indices()})"

    def _check(self, index: int) -> None:
        if not is_valid_slot(index):
            raise PatternError(f"slot index {index} outside 0..{SLOT_COUNT - 1}")

    def set(self, index: int, enabled: bool) -> None:
        self._check(index)
        self._slots[index].enabled = enabled

    def toggle(self, index: int) -> bool:
        """Flip one slot and return its new state."""
        self._check(index)
        slot = self._slots[index]
        slot.enabled = not slot.enabled
        return slot.enabled

    def clear(self) -> None:
        for slot in self._slots:
            slot.enabled = False

    def load(self, source: "Pattern | Sequence[bool] | Sequence[SubBeat]") -> None:
        """Replace every slot's state; the grid is untouched if ``source`` is malformed."""
        if isinstance(source, Pattern):
            flags = source.flags()
        else:
            if len(source) != SLOT_COUNT:
                raise PatternError(
                    f"load pattern: expected {SLOT_COUNT} slots, got {len(source)}")
            flags = [s.enabled if isinstance(s, SubBeat) else bool(s) for s in source]
        for slot, flag in zip(self._slots, flags):
            slot.enabled = flag

    def copy(self) -> "Pattern":
        return Pattern(self.flags())

    def flags(self) -> list[bool]:
        return [slot.enabled for slot in self._slots]

    def enabled_indices(self) -> list[int]:
        return [slot.index for slot in self._slots if slot.enabled]

    def to_dicts(self) -> list[dict]:
        return [slot.to_dict() for slot in self._slots]


@dataclass
class Preset:
    id: str
    name: str
    pattern: Pattern = field(default_factory=Pattern)
    is_custom: bool = False
    use_pickup: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "beats": self.pattern.to_dicts(),
            "isCustom": self.is_custom,
            "usePickup": self.use_pickup,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Preset":
        try:
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                pattern=Pattern.from_dicts(data["beats"]),
                is_custom=bool(data.get("isCustom", True)),
                use_pickup=bool(data.get("usePickup", True)),
            )
        except (KeyError, TypeError) as e:
            raise PatternError(f"load preset: missing or bad field {e}") from e


# ─── Built-in Presets ────────────────────────────────────────────────────────

BUILT_IN_PRESETS: tuple[Preset, ...] = (
    Preset("triple-step", "Triple Step (×4)",
           Pattern.from_indices([0, 3, 4, 8, 11, 12, 16, 19, 20, 24, 27, 28])),
    Preset("step-step", "Step-Step (×4)",
           Pattern.from_indices(range(0, SLOT_COUNT, 4))),
    Preset("step-hold", "Step-Hold (×4)",
           Pattern.from_indices([0, 8, 16, 24])),
    Preset("mixed-1", "Mixed: Triple + Step",
           Pattern.from_indices([0, 3, 4, 8, 11, 12, 16, 20, 24, 28])),
)


def find_built_in(preset_id: str) -> Preset | None:
    for preset in BUILT_IN_PRESETS:
        if preset.id == preset_id:
            return preset
    return None
