from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any


class Mode(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class NBackConfig:
    """Session configuration, read-only to the trial engine.

    Thresholds and chances are percentages on the same 0-100 scale as the
    session score.
    """

    base_trials: int = 20
    trial_factor: int = 1
    trial_exponent: int = 2
    raise_threshold: float = 80.0
    lower_threshold: float = 50.0
    chance_of_guaranteed_match: float = 12.5
    chance_of_interference: float = 0.0

    mode: Mode = Mode.AUTO
    manual_level: int = 1

    trial_period_s: float = 3.0
    display_s: float = 0.5

    @property
    def guaranteed_match_prob(self) -> float:
        return self.chance_of_guaranteed_match / 100.0

    @property
    def interference_prob(self) -> float:
        return self.chance_of_interference / 100.0

    def validate(self) -> None:
        if self.base_trials < 0:
            raise ValueError("base_trials must be >= 0")
        if self.trial_factor < 0:
            raise ValueError("trial_factor must be >= 0")
        if self.trial_exponent < 0:
            raise ValueError("trial_exponent must be >= 0")
        if not (0.0 <= self.lower_threshold <= 100.0):
            raise ValueError("lower_threshold must be in [0, 100]")
        if not (0.0 <= self.raise_threshold <= 100.0):
            raise ValueError("raise_threshold must be in [0, 100]")
        if self.lower_threshold > self.raise_threshold:
            raise ValueError("lower_threshold must be <= raise_threshold")
        if not (0.0 <= self.chance_of_guaranteed_match <= 100.0):
            raise ValueError("chance_of_guaranteed_match must be in [0, 100]")
        if not (0.0 <= self.chance_of_interference <= 100.0):
            raise ValueError("chance_of_interference must be in [0, 100]")
        if self.chance_of_guaranteed_match + self.chance_of_interference > 100.0:
            raise ValueError("chance_of_guaranteed_match + chance_of_interference must be <= 100")
        if self.manual_level < 1:
            raise ValueError("manual_level must be >= 1")
        if self.trial_period_s <= 0.0:
            raise ValueError("trial_period_s must be > 0")
        if self.display_s <= 0.0:
            raise ValueError("display_s must be > 0")
        if self.display_s >= self.trial_period_s:
            raise ValueError("display_s must be < trial_period_s")

    def level_for(self, current_level: int) -> int:
        if self.mode is Mode.MANUAL:
            return int(self.manual_level)
        return max(1, int(current_level))

    def next_mode(self) -> "NBackConfig":
        return replace(self, mode=Mode.MANUAL if self.mode is Mode.AUTO else Mode.AUTO)

    def next_manual_level(self, *, max_level: int = 9) -> "NBackConfig":
        """Step the manual level up by one, wrapping back to 1 after ``max_level``."""

        level = self.manual_level + 1
        return replace(self, manual_level=1 if level > max_level else level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_trials": int(self.base_trials),
            "trial_factor": int(self.trial_factor),
            "trial_exponent": int(self.trial_exponent),
            "raise_threshold": float(self.raise_threshold),
            "lower_threshold": float(self.lower_threshold),
            "chance_of_guaranteed_match": float(self.chance_of_guaranteed_match),
            "chance_of_interference": float(self.chance_of_interference),
            "mode": self.mode.value,
            "manual_level": int(self.manual_level),
            "trial_period_s": float(self.trial_period_s),
            "display_s": float(self.display_s),
        }

    @classmethod
    def from_dict(cls, data: object) -> "NBackConfig":
        """Parse stored settings; missing or malformed fields take defaults."""

        if not isinstance(data, dict):
            return cls()
        d = cls()
        raw_mode = str(data.get("mode", d.mode.value)).strip().lower()
        mode = Mode(raw_mode) if raw_mode in tuple(Mode) else d.mode
        return cls(
            base_trials=_as_int(data.get("base_trials"), d.base_trials),
            trial_factor=_as_int(data.get("trial_factor"), d.trial_factor),
            trial_exponent=_as_int(data.get("trial_exponent"), d.trial_exponent),
            raise_threshold=_as_float(data.get("raise_threshold"), d.raise_threshold),
            lower_threshold=_as_float(data.get("lower_threshold"), d.lower_threshold),
            chance_of_guaranteed_match=_as_float(
                data.get("chance_of_guaranteed_match"), d.chance_of_guaranteed_match
            ),
            chance_of_interference=_as_float(data.get("chance_of_interference"), d.chance_of_interference),
            mode=mode,
            manual_level=_as_int(data.get("manual_level"), d.manual_level),
            trial_period_s=_as_float(data.get("trial_period_s"), d.trial_period_s),
            display_s=_as_float(data.get("display_s"), d.display_s),
        )


def _as_float(value: object, fallback: float) -> float:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


def _as_int(value: object, fallback: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
