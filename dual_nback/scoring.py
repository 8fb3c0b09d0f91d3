from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from .stimuli import Stimulus


class Modality(StrEnum):
    LOCATION = "location"
    AUDIO = "audio"


class ResponseState(StrEnum):
    AWAITING = "awaiting"
    SIGNALED = "signaled"
    LOCKED = "locked"


class Outcome(StrEnum):
    CORRECT = "correct"
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"
    TRUE_NEGATIVE = "true_negative"


def is_match(current: Stimulus, target: Stimulus, modality: Modality) -> bool:
    if modality is Modality.LOCATION:
        return current.location == target.location
    return current.audio == target.audio


def classify_response(*, matched: bool, signaled: bool) -> Outcome:
    if matched:
        return Outcome.CORRECT if signaled else Outcome.FALSE_NEGATIVE
    return Outcome.FALSE_POSITIVE if signaled else Outcome.TRUE_NEGATIVE


@dataclass(frozen=True, slots=True)
class ScoreCounters:
    """Per-modality outcome tallies. True negatives are never counted."""

    position_correct: int = 0
    audio_correct: int = 0
    position_false_positive: int = 0
    audio_false_positive: int = 0
    position_false_negative: int = 0
    audio_false_negative: int = 0

    @property
    def correct(self) -> int:
        return self.position_correct + self.audio_correct

    @property
    def wrong(self) -> int:
        return (
            self.position_false_positive
            + self.audio_false_positive
            + self.position_false_negative
            + self.audio_false_negative
        )

    @property
    def considered(self) -> int:
        return self.correct + self.wrong

    def record(self, modality: Modality, outcome: Outcome) -> "ScoreCounters":
        if outcome is Outcome.TRUE_NEGATIVE:
            return self
        prefix = "position" if modality is Modality.LOCATION else "audio"
        field_name = f"{prefix}_{outcome.value}"
        return replace(self, **{field_name: getattr(self, field_name) + 1})

    def percent_score(self) -> float:
        return percent_score(self)


def percent_score(counters: ScoreCounters) -> float:
    """Correct responses as a percentage of all scored outcomes (0 when none)."""

    considered = counters.considered
    if considered == 0:
        return 0.0
    return 100.0 * counters.correct / considered


def adjust_level(
    *,
    level: int,
    percent: float,
    raise_threshold: float,
    lower_threshold: float,
) -> int:
    # Strict inequalities: a score equal to a threshold keeps the level.
    if percent > raise_threshold:
        return level + 1
    if percent < lower_threshold:
        return max(1, level - 1)
    return level


def total_trials(*, level: int, base_trials: int, trial_factor: int, trial_exponent: int) -> int:
    if level < 1:
        raise ValueError("level must be >= 1")
    return int(base_trials) + int(trial_factor) * int(level) ** int(trial_exponent)
