from __future__ import annotations

from dataclasses import dataclass

from .config import Mode, NBackConfig
from .scoring import ScoreCounters, adjust_level, percent_score


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Outcome of one naturally completed session, handed to the host for storage."""

    level_at_completion: int
    percent_score: float
    new_level: int

    total_trials: int
    counters: ScoreCounters
    mode: Mode = Mode.AUTO

    @property
    def level_changed(self) -> bool:
        return self.new_level != self.level_at_completion


def build_session_result(
    *,
    level: int,
    counters: ScoreCounters,
    config: NBackConfig,
    total_trials: int,
) -> SessionResult:
    """Score the counters and pick the next level.

    Manual mode keeps the level fixed whatever the score.
    """

    score = percent_score(counters)
    if config.mode is Mode.MANUAL:
        new_level = int(level)
    else:
        new_level = adjust_level(
            level=int(level),
            percent=score,
            raise_threshold=config.raise_threshold,
            lower_threshold=config.lower_threshold,
        )
    return SessionResult(
        level_at_completion=int(level),
        percent_score=float(score),
        new_level=int(new_level),
        total_trials=int(total_trials),
        counters=counters,
        mode=config.mode,
    )
