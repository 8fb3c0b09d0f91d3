"""Stimulus types and batch generation for the dual n-back trial engine.

A batch holds exactly ``level`` stimuli. The first batch of a session is drawn
uniformly and never scored; every later batch is derived from the batch before
it so that index ``i`` of the new batch is compared against index ``i`` of the
previous one (exactly ``level`` trials back).

All randomness comes from an injected ``Rng``. Given the same seed the
generated stream is identical across runs.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, TypeVar

T = TypeVar("T")


class Location(StrEnum):
    TOP_LEFT = "top_left"
    TOP_MIDDLE = "top_middle"
    TOP_RIGHT = "top_right"
    CENTER_LEFT = "center_left"
    CENTER_MIDDLE = "center_middle"
    CENTER_RIGHT = "center_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_MIDDLE = "bottom_middle"
    BOTTOM_RIGHT = "bottom_right"

    @property
    def row(self) -> int:
        return _LOCATIONS.index(self) // 3

    @property
    def col(self) -> int:
        return _LOCATIONS.index(self) % 3


class AudioSymbol(StrEnum):
    C = "C"
    H = "H"
    K = "K"
    L = "L"
    Q = "Q"
    R = "R"
    S = "S"
    T = "T"


_LOCATIONS: tuple[Location, ...] = tuple(Location)
_AUDIO_SYMBOLS: tuple[AudioSymbol, ...] = tuple(AudioSymbol)


@dataclass(frozen=True, slots=True)
class Stimulus:
    location: Location
    audio: AudioSymbol


StimulusBatch = tuple[Stimulus, ...]


class Rng(Protocol):
    def random(self) -> float: ...
    def choice(self, seq: Sequence[T]) -> T: ...


class StimulusRng:
    """Seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._seed = int(seed)
        self._rng = random.Random(self._seed)

    @property
    def seed(self) -> int:
        return self._seed

    def random(self) -> float:
        return self._rng.random()

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)


def random_stimulus(rng: Rng) -> Stimulus:
    return Stimulus(location=rng.choice(_LOCATIONS), audio=rng.choice(_AUDIO_SYMBOLS))


def generate_initial(level: int, rng: Rng) -> StimulusBatch:
    """Draw ``level`` independent uniform stimuli (the unscored warm-up batch)."""

    if level < 1:
        raise ValueError("level must be >= 1")
    return tuple(random_stimulus(rng) for _ in range(level))


def generate_next(
    previous_batch: Sequence[Stimulus],
    level: int,
    guaranteed_match_prob: float,
    interference_prob: float,
    rng: Rng,
) -> StimulusBatch:
    """Build the batch following ``previous_batch``.

    Location and audio are rolled independently per index: a roll under
    ``guaranteed_match_prob`` copies the n-back target, a roll under the
    cumulative ``guaranteed_match_prob + interference_prob`` copies a
    neighbouring index of the previous batch (a lure), anything else is drawn
    uniformly.
    """

    if level < 1:
        raise ValueError("level must be >= 1")
    if len(previous_batch) != level:
        raise ValueError(f"previous batch has {len(previous_batch)} stimuli, expected {level}")

    locations = [s.location for s in previous_batch]
    audios = [s.audio for s in previous_batch]

    batch: list[Stimulus] = []
    for i in range(level):
        location = _next_coordinate(
            locations, i, level, _LOCATIONS, guaranteed_match_prob, interference_prob, rng
        )
        audio = _next_coordinate(
            audios, i, level, _AUDIO_SYMBOLS, guaranteed_match_prob, interference_prob, rng
        )
        batch.append(Stimulus(location=location, audio=audio))
    return tuple(batch)


def lure_index(i: int, level: int, rng: Rng) -> int:
    """Neighbouring index used for an interference stimulus.

    The last index always takes ``i - 1`` and index 0 always takes ``i + 1``;
    interior indices flip a fair coin. Boundaries are checked before the coin is
    drawn, so edge indices consume no randomness here.
    """

    if level < 2:
        raise ValueError("interference needs level >= 2")
    if i == level - 1:
        return i - 1
    if i == 0:
        return i + 1
    return i - 1 if rng.random() < 0.5 else i + 1


def _next_coordinate(
    previous: Sequence[T],
    i: int,
    level: int,
    pool: Sequence[T],
    guaranteed_match_prob: float,
    interference_prob: float,
    rng: Rng,
) -> T:
    roll = rng.random()
    if roll < guaranteed_match_prob:
        return previous[i]
    if level > 1 and roll < guaranteed_match_prob + interference_prob:
        return previous[lure_index(i, level, rng)]
    return rng.choice(pool)


class StimulusGenerator:
    """Deterministic batch source bound to one level and one RNG stream."""

    def __init__(
        self,
        *,
        level: int,
        rng: Rng,
        guaranteed_match_prob: float = 0.125,
        interference_prob: float = 0.0,
    ) -> None:
        if level < 1:
            raise ValueError("level must be >= 1")
        if not (0.0 <= guaranteed_match_prob <= 1.0):
            raise ValueError("guaranteed_match_prob must be in [0.0, 1.0]")
        if not (0.0 <= interference_prob <= 1.0):
            raise ValueError("interference_prob must be in [0.0, 1.0]")
        self._level = int(level)
        self._rng = rng
        self._guaranteed_match_prob = float(guaranteed_match_prob)
        self._interference_prob = float(interference_prob)

    @property
    def level(self) -> int:
        return self._level

    def initial(self) -> StimulusBatch:
        return generate_initial(self._level, self._rng)

    def next(self, previous_batch: Sequence[Stimulus]) -> StimulusBatch:
        return generate_next(
            previous_batch,
            self._level,
            self._guaranteed_match_prob,
            self._interference_prob,
            self._rng,
        )
