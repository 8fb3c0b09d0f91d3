"""Trial session state machine for dual n-back.

``TrialSession`` owns one play session: it draws stimulus batches, advances one
trial per ``TrialClock`` tick, latches match signals, classifies each completed
trial against the stimulus ``level`` trials back, and finally scores the run and
picks the next level.

Tick order (per trial):

1. Classify the trial that just ended, once ``level`` trials of history exist.
2. Re-arm both modalities for the upcoming trial (warm-up trials stay locked).
3. If the previous tick showed the last trial, finalize and close.
4. At each batch boundary, rotate in a freshly generated batch.
5. Present the current stimulus and count the trial down.

It intentionally avoids any dependency on pygame so it can be driven headlessly
by tests with a fake clock.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from .clock import Clock, OneShotTimer, TrialClock
from .config import NBackConfig
from .log import get_logger
from .results import SessionResult, build_session_result
from .scoring import (
    Modality,
    Outcome,
    ResponseState,
    ScoreCounters,
    classify_response,
    is_match,
    total_trials,
)
from .stimuli import (
    AudioSymbol,
    Location,
    Rng,
    Stimulus,
    StimulusBatch,
    StimulusGenerator,
    StimulusRng,
)

logger = get_logger(__name__)


class SessionPhase(StrEnum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class Presenter(Protocol):
    """Host-side sink for stimulus presentation (fire-and-forget)."""

    def show(self, location: Location) -> None: ...
    def play(self, audio: AudioSymbol) -> None: ...


@dataclass(frozen=True, slots=True)
class TrialOutcomeEvent:
    trial: int  # 1-based trial number
    batch_index: int
    modality: Modality
    presented: str
    target: str
    signaled: bool
    outcome: Outcome
    response_time_s: float | None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    phase: SessionPhase
    level: int
    total_trials: int
    remaining_trials: int
    trial_number: int
    visible_location: Location | None
    current_audio: AudioSymbol | None
    location_state: ResponseState
    audio_state: ResponseState
    counters: ScoreCounters
    time_to_next_tick_s: float | None
    result: SessionResult | None = None


class TrialSession:
    def __init__(
        self,
        *,
        level: int,
        config: NBackConfig,
        rng: Rng,
        clock: Clock,
        presenter: Presenter | None = None,
        on_complete: Callable[[SessionResult], None] | None = None,
    ) -> None:
        if level < 1:
            raise ValueError("level must be >= 1")
        config.validate()

        self._level = int(level)
        self._config = config
        self._clock = clock
        self._presenter = presenter
        self._on_complete = on_complete

        self._generator = StimulusGenerator(
            level=self._level,
            rng=rng,
            guaranteed_match_prob=config.guaranteed_match_prob,
            interference_prob=config.interference_prob,
        )
        self._trial_clock = TrialClock(clock=clock, period_s=config.trial_period_s)
        self._display = OneShotTimer(clock=clock)

        self._phase = SessionPhase.INITIALIZING
        self._total = 0
        self._remaining = 0
        self._final_trial = False
        self._batch: StimulusBatch = ()
        self._previous: StimulusBatch | None = None
        self._index = 0
        self._trial_number = 0
        self._presented_at_s: float | None = None
        self._states: dict[Modality, ResponseState] = {}
        self._signaled_at_s: dict[Modality, float] = {}
        self._counters = ScoreCounters()
        self._events: list[TrialOutcomeEvent] = []
        self._result: SessionResult | None = None

        self._initialize()

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def level(self) -> int:
        return self._level

    @property
    def config(self) -> NBackConfig:
        return self._config

    @property
    def total_trials(self) -> int:
        return self._total

    @property
    def remaining_trials(self) -> int:
        return self._remaining

    @property
    def trials_completed(self) -> int:
        return self._total - self._remaining

    @property
    def counters(self) -> ScoreCounters:
        return self._counters

    @property
    def result(self) -> SessionResult | None:
        return self._result

    @property
    def batch(self) -> StimulusBatch:
        return self._batch

    @property
    def previous_batch(self) -> StimulusBatch | None:
        return self._previous

    @property
    def current_stimulus(self) -> Stimulus | None:
        if self._phase is not SessionPhase.ACTIVE or self._trial_number == 0:
            return None
        return self._batch[self._index]

    def response_state(self, modality: Modality) -> ResponseState:
        return self._states[modality]

    def events(self) -> list[TrialOutcomeEvent]:
        return list(self._events)

    def update(self) -> None:
        """Run at most one trial boundary per call, driven by the injected clock."""

        if self._phase is not SessionPhase.ACTIVE:
            return
        if self._trial_clock.poll():
            self.tick()

    def tick(self) -> bool:
        """Process one trial boundary. Returns False once the session is closed."""

        if self._phase is not SessionPhase.ACTIVE:
            return False

        completed = self.trials_completed
        if completed > self._level:
            self._classify_completed_trial()

        armed = completed >= self._level
        for modality in Modality:
            self._states[modality] = ResponseState.AWAITING if armed else ResponseState.LOCKED
        self._signaled_at_s.clear()

        if self._final_trial:
            self._finalize()
            return False

        idx = completed % self._level
        if idx == 0 and completed != 0:
            self._previous = self._batch
            self._batch = self._generator.next(self._previous)
            logger.debug("batch_generated", level=self._level, trial=completed + 1)

        self._index = idx
        self._trial_number = completed + 1
        self._present(self._batch[idx])

        self._remaining -= 1
        if self._remaining == 0:
            self._final_trial = True
        return True

    def signal(self, modality: Modality) -> bool:
        """Latch a match response. Only the first signal per trial counts."""

        if self._phase is not SessionPhase.ACTIVE:
            return False
        if self._states.get(modality) is not ResponseState.AWAITING:
            return False
        self._states[modality] = ResponseState.SIGNALED
        self._signaled_at_s[modality] = self._clock.now()
        return True

    def abort(self) -> None:
        """Close the session early. Aborted sessions produce no result."""

        if self._phase is SessionPhase.CLOSED:
            return
        logger.info(
            "session_aborted",
            level=self._level,
            trials_completed=self.trials_completed,
            total_trials=self._total,
        )
        self._close()

    def visible_location(self) -> Location | None:
        if self._phase is not SessionPhase.ACTIVE or self._trial_number == 0:
            return None
        if not self._display.active:
            return None
        return self._batch[self._index].location

    def snapshot(self) -> SessionSnapshot:
        current = self.current_stimulus
        return SessionSnapshot(
            phase=self._phase,
            level=self._level,
            total_trials=self._total,
            remaining_trials=self._remaining,
            trial_number=self._trial_number,
            visible_location=self.visible_location(),
            current_audio=None if current is None else current.audio,
            location_state=self._states[Modality.LOCATION],
            audio_state=self._states[Modality.AUDIO],
            counters=self._counters,
            time_to_next_tick_s=self._trial_clock.time_to_next_tick_s(),
            result=self._result,
        )

    def _initialize(self) -> None:
        cfg = self._config
        self._total = total_trials(
            level=self._level,
            base_trials=cfg.base_trials,
            trial_factor=cfg.trial_factor,
            trial_exponent=cfg.trial_exponent,
        )
        self._batch = self._generator.initial()
        self._previous = None
        self._remaining = self._total
        self._final_trial = self._total == 0
        self._counters = ScoreCounters()
        self._states = {modality: ResponseState.LOCKED for modality in Modality}

        self._phase = SessionPhase.ACTIVE
        self._trial_clock.start()
        logger.info(
            "session_started",
            level=self._level,
            total_trials=self._total,
            mode=cfg.mode.value,
        )

    def _classify_completed_trial(self) -> None:
        assert self._previous is not None
        current = self._batch[self._index]
        target = self._previous[self._index]

        for modality in Modality:
            signaled = self._states[modality] is ResponseState.SIGNALED
            matched = is_match(current, target, modality)
            outcome = classify_response(matched=matched, signaled=signaled)
            self._counters = self._counters.record(modality, outcome)

            rt: float | None = None
            signaled_at = self._signaled_at_s.get(modality)
            if signaled_at is not None and self._presented_at_s is not None:
                rt = max(0.0, signaled_at - self._presented_at_s)

            presented, expected = (
                (current.location.value, target.location.value)
                if modality is Modality.LOCATION
                else (current.audio.value, target.audio.value)
            )
            self._events.append(
                TrialOutcomeEvent(
                    trial=self._trial_number,
                    batch_index=self._index,
                    modality=modality,
                    presented=presented,
                    target=expected,
                    signaled=signaled,
                    outcome=outcome,
                    response_time_s=rt,
                )
            )
            logger.debug(
                "response_classified",
                trial=self._trial_number,
                modality=modality.value,
                outcome=outcome.value,
            )
            self._states[modality] = ResponseState.LOCKED

    def _present(self, stimulus: Stimulus) -> None:
        self._presented_at_s = self._clock.now()
        self._display.start(self._config.display_s)
        if self._presenter is not None:
            self._presenter.show(stimulus.location)
            self._presenter.play(stimulus.audio)
        logger.debug(
            "stimulus_presented",
            trial=self._trial_number,
            location=stimulus.location.value,
            audio=stimulus.audio.value,
        )

    def _finalize(self) -> None:
        self._phase = SessionPhase.FINALIZING
        result = build_session_result(
            level=self._level,
            counters=self._counters,
            config=self._config,
            total_trials=self._total,
        )
        self._result = result
        logger.info(
            "session_finalized",
            level=result.level_at_completion,
            percent_score=round(result.percent_score, 2),
            new_level=result.new_level,
            considered=self._counters.considered,
        )
        self._close()
        if self._on_complete is not None:
            self._on_complete(result)

    def _close(self) -> None:
        self._phase = SessionPhase.CLOSED
        self._trial_clock.stop()
        self._display.cancel()
        for modality in Modality:
            self._states[modality] = ResponseState.LOCKED
        self._signaled_at_s.clear()


def build_trial_session(
    *,
    config: NBackConfig,
    current_level: int,
    clock: Clock,
    seed: int,
    presenter: Presenter | None = None,
    on_complete: Callable[[SessionResult], None] | None = None,
) -> TrialSession:
    return TrialSession(
        level=config.level_for(current_level),
        config=config,
        rng=StimulusRng(seed),
        clock=clock,
        presenter=presenter,
        on_complete=on_complete,
    )
