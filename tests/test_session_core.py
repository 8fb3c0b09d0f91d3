from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from dual_nback.config import Mode, NBackConfig
from dual_nback.results import SessionResult
from dual_nback.scoring import Modality, ResponseState, ScoreCounters
from dual_nback.session import SessionPhase, TrialSession, build_trial_session
from dual_nback.stimuli import AudioSymbol, Location, StimulusGenerator, StimulusRng


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


@dataclass
class RecordingPresenter:
    shown: list[Location] = field(default_factory=list)
    played: list[AudioSymbol] = field(default_factory=list)

    def show(self, location: Location) -> None:
        self.shown.append(location)

    def play(self, audio: AudioSymbol) -> None:
        self.played.append(audio)


def _session(*, level: int = 2, seed: int = 11, **overrides: object) -> TrialSession:
    config = NBackConfig(**overrides)  # type: ignore[arg-type]
    return TrialSession(level=level, config=config, rng=StimulusRng(seed), clock=FakeClock())


def test_initial_state_after_construction() -> None:
    s = _session(level=2)
    assert s.phase is SessionPhase.ACTIVE
    assert s.total_trials == 24
    assert s.remaining_trials == 24
    assert s.trials_completed == 0
    assert len(s.batch) == 2
    assert s.previous_batch is None
    assert s.counters == ScoreCounters()
    assert s.response_state(Modality.LOCATION) is ResponseState.LOCKED
    assert s.current_stimulus is None


def test_level_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _session(level=0)


def test_invalid_config_is_rejected() -> None:
    with pytest.raises(ValueError):
        _session(raise_threshold=150.0)


def test_warm_up_trials_ignore_signals() -> None:
    s = _session(level=3)
    for _ in range(3):
        s.tick()
        assert s.signal(Modality.LOCATION) is False
        assert s.signal(Modality.AUDIO) is False

    s.tick()  # trial 4 is the first with a 3-back target
    assert s.response_state(Modality.LOCATION) is ResponseState.AWAITING
    assert s.signal(Modality.LOCATION) is True
    assert s.signal(Modality.LOCATION) is False
    assert s.response_state(Modality.LOCATION) is ResponseState.SIGNALED
    assert s.response_state(Modality.AUDIO) is ResponseState.AWAITING


def test_batch_rotates_every_level_trials() -> None:
    s = _session(level=3, seed=99)
    first = s.batch
    for _ in range(3):
        s.tick()
    assert s.previous_batch is None

    s.tick()
    assert s.previous_batch == first
    second = s.batch
    assert len(second) == 3

    for _ in range(3):
        s.tick()
    assert s.previous_batch == second


def test_batches_match_a_mirror_generator() -> None:
    seed = 5150
    s = _session(level=2, seed=seed, chance_of_guaranteed_match=30.0, chance_of_interference=10.0)
    mirror = StimulusGenerator(level=2, rng=StimulusRng(seed), guaranteed_match_prob=0.3, interference_prob=0.1)

    expected = mirror.initial()
    assert s.batch == expected
    for trial in range(s.total_trials):
        if trial > 0 and trial % 2 == 0:
            expected = mirror.next(expected)
        s.tick()
        assert s.current_stimulus == expected[trial % 2]


def test_presenter_receives_every_trial() -> None:
    presenter = RecordingPresenter()
    s = TrialSession(level=1, config=NBackConfig(), rng=StimulusRng(3), clock=FakeClock(), presenter=presenter)
    while s.tick():
        pass
    assert len(presenter.shown) == s.total_trials == 21
    assert len(presenter.played) == 21


def test_last_trial_is_scored_on_the_closing_tick() -> None:
    completions: list[SessionResult] = []
    config = NBackConfig(chance_of_guaranteed_match=100.0)
    s = TrialSession(
        level=2,
        config=config,
        rng=StimulusRng(1),
        clock=FakeClock(),
        on_complete=completions.append,
    )

    for _ in range(s.total_trials):
        assert s.tick() is True
        s.signal(Modality.LOCATION)
        s.signal(Modality.AUDIO)

    assert s.phase is SessionPhase.ACTIVE
    assert s.remaining_trials == 0
    assert s.counters.position_correct == s.total_trials - 3

    assert s.tick() is False
    assert s.phase is SessionPhase.CLOSED
    assert s.counters.position_correct == s.total_trials - 2
    assert s.counters.audio_correct == s.total_trials - 2
    assert s.counters.wrong == 0
    assert len(completions) == 1
    assert completions[0] is s.result

    assert s.tick() is False
    assert s.signal(Modality.AUDIO) is False
    assert len(completions) == 1


def test_perfect_session_raises_level() -> None:
    s = _session(level=2, chance_of_guaranteed_match=100.0)
    while s.tick():
        s.signal(Modality.LOCATION)
        s.signal(Modality.AUDIO)

    result = s.result
    assert result is not None
    assert result.percent_score == 100.0
    assert result.new_level == 3
    assert len(s.events()) == 2 * (s.total_trials - 2)


def test_silent_session_on_all_matches_lowers_level() -> None:
    s = _session(level=3, chance_of_guaranteed_match=100.0)
    while s.tick():
        pass

    result = s.result
    assert result is not None
    scored = s.total_trials - 3
    assert s.counters == ScoreCounters(position_false_negative=scored, audio_false_negative=scored)
    assert result.percent_score == 0.0
    assert result.new_level == 2


def test_events_classify_against_previous_batch() -> None:
    s = _session(level=2, seed=77, chance_of_guaranteed_match=50.0)
    while s.tick():
        s.signal(Modality.AUDIO)

    for event in s.events():
        matched = event.presented == event.target
        if event.modality is Modality.AUDIO:
            assert event.signaled
            assert event.outcome.value == ("correct" if matched else "false_positive")
        else:
            assert not event.signaled
            assert event.outcome.value == ("false_negative" if matched else "true_negative")


def test_empty_session_scores_zero_and_keeps_level_floor() -> None:
    s = _session(level=1, base_trials=0, trial_factor=0)
    assert s.total_trials == 0
    assert s.tick() is False

    result = s.result
    assert result is not None
    assert result.percent_score == 0.0
    assert result.new_level == 1


def test_session_ended_during_warm_up_scores_zero() -> None:
    # Two trials at level 2: nothing ever has a 2-back target.
    s = _session(level=2, base_trials=1, trial_factor=1, trial_exponent=0)
    assert s.total_trials == 2
    while s.tick():
        assert s.signal(Modality.LOCATION) is False

    result = s.result
    assert result is not None
    assert s.counters.considered == 0
    assert result.percent_score == 0.0
    assert result.new_level == 1


def test_abort_closes_without_result() -> None:
    completions: list[SessionResult] = []
    s = TrialSession(
        level=2,
        config=NBackConfig(),
        rng=StimulusRng(4),
        clock=FakeClock(),
        on_complete=completions.append,
    )
    for _ in range(5):
        s.tick()
    s.abort()

    assert s.phase is SessionPhase.CLOSED
    assert s.result is None
    assert completions == []
    assert s.tick() is False
    s.abort()
    assert s.phase is SessionPhase.CLOSED


def test_manual_mode_plays_manual_level() -> None:
    config = NBackConfig(mode=Mode.MANUAL, manual_level=3, chance_of_guaranteed_match=100.0)
    s = build_trial_session(config=config, current_level=6, clock=FakeClock(), seed=8)
    assert s.level == 3
    while s.tick():
        s.signal(Modality.LOCATION)
        s.signal(Modality.AUDIO)

    assert s.result is not None
    assert s.result.percent_score == 100.0
    assert s.result.new_level == 3
    assert s.result.mode is Mode.MANUAL
