from __future__ import annotations

from dataclasses import dataclass

import pytest

from dual_nback.config import NBackConfig
from dual_nback.scoring import Modality, ScoreCounters
from dual_nback.session import SessionPhase, build_trial_session
from dual_nback.stimuli import StimulusGenerator, StimulusRng


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _drive(engine: object, clock: FakeClock, *, dt: float, max_steps: int = 10_000) -> None:
    for _ in range(max_steps):
        clock.advance(dt)
        engine.update()
        if engine.phase is SessionPhase.CLOSED:
            return
    raise AssertionError(f"Session did not close in {max_steps} steps")


def test_headless_clock_driven_run_with_scripted_player() -> None:
    seed = 2024
    level = 2
    config = NBackConfig(chance_of_guaranteed_match=40.0, trial_period_s=3.0, display_s=0.5)
    clock = FakeClock()
    engine = build_trial_session(config=config, current_level=level, clock=clock, seed=seed)

    mirror = StimulusGenerator(level=level, rng=StimulusRng(seed), guaranteed_match_prob=0.4)
    batches = [mirror.initial()]
    for _ in range(engine.total_trials // level):
        batches.append(mirror.next(batches[-1]))

    # Nothing is shown before the first period elapses.
    clock.advance(2.75)
    engine.update()
    assert engine.snapshot().trial_number == 0
    assert engine.snapshot().visible_location is None

    expected_hits = 0
    expected_misses = 0
    seen_trial = 0
    for _ in range(20_000):
        clock.advance(0.25)
        engine.update()
        snap = engine.snapshot()
        if snap.phase is SessionPhase.CLOSED:
            break
        if snap.trial_number == seen_trial:
            continue
        seen_trial = snap.trial_number

        # The square is visible right after presentation.
        assert snap.visible_location is not None

        t = seen_trial - 1
        if t < level:
            continue
        current = batches[t // level][t % level]
        target = batches[t // level - 1][t % level]
        # Script: always answer position correctly, never press audio.
        if current.location == target.location:
            assert engine.signal(Modality.LOCATION) is True
            expected_hits += 1
        if current.audio == target.audio:
            expected_misses += 1

    assert engine.phase is SessionPhase.CLOSED
    result = engine.result
    assert result is not None

    counters = result.counters
    assert counters.position_correct == expected_hits
    assert counters.position_false_positive == 0
    assert counters.position_false_negative == 0
    assert counters.audio_correct == 0
    assert counters.audio_false_negative == expected_misses
    considered = expected_hits + expected_misses
    expected_pct = 0.0 if considered == 0 else 100.0 * expected_hits / considered
    assert result.percent_score == pytest.approx(expected_pct)


def test_display_duration_hides_square_before_next_tick() -> None:
    clock = FakeClock()
    engine = build_trial_session(config=NBackConfig(), current_level=1, clock=clock, seed=9)

    clock.advance(3.0)
    engine.update()
    snap = engine.snapshot()
    assert snap.trial_number == 1
    assert snap.visible_location == engine.batch[0].location

    clock.advance(0.25)
    assert engine.snapshot().visible_location is not None
    clock.advance(0.25)
    assert engine.snapshot().visible_location is None
    assert engine.snapshot().time_to_next_tick_s == pytest.approx(2.5)


def test_stalled_frame_presents_a_single_trial() -> None:
    clock = FakeClock()
    engine = build_trial_session(config=NBackConfig(), current_level=2, clock=clock, seed=1)

    clock.advance(9.0)
    engine.update()
    assert engine.trials_completed == 1
    assert engine.snapshot().time_to_next_tick_s == pytest.approx(3.0)


def test_stall_does_not_score_unseen_trials() -> None:
    clock = FakeClock()
    config = NBackConfig(chance_of_guaranteed_match=100.0)
    engine = build_trial_session(config=config, current_level=1, clock=clock, seed=3)

    clock.advance(6.0)
    engine.update()
    clock.advance(24.0)
    engine.update()

    assert engine.trials_completed == 2
    assert engine.counters == ScoreCounters()
    assert engine.events() == []


def test_whole_session_closes_after_total_plus_one_periods() -> None:
    clock = FakeClock()
    engine = build_trial_session(config=NBackConfig(), current_level=1, clock=clock, seed=5)
    total = engine.total_trials

    for _ in range(6 * total):
        clock.advance(0.5)
        engine.update()
    assert engine.phase is SessionPhase.ACTIVE
    assert engine.remaining_trials == 0

    _drive(engine, clock, dt=0.5, max_steps=6)
    assert engine.result is not None
    assert engine.snapshot().result is engine.result
