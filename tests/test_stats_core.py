from __future__ import annotations

import datetime as dt

import pytest

from dual_nback.config import Mode
from dual_nback.results import SessionResult
from dual_nback.scoring import ScoreCounters
from dual_nback.stats import (
    DayEntry,
    RecentSession,
    RecentSessions,
    StatValues,
    apply_session_result,
    update_day_entry,
)

DAY1 = dt.date(2024, 3, 1)
DAY2 = dt.date(2024, 3, 2)


def _result(level: int, new_level: int, score: float = 70.0, mode: Mode = Mode.AUTO) -> SessionResult:
    return SessionResult(
        level_at_completion=level,
        percent_score=score,
        new_level=new_level,
        total_trials=24,
        counters=ScoreCounters(),
        mode=mode,
    )


def test_recent_sessions_keep_ten_most_recent_in_arrival_order() -> None:
    recent = RecentSessions()
    for i in range(11):
        recent.push(RecentSession(date=DAY1, level=i + 1, percent_score=i))

    assert len(recent) == 10
    assert [s.level for s in recent] == list(range(2, 12))
    assert recent.as_list()[0].percent_score == 1


def test_recent_sessions_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        RecentSessions(capacity=0)


def test_apply_session_result_updates_counts_and_level() -> None:
    stats = StatValues(
        current_level=2,
        average_level_today=2.0,
        sessions_today=1,
        total_sessions=5,
        last_session_date=DAY1,
    )
    out = apply_session_result(stats, _result(2, 3), today=DAY1)

    assert out.current_level == 3
    assert out.sessions_today == 2
    assert out.total_sessions == 6
    assert out.average_level_today == pytest.approx(2.0)
    assert out.last_session_date == DAY1


def test_average_level_today_is_rounded_to_two_places() -> None:
    stats = StatValues(current_level=2, average_level_today=1.0, sessions_today=2, last_session_date=DAY1)
    out = apply_session_result(stats, _result(2, 2), today=DAY1)
    assert out.average_level_today == 1.33


def test_new_day_resets_today_counters() -> None:
    stats = StatValues(
        current_level=4,
        average_level_today=3.5,
        sessions_today=6,
        total_sessions=30,
        last_session_date=DAY1,
    )
    out = apply_session_result(stats, _result(4, 4), today=DAY2)

    assert out.sessions_today == 1
    assert out.average_level_today == 4.0
    assert out.total_sessions == 31


def test_manual_results_do_not_move_current_level() -> None:
    stats = StatValues(current_level=2)
    out = apply_session_result(stats, _result(5, 5, mode=Mode.MANUAL), today=DAY1)
    assert out.current_level == 2
    assert out.total_sessions == 1


def test_update_day_entry_tracks_average_and_max() -> None:
    entry = update_day_entry(None, today=DAY1, level=2)
    assert entry == DayEntry(date=DAY1, average_level=2.0, sessions_completed=1, max_level=2)

    entry = update_day_entry(entry, today=DAY1, level=4)
    assert entry.average_level == pytest.approx(3.0)
    assert entry.sessions_completed == 2
    assert entry.max_level == 4

    entry = update_day_entry(entry, today=DAY1, level=1)
    assert entry.max_level == 4
