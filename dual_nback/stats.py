from __future__ import annotations

import datetime as dt
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace

from .config import Mode
from .results import SessionResult

RECENT_SESSIONS_CAPACITY = 10


@dataclass(frozen=True, slots=True)
class StatValues:
    current_level: int = 1
    average_level_today: float = 0.0
    sessions_today: int = 0
    total_sessions: int = 0
    last_session_date: dt.date | None = None


@dataclass(frozen=True, slots=True)
class DayEntry:
    date: dt.date
    average_level: float = 0.0
    sessions_completed: int = 0
    max_level: int = 1


@dataclass(frozen=True, slots=True)
class RecentSession:
    date: dt.date
    level: int
    percent_score: int


class RecentSessions:
    """Latest sessions in arrival order, bounded; the oldest entry is evicted first."""

    def __init__(
        self,
        sessions: Iterable[RecentSession] = (),
        *,
        capacity: int = RECENT_SESSIONS_CAPACITY,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._sessions: deque[RecentSession] = deque(sessions, maxlen=capacity)

    @property
    def capacity(self) -> int:
        assert self._sessions.maxlen is not None
        return self._sessions.maxlen

    def push(self, session: RecentSession) -> None:
        self._sessions.append(session)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[RecentSession]:
        return iter(self._sessions)

    def as_list(self) -> list[RecentSession]:
        return list(self._sessions)


def round_2dp(x: float) -> float:
    return round(float(x), 2)


def apply_session_result(stats: StatValues, result: SessionResult, *, today: dt.date) -> StatValues:
    """Fold a completed session into the running statistics."""

    if stats.last_session_date != today:
        stats = replace(stats, sessions_today=0, average_level_today=0.0)

    average_today = round_2dp(
        (stats.average_level_today * stats.sessions_today + result.level_at_completion)
        / (stats.sessions_today + 1)
    )
    current_level = stats.current_level
    if result.mode is Mode.AUTO:
        current_level = result.new_level

    return StatValues(
        current_level=current_level,
        average_level_today=average_today,
        sessions_today=stats.sessions_today + 1,
        total_sessions=stats.total_sessions + 1,
        last_session_date=today,
    )


def update_day_entry(entry: DayEntry | None, *, today: dt.date, level: int) -> DayEntry:
    if entry is None:
        entry = DayEntry(date=today)
    average = (entry.average_level * entry.sessions_completed + level) / (entry.sessions_completed + 1)
    return DayEntry(
        date=entry.date,
        average_level=float(average),
        sessions_completed=entry.sessions_completed + 1,
        max_level=max(int(level), entry.max_level),
    )


def recent_session_from_result(result: SessionResult, *, today: dt.date, level: int) -> RecentSession:
    return RecentSession(date=today, level=int(level), percent_score=int(result.percent_score))
