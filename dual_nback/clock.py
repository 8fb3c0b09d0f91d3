from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class TrialClock:
    """Repeating fixed-period tick source.

    The clock is polled rather than callback driven: ``poll()`` fires at most
    once per call. After a stall longer than a period the missed periods are
    dropped and the next tick is scheduled one period from the poll.
    """

    def __init__(self, *, clock: Clock, period_s: float = 3.0) -> None:
        if period_s <= 0.0:
            raise ValueError("period_s must be > 0")
        self._clock = clock
        self._period_s = float(period_s)
        self._next_tick_at_s: float | None = None

    @property
    def period_s(self) -> float:
        return self._period_s

    @property
    def running(self) -> bool:
        return self._next_tick_at_s is not None

    def start(self) -> None:
        self._next_tick_at_s = self._clock.now() + self._period_s

    def stop(self) -> None:
        self._next_tick_at_s = None

    def poll(self) -> int:
        if self._next_tick_at_s is None:
            return 0
        now = self._clock.now()
        if now < self._next_tick_at_s:
            return 0
        self._next_tick_at_s += self._period_s
        if now >= self._next_tick_at_s:
            # Stalled past a whole period: restart the cadence from now.
            self._next_tick_at_s = now + self._period_s
        return 1

    def time_to_next_tick_s(self) -> float | None:
        if self._next_tick_at_s is None:
            return None
        return max(0.0, self._next_tick_at_s - self._clock.now())


class OneShotTimer:
    """Single-use countdown, restarted once per stimulus presentation."""

    def __init__(self, *, clock: Clock) -> None:
        self._clock = clock
        self._expires_at_s: float | None = None

    @property
    def active(self) -> bool:
        if self._expires_at_s is None:
            return False
        if self._clock.now() >= self._expires_at_s:
            self._expires_at_s = None
            return False
        return True

    def start(self, duration_s: float) -> None:
        if duration_s <= 0.0:
            raise ValueError("duration_s must be > 0")
        self._expires_at_s = self._clock.now() + float(duration_s)

    def cancel(self) -> None:
        self._expires_at_s = None
