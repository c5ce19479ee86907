# src/promptcascade/engine/clock.py
"""Clock abstraction for testable waits.

Pause polling, rate-limit waits and retry backoff all sleep through a Clock,
so tests can inject MockClock and observe every wait without blocking.

Production code uses SystemClock (the default).
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock for waits and timestamps.

    Implementations:
    - SystemClock: real time (production)
    - MockClock: controllable time (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def now(self) -> datetime:
        """Return the current wall-clock time as an aware UTC datetime."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds``."""
        ...


class SystemClock:
    """Production clock using time.monotonic() and time.sleep()."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class MockClock:
    """Controllable clock for deterministic testing.

    ``sleep`` never blocks: it records the requested duration and advances
    time by that amount.

    Example:
        clock = MockClock(start=0.0)
        clock.sleep(2.25)
        assert clock.sleeps == [2.25]
        assert clock.monotonic() == 2.25
    """

    def __init__(self, start: float = 0.0, wall_start: datetime | None = None) -> None:
        """Initialize mock clock.

        Args:
            start: Initial monotonic time value (default 0.0).
            wall_start: Wall-clock time corresponding to ``start``.
        """
        self._current = start
        self._start = start
        self._wall_start = wall_start or datetime(2026, 1, 15, 9, 30, tzinfo=UTC)
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._current

    def now(self) -> datetime:
        return self._wall_start + timedelta(seconds=self._current - self._start)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(seconds, 0.0))

    def advance(self, seconds: float) -> None:
        """Advance time by the given amount.

        Raises:
            ValueError: If seconds is negative (time cannot go backwards).
        """
        if seconds < 0:
            raise ValueError("Cannot advance time by negative amount")
        self._current += seconds


DEFAULT_CLOCK: Clock = SystemClock()
