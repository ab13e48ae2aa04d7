"""
Clock -- injectable source of "now".

Cache expiry, token expiry and workflow timestamps all read time through
a Clock so tests can move time explicitly. Only SystemClock touches the
real wall clock.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH_FOR_TESTS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Readers on other threads (cache workers, the sweeper) see each
    ``advance`` atomically.
    """

    def __init__(self, start: datetime | None = None):
        start = start or EPOCH_FOR_TESTS
        if start.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware start")
        self._current = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward (or back, for negative values) and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        with self._lock:
            self._current += step
            return self._current
