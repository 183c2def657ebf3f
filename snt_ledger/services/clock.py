"""Clock abstraction so time-dependent logic (job backoff, audit stamps) is testable."""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return current UTC time (timezone-aware)."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Real wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        >>> clock.advance(seconds=1)
        >>> clock.now().second
        1
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 0.0) -> None:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value


__all__ = ["Clock", "SystemClock", "ManualClock"]
