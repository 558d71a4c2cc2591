"""
Clock -- Deterministic time abstraction.

Responsibility:
    Injectable time source so that posting, due-date, overdue and late-fee
    logic never reads the wall clock directly.

Architecture position:
    Kernel > Domain -- pure functional core. SystemClock is the one sanctioned
    I/O boundary for time.

Invariants enforced:
    - ``now()`` is always timezone-aware (UTC).
    - ``today()`` is derived from ``now()``, never from ``date.today()``.

Audit relevance:
    ``posted_at`` on journal entries, ``completed_date`` on settlements and
    every calculation audit timestamp come from an injected Clock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock through their constructor. Domain, engine
        and service code must never call ``datetime.now()`` directly.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        ...

    def today(self) -> date:
        """Current calendar date in UTC."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning real system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()``, ``advance_days()`` or ``set_time()`` is called.
        - Naive datetimes passed in are treated as UTC.
    """

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = _as_utc(fixed_time or self.DEFAULT_TIME)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = _as_utc(time)

    def advance(self, seconds: int = 1) -> None:
        self._current = self._current + timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current = self._current + timedelta(days=days)

    def tick(self) -> datetime:
        """Advance by 1 second and return the new time."""
        self.advance(1)
        return self._current


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
