"""
Clock -- injectable time source.

Responsibility:
    Services, the scanner and the scheduler receive a Clock instead of calling
    ``datetime.now()`` so that late fees, reminder windows and schedule ticks
    are reproducible in tests.

Architecture position:
    Kernel > Domain -- pure functional core.  SystemClock is the one sanctioned
    I/O boundary for time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        ``now()`` returns the same value on repeated calls until ``advance()``
        or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        if fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = fixed_time.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = time.astimezone(timezone.utc)

    def advance(self, seconds: float = 0, *, hours: float = 0, days: float = 0) -> datetime:
        """Advance the clock and return the new time."""
        self._current += timedelta(seconds=seconds, hours=hours, days=days)
        return self._current
