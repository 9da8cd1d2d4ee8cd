"""
Clock -- injectable time source for the receivables workflow.

Responsibility:
    Services and engines never call ``datetime.now()`` or ``date.today()``.
    They receive a Clock, so overdue decisions, business-hour flags and
    audit timestamps can be reproduced exactly in tests.

Architecture position:
    Kernel > Domain -- pure, zero I/O except SystemClock.

Failure modes:
    - ``today_in`` raises ``ZoneInfoNotFoundError`` for an unknown zone name.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``today_in(tz)`` returns the calendar date in that zone, which is
          what overdue comparisons use (invoices are due on tenant-local days).
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(UTC)

    def today_in(self, timezone_name: str) -> date:
        return self.now().astimezone(ZoneInfo(timezone_name)).date()


class SystemClock(Clock):
    """Production clock returning wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2025, 1, 6, 8, 0, 0, tzinfo=UTC)
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def advance_days(self, days: int) -> None:
        self.advance(days * 86400)
