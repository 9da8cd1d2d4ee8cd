"""
Module: receivables_engines.business_calendar
Responsibility:
    Decide whether an instant is acceptable for automated customer contact
    (reminders, confirmations) under a tenant's business calendar, and find
    the next acceptable instant.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The calendar is an explicit
    ``CalendarConfig`` argument; there is no module-level default state.

Invariants enforced:
    - Both operations are total: a missing or unusable config (unknown
      timezone, no working days, empty or inverted work window) means
      "always eligible", never an exception.
    - ``next_eligible_instant(t) >= t`` and is idempotent on eligible input.
    - Naive timestamps are interpreted as UTC.

Failure modes:
    - None raised.  When no eligible instant exists within 366 days the
      input is returned unchanged.

Usage:
    from receivables_engines.business_calendar import (
        CalendarConfig, is_eligible_for_automated_contact, next_eligible_instant,
    )

    config = CalendarConfig()  # Asia/Dubai, Sunday-Thursday, 08:00-18:00
    is_eligible_for_automated_contact(ts, config)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from receivables_kernel.logging_config import get_logger

logger = get_logger("engines.business_calendar")

SEARCH_HORIZON_DAYS = 366

# ISO weekday numbers: Monday=1 ... Sunday=7
UAE_WORKING_DAYS: frozenset[int] = frozenset({7, 1, 2, 3, 4})


@dataclass(frozen=True)
class QuietPeriod:
    """
    A local half-open interval ``[start, end)`` with no automated contact.

    Periods with ``start >= end`` are ignored rather than rejected, so a
    malformed tenant entry cannot block a whole day.
    """

    start: time
    end: time
    label: str = ""

    @property
    def is_valid(self) -> bool:
        return self.start < self.end

    def contains(self, t: time) -> bool:
        return self.is_valid and self.start <= t < self.end


# Lunch plus each prayer time +/- 15 minutes
UAE_QUIET_PERIODS: tuple[QuietPeriod, ...] = (
    QuietPeriod(time(5, 15), time(5, 45), "fajr"),
    QuietPeriod(time(12, 0), time(13, 0), "lunch"),
    QuietPeriod(time(12, 0), time(12, 30), "dhuhr"),
    QuietPeriod(time(15, 15), time(15, 45), "asr"),
    QuietPeriod(time(18, 15), time(18, 45), "maghrib"),
    QuietPeriod(time(19, 45), time(20, 15), "isha"),
)


@dataclass(frozen=True)
class CalendarConfig:
    """
    Business calendar of one tenant.

    Contract:
        ``working_days`` holds ISO weekday numbers; values outside 1..7 are
        ignored.  ``work_start``/``work_end`` and quiet periods are local
        times in ``timezone``.
    """

    timezone: str = "Asia/Dubai"
    working_days: frozenset[int] = UAE_WORKING_DAYS
    work_start: time = time(8, 0)
    work_end: time = time(18, 0)
    holidays: frozenset[date] = frozenset()
    quiet_periods: tuple[QuietPeriod, ...] = UAE_QUIET_PERIODS


@dataclass(frozen=True)
class _ResolvedCalendar:
    tz: tzinfo
    working_days: frozenset[int]
    holidays: frozenset[date]
    open_intervals: tuple[tuple[time, time], ...] = field(default=())

    def is_business_day(self, day: date) -> bool:
        return day.isoweekday() in self.working_days and day not in self.holidays


def _subtract(
    intervals: list[tuple[time, time]], quiet: QuietPeriod
) -> list[tuple[time, time]]:
    remaining: list[tuple[time, time]] = []
    for start, end in intervals:
        if quiet.end <= start or quiet.start >= end:
            remaining.append((start, end))
            continue
        if start < quiet.start:
            remaining.append((start, quiet.start))
        if quiet.end < end:
            remaining.append((quiet.end, end))
    return remaining


def _resolve(config: CalendarConfig | None) -> _ResolvedCalendar | None:
    """Validated view of ``config``, or None when the fallback applies."""
    if config is None:
        return None
    try:
        tz = ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning(
            "calendar_config_unusable",
            extra={"reason": "unknown_timezone", "timezone": str(config.timezone)},
        )
        return None

    working_days = frozenset(d for d in config.working_days if 1 <= d <= 7)
    if not working_days:
        logger.warning("calendar_config_unusable", extra={"reason": "no_working_days"})
        return None
    if config.work_start >= config.work_end:
        logger.warning("calendar_config_unusable", extra={"reason": "empty_work_window"})
        return None

    intervals = [(config.work_start, config.work_end)]
    for quiet in config.quiet_periods:
        if quiet.is_valid:
            intervals = _subtract(intervals, quiet)

    return _ResolvedCalendar(
        tz=tz,
        working_days=working_days,
        holidays=frozenset(config.holidays),
        open_intervals=tuple(sorted(intervals)),
    )


def _as_aware(ts: datetime) -> datetime:
    if ts.tzinfo is None or ts.utcoffset() is None:
        return ts.replace(tzinfo=UTC)
    return ts


def _eligible_local(local: datetime, calendar: _ResolvedCalendar) -> bool:
    if not calendar.is_business_day(local.date()):
        return False
    t = local.time()
    return any(start <= t < end for start, end in calendar.open_intervals)


def is_eligible_for_automated_contact(
    timestamp: datetime, config: CalendarConfig | None
) -> bool:
    """True when an automated message may be sent at ``timestamp``."""
    calendar = _resolve(config)
    if calendar is None:
        return True
    local = _as_aware(timestamp).astimezone(calendar.tz)
    return _eligible_local(local, calendar)


def next_eligible_instant(
    timestamp: datetime, config: CalendarConfig | None
) -> datetime:
    """
    Least eligible instant at or after ``timestamp``.

    The result keeps the input's flavour: aware input gives an aware result
    in the input's zone, naive input gives a naive UTC result.
    """
    calendar = _resolve(config)
    if calendar is None:
        return timestamp

    aware = _as_aware(timestamp)
    local = aware.astimezone(calendar.tz)
    if _eligible_local(local, calendar):
        return timestamp

    for offset in range(SEARCH_HORIZON_DAYS + 1):
        day = local.date() + timedelta(days=offset)
        if not calendar.is_business_day(day):
            continue
        floor = local.time() if offset == 0 else time.min
        for start, end in calendar.open_intervals:
            if end <= floor:
                continue
            candidate = datetime.combine(day, max(start, floor), tzinfo=calendar.tz)
            # Local times skipped by a DST jump do not exist; keep scanning.
            if candidate < aware or not _eligible_local(
                candidate.astimezone(UTC).astimezone(calendar.tz), calendar
            ):
                continue
            if timestamp.tzinfo is None:
                return candidate.astimezone(UTC).replace(tzinfo=None)
            return candidate.astimezone(timestamp.tzinfo)

    logger.info(
        "calendar_no_eligible_instant",
        extra={"timestamp": aware.isoformat(), "horizon_days": SEARCH_HORIZON_DAYS},
    )
    return timestamp
