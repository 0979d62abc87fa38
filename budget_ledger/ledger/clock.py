"""
Clock and Batch Timestamps

Ledger code never calls ``datetime.now()`` directly; it receives a Clock.
Batch timestamps come from a BatchStamper, which guarantees that no two
runs share a timestamp even when the wall clock stalls or goes backwards.

Timestamps are ISO-8601 UTC strings with microsecond precision, e.g.
``2024-01-02T10:00:00.000000Z``.
"""

import calendar
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Clock(ABC):
    """Injectable source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Clock with controlled time, for tests and catch-up replays.

    ``now()`` returns the same value until ``set_time()`` or ``advance()``.
    """

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._time = _as_utc(fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = _as_utc(time)

    def advance(self, **kwargs: float) -> datetime:
        """Advance by a timedelta given as keyword arguments."""
        self._time = self._time + timedelta(**kwargs)
        return self._time


class BatchStamper:
    """
    Generates strictly increasing batch timestamps.

    If the clock returns a time at or before the last stamp issued, the new
    stamp is bumped one microsecond past it.
    """

    def __init__(self, clock: Clock):
        self._clock = clock
        self._last: Optional[datetime] = None

    def observe(self, raw: Optional[str]) -> None:
        """Account for a timestamp already in the ledger (e.g. after load)."""
        parsed = parse_timestamp(raw)
        if parsed is not None and (self._last is None or parsed > self._last):
            self._last = parsed

    def next(self) -> str:
        candidate = _as_utc(self._clock.now())
        if self._last is not None and candidate <= self._last:
            candidate = self._last + timedelta(microseconds=1)
        self._last = candidate
        return format_timestamp(candidate)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    return _as_utc(moment).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for anything that does not parse. A trailing ``Z`` is
    accepted; naive values are taken as UTC.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _as_utc(parsed)


def period_of(moment: date) -> str:
    """The YYYY-MM period a date falls in."""
    return f"{moment.year:04d}-{moment.month:02d}"


def effective_trigger_day(trigger_day: int, as_of: date) -> int:
    """Trigger day clamped to the length of as_of's month (31 -> 30 in April)."""
    days_in_month = calendar.monthrange(as_of.year, as_of.month)[1]
    return min(trigger_day, days_in_month)
