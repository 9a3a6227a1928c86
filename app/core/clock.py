"""
Wall-clock access for the fleet services.

Automation windows and "today" are evaluated in the fleet timezone, never in
the server's local time. Services receive a Clock in their constructor so
tests can pin the time instead of patching datetime.
"""

import calendar
from datetime import date, datetime, time, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    tz: ZoneInfo

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Reads the system clock and converts it to the fleet timezone."""

    def __init__(self, tz_name: str = "America/Sao_Paulo"):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock pinned to a given instant. Naive datetimes are read as fleet-local time."""

    def __init__(self, instant: datetime, tz_name: str = "America/Sao_Paulo"):
        self.tz = ZoneInfo(tz_name)
        self.set(instant)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._now = instant.astimezone(self.tz)

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()


def to_utc(instant: datetime) -> datetime:
    return instant.astimezone(timezone.utc)


def start_of_local_day(day: date, tz: ZoneInfo) -> datetime:
    """Midnight of `day` in the fleet timezone, as a UTC instant."""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def local_date(instant: Optional[datetime], tz: ZoneInfo) -> Optional[date]:
    """
    Calendar date of a stored timestamp in the fleet timezone.

    SQLite hands timestamps back naive; they are always written as UTC.
    """
    if instant is None:
        return None
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz).date()


def add_months(day: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the end of shorter months."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))
