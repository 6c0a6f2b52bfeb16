"""Injectable clock for every temporal guard in the scheduler."""

from datetime import UTC, date, datetime, time, timedelta, tzinfo
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo

from clinicq.config import settings


def resolve_timezone(name: str) -> tzinfo:
    """Map a timezone name to a tzinfo, without requiring tz data for UTC."""
    if name.upper() in {"UTC", "Z", "ETC/UTC"}:
        return UTC
    return ZoneInfo(name)


class Clock(Protocol):
    """Reference time source of the clinic."""

    tz: tzinfo

    def now(self) -> datetime: ...

    def today(self) -> date: ...

    def at(self, day: date, moment: time) -> datetime: ...


class SystemClock:
    """Wall clock in the clinic's local timezone."""

    def __init__(self, tz: tzinfo):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def at(self, day: date, moment: time) -> datetime:
        """Combine a local date and time-of-day into an aware datetime."""
        return datetime.combine(day, moment, tzinfo=self.tz)


class FixedClock(SystemClock):
    """Clock frozen at a given instant, moved explicitly. Used by tests and replays."""

    def __init__(self, current: datetime):
        if current.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        super().__init__(current.tzinfo)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = current.astimezone(self.tz)

    def advance(self, delta: timedelta) -> None:
        self._current = self._current + delta


@lru_cache
def get_clock() -> Clock:
    """Get the process-wide clinic clock."""
    return SystemClock(resolve_timezone(settings.clinic_timezone))
