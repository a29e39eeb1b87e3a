"""
Clock Module

Source of "today" for overdue detection, settlement and reporting. All
dates are civil dates in one configured timezone.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


class Clock:
    """Abstract clock"""

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock in a fixed civil timezone"""

    def __init__(self, tz_name: str = "America/Sao_Paulo"):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """Clock pinned to a given date, used by tests and batch replays"""

    def __init__(self, today: date, tz_name: Optional[str] = None):
        self._today = today
        self.tz = ZoneInfo(tz_name) if tz_name else timezone.utc

    def now(self) -> datetime:
        return datetime(self._today.year, self._today.month, self._today.day, 12, 0, tzinfo=self.tz)

    def set_today(self, today: date) -> None:
        self._today = today

    def advance(self, days: int) -> None:
        self._today = self._today + timedelta(days=days)
