"""
Calendar Utilities Module

Pure date helpers shared by the scheduler and reporting. Weekdays use
Sunday-based numbering (0=Sunday ... 6=Saturday) throughout the engine.
"""

import calendar
from datetime import date, timedelta
from typing import Iterable, Optional, Tuple


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(start: date, months: int, anchor_day: Optional[int] = None) -> date:
    """
    Add calendar months, clamping to the last day of shorter months.

    ``anchor_day`` is the day the series was originally scheduled on, so a
    series anchored on the 31st comes back to the 31st after February.
    """
    day = anchor_day or start.day
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day, last_day_of_month(year, month)))


def add_years(start: date, years: int, anchor_month: Optional[int] = None,
              anchor_day: Optional[int] = None) -> date:
    """Add calendar years; 29 February falls back to 28 February"""
    month = anchor_month or start.month
    day = anchor_day or start.day
    year = start.year + years
    return date(year, month, min(day, last_day_of_month(year, month)))


def sunday_based_weekday(d: date) -> int:
    """0=Sunday ... 6=Saturday"""
    return (d.weekday() + 1) % 7


def is_allowed_weekday(d: date, allowed: Optional[Iterable[int]]) -> bool:
    if not allowed:
        return True
    return sunday_based_weekday(d) in set(allowed)


def is_allowed_month_day(d: date, allowed: Optional[Iterable[int]]) -> bool:
    if not allowed:
        return True
    return d.day in set(allowed)


def is_allowed_month(d: date, allowed: Optional[Iterable[int]]) -> bool:
    if not allowed:
        return True
    return d.month in set(allowed)


def next_allowed_weekday(d: date, allowed: Optional[Iterable[int]]) -> date:
    """Roll ``d`` forward to the first date whose weekday is allowed (``d`` itself included)"""
    if not allowed:
        return d
    allowed_set = set(allowed)
    if not allowed_set & set(range(7)):
        raise ValueError("No valid weekday in allowed weekdays")
    candidate = d
    for _ in range(7):
        if sunday_based_weekday(candidate) in allowed_set:
            return candidate
        candidate += timedelta(days=1)
    raise ValueError("No valid weekday in allowed weekdays")


def week_bounds(d: date) -> Tuple[date, date]:
    """Sunday-to-Saturday week containing ``d``"""
    start = d - timedelta(days=sunday_based_weekday(d))
    return start, start + timedelta(days=6)


def month_bounds(d: date) -> Tuple[date, date]:
    return date(d.year, d.month, 1), date(d.year, d.month, last_day_of_month(d.year, d.month))
