"""
Utility functions for half-open time intervals and UTC days.

All times inside the core are naive datetimes in UTC.
"""
from datetime import datetime, date, time, timedelta, timezone
from typing import Union

from roombook.errors import ValidationError


def overlaps(a_start: datetime, a_end: datetime,
             b_start: datetime, b_end: datetime) -> bool:
    """
    [a_start, a_end) and [b_start, b_end) intersect.
    Touching endpoints (a_end == b_start) do not count.
    """
    return a_start < b_end and b_start < a_end


def to_utc(dt: datetime) -> datetime:
    """Aware → converted to UTC and made naive. Naive is taken as UTC already."""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def validate_interval(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = to_utc(start), to_utc(end)
    if end <= start:
        raise ValidationError("End time must be after start time")
    return start, end


def utc_date(day: Union[date, datetime]) -> date:
    """date → itself, datetime → its UTC calendar date."""
    if isinstance(day, datetime):
        return to_utc(day).date()
    return day


def day_bounds(day: Union[date, datetime]) -> tuple[datetime, datetime]:
    """'2024-01-05' → (2024-01-05 00:00, 2024-01-06 00:00)"""
    start = datetime.combine(utc_date(day), time.min)
    return start, start + timedelta(days=1)


def dates_spanned(start: datetime, end: datetime) -> list[date]:
    """Every UTC calendar date from start's date to end's date, inclusive."""
    first, last = to_utc(start).date(), to_utc(end).date()
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]
