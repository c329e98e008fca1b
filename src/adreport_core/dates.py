"""Report date range helpers.

All ranges are inclusive calendar dates in the report timezone.
"""
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


DEFAULT_RANGE_DAYS = 7

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def default_date_range(today: date, days: int = DEFAULT_RANGE_DAYS) -> DateRange:
    """The last `days` days ending today."""
    return DateRange(start=today - timedelta(days=days - 1), end=today)


def parse_date_param(value: Optional[str], fallback: Optional[date]) -> Optional[date]:
    """Parse a YYYY-MM-DD query value, returning fallback for anything else."""
    if not value or not _DATE_PATTERN.match(value):
        return fallback
    try:
        return date.fromisoformat(value)
    except ValueError:
        return fallback


def normalize_date_range(start: date, end: date) -> DateRange:
    """Swap reversed bounds."""
    if start <= end:
        return DateRange(start=start, end=end)
    return DateRange(start=end, end=start)


def historical_range(date_range: DateRange, today: date) -> Optional[DateRange]:
    """The part of a range served from stored history.

    Today's data is not in the warehouse yet, so a range reaching today ends
    yesterday. Returns None when nothing before today remains.
    """
    if date_range.end < today:
        return date_range
    end = today - timedelta(days=1)
    if end < date_range.start:
        return None
    return DateRange(start=date_range.start, end=end)


def previous_period(date_range: DateRange) -> DateRange:
    """The range of equal length immediately before date_range."""
    end = date_range.start - timedelta(days=1)
    return DateRange(start=end - timedelta(days=date_range.days - 1), end=end)
