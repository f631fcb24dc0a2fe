"""Shared date and interval utilities for the aggregation engine.

This module provides reusable functions for date parsing and date-interval
manipulation across aggregation modules. It includes:

- Date parsing: standardized YYYY-MM-DD and timestamp parsing
- DateRange: an inclusive calendar-date range
- Interval utilities: merging dates and intervals into ranges

Examples:
    >>> from datetime import date
    >>> from ops_core.utils import merge_intervals
    >>> intervals = [(date(2023, 1, 1), date(2023, 1, 5)),
    ...              (date(2023, 1, 3), date(2023, 1, 10))]
    >>> merge_intervals(intervals)
    [(date(2023, 1, 1), date(2023, 1, 10))]

"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any


def parse_date(s: str) -> date:
    """Parse a date string in YYYY-MM-DD format.

    Args:
        s: Date string in ISO format (YYYY-MM-DD).

    Returns:
        Parsed date object.

    Raises:
        ValueError: If the date string is not in YYYY-MM-DD format.

    Examples:
        >>> parse_date("2023-01-15")
        datetime.date(2023, 1, 15)

    """
    return datetime.strptime(s, "%Y-%m-%d").date()


def coerce_date(value: Any) -> date | None:
    """Best-effort conversion of a raw date value to a date.

    Accepts date/datetime objects and strings that start with YYYY-MM-DD
    (ISO timestamps included). Returns None for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if len(s) < 10:
        return None
    try:
        return parse_date(s[:10])
    except ValueError:
        return None


def coerce_datetime(value: Any) -> datetime | None:
    """Best-effort conversion of a raw timestamp to an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None when unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as a human-readable string.

    Examples:
        >>> format_duration(90.5)
        '1m 30.5s'
        >>> format_duration(45.2)
        '45.2s'

    """
    mins, secs = divmod(seconds, 60.0)
    if mins >= 1:
        return f"{int(mins)}m {secs:04.1f}s"
    else:
        return f"{secs:.1f}s"


@dataclass(frozen=True, order=True)
class DateRange:
    """Inclusive range of calendar dates.

    Attributes:
        start: First date of the range.
        end: Last date of the range (inclusive).
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Invalid date range: start {self.start} is after end {self.end}")

    @classmethod
    def from_strings(cls, start_date: str, end_date: str) -> DateRange:
        """Create a range from two YYYY-MM-DD strings.

        Raises:
            ValueError: If a date is malformed or start is after end.

        """
        try:
            start = parse_date(start_date)
            end = parse_date(end_date)
        except ValueError as e:
            raise ValueError(f"Invalid date format: {e}") from e
        return cls(start, end)

    @classmethod
    def single(cls, day: date) -> DateRange:
        """Create a one-day range."""
        return cls(day, day)

    @property
    def start_str(self) -> str:
        return self.start.isoformat()

    @property
    def end_str(self) -> str:
        return self.end.isoformat()

    def days(self) -> Iterator[date]:
        """Yield every date in the range."""
        cur = self.start
        while cur <= self.end:
            yield cur
            cur += timedelta(days=1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def as_filter(self) -> dict[str, str]:
        """Range predicate on a YYYY-MM-DD ``date`` field."""
        return {"$gte": self.start_str, "$lte": self.end_str}

    def __str__(self) -> str:
        return f"{self.start_str}..{self.end_str}"


def merge_intervals(intervals: list[tuple[date, date]]) -> list[tuple[date, date]]:
    """Merge overlapping or contiguous date intervals.

    Takes a list of date intervals and merges any that overlap or are
    contiguous (touching). Returns a sorted list of non-overlapping intervals.

    Args:
        intervals: List of (start, end) date tuples (both inclusive).

    Returns:
        Sorted list of merged (start, end) intervals.

    Examples:
        >>> from datetime import date
        >>> intervals = [(date(2023, 1, 1), date(2023, 1, 5)),
        ...              (date(2023, 1, 3), date(2023, 1, 10)),
        ...              (date(2023, 1, 15), date(2023, 1, 20))]
        >>> merge_intervals(intervals)
        [(date(2023, 1, 1), date(2023, 1, 10)), (date(2023, 1, 15), date(2023, 1, 20))]

    """
    if not intervals:
        return []
    intervals = sorted(intervals, key=lambda x: x[0])
    merged: list[tuple[date, date]] = []
    cur_start, cur_end = intervals[0]
    for s, e in intervals[1:]:
        if s <= cur_end + timedelta(days=1):  # overlap or touch
            if e > cur_end:
                cur_end = e
        else:
            merged.append((cur_start, cur_end))
            cur_start, cur_end = s, e
    merged.append((cur_start, cur_end))
    return merged


def dates_to_ranges(dates: Iterable[date]) -> list[DateRange]:
    """Collapse a set of dates into the minimal list of contiguous DateRanges.

    Examples:
        >>> from datetime import date
        >>> dates_to_ranges([date(2024, 1, 3), date(2024, 1, 1), date(2024, 1, 2)])
        [DateRange(start=datetime.date(2024, 1, 1), end=datetime.date(2024, 1, 3))]

    """
    merged = merge_intervals([(d, d) for d in set(dates)])
    return [DateRange(s, e) for s, e in merged]
