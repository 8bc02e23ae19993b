"""
Period Comparison

Time filter parsing, window arithmetic and current-vs-previous period
statistics. Counting is delegated to a callable so the arithmetic stays
independent of the ORM.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Tuple

from django.db import DatabaseError, transaction

logger = logging.getLogger(__name__)

# count_fn(start, end) -> number of events with start <= timestamp < end.
# Either bound may be None (unbounded).
CountFn = Callable[[Optional[datetime], Optional[datetime]], int]


class TimeFilter(str, Enum):
    LAST_24_HOURS = "24h"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_YEAR = "1y"
    TOTAL = "total"

    @classmethod
    def from_string(cls, value) -> "TimeFilter":
        """
        Normalize an external filter spelling.

        '1m' (post/user pages) and '30d' (admin dashboard) both mean the
        30-day window. Anything unrecognized falls back to TOTAL.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.TOTAL
        value = str(value).strip().lower()
        if value == "1m":
            return cls.LAST_30_DAYS
        try:
            return cls(value)
        except ValueError:
            return cls.TOTAL

    @property
    def window(self) -> Optional[timedelta]:
        return _WINDOWS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    def current_range(self, now: datetime) -> Tuple[Optional[datetime], datetime]:
        if self.window is None:
            return None, now
        return now - self.window, now

    def previous_range(self, now: datetime) -> Optional[Tuple[datetime, datetime]]:
        """The equal-length window immediately before the current one."""
        if self.window is None:
            return None
        current_start = now - self.window
        return current_start - self.window, current_start


_WINDOWS = {
    TimeFilter.LAST_24_HOURS: timedelta(hours=24),
    TimeFilter.LAST_7_DAYS: timedelta(days=7),
    TimeFilter.LAST_30_DAYS: timedelta(days=30),
    TimeFilter.LAST_YEAR: timedelta(days=365),
    TimeFilter.TOTAL: None,
}

_LABELS = {
    TimeFilter.LAST_24_HOURS: "last 24 hours",
    TimeFilter.LAST_7_DAYS: "last 7 days",
    TimeFilter.LAST_30_DAYS: "last 30 days",
    TimeFilter.LAST_YEAR: "last year",
    TimeFilter.TOTAL: "all time",
}


@dataclass(frozen=True)
class ComparisonResult:
    metric: str
    current: int
    previous: int
    percent_change: float
    period_label: str

    def to_dict(self) -> dict:
        return {
            "metric": self.metric,
            "current": self.current,
            "previous": self.previous,
            "change": round(self.percent_change, 2),
            "period": self.period_label,
        }


def percent_change(current: int, previous: int) -> float:
    """((current - previous) / previous) * 100, or 0 when previous is 0."""
    if previous > 0:
        return (current - previous) / previous * 100
    return 0.0


def engagement_rate(total_views: int, comments: int, likes: int) -> float:
    """(comments + likes) / views as a percentage, 0 when there are no views."""
    if total_views <= 0:
        return 0.0
    return round((comments + likes) / total_views * 100, 2)


def compare(
    metric: str, time_filter: TimeFilter, now: datetime, count_fn: CountFn
) -> ComparisonResult:
    """
    Compare a metric over the current window with the window before it.

    The previous-period count is best-effort: a DatabaseError there is
    logged and treated as 0. Errors on the current count propagate.
    """
    time_filter = TimeFilter.from_string(time_filter)
    start, end = time_filter.current_range(now)
    current = count_fn(start, end)

    previous = 0
    previous_range = time_filter.previous_range(now)
    if previous_range is not None:
        try:
            with transaction.atomic():
                previous = count_fn(*previous_range)
        except DatabaseError:
            logger.warning(
                "Previous-period count for %s failed; using 0", metric, exc_info=True
            )
            previous = 0

    return ComparisonResult(
        metric=metric,
        current=current,
        previous=previous,
        percent_change=percent_change(current, previous),
        period_label=time_filter.label,
    )
