"""
Trend Bucketing

Turns grouped (bucket_key, count) rows into fixed-length series aligned
so the last element is the most recent bucket. Missing buckets are
zero-filled; rows outside the horizon are dropped.

All functions are pure: the reference time is always passed in.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterable, List, Tuple, Union

from django.utils import timezone

logger = logging.getLogger(__name__)

BucketKey = Union[int, str, date]


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


class TrendRange(str, Enum):
    """Chart ranges accepted by the admin trends endpoint."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"

    @classmethod
    def from_string(cls, value) -> "TrendRange":
        """Unknown or missing ranges fall back to a 7-day chart."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.WEEK

    @property
    def granularity(self) -> Granularity:
        return _RANGE_SHAPES[self][0]

    @property
    def horizon(self) -> int:
        return _RANGE_SHAPES[self][1]

    @property
    def lookback(self) -> timedelta:
        return _RANGE_SHAPES[self][2]

    @property
    def label(self) -> str:
        return _RANGE_SHAPES[self][3]


# range -> (granularity, bucket count, query lookback, period label)
_RANGE_SHAPES = {
    TrendRange.DAY: (Granularity.HOUR, 24, timedelta(days=1), "last 24 hours"),
    TrendRange.WEEK: (Granularity.DAY, 7, timedelta(days=7), "last 7 days"),
    TrendRange.MONTH: (Granularity.DAY, 30, timedelta(days=30), "last 30 days"),
    TrendRange.YEAR: (Granularity.MONTH, 12, timedelta(days=365), "last 12 months"),
    TrendRange.ALL: (Granularity.MONTH, 12, timedelta(days=365), "last 12 months"),
}


@dataclass(frozen=True)
class TrendSeries:
    granularity: Granularity
    length: int
    values: List[int]

    def to_dict(self) -> dict:
        return {
            "granularity": self.granularity.value,
            "length": self.length,
            "values": list(self.values),
        }


def _local_date(now: datetime) -> date:
    """Calendar date of `now` in the active time zone."""
    if timezone.is_aware(now):
        return timezone.localtime(now).date()
    return now.date()


def _parse_hour(key: BucketKey) -> int:
    if isinstance(key, bool):
        raise ValueError(f"not an hour: {key!r}")
    if isinstance(key, int):
        return key
    return int(str(key).strip())


def _parse_month(key: BucketKey) -> Tuple[int, int]:
    if isinstance(key, date):
        return key.year, key.month
    year_str, month_str = str(key).strip().split("-")
    year, month = int(year_str), int(month_str)
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {key!r}")
    return year, month


def _parse_day(key: BucketKey) -> date:
    if isinstance(key, datetime):
        return key.date()
    if isinstance(key, date):
        return key
    return date.fromisoformat(str(key).strip())


def _validate(granularity, horizon: int) -> Granularity:
    granularity = Granularity(granularity)
    if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon <= 0:
        raise ValueError(f"horizon must be a positive integer, got {horizon!r}")
    return granularity


def bucket_counts(
    granularity, horizon: int, rows: Iterable[Tuple[BucketKey, int]], now: datetime
) -> TrendSeries:
    """
    Place grouped counts into a series of exactly `horizon` buckets.

    Args:
        granularity: 'hour', 'day' or 'month'
        horizon: Number of buckets (must be > 0)
        rows: (bucket_key, count) pairs in any order. Keys are an hour of
            day (hour), 'YYYY-MM-DD' (day) or 'YYYY-MM' (month)
        now: Reference time; day/month alignment uses its local calendar date

    Returns:
        TrendSeries with index 0 = oldest bucket, index horizon-1 = current

    Hour buckets map directly to the hour of day, not to hours before `now`.
    Malformed rows are skipped. If two rows land on the same index the
    last one wins.
    """
    granularity = _validate(granularity, horizon)
    result = [0] * horizon
    today = _local_date(now)

    for bucket_key, raw_count in rows:
        try:
            count = int(raw_count)
            if granularity is Granularity.HOUR:
                index = _parse_hour(bucket_key)
            elif granularity is Granularity.MONTH:
                year, month = _parse_month(bucket_key)
                months_ago = (today.year - year) * 12 + (today.month - month)
                index = horizon - 1 - months_ago
                if not 0 <= months_ago < horizon:
                    continue
            else:
                days_ago = (today - _parse_day(bucket_key)).days
                index = horizon - 1 - days_ago
                if not 0 <= days_ago < horizon:
                    continue
        except (TypeError, ValueError):
            logger.debug("Skipping malformed %s bucket %r", granularity.value, bucket_key)
            continue

        if 0 <= index < horizon:
            result[index] = count

    return TrendSeries(granularity=granularity, length=horizon, values=result)


def bucket_labels(granularity, horizon: int, now: datetime) -> List[str]:
    """Human labels for each position of a series built by bucket_counts()."""
    granularity = _validate(granularity, horizon)
    today = _local_date(now)

    if granularity is Granularity.HOUR:
        return [f"{hour:02d}:00" for hour in range(horizon)]

    if granularity is Granularity.MONTH:
        labels = []
        for months_ago in range(horizon - 1, -1, -1):
            total = today.year * 12 + (today.month - 1) - months_ago
            labels.append(f"{total // 12:04d}-{total % 12 + 1:02d}")
        return labels

    return [
        (today - timedelta(days=days_ago)).isoformat()
        for days_ago in range(horizon - 1, -1, -1)
    ]
