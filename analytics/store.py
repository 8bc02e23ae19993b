"""
Event Store

ORM queries behind the analytics subsystem. Every function here issues
plain reads (or one insert) and returns Python values; shaping and
best-effort handling live in the service layer.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from django.contrib.auth.models import User
from django.db.models import Count, F, Q
from django.db.models.functions import ExtractHour, TruncDate, TruncMonth
from django.utils import timezone

from .bucketing import Granularity
from .models import BlogLike, BlogView, Comment, Subscriber


class Metric(str, Enum):
    VIEWS = "views"
    LIKES = "likes"
    USERS = "users"
    SUBSCRIBERS = "subscribers"


# metric -> (model, timestamp field, blog foreign key or None)
_METRIC_SOURCES = {
    Metric.VIEWS: (BlogView, "timestamp", "blog_id"),
    Metric.LIKES: (BlogLike, "created_at", "blog_id"),
    Metric.USERS: (User, "date_joined", None),
    Metric.SUBSCRIBERS: (Subscriber, "subscribed_at", None),
}


class Dimension(str, Enum):
    REFERRER = "referrer"
    DEVICE_TYPE = "device_type"
    BROWSER = "browser"
    OS = "os"
    COUNTRY = "country"


# dimension -> (BlogView lookup, skip null values)
_DIMENSION_FIELDS = {
    Dimension.REFERRER: ("referrer", True),
    Dimension.DEVICE_TYPE: ("device_type", False),
    Dimension.BROWSER: ("browser", False),
    Dimension.OS: ("os", False),
    Dimension.COUNTRY: ("country__code", True),
}


def _time_q(field: str, start: Optional[datetime], end: Optional[datetime]) -> Q:
    q_objects = Q()
    if start is not None:
        q_objects &= Q(**{f"{field}__gte": start})
    if end is not None:
        q_objects &= Q(**{f"{field}__lt": end})
    return q_objects


def metric_queryset(
    metric: Metric,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    blog_ids: Optional[Iterable[int]] = None,
):
    """
    Events of one metric in [start, end), optionally scoped to some blogs.

    blog_ids is ignored for metrics that are not tied to a blog
    (users, subscribers).
    """
    model, ts_field, blog_field = _METRIC_SOURCES[Metric(metric)]
    q_objects = _time_q(ts_field, start, end)
    if blog_ids is not None and blog_field is not None:
        q_objects &= Q(**{f"{blog_field}__in": list(blog_ids)})
    return model.objects.filter(q_objects)


def view_queryset(
    blog_ids: Optional[Iterable[int]] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    return metric_queryset(Metric.VIEWS, start, end, blog_ids)


def count_events(
    metric: Metric,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    blog_ids: Optional[Iterable[int]] = None,
) -> int:
    return metric_queryset(metric, start, end, blog_ids).count()


def view_totals(
    blog_ids: Optional[Iterable[int]] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[int, int]:
    """(total views, distinct actors) in one aggregate query."""
    totals = view_queryset(blog_ids, start, end).aggregate(
        total=Count("id"), unique=Count("actor_key", distinct=True)
    )
    return totals["total"] or 0, totals["unique"] or 0


def find_most_recent_view(blog_id: int, identity) -> Optional[BlogView]:
    """Latest view of a blog sharing any identity signal with `identity`."""
    match = Q()
    if identity.session_id:
        match |= Q(session_id=identity.session_id)
    if identity.user_id:
        match |= Q(viewer_id=identity.user_id)
    if identity.ip_address:
        match |= Q(ip_address=identity.ip_address)
    if not match:
        return None
    return (
        BlogView.objects.filter(blog_id=blog_id)
        .filter(match)
        .order_by("-timestamp", "-id")
        .first()
    )


def insert_view(**fields) -> BlogView:
    return BlogView.objects.create(**fields)


_TRUNCATIONS = {
    Granularity.HOUR: ExtractHour,
    Granularity.DAY: TruncDate,
    Granularity.MONTH: TruncMonth,
}


def _bucket_key(granularity: Granularity, value):
    """Render a truncated timestamp the way the bucketer expects it."""
    if granularity is Granularity.HOUR:
        return value
    if isinstance(value, datetime) and timezone.is_aware(value):
        value = timezone.localtime(value)
    if granularity is Granularity.MONTH:
        return value.strftime("%Y-%m")
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat() if isinstance(value, date) else str(value)


def grouped_counts_by_period(
    metric: Metric,
    granularity: Granularity,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    blog_ids: Optional[Iterable[int]] = None,
) -> List[Tuple[object, int]]:
    """
    Count events per truncated timestamp.

    Returns (bucket_key, count) pairs: hour of day for 'hour',
    'YYYY-MM-DD' for 'day' and 'YYYY-MM' for 'month'.
    """
    granularity = Granularity(granularity)
    _, ts_field, _ = _METRIC_SOURCES[Metric(metric)]
    trunc_func = _TRUNCATIONS[granularity](ts_field)

    rows = (
        metric_queryset(metric, start, end, blog_ids)
        .annotate(period=trunc_func)
        .values("period")
        .annotate(count=Count("pk"))
        .order_by("period")
    )
    return [
        (_bucket_key(granularity, row["period"]), row["count"])
        for row in rows
        if row["period"] is not None
    ]


def grouped_counts_by_dimension(
    dimension: Dimension,
    blog_ids: Optional[Iterable[int]] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 10,
) -> List[Tuple[Optional[str], int]]:
    """Top `limit` values of a view dimension, most frequent first."""
    lookup, skip_null = _DIMENSION_FIELDS[Dimension(dimension)]
    queryset = view_queryset(blog_ids, start, end)
    if skip_null:
        queryset = queryset.filter(**{f"{lookup}__isnull": False})

    rows = (
        queryset.values(value=F(lookup))
        .annotate(count=Count("id"))
        .order_by("-count", "value")[:limit]
    )
    return [(row["value"], row["count"]) for row in rows]


def counts_by_blog(model, blog_ids: Iterable[int]) -> Dict[int, int]:
    """One grouped COUNT per blog for comments or likes."""
    rows = (
        model.objects.filter(blog_id__in=list(blog_ids))
        .values("blog_id")
        .annotate(count=Count("id"))
        .order_by()
    )
    return {row["blog_id"]: row["count"] for row in rows}


def comment_counts(blog_ids: Iterable[int]) -> Dict[int, int]:
    return counts_by_blog(Comment, blog_ids)


def like_counts(blog_ids: Iterable[int]) -> Dict[int, int]:
    return counts_by_blog(BlogLike, blog_ids)


def view_counts_by_blog(
    blog_ids: Iterable[int],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[int, Tuple[int, int]]:
    """blog_id -> (total views, distinct actors) in one grouped query."""
    rows = (
        view_queryset(blog_ids, start, end)
        .values("blog_id")
        .annotate(total=Count("id"), unique=Count("actor_key", distinct=True))
        .order_by()
    )
    return {row["blog_id"]: (row["total"], row["unique"]) for row in rows}
