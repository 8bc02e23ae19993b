"""
Analytics Service Module

Composes view deduplication, period comparison and trend bucketing into
the payloads served by the API:

    track_view: Deduplicated view recording (the only write path)
    get_blog_analytics: Single-post analytics
    get_user_blogs_analytics: Aggregate analytics across one author's posts
    get_admin_analytics: Site-wide totals with period comparison
    get_admin_trends: Site-wide hourly/daily/monthly trend charts

Nothing is cached; every call recomputes from the event tables. Each
section of a response is best-effort (see results.py).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import store
from .bucketing import Granularity, TrendRange, TrendSeries, bucket_counts, bucket_labels
from .dedup import ViewerIdentity, should_record_view
from .enrichment import ClientInfo, extract_domain, parse_user_agent, resolve_country
from .models import Blog, BlogView
from .periods import ComparisonResult, TimeFilter, compare, engagement_rate
from .results import SectionSet
from .store import Dimension, Metric

logger = logging.getLogger(__name__)

MAX_SERIES_DAYS = 365

# (dimension, payload key, label key); null values are shown as "Unknown"
BREAKDOWNS = [
    (Dimension.DEVICE_TYPE, "deviceData", "type"),
    (Dimension.BROWSER, "browserData", "browser"),
    (Dimension.OS, "osData", "os"),
    (Dimension.COUNTRY, "countryData", "country"),
]


@dataclass(frozen=True)
class TrackResult:
    recorded: bool
    message: str
    view: Optional[BlogView] = None


class AnalyticsService:
    """
    Service class for engagement analytics.

    Methods:
        track_view: Record a view unless it repeats within the dedup window
        get_blog_analytics: Overview, daily series and breakdowns for one post
        get_user_blogs_analytics: The same summed across an author's posts,
            plus a paginated per-post list
        get_admin_analytics: Site-wide totals and period-over-period changes
        get_admin_trends: Views, likes, new users and new subscribers per bucket
    """

    @classmethod
    def _top_n(cls) -> int:
        return getattr(settings, "BLOGPULSE_TOP_N", 10)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    @classmethod
    def _enrich(
        cls, user_agent: Optional[str], country_code: Optional[str]
    ) -> Dict:
        """Device/browser/OS and country for a new view. Never raises."""
        try:
            client = parse_user_agent(user_agent)
        except Exception:
            logger.warning("User agent parsing failed for %r", user_agent, exc_info=True)
            client = ClientInfo()

        try:
            with transaction.atomic():
                country = resolve_country(country_code)
        except Exception:
            logger.warning("Country lookup failed for %r", country_code, exc_info=True)
            country = None

        return {
            "device_type": client.device_type,
            "browser": client.browser,
            "os": client.os,
            "country": country,
        }

    @classmethod
    def track_view(
        cls,
        blog_id: int,
        identity: ViewerIdentity,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
        country_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TrackResult:
        """
        Record a view of a blog unless the same visitor viewed it within
        the dedup window.

        Raises:
            Blog.DoesNotExist: The blog id is unknown
            DatabaseError: Storage failed; the caller decides how to respond
        """
        now = now or timezone.now()

        if not Blog.objects.filter(pk=blog_id).exists():
            raise Blog.DoesNotExist(f"Blog {blog_id} does not exist")

        decision = should_record_view(blog_id, identity, now)
        if not decision.record:
            return TrackResult(recorded=False, message="View already tracked")

        # Views with no identity at all can't be deduplicated, so each one
        # counts as its own visitor.
        actor_key = identity.actor_key or f"anon:{uuid.uuid4().hex}"

        view = store.insert_view(
            blog_id=blog_id,
            timestamp=now,
            actor_key=actor_key,
            viewer_id=identity.user_id,
            session_id=identity.session_id,
            ip_address=identity.ip_address,
            user_agent=user_agent,
            referrer=referrer,
            **cls._enrich(user_agent, country_code),
        )
        logger.info("Recorded view %s of blog %s (%s)", view.pk, blog_id, decision.reason)
        return TrackResult(recorded=True, message="View tracked successfully", view=view)

    # ------------------------------------------------------------------
    # Shared sections
    # ------------------------------------------------------------------

    @classmethod
    def _series_days(cls, time_filter: TimeFilter, first_seen: Optional[datetime], now: datetime) -> int:
        """
        Number of daily buckets for a post/author series.

        Windowed filters cover their window (24h spans two calendar days);
        'total' covers everything since the earliest post, capped at a year.
        """
        if time_filter is TimeFilter.LAST_24_HOURS:
            return 2
        if time_filter.window is not None:
            return time_filter.window.days
        if first_seen is None:
            return 1
        days = (timezone.localdate(now) - timezone.localdate(first_seen)).days + 1
        return max(1, min(days, MAX_SERIES_DAYS))

    @classmethod
    def _series_payload(cls, series: TrendSeries, now: datetime) -> Dict:
        payload = series.to_dict()
        payload["labels"] = bucket_labels(series.granularity, series.length, now)
        return payload

    @classmethod
    def _empty_series(cls, granularity: Granularity, horizon: int) -> TrendSeries:
        return TrendSeries(granularity=granularity, length=horizon, values=[0] * horizon)

    @classmethod
    def _format_referrers(cls, rows) -> List[Dict]:
        return [
            {"domain": extract_domain(value), "url": value, "count": int(count)}
            for value, count in rows
        ]

    @classmethod
    def _format_breakdown(cls, rows, label_key: str) -> List[Dict]:
        return [{label_key: value or "Unknown", "count": int(count)} for value, count in rows]

    @classmethod
    def _engagement_sections(
        cls,
        sections: SectionSet,
        blog_ids: List[int],
        time_filter: TimeFilter,
        first_seen: Optional[datetime],
        now: datetime,
    ) -> Dict:
        """
        Overview, daily view series and top-N breakdowns across `blog_ids`.

        Comment and like counts are lifetime totals; view figures honour
        the time filter.
        """
        start, end = time_filter.current_range(now)
        top_n = cls._top_n()

        total_views, unique_views = sections.add(
            "views", lambda: store.view_totals(blog_ids, start, end), (0, 0)
        )
        comments_count = sections.add(
            "comments", lambda: sum(store.comment_counts(blog_ids).values()), 0
        )
        likes_count = sections.add(
            "likes", lambda: sum(store.like_counts(blog_ids).values()), 0
        )

        days = cls._series_days(time_filter, first_seen, now)
        series_start = now - timedelta(days=days)
        series = sections.add(
            "viewsOverTime",
            lambda: bucket_counts(
                Granularity.DAY,
                days,
                store.grouped_counts_by_period(
                    Metric.VIEWS, Granularity.DAY, series_start, now, blog_ids
                ),
                now,
            ),
            cls._empty_series(Granularity.DAY, days),
        )

        payload = {
            "overview": {
                "totalViews": total_views,
                "uniqueViews": unique_views,
                "commentsCount": comments_count,
                "likesCount": likes_count,
                "engagementRate": engagement_rate(total_views, comments_count, likes_count),
            },
            "viewsOverTime": cls._series_payload(series, now),
            "referralData": sections.add(
                "referralData",
                lambda: cls._format_referrers(
                    store.grouped_counts_by_dimension(
                        Dimension.REFERRER, blog_ids, start, end, top_n
                    )
                ),
                [],
            ),
        }

        for dimension, payload_key, label_key in BREAKDOWNS:
            payload[payload_key] = sections.add(
                payload_key,
                lambda dimension=dimension, label_key=label_key: cls._format_breakdown(
                    store.grouped_counts_by_dimension(dimension, blog_ids, start, end, top_n),
                    label_key,
                ),
                [],
            )

        return payload

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    @classmethod
    def get_blog_analytics(
        cls, blog: Blog, time_filter=TimeFilter.TOTAL, now: Optional[datetime] = None
    ) -> Dict:
        """
        Analytics for a single blog post.

        Returns:
            {blog, timeFilter, periodLabel, overview, viewsOverTime,
             referralData, deviceData, browserData, osData, countryData,
             degraded}
        """
        now = now or timezone.now()
        time_filter = TimeFilter.from_string(time_filter)
        sections = SectionSet()

        data = {
            "blog": {
                "id": blog.id,
                "title": blog.title,
                "slug": blog.slug,
                "createdAt": blog.created_at,
            },
            "timeFilter": time_filter.value,
            "periodLabel": time_filter.label,
        }
        data.update(
            cls._engagement_sections(sections, [blog.id], time_filter, blog.created_at, now)
        )
        data["degraded"] = sections.degraded
        return data

    @classmethod
    def _blog_list(
        cls, blogs: Iterable[Blog], time_filter: TimeFilter, now: datetime, sections: SectionSet
    ) -> List[Dict]:
        """
        Per-post stats for one page of blogs.

        Three grouped queries (views, comments, likes) over the page's ids,
        joined in memory. No per-blog queries.
        """
        blogs = list(blogs)
        ids = [b.id for b in blogs]
        start, end = time_filter.current_range(now)

        view_map = sections.add(
            "blogs.views", lambda: store.view_counts_by_blog(ids, start, end), {}
        )
        comment_map = sections.add("blogs.comments", lambda: store.comment_counts(ids), {})
        like_map = sections.add("blogs.likes", lambda: store.like_counts(ids), {})

        results = []
        for blog in blogs:
            total_views, unique_views = view_map.get(blog.id, (0, 0))
            results.append(
                {
                    "id": blog.id,
                    "title": blog.title,
                    "slug": blog.slug,
                    "coverImage": blog.cover_image,
                    "createdAt": blog.created_at,
                    "published": blog.published,
                    "stats": {
                        "totalViews": total_views,
                        "uniqueViews": unique_views,
                        "commentsCount": comment_map.get(blog.id, 0),
                        "likesCount": like_map.get(blog.id, 0),
                    },
                }
            )
        return results

    @classmethod
    def get_user_blogs_analytics(
        cls,
        author,
        time_filter=TimeFilter.TOTAL,
        now: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
        search: str = "",
    ) -> Dict:
        """
        Aggregate analytics across every post of one author.

        Args:
            author: The User whose posts are analysed
            time_filter: Window for view figures
            page, limit: Pagination of the post list (already validated)
            search: Case-insensitive title filter for the post list only

        Returns:
            {timeFilter, periodLabel, summary, overview, viewsOverTime,
             breakdowns..., blogs, pagination, degraded}
        """
        now = now or timezone.now()
        time_filter = TimeFilter.from_string(time_filter)
        sections = SectionSet()

        author_blogs = Blog.objects.filter(author=author)
        blog_rows = list(author_blogs.values_list("id", "created_at"))
        blog_ids = [blog_id for blog_id, _ in blog_rows]
        first_seen = min((created for _, created in blog_rows), default=None)

        data = {"timeFilter": time_filter.value, "periodLabel": time_filter.label}
        data.update(cls._engagement_sections(sections, blog_ids, time_filter, first_seen, now))

        overview = data["overview"]
        data["summary"] = {
            "totalBlogs": len(blog_ids),
            "totalViews": overview["totalViews"],
            "uniqueViews": overview["uniqueViews"],
            "totalComments": overview["commentsCount"],
            "totalLikes": overview["likesCount"],
            "engagementRate": overview["engagementRate"],
        }

        listed = author_blogs
        if search:
            listed = listed.filter(title__icontains=search)
        listed = listed.order_by("-created_at", "-id")
        total = listed.count()
        offset = (page - 1) * limit

        data["blogs"] = cls._blog_list(listed[offset : offset + limit], time_filter, now, sections)
        data["pagination"] = {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
            "search": search,
        }
        data["degraded"] = sections.degraded
        return data

    @classmethod
    def _compare(cls, metric: Metric, time_filter: TimeFilter, now: datetime) -> ComparisonResult:
        return compare(
            metric.value,
            time_filter,
            now,
            lambda start, end: store.count_events(metric, start, end),
        )

    @classmethod
    def _empty_comparison(cls, metric: Metric, time_filter: TimeFilter) -> ComparisonResult:
        return ComparisonResult(
            metric=metric.value,
            current=0,
            previous=0,
            percent_change=0.0,
            period_label=time_filter.label,
        )

    @classmethod
    def get_admin_analytics(cls, time_filter=TimeFilter.TOTAL, now: Optional[datetime] = None) -> Dict:
        """
        Site-wide totals for the admin dashboard.

        Returns:
            {totalViews, totalLikes, totalBlogs, averageViewsPerBlog,
             timeFilter, periodLabel, changes: {views, likes}, degraded}
        """
        now = now or timezone.now()
        time_filter = TimeFilter.from_string(time_filter)
        sections = SectionSet()

        views = sections.add(
            "views",
            lambda: cls._compare(Metric.VIEWS, time_filter, now),
            cls._empty_comparison(Metric.VIEWS, time_filter),
        )
        likes = sections.add(
            "likes",
            lambda: cls._compare(Metric.LIKES, time_filter, now),
            cls._empty_comparison(Metric.LIKES, time_filter),
        )
        total_blogs = sections.add("blogs", lambda: Blog.objects.count(), 0)

        # Integer average rounded half up
        average = (2 * views.current + total_blogs) // (2 * total_blogs) if total_blogs else 0

        return {
            "totalViews": views.current,
            "totalLikes": likes.current,
            "totalBlogs": total_blogs,
            "averageViewsPerBlog": average,
            "timeFilter": time_filter.value,
            "periodLabel": time_filter.label,
            "changes": {"views": views.to_dict(), "likes": likes.to_dict()},
            "degraded": sections.degraded,
        }

    @classmethod
    def get_admin_trends(cls, trend_range=TrendRange.WEEK, now: Optional[datetime] = None) -> Dict:
        """
        Trend chart data for views, likes, new users and new subscribers.

        Ranges:
            - day: 24 hourly buckets (by hour of day)
            - week / month: 7 / 30 daily buckets
            - year / all: 12 monthly buckets

        Returns:
            {views, likes, users, subscribers: [int, ...], labels,
             granularity, period, range, degraded}
        """
        now = now or timezone.now()
        trend_range = TrendRange.from_string(trend_range)
        granularity, horizon = trend_range.granularity, trend_range.horizon
        start = now - trend_range.lookback
        sections = SectionSet()

        data = {}
        for metric in Metric:
            series = sections.add(
                metric.value,
                lambda metric=metric: bucket_counts(
                    granularity,
                    horizon,
                    store.grouped_counts_by_period(metric, granularity, start, now),
                    now,
                ),
                cls._empty_series(granularity, horizon),
            )
            data[metric.value] = series.values

        data.update(
            {
                "labels": bucket_labels(granularity, horizon, now),
                "granularity": granularity.value,
                "period": trend_range.label,
                "range": trend_range.value,
                "degraded": sections.degraded,
            }
        )
        return data
