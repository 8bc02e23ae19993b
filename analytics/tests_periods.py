from datetime import datetime, timedelta, timezone as dt_timezone

from django.contrib.auth.models import User
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase

from analytics.models import Blog, BlogLike, BlogView
from analytics.periods import TimeFilter, compare, engagement_rate, percent_change
from analytics.services import AnalyticsService
from analytics.store import Metric

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=dt_timezone.utc)


class TimeFilterTest(SimpleTestCase):
    def test_both_thirty_day_spellings_normalize(self):
        self.assertIs(TimeFilter.from_string("1m"), TimeFilter.LAST_30_DAYS)
        self.assertIs(TimeFilter.from_string("30d"), TimeFilter.LAST_30_DAYS)

    def test_unknown_values_fall_back_to_total(self):
        for value in (None, "", "5w", "DROP TABLE", "all"):
            with self.subTest(value=value):
                self.assertIs(TimeFilter.from_string(value), TimeFilter.TOTAL)

    def test_windows(self):
        self.assertEqual(TimeFilter.LAST_24_HOURS.window, timedelta(hours=24))
        self.assertEqual(TimeFilter.LAST_7_DAYS.window, timedelta(days=7))
        self.assertEqual(TimeFilter.LAST_YEAR.window, timedelta(days=365))
        self.assertIsNone(TimeFilter.TOTAL.window)

    def test_previous_range_is_adjacent_and_equal_length(self):
        start, end = TimeFilter.LAST_7_DAYS.current_range(NOW)
        prev_start, prev_end = TimeFilter.LAST_7_DAYS.previous_range(NOW)
        self.assertEqual(prev_end, start)
        self.assertEqual(end - start, prev_end - prev_start)
        self.assertIsNone(TimeFilter.TOTAL.previous_range(NOW))


class PercentChangeTest(SimpleTestCase):
    def test_zero_previous_is_guarded(self):
        self.assertEqual(percent_change(50, 0), 0)

    def test_growth_and_decline(self):
        self.assertEqual(percent_change(10, 5), 100.0)
        self.assertEqual(percent_change(5, 10), -50.0)

    def test_engagement_rate_with_no_views(self):
        self.assertEqual(engagement_rate(0, 3, 2), 0)

    def test_engagement_rate_rounds_to_two_places(self):
        self.assertEqual(engagement_rate(3, 1, 0), 33.33)
        self.assertEqual(engagement_rate(4, 1, 1), 50.0)


class CompareTest(TestCase):
    def test_total_has_no_previous_period(self):
        calls = []

        def count_fn(start, end):
            calls.append((start, end))
            return 42

        result = compare("views", "total", NOW, count_fn)
        self.assertEqual((result.current, result.previous, result.percent_change), (42, 0, 0))
        self.assertEqual(calls, [(None, NOW)])
        self.assertEqual(result.period_label, "all time")

    def test_previous_count_failure_degrades_to_zero(self):
        def count_fn(start, end):
            if end < NOW:
                raise DatabaseError("no such column: created_at")
            return 7

        result = compare("likes", TimeFilter.LAST_7_DAYS, NOW, count_fn)
        self.assertEqual(result.current, 7)
        self.assertEqual(result.previous, 0)
        self.assertEqual(result.percent_change, 0)

    def test_to_dict_shape(self):
        result = compare("views", "24h", NOW, lambda s, e: 3 if e == NOW else 2)
        self.assertEqual(
            result.to_dict(),
            {"metric": "views", "current": 3, "previous": 2, "change": 50.0, "period": "last 24 hours"},
        )


class PeriodComparisonDatabaseTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("author", "author@example.com")
        self.blog = Blog.objects.create(title="P", author=self.user, content="...")

    def _views_at(self, hours_ago_list):
        BlogView.objects.bulk_create(
            BlogView(blog=self.blog, timestamp=NOW - timedelta(hours=h), actor_key=f"ip:{i}")
            for i, h in enumerate(hours_ago_list)
        )

    def test_views_doubled_over_last_24_hours(self):
        self._views_at([1 + i * 2 for i in range(10)])  # 10 views in the last 24h
        self._views_at([25 + i * 4 for i in range(5)])  # 5 views in the 24h before
        self._views_at([60])  # older, outside both windows

        result = AnalyticsService._compare(Metric.VIEWS, TimeFilter.LAST_24_HOURS, NOW)

        self.assertEqual(result.current, 10)
        self.assertEqual(result.previous, 5)
        self.assertEqual(result.percent_change, 100)

    def test_window_is_half_open(self):
        # Exactly 24h ago belongs to the current window, not the previous one
        self._views_at([24])
        result = AnalyticsService._compare(Metric.VIEWS, TimeFilter.LAST_24_HOURS, NOW)
        self.assertEqual((result.current, result.previous), (1, 0))

    def test_likes_compare_on_created_at(self):
        other = User.objects.create_user("reader", "reader@example.com")
        BlogLike.objects.create(blog=self.blog, user=self.user, created_at=NOW - timedelta(days=2))
        BlogLike.objects.create(blog=self.blog, user=other, created_at=NOW - timedelta(days=9))

        result = AnalyticsService._compare(Metric.LIKES, TimeFilter.LAST_7_DAYS, NOW)
        self.assertEqual((result.current, result.previous), (1, 1))
        self.assertEqual(result.percent_change, 0)
