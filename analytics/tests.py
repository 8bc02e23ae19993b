from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

from django.contrib.auth.models import User
from django.db import DatabaseError, connection
from django.test import TestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from analytics.models import Blog, BlogLike, BlogView, Comment, Country, Subscriber
from analytics.services import AnalyticsService

NOW = datetime(2024, 3, 10, 15, 30, tzinfo=dt_timezone.utc)


class AnalyticsTestMixin:
    def make_view(self, blog, when=None, actor="ip:1.1.1.1", **fields):
        return BlogView.objects.create(
            blog=blog, timestamp=when or timezone.now(), actor_key=actor, **fields
        )


class BlogAnalyticsAPITest(AnalyticsTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.author = User.objects.create_user("author", "author@example.com")
        self.reader = User.objects.create_user("reader", "reader@example.com")
        self.country_us = Country.objects.create(name="USA", code="US")
        self.blog = Blog.objects.create(
            title="Test Blog", slug="test-blog", author=self.author, content="..."
        )

        self.make_view(
            self.blog,
            actor="session:a",
            referrer="https://www.google.com/search?q=1",
            device_type="Desktop",
            browser="Chrome",
            os="Windows",
            country=self.country_us,
        )
        self.make_view(
            self.blog,
            actor="session:a",
            referrer="https://www.google.com/search?q=2",
            device_type="Mobile",
            browser="Safari",
            os="iOS",
            country=self.country_us,
        )
        self.make_view(self.blog, actor="ip:2.2.2.2")
        self.make_view(self.blog, actor="ip:3.3.3.3", when=timezone.now() - timedelta(days=40))

        Comment.objects.create(blog=self.blog, author=self.reader, content="Nice")
        BlogLike.objects.create(blog=self.blog, user=self.reader)

        self.url = f"/api/blogs/{self.blog.id}/analytics"

    def test_author_gets_analytics(self):
        self.client.force_authenticate(self.author)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["success"])

        data = response.data["data"]
        self.assertEqual(data["timeFilter"], "total")
        self.assertEqual(data["blog"]["slug"], "test-blog")
        self.assertEqual(
            data["overview"],
            {
                "totalViews": 4,
                "uniqueViews": 3,
                "commentsCount": 1,
                "likesCount": 1,
                "engagementRate": 50.0,
            },
        )
        self.assertEqual(data["degraded"], [])

    def test_time_filter_limits_views(self):
        self.client.force_authenticate(self.author)
        data = self.client.get(self.url, {"timeFilter": "1m"}).data["data"]
        self.assertEqual(data["timeFilter"], "30d")
        self.assertEqual(data["overview"]["totalViews"], 3)
        self.assertEqual(data["viewsOverTime"]["length"], 30)
        self.assertEqual(data["viewsOverTime"]["values"][-1], 3)
        self.assertEqual(len(data["viewsOverTime"]["labels"]), 30)

    def test_invalid_time_filter_falls_back_to_total(self):
        self.client.force_authenticate(self.author)
        data = self.client.get(self.url, {"timeFilter": "forever"}).data["data"]
        self.assertEqual(data["timeFilter"], "total")
        self.assertEqual(data["overview"]["totalViews"], 4)

    def test_breakdowns(self):
        self.client.force_authenticate(self.author)
        data = self.client.get(self.url).data["data"]

        self.assertEqual(
            data["referralData"][0],
            {"domain": "www.google.com", "url": "https://www.google.com/search?q=1", "count": 1},
        )
        self.assertEqual(len(data["referralData"]), 2)
        self.assertEqual(data["countryData"], [{"country": "US", "count": 2}])
        # Views without a device are reported as Unknown
        self.assertEqual(data["deviceData"][0], {"type": "Unknown", "count": 2})
        self.assertIn({"browser": "Safari", "count": 1}, data["browserData"])
        self.assertIn({"os": "Windows", "count": 1}, data["osData"])

    @override_settings(BLOGPULSE_TOP_N=1)
    def test_breakdowns_are_capped(self):
        self.client.force_authenticate(self.author)
        data = self.client.get(self.url).data["data"]
        self.assertEqual(len(data["referralData"]), 1)
        self.assertEqual(len(data["browserData"]), 1)

    def test_other_users_cannot_see_post_analytics(self):
        self.client.force_authenticate(self.reader)
        self.assertEqual(self.client.get(self.url).status_code, 404)

    def test_staff_can_see_post_analytics(self):
        staff = User.objects.create_user("staff", "staff@example.com", is_staff=True)
        self.client.force_authenticate(staff)
        self.assertEqual(self.client.get(self.url).status_code, 200)

    def test_anonymous_rejected(self):
        self.assertIn(self.client.get(self.url).status_code, (401, 403))

    def test_invalid_blog_id(self):
        self.client.force_authenticate(self.author)
        self.assertEqual(self.client.get("/api/blogs/zero/analytics").status_code, 400)

    def test_degraded_dimension_keeps_rest_of_response(self):
        self.client.force_authenticate(self.author)
        with patch(
            "analytics.store.grouped_counts_by_dimension",
            side_effect=DatabaseError("no such column: browser"),
        ):
            response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        data = response.data["data"]
        self.assertEqual(data["overview"]["totalViews"], 4)
        for key in ("referralData", "deviceData", "browserData", "osData", "countryData"):
            self.assertEqual(data[key], [])
        degraded = {d["section"] for d in data["degraded"]}
        self.assertEqual(
            degraded, {"referralData", "deviceData", "browserData", "osData", "countryData"}
        )


class UserBlogsAnalyticsAPITest(AnalyticsTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.author = User.objects.create_user("author", "author@example.com")
        self.reader = User.objects.create_user("reader", "reader@example.com")
        self.blogs = []
        for i, title in enumerate(["Django tips", "Python tricks", "Django ORM deep dive"]):
            blog = Blog.objects.create(
                title=title,
                author=self.author,
                content="...",
                created_at=timezone.now() - timedelta(days=10 - i),
            )
            self.blogs.append(blog)

        self.make_view(self.blogs[0], actor="ip:1")
        self.make_view(self.blogs[0], actor="ip:2")
        self.make_view(self.blogs[2], actor="ip:1")
        Comment.objects.create(blog=self.blogs[0], author=self.reader, content="!")
        BlogLike.objects.create(blog=self.blogs[2], user=self.reader)

        other = User.objects.create_user("other", "other@example.com")
        self.make_view(Blog.objects.create(title="Not mine", author=other, content="..."))

        self.url = f"/api/users/{self.author.id}/blogs/analytics"
        self.client.force_authenticate(self.author)

    def test_summary_across_all_posts(self):
        data = self.client.get(self.url).data["data"]
        self.assertEqual(
            data["summary"],
            {
                "totalBlogs": 3,
                "totalViews": 3,
                "uniqueViews": 2,
                "totalComments": 1,
                "totalLikes": 1,
                "engagementRate": 66.67,
            },
        )
        self.assertEqual(data["viewsOverTime"]["values"][-1], 3)

    def test_post_list_stats(self):
        data = self.client.get(self.url).data["data"]
        by_title = {b["title"]: b["stats"] for b in data["blogs"]}

        # Newest first
        self.assertEqual(data["blogs"][0]["title"], "Django ORM deep dive")
        self.assertEqual(
            by_title["Django tips"],
            {"totalViews": 2, "uniqueViews": 2, "commentsCount": 1, "likesCount": 0},
        )
        self.assertEqual(
            by_title["Python tricks"],
            {"totalViews": 0, "uniqueViews": 0, "commentsCount": 0, "likesCount": 0},
        )

    def test_pagination_and_search(self):
        data = self.client.get(self.url, {"limit": 2, "page": 2}).data["data"]
        self.assertEqual(len(data["blogs"]), 1)
        self.assertEqual(data["pagination"]["totalPages"], 2)

        data = self.client.get(self.url, {"search": "django"}).data["data"]
        self.assertEqual(data["pagination"]["total"], 2)
        self.assertEqual(data["summary"]["totalBlogs"], 3)

    def test_pagination_values_are_clamped(self):
        data = self.client.get(self.url, {"limit": 5000, "page": "x"}).data["data"]
        self.assertEqual(data["pagination"]["limit"], 100)
        self.assertEqual(data["pagination"]["page"], 1)

    def test_post_list_has_no_n_plus_1(self):
        """Query count must not grow with the number of posts listed."""
        with CaptureQueriesContext(connection) as small:
            AnalyticsService.get_user_blogs_analytics(self.author, limit=1)

        for i in range(6):
            blog = Blog.objects.create(title=f"Extra {i}", author=self.author, content="...")
            self.make_view(blog)
            Comment.objects.create(blog=blog, author=self.reader, content="!")

        with CaptureQueriesContext(connection) as large:
            AnalyticsService.get_user_blogs_analytics(self.author, limit=9)

        self.assertEqual(len(small.captured_queries), len(large.captured_queries))

    def test_other_user_denied(self):
        self.client.force_authenticate(self.reader)
        self.assertEqual(self.client.get(self.url).status_code, 403)

    def test_unknown_user(self):
        staff = User.objects.create_user("staff", "staff@example.com", is_staff=True)
        self.client.force_authenticate(staff)
        self.assertEqual(self.client.get("/api/users/9999/blogs/analytics").status_code, 404)

    def test_author_without_posts(self):
        self.client.force_authenticate(self.reader)
        data = self.client.get(f"/api/users/{self.reader.id}/blogs/analytics").data["data"]
        self.assertEqual(data["summary"]["totalBlogs"], 0)
        self.assertEqual(data["summary"]["engagementRate"], 0)
        self.assertEqual(data["blogs"], [])
        self.assertEqual(data["viewsOverTime"]["values"], [0])


class AdminAnalyticsTest(AnalyticsTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.staff = User.objects.create_user("staff", "staff@example.com", is_staff=True)
        self.author = User.objects.create_user("author", "author@example.com")
        self.blog_a = Blog.objects.create(title="A", author=self.author, content="...")
        self.blog_b = Blog.objects.create(title="B", author=self.author, content="...")

    def test_totals_and_changes(self):
        for hours in (1, 2, 3):
            self.make_view(self.blog_a, when=NOW - timedelta(hours=hours))
        for days in (8, 9):
            self.make_view(self.blog_b, when=NOW - timedelta(days=days))
        BlogLike.objects.create(blog=self.blog_a, user=self.staff, created_at=NOW - timedelta(days=1))

        data = AnalyticsService.get_admin_analytics("7d", now=NOW)

        self.assertEqual(data["totalViews"], 3)
        self.assertEqual(data["totalLikes"], 1)
        self.assertEqual(data["totalBlogs"], 2)
        self.assertEqual(data["averageViewsPerBlog"], 2)
        self.assertEqual(data["periodLabel"], "last 7 days")
        self.assertEqual(data["changes"]["views"]["previous"], 2)
        self.assertEqual(data["changes"]["views"]["change"], 50.0)
        self.assertEqual(data["changes"]["likes"]["change"], 0)

    def test_total_filter_has_no_comparison(self):
        self.make_view(self.blog_a, when=NOW - timedelta(days=400))
        data = AnalyticsService.get_admin_analytics("total", now=NOW)
        self.assertEqual(data["totalViews"], 1)
        self.assertEqual(data["changes"]["views"]["previous"], 0)
        self.assertEqual(data["periodLabel"], "all time")

    def test_thirty_day_spellings_agree(self):
        self.make_view(self.blog_a, when=NOW - timedelta(days=20))
        a = AnalyticsService.get_admin_analytics("30d", now=NOW)
        b = AnalyticsService.get_admin_analytics("1m", now=NOW)
        self.assertEqual(a, b)
        self.assertEqual(a["totalViews"], 1)

    def test_likes_failure_degrades_only_likes(self):
        real_count = AnalyticsService._compare.__func__

        def flaky(cls, metric, time_filter, now):
            if metric.value == "likes":
                raise DatabaseError("no such column: created_at")
            return real_count(cls, metric, time_filter, now)

        self.make_view(self.blog_a, when=NOW - timedelta(hours=1))
        with patch.object(AnalyticsService, "_compare", classmethod(flaky)):
            data = AnalyticsService.get_admin_analytics("24h", now=NOW)

        self.assertEqual(data["totalViews"], 1)
        self.assertEqual(data["totalLikes"], 0)
        self.assertEqual(data["changes"]["likes"]["current"], 0)
        self.assertEqual([d["section"] for d in data["degraded"]], ["likes"])

    def test_endpoint_requires_staff(self):
        self.client.force_authenticate(self.author)
        self.assertEqual(self.client.get("/api/admin/analytics").status_code, 403)

        self.client.force_authenticate(self.staff)
        response = self.client.get("/api/admin/analytics", {"timeFilter": "30d"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["data"]["timeFilter"], "30d")

    @override_settings(BLOGPULSE_API_OPEN=True)
    def test_open_api_setting(self):
        self.assertEqual(self.client.get("/api/admin/analytics").status_code, 200)


class AdminTrendsTest(AnalyticsTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.staff = User.objects.create_user("staff", "staff@example.com", is_staff=True)
        self.blog = Blog.objects.create(title="A", author=self.staff, content="...")

    def test_week_range_daily_buckets(self):
        self.make_view(self.blog, when=NOW - timedelta(hours=1))
        self.make_view(self.blog, when=NOW - timedelta(days=1))
        self.make_view(self.blog, when=NOW - timedelta(days=1, hours=2))
        self.make_view(self.blog, when=NOW - timedelta(days=8))
        Subscriber.objects.create(email="a@example.com", subscribed_at=NOW - timedelta(days=6))

        data = AnalyticsService.get_admin_trends("week", now=NOW)

        self.assertEqual(data["views"], [0, 0, 0, 0, 0, 2, 1])
        self.assertEqual(data["subscribers"], [1, 0, 0, 0, 0, 0, 0])
        self.assertEqual(data["likes"], [0] * 7)
        self.assertEqual(data["labels"][-1], "2024-03-10")
        self.assertEqual(data["period"], "last 7 days")
        self.assertEqual(data["range"], "week")

    def test_day_range_buckets_by_hour_of_day(self):
        self.make_view(self.blog, when=NOW - timedelta(hours=2))  # 13:30
        self.make_view(self.blog, when=NOW - timedelta(hours=20))  # 19:30 yesterday

        data = AnalyticsService.get_admin_trends("day", now=NOW)

        self.assertEqual(len(data["views"]), 24)
        self.assertEqual(data["views"][13], 1)
        self.assertEqual(data["views"][19], 1)
        self.assertEqual(data["granularity"], "hour")

    @override_settings(TIME_ZONE="America/New_York")
    def test_buckets_follow_active_time_zone(self):
        now = datetime(2024, 3, 10, 12, 0, tzinfo=dt_timezone.utc)  # 08:00 local
        # 22:00 on March 9th in New York
        self.make_view(self.blog, when=datetime(2024, 3, 10, 3, 0, tzinfo=dt_timezone.utc))

        week = AnalyticsService.get_admin_trends("week", now=now)
        self.assertEqual(week["views"][5], 1)
        self.assertEqual(week["views"][6], 0)
        self.assertEqual(week["labels"][5], "2024-03-09")

        day = AnalyticsService.get_admin_trends("day", now=now)
        self.assertEqual(day["views"][22], 1)
        self.assertEqual(day["views"][3], 0)

    def test_year_range_monthly_buckets(self):
        self.make_view(self.blog, when=datetime(2024, 3, 1, 8, tzinfo=dt_timezone.utc))
        self.make_view(self.blog, when=datetime(2024, 1, 31, 23, tzinfo=dt_timezone.utc))
        self.make_view(self.blog, when=datetime(2023, 4, 15, tzinfo=dt_timezone.utc))
        User.objects.filter(pk=self.staff.pk).update(
            date_joined=datetime(2024, 2, 2, tzinfo=dt_timezone.utc)
        )

        for trend_range in ("year", "all"):
            with self.subTest(range=trend_range):
                data = AnalyticsService.get_admin_trends(trend_range, now=NOW)
                self.assertEqual(len(data["views"]), 12)
                self.assertEqual(data["views"][11], 1)
                self.assertEqual(data["views"][9], 1)
                self.assertEqual(data["views"][0], 1)
                self.assertEqual(data["users"][10], 1)
                self.assertEqual(data["labels"][0], "2023-04")
                self.assertEqual(data["period"], "last 12 months")

    def test_empty_database_gives_zero_series(self):
        data = AnalyticsService.get_admin_trends("month", now=NOW)
        for metric in ("views", "likes", "users", "subscribers"):
            self.assertEqual(data[metric], [0] * 30)

    def test_one_failing_metric_degrades_alone(self):
        from analytics import store

        real = store.grouped_counts_by_period

        def flaky(metric, *args, **kwargs):
            if metric.value == "subscribers":
                raise DatabaseError("no such table: analytics_subscriber")
            return real(metric, *args, **kwargs)

        self.make_view(self.blog, when=NOW - timedelta(hours=1))
        with patch("analytics.store.grouped_counts_by_period", side_effect=flaky):
            data = AnalyticsService.get_admin_trends("week", now=NOW)

        self.assertEqual(data["views"][-1], 1)
        self.assertEqual(data["subscribers"], [0] * 7)
        self.assertEqual(data["degraded"][0]["section"], "subscribers")

    def test_endpoint(self):
        self.client.force_authenticate(self.staff)
        response = self.client.get("/api/admin/analytics/trends", {"range": "month"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["data"]["views"]), 30)

        response = self.client.get("/api/admin/analytics/trends", {"range": "bogus"})
        self.assertEqual(response.data["data"]["range"], "week")
        self.assertEqual(len(response.data["data"]["views"]), 7)
