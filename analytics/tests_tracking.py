from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

from django.contrib.auth.models import User
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from analytics.dedup import ViewerIdentity, should_record_view
from analytics.enrichment import extract_domain, parse_user_agent
from analytics.models import Blog, BlogView, Country
from analytics.services import AnalyticsService

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=dt_timezone.utc)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class ViewerIdentityTest(SimpleTestCase):
    def test_actor_key_priority(self):
        self.assertEqual(
            ViewerIdentity("abc", 5, "10.0.0.1").actor_key, "session:abc"
        )
        self.assertEqual(ViewerIdentity(None, 5, "10.0.0.1").actor_key, "user:5")
        self.assertEqual(ViewerIdentity(None, None, "10.0.0.1").actor_key, "ip:10.0.0.1")
        self.assertIsNone(ViewerIdentity().actor_key)


class EnrichmentTest(SimpleTestCase):
    def test_parse_desktop_chrome(self):
        client = parse_user_agent(CHROME_WINDOWS)
        self.assertEqual((client.device_type, client.browser, client.os), ("Desktop", "Chrome", "Windows"))

    def test_parse_mobile_safari(self):
        client = parse_user_agent(SAFARI_IPHONE)
        self.assertEqual((client.device_type, client.browser, client.os), ("Mobile", "Safari", "iOS"))

    def test_missing_user_agent(self):
        client = parse_user_agent(None)
        self.assertIsNone(client.device_type)

    def test_extract_domain(self):
        self.assertEqual(extract_domain("https://news.ycombinator.com/item?id=1"), "news.ycombinator.com")
        self.assertEqual(extract_domain("not a url"), "not a url")
        self.assertEqual(extract_domain("http://[::1"), "http://[::1")


class ShouldRecordViewTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("author", "author@example.com")
        self.blog = Blog.objects.create(title="Test Blog", author=self.user, content="...")

    def _prior_view(self, minutes_ago, **fields):
        BlogView.objects.create(
            blog=self.blog, timestamp=NOW - timedelta(minutes=minutes_ago), **fields
        )

    def test_same_ip_ten_minutes_ago_is_suppressed(self):
        self._prior_view(10, ip_address="10.0.0.1", actor_key="ip:10.0.0.1")
        decision = should_record_view(self.blog.id, ViewerIdentity(ip_address="10.0.0.1"), NOW)
        self.assertFalse(decision.record)

    def test_same_ip_thirty_one_minutes_ago_is_recorded(self):
        self._prior_view(31, ip_address="10.0.0.1", actor_key="ip:10.0.0.1")
        decision = should_record_view(self.blog.id, ViewerIdentity(ip_address="10.0.0.1"), NOW)
        self.assertTrue(decision.record)

    def test_any_identity_signal_matches(self):
        # Prior view came from another IP but the same session
        self._prior_view(5, session_id="s1", ip_address="10.0.0.9", actor_key="session:s1")
        identity = ViewerIdentity(session_id="s1", ip_address="10.0.0.1")
        self.assertFalse(should_record_view(self.blog.id, identity, NOW).record)

        # Same logged-in user on a new session and IP
        self._prior_view(5, viewer=self.user, actor_key=f"user:{self.user.id}")
        identity = ViewerIdentity(session_id="s2", user_id=self.user.id, ip_address="10.0.0.2")
        self.assertFalse(should_record_view(self.blog.id, identity, NOW).record)

    def test_other_blog_does_not_count(self):
        other = Blog.objects.create(title="Other", author=self.user, content="...")
        BlogView.objects.create(blog=other, timestamp=NOW - timedelta(minutes=1), ip_address="10.0.0.1")
        decision = should_record_view(self.blog.id, ViewerIdentity(ip_address="10.0.0.1"), NOW)
        self.assertTrue(decision.record)

    def test_no_identity_always_records(self):
        self._prior_view(1)
        self.assertTrue(should_record_view(self.blog.id, ViewerIdentity(), NOW).record)

    @override_settings(BLOGPULSE_VIEW_DEDUP_WINDOW_MINUTES=5)
    def test_window_is_configurable(self):
        self._prior_view(10, ip_address="10.0.0.1")
        decision = should_record_view(self.blog.id, ViewerIdentity(ip_address="10.0.0.1"), NOW)
        self.assertTrue(decision.record)


class TrackViewServiceTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("author", "author@example.com")
        self.blog = Blog.objects.create(title="Test Blog", author=self.user, content="...")

    def test_records_enriched_view(self):
        result = AnalyticsService.track_view(
            self.blog.id,
            ViewerIdentity(session_id="s1", ip_address="10.0.0.1"),
            user_agent=SAFARI_IPHONE,
            referrer="https://www.google.com/search?q=x",
            country_code="de",
            now=NOW,
        )
        self.assertTrue(result.recorded)
        view = BlogView.objects.get()
        self.assertEqual(view.actor_key, "session:s1")
        self.assertEqual(view.timestamp, NOW)
        self.assertEqual((view.device_type, view.browser, view.os), ("Mobile", "Safari", "iOS"))
        self.assertEqual(view.country.code, "DE")

    def test_repeat_within_window_not_recorded(self):
        identity = ViewerIdentity(ip_address="10.0.0.1")
        AnalyticsService.track_view(self.blog.id, identity, now=NOW)
        result = AnalyticsService.track_view(self.blog.id, identity, now=NOW + timedelta(minutes=29))

        self.assertFalse(result.recorded)
        self.assertEqual(result.message, "View already tracked")
        self.assertEqual(BlogView.objects.count(), 1)

    def test_anonymous_views_count_as_distinct_visitors(self):
        AnalyticsService.track_view(self.blog.id, ViewerIdentity(), now=NOW)
        AnalyticsService.track_view(self.blog.id, ViewerIdentity(), now=NOW)
        keys = set(BlogView.objects.values_list("actor_key", flat=True))
        self.assertEqual(len(keys), 2)

    def test_enrichment_failure_does_not_block_recording(self):
        with patch("analytics.services.parse_user_agent", side_effect=RuntimeError("boom")):
            result = AnalyticsService.track_view(
                self.blog.id, ViewerIdentity(ip_address="10.0.0.1"), user_agent="x", now=NOW
            )
        self.assertTrue(result.recorded)
        self.assertIsNone(BlogView.objects.get().device_type)

    def test_unknown_country_code_is_ignored(self):
        AnalyticsService.track_view(
            self.blog.id, ViewerIdentity(ip_address="10.0.0.1"), country_code="XX", now=NOW
        )
        self.assertIsNone(BlogView.objects.get().country)
        self.assertFalse(Country.objects.exists())

    def test_unknown_blog_raises(self):
        with self.assertRaises(Blog.DoesNotExist):
            AnalyticsService.track_view(9999, ViewerIdentity(ip_address="10.0.0.1"), now=NOW)


class TrackViewAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user("author", "author@example.com")
        self.blog = Blog.objects.create(title="Test Blog", author=self.user, content="...")
        self.url = f"/api/blogs/{self.blog.id}/track-view"

    def test_track_then_repeat(self):
        response = self.client.post(self.url, HTTP_USER_AGENT=CHROME_WINDOWS)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {"success": True, "message": "View tracked successfully"})

        response = self.client.post(self.url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["message"], "View already tracked")
        self.assertEqual(BlogView.objects.count(), 1)

    def test_session_reader_needs_no_csrf_token(self):
        User.objects.create_user("reader", "reader@example.com", "pw")
        client = APIClient(enforce_csrf_checks=True)
        self.assertTrue(client.login(username="reader", password="pw"))

        response = client.post(self.url)

        self.assertEqual(response.status_code, 200)
        view = BlogView.objects.get()
        self.assertEqual(view.actor_key, f"session:{client.session.session_key}")

    def test_country_header_is_used(self):
        self.client.post(self.url, HTTP_CF_IPCOUNTRY="US")
        self.assertEqual(BlogView.objects.get().country.code, "US")

    def test_invalid_blog_id_is_rejected(self):
        for bad in ("abc", "0", "-4"):
            with self.subTest(blog_id=bad):
                response = self.client.post(f"/api/blogs/{bad}/track-view")
                self.assertEqual(response.status_code, 400)
                self.assertFalse(response.data["success"])

    def test_unknown_blog_is_404(self):
        response = self.client.post("/api/blogs/9999/track-view")
        self.assertEqual(response.status_code, 404)

    def test_storage_failure_is_500(self):
        with patch("analytics.store.insert_view", side_effect=DatabaseError("db down")):
            response = self.client.post(self.url)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["message"], "Failed to track view")
