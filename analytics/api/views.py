"""
Analytics API Views

Endpoints:
    POST /api/blogs/{blog_id}/track-view - Record a deduplicated view
    GET  /api/blogs/{blog_id}/analytics - Single-post analytics
    GET  /api/users/{user_id}/blogs/analytics - Per-author aggregate analytics
    GET  /api/admin/analytics - Site-wide totals with period comparison
    GET  /api/admin/analytics/trends - Site-wide trend charts
"""

import logging

from django.conf import settings
from django.contrib.auth.models import User
from django.db import DatabaseError
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import status
from rest_framework.authentication import SessionAuthentication
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.authentication import JWTAuthentication

from analytics.api.serializers import (
    TimeFilterSerializer,
    TrackViewResponseSerializer,
    TrendRangeSerializer,
    UserBlogsQuerySerializer,
    parse_positive_id,
)
from analytics.dedup import ViewerIdentity
from analytics.models import Blog
from analytics.services import AnalyticsService

logger = logging.getLogger(__name__)

TIME_FILTER_PARAM = openapi.Parameter(
    "timeFilter",
    openapi.IN_QUERY,
    description="24h, 7d, 1m, 30d, 1y or total (default: total)",
    type=openapi.TYPE_STRING,
)


def _error(message: str, status_code: int) -> Response:
    return Response({"success": False, "message": message}, status=status_code)


def _api_open() -> bool:
    return getattr(settings, "BLOGPULSE_API_OPEN", False)


class BaseAnalyticsView(APIView):
    """
    Base view with common authentication settings.

    BLOGPULSE_API_OPEN=True opens every endpoint (local demos only).
    """

    authentication_classes = [JWTAuthentication, SessionAuthentication]
    required_permission = IsAuthenticated

    def get_permissions(self):
        if _api_open():
            return [AllowAny()]
        return [self.required_permission()]

    def can_access_user(self, request, user_id: int) -> bool:
        if _api_open():
            return True
        user = request.user
        return bool(user and user.is_authenticated and (user.is_staff or user.id == user_id))


class TrackBlogView(BaseAnalyticsView):
    """
    Record a blog view.

    POST /api/blogs/{blog_id}/track-view

    Open to anonymous readers. A repeat from the same session, user or IP
    within the dedup window answers 200 without recording.
    """

    # JWT only: session auth would demand a CSRF token from logged-in readers.
    # The session key is still read from request.session.
    authentication_classes = [JWTAuthentication]
    required_permission = AllowAny

    @classmethod
    def client_ip(cls, request):
        if getattr(settings, "BLOGPULSE_TRUST_FORWARDED_FOR", False):
            forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
            if forwarded:
                return forwarded.split(",")[0].strip() or None
        return request.META.get("REMOTE_ADDR") or None

    @classmethod
    def identity(cls, request) -> ViewerIdentity:
        session = getattr(request, "session", None)
        session_id = request.headers.get("X-Session-Id") or (
            session.session_key if session is not None else None
        )
        user = request.user
        return ViewerIdentity(
            session_id=session_id or None,
            user_id=user.id if user and user.is_authenticated else None,
            ip_address=cls.client_ip(request),
        )

    @swagger_auto_schema(
        operation_description="Record a deduplicated view of a blog post",
        responses={200: TrackViewResponseSerializer, 400: "Invalid blog ID", 404: "Blog not found"},
    )
    def post(self, request, blog_id):
        numeric_id = parse_positive_id(blog_id)
        if numeric_id is None:
            return _error("Invalid blog ID", status.HTTP_400_BAD_REQUEST)

        country_header = getattr(settings, "BLOGPULSE_COUNTRY_HEADER", "HTTP_CF_IPCOUNTRY")
        try:
            result = AnalyticsService.track_view(
                numeric_id,
                self.identity(request),
                user_agent=request.META.get("HTTP_USER_AGENT"),
                referrer=request.META.get("HTTP_REFERER"),
                country_code=request.META.get(country_header),
            )
        except Blog.DoesNotExist:
            return _error("Blog not found", status.HTTP_404_NOT_FOUND)
        except DatabaseError:
            logger.exception("Error tracking view of blog %s", numeric_id)
            return _error("Failed to track view", status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"success": True, "message": result.message}, status=status.HTTP_200_OK)


class BlogAnalyticsView(BaseAnalyticsView):
    """
    Analytics for one blog post (its author or staff).

    GET /api/blogs/{blog_id}/analytics?timeFilter=7d
    """

    @swagger_auto_schema(
        operation_description="Overview, daily views and top referrers/devices/browsers/OS/countries for a post",
        manual_parameters=[TIME_FILTER_PARAM],
    )
    def get(self, request, blog_id):
        numeric_id = parse_positive_id(blog_id)
        if numeric_id is None:
            return _error("Invalid blog ID", status.HTTP_400_BAD_REQUEST)

        blog = Blog.objects.filter(pk=numeric_id).first()
        if blog is None or not self.can_access_user(request, blog.author_id):
            return _error("Blog not found or access denied", status.HTTP_404_NOT_FOUND)

        serializer = TimeFilterSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        data = AnalyticsService.get_blog_analytics(
            blog, time_filter=serializer.validated_data["time_filter"]
        )
        return Response({"success": True, "data": data}, status=status.HTTP_200_OK)


class UserBlogsAnalyticsView(BaseAnalyticsView):
    """
    Aggregate analytics across one author's posts (that author or staff).

    GET /api/users/{user_id}/blogs/analytics?timeFilter=1m&page=1&limit=10&search=django
    """

    @swagger_auto_schema(
        operation_description="Summed analytics for an author plus a paginated, searchable post list",
        manual_parameters=[
            TIME_FILTER_PARAM,
            openapi.Parameter("page", openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter("limit", openapi.IN_QUERY, type=openapi.TYPE_INTEGER),
            openapi.Parameter("search", openapi.IN_QUERY, type=openapi.TYPE_STRING),
        ],
    )
    def get(self, request, user_id):
        numeric_id = parse_positive_id(user_id)
        if numeric_id is None:
            return _error("Invalid user ID", status.HTTP_400_BAD_REQUEST)

        if not self.can_access_user(request, numeric_id):
            return _error("Access denied", status.HTTP_403_FORBIDDEN)

        author = User.objects.filter(pk=numeric_id).first()
        if author is None:
            return _error("User not found", status.HTTP_404_NOT_FOUND)

        serializer = UserBlogsQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        params = serializer.validated_data

        data = AnalyticsService.get_user_blogs_analytics(
            author,
            time_filter=params["time_filter"],
            page=params["page"],
            limit=params["limit"],
            search=params["search"],
        )
        return Response({"success": True, "data": data}, status=status.HTTP_200_OK)


class AdminAnalyticsView(BaseAnalyticsView):
    """
    Site-wide totals and period-over-period changes (staff only).

    GET /api/admin/analytics?timeFilter=30d
    """

    required_permission = IsAdminUser

    @swagger_auto_schema(
        operation_description="Total views/likes/posts with comparison against the previous period",
        manual_parameters=[TIME_FILTER_PARAM],
    )
    def get(self, request):
        serializer = TimeFilterSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        data = AnalyticsService.get_admin_analytics(
            time_filter=serializer.validated_data["time_filter"]
        )
        return Response({"success": True, "data": data}, status=status.HTTP_200_OK)


class AdminTrendsView(BaseAnalyticsView):
    """
    Trend chart series for views, likes, new users and new subscribers (staff only).

    GET /api/admin/analytics/trends?range=month

    Granularity by range:
        - day: 24 hourly buckets
        - week: 7 daily buckets
        - month: 30 daily buckets
        - year / all: 12 monthly buckets
    """

    required_permission = IsAdminUser

    @swagger_auto_schema(
        operation_description="Fixed-length trend series for the admin dashboard",
        manual_parameters=[
            openapi.Parameter(
                "range",
                openapi.IN_QUERY,
                description="day, week, month, year or all (default: week)",
                type=openapi.TYPE_STRING,
            )
        ],
    )
    def get(self, request):
        serializer = TrendRangeSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        data = AnalyticsService.get_admin_trends(
            trend_range=serializer.validated_data["trend_range"]
        )
        return Response({"success": True, "data": data}, status=status.HTTP_200_OK)
