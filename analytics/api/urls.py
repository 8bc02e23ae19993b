from django.urls import path
from .views import (
    AdminAnalyticsView,
    AdminTrendsView,
    BlogAnalyticsView,
    TrackBlogView,
    UserBlogsAnalyticsView,
)

urlpatterns = [
    path("blogs/<str:blog_id>/track-view", TrackBlogView.as_view(), name="track-view"),
    path("blogs/<str:blog_id>/analytics", BlogAnalyticsView.as_view(), name="blog-analytics"),
    path(
        "users/<str:user_id>/blogs/analytics",
        UserBlogsAnalyticsView.as_view(),
        name="user-blogs-analytics",
    ),
    path("admin/analytics", AdminAnalyticsView.as_view(), name="admin-analytics"),
    path("admin/analytics/trends", AdminTrendsView.as_view(), name="admin-trends"),
]
