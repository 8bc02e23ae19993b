"""
Analytics Models

Database schema for the engagement tracking system:
    - Country: Reference table for countries
    - Blog: Blog posts authored by users
    - BlogView: Fact table storing each accepted (deduplicated) view event
    - Comment: Reader comments on a blog post
    - BlogLike: One like per user per blog post
    - Subscriber: Newsletter subscribers
"""

from django.contrib.auth.models import User
from django.db import models
from django.utils import timezone


class Country(models.Model):
    """
    Country reference table.

    Normalized country data to avoid storing raw strings in BlogView.
    """

    name = models.CharField(max_length=100, help_text="Full country name")
    code = models.CharField(
        max_length=5,
        unique=True,
        db_index=True,
        help_text="ISO country code (e.g., 'US', 'GB')",
    )

    class Meta:
        verbose_name = "Country"
        verbose_name_plural = "Countries"
        ordering = ["code"]

    def __str__(self):
        return self.code or "Unknown"


class Blog(models.Model):
    """
    Blog post model.

    Each blog is authored by a User and can have multiple views,
    comments and likes.
    """

    title = models.CharField(max_length=255, help_text="Blog post title")
    slug = models.SlugField(max_length=255, blank=True, help_text="URL slug")
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="blogs",
        help_text="Author of the blog post",
    )
    content = models.TextField(blank=True, help_text="Blog post content")
    cover_image = models.URLField(blank=True, default="", help_text="Cover image URL")
    published = models.BooleanField(default=True)
    created_at = models.DateTimeField(
        default=timezone.now, db_index=True, help_text="When the blog was created"
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["author", "created_at"], name="idx_blog_author_created"),
        ]

    def __str__(self):
        return self.title


class BlogView(models.Model):
    """
    View event - fact table for analytics.

    Each row is one view that passed the dedup window. Rows are never
    updated after insert.

    Indexed for efficient filtering by:
        - Time range (timestamp)
        - Country (country)
        - Blog (blog)
        - Identity lookups for dedup (session_id, ip_address)
    """

    blog = models.ForeignKey(
        Blog,
        on_delete=models.CASCADE,
        related_name="views",
        help_text="The blog post that was viewed",
    )
    timestamp = models.DateTimeField(
        default=timezone.now, db_index=True, help_text="When the view occurred"
    )
    actor_key = models.CharField(
        max_length=300,
        blank=True,
        default="",
        help_text="Best available identity: session, then user, then IP",
    )
    viewer = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="viewed_blogs",
        help_text="Registered user who viewed (if logged in)",
    )
    session_id = models.CharField(max_length=255, null=True, blank=True)
    ip_address = models.GenericIPAddressField(
        null=True, blank=True, help_text="IP address of the viewer"
    )
    user_agent = models.TextField(null=True, blank=True)
    referrer = models.CharField(max_length=500, null=True, blank=True)
    country = models.ForeignKey(
        Country,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="views",
        help_text="Country where the view originated",
    )
    city = models.CharField(max_length=100, null=True, blank=True)
    device_type = models.CharField(max_length=50, null=True, blank=True)
    browser = models.CharField(max_length=50, null=True, blank=True)
    os = models.CharField(max_length=50, null=True, blank=True)

    class Meta:
        ordering = ["-timestamp"]
        verbose_name = "Blog View"
        verbose_name_plural = "Blog Views"
        indexes = [
            models.Index(fields=["timestamp", "country"], name="idx_timestamp_country"),
            models.Index(fields=["blog", "timestamp"], name="idx_blog_timestamp"),
            models.Index(fields=["session_id"], name="idx_view_session"),
            models.Index(fields=["ip_address"], name="idx_view_ip"),
        ]

    def __str__(self):
        country_str = str(self.country) if self.country else "Unknown"
        return f"{self.blog.title} viewed from {country_str}"


class Comment(models.Model):
    blog = models.ForeignKey(Blog, on_delete=models.CASCADE, related_name="comments")
    author = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name="blog_comments"
    )
    content = models.TextField()
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Comment by {self.author} on {self.blog}"


class BlogLike(models.Model):
    blog = models.ForeignKey(Blog, on_delete=models.CASCADE, related_name="likes")
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="blog_likes")
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        unique_together = ["blog", "user"]
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.user} likes {self.blog}"


class Subscriber(models.Model):
    email = models.EmailField(unique=True)
    subscribed_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-subscribed_at"]

    def __str__(self):
        return self.email
