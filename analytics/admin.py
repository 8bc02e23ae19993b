from django.contrib import admin
from .models import Country, Blog, BlogView, Comment, BlogLike, Subscriber


@admin.register(Country)
class CountryAdmin(admin.ModelAdmin):
    list_display = ["code", "name"]
    search_fields = ["code", "name"]


@admin.register(Blog)
class BlogAdmin(admin.ModelAdmin):
    list_display = ["title", "author", "published", "created_at"]
    list_filter = ["published", "created_at"]
    search_fields = ["title", "slug"]
    prepopulated_fields = {"slug": ["title"]}


@admin.register(BlogView)
class BlogViewAdmin(admin.ModelAdmin):
    list_display = ["blog", "country", "device_type", "browser", "os", "timestamp"]
    list_filter = ["country", "device_type", "browser", "timestamp"]
    date_hierarchy = "timestamp"
    # View events are immutable once recorded
    readonly_fields = [f.name for f in BlogView._meta.fields]


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ["blog", "author", "created_at"]
    date_hierarchy = "created_at"


@admin.register(BlogLike)
class BlogLikeAdmin(admin.ModelAdmin):
    list_display = ["blog", "user", "created_at"]
    date_hierarchy = "created_at"


@admin.register(Subscriber)
class SubscriberAdmin(admin.ModelAdmin):
    list_display = ["email", "subscribed_at"]
    search_fields = ["email"]
    date_hierarchy = "subscribed_at"
