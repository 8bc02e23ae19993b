import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Country",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(help_text="Full country name", max_length=100)),
                ("code", models.CharField(db_index=True, help_text="ISO country code (e.g., 'US', 'GB')", max_length=5, unique=True)),
            ],
            options={
                "verbose_name": "Country",
                "verbose_name_plural": "Countries",
                "ordering": ["code"],
            },
        ),
        migrations.CreateModel(
            name="Subscriber",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("subscribed_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                "ordering": ["-subscribed_at"],
            },
        ),
        migrations.CreateModel(
            name="Blog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(help_text="Blog post title", max_length=255)),
                ("slug", models.SlugField(blank=True, help_text="URL slug", max_length=255)),
                ("content", models.TextField(blank=True, help_text="Blog post content")),
                ("cover_image", models.URLField(blank=True, default="", help_text="Cover image URL")),
                ("published", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now, help_text="When the blog was created")),
                ("author", models.ForeignKey(help_text="Author of the blog post", on_delete=django.db.models.deletion.CASCADE, related_name="blogs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["author", "created_at"], name="idx_blog_author_created")],
            },
        ),
        migrations.CreateModel(
            name="BlogView",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("timestamp", models.DateTimeField(db_index=True, default=django.utils.timezone.now, help_text="When the view occurred")),
                ("actor_key", models.CharField(blank=True, default="", help_text="Best available identity: session, then user, then IP", max_length=300)),
                ("session_id", models.CharField(blank=True, max_length=255, null=True)),
                ("ip_address", models.GenericIPAddressField(blank=True, help_text="IP address of the viewer", null=True)),
                ("user_agent", models.TextField(blank=True, null=True)),
                ("referrer", models.CharField(blank=True, max_length=500, null=True)),
                ("city", models.CharField(blank=True, max_length=100, null=True)),
                ("device_type", models.CharField(blank=True, max_length=50, null=True)),
                ("browser", models.CharField(blank=True, max_length=50, null=True)),
                ("os", models.CharField(blank=True, max_length=50, null=True)),
                ("blog", models.ForeignKey(help_text="The blog post that was viewed", on_delete=django.db.models.deletion.CASCADE, related_name="views", to="analytics.blog")),
                ("country", models.ForeignKey(blank=True, help_text="Country where the view originated", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="views", to="analytics.country")),
                ("viewer", models.ForeignKey(blank=True, help_text="Registered user who viewed (if logged in)", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="viewed_blogs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Blog View",
                "verbose_name_plural": "Blog Views",
                "ordering": ["-timestamp"],
                "indexes": [
                    models.Index(fields=["timestamp", "country"], name="idx_timestamp_country"),
                    models.Index(fields=["blog", "timestamp"], name="idx_blog_timestamp"),
                    models.Index(fields=["session_id"], name="idx_view_session"),
                    models.Index(fields=["ip_address"], name="idx_view_ip"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Comment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("content", models.TextField()),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("author", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="blog_comments", to=settings.AUTH_USER_MODEL)),
                ("blog", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="comments", to="analytics.blog")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="BlogLike",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("blog", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="likes", to="analytics.blog")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="blog_likes", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "unique_together": {("blog", "user")},
            },
        ),
    ]
