import random
from datetime import timedelta
from django.utils import timezone
from django.utils.text import slugify
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from analytics.dedup import ViewerIdentity
from analytics.enrichment import parse_user_agent
from analytics.models import Blog, BlogLike, BlogView, Comment, Country, Subscriber
from faker import Faker

REFERRERS = [
    "https://www.google.com/search?q=django",
    "https://news.ycombinator.com/",
    "https://twitter.com/home",
    "https://www.reddit.com/r/python/",
    None,
]


class Command(BaseCommand):
    help = "Seeds the database with blogs, views, comments, likes and subscribers"

    def add_arguments(self, parser):
        parser.add_argument("--users", type=int, default=20, help="Number of users to create")
        parser.add_argument("--blogs", type=int, default=50, help="Number of blogs to create")
        parser.add_argument("--views", type=int, default=10000, help="Number of views to create")
        parser.add_argument("--days", type=int, default=365, help="Spread events over this many days")

    def handle(self, *args, **options):
        fake = Faker()
        now = timezone.now()
        days = max(options["days"], 1)

        def when():
            return now - timedelta(seconds=random.randint(0, days * 24 * 60 * 60))

        self.stdout.write("🌱 Starting seed...")

        self.stdout.write("Creating Countries...")
        country_codes = ["US", "ET", "DE", "IN", "GB", "FR", "CA", "BR"]
        countries_objs = []
        for code in country_codes:
            c, _ = Country.objects.get_or_create(
                code=code, defaults={"name": f"Country {code}"}
            )
            countries_objs.append(c)

        self.stdout.write("Creating Users...")
        users = [
            User(username=fake.unique.user_name(), email=fake.email(), date_joined=when())
            for _ in range(options["users"])
        ]
        User.objects.bulk_create(users, ignore_conflicts=True)
        users = list(User.objects.all())

        self.stdout.write("Creating Blogs...")
        blogs = []
        for _ in range(options["blogs"]):
            title = fake.catch_phrase()
            blogs.append(
                Blog(
                    title=title,
                    slug=slugify(title),
                    author=random.choice(users),
                    content=fake.paragraph(),
                    created_at=when(),
                )
            )
        Blog.objects.bulk_create(blogs)
        blogs = list(Blog.objects.all())

        self.stdout.write(f"Creating {options['views']:,} Views...")
        views = []
        for _ in range(options["views"]):
            user_agent = fake.user_agent()
            client = parse_user_agent(user_agent)
            identity = ViewerIdentity(session_id=fake.uuid4(), ip_address=fake.ipv4())
            views.append(
                BlogView(
                    blog=random.choice(blogs),
                    timestamp=when(),
                    actor_key=identity.actor_key,
                    session_id=identity.session_id,
                    ip_address=identity.ip_address,
                    user_agent=user_agent,
                    referrer=random.choice(REFERRERS),
                    country=random.choice(countries_objs),
                    device_type=client.device_type,
                    browser=client.browser,
                    os=client.os,
                )
            )
        BlogView.objects.bulk_create(views, batch_size=2000)

        self.stdout.write("Creating Comments and Likes...")
        comments = [
            Comment(
                blog=random.choice(blogs),
                author=random.choice(users),
                content=fake.sentence(),
                created_at=when(),
            )
            for _ in range(options["blogs"] * 3)
        ]
        Comment.objects.bulk_create(comments)

        likes = [
            BlogLike(blog=blog, user=user, created_at=when())
            for blog in blogs
            for user in random.sample(users, k=min(len(users), random.randint(0, 5)))
        ]
        BlogLike.objects.bulk_create(likes, ignore_conflicts=True)

        self.stdout.write("Creating Subscribers...")
        subscribers = [
            Subscriber(email=fake.unique.email(), subscribed_at=when())
            for _ in range(options["users"] * 2)
        ]
        Subscriber.objects.bulk_create(subscribers, ignore_conflicts=True)

        self.stdout.write(self.style.SUCCESS("Done!"))
