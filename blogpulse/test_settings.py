from .settings import *  # noqa: F403

# Use in-memory SQLite for tests by default
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

BLOGPULSE_API_OPEN = False
BLOGPULSE_VIEW_DEDUP_WINDOW_MINUTES = 30
BLOGPULSE_TOP_N = 10
