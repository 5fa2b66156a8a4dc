from .base import *


SECRET_KEY = "test"  # nosec

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "planner-api-tests",
    }
}

STATIC_ROOT = base_dir_join("staticfiles")
STATIC_URL = "/static/"

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# Speed up password hashing
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

OCCURRENCE_CACHE_TIMEOUT = 60
COMPLETION_TOGGLE_LOCK_TIMEOUT = 5
