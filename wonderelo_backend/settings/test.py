"""
Test settings for the Wonderelo backend.

Runs against SQLite and an in-process cache, executes Celery tasks
eagerly and uses fixed Stripe secrets so webhook payloads can be signed
inside the test-suite.
"""
from .base import *  # noqa

DEBUG = False
ALLOWED_HOSTS = ["*"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    "DEFAULT_THROTTLE_CLASSES": [],
}

STRIPE_SECRET_KEY = "sk_test_wonderelo"
STRIPE_WEBHOOK_SECRET = "whsec_test_wonderelo"
APP_URL = "https://app.test"

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"
