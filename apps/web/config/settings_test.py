"""
Test settings - SQLite, local-memory cache and fixed secrets.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")

from .settings import *  # noqa: E402, F403

DEBUG = False
ENVIRONMENT = "test"
IS_PRODUCTION = False

CACHES = {
    "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# Webhook secrets used by the signature tests
SQUARE_WEBHOOK_SIGNATURE_KEY = "square-test-key"
SQUARE_WEBHOOK_URL = "https://passline.test/webhooks/square/"
SQUARE_ACCESS_TOKEN = "square-test-token"
CLOVER_WEBHOOK_SECRET = "clover-test-secret"
CLOVER_HCO_WEBHOOK_SECRET = "clover-hco-test-secret"
TOAST_WEBHOOK_SECRET = "toast-test-secret"
MOCK_WEBHOOK_SECRET = ""

CRON_SECRET = "cron-test-secret"
OPS_API_SECRET = "ops-test-secret"
SQUARE_LOCATION_IDS: list[str] = []

RESEND_API_KEY = ""
