"""
Django settings for Passline.

Secrets come from Doppler - never hardcode credentials.
Run with: doppler run -- uv run python apps/web/manage.py runserver
"""

from pathlib import Path

import environ  # type: ignore[import-untyped]

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Initialize environ
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    ENVIRONMENT=(str, "development"),
    LOG_LEVEL=(str, "INFO"),
    SQUARE_SANDBOX=(bool, False),
    CLOVER_SANDBOX=(bool, False),
    POLL_MINUTES_BACK=(int, 10),
    SQUARE_LOCATION_IDS=(list, []),
    WEBHOOK_JOB_MAX_ATTEMPTS=(int, 8),
)

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env("SECRET_KEY")

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env("DEBUG")

ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# production | staging | development
ENVIRONMENT = env("ENVIRONMENT")
IS_PRODUCTION = ENVIRONMENT == "production"

# Application definition
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Local apps
    "apps.web.core",
    "apps.web.restaurant",
    "apps.web.pos",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    # Custom middleware
    "apps.web.core.middleware.ClientIPMiddleware",
]

ROOT_URLCONF = "apps.web.config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "apps.web.config.wsgi.application"

# Database
# https://docs.djangoproject.com/en/5.1/ref/settings/#databases
# Connection string from Doppler: DATABASE_URL
DATABASES = {
    "default": env.db("DATABASE_URL"),
}

# Rate limit counters; point at Redis/Memcached to share across workers
CACHES = {
    "default": env.cache("CACHE_URL", default="locmemcache://"),
}

# Password validation
_V = "django.contrib.auth.password_validation"
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": f"{_V}.UserAttributeSimilarityValidator"},
    {"NAME": f"{_V}.MinimumLengthValidator"},
    {"NAME": f"{_V}.CommonPasswordValidator"},
    {"NAME": f"{_V}.NumericPasswordValidator"},
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR.parent.parent / "staticfiles"  # /app/staticfiles in production

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Logging
LOG_LEVEL = env("LOG_LEVEL")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "apps": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

# =============================================================================
# POS providers
# =============================================================================

# Square
SQUARE_WEBHOOK_SIGNATURE_KEY = env("SQUARE_WEBHOOK_SIGNATURE_KEY", default="")
# Exact notification URL registered with Square (signature covers it)
SQUARE_WEBHOOK_URL = env("SQUARE_WEBHOOK_URL", default="")
SQUARE_ACCESS_TOKEN = env("SQUARE_ACCESS_TOKEN", default="")
SQUARE_SANDBOX = env("SQUARE_SANDBOX")

# Clover
CLOVER_WEBHOOK_SECRET = env("CLOVER_WEBHOOK_SECRET", default="")
CLOVER_HCO_WEBHOOK_SECRET = env("CLOVER_HCO_WEBHOOK_SECRET", default="")
CLOVER_ACCESS_TOKEN = env("CLOVER_ACCESS_TOKEN", default="")
CLOVER_SANDBOX = env("CLOVER_SANDBOX")

# Toast
TOAST_WEBHOOK_SECRET = env("TOAST_WEBHOOK_SECRET", default="")
TOAST_ACCESS_TOKEN = env("TOAST_ACCESS_TOKEN", default="")

# Mock (local development)
MOCK_WEBHOOK_SECRET = env("MOCK_WEBHOOK_SECRET", default="")

# =============================================================================
# Ingestion workers
# =============================================================================

CRON_SECRET = env("CRON_SECRET", default="")
OPS_API_SECRET = env("OPS_API_SECRET", default="")
POLL_MINUTES_BACK = env("POLL_MINUTES_BACK")
# Restrict cron reconciliation to these POS location IDs (empty = all active)
SQUARE_LOCATION_IDS = env("SQUARE_LOCATION_IDS")
WEBHOOK_JOB_MAX_ATTEMPTS = env("WEBHOOK_JOB_MAX_ATTEMPTS")

# =============================================================================
# Email
# =============================================================================

RESEND_API_KEY = env("RESEND_API_KEY", default="")
ORDER_EMAIL_FROM = env("ORDER_EMAIL_FROM", default="Passline <orders@passline.app>")
