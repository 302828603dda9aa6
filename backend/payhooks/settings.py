"""
Django settings for the payhooks project.

Values are read from the environment; a ``backend/.env`` file is loaded first when present.
"""
import os
from datetime import timedelta
from pathlib import Path
from urllib.parse import unquote, urlparse

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name, default):
    value = os.environ.get(name)
    if value in (None, ""):
        return default
    return int(value)


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-payhooks-development-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [host.strip() for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "django_filters",
    "accounts",
    "billing",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "payhooks.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "payhooks.wsgi.application"
ASGI_APPLICATION = "payhooks.asgi.application"

# Webhook processing budget in seconds; also used as the database statement timeout.
BILLING_WEBHOOK_PROCESSING_TIMEOUT = _env_int("BILLING_WEBHOOK_PROCESSING_TIMEOUT", 10)


def _database_from_url(url):
    """Translate ``DATABASE_URL`` into a Django ``DATABASES['default']`` entry."""
    parsed = urlparse(url)
    if parsed.scheme in ("postgres", "postgresql"):
        return {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": parsed.path.lstrip("/"),
            "USER": unquote(parsed.username or ""),
            "PASSWORD": unquote(parsed.password or ""),
            "HOST": parsed.hostname or "",
            "PORT": str(parsed.port or ""),
            "CONN_MAX_AGE": 60,
            "OPTIONS": {
                "options": f"-c statement_timeout={BILLING_WEBHOOK_PROCESSING_TIMEOUT * 1000}",
            },
        }
    path = url.replace("sqlite:///", "", 1) if url.startswith("sqlite:///") else str(BASE_DIR / "db.sqlite3")
    return {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": path,
        "OPTIONS": {"timeout": BILLING_WEBHOOK_PROCESSING_TIMEOUT},
    }


DATABASES = {
    "default": _database_from_url(os.environ.get("DATABASE_URL", f"sqlite:///{BASE_DIR / 'db.sqlite3'}")),
}

AUTH_USER_MODEL = "accounts.User"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
    ],
}

# Email
EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
DEFAULT_FROM_EMAIL = os.environ.get("DEFAULT_FROM_EMAIL", "no-reply@payhooks.local")
SITE_NAME = os.environ.get("SITE_NAME", "Payhooks")
SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")

# Celery
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_EAGER_PROPAGATES = True

# Webhook ingestion
BILLING_WEBHOOK_ASYNC = _env_bool("BILLING_WEBHOOK_ASYNC", False)
BILLING_WEBHOOK_MAX_RETRIES = _env_int("BILLING_WEBHOOK_MAX_RETRIES", 5)
BILLING_WEBHOOK_RETRY_BASE_SECONDS = _env_int("BILLING_WEBHOOK_RETRY_BASE_SECONDS", 60)
BILLING_WEBHOOK_RETRY_MAX_SECONDS = _env_int("BILLING_WEBHOOK_RETRY_MAX_SECONDS", int(timedelta(hours=6).total_seconds()))
BILLING_WEBHOOK_LOG_RETENTION_DAYS = _env_int("BILLING_WEBHOOK_LOG_RETENTION_DAYS", 90)
BILLING_GRACE_HOURS_AFTER_CANCELLATION = _env_int("BILLING_GRACE_HOURS_AFTER_CANCELLATION", 0)
BILLING_REJECT_UNAUTHENTICATED_WEBHOOKS = _env_bool("BILLING_REJECT_UNAUTHENTICATED_WEBHOOKS", False)

# Provider-created accounts all receive this credential. Replace with a reset-token flow.
BILLING_DEFAULT_PASSWORD = os.environ.get("BILLING_DEFAULT_PASSWORD", "auto@123")

BILLING_FALLBACK_PLAN = {
    "plan_type": os.environ.get("BILLING_FALLBACK_PLAN_TYPE", "free_trial"),
    "duration_days": _env_int("BILLING_FALLBACK_PLAN_DAYS", 0),
}

# Seed rows ensured after ``migrate``: dicts with provider, product_id, offer_code, plan_type, duration_days.
BILLING_DEFAULT_PRODUCT_MAPPINGS = []

HOTMART_WEBHOOK_TOKEN = os.environ.get("HOTMART_WEBHOOK_TOKEN", "")
DOPPUS_WEBHOOK_SECRET = os.environ.get("DOPPUS_WEBHOOK_SECRET", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "billing": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "accounts": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "celery": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
