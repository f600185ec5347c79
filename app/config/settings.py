"""
Settings for the marketplace settlement service.

One module serves every environment. Values come from the process
environment through django-environ; ENV_FILE (default
``../.env.development``) is read first when it exists.
"""

import os
from datetime import timedelta
from pathlib import Path

import environ
from celery.schedules import crontab

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    CORS_ALLOWED_ORIGINS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development")
if Path(env_file).exists():
    environ.Env.read_env(env_file)

SECRET_KEY = env("SECRET_KEY", default="django-insecure-settlement-dev-key")
DEBUG = env("DEBUG")
ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# =============================================================================
# Apps & middleware
# =============================================================================

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    "corsheaders",
    "django_celery_beat",
    "drf_spectacular",
    "core",
    "authentication",
    "orders",
    "chat",
    "notifications",
    "payments",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# Only the admin renders templates.
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
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

# =============================================================================
# Storage
# =============================================================================

# Postgres in deployments; SQLite when DATABASE_URL is unset.
DATABASES = {"default": env.db("DATABASE_URL", default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}")}
if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"]["OPTIONS"] = {"connect_timeout": 10}

CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": env("REDIS_URL", default="redis://redis:6379/0"),
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
            "IGNORE_EXCEPTIONS": True,
        },
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

STATIC_URL = env("STATIC_URL", default="/static/")
STATIC_ROOT = BASE_DIR / "staticfiles"
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# =============================================================================
# Auth & API
# =============================================================================

AUTH_USER_MODEL = "authentication.User"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": f"django.contrib.auth.password_validation.{name}"}
    for name in (
        "UserAttributeSimilarityValidator",
        "MinimumLengthValidator",
        "CommonPasswordValidator",
        "NumericPasswordValidator",
    )
]

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {"anon": "60/hour", "user": "600/hour"},
}
if DEBUG:
    REST_FRAMEWORK["DEFAULT_RENDERER_CLASSES"].append("rest_framework.renderers.BrowsableAPIRenderer")

SPECTACULAR_SETTINGS = {
    "TITLE": "Marketplace Settlement API",
    "DESCRIPTION": "Escrow, payout, refund and dispute endpoints for editor orders",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SCHEMA_PATH_PREFIX": r"/api/v[0-9]+",
    "SECURITY": [{"Bearer": []}],
    "APPEND_COMPONENTS": {
        "securitySchemes": {"Bearer": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}}
    },
    "COMPONENT_SPLIT_REQUEST": True,
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

CORS_ALLOWED_ORIGINS = env("CORS_ALLOWED_ORIGINS")
CORS_ALLOW_CREDENTIALS = True

# =============================================================================
# Celery
# =============================================================================

CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_TASK_TIME_LIMIT = 10 * 60
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"

CELERY_BEAT_SCHEDULE = {
    "settlement-sweeps": {
        "task": "payments.workers.settlement_scheduler.run_settlement_sweeps",
        "schedule": crontab(minute=0),
    },
    "retry-pending-refunds": {
        "task": "payments.workers.refund_retry.retry_pending_refunds",
        "schedule": crontab(minute="*/15"),
    },
    "retry-stalled-payouts": {
        "task": "payments.workers.payout_retry.retry_stalled_payouts",
        "schedule": crontab(minute="*/15"),
    },
    "retry-failed-webhooks": {
        "task": "payments.tasks.retry_failed_webhooks",
        "schedule": crontab(minute="*/5"),
    },
}

# =============================================================================
# Payment gateway
# =============================================================================

STRIPE_SECRET_KEY = env("STRIPE_SECRET_KEY", default="")
STRIPE_API_TIMEOUT_SECONDS = env.int("STRIPE_API_TIMEOUT_SECONDS", default=10)
# SDK retries reuse the request's idempotency key.
STRIPE_MAX_RETRIES = env.int("STRIPE_MAX_RETRIES", default=2)

# HMAC key for client-reported payment signatures; Stripe webhook endpoint secret.
PAYMENT_GATEWAY_KEY_SECRET = env("PAYMENT_GATEWAY_KEY_SECRET", default="")
PAYMENT_WEBHOOK_SECRET = env("PAYMENT_WEBHOOK_SECRET", default="")

PAYMENT_CURRENCY = env("PAYMENT_CURRENCY", default="inr")

# =============================================================================
# Settlement rules
# =============================================================================

# Snapshotted on each order at creation.
PLATFORM_FEE_PERCENT = env.int("PLATFORM_FEE_PERCENT", default=10)
ORDER_MINIMUM_AMOUNT = env.int("ORDER_MINIMUM_AMOUNT", default=100)
ORDER_PAYMENT_WINDOW_HOURS = env.int("ORDER_PAYMENT_WINDOW_HOURS", default=24)
OVERDUE_GRACE_HOURS = env.int("OVERDUE_GRACE_HOURS", default=24)
MAX_DEADLINE_EXTENSIONS = env.int("MAX_DEADLINE_EXTENSIONS", default=3)
DELIVERY_TOKEN_TTL_DAYS = env.int("DELIVERY_TOKEN_TTL_DAYS", default=7)

# Percent of the order amount refunded, keyed by workflow stage.
REFUND_POLICY = {
    "before_accepted": env.int("REFUND_BEFORE_ACCEPTED_PERCENT", default=100),
    "accepted_no_work": env.int("REFUND_ACCEPTED_NO_WORK_PERCENT", default=100),
    "work_in_progress": env.int("REFUND_WORK_IN_PROGRESS_PERCENT", default=75),
    "submitted": env.int("REFUND_SUBMITTED_PERCENT", default=50),
    "after_delivery": 0,
}

REFUND_MAX_RETRIES = env.int("REFUND_MAX_RETRIES", default=3)
# Claimed refunds and released payouts with no gateway id after this are re-driven.
REFUND_STALL_MINUTES = env.int("REFUND_STALL_MINUTES", default=30)
PAYOUT_STALL_MINUTES = env.int("PAYOUT_STALL_MINUTES", default=30)

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = env("LOG_LEVEL")
# One file per process kind: web, celery-worker, celery-beat.
LOG_FILE_NAME = env("LOG_FILE_NAME", default="settlement.log")
LOG_DIR = BASE_DIR / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

_LOG_HANDLERS = ["console", "file"]

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "console": {
            "format": "{asctime} {levelname} {name}: {message}",
            "style": "{",
        },
        "file": {
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "console"},
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_DIR / LOG_FILE_NAME,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {"handlers": _LOG_HANDLERS, "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": _LOG_HANDLERS, "level": LOG_LEVEL, "propagate": False},
        "django.request": {"handlers": _LOG_HANDLERS, "level": "ERROR", "propagate": False},
        "celery": {"handlers": _LOG_HANDLERS, "level": LOG_LEVEL, "propagate": False},
        # Money movement is logged at INFO regardless of LOG_LEVEL.
        "payments": {"handlers": _LOG_HANDLERS, "level": "INFO", "propagate": False},
        "orders": {"handlers": _LOG_HANDLERS, "level": LOG_LEVEL, "propagate": False},
    },
}

# =============================================================================
# Production hardening
# =============================================================================

if not DEBUG:
    SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
