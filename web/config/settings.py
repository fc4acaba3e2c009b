"""Django settings for the storefront payments project.

Values are read from environment variables so the same module serves local
development, tests and containers. Secrets default to empty strings, which
the payments app treats as "not configured".
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-secret-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.orders",
    "apps.payments",
    "apps.monitoring",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": []},
    },
]

# ---- Database ----
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "app"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "app"),
            "HOST": os.getenv("POSTGRES_HOST", "storefront-db"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("POSTGRES_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

# ---- REST framework ----
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_THROTTLE_RATES": {
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "600/min"),
        "payments_verify": os.getenv("THROTTLE_PAYMENTS_VERIFY", "60/min"),
    },
}

# ---- Orders ----
# Dotted path to a callable(request) -> user id | None. None disables scoping.
ORDERS_VIEWER_RESOLVER = os.getenv("ORDERS_VIEWER_RESOLVER", "")
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "ORD-")
ORDER_NUMBER_START = int(os.getenv("ORDER_NUMBER_START", "1001"))
STOREFRONT_CURRENCY = os.getenv("STOREFRONT_CURRENCY", "ZAR")
STOREFRONT_CURRENCY_SYMBOL = os.getenv("STOREFRONT_CURRENCY_SYMBOL", "R")
STOREFRONT_NAME = os.getenv("STOREFRONT_NAME", "Apparel Cast")
STOREFRONT_APP_URL = os.getenv("STOREFRONT_APP_URL", "http://localhost:8000")

# ---- Payments gateway ----
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", True)
PAYMENTS_GATEWAY_BASE_URL = os.getenv("PAYMENTS_GATEWAY_BASE_URL", "http://sandbox-gateway:9002")
PAYMENTS_GATEWAY_SECRET_KEY = os.getenv("PAYMENTS_GATEWAY_SECRET_KEY", "")
PAYMENTS_WEBHOOK_SECRET = os.getenv("PAYMENTS_WEBHOOK_SECRET", "")
PAYMENTS_SIGNATURE_HEADER = os.getenv("PAYMENTS_SIGNATURE_HEADER", "X-Gateway-Signature")
PAYMENTS_SUCCESS_EVENT_TYPES = [
    t for t in os.getenv("PAYMENTS_SUCCESS_EVENT_TYPES", "payment.succeeded,charge.success").split(",") if t
]
PAYMENTS_CALLBACK_URL = os.getenv("PAYMENTS_CALLBACK_URL", f"{STOREFRONT_APP_URL}/checkout/success")
PAYMENTS_VERIFY_PAID_STATUS = os.getenv("PAYMENTS_VERIFY_PAID_STATUS", "confirmed")
PAYMENTS_WEBHOOK_PAID_STATUS = os.getenv("PAYMENTS_WEBHOOK_PAID_STATUS", "processing")

PAYMENTS_HTTP_TIMEOUT_SECS = float(os.getenv("PAYMENTS_HTTP_TIMEOUT_SECS", "10"))
PAYMENTS_HTTP_RETRY_MAX = int(os.getenv("PAYMENTS_HTTP_RETRY_MAX", "3"))
PAYMENTS_HTTP_RETRY_BACKOFF_BASE = float(os.getenv("PAYMENTS_HTTP_RETRY_BACKOFF_BASE", "0.15"))
PAYMENTS_HTTP_RETRY_MAX_SLEEP = float(os.getenv("PAYMENTS_HTTP_RETRY_MAX_SLEEP", "0.5"))
PAYMENTS_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("PAYMENTS_CIRCUIT_FAIL_THRESHOLD", "5"))
PAYMENTS_CIRCUIT_RESET_TIMEOUT = float(os.getenv("PAYMENTS_CIRCUIT_RESET_TIMEOUT", "30"))

# ---- Email ----
PAYMENTS_EMAIL_BACKEND = os.getenv("PAYMENTS_EMAIL_BACKEND", "django")  # django | resend
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "25"))
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", False)
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "Apparel Cast <orders@apparelcast.shop>")

# ---- Gateway middleware ----
API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "loggers": {
        "payments": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "orders": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "django.request": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}
