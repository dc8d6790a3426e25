"""
PATH: backend/settings/base.py

BASE SETTINGS (shared by dev + prod)

Operational maturity:
- Throttling (webhook + admin sync scopes)
- Stripe + Xero integration config (env driven)
- Xero sync scheduling knobs (batch size, retry backoff, lease)
- Sentry (optional): error visibility in production
- Structured stdlib logging
"""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import environ
from corsheaders.defaults import default_headers, default_methods

# -----------------------------------------
# BASE DIRECTORY
# -----------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# -----------------------------------------
# TEST MODE DETECTION
# -----------------------------------------
TESTING = "test" in sys.argv or "pytest" in sys.modules

# -----------------------------------------
# ENV (django-environ)
# -----------------------------------------
env = environ.Env(
    DEBUG=(bool, True),
    SECRET_KEY=(str, ""),
    TIME_ZONE=(str, "UTC"),
    LOG_LEVEL=(str, "INFO"),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1"]),
    CORS_ALLOWED_ORIGINS=(list, ["http://localhost:3000"]),
    CSRF_TRUSTED_ORIGINS=(list, ["http://localhost:3000"]),
    DATABASE_URL=(str, f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
    # Stripe
    STRIPE_SECRET_KEY=(str, ""),
    STRIPE_WEBHOOK_SECRET=(str, ""),
    STRIPE_API_VERSION=(str, ""),
    STRIPE_CURRENCY=(str, "usd"),
    # Xero
    XERO_CLIENT_ID=(str, ""),
    XERO_CLIENT_SECRET=(str, ""),
    XERO_API_BASE_URL=(str, "https://api.xero.com/api.xro/2.0"),
    XERO_TOKEN_URL=(str, "https://identity.xero.com/connect/token"),
    XERO_CURRENCY_CODE=(str, "USD"),
    XERO_REQUEST_TIMEOUT=(int, 20),
    XERO_DEFAULT_TENANT_ID=(str, ""),
    XERO_INVOICE_DUE_DAYS=(int, 30),
    XERO_DEFAULT_BANK_ACCOUNT_CODE=(str, "090"),
    XERO_FALLBACK_REFUND_ACCOUNT_CODE=(str, "200"),
    # Xero sync scheduling
    XERO_SYNC_BATCH_SIZE=(int, 50),
    XERO_SYNC_RETRY_BASE_MINUTES=(int, 5),
    XERO_SYNC_RETRY_MAX_MINUTES=(int, 360),
    XERO_SYNC_MAX_ATTEMPTS=(int, 8),
    XERO_SYNC_LEASE_MINUTES=(int, 15),
    # Registrations
    REGISTRATION_RESERVATION_MINUTES=(int, 15),
    # Throttling
    THROTTLE_ANON_RATE=(str, "60/min"),
    THROTTLE_USER_RATE=(str, "600/min"),
    THROTTLE_WEBHOOK_RATE=(str, "600/min"),
    THROTTLE_ADMIN_SYNC_RATE=(str, "30/min"),
    # Sentry (optional; enable by setting SENTRY_DSN)
    SENTRY_DSN=(str, ""),
    SENTRY_ENVIRONMENT=(str, "development"),
    SENTRY_TRACES_SAMPLE_RATE=(float, 0.0),
    SENTRY_SEND_PII=(bool, False),
)

# -----------------------------------------
# LOAD .env
# -----------------------------------------
env_file_1 = BASE_DIR / ".env"
env_file_2 = BASE_DIR.parent / ".env"

if env_file_1.exists():
    env.read_env(str(env_file_1))
elif env_file_2.exists():
    env.read_env(str(env_file_2))

# -----------------------------------------
# CORE SECURITY
# -----------------------------------------
SECRET_KEY = (env("SECRET_KEY") or "dev-insecure-change-me").strip()
DEBUG = env.bool("DEBUG")
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS")
ADMIN_PATH = (env("ADMIN_PATH", default="admin/") or "admin/").strip()

# -----------------------------------------
# I18N / TZ
# -----------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = (env("TIME_ZONE") or "UTC").strip()
USE_I18N = True
USE_TZ = True

# -----------------------------------------
# AUTH USER MODEL (custom)
# -----------------------------------------
AUTH_USER_MODEL = "users.User"

# -----------------------------------------
# INSTALLED APPS
# -----------------------------------------
INSTALLED_APPS = [
    "corsheaders",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "drf_spectacular",
    "django_filters",
    "users.apps.UsersConfig",
    "registrations.apps.RegistrationsConfig",
    "discounts.apps.DiscountsConfig",
    "payments.apps.PaymentsConfig",
    "accounting.apps.AccountingConfig",
]

# -----------------------------------------
# MIDDLEWARE
# -----------------------------------------
MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "backend.urls"
WSGI_APPLICATION = "backend.wsgi.application"
APPEND_SLASH = True

# -----------------------------------------
# TEMPLATES (required for Django admin)
# -----------------------------------------
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [str(BASE_DIR / "templates")],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

# -----------------------------------------
# REST FRAMEWORK
# -----------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
    "DEFAULT_FILTER_BACKENDS": ("django_filters.rest_framework.DjangoFilterBackend",),
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_THROTTLE_CLASSES": (
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ),
    "DEFAULT_THROTTLE_RATES": {
        "anon": env("THROTTLE_ANON_RATE"),
        "user": env("THROTTLE_USER_RATE"),
        "webhook": env("THROTTLE_WEBHOOK_RATE"),
        "admin_sync": env("THROTTLE_ADMIN_SYNC_RATE"),
    },
}

# -----------------------------------------
# SIMPLE JWT
# -----------------------------------------
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=1),
    "ROTATE_REFRESH_TOKENS": True,
}

# -----------------------------------------
# DATABASE
# -----------------------------------------
DATABASES = {
    "default": env.db("DATABASE_URL"),
}

# -----------------------------------------
# PAYMENTS (Stripe)
# -----------------------------------------
PAYMENTS = {
    "STRIPE": {
        "SECRET_KEY": (env("STRIPE_SECRET_KEY") or "").strip(),
        "WEBHOOK_SECRET": (env("STRIPE_WEBHOOK_SECRET") or "").strip(),
        "API_VERSION": (env("STRIPE_API_VERSION") or "").strip(),
        "CURRENCY": (env("STRIPE_CURRENCY") or "usd").strip().lower(),
    }
}

REGISTRATION_RESERVATION_MINUTES = env.int("REGISTRATION_RESERVATION_MINUTES")

# -----------------------------------------
# ACCOUNTING (Xero)
# -----------------------------------------
XERO = {
    "CLIENT_ID": (env("XERO_CLIENT_ID") or "").strip(),
    "CLIENT_SECRET": (env("XERO_CLIENT_SECRET") or "").strip(),
    "API_BASE_URL": (env("XERO_API_BASE_URL") or "").strip().rstrip("/"),
    "TOKEN_URL": (env("XERO_TOKEN_URL") or "").strip(),
    "CURRENCY_CODE": (env("XERO_CURRENCY_CODE") or "USD").strip().upper(),
    "REQUEST_TIMEOUT": env.int("XERO_REQUEST_TIMEOUT"),
    "DEFAULT_TENANT_ID": (env("XERO_DEFAULT_TENANT_ID") or "").strip(),
    "INVOICE_DUE_DAYS": env.int("XERO_INVOICE_DUE_DAYS"),
    "DEFAULT_BANK_ACCOUNT_CODE": (env("XERO_DEFAULT_BANK_ACCOUNT_CODE") or "090").strip(),
    "FALLBACK_REFUND_ACCOUNT_CODE": (env("XERO_FALLBACK_REFUND_ACCOUNT_CODE") or "200").strip(),
}

XERO_SYNC = {
    "BATCH_SIZE": env.int("XERO_SYNC_BATCH_SIZE"),
    "RETRY_BASE_MINUTES": env.int("XERO_SYNC_RETRY_BASE_MINUTES"),
    "RETRY_MAX_MINUTES": env.int("XERO_SYNC_RETRY_MAX_MINUTES"),
    "MAX_ATTEMPTS": env.int("XERO_SYNC_MAX_ATTEMPTS"),
    "LEASE_MINUTES": env.int("XERO_SYNC_LEASE_MINUTES"),
}

# -----------------------------------------
# LOGGING
# -----------------------------------------
LOG_LEVEL = (env("LOG_LEVEL") or "INFO").strip().upper()

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
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "accounting": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "payments": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "discounts": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "registrations": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# -----------------------------------------
# SENTRY (optional)
# -----------------------------------------
SENTRY_DSN = (env("SENTRY_DSN") or "").strip()
SENTRY_ENVIRONMENT = (env("SENTRY_ENVIRONMENT") or "development").strip()
SENTRY_TRACES_SAMPLE_RATE = float(env("SENTRY_TRACES_SAMPLE_RATE"))
SENTRY_SEND_PII = env.bool("SENTRY_SEND_PII")

if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        integrations=[DjangoIntegration()],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=SENTRY_SEND_PII,
    )

# -----------------------------------------
# CORS / CSRF
# -----------------------------------------
CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS")
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_METHODS = list(default_methods)
CORS_ALLOW_HEADERS = list(default_headers)

CSRF_TRUSTED_ORIGINS = env.list("CSRF_TRUSTED_ORIGINS")

# -----------------------------------------
# STATIC FILES
# -----------------------------------------
STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------
# SWAGGER
# -----------------------------------------
SPECTACULAR_SETTINGS = {
    "TITLE": "Membership Backend API",
    "DESCRIPTION": "Registrations, Stripe payments, refunds and Xero reconciliation API",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}
