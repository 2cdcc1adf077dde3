"""
Centralized configuration for all environments.

Select a config by setting:
  APP_CONFIG=community.config.DevConfig      # local dev
  APP_CONFIG=community.config.ProdConfig     # production (default if unset)
  APP_CONFIG=community.config.TestConfig     # pytest

Notes:
- SECRET_KEY is read from FLASK_SECRET_KEY
- Per-IP limits use Flask-Limiter v3 keys (RATELIMIT_*); per-user action
  limits (RATE_LIMIT_*) use the same "N per period" notation.
- Storage backends: "memory" (single process) or "supabase".
"""

from __future__ import annotations
import os
from datetime import timedelta


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class BaseConfig:
    # Secrets & basics
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "")
    DEBUG = False
    TESTING = False

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=30)
    SESSION_COOKIE_SECURE = True  # Only send cookies over HTTPS (overridden in dev)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # CSRF: enforced in create_app() for cookie sessions only; Bearer callers skip it
    WTF_CSRF_CHECK_DEFAULT = False

    # Supabase (Auth + moderation tables)
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    # Flask-Limiter v3 (per IP)
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", "true")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "60 per minute; 2000 per day")
    RATELIMIT_HEADERS_ENABLED = True
    MODERATION_CHECK_RATE_LIMIT = os.getenv("MODERATION_CHECK_RATE_LIMIT", "30 per minute; 500 per day")

    # Moderation
    MODERATION_BACKEND = os.getenv("MODERATION_BACKEND", "supabase")
    # Allow content when the rule store is down (False = block it)
    MODERATION_FAIL_OPEN = _env_bool("MODERATION_FAIL_OPEN", "true")

    # Per-user action rate limiting
    RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "supabase")
    RATE_LIMIT_STRATEGY = os.getenv("RATE_LIMIT_STRATEGY", "fixed")  # fixed | sliding
    # Allow requests when the counter store is down (False = reject with 429)
    RATE_LIMIT_FAIL_OPEN = _env_bool("RATE_LIMIT_FAIL_OPEN", "true")
    ADMIN_ACTION_RATE_LIMIT = os.getenv("ADMIN_ACTION_RATE_LIMIT", "30 per minute")

    # Misc
    PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # JSON bodies only


class ProdConfig(BaseConfig):
    """Production settings (selected by default if APP_CONFIG is unset)."""
    pass


class DevConfig(BaseConfig):
    """Developer-friendly settings."""
    ENV = "development"
    DEBUG = True
    PREFERRED_URL_SCHEME = "http"
    # Allow cookies over HTTP in dev
    SESSION_COOKIE_SECURE = False
    MODERATION_BACKEND = os.getenv("MODERATION_BACKEND", "memory")
    RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory")
    # Relaxed limits for local testing
    ADMIN_ACTION_RATE_LIMIT = os.getenv("ADMIN_ACTION_RATE_LIMIT", "300 per minute")


class TestConfig(BaseConfig):
    """CI/pytest settings."""
    TESTING = True
    DEBUG = True
    # The test client talks plain HTTP
    SESSION_COOKIE_SECURE = False
    # Per-IP limiter off in tests to avoid flakiness; the action limiter stays on
    RATELIMIT_ENABLED = False
    MODERATION_BACKEND = "memory"
    RATE_LIMIT_BACKEND = "memory"
    RATE_LIMIT_STRATEGY = "fixed"
    RATE_LIMIT_FAIL_OPEN = True
    ADMIN_ACTION_RATE_LIMIT = "30 per minute"
