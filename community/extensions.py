"""
Defines application-wide extensions. Keeps creation/import separate from
initialization to avoid circular imports.

- limiter: Flask-Limiter, per-IP limits on public endpoints
- csrf: Flask-WTF CSRF protection, enforced for cookie-session callers
- init_moderation(): builds the moderation store and the per-user action
  rate limiter from config and attaches them to app.extensions
"""

from __future__ import annotations
from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect

from community.services.moderation_store import InMemoryModerationStore, SupabaseModerationStore
from community.services.rate_limit_store import InMemoryRateLimitStore, SupabaseRateLimitStore
from community.services.rate_limiter import RateLimiter, RateLimitConfig, DEFAULT_RATE_LIMITS

# Created here; initialized with app in create_app()
limiter = Limiter(key_func=get_remote_address)
csrf = CSRFProtect()

MODERATION_STORE_KEY = "community.moderation_store"
RATE_LIMITER_KEY = "community.rate_limiter"


def _build_store(backend: str, memory_cls, supabase_cls):
    if backend == "memory":
        return memory_cls()
    if backend == "supabase":
        return supabase_cls()
    raise RuntimeError(f"Unknown storage backend: {backend!r} (expected 'memory' or 'supabase')")


def init_moderation(app) -> None:
    """Create the moderation store and rate limiter for this app."""
    moderation_store = _build_store(
        app.config.get("MODERATION_BACKEND", "memory"),
        InMemoryModerationStore,
        SupabaseModerationStore,
    )

    configs = dict(DEFAULT_RATE_LIMITS)
    configs["admin_action"] = RateLimitConfig.parse(app.config.get("ADMIN_ACTION_RATE_LIMIT", "30 per minute"))

    rate_limiter = RateLimiter(
        store=_build_store(
            app.config.get("RATE_LIMIT_BACKEND", "memory"),
            InMemoryRateLimitStore,
            SupabaseRateLimitStore,
        ),
        configs=configs,
        strategy=app.config.get("RATE_LIMIT_STRATEGY", "fixed"),
        fail_open=app.config.get("RATE_LIMIT_FAIL_OPEN", True),
    )

    app.extensions[MODERATION_STORE_KEY] = moderation_store
    app.extensions[RATE_LIMITER_KEY] = rate_limiter
    app.logger.info(
        f"Moderation backend: {app.config.get('MODERATION_BACKEND', 'memory')}, "
        f"rate limit backend: {app.config.get('RATE_LIMIT_BACKEND', 'memory')} "
        f"({rate_limiter.strategy} window, fail {'open' if rate_limiter.fail_open else 'closed'})"
    )


def get_moderation_store():
    return current_app.extensions[MODERATION_STORE_KEY]


def get_rate_limiter() -> RateLimiter:
    return current_app.extensions[RATE_LIMITER_KEY]
