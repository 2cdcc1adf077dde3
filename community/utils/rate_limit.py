"""
Per-user action rate limiting for routes.

@rate_limited("admin_action") counts the request against the acting user
(remote address for anonymous callers) and answers 429 with Retry-After
when the limiter rejects it. Rate-limit headers are added to every response
of a gated route.
"""

from __future__ import annotations
from functools import wraps
from flask import jsonify, make_response, g
from flask_limiter.util import get_remote_address

from community.extensions import get_rate_limiter
from community.services.rate_limiter import RateLimitResult
from community.utils.auth import get_current_user_id


def client_identifier() -> str:
    """Prefer the authenticated user; fall back to the client IP."""
    user_id = get_current_user_id()
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address() or 'unknown'}"


def _apply_headers(response, result: RateLimitResult):
    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(int(result.reset_time.timestamp()))
    if result.blocked and result.blocked_until:
        response.headers["X-RateLimit-Blocked-Until"] = str(int(result.blocked_until.timestamp()))
    return response


def too_many_requests(result: RateLimitResult):
    """Build the 429 response for a rejected action."""
    retry_after = result.retry_after()
    if result.blocked and result.blocked_until:
        message = f"You are temporarily blocked until {result.blocked_until.isoformat()}"
    else:
        message = "Rate limit exceeded. Please try again later."

    response = make_response(jsonify({
        "success": False,
        "error": "Too many requests",
        "message": message,
        "retryAfter": retry_after,
        "resetTime": result.reset_time.isoformat(),
    }), 429)
    response.headers["Retry-After"] = str(retry_after)
    return _apply_headers(response, result)


def rate_limited(action: str):
    """
    Decorator gating a route behind the per-user action limiter.

    Usage:
        @admin_bp.route("/moderation/rules", methods=["POST"])
        @require_admin
        @rate_limited("admin_action")
        def create_rule():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            result = get_rate_limiter().check(client_identifier(), action)
            g.rate_limit = result

            if not result.allowed:
                return too_many_requests(result)

            response = make_response(f(*args, **kwargs))
            return _apply_headers(response, result)

        return decorated_function

    return decorator
