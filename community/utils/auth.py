"""
Who is calling: the signed-in user and their community role.

Supabase Auth owns authentication. A caller proves who they are either with
`Authorization: Bearer <access token>` (API clients) or with the Supabase
tokens kept in the Flask session (browser front end). When the header is
present the session is ignored. Both lookups are cached on flask.g for the
rest of the request.

Decorators (JSON APIs, so failures are JSON rather than redirects):
- @require_auth: 401 unless signed in
- @require_role(*roles), @require_admin, @require_moderator: 401 / 403
"""

from __future__ import annotations
from functools import wraps
from typing import Optional, Dict, Any
from flask import request, session, jsonify, g
from community.services import supabase_client


ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"


def bearer_token() -> Optional[str]:
    """The token of an `Authorization: Bearer ...` header, if one was sent."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    return token if scheme.lower() == "bearer" and token else None


def _session_user() -> Optional[Dict[str, Any]]:
    access_token = session.get(ACCESS_TOKEN_KEY)
    if not access_token:
        return None
    user = supabase_client.verify_session(access_token, session.get(REFRESH_TOKEN_KEY))
    if user is None:
        # Expired or revoked; drop the stale tokens
        clear_session()
    return user


def get_current_user() -> Optional[Dict[str, Any]]:
    """The Supabase user for this request, or None when anonymous."""
    if "user" in g:
        return g.user

    token = bearer_token()
    g.user = supabase_client.get_user_for_token(token) if token else _session_user()
    return g.user


def get_current_user_id() -> Optional[str]:
    user = get_current_user()
    return user.get("id") if user else None


def get_current_user_role() -> Optional[str]:
    """member, moderator or admin; None when anonymous."""
    if "user_role" not in g:
        user_id = get_current_user_id()
        g.user_role = supabase_client.get_user_role(user_id) if user_id else None
    return g.user_role


def clear_session() -> None:
    for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, "user"):
        session.pop(key, None)


def _unauthenticated():
    return jsonify({"success": False, "error": "Authentication required"}), 401


def require_auth(f):
    """
    Reject anonymous callers with 401.

    Usage:
        @api_bp.route("/moderation/check", methods=["POST"])
        @require_auth
        def check_content():
            ...
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        if get_current_user() is None:
            return _unauthenticated()
        return f(*args, **kwargs)

    return wrapper


def require_role(*roles: str):
    """401 when not signed in, 403 when the caller's role is not in `roles`."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if get_current_user() is None:
                return _unauthenticated()
            if get_current_user_role() not in roles:
                return jsonify({"success": False, "error": "Access denied"}), 403
            return f(*args, **kwargs)

        return wrapper

    return decorator


require_admin = require_role("admin")
require_moderator = require_role("admin", "moderator")
