"""
Supabase access for the community service.

Supabase is both the session provider (Auth) and the database holding
profiles, moderation rules, the review queue and rate-limit counters.

- anon client: verifies access tokens (Authorization header or Flask session)
- service-role client: reads profiles and backs the Supabase stores
"""

from __future__ import annotations
from typing import Optional, Dict, Any
from flask import current_app, has_app_context
from supabase import create_client, Client

from community.services.moderation import USER_ROLES


def _log_error(message: str) -> None:
    """Report through the app logger; a no-op outside an app context (CLI, unit tests)."""
    if has_app_context():
        current_app.logger.error(message)


_anon_client: Optional[Client] = None
_service_client: Optional[Client] = None


def _connect(app, url: str, key: str, label: str) -> Optional[Client]:
    if not key:
        return None
    try:
        client = create_client(url, key)
    except Exception as e:
        app.logger.error(f"Could not create Supabase {label} client: {e}")
        return None
    app.logger.info(f"Supabase {label} client ready")
    return client


def init_supabase(app) -> None:
    """
    Create the anon and service-role clients from app config.

    Missing settings leave the matching client unset: sessions then never
    verify, and the Supabase stores raise a store error on every call.
    """
    global _anon_client, _service_client

    url = app.config.get("SUPABASE_URL", "")
    if not url:
        app.logger.warning("SUPABASE_URL not set; authentication and Supabase storage are disabled.")
        _anon_client = _service_client = None
        return

    _anon_client = _connect(app, url, app.config.get("SUPABASE_ANON_KEY", ""), "anon")
    _service_client = _connect(app, url, app.config.get("SUPABASE_SERVICE_ROLE_KEY", ""), "service-role")
    if _service_client is None:
        app.logger.warning("No service-role client; moderation and rate-limit tables are unreachable.")


def get_admin_client() -> Optional[Client]:
    """Service-role client used by the Supabase stores (None when not configured)."""
    return _service_client


# ============================================================================
# Users
# ============================================================================

def verify_session(access_token: str, refresh_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Resolve the signed-in user from the session tokens.

    Returns:
        The Supabase user as a dict, or None for a bad/expired token
    """
    if _anon_client is None:
        return None

    try:
        auth_response = _anon_client.auth.set_session(access_token, refresh_token or "")
    except Exception as e:
        _log_error(f"Session verification failed: {e}")
        return None

    user = getattr(auth_response, "user", None)
    return user.model_dump() if user else None


def get_user_for_token(access_token: str) -> Optional[Dict[str, Any]]:
    """
    Resolve the user behind an `Authorization: Bearer <jwt>` header.

    Returns:
        The Supabase user as a dict, or None for a bad/expired token
    """
    if _anon_client is None or not access_token:
        return None

    try:
        auth_response = _anon_client.auth.get_user(access_token)
    except Exception as e:
        _log_error(f"Access token verification failed: {e}")
        return None

    user = getattr(auth_response, "user", None)
    return user.model_dump() if user else None


def get_user_profile(user_id: str) -> Optional[Dict[str, Any]]:
    """Profile row for `user_id`, or None if missing / Supabase unavailable."""
    if _service_client is None or not user_id:
        return None

    try:
        response = _service_client.table("profiles").select("*").eq("id", user_id).limit(1).execute()
    except Exception as e:
        _log_error(f"Profile lookup failed for {user_id}: {e}")
        return None
    return response.data[0] if response.data else None


def get_user_role(user_id: str) -> str:
    """
    Resolve a user's community role: member, moderator or admin.

    Older profiles only carry the is_admin flag; unknown values fall back to
    member.
    """
    profile = get_user_profile(user_id)
    if not profile:
        return "member"

    role = (profile.get("role") or "").strip().lower()
    if role in USER_ROLES:
        return role
    return "admin" if profile.get("is_admin") else "member"
