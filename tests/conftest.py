# tests/conftest.py
"""
Test configuration and shared fixtures.

Provides the Flask app, test client, CLI runner, role-based login helper and
sample moderation data for pytest.
"""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add the project root to sys.path
PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture
def app():
    """Create and configure a Flask app instance for testing."""
    # Set test environment variables before importing app
    os.environ["APP_CONFIG"] = "community.config.TestConfig"
    os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
    os.environ["SUPABASE_URL"] = ""
    os.environ["SUPABASE_ANON_KEY"] = ""

    from community import create_app

    app = create_app()
    app.config.update({
        "TESTING": True,
        "WTF_CSRF_ENABLED": False,  # Disable CSRF for tests
        "SECRET_KEY": "test-secret-key-for-testing-only",
    })

    yield app


@pytest.fixture
def client(app):
    """Create a test client for the Flask app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask app."""
    return app.test_cli_runner()


@pytest.fixture
def login_as(monkeypatch):
    """
    Pretend a user with the given role is signed in.

    Usage:
        login_as("admin")
        login_as("member", user_id="user-2")
    """
    def _login(role="admin", user_id="test-user-id"):
        monkeypatch.setattr(
            "community.utils.auth.get_current_user",
            lambda: {"id": user_id, "email": f"{user_id}@example.com"},
        )
        monkeypatch.setattr("community.utils.auth.get_current_user_role", lambda: role)
        # api.py binds the role helper at import time
        monkeypatch.setattr("community.routes.api.get_current_user_role", lambda: role)
        return user_id

    return _login


@pytest.fixture
def moderation_store(app):
    """The in-memory moderation store wired into the test app."""
    from community.extensions import MODERATION_STORE_KEY
    return app.extensions[MODERATION_STORE_KEY]


@pytest.fixture
def rate_limiter(app):
    """The per-user action rate limiter wired into the test app."""
    from community.extensions import RATE_LIMITER_KEY
    return app.extensions[RATE_LIMITER_KEY]


@pytest.fixture
def now():
    """A fixed, minute-aligned evaluation time."""
    return datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_rule_payload():
    """Rule body accepted by POST /admin/moderation/rules."""
    return {
        "name": "Crypto scams",
        "description": "Crypto doubling schemes",
        "keywords": ["bitcoin doubler", "crypto giveaway"],
        "content_types": ["listing", "message"],
        "severity": "high",
        "action": "block",
        "whole_word_only": True,
        "exempt_roles": ["moderator"],
    }
