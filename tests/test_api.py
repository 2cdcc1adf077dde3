"""
Tests for the public JSON API (health and content checks).
"""

from unittest.mock import patch

import pytest

from community.utils.errors import ModerationStoreError


@pytest.fixture
def block_rule(moderation_store):
    return moderation_store.create_rule({
        "name": "Get-rich schemes",
        "keywords": ["free money"],
        "content_types": ["listing", "message"],
        "severity": "high",
        "action": "block",
        "exempt_roles": ["admin"],
    })


def test_health(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_check_requires_auth(client):
    response = client.post("/api/v1/moderation/check", json={"type": "listing", "text": "hello"})

    assert response.status_code == 401


def test_check_invalid_body(client, login_as):
    login_as("member")

    response = client.post("/api/v1/moderation/check", json={"type": "listing"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Text is required."


def test_clean_content_is_allowed(client, login_as, block_rule, moderation_store):
    login_as("member")

    response = client.post("/api/v1/moderation/check", json={"type": "listing", "text": "Selling a bike"})

    assert response.status_code == 200
    result = response.get_json()["result"]
    assert result["allowed"] is True
    assert result["action"] == "allow"
    assert moderation_store.list_flagged() == []


def test_blocked_content_is_queued(client, login_as, block_rule, moderation_store):
    login_as("member", user_id="user-7")

    response = client.post(
        "/api/v1/moderation/check",
        json={"type": "listing", "text": "Free money for everyone", "id": "listing-1"},
    )

    result = response.get_json()["result"]
    assert result["allowed"] is False
    assert result["action"] == "block"
    assert result["severity"] == "high"
    assert result["rule_id"] == block_rule.id
    assert result["flagged_keywords"] == ["free money"]
    assert result["message"] == "Content flagged for: free money"

    flagged = moderation_store.list_flagged()
    assert len(flagged) == 1
    assert flagged[0]["content_id"] == "listing-1"
    assert flagged[0]["user_id"] == "user-7"
    assert flagged[0]["status"] == "pending"


def test_draft_id_generated_when_missing(client, login_as, block_rule, moderation_store):
    login_as("member")

    client.post("/api/v1/moderation/check", json={"type": "message", "text": "free money"})

    assert moderation_store.list_flagged()[0]["content_id"].startswith("draft-")


def test_exempt_role_is_allowed(client, login_as, block_rule):
    login_as("admin")

    response = client.post("/api/v1/moderation/check", json={"type": "listing", "text": "free money"})

    assert response.get_json()["result"]["allowed"] is True


def test_other_content_types_unaffected(client, login_as, block_rule):
    login_as("member")

    response = client.post("/api/v1/moderation/check", json={"type": "review", "text": "free money"})

    assert response.get_json()["result"]["action"] == "allow"


def test_store_outage_fails_open(client, login_as, moderation_store):
    login_as("member")

    with patch.object(moderation_store, "list_rules", side_effect=ModerationStoreError("timeout")):
        response = client.post("/api/v1/moderation/check", json={"type": "listing", "text": "anything"})

    result = response.get_json()["result"]
    assert result["allowed"] is True
    assert result["message"] == "Moderation check failed"


def test_store_outage_fails_closed_when_configured(app, client, login_as, moderation_store):
    app.config["MODERATION_FAIL_OPEN"] = False
    login_as("member")

    with patch.object(moderation_store, "list_rules", side_effect=ModerationStoreError("timeout")):
        response = client.post("/api/v1/moderation/check", json={"type": "listing", "text": "anything"})

    result = response.get_json()["result"]
    assert result["allowed"] is False
    assert result["action"] == "block"
