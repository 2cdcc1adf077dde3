"""
Admin JSON API for content moderation.

Provides:
- Moderation rule management (list, create, update, delete)
- The flagged content review queue (list, approve, reject)
- Per-user rate limit inspection and reset

Every mutating endpoint is an admin action and passes the per-user
"admin_action" rate limit; rejected calls get 429 with Retry-After.
"""

from __future__ import annotations
from flask import Blueprint, request, jsonify, current_app
from community.utils.auth import require_admin, require_moderator, get_current_user_id
from community.utils.errors import sanitize_error, ModerationStoreError, RateLimitStoreError
from community.utils.rate_limit import rate_limited
from community.utils.validation import (
    validate_rule_payload,
    validate_flagged_query,
    clean_notes,
)
from community.services import moderation
from community.extensions import get_moderation_store, get_rate_limiter

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _store_error(e: Exception, context: str):
    return jsonify({"success": False, "error": sanitize_error(e, "database", context)}), 503


def _audit(action: str, resource_type: str, resource_id: str, metadata=None) -> None:
    """Record an admin action that has already been applied; failures are logged only."""
    try:
        get_moderation_store().add_audit_log(
            user_id=get_current_user_id(),
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata=metadata,
        )
    except ModerationStoreError as e:
        current_app.logger.error(f"Error writing audit log for {resource_type} {resource_id}: {e}")


# ============================================================================
# Moderation rules
# ============================================================================

@admin_bp.route("/moderation/rules", methods=["GET"])
@require_moderator
def list_rules():
    """All rules, most severe first."""
    try:
        rules = get_moderation_store().list_rules()
    except ModerationStoreError as e:
        return _store_error(e, "Failed to list moderation rules")

    return jsonify({"success": True, "rules": [r.to_dict() for r in rules]}), 200


@admin_bp.route("/moderation/rules", methods=["POST"])
@require_admin
@rate_limited("admin_action")
def create_rule():
    """
    Create a moderation rule.

    Request body (JSON):
        {
            "name": "Crypto scams",
            "keywords": ["bitcoin doubler"],
            "content_types": ["listing", "message"],
            "severity": "high",
            "action": "block",
            "whole_word_only": true,
            "regex": null,
            "exempt_roles": ["moderator"]
        }

    Returns:
        201: {"success": true, "rule": {...}}
        400: Validation error
    """
    payload, error = validate_rule_payload(request.get_json(silent=True))
    if error:
        return jsonify({"success": False, "error": error}), 400

    try:
        rule = get_moderation_store().create_rule(payload)
    except ModerationStoreError as e:
        return _store_error(e, "Failed to create moderation rule")

    _audit("create", "moderation_rule", rule.id, {"name": rule.name})

    current_app.logger.info(f"Moderation rule '{rule.name}' ({rule.id}) created by {get_current_user_id()}")
    return jsonify({"success": True, "rule": rule.to_dict()}), 201


@admin_bp.route("/moderation/rules/<rule_id>", methods=["PATCH"])
@require_admin
@rate_limited("admin_action")
def update_rule(rule_id: str):
    """Update some fields of a rule (e.g. {"is_active": false})."""
    updates, error = validate_rule_payload(request.get_json(silent=True), partial=True)
    if error:
        return jsonify({"success": False, "error": error}), 400

    try:
        rule = get_moderation_store().update_rule(rule_id, updates)
    except ModerationStoreError as e:
        return _store_error(e, "Failed to update moderation rule")
    if rule is None:
        return jsonify({"success": False, "error": "Rule not found"}), 404

    _audit("update", "moderation_rule", rule_id, {"fields": sorted(updates)})

    return jsonify({"success": True, "rule": rule.to_dict()}), 200


@admin_bp.route("/moderation/rules/<rule_id>", methods=["DELETE"])
@require_admin
@rate_limited("admin_action")
def delete_rule(rule_id: str):
    try:
        deleted = get_moderation_store().delete_rule(rule_id)
    except ModerationStoreError as e:
        return _store_error(e, "Failed to delete moderation rule")
    if not deleted:
        return jsonify({"success": False, "error": "Rule not found"}), 404

    _audit("delete", "moderation_rule", rule_id)

    return jsonify({"success": True}), 200


# ============================================================================
# Flagged content queue
# ============================================================================

@admin_bp.route("/moderation/flagged", methods=["GET"])
@require_moderator
def list_flagged():
    """Flagged content, oldest first. Query: ?status=pending&limit=50"""
    query, error = validate_flagged_query(request.args)
    if error:
        return jsonify({"success": False, "error": error}), 400

    try:
        items = get_moderation_store().list_flagged(query["status"], query["limit"])
    except ModerationStoreError as e:
        return _store_error(e, "Failed to list flagged content")

    return jsonify({"success": True, "items": items}), 200


@admin_bp.route("/moderation/flagged/<flagged_id>/<decision>", methods=["POST"])
@require_moderator
@rate_limited("admin_action")
def resolve_flagged(flagged_id: str, decision: str):
    """
    Approve or reject a flagged item.

    URL: /admin/moderation/flagged/<id>/approve or .../reject
    Request body (JSON, optional): {"notes": "..."}
    """
    if decision not in ("approve", "reject"):
        return jsonify({"success": False, "error": "Decision must be 'approve' or 'reject'"}), 404

    data = request.get_json(silent=True) or {}
    notes = clean_notes(data.get("notes"))

    try:
        entry = moderation.resolve_flagged_content(
            get_moderation_store(),
            flagged_id,
            get_current_user_id(),
            decision,
            notes,
        )
    except ModerationStoreError as e:
        return _store_error(e, f"Failed to {decision} flagged content")

    if entry is None:
        return jsonify({"success": False, "error": "Flagged content not found"}), 404

    return jsonify({"success": True, "item": entry}), 200


# ============================================================================
# Rate limits
# ============================================================================

@admin_bp.route("/rate-limits/<path:identifier>", methods=["GET"])
@require_admin
def rate_limit_status(identifier: str):
    """Active windows for an identifier, e.g. user:<uuid> or ip:1.2.3.4."""
    try:
        entries = get_rate_limiter().status(identifier)
    except RateLimitStoreError as e:
        return _store_error(e, "Failed to load rate limit status")

    return jsonify({"success": True, "identifier": identifier, "limits": entries}), 200


@admin_bp.route("/rate-limits/<path:identifier>", methods=["DELETE"])
@require_admin
@rate_limited("admin_action")
def reset_rate_limit(identifier: str):
    """Clear counters and blocks. Query: ?action=login to limit to one action."""
    action = (request.args.get("action") or "").strip() or None
    limiter = get_rate_limiter()
    if action is not None and action not in limiter.configs:
        return jsonify({"success": False, "error": f"Unknown action '{action}'"}), 400

    try:
        removed = limiter.reset(identifier, action)
    except RateLimitStoreError as e:
        return _store_error(e, "Failed to reset rate limits")

    _audit("reset_rate_limit", "rate_limit", identifier, {"action": action, "removed": removed})

    return jsonify({"success": True, "removed": removed}), 200
