"""
Defines JSON endpoints used by the front end.

Endpoints:
- /health: Liveness check
- /csrf-token: Token for session-authenticated writes
- /moderation/check: Check user-submitted text before it is published
"""

import uuid
from flask import Blueprint, request, jsonify, current_app
from flask_wtf.csrf import generate_csrf
from ..utils.auth import require_auth, get_current_user_id, get_current_user_role
from ..utils.errors import sanitize_error, GENERIC_MESSAGES
from ..utils.validation import validate_content_check
from ..services.moderation import ContentItem, moderate_content
from ..extensions import limiter, get_moderation_store


api_bp = Blueprint("api", __name__)


@api_bp.route("/health")
@limiter.exempt
def health():
    return jsonify({"status": "ok"})


@api_bp.route("/csrf-token")
@limiter.exempt
def csrf_token():
    """
    CSRF token for session-authenticated writes.

    Send it back in the X-CSRFToken header on POST/PATCH/DELETE. Callers
    using `Authorization: Bearer` do not need it.
    """
    return jsonify({"csrfToken": generate_csrf()})



@api_bp.route("/moderation/check", methods=["POST"])
@require_auth
@limiter.limit(lambda: current_app.config["MODERATION_CHECK_RATE_LIMIT"])
def check_content():
    """
    Run moderation rules against a piece of content.

    **Authentication required**

    Request body (JSON):
        {
            "type": "listing" | "business" | "message" | ...,
            "text": "content to check",
            "id": "optional content id"
        }

    Returns:
        200: {"success": true, "result": {allowed, action, severity, ...}}
        400: Invalid body
        401: Not authenticated
        429: Rate limit exceeded
    """
    payload, error = validate_content_check(request.get_json(silent=True))
    if error:
        return jsonify({"success": False, "error": error}), 400

    content = ContentItem(
        id=payload["id"] or f"draft-{uuid.uuid4()}",
        type=payload["type"],
        text=payload["text"],
        user_id=get_current_user_id(),
        user_role=get_current_user_role(),
    )

    try:
        result = moderate_content(
            content,
            get_moderation_store(),
            fail_open=current_app.config.get("MODERATION_FAIL_OPEN", True),
        )
    except Exception as e:
        sanitized_msg = sanitize_error(e, "moderation", "Content check failed")
        return jsonify({"success": False, "error": sanitized_msg}), 500

    if result.action != "allow":
        current_app.logger.info(
            f"Content {content.type}/{content.id} by {content.user_id}: {result.action} "
            f"(rule {result.rule_id}, severity {result.severity})"
        )

    return jsonify({"success": True, "result": result.to_dict()}), 200


@api_bp.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({"success": False, "error": GENERIC_MESSAGES["rate_limit"]}), 429
