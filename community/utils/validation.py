"""
Input validation and normalization for moderation payloads.

Trims and bounds text, normalizes enum values and keyword lists, checks that
regex overrides compile, and builds a clean payload for the stores. Each
validator returns (payload, error_message).
"""

from __future__ import annotations
import re
from typing import Any, Dict, List, Optional, Tuple

from community.services.moderation import ACTIONS, CONTENT_TYPES, SEVERITY_LEVELS, USER_ROLES
from community.services.moderation_store import FLAGGED_STATUSES

MAX_RULE_NAME_LEN = 120
MAX_DESCRIPTION_LEN = 1000
MAX_KEYWORDS = 500
MAX_KEYWORD_LEN = 200
MAX_REGEX_LEN = 1000
MAX_CONTENT_LEN = 20000
MAX_ID_LEN = 128
MAX_NOTES_LEN = 2000
MAX_FLAGGED_LIMIT = 200

_BOOL_FIELDS = ("is_active", "case_sensitive", "whole_word_only")


def _clean_text(text: Any, max_len: int) -> str:
    """
    Strip, bound length, drop control characters (newlines/tabs kept).
    """
    if not isinstance(text, str):
        return ""
    t = text.strip()[:max_len]
    return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", t)


def _clean_list(values: Any, allowed: Optional[tuple] = None) -> Tuple[List[str], Optional[str]]:
    if not isinstance(values, list):
        return [], "must be a list"
    cleaned: List[str] = []
    for v in values:
        if not isinstance(v, str):
            return [], "must contain only strings"
        v = v.strip()
        if allowed is not None:
            v = v.lower()
            if v not in allowed:
                return [], f"contains unknown value '{v}'"
        if v and v not in cleaned:
            cleaned.append(v)
    return cleaned, None


def _validate_keywords(value: Any) -> Tuple[List[str], Optional[str]]:
    keywords, err = _clean_list(value)
    if err:
        return [], f"keywords {err}"
    if len(keywords) > MAX_KEYWORDS:
        return [], f"A rule may have at most {MAX_KEYWORDS} keywords."
    if any(len(k) > MAX_KEYWORD_LEN for k in keywords):
        return [], f"Keywords must be under {MAX_KEYWORD_LEN} characters."
    return keywords, None


def _validate_regex(value: Any) -> Tuple[Optional[str], Optional[str]]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None, None
    if not isinstance(value, str) or len(value) > MAX_REGEX_LEN:
        return None, f"regex must be a string under {MAX_REGEX_LEN} characters."
    try:
        re.compile(value)
    except re.error as e:
        return None, f"Invalid regex: {e}"
    return value, None


def validate_rule_payload(data: Any, partial: bool = False) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Validate a moderation rule create (or, with partial=True, update) body.

    Returns:
        (payload, error_message). Payload only contains recognised fields.
    """
    if not isinstance(data, dict):
        return {}, "Invalid request body"

    payload: Dict[str, Any] = {}

    if "name" in data or not partial:
        name = _clean_text(data.get("name"), MAX_RULE_NAME_LEN + 1)
        if not name:
            return {}, "Rule name is required."
        if len(name) > MAX_RULE_NAME_LEN:
            return {}, f"Rule name must be under {MAX_RULE_NAME_LEN} characters."
        payload["name"] = name

    if "description" in data:
        description = _clean_text(data.get("description"), MAX_DESCRIPTION_LEN)
        payload["description"] = description or None

    if "regex" in data:
        regex, err = _validate_regex(data.get("regex"))
        if err:
            return {}, err
        payload["regex"] = regex

    if "keywords" in data or not partial:
        keywords, err = _validate_keywords(data.get("keywords", []))
        if err:
            return {}, err
        if not keywords and not payload.get("regex") and not partial:
            return {}, "Provide at least one keyword or a regex."
        payload["keywords"] = keywords

    if "content_types" in data or not partial:
        content_types, err = _clean_list(data.get("content_types", []), CONTENT_TYPES)
        if err:
            return {}, f"content_types {err}"
        if not content_types:
            return {}, "At least one content type is required."
        payload["content_types"] = content_types

    if "severity" in data or not partial:
        severity = str(data.get("severity", "")).strip().lower()
        if severity not in SEVERITY_LEVELS:
            return {}, f"Invalid severity. Must be one of: {', '.join(SEVERITY_LEVELS)}"
        payload["severity"] = severity

    if "action" in data or not partial:
        action = str(data.get("action", "")).strip().lower()
        if action not in ACTIONS:
            return {}, f"Invalid action. Must be one of: {', '.join(ACTIONS)}"
        payload["action"] = action

    if "exempt_roles" in data:
        roles, err = _clean_list(data.get("exempt_roles") or [], USER_ROLES)
        if err:
            return {}, f"exempt_roles {err}"
        payload["exempt_roles"] = roles

    for key in _BOOL_FIELDS:
        if key in data:
            if not isinstance(data[key], bool):
                return {}, f"{key} must be true or false."
            payload[key] = data[key]

    if partial and not payload:
        return {}, "No updatable fields provided."

    return payload, None


def validate_content_check(data: Any) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Validate a content check body: {"type": ..., "text": ..., "id": optional}.

    Unknown content types are accepted; they simply have no applicable rules.
    """
    if not isinstance(data, dict):
        return {}, "Invalid request body"

    content_type = _clean_text(data.get("type"), 40).lower()
    if not content_type:
        return {}, "Content type is required."

    if not isinstance(data.get("text"), str):
        return {}, "Text is required."
    text = _clean_text(data["text"], MAX_CONTENT_LEN)
    if len(data["text"]) > MAX_CONTENT_LEN:
        return {}, f"Text must be under {MAX_CONTENT_LEN} characters."

    content_id = _clean_text(data.get("id") or "", MAX_ID_LEN)

    return {"type": content_type, "text": text, "id": content_id}, None


def validate_flagged_query(args) -> Tuple[Dict[str, Any], Optional[str]]:
    """Validate ?status=&limit= for the flagged content queue."""
    status = (args.get("status") or "").strip().lower() or None
    if status is not None and status not in FLAGGED_STATUSES:
        return {}, f"Invalid status. Must be one of: {', '.join(FLAGGED_STATUSES)}"

    raw_limit = args.get("limit", "50")
    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        return {}, "limit must be a number."
    limit = max(1, min(limit, MAX_FLAGGED_LIMIT))

    return {"status": status, "limit": limit}, None


def clean_notes(value: Any) -> Optional[str]:
    """Moderator notes: optional, bounded."""
    notes = _clean_text(value, MAX_NOTES_LEN)
    return notes or None
