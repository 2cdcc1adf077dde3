"""
Persistence for moderation rules, the flagged content queue and audit logs.

Two interchangeable stores:
- InMemoryModerationStore: process-local, used in dev and tests
- SupabaseModerationStore: moderation_rules / flagged_content / audit_logs tables

Both raise ModerationStoreError when the backend fails so callers can apply
their fail-open / fail-closed policy.
"""

from __future__ import annotations
import logging
import copy
import threading
import uuid
from typing import Optional, Dict, Any, List

from community.services.moderation import ModerationRule, SEVERITY_LEVELS
from community.utils.dates import utcnow
from community.utils.errors import ModerationStoreError

logger = logging.getLogger(__name__)

FLAGGED_STATUSES = ("pending", "approved", "rejected", "flagged", "removed")

# Columns a rule create/update may touch
RULE_FIELDS = (
    "name",
    "description",
    "keywords",
    "content_types",
    "severity",
    "action",
    "is_active",
    "case_sensitive",
    "whole_word_only",
    "regex",
    "exempt_roles",
)


def _rule_sort_key(rule: ModerationRule):
    return (-SEVERITY_LEVELS.get(rule.severity, 0), rule.name.lower())


def _rule_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill defaults for a new rule (whole-word matching unless told otherwise)."""
    row = {k: v for k, v in data.items() if k in RULE_FIELDS}
    row.setdefault("description", None)
    row.setdefault("keywords", [])
    row.setdefault("content_types", [])
    row.setdefault("severity", "low")
    row.setdefault("action", "flag")
    row.setdefault("is_active", True)
    row.setdefault("case_sensitive", False)
    row.setdefault("whole_word_only", True)
    row.setdefault("regex", None)
    row.setdefault("exempt_roles", [])
    return row


class InMemoryModerationStore:
    """Thread-safe, process-local moderation store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rules: Dict[str, ModerationRule] = {}
        self._flagged: Dict[str, Dict[str, Any]] = {}
        self.audit_logs: List[Dict[str, Any]] = []

    # -- rules ---------------------------------------------------------------

    def has_rules(self) -> bool:
        with self._lock:
            return bool(self._rules)

    def list_rules(self, active_only: bool = False) -> List[ModerationRule]:
        with self._lock:
            rules = [copy.deepcopy(r) for r in self._rules.values() if r.is_active or not active_only]
        return sorted(rules, key=_rule_sort_key)

    def get_rule(self, rule_id: str) -> Optional[ModerationRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule else None

    def create_rule(self, data: Dict[str, Any]) -> ModerationRule:
        row = _rule_defaults(data)
        row["id"] = str(uuid.uuid4())
        row["created_at"] = utcnow()
        rule = ModerationRule.from_row(row)
        with self._lock:
            self._rules[rule.id] = rule
            return copy.deepcopy(rule)

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> Optional[ModerationRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None
            for key, value in updates.items():
                if key in RULE_FIELDS:
                    setattr(rule, key, copy.deepcopy(value))
            rule.updated_at = utcnow()
            return copy.deepcopy(rule)

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    # -- flagged content -----------------------------------------------------

    def log_flagged(
        self,
        content_type: str,
        content_id: str,
        content_text: str,
        user_id: Optional[str],
        rule_id: Optional[str],
        flagged_keywords: List[str],
        severity: str,
        status: str = "pending",
    ) -> Dict[str, Any]:
        entry = {
            "id": str(uuid.uuid4()),
            "content_type": content_type,
            "content_id": content_id,
            "content_text": content_text,
            "user_id": user_id,
            "rule_id": rule_id,
            "flagged_keywords": list(flagged_keywords),
            "severity": severity,
            "status": status,
            "auto_flagged": True,
            "moderator_id": None,
            "moderator_notes": None,
            "resolved_at": None,
            "created_at": utcnow().isoformat(),
        }
        with self._lock:
            self._flagged[entry["id"]] = entry
            return copy.deepcopy(entry)

    def get_flagged(self, flagged_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._flagged.get(flagged_id)
            return copy.deepcopy(entry) if entry else None

    def list_flagged(self, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            entries = [copy.deepcopy(e) for e in self._flagged.values() if status is None or e["status"] == status]
        entries.sort(key=lambda e: e["created_at"])
        return entries[:limit]

    def resolve_flagged(
        self,
        flagged_id: str,
        status: str,
        moderator_id: str,
        notes: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._flagged.get(flagged_id)
            if entry is None:
                return None
            entry.update({
                "status": status,
                "moderator_id": moderator_id,
                "moderator_notes": notes,
                "resolved_at": utcnow().isoformat(),
            })
            return copy.deepcopy(entry)

    # -- audit ---------------------------------------------------------------

    def add_audit_log(
        self,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            self.audit_logs.append({
                "user_id": user_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "metadata": metadata or {},
                "created_at": utcnow().isoformat(),
            })


class SupabaseModerationStore:
    """
    Moderation store backed by Supabase tables.

    Uses the admin (service role) client because rules and the review queue
    are not readable under row level security.
    """

    def __init__(self, client_factory=None) -> None:
        if client_factory is None:
            from community.services.supabase_client import get_admin_client
            client_factory = get_admin_client
        self._client_factory = client_factory

    def _client(self):
        client = self._client_factory()
        if client is None:
            raise ModerationStoreError("Supabase admin client not configured")
        return client

    def _execute(self, build, context: str):
        """Run a query built from the client, wrapping backend failures."""
        try:
            return build(self._client()).execute()
        except ModerationStoreError:
            raise
        except Exception as e:
            raise ModerationStoreError(f"{context}: {e}") from e

    # -- rules ---------------------------------------------------------------

    def has_rules(self) -> bool:
        response = self._execute(
            lambda c: c.table("moderation_rules").select("id").limit(1),
            "Error checking moderation rules",
        )
        return bool(response.data)

    def list_rules(self, active_only: bool = False) -> List[ModerationRule]:
        def build(c):
            query = c.table("moderation_rules").select("*")
            if active_only:
                query = query.eq("is_active", True)
            return query

        response = self._execute(build, "Error fetching moderation rules")
        rules = [ModerationRule.from_row(row) for row in (response.data or [])]
        return sorted(rules, key=_rule_sort_key)

    def get_rule(self, rule_id: str) -> Optional[ModerationRule]:
        response = self._execute(
            lambda c: c.table("moderation_rules").select("*").eq("id", rule_id).limit(1),
            "Error fetching moderation rule",
        )
        return ModerationRule.from_row(response.data[0]) if response.data else None

    def create_rule(self, data: Dict[str, Any]) -> ModerationRule:
        row = _rule_defaults(data)
        response = self._execute(
            lambda c: c.table("moderation_rules").insert(row),
            "Error creating moderation rule",
        )
        if not response.data:
            raise ModerationStoreError("Moderation rule insert returned no row")
        return ModerationRule.from_row(response.data[0])

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> Optional[ModerationRule]:
        row = {k: v for k, v in updates.items() if k in RULE_FIELDS}
        row["updated_at"] = utcnow().isoformat()
        response = self._execute(
            lambda c: c.table("moderation_rules").update(row).eq("id", rule_id),
            "Error updating moderation rule",
        )
        return ModerationRule.from_row(response.data[0]) if response.data else None

    def delete_rule(self, rule_id: str) -> bool:
        response = self._execute(
            lambda c: c.table("moderation_rules").delete().eq("id", rule_id),
            "Error deleting moderation rule",
        )
        return bool(response.data)

    # -- flagged content -----------------------------------------------------

    def log_flagged(
        self,
        content_type: str,
        content_id: str,
        content_text: str,
        user_id: Optional[str],
        rule_id: Optional[str],
        flagged_keywords: List[str],
        severity: str,
        status: str = "pending",
    ) -> Dict[str, Any]:
        row = {
            "content_type": content_type,
            "content_id": content_id,
            "content_text": content_text,
            "user_id": user_id,
            "rule_id": rule_id,
            "flagged_keywords": list(flagged_keywords),
            "severity": severity,
            "status": status,
            "auto_flagged": True,
        }
        response = self._execute(
            lambda c: c.table("flagged_content").insert(row),
            "Error logging flagged content",
        )
        return response.data[0] if response.data else row

    def get_flagged(self, flagged_id: str) -> Optional[Dict[str, Any]]:
        response = self._execute(
            lambda c: c.table("flagged_content").select("*").eq("id", flagged_id).limit(1),
            "Error fetching flagged content",
        )
        return response.data[0] if response.data else None

    def list_flagged(self, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        def build(c):
            query = c.table("flagged_content").select("*")
            if status:
                query = query.eq("status", status)
            return query.order("created_at").limit(limit)

        response = self._execute(build, "Error fetching flagged content")
        return response.data or []

    def resolve_flagged(
        self,
        flagged_id: str,
        status: str,
        moderator_id: str,
        notes: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        now = utcnow().isoformat()
        row = {
            "status": status,
            "moderator_id": moderator_id,
            "moderator_notes": notes,
            "resolved_at": now,
            "updated_at": now,
        }
        response = self._execute(
            lambda c: c.table("flagged_content").update(row).eq("id", flagged_id),
            "Error resolving flagged content",
        )
        return response.data[0] if response.data else None

    # -- audit ---------------------------------------------------------------

    def add_audit_log(
        self,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        row = {
            "user_id": user_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "metadata": metadata or {},
        }
        self._execute(lambda c: c.table("audit_logs").insert(row), "Error writing audit log")
