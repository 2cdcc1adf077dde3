"""
Keyword/regex content moderation.

Evaluates user-submitted text (business listings, classifieds, messages,
reviews, announcements, events, profiles) against the configured moderation
rules and resolves exactly one decision: allow, flag, block or auto_remove.

`evaluate()` is pure: rules are fetched by the caller. `moderate_content()`
wires it to a rule store and records flagged content for the admin queue.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from functools import lru_cache
from typing import Optional, Dict, Any, List, Iterable
from community.utils.dates import parse_timestamp
from community.utils.errors import ModerationStoreError

logger = logging.getLogger(__name__)


SEVERITY_LEVELS = {"low": 1, "medium": 2, "high": 3, "critical": 4}
ACTIONS = ("allow", "flag", "block", "auto_remove")
CONTENT_TYPES = (
    "business",
    "listing",
    "message",
    "review",
    "announcement",
    "event",
    "user_profile",
)
USER_ROLES = ("member", "moderator", "admin")

# Actions that still let the content through (flag = publish, queue for review)
_ALLOWING_ACTIONS = {"allow", "flag"}


# Default spam/scam keywords and patterns
DEFAULT_SPAM_KEYWORDS = [
    # Scam/fraud indicators
    "guaranteed money", "quick money", "easy money", "make money fast",
    "get rich quick", "work from home", "no experience needed",
    "urgent response required", "limited time offer", "act now",
    "congratulations you have won", "you have been selected",
    "wire transfer", "western union", "money gram", "bitcoin payment",
    # Phishing indicators
    "verify your account", "account suspended", "click here now",
    "update payment info", "confirm identity", "security alert",
    # Adult content
    "xxx", "adult services", "escort", "massage parlor",
    # Fake business indicators
    "investment opportunity", "pyramid scheme", "multi level marketing",
    "recruiting agents", "be your own boss", "financial freedom",
    # Suspicious contact methods
    "whatsapp only", "telegram only", "signal only", "encrypted chat",
    "offshore account", "cryptocurrency only", "cash only deals",
    # Common scam phrases
    "nigerian prince", "inheritance claim", "lottery winner",
    "tax refund", "government grant", "free money",
    "debt consolidation", "credit repair", "loan approved",
]

HATE_SPEECH_KEYWORDS = ["hate", "racist", "discrimination", "bigot", "supremacist"]

VIOLENCE_KEYWORDS = ["violence", "threat", "harm", "kill", "hurt", "attack", "weapon"]


# ============================================================================
# Data types
# ============================================================================

@dataclass
class ModerationRule:
    """A configured keyword/regex policy."""

    id: str
    name: str
    keywords: List[str] = field(default_factory=list)
    content_types: List[str] = field(default_factory=list)
    severity: str = "low"
    action: str = "flag"
    is_active: bool = True
    case_sensitive: bool = False
    whole_word_only: bool = False
    regex: Optional[str] = None
    exempt_roles: List[str] = field(default_factory=list)
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def priority(self) -> int:
        return SEVERITY_LEVELS.get(self.severity, 0)

    def applies_to(self, content_type: Optional[str]) -> bool:
        return bool(content_type) and content_type in (self.content_types or [])

    def is_exempt(self, role: Optional[str]) -> bool:
        return bool(role) and role in (self.exempt_roles or [])

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ModerationRule":
        """Build a rule from a database row (Supabase returns plain dicts)."""
        return cls(
            id=str(row.get("id", "")),
            name=row.get("name", ""),
            description=row.get("description"),
            keywords=list(row.get("keywords") or []),
            content_types=list(row.get("content_types") or []),
            severity=row.get("severity", "low"),
            action=row.get("action", "flag"),
            is_active=bool(row.get("is_active", True)),
            case_sensitive=bool(row.get("case_sensitive", False)),
            whole_word_only=bool(row.get("whole_word_only", False)),
            regex=row.get("regex") or None,
            exempt_roles=list(row.get("exempt_roles") or []),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


@dataclass
class ContentItem:
    """Text submitted by a user, built per moderation call."""

    id: str
    type: str
    text: str
    user_id: Optional[str] = None
    user_role: Optional[str] = None


@dataclass
class ModerationResult:
    """Outcome of evaluating one content item."""

    allowed: bool
    action: str = "allow"
    severity: str = "low"
    flagged_keywords: List[str] = field(default_factory=list)
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Matching
# ============================================================================

@lru_cache(maxsize=256)
def _compile(pattern: str, flags: int) -> Optional[re.Pattern]:
    """Compile a rule pattern; None when the pattern is not a valid regex."""
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        logger.warning(f"Invalid moderation regex {pattern!r}: {e}")
        return None


def _keyword_matches(keyword: str, text: str, case_sensitive: bool, whole_word: bool) -> bool:
    if whole_word:
        flags = 0 if case_sensitive else re.IGNORECASE
        # Lookarounds instead of \b so keywords starting/ending in punctuation work
        pattern = _compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", flags)
        return bool(pattern and pattern.search(text))
    if case_sensitive:
        return keyword in text
    return keyword.casefold() in text.casefold()


def match_rule(rule: ModerationRule, text: str) -> List[str]:
    """
    Return the keywords (or regex match) of `rule` found in `text`.

    A regex override replaces keyword matching. If the regex does not compile
    the rule degrades to its keyword list instead of failing the request.
    """
    if not text:
        return []

    if rule.regex:
        flags = 0 if rule.case_sensitive else re.IGNORECASE
        pattern = _compile(rule.regex, flags)
        if pattern is not None:
            # Zero-length matches (e.g. "x*") flag nothing
            found = pattern.search(text)
            return [found.group(0)] if found and found.group(0) else []

    matched: List[str] = []
    for keyword in rule.keywords or []:
        if not keyword or not keyword.strip():
            continue
        if keyword in matched:
            continue
        if _keyword_matches(keyword, text, rule.case_sensitive, rule.whole_word_only):
            matched.append(keyword)
    return matched


def order_rules(rules: Iterable[ModerationRule]) -> List[ModerationRule]:
    """Severity descending; sorted() is stable so ties keep their given order."""
    return sorted(rules, key=lambda r: r.priority, reverse=True)


def evaluate(content: ContentItem, rules: Iterable[ModerationRule]) -> ModerationResult:
    """
    Evaluate a content item against a rule set.

    The first active, applicable, non-exempt rule that matches (in severity
    order) decides the action. No match means allow.

    Args:
        content: The text to check, with its content type and author role
        rules: Rules as fetched from the store (inactive ones are skipped)

    Returns:
        ModerationResult with the resolved action
    """
    applicable = [r for r in rules if r.is_active and r.applies_to(content.type)]

    for rule in order_rules(applicable):
        if rule.is_exempt(content.user_role):
            continue

        flagged = match_rule(rule, content.text)
        if not flagged:
            continue

        action = rule.action if rule.action in ACTIONS else "flag"
        return ModerationResult(
            allowed=action in _ALLOWING_ACTIONS,
            action=action,
            severity=rule.severity,
            flagged_keywords=flagged,
            rule_id=rule.id,
            rule_name=rule.name,
            message=f"Content flagged for: {', '.join(flagged)}",
        )

    return ModerationResult(allowed=True)


# ============================================================================
# Store-backed moderation
# ============================================================================

def moderate_content(content: ContentItem, store, fail_open: bool = True) -> ModerationResult:
    """
    Check content against the active rules held by `store`.

    Non-allow decisions are recorded in the flagged content queue together
    with an audit log entry. Failing to record them is logged but does not
    change the decision.

    Args:
        content: Content to check
        store: A moderation store (see moderation_store.py)
        fail_open: If the rule store is unavailable, allow (True) or block (False)

    Returns:
        ModerationResult
    """
    try:
        rules = store.list_rules(active_only=True)
    except ModerationStoreError as e:
        logger.error(f"Moderation rules unavailable for {content.type}/{content.id}: {e}")
        if fail_open:
            return ModerationResult(allowed=True, message="Moderation check failed")
        return ModerationResult(
            allowed=False,
            action="block",
            message="Moderation is temporarily unavailable. Please try again later.",
        )

    result = evaluate(content, rules)

    if result.action != "allow":
        _record_flag(content, result, store)

    return result


def _record_flag(content: ContentItem, result: ModerationResult, store) -> None:
    status = "removed" if result.action == "auto_remove" else "pending"
    try:
        flagged = store.log_flagged(
            content_type=content.type,
            content_id=content.id,
            content_text=content.text,
            user_id=content.user_id,
            rule_id=result.rule_id,
            flagged_keywords=result.flagged_keywords,
            severity=result.severity,
            status=status,
        )
        store.add_audit_log(
            user_id=content.user_id,
            action="flag",
            resource_type="flagged_content",
            resource_id=content.id,
            metadata={
                "content_type": content.type,
                "rule_id": result.rule_id,
                "flagged_keywords": result.flagged_keywords,
                "severity": result.severity,
                "flagged_id": flagged.get("id") if flagged else None,
                "auto_flagged": True,
            },
        )
    except ModerationStoreError as e:
        logger.error(f"Error logging flagged content {content.type}/{content.id}: {e}")


def resolve_flagged_content(
    store,
    flagged_id: str,
    moderator_id: str,
    decision: str,
    notes: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Approve or reject an entry in the flagged content queue.

    Args:
        store: Moderation store
        flagged_id: Flagged content id
        moderator_id: Acting admin/moderator
        decision: "approve" or "reject"
        notes: Optional moderator notes

    Returns:
        The updated entry, or None if it does not exist

    Raises:
        ValueError: Unknown decision
        ModerationStoreError: The queue update itself failed (audit failures are only logged)
    """
    statuses = {"approve": "approved", "reject": "rejected"}
    if decision not in statuses:
        raise ValueError(f"Unknown moderation decision: {decision}")

    entry = store.resolve_flagged(flagged_id, statuses[decision], moderator_id, notes)
    if entry is None:
        return None

    # The decision is already stored; audit failures are only logged
    try:
        store.add_audit_log(
            user_id=moderator_id,
            action="moderate",
            resource_type="flagged_content",
            resource_id=flagged_id,
            metadata={"action": decision, "notes": notes},
        )
    except ModerationStoreError as e:
        logger.error(f"Error writing audit log for flagged content {flagged_id}: {e}")

    logger.info(f"Flagged content {flagged_id} {statuses[decision]} by {moderator_id}")
    return entry


def default_rules() -> List[Dict[str, Any]]:
    """Seed rule payloads installed by `flask init-moderation-rules`."""
    return [
        {
            "name": "Spam/Scam Detection",
            "description": "Detects common spam and scam patterns",
            "keywords": list(DEFAULT_SPAM_KEYWORDS),
            "content_types": ["business", "listing", "message", "review", "announcement"],
            "severity": "high",
            "action": "flag",
            "case_sensitive": False,
            "whole_word_only": False,
        },
        {
            "name": "Hate Speech Detection",
            "description": "Detects hate speech and discriminatory content",
            "keywords": list(HATE_SPEECH_KEYWORDS),
            "content_types": ["business", "listing", "message", "review", "announcement", "user_profile"],
            "severity": "critical",
            "action": "auto_remove",
            "case_sensitive": False,
            "whole_word_only": True,
        },
        {
            "name": "Violence Detection",
            "description": "Detects violent threats and content",
            "keywords": list(VIOLENCE_KEYWORDS),
            "content_types": ["business", "listing", "message", "review", "announcement"],
            "severity": "critical",
            "action": "flag",
            "case_sensitive": False,
            "whole_word_only": True,
        },
    ]
