"""
Timestamp helpers for values stored in Supabase (timestamptz columns).
"""

from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Any, Optional

# PostgREST drops trailing zeros from fractional seconds ("12:00:00.12345");
# fromisoformat() before Python 3.11 only accepts exactly 3 or 6 digits.
_FRACTION = re.compile(r"\.(\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _six_digit_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the database; None if missing or unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = _FRACTION.sub(_six_digit_fraction, str(value).strip().replace("Z", "+00:00"), count=1)
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def to_db_timestamp(value: datetime) -> str:
    """
    Format for PostgREST filters.

    Uses a Z suffix: a literal '+' in a query string is decoded as a space.
    """
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
