"""
Rate-limit counter storage.

A record is one counting window for an (identifier, action) pair. The stores
only persist counters; window and block decisions live in rate_limiter.py.

Fixed windows keep a single record per (identifier, action); `hit_fixed()`
restarts it once it has ended and counts the hit in one atomic step. Sliding
windows keep one record per aligned window start (`increment()`).

- InMemoryRateLimitStore: guarded by a lock, single process only
- SupabaseRateLimitStore: rate_limits table, counters changed atomically by
  the hit_fixed_rate_limit() / increment_rate_limit() Postgres functions
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple

from community.utils.dates import parse_timestamp, to_db_timestamp
from community.utils.errors import RateLimitStoreError

logger = logging.getLogger(__name__)

# Window key of the single fixed-window record per (identifier, action)
FIXED_WINDOW = None


@dataclass
class RateLimitRecord:
    identifier: str
    action: str
    window_start: datetime
    window_end: datetime
    count: int = 0
    blocked: bool = False
    blocked_until: Optional[datetime] = None

    def is_blocked(self, now: datetime) -> bool:
        return self.blocked and self.blocked_until is not None and self.blocked_until > now

    def copy(self) -> "RateLimitRecord":
        return RateLimitRecord(**self.__dict__)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RateLimitRecord":
        window_start = parse_timestamp(row.get("window_start"))
        window_end = parse_timestamp(row.get("window_end"))
        if window_start is None or window_end is None:
            raise RateLimitStoreError(
                f"Unreadable rate limit window {row.get('window_start')!r} - {row.get('window_end')!r}"
            )
        return cls(
            identifier=row["identifier"],
            action=row["action"],
            window_start=window_start,
            window_end=window_end,
            count=int(row.get("count") or 0),
            blocked=bool(row.get("blocked", False)),
            blocked_until=parse_timestamp(row.get("blocked_until")),
        )


class InMemoryRateLimitStore:
    """
    Process-local counters.

    Keyed by (identifier, action, window_start) for sliding windows and by
    (identifier, action, FIXED_WINDOW) for the fixed window.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[Tuple[str, str, Optional[datetime]], RateLimitRecord] = {}

    def _matching(self, identifier: str, action: Optional[str] = None) -> List[RateLimitRecord]:
        return [
            r for r in self._records.values()
            if r.identifier == identifier and (action is None or r.action == action)
        ]

    def find_block(self, identifier: str, action: str, now: datetime) -> Optional[RateLimitRecord]:
        with self._lock:
            blocked = [r for r in self._matching(identifier, action) if r.is_blocked(now)]
            return max(blocked, key=lambda r: r.blocked_until).copy() if blocked else None

    def get_record(self, identifier: str, action: str, window_start: datetime) -> Optional[RateLimitRecord]:
        with self._lock:
            record = self._records.get((identifier, action, window_start))
            return record.copy() if record else None

    def hit_fixed(self, identifier: str, action: str, now: datetime, window: timedelta) -> RateLimitRecord:
        """Count one hit in the current fixed window, opening a new one if it has ended."""
        key = (identifier, action, FIXED_WINDOW)
        with self._lock:
            record = self._records.get(key)
            if record is None or record.window_end <= now:
                fresh = RateLimitRecord(identifier, action, now, now + window)
                if record is not None and record.is_blocked(now):
                    fresh.blocked, fresh.blocked_until = True, record.blocked_until
                record = self._records[key] = fresh
            record.count += 1
            return record.copy()

    def increment(
        self,
        identifier: str,
        action: str,
        window_start: datetime,
        window_end: datetime,
    ) -> RateLimitRecord:
        key = (identifier, action, window_start)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = RateLimitRecord(identifier, action, window_start, window_end)
                self._records[key] = record
            record.count += 1
            return record.copy()

    def set_blocked(
        self,
        identifier: str,
        action: str,
        window_start: datetime,
        blocked_until: datetime,
    ) -> None:
        with self._lock:
            for record in self._matching(identifier, action):
                if record.window_start == window_start:
                    record.blocked = True
                    record.blocked_until = blocked_until

    def list_active(self, identifier: str, now: datetime) -> List[RateLimitRecord]:
        with self._lock:
            return [
                r.copy()
                for r in self._matching(identifier)
                if r.window_end > now or r.is_blocked(now)
            ]

    def reset(self, identifier: str, action: Optional[str] = None) -> int:
        with self._lock:
            keys = [
                k for k, r in self._records.items()
                if r.identifier == identifier and (action is None or r.action == action)
            ]
            for k in keys:
                del self._records[k]
        return len(keys)

    def cleanup(self, before: datetime) -> int:
        with self._lock:
            keys = [
                k for k, r in self._records.items()
                if r.window_end <= before and not r.is_blocked(before)
            ]
            for k in keys:
                del self._records[k]
        return len(keys)


class SupabaseRateLimitStore:
    """Counters in the rate_limits table."""

    TABLE = "rate_limits"

    def __init__(self, client_factory=None) -> None:
        if client_factory is None:
            from community.services.supabase_client import get_admin_client
            client_factory = get_admin_client
        self._client_factory = client_factory

    def _client(self):
        client = self._client_factory()
        if client is None:
            raise RateLimitStoreError("Supabase admin client not configured")
        return client

    def _execute(self, build, context: str):
        try:
            return build(self._client()).execute()
        except RateLimitStoreError:
            raise
        except Exception as e:
            raise RateLimitStoreError(f"{context}: {e}") from e

    def _records(self, response) -> List[RateLimitRecord]:
        return [RateLimitRecord.from_row(row) for row in (response.data or [])]

    def _single(self, response, function: str) -> RateLimitRecord:
        data = response.data
        row = data[0] if isinstance(data, list) and data else data
        if not row:
            raise RateLimitStoreError(f"{function} returned no row")
        return RateLimitRecord.from_row(row)

    def find_block(self, identifier: str, action: str, now: datetime) -> Optional[RateLimitRecord]:
        response = self._execute(
            lambda c: c.table(self.TABLE).select("*")
            .eq("identifier", identifier)
            .eq("action", action)
            .eq("blocked", True)
            .gt("blocked_until", to_db_timestamp(now))
            .order("blocked_until", desc=True)
            .limit(1),
            "Error checking rate limit block",
        )
        records = self._records(response)
        return records[0] if records else None

    def get_record(self, identifier: str, action: str, window_start: datetime) -> Optional[RateLimitRecord]:
        response = self._execute(
            lambda c: c.table(self.TABLE).select("*")
            .eq("identifier", identifier)
            .eq("action", action)
            .eq("strategy", "sliding")
            .eq("window_start", to_db_timestamp(window_start))
            .limit(1),
            "Error fetching rate limit window",
        )
        records = self._records(response)
        return records[0] if records else None

    def hit_fixed(self, identifier: str, action: str, now: datetime, window: timedelta) -> RateLimitRecord:
        # Restart-if-expired and increment happen in one upsert on (identifier, action)
        response = self._execute(
            lambda c: c.rpc("hit_fixed_rate_limit", {
                "p_identifier": identifier,
                "p_action": action,
                "p_now": to_db_timestamp(now),
                "p_window_seconds": int(window.total_seconds()),
            }),
            "Error incrementing rate limit",
        )
        return self._single(response, "hit_fixed_rate_limit")

    def increment(
        self,
        identifier: str,
        action: str,
        window_start: datetime,
        window_end: datetime,
    ) -> RateLimitRecord:
        # Upsert + increment in one statement so concurrent workers never lose counts
        response = self._execute(
            lambda c: c.rpc("increment_rate_limit", {
                "p_identifier": identifier,
                "p_action": action,
                "p_window_start": to_db_timestamp(window_start),
                "p_window_end": to_db_timestamp(window_end),
            }),
            "Error incrementing rate limit",
        )
        return self._single(response, "increment_rate_limit")

    def set_blocked(
        self,
        identifier: str,
        action: str,
        window_start: datetime,
        blocked_until: datetime,
    ) -> None:
        self._execute(
            lambda c: c.table(self.TABLE)
            .update({"blocked": True, "blocked_until": to_db_timestamp(blocked_until)})
            .eq("identifier", identifier)
            .eq("action", action)
            .eq("window_start", to_db_timestamp(window_start)),
            "Error blocking identifier",
        )

    def list_active(self, identifier: str, now: datetime) -> List[RateLimitRecord]:
        response = self._execute(
            lambda c: c.table(self.TABLE).select("*")
            .eq("identifier", identifier)
            .or_(f"window_end.gt.{to_db_timestamp(now)},blocked_until.gt.{to_db_timestamp(now)}"),
            "Error fetching rate limit status",
        )
        return self._records(response)

    def reset(self, identifier: str, action: Optional[str] = None) -> int:
        def build(c):
            query = c.table(self.TABLE).delete().eq("identifier", identifier)
            if action:
                query = query.eq("action", action)
            return query

        response = self._execute(build, "Error resetting rate limits")
        return len(response.data or [])

    def cleanup(self, before: datetime) -> int:
        cutoff = to_db_timestamp(before)
        response = self._execute(
            lambda c: c.table(self.TABLE).delete()
            .lte("window_end", cutoff)
            .or_(f"blocked.eq.false,blocked_until.lte.{cutoff}"),
            "Error cleaning up rate limits",
        )
        return len(response.data or [])
