"""
Per-user action rate limiting.

Counts actions per (identifier, action) inside a time window and rejects
beyond the configured threshold with the time the window resets. Route
handlers turn a rejection into HTTP 429 + Retry-After (see utils/rate_limit.py).

Limits use the same notation as the Flask-Limiter settings in config.py
("5 per 15 minutes") and are parsed with the `limits` package.

Two window strategies:
- fixed: the window opens at the first counted action and lasts window_seconds
- sliding: aligned windows, weighted by how far the current one has progressed
  (previous_count * (1 - elapsed/window) + current_count)

Counters live in an injected store. When the store fails, the configured
policy applies: fail open (allow) or fail closed (deny). Both are logged.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Callable

from limits import parse as parse_limit

from community.utils.dates import ensure_utc, utcnow
from community.utils.errors import RateLimitStoreError

logger = logging.getLogger(__name__)

STRATEGIES = ("fixed", "sliding")


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int
    block_seconds: Optional[int] = None

    @classmethod
    def parse(cls, limit: str, block_seconds: Optional[int] = None) -> "RateLimitConfig":
        """Build a config from a limit string such as "30 per minute"."""
        item = parse_limit(limit)
        return cls(
            max_requests=item.amount,
            window_seconds=item.get_expiry(),
            block_seconds=block_seconds,
        )

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)


# (limit, block seconds after the limit is exceeded)
_DEFAULT_LIMITS = {
    # Authentication
    "login": ("5 per 15 minutes", 30 * 60),
    "register": ("3 per hour", None),
    "verification": ("3 per 5 minutes", None),
    # Content creation
    "post_business": ("5 per hour", None),
    "post_provider": ("8 per hour", None),
    "post_event": ("8 per hour", None),
    "post_listing": ("10 per hour", None),
    "post_message": ("20 per minute", None),
    "post_review": ("5 per hour", None),
    # General API
    "api_general": ("100 per minute", None),
    # Contact/communication
    "contact_form": ("3 per hour", None),
    "report_submit": ("10 per hour", None),
    # Search and browsing
    "search": ("50 per minute", None),
    # Admin moderation actions (overridable via ADMIN_ACTION_RATE_LIMIT)
    "admin_action": ("30 per minute", None),
}

DEFAULT_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    action: RateLimitConfig.parse(limit, block)
    for action, (limit, block) in _DEFAULT_LIMITS.items()
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: datetime
    blocked: bool = False
    blocked_until: Optional[datetime] = None

    def retry_after(self, now: Optional[datetime] = None) -> int:
        """Whole seconds until the caller may retry (at least 1)."""
        now = ensure_utc(now) if now else utcnow()
        until = self.blocked_until if self.blocked and self.blocked_until else self.reset_time
        return max(1, math.ceil((until - now).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat(),
            "blocked": self.blocked,
            "blocked_until": self.blocked_until.isoformat() if self.blocked_until else None,
        }


class RateLimiter:
    """
    Rate-limit gate over a counter store.

    Args:
        store: InMemoryRateLimitStore / SupabaseRateLimitStore (or compatible)
        configs: Action name -> RateLimitConfig (defaults to DEFAULT_RATE_LIMITS)
        strategy: "fixed" or "sliding"
        fail_open: Allow requests when the store is unavailable
        clock: Returns the current time (tests pass a fake)
    """

    def __init__(
        self,
        store,
        configs: Optional[Dict[str, RateLimitConfig]] = None,
        strategy: str = "fixed",
        fail_open: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown rate limit strategy: {strategy}")
        self.store = store
        self.configs = dict(configs if configs is not None else DEFAULT_RATE_LIMITS)
        self.strategy = strategy
        self.fail_open = fail_open
        self._clock = clock or utcnow

    def config_for(self, action: str) -> RateLimitConfig:
        try:
            return self.configs[action]
        except KeyError:
            raise ValueError(f"Unknown rate limit action: {action}") from None

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now else ensure_utc(self._clock())

    def check(self, identifier: str, action: str, now: Optional[datetime] = None) -> RateLimitResult:
        """
        Count one action for `identifier` and decide whether it is allowed.

        Args:
            identifier: User id (or "ip:<address>" for anonymous callers)
            action: Action category, e.g. "admin_action"
            now: Evaluation time (defaults to the limiter clock)

        Returns:
            RateLimitResult; reset_time is when the current window ends
            (or the block lifts)

        Raises:
            ValueError: Unknown action category
        """
        config = self.config_for(action)
        now = self._now(now)

        try:
            block = self.store.find_block(identifier, action, now)
            if block is not None:
                return RateLimitResult(
                    allowed=False,
                    limit=config.max_requests,
                    remaining=0,
                    reset_time=block.blocked_until,
                    blocked=True,
                    blocked_until=block.blocked_until,
                )

            if self.strategy == "sliding":
                return self._check_sliding(identifier, action, config, now)
            return self._check_fixed(identifier, action, config, now)

        except RateLimitStoreError as e:
            return self._store_unavailable(identifier, action, config, now, e)

    def _check_fixed(
        self,
        identifier: str,
        action: str,
        config: RateLimitConfig,
        now: datetime,
    ) -> RateLimitResult:
        record = self.store.hit_fixed(identifier, action, now, config.window)
        return self._decide(identifier, action, config, now, record.count, record.window_start, record.window_end)

    def _check_sliding(
        self,
        identifier: str,
        action: str,
        config: RateLimitConfig,
        now: datetime,
    ) -> RateLimitResult:
        epoch = now.timestamp()
        # Integer boundaries so consecutive windows produce identical keys
        start_ts = int(epoch // config.window_seconds) * config.window_seconds
        window_start = datetime.fromtimestamp(start_ts, tz=timezone.utc)
        window_end = window_start + config.window

        record = self.store.increment(identifier, action, window_start, window_end)
        previous = self.store.get_record(identifier, action, window_start - config.window)

        weight = 1 - (epoch - start_ts) / config.window_seconds
        effective = (previous.count if previous else 0) * weight + record.count
        return self._decide(identifier, action, config, now, effective, window_start, window_end)

    def _decide(
        self,
        identifier: str,
        action: str,
        config: RateLimitConfig,
        now: datetime,
        count: float,
        window_start: datetime,
        window_end: datetime,
    ) -> RateLimitResult:
        if count <= config.max_requests:
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=max(0, math.floor(config.max_requests - count)),
                reset_time=window_end,
            )

        logger.info(f"Rate limit exceeded for {identifier} on {action} ({config.max_requests} per {config.window_seconds}s)")

        if config.block_seconds:
            blocked_until = now + timedelta(seconds=config.block_seconds)
            self.store.set_blocked(identifier, action, window_start, blocked_until)
            return RateLimitResult(
                allowed=False,
                limit=config.max_requests,
                remaining=0,
                reset_time=blocked_until,
                blocked=True,
                blocked_until=blocked_until,
            )

        return RateLimitResult(
            allowed=False,
            limit=config.max_requests,
            remaining=0,
            reset_time=window_end,
        )

    def _store_unavailable(
        self,
        identifier: str,
        action: str,
        config: RateLimitConfig,
        now: datetime,
        error: Exception,
    ) -> RateLimitResult:
        policy = "failing open" if self.fail_open else "failing closed"
        logger.error(f"Rate limit store unavailable for {identifier} on {action}, {policy}: {error}")
        return RateLimitResult(
            allowed=self.fail_open,
            limit=config.max_requests,
            remaining=config.max_requests if self.fail_open else 0,
            reset_time=now + config.window,
        )

    # -- maintenance ---------------------------------------------------------

    def status(self, identifier: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Active windows for an identifier, for the admin dashboard."""
        now = self._now(now)
        entries = []
        for record in self.store.list_active(identifier, now):
            config = self.configs.get(record.action)
            limit = config.max_requests if config else None
            entries.append({
                "action": record.action,
                "count": record.count,
                "limit": limit,
                "remaining": max(0, limit - record.count) if limit is not None else None,
                "reset_time": record.window_end.isoformat(),
                "blocked": record.is_blocked(now),
                "blocked_until": record.blocked_until.isoformat() if record.blocked_until else None,
            })
        return entries

    def reset(self, identifier: str, action: Optional[str] = None) -> int:
        """Drop counters (and blocks) for an identifier, optionally one action."""
        removed = self.store.reset(identifier, action)
        logger.info(f"Reset rate limits for {identifier}{f' on {action}' if action else ''}")
        return removed

    def cleanup(self, older_than: timedelta = timedelta(hours=24), now: Optional[datetime] = None) -> int:
        """Delete windows that ended more than `older_than` ago."""
        removed = self.store.cleanup(self._now(now) - older_than)
        logger.info(f"Cleaned up {removed} old rate limit entries")
        return removed
