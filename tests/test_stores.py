"""
Tests for the Supabase-backed stores.

The Supabase client is replaced with a MagicMock whose query builder returns
itself for every chained call, so only the final execute() result matters.
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from community.services.moderation_store import InMemoryModerationStore, SupabaseModerationStore
from community.services.rate_limit_store import (
    InMemoryRateLimitStore,
    RateLimitRecord,
    SupabaseRateLimitStore,
)
from community.utils.errors import ModerationStoreError, RateLimitStoreError


CHAIN_METHODS = ("select", "insert", "update", "delete", "eq", "gt", "lte", "or_", "order", "limit")

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _mock_client(data=None, error=None):
    """Supabase client whose every query resolves to `data` (or raises `error`)."""
    query = MagicMock()
    for name in CHAIN_METHODS:
        getattr(query, name).return_value = query
    if error is not None:
        query.execute.side_effect = error
    else:
        query.execute.return_value = MagicMock(data=data)

    client = MagicMock()
    client.table.return_value = query
    client.rpc.return_value = query
    return client, query


def _rate_row(**overrides):
    row = {
        "identifier": "user:1",
        "action": "login",
        "window_start": "2026-01-01T12:00:00.000000Z",
        "window_end": "2026-01-01T12:15:00.000000Z",
        "count": 3,
        "blocked": False,
        "blocked_until": None,
    }
    row.update(overrides)
    return row


class TestSupabaseRateLimitStore:

    def test_increment_calls_rpc_with_window(self):
        client, _ = _mock_client(data=[_rate_row(count=1)])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        record = store.increment("user:1", "login", NOW, NOW + timedelta(minutes=15))

        client.rpc.assert_called_once_with("increment_rate_limit", {
            "p_identifier": "user:1",
            "p_action": "login",
            "p_window_start": "2026-01-01T12:00:00.000000Z",
            "p_window_end": "2026-01-01T12:15:00.000000Z",
        })
        assert record.count == 1
        assert record.window_start == NOW

    def test_hit_fixed_calls_rpc_with_window_length(self):
        client, _ = _mock_client(data=[_rate_row(count=2)])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        record = store.hit_fixed("user:1", "login", NOW, timedelta(minutes=15))

        client.rpc.assert_called_once_with("hit_fixed_rate_limit", {
            "p_identifier": "user:1",
            "p_action": "login",
            "p_now": "2026-01-01T12:00:00.000000Z",
            "p_window_seconds": 900,
        })
        assert record.count == 2
        assert record.window_end == NOW + timedelta(minutes=15)

    def test_hit_fixed_without_row_raises(self):
        client, _ = _mock_client(data=None)
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        with pytest.raises(RateLimitStoreError):
            store.hit_fixed("user:1", "login", NOW, timedelta(minutes=15))

    def test_sliding_lookup_ignores_fixed_record(self):
        client, query = _mock_client(data=[])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        assert store.get_record("user:1", "login", NOW) is None
        query.eq.assert_any_call("strategy", "sliding")

    def test_increment_accepts_single_row_response(self):

        client, _ = _mock_client(data=_rate_row(count=7))
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        assert store.increment("user:1", "login", NOW, NOW + timedelta(minutes=15)).count == 7

    def test_increment_without_row_raises(self):
        client, _ = _mock_client(data=[])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        with pytest.raises(RateLimitStoreError):
            store.increment("user:1", "login", NOW, NOW + timedelta(minutes=15))

    def test_find_block_parses_row(self):
        client, query = _mock_client(data=[_rate_row(blocked=True, blocked_until="2026-01-01T12:30:00Z")])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        record = store.find_block("user:1", "login", NOW)

        client.table.assert_called_with("rate_limits")
        query.gt.assert_called_with("blocked_until", "2026-01-01T12:00:00.000000Z")
        assert record.is_blocked(NOW)
        assert record.blocked_until == NOW + timedelta(minutes=30)

    def test_find_block_none_when_empty(self):
        client, _ = _mock_client(data=[])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        assert store.find_block("user:1", "login", NOW) is None

    def test_backend_errors_are_wrapped(self):
        client, _ = _mock_client(error=RuntimeError("connection refused"))
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        with pytest.raises(RateLimitStoreError) as exc:
            store.get_record("user:1", "login", NOW)

        assert "connection refused" in str(exc.value)

    def test_missing_client_raises(self):
        store = SupabaseRateLimitStore(client_factory=lambda: None)

        with pytest.raises(RateLimitStoreError):
            store.find_block("user:1", "login", NOW)

    def test_reset_filters_by_action(self):
        client, query = _mock_client(data=[_rate_row(), _rate_row()])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        removed = store.reset("user:1", "login")

        assert removed == 2
        query.eq.assert_any_call("identifier", "user:1")
        query.eq.assert_any_call("action", "login")

    def test_cleanup_keeps_active_blocks(self):
        client, query = _mock_client(data=[_rate_row()])
        store = SupabaseRateLimitStore(client_factory=lambda: client)

        removed = store.cleanup(NOW)

        assert removed == 1
        query.lte.assert_called_once_with("window_end", "2026-01-01T12:00:00.000000Z")
        query.or_.assert_called_once_with("blocked.eq.false,blocked_until.lte.2026-01-01T12:00:00.000000Z")


class TestInMemoryRateLimitStore:

    def test_increment_returns_snapshot(self):
        store = InMemoryRateLimitStore()

        first = store.increment("user:1", "login", NOW, NOW + timedelta(minutes=1))
        store.increment("user:1", "login", NOW, NOW + timedelta(minutes=1))

        assert first.count == 1
        assert store.get_record("user:1", "login", NOW).count == 2

    def test_set_blocked_and_find_block(self):
        store = InMemoryRateLimitStore()
        store.increment("user:1", "login", NOW, NOW + timedelta(minutes=1))

        store.set_blocked("user:1", "login", NOW, NOW + timedelta(minutes=30))

        assert store.find_block("user:1", "login", NOW + timedelta(minutes=5)) is not None
        assert store.find_block("user:1", "login", NOW + timedelta(minutes=31)) is None
        assert store.find_block("user:1", "register", NOW) is None

    def test_record_from_row_defaults(self):
        record = RateLimitRecord.from_row({
            "identifier": "ip:10.0.0.1",
            "action": "search",
            "window_start": "2026-01-01T12:00:00Z",
            "window_end": "2026-01-01T12:01:00Z",
        })

        assert record.count == 0
        assert record.blocked is False
        assert record.blocked_until is None

    def test_record_from_row_accepts_five_digit_fraction(self):
        record = RateLimitRecord.from_row(_rate_row(
            window_start="2026-01-01T12:00:00.12345+00:00",
            window_end="2026-01-01T12:15:00.12345+00:00",
        ))

        assert record.window_start == NOW.replace(microsecond=123450)
        assert record.window_end - record.window_start == timedelta(minutes=15)

    def test_record_from_row_rejects_unreadable_window(self):
        with pytest.raises(RateLimitStoreError):
            RateLimitRecord.from_row(_rate_row(window_end="not a time"))

    def test_hit_fixed_counts_within_window(self):
        store = InMemoryRateLimitStore()

        store.hit_fixed("user:1", "login", NOW, timedelta(minutes=1))
        record = store.hit_fixed("user:1", "login", NOW + timedelta(seconds=30), timedelta(minutes=1))

        assert record.count == 2
        assert record.window_start == NOW
        assert record.window_end == NOW + timedelta(minutes=1)

    def test_hit_fixed_restarts_ended_window(self):
        store = InMemoryRateLimitStore()
        store.hit_fixed("user:1", "login", NOW, timedelta(minutes=1))

        record = store.hit_fixed("user:1", "login", NOW + timedelta(seconds=60), timedelta(minutes=1))

        assert record.count == 1
        assert record.window_start == NOW + timedelta(seconds=60)
        assert len(store.list_active("user:1", NOW + timedelta(seconds=60))) == 1

    def test_hit_fixed_keeps_running_block(self):
        store = InMemoryRateLimitStore()
        store.hit_fixed("user:1", "login", NOW, timedelta(minutes=1))
        store.set_blocked("user:1", "login", NOW, NOW + timedelta(minutes=30))

        store.hit_fixed("user:1", "login", NOW + timedelta(minutes=2), timedelta(minutes=1))

        assert store.find_block("user:1", "login", NOW + timedelta(minutes=2)) is not None

    def test_hit_fixed_counts_every_concurrent_hit(self):
        store = InMemoryRateLimitStore()
        barrier = threading.Barrier(20)

        def hit():
            barrier.wait()
            store.hit_fixed("user:1", "login", NOW, timedelta(minutes=1))

        threads = [threading.Thread(target=hit) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.list_active("user:1", NOW)[0].count == 20

    def test_returned_records_are_copies(self):
        store = InMemoryRateLimitStore()
        store.increment("user:1", "login", NOW, NOW + timedelta(minutes=1))

        store.get_record("user:1", "login", NOW).count = 99
        store.list_active("user:1", NOW)[0].blocked = True

        record = store.get_record("user:1", "login", NOW)
        assert record.count == 1
        assert record.blocked is False



class TestSupabaseModerationStore:

    def test_list_rules_orders_by_severity(self):
        rows = [
            {"id": "1", "name": "spam", "keywords": ["offer"], "content_types": ["listing"], "severity": "medium"},
            {"id": "2", "name": "threats", "keywords": ["attack"], "content_types": ["listing"], "severity": "critical"},
        ]
        client, query = _mock_client(data=rows)
        store = SupabaseModerationStore(client_factory=lambda: client)

        rules = store.list_rules(active_only=True)

        query.eq.assert_called_once_with("is_active", True)
        assert [r.id for r in rules] == ["2", "1"]

    def test_create_rule_fills_defaults(self):
        client, query = _mock_client(data=[{
            "id": "abc",
            "name": "spam",
            "keywords": ["offer"],
            "content_types": ["listing"],
            "severity": "low",
            "action": "flag",
        }])
        store = SupabaseModerationStore(client_factory=lambda: client)

        rule = store.create_rule({"name": "spam", "keywords": ["offer"], "content_types": ["listing"], "bogus": 1})

        inserted = query.insert.call_args[0][0]
        assert inserted["whole_word_only"] is True
        assert inserted["is_active"] is True
        assert "bogus" not in inserted
        assert rule.id == "abc"

    def test_log_flagged_inserts_row(self):
        client, query = _mock_client(data=[{"id": "f1", "status": "pending"}])
        store = SupabaseModerationStore(client_factory=lambda: client)

        entry = store.log_flagged("message", "m1", "text", "u1", "r1", ["scam"], "high")

        client.table.assert_called_with("flagged_content")
        assert query.insert.call_args[0][0]["flagged_keywords"] == ["scam"]
        assert entry["id"] == "f1"

    def test_get_rule_missing_returns_none(self):
        client, _ = _mock_client(data=[])
        store = SupabaseModerationStore(client_factory=lambda: client)

        assert store.get_rule("missing") is None

    def test_backend_errors_are_wrapped(self):
        client, _ = _mock_client(error=RuntimeError("boom"))
        store = SupabaseModerationStore(client_factory=lambda: client)

        with pytest.raises(ModerationStoreError):
            store.list_rules()

    def test_missing_client_raises(self):
        store = SupabaseModerationStore(client_factory=lambda: None)

        with pytest.raises(ModerationStoreError):
            store.has_rules()


class TestInMemoryModerationStore:

    def test_update_rule_ignores_unknown_fields(self):
        store = InMemoryModerationStore()
        rule = store.create_rule({"name": "spam", "keywords": ["offer"], "content_types": ["listing"]})

        updated = store.update_rule(rule.id, {"severity": "high", "id": "hijack"})

        assert updated.id == rule.id
        assert updated.severity == "high"
        assert updated.updated_at is not None

    def test_update_and_delete_missing_rule(self):
        store = InMemoryModerationStore()

        assert store.update_rule("missing", {"severity": "high"}) is None
        assert store.delete_rule("missing") is False

    def test_list_flagged_filters_status(self):
        store = InMemoryModerationStore()
        pending = store.log_flagged("message", "m1", "a", None, None, ["x"], "low")
        store.log_flagged("message", "m2", "b", None, None, ["y"], "critical", status="removed")

        entries = store.list_flagged(status="pending")

        assert [e["id"] for e in entries] == [pending["id"]]

    def test_returned_rules_are_copies(self):
        store = InMemoryModerationStore()
        rule = store.create_rule({"name": "spam", "keywords": ["offer"], "content_types": ["listing"]})

        rule.keywords.append("leaked")
        store.get_rule(rule.id).is_active = False
        store.list_rules()[0].severity = "critical"

        stored = store.get_rule(rule.id)
        assert stored.keywords == ["offer"]
        assert stored.is_active is True
        assert stored.severity == "low"

    def test_returned_flagged_entries_are_copies(self):
        store = InMemoryModerationStore()
        entry = store.log_flagged("message", "m1", "a", None, None, ["x"], "low")

        entry["flagged_keywords"].append("y")
        store.get_flagged(entry["id"])["status"] = "approved"
        store.list_flagged()[0]["flagged_keywords"].clear()

        stored = store.get_flagged(entry["id"])
        assert stored["status"] == "pending"
        assert stored["flagged_keywords"] == ["x"]
