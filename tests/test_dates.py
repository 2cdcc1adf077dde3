"""
Tests for database timestamp parsing and formatting.
"""

from datetime import datetime, timedelta, timezone

import pytest

from community.utils.dates import parse_timestamp, to_db_timestamp


NOON = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestParseTimestamp:

    @pytest.mark.parametrize("value, microsecond", [
        ("2026-01-01T12:00:00+00:00", 0),
        ("2026-01-01T12:00:00.5+00:00", 500000),
        ("2026-01-01T12:00:00.12345+00:00", 123450),
        ("2026-01-01T12:00:00.123456Z", 123456),
        ("2026-01-01T12:00:00.1234567+00:00", 123456),
    ])
    def test_fraction_lengths(self, value, microsecond):
        assert parse_timestamp(value) == NOON.replace(microsecond=microsecond)

    def test_offsets_are_converted_to_utc(self):
        assert parse_timestamp("2026-01-01T14:00:00.12345+02:00") == NOON.replace(microsecond=123450)

    def test_naive_values_are_utc(self):
        assert parse_timestamp("2026-01-01 12:00:00") == NOON

    def test_datetimes_pass_through(self):
        eastern = timezone(timedelta(hours=-5))

        assert parse_timestamp(datetime(2026, 1, 1, 7, 0, tzinfo=eastern)) == NOON

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_missing_or_garbage_is_none(self, value):
        assert parse_timestamp(value) is None


def test_db_timestamp_uses_z_suffix():
    assert to_db_timestamp(NOON.replace(microsecond=120)) == "2026-01-01T12:00:00.000120Z"
