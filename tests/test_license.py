"""Unit tests for license expiry parsing and checks."""

from datetime import datetime, timedelta, timezone

import pytest

from src.signage.license import is_expired, license_expired, parse_timestamp


class TestParseTimestamp:
    """Tests for parse_timestamp()."""

    def test_millis_utc(self):
        parsed = parse_timestamp("2025-03-01T12:30:45.123Z")
        assert parsed == datetime(2025, 3, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)

    def test_seconds_utc(self):
        parsed = parse_timestamp("2025-03-01T12:30:45Z")
        assert parsed == datetime(2025, 3, 1, 12, 30, 45, tzinfo=timezone.utc)

    def test_local_layouts_are_device_local(self):
        """Layouts without Z are read as local wall-clock time."""
        expected = datetime(2025, 3, 1, 12, 30, 45).astimezone()
        assert parse_timestamp("2025-03-01T12:30:45") == expected
        assert parse_timestamp("2025-03-01 12:30:45") == expected

    def test_date_only(self):
        assert parse_timestamp("2024-01-01") == datetime(2024, 1, 1).astimezone()

    def test_results_are_timezone_aware(self):
        for raw in ("2025-03-01T12:30:45Z", "2025-03-01T12:30:45", "2025-03-01"):
            assert parse_timestamp(raw).tzinfo is not None

    def test_strips_quotes_and_whitespace(self):
        assert parse_timestamp(' "2025-03-01T12:30:45Z" ') == parse_timestamp("2025-03-01T12:30:45Z")

    @pytest.mark.parametrize("raw", [None, "", "null", '"null"', "   "])
    def test_empty_values(self, raw):
        assert parse_timestamp(raw) is None

    @pytest.mark.parametrize("raw", ["tomorrow", "01/02/2025", "2025-13-01", "2025-03-01T12:30:45+02:00"])
    def test_unparseable_values(self, raw):
        assert parse_timestamp(raw) is None

    def test_deterministic(self):
        raw = "2025-03-01T12:30:45.5Z"
        assert parse_timestamp(raw) == parse_timestamp(raw)


class TestIsExpired:
    """Tests for is_expired() and license_expired()."""

    def test_unknown_is_not_expired(self):
        assert is_expired(None) is False

    def test_past_is_expired(self):
        now = datetime(2025, 1, 2, tzinfo=timezone.utc)
        assert is_expired(now - timedelta(seconds=1), now=now) is True

    def test_future_is_not_expired(self):
        now = datetime(2025, 1, 2, tzinfo=timezone.utc)
        assert is_expired(now + timedelta(days=1), now=now) is False

    def test_exact_instant_is_not_expired(self):
        now = datetime(2025, 1, 2, tzinfo=timezone.utc)
        assert is_expired(now, now=now) is False

    def test_defaults_to_current_time(self):
        assert is_expired(datetime.now(timezone.utc) - timedelta(minutes=1)) is True
        assert is_expired(datetime.now(timezone.utc) + timedelta(minutes=1)) is False

    def test_license_expired_from_raw(self):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert license_expired("2024-01-01T00:00:00Z", now=now) is True
        assert license_expired("2026-01-01T00:00:00Z", now=now) is False

    def test_garbage_fails_open(self):
        assert license_expired("not a date") is False
        assert license_expired(None) is False
