"""
Unit tests for datetime utilities.

Tests UTC normalisation and ISO-8601 formatting used for ABDM headers and
consent token claims.
"""

from datetime import datetime, timedelta, timezone

import pytest

from utils.datetime_utils import ensure_utc, from_timestamp, isoformat_utc, parse_iso_datetime, utc_now


class TestUtcNow:
    def test_timezone_aware(self):
        now = utc_now()

        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)


class TestEnsureUtc:
    """Test timezone normalisation."""

    def test_none_passthrough(self):
        assert ensure_utc(None) is None

    def test_naive_assumed_utc(self):
        """Test naive datetimes (as read back from SQLite) are treated as UTC."""
        naive = datetime(2025, 1, 15, 10, 30)

        result = ensure_utc(naive)

        assert result == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_other_offset_converted(self):
        ist = timezone(timedelta(hours=5, minutes=30))

        result = ensure_utc(datetime(2025, 1, 15, 16, 0, tzinfo=ist))

        assert result.tzinfo == timezone.utc
        assert result.hour == 10
        assert result.minute == 30


class TestIsoFormatting:
    def test_millisecond_precision_with_z(self):
        dt = datetime(2025, 1, 15, 10, 30, 45, 123456, tzinfo=timezone.utc)

        assert isoformat_utc(dt) == "2025-01-15T10:30:45.123Z"

    def test_round_trip(self):
        dt = datetime(2025, 1, 15, 10, 30, 45, 123000, tzinfo=timezone.utc)

        assert parse_iso_datetime(isoformat_utc(dt)) == dt

    def test_parse_offset(self):
        result = parse_iso_datetime("2025-01-15T16:00:00+05:30")

        assert result == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_iso_datetime("not a date")

    def test_from_timestamp(self):
        assert from_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
