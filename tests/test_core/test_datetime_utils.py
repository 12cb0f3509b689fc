"""Tests for datetime_utils."""

from datetime import UTC, datetime, timedelta, timezone

from jobscope.core.datetime_utils import duration_ms, get_cutoff, to_naive_utc, utc_now


class TestUtcNow:
    def test_is_naive(self):
        """Should return a naive datetime."""
        assert utc_now().tzinfo is None

    def test_matches_aware_utc(self):
        """Should be within a second of the aware UTC clock."""
        aware = datetime.now(UTC).replace(tzinfo=None)
        assert abs((utc_now() - aware).total_seconds()) < 1


class TestGetCutoff:
    def test_combines_units(self):
        """Should subtract seconds, hours and days together."""
        cutoff = get_cutoff(seconds=30, hours=2, days=1)
        expected = utc_now() - timedelta(days=1, hours=2, seconds=30)
        assert abs((cutoff - expected).total_seconds()) < 1

    def test_defaults_to_now(self):
        assert abs((get_cutoff() - utc_now()).total_seconds()) < 1


class TestToNaiveUtc:
    def test_naive_passthrough(self):
        """Naive datetimes are assumed to already be UTC."""
        dt = datetime(2024, 1, 1, 12, 0)
        assert to_naive_utc(dt) == dt

    def test_converts_offset(self):
        """Should shift aware datetimes to UTC and drop tzinfo."""
        dt = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        result = to_naive_utc(dt)
        assert result == datetime(2024, 1, 1, 10, 0)
        assert result.tzinfo is None


class TestDurationMs:
    def test_elapsed(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        assert duration_ms(start, start + timedelta(seconds=1, milliseconds=250)) == 1250

    def test_clamped_at_zero(self):
        """Clock skew must never produce a negative duration."""
        start = datetime(2024, 1, 1, 12, 0, 0)
        assert duration_ms(start, start - timedelta(seconds=5)) == 0

    def test_mixed_awareness(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        end = datetime(2024, 1, 1, 14, 0, 1, tzinfo=timezone(timedelta(hours=2)))
        assert duration_ms(start, end) == 1000
