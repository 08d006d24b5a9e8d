"""
Unit tests for utility functions.
"""

from datetime import datetime, timedelta, timezone

import pytest

from todo_api.utils import calculate_expiration, ensure_utc, normalize_email

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestNormalizeEmail:
    """Test email normalization."""

    def test_lowercases_and_strips(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    def test_already_normalized(self):
        assert normalize_email("bob@example.com") == "bob@example.com"


class TestEnsureUtc:

    def test_naive_is_treated_as_utc(self):
        naive = datetime(2025, 1, 1, 12, 0)
        assert ensure_utc(naive) == START
        assert ensure_utc(naive).tzinfo == timezone.utc

    def test_aware_is_converted(self):
        plus_two = START.astimezone(timezone(timedelta(hours=2)))
        result = ensure_utc(plus_two)
        assert result == START
        assert result.utcoffset() == timedelta(0)


class TestCalculateExpiration:
    """Expiration: now > started_time + duration minutes."""

    @pytest.mark.parametrize(
        "started_time, duration",
        [(None, 30), (START, None), (None, None)],
    )
    def test_missing_inputs_never_expire(self, started_time, duration):
        far_future = START + timedelta(days=365)
        assert calculate_expiration(started_time, duration, far_future) is False

    def test_exact_end_of_window_is_not_expired(self):
        assert calculate_expiration(START, 30, START + timedelta(minutes=30)) is False

    def test_after_window_is_expired(self):
        assert calculate_expiration(START, 30, START + timedelta(minutes=30, microseconds=1)) is True

    def test_inside_window_is_not_expired(self):
        assert calculate_expiration(START, 30, START + timedelta(minutes=5)) is False

    def test_naive_started_time_from_store(self):
        naive_start = START.replace(tzinfo=None)
        assert calculate_expiration(naive_start, 1, START + timedelta(minutes=2)) is True

    def test_defaults_to_current_time(self):
        long_ago = datetime.now(timezone.utc) - timedelta(days=1)
        assert calculate_expiration(long_ago, 10) is True
        assert calculate_expiration(datetime.now(timezone.utc), 60) is False
