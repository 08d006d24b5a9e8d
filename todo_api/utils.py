"""Utility functions for common operations across the application."""

from datetime import datetime, timedelta, timezone


def normalize_email(email: str) -> str:
    """Convert email to lowercase and strip whitespace."""
    return email.strip().lower()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC.

    SQLite hands timestamps back without an offset; everything this service
    writes is UTC, so the offset can be restored safely.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def calculate_expiration(
    started_time: datetime | None,
    duration: int | None,
    now: datetime | None = None,
) -> bool:
    """Whether a todo's window of `duration` minutes from `started_time` has elapsed.

    Missing start time or duration means the todo can never expire. The exact
    end of the window still counts as not expired.
    """
    if started_time is None or duration is None:
        return False
    expires_at = ensure_utc(started_time) + timedelta(minutes=duration)
    return ensure_utc(now or utcnow()) > expires_at
