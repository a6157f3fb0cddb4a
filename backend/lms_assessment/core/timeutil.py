"""
LMS Assessment Engine - Time Helpers
UTC clock and normalisation of datetimes read back from the database
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on round-trip, PostgreSQL keeps it. Every value
    stored by this service is UTC, so a naive value is UTC by construction.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
