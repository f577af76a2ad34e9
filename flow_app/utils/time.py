"""
Time utilities for trade timestamps, minute buckets and days-to-expiry.

All datetimes handled by the pipeline are timezone-aware UTC.
"""

from datetime import UTC, date, datetime, timedelta
from typing import Optional


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(utc_now().timestamp() * 1000)


def from_epoch_ms(epoch_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime(1970, 1, 1, tzinfo=UTC) + timedelta(milliseconds=epoch_ms)


def to_epoch_ms(ts: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return (ts - datetime(1970, 1, 1, tzinfo=UTC)) // timedelta(milliseconds=1)


def ensure_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def truncate_to_minute(ts: datetime) -> datetime:
    """Round a timestamp down to the start of its UTC minute."""
    return ensure_utc(ts).replace(second=0, microsecond=0)


def floor_to_bucket(ts: datetime, bucket_minutes: int) -> datetime:
    """
    Round a timestamp down to a bucket boundary of ``bucket_minutes`` width.

    Boundaries are aligned to the epoch, so 60-minute buckets start on the hour.
    """
    minute = truncate_to_minute(ts)
    epoch_minutes = to_epoch_ms(minute) // 60_000
    return from_epoch_ms((epoch_minutes - epoch_minutes % bucket_minutes) * 60_000)


def days_to_expiry(expiry: Optional[date], trade_date: date) -> Optional[int]:
    """Whole calendar days from trade date to expiry, None if expiry unknown."""
    if expiry is None:
        return None
    return (expiry - trade_date).days


def hours_ago(hours: float, now: Optional[datetime] = None) -> datetime:
    """Timestamp ``hours`` before ``now`` (defaults to wall clock)."""
    return (now or utc_now()) - timedelta(hours=hours)
