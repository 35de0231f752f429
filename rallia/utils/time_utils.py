from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expiry_from(now: datetime, days: int) -> datetime:
    """Expiry timestamp for a request created at ``now``."""
    return now + timedelta(days=days)


def days_left(expires_at: datetime, now: datetime = None) -> int:
    """Whole days remaining before ``expires_at`` (0 once expired)."""
    now = now or utc_now()
    remaining = expires_at - now
    if remaining.total_seconds() <= 0:
        return 0
    return remaining.days
