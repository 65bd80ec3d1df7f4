"""Time Utilities for UTC management"""

from datetime import datetime, timezone


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime.
    Columns are TIMESTAMP WITHOUT TIME ZONE and store UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_ms(started_at: datetime) -> int:
    """Milliseconds between a naive UTC timestamp and now."""
    return int((get_utc_now() - started_at).total_seconds() * 1000)
