"""Datetime utilities for consistent timezone handling."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Get current UTC time as a naive datetime.

    All DateTime columns store naive UTC, so values produced here compare
    cleanly with values read back from the database.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_remaining(seconds: int) -> str:
    """Human readable "time left" used in rate-limit and expiry messages."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"
