"""Formatting and clock utilities."""

import time
from datetime import datetime


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def format_local_date(epoch_ms: int) -> str:
    """Local calendar day (YYYY-MM-DD) for an epoch-ms timestamp."""
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d")


def format_timestamp(epoch_ms: int | None) -> str:
    """Human-readable local time, or 'Never' for missing values."""
    if not epoch_ms:
        return "Never"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_time_ago(epoch_ms: int | None, now: int | None = None) -> str:
    """Relative time such as '5 minutes ago'."""
    if not epoch_ms:
        return "Never"
    if now is None:
        now = now_ms()
    seconds = max((now - epoch_ms) // 1000, 0)
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"
