"""Display helpers for backup sizes, dates and schedule countdowns."""

import math
from datetime import datetime, timedelta
from typing import Optional

from budget_tracker.validation import parse_iso_datetime


_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


def format_file_size(size: int) -> str:
    """
    Human-readable file size with up to two decimals.

    Examples:
        0 -> "0 Bytes", 1536 -> "1.5 KB", 1048576 -> "1 MB"
    """
    if size <= 0:
        return "0 Bytes"
    exponent = min(int(math.log(size, 1024)), len(_SIZE_UNITS) - 1)
    # log() can land just below an exact power of 1024
    if exponent + 1 < len(_SIZE_UNITS) and size >= 1024 ** (exponent + 1):
        exponent += 1
    value = f"{size / 1024 ** exponent:.2f}".rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[exponent]}"


def format_backup_date(timestamp: str) -> str:
    """Local date and time of a backup timestamp; the input itself if unparseable."""
    parsed = parse_iso_datetime(timestamp)
    if parsed is None:
        return timestamp
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime("%Y-%m-%d %H:%M:%S")


def format_time_until(target: Optional[datetime], now: datetime) -> str:
    """Countdown text for the next scheduled backup."""
    if target is None:
        return "Not scheduled"

    remaining = target - now
    if remaining <= timedelta(0):
        return "Overdue"

    days = remaining.days
    hours = remaining.seconds // 3600
    if days > 0:
        return f"In {days} day{'s' if days > 1 else ''}"
    if hours > 0:
        return f"In {hours} hour{'s' if hours > 1 else ''}"
    return "Soon"
