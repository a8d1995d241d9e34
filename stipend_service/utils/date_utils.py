"""Date manipulation utilities"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_rfc3339(value: Optional[datetime]) -> str:
    """RFC-3339 UTC timestamp with a trailing Z; None renders blank"""
    if value is None:
        return ""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
