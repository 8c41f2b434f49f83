"""Utility functions for patch-health-hub."""

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """
    Get current UTC time with timezone awareness.

    Returns:
        datetime: Current UTC time with timezone info
    """
    return datetime.now(timezone.utc)


def parse_timestamp(timestamp: Any) -> Optional[datetime]:
    """
    Parse an API timestamp into a timezone-aware datetime.

    Accepts epoch seconds or milliseconds, ISO 8601 strings (with or
    without a trailing 'Z') and datetime objects. Anything else yields None.

    Args:
        timestamp: Raw timestamp value from the API

    Returns:
        datetime: Parsed UTC datetime, or None if missing or unparseable
    """
    if timestamp is None or timestamp == '':
        return None
    try:
        if isinstance(timestamp, datetime):
            parsed = timestamp
        elif isinstance(timestamp, bool):
            return None
        elif isinstance(timestamp, (int, float)):
            # Epoch values above 1e11 are milliseconds
            seconds = timestamp / 1000 if timestamp > 1e11 else timestamp
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif isinstance(timestamp, str):
            value = timestamp.strip()
            if value.endswith('Z'):
                value = value[:-1] + '+00:00'
            parsed = datetime.fromisoformat(value)
        else:
            return None
    except (ValueError, TypeError, OSError, OverflowError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
