"""
Time utilities for the range receiver.

Telemetry timestamps are integer milliseconds since the Unix epoch (UTC);
these helpers convert between that and timezone-aware datetimes.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

# Values below this are taken to be seconds rather than milliseconds
# (1e11 ms is March 1973, 1e11 s is far in the future)
SECONDS_CUTOFF = 100_000_000_000


def utc_now() -> datetime:
    """
    Get current UTC time with timezone info.

    Example:
        >>> now = utc_now()
        >>> print(now.tzinfo)
        UTC
    """
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def normalize_timestamp_ms(value: float) -> int:
    """
    Coerce a Unix timestamp in seconds or milliseconds to milliseconds.

    Examples:
        >>> normalize_timestamp_ms(1705329000)
        1705329000000
        >>> normalize_timestamp_ms(1705329000123)
        1705329000123
    """
    if abs(value) < SECONDS_CUTOFF:
        return int(round(value * 1000))
    return int(value)


def ms_to_datetime(timestamp_ms: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds to an aware UTC datetime (None passes through)."""
    if timestamp_ms is None:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def ms_to_iso(timestamp_ms: Optional[int]) -> Optional[str]:
    """Convert epoch milliseconds to an ISO 8601 string (None passes through)."""
    dt = ms_to_datetime(timestamp_ms)
    return dt.isoformat() if dt else None


def parse_timestamp_ms(value: str, default: Optional[int] = None) -> Optional[int]:
    """
    Parse a timestamp string into epoch milliseconds.

    Accepts numeric strings (seconds or milliseconds) and anything dateutil
    understands ("2024-01-15T14:30:00Z", "2024-01-15 14:30:00+02:00").
    Naive date/times are taken as UTC.

    Example:
        >>> parse_timestamp_ms("2024-01-15T14:30:00Z")
        1705329000000
        >>> parse_timestamp_ms("not a time")
        None
    """
    if not value:
        return default

    value = value.strip()
    try:
        number = float(value)
    except ValueError:
        number = None
    if number is not None:
        return normalize_timestamp_ms(number) if math.isfinite(number) else default

    try:
        dt = date_parser.parse(value)
    except (ValueError, OverflowError):
        logger.warning(f"Failed to parse timestamp string: {value}")
        return default

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))
