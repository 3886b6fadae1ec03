"""Timestamp utilities for UTC handling and local-time conversion.

All instants handled by the service are timezone-aware. Storage and
comparisons happen in UTC; organization-local wall clock time is only used
for week anchoring, due-time computation and quiet hours.
"""

from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Injected everywhere "now" is needed so tests can freeze time.
Clock = Callable[[], datetime]

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Args:
        name: Zone name such as "UTC" or "Europe/Berlin"

    Returns:
        ZoneInfo instance

    Raises:
        ValueError: If the zone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: '{name}'") from e


def to_local(dt: datetime, zone: ZoneInfo) -> datetime:
    """Convert an instant to wall clock time in the given zone."""
    return ensure_utc(dt).astimezone(zone)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as the fixed-width UTC string used for storage.

    Fixed width keeps lexical order equal to chronological order, which the
    persistence layer relies on for range filters.

    Args:
        dt: Datetime to format (naive values are treated as UTC)

    Returns:
        String like ``2025-11-04T12:00:00.000000Z`` or None
    """
    if dt is None:
        return None
    return ensure_utc(dt).strftime(STORAGE_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp string back into an aware UTC datetime.

    Accepts the storage format as well as the variant without microseconds.

    Args:
        value: Stored timestamp string

    Returns:
        Timezone-aware datetime in UTC, or None for empty input
    """
    if not value:
        return None

    cleaned = value.rstrip("Z")
    try:
        dt = datetime.strptime(cleaned, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(cleaned, "%Y-%m-%dT%H:%M:%S")
    return dt.replace(tzinfo=timezone.utc)


def format_timestamp_for_log(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for structured logging (second precision)."""
    if dt is None:
        return None
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
