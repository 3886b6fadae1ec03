"""Duration parsing for time-span settings (retry backoff, reminder windows)."""

import re
from datetime import timedelta

_ISO_PATTERN = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
)
_HUMAN_PATTERN = re.compile(r"(\d+)\s*([smhd])")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed."""


def parse_duration(duration_str: str) -> int:
    """
    Parse a duration string to seconds.

    Supports both human-readable formats and ISO-8601 durations:
    - Human-readable: "15m", "2h", "30s", "30d", "1h30m"
    - ISO-8601: "PT15M", "PT2H", "P30D"

    Args:
        duration_str: Duration string to parse

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the duration string is invalid or zero

    Examples:
        >>> parse_duration("5m")
        300
        >>> parse_duration("PT2H")
        7200
    """
    if not isinstance(duration_str, str):
        raise DurationParseError(f"Duration must be a string, got {type(duration_str).__name__}")

    cleaned = duration_str.strip()
    if not cleaned:
        raise DurationParseError("Duration string cannot be empty")

    if cleaned.upper().startswith("P"):
        seconds = _parse_iso8601(cleaned.upper())
    else:
        seconds = _parse_human_readable(cleaned.lower())

    if seconds == 0:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")

    return seconds


def parse_timedelta(duration_str: str) -> timedelta:
    """Parse a duration string into a ``timedelta``.

    Args:
        duration_str: Duration string accepted by :func:`parse_duration`

    Returns:
        Equivalent timedelta
    """
    return timedelta(seconds=parse_duration(duration_str))


def _parse_iso8601(value: str) -> int:
    match = _ISO_PATTERN.match(value)
    if not match or value in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{value}'. "
            "Expected format like 'P30D', 'PT2H', 'PT15M', or 'PT30S'"
        )

    days, hours, minutes, seconds = match.groups()
    total = 0
    if days:
        total += int(days) * _UNIT_SECONDS["d"]
    if hours:
        total += int(hours) * _UNIT_SECONDS["h"]
    if minutes:
        total += int(minutes) * _UNIT_SECONDS["m"]
    if seconds:
        total += int(float(seconds))
    return total


def _parse_human_readable(value: str) -> int:
    matches = _HUMAN_PATTERN.findall(value)
    if not matches:
        raise DurationParseError(
            f"Invalid duration format: '{value}'. "
            "Expected format like '5m', '2h', '30s', '30d', or combinations like '1h30m'"
        )

    # Reject trailing garbage such as "5m!" or "2 hours"
    consumed = "".join(f"{num}{unit}" for num, unit in matches)
    if consumed != re.sub(r"\s+", "", value):
        raise DurationParseError(
            f"Invalid characters in duration: '{value}'. "
            "Use only digits and units: s (seconds), m (minutes), h (hours), d (days)"
        )

    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in matches)


def validate_duration_range(
    duration_seconds: int,
    setting: str,
    min_seconds: int,
    max_seconds: int,
) -> None:
    """
    Validate that a parsed duration lies within an accepted range.

    Args:
        duration_seconds: Duration in seconds to validate
        setting: Name of the setting, used in the error message
        min_seconds: Smallest accepted value
        max_seconds: Largest accepted value

    Raises:
        DurationParseError: If duration is outside the range
    """
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{setting} too short: {humanize_seconds(duration_seconds)}. "
            f"Minimum is {humanize_seconds(min_seconds)}."
        )

    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{setting} too long: {humanize_seconds(duration_seconds)}. "
            f"Maximum is {humanize_seconds(max_seconds)}."
        )


def humanize_seconds(seconds: int) -> str:
    """
    Convert seconds to a short human-readable phrase.

    Args:
        seconds: Number of seconds

    Returns:
        Phrase like "15 minutes", "1 hour" or "30 days"
    """
    for unit_seconds, label in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            return f"{count} {label}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
