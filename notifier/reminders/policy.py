"""Pure reminder policy: week anchoring, due instants and classification.

Nothing in this module touches the store or the clock; every function takes
the instants it needs, which keeps the policy testable on its own.

Weekday conventions:
- Reminder weekdays are Sunday-based (0 = Sunday ... 6 = Saturday)
- Due days count from the week start (1 = Monday ... 7 = Sunday)
"""

import math
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Iterable, Optional

from notifier.utils.timestamps import ensure_utc

MEETING_TIER_STARTING_SOON = "15minutes"
MEETING_TIER_UPCOMING = "1hour"


class ReminderKind(str, Enum):
    DUE = "DUE"
    OVERDUE = "OVERDUE"


def _local(moment: datetime, zone: tzinfo) -> datetime:
    return ensure_utc(moment).astimezone(zone)


def js_weekday(day: date) -> int:
    """Sunday-based weekday number (0 = Sunday ... 6 = Saturday)."""
    return (day.weekday() + 1) % 7


def week_start(moment: datetime, zone: tzinfo) -> datetime:
    """Monday 00:00 local time of the week containing ``moment``.

    Applying it to its own result returns the same instant.
    """
    local = _local(moment, zone)
    monday = local.date() - timedelta(days=local.weekday())
    return datetime.combine(monday, time.min, tzinfo=zone)


def week_end(moment: datetime, zone: tzinfo) -> datetime:
    """Last instant of Sunday, local time, of the week containing ``moment``."""
    sunday = week_start(moment, zone).date() + timedelta(days=6)
    return datetime.combine(sunday, time.max, tzinfo=zone)


def parse_due_time(value: str) -> time:
    """Parse an "HH:MM" time of day.

    Raises:
        ValueError: If the value is not a valid 24-hour time
    """
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM") from e


def due_instant(anchor: datetime, due_day: int, due_time: str, zone: tzinfo) -> datetime:
    """Due instant for the week anchored at ``anchor``.

    Args:
        anchor: Week start (Monday 00:00 local)
        due_day: 1 = Monday ... 7 = Sunday
        due_time: "HH:MM" local time
        zone: Organization timezone

    Returns:
        Timezone-aware due instant
    """
    if not 1 <= due_day <= 7:
        raise ValueError(f"Due day must be between 1 and 7, got {due_day}")
    due_date = _local(anchor, zone).date() + timedelta(days=due_day - 1)
    return datetime.combine(due_date, parse_due_time(due_time), tzinfo=zone)


def is_reminder_day(now: datetime, zone: tzinfo, reminder_days: Iterable[int]) -> bool:
    """Whether today (local) is one of the Sunday-based ``reminder_days``."""
    return js_weekday(_local(now, zone).date()) in set(reminder_days)


def classify_reminder(
    now: datetime,
    due: datetime,
    zone: tzinfo,
    due_window: timedelta = timedelta(hours=2),
) -> Optional[ReminderKind]:
    """Decide which reminder, if any, an unsubmitted artifact gets now.

    - OVERDUE once ``now`` is past the due instant
    - DUE on the due day from ``due - due_window`` until the due instant
    - DUE on the (local) day before the due day
    - otherwise None

    Returns:
        ReminderKind or None
    """
    if now > due:
        return ReminderKind.OVERDUE

    today = _local(now, zone).date()
    due_date = _local(due, zone).date()
    if due_date == today and now >= due - due_window:
        return ReminderKind.DUE
    if due_date == today + timedelta(days=1):
        return ReminderKind.DUE
    return None


def due_day_label(now: datetime, due: datetime, zone: tzinfo) -> str:
    """Return "today" when due on the local date of ``now``, else "tomorrow"."""
    return "today" if _local(now, zone).date() == _local(due, zone).date() else "tomorrow"


def compliance_rate(submitted: int, total: int) -> Optional[int]:
    """Percentage of ``total`` that submitted, rounded half up.

    Returns:
        Integer percentage, or None when there is nobody to measure
    """
    if total <= 0:
        return None
    return math.floor(submitted / total * 100 + 0.5)


def is_low_compliance(rate: Optional[int], threshold: int = 80) -> bool:
    return rate is not None and rate < threshold


def overdue_days(due: datetime, now: datetime) -> int:
    """Whole days elapsed since ``due`` (0 for less than a day)."""
    return max(0, math.floor((now - due) / timedelta(days=1)))


def meeting_tier(
    now: datetime,
    start: datetime,
    starting_soon: timedelta = timedelta(minutes=15),
    upcoming: timedelta = timedelta(hours=1),
) -> Optional[str]:
    """Reminder tier for a meeting starting at ``start``.

    The tiers do not overlap: a meeting within ``starting_soon`` is only in
    the starting-soon tier.

    Returns:
        "15minutes", "1hour" or None
    """
    if start < now:
        return None
    if start <= now + starting_soon:
        return MEETING_TIER_STARTING_SOON
    if start <= now + upcoming:
        return MEETING_TIER_UPCOMING
    return None
