"""Preference gating and quiet-hour arithmetic.

Pure functions over :class:`NotificationPreference`; the dispatcher loads
(or defaults) the record and asks these helpers what to do with it.
"""

from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional

from notifier.domain.models import (
    DEFAULT_CHANNELS,
    NotificationCategory,
    NotificationChannel,
    NotificationPreference,
)
from notifier.utils.timestamps import ensure_utc, get_zone

CATEGORY_FLAGS = {
    NotificationCategory.TASK: "task_notifications",
    NotificationCategory.PROJECT: "project_notifications",
    NotificationCategory.MEETING: "meeting_notifications",
    NotificationCategory.REPORT: "report_notifications",
    NotificationCategory.SYSTEM: "system_notifications",
}

CATEGORY_EMAIL_FLAGS = {
    NotificationCategory.TASK: "task_email",
    NotificationCategory.PROJECT: "project_email",
    NotificationCategory.MEETING: "meeting_email",
    NotificationCategory.REPORT: "report_email",
    NotificationCategory.SYSTEM: "system_email",
}


def category_enabled(preference: NotificationPreference, category: NotificationCategory) -> bool:
    """Whether the user wants notifications of ``category`` at all."""
    return getattr(preference, CATEGORY_FLAGS[NotificationCategory(category)])


def resolve_channels(
    preference: NotificationPreference,
    category: NotificationCategory,
    requested: Optional[Iterable[NotificationChannel]] = None,
) -> List[NotificationChannel]:
    """Intersect the requested channels with what the user allows.

    Args:
        preference: Recipient preferences
        category: Category of the notification
        requested: Channels asked for by the creator (default: in-app + email)

    Returns:
        Allowed channels, in request order without duplicates
    """
    channels = []
    for channel in requested if requested is not None else DEFAULT_CHANNELS:
        channel = NotificationChannel(channel)
        if channel in channels:
            continue
        if channel == NotificationChannel.IN_APP and not preference.enable_in_app:
            continue
        if channel == NotificationChannel.EMAIL and not (
            preference.enable_email
            and getattr(preference, CATEGORY_EMAIL_FLAGS[NotificationCategory(category)])
        ):
            continue
        if channel == NotificationChannel.PUSH and not preference.enable_push:
            continue
        channels.append(channel)
    return channels


def _clock_time(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(preference: NotificationPreference, at: datetime) -> bool:
    """Whether ``at`` falls inside the user's quiet period.

    The period may wrap midnight (22:00-08:00). Equal start and end means
    no quiet period.
    """
    if not preference.quiet_hours_enabled:
        return False

    start = _clock_time(preference.quiet_hours_start)
    end = _clock_time(preference.quiet_hours_end)
    if start == end:
        return False

    local = ensure_utc(at).astimezone(get_zone(preference.quiet_hours_timezone)).time()
    if start < end:
        return start <= local < end
    return local >= start or local < end


def quiet_hours_end(preference: NotificationPreference, at: datetime) -> datetime:
    """The UTC instant at which the quiet period containing ``at`` ends.

    Callers check :func:`in_quiet_hours` first; for an instant outside the
    quiet period the next end time is returned.
    """
    zone = get_zone(preference.quiet_hours_timezone)
    local = ensure_utc(at).astimezone(zone)
    end = _clock_time(preference.quiet_hours_end)

    candidate = datetime.combine(local.date(), end, tzinfo=zone)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), end, tzinfo=zone)
    return ensure_utc(candidate)
