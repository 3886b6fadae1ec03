"""Unit tests for the pure reminder policy.

Tests:
- Week anchoring (Monday 00:00 local, idempotent)
- Due instants from due day and time
- Reminder day matching (Sunday-based weekdays)
- DUE / OVERDUE classification windows
- Compliance rate rounding and thresholds
- Overdue day counting
- Meeting reminder tiers
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from notifier.reminders.policy import (
    MEETING_TIER_STARTING_SOON,
    MEETING_TIER_UPCOMING,
    ReminderKind,
    classify_reminder,
    compliance_rate,
    due_day_label,
    due_instant,
    is_low_compliance,
    is_reminder_day,
    js_weekday,
    meeting_tier,
    overdue_days,
    parse_due_time,
    week_end,
    week_start,
)
from notifier.utils.timestamps import get_zone

UTC = get_zone("UTC")
BERLIN = get_zone("Europe/Berlin")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestWeekAnchoring:
    """Test week start/end computation."""

    def test_week_start_is_monday_midnight(self):
        """Friday afternoon anchors to the preceding Monday 00:00."""
        anchor = week_start(utc(2025, 11, 7, 16, 30), UTC)
        assert anchor == utc(2025, 11, 3)

    def test_week_start_on_monday_midnight_is_unchanged(self):
        anchor = week_start(utc(2025, 11, 3), UTC)
        assert anchor == utc(2025, 11, 3)

    def test_week_start_sunday_belongs_to_previous_week(self):
        anchor = week_start(utc(2025, 11, 9, 23, 59), UTC)
        assert anchor == utc(2025, 11, 3)

    def test_week_start_is_idempotent(self):
        """Applying week_start to its own result returns the same instant."""
        for offset in range(0, 14 * 24, 5):
            moment = utc(2025, 11, 1) + timedelta(hours=offset)
            anchor = week_start(moment, BERLIN)
            assert week_start(anchor, BERLIN) == anchor

    def test_week_start_uses_local_date(self):
        """Sunday 23:30 UTC is already Monday in Berlin."""
        anchor = week_start(utc(2025, 11, 9, 23, 30), BERLIN)
        assert anchor.date() == date(2025, 11, 10)
        assert anchor.utcoffset() == timedelta(hours=1)

    def test_week_end_is_last_instant_of_sunday(self):
        end = week_end(utc(2025, 11, 5, 12), UTC)
        assert end.date() == date(2025, 11, 9)
        assert end.hour == 23 and end.minute == 59


class TestDueInstant:
    """Test due instant computation."""

    def test_friday_due_time(self):
        due = due_instant(utc(2025, 11, 3), 5, "17:00", UTC)
        assert due == utc(2025, 11, 7, 17, 0)

    def test_monday_due_time(self):
        due = due_instant(utc(2025, 11, 3), 1, "10:00", UTC)
        assert due == utc(2025, 11, 3, 10, 0)

    def test_due_time_is_local(self):
        anchor = week_start(utc(2025, 11, 5), BERLIN)
        due = due_instant(anchor, 5, "17:00", BERLIN)
        assert due.astimezone(timezone.utc) == utc(2025, 11, 7, 16, 0)

    @pytest.mark.parametrize("due_day", [0, 8])
    def test_due_day_out_of_range(self, due_day):
        with pytest.raises(ValueError, match="between 1 and 7"):
            due_instant(utc(2025, 11, 3), due_day, "17:00", UTC)

    @pytest.mark.parametrize("value", ["25:00", "17", "noon", ""])
    def test_invalid_due_time(self, value):
        with pytest.raises(ValueError):
            parse_due_time(value)


class TestReminderDays:
    """Test Sunday-based weekday handling."""

    def test_js_weekday(self):
        assert js_weekday(date(2025, 11, 9)) == 0  # Sunday
        assert js_weekday(date(2025, 11, 3)) == 1  # Monday
        assert js_weekday(date(2025, 11, 8)) == 6  # Saturday

    def test_friday_is_reminder_day(self):
        assert is_reminder_day(utc(2025, 11, 7, 16, 30), UTC, [3, 4, 5])

    def test_saturday_is_not_reminder_day(self):
        assert not is_reminder_day(utc(2025, 11, 8, 9), UTC, [3, 4, 5])


class TestClassifyReminder:
    """Test DUE / OVERDUE / none classification."""

    DUE = utc(2025, 11, 7, 17, 0)

    def test_due_within_window_on_due_day(self):
        """16:30 with a 17:00 deadline is inside the 2h window."""
        assert classify_reminder(utc(2025, 11, 7, 16, 30), self.DUE, UTC) == ReminderKind.DUE

    def test_window_start_is_inclusive(self):
        assert classify_reminder(utc(2025, 11, 7, 15, 0), self.DUE, UTC) == ReminderKind.DUE

    def test_due_day_morning_is_outside_window(self):
        assert classify_reminder(utc(2025, 11, 7, 9, 0), self.DUE, UTC) is None

    def test_day_before_due_day(self):
        assert classify_reminder(utc(2025, 11, 6, 9, 0), self.DUE, UTC) == ReminderKind.DUE

    def test_two_days_before_due_day(self):
        assert classify_reminder(utc(2025, 11, 5, 9, 0), self.DUE, UTC) is None

    def test_at_due_instant_is_not_overdue(self):
        assert classify_reminder(self.DUE, self.DUE, UTC) == ReminderKind.DUE

    def test_after_due_instant_is_overdue(self):
        kind = classify_reminder(self.DUE + timedelta(minutes=1), self.DUE, UTC)
        assert kind == ReminderKind.OVERDUE

    def test_custom_window(self):
        now = utc(2025, 11, 7, 12, 0)
        assert classify_reminder(now, self.DUE, UTC) is None
        assert classify_reminder(now, self.DUE, UTC, timedelta(hours=6)) == ReminderKind.DUE

    def test_due_day_label(self):
        assert due_day_label(utc(2025, 11, 7, 16), self.DUE, UTC) == "today"
        assert due_day_label(utc(2025, 11, 6, 16), self.DUE, UTC) == "tomorrow"


class TestCompliance:
    """Test compliance rate and threshold."""

    def test_rate_rounds_half_up(self):
        assert compliance_rate(7, 10) == 70
        assert compliance_rate(2, 3) == 67
        assert compliance_rate(1, 8) == 13  # 12.5 rounds up

    def test_rate_full_and_empty(self):
        assert compliance_rate(10, 10) == 100
        assert compliance_rate(0, 10) == 0

    def test_rate_without_users(self):
        assert compliance_rate(0, 0) is None

    def test_low_compliance_threshold(self):
        assert is_low_compliance(79)
        assert not is_low_compliance(80)
        assert not is_low_compliance(None)
        assert is_low_compliance(89, threshold=90)


class TestOverdueDays:
    """Test whole-day overdue counting."""

    def test_less_than_a_day(self):
        assert overdue_days(utc(2025, 11, 7, 17), utc(2025, 11, 8, 16)) == 0

    def test_whole_days_are_floored(self):
        assert overdue_days(utc(2025, 11, 1, 17), utc(2025, 11, 4, 9)) == 2

    def test_never_negative(self):
        assert overdue_days(utc(2025, 11, 8), utc(2025, 11, 7)) == 0


class TestMeetingTier:
    """Test meeting reminder tiers."""

    NOW = utc(2025, 11, 7, 9, 0)

    def test_starting_soon(self):
        assert meeting_tier(self.NOW, self.NOW + timedelta(minutes=10)) == MEETING_TIER_STARTING_SOON

    def test_starting_soon_boundary(self):
        assert meeting_tier(self.NOW, self.NOW + timedelta(minutes=15)) == MEETING_TIER_STARTING_SOON

    def test_upcoming(self):
        assert meeting_tier(self.NOW, self.NOW + timedelta(minutes=45)) == MEETING_TIER_UPCOMING

    def test_tiers_do_not_overlap(self):
        """A meeting in 10 minutes is only in the starting-soon tier."""
        tier = meeting_tier(self.NOW, self.NOW + timedelta(minutes=10))
        assert tier != MEETING_TIER_UPCOMING

    def test_beyond_outer_tier(self):
        assert meeting_tier(self.NOW, self.NOW + timedelta(minutes=61)) is None

    def test_already_started(self):
        assert meeting_tier(self.NOW, self.NOW - timedelta(minutes=1)) is None
