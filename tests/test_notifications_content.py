"""Tests for per-type notification wording."""

import pytest

from notifier.domain.models import NotificationType
from notifier.notifications.content import CONTENT_BUILDERS, build_content


def test_every_type_has_wording():
    assert set(CONTENT_BUILDERS) == set(NotificationType)


@pytest.mark.parametrize("notification_type", list(NotificationType))
def test_empty_payload_renders(notification_type):
    """Every builder copes with a payload that carries nothing."""
    title, message = build_content(notification_type, {})

    assert isinstance(title, str) and title
    assert isinstance(message, str)


class TestTaskWording:
    def test_assigned_with_project(self):
        title, message = build_content(
            NotificationType.TASK_ASSIGNED, {"title": "Write docs", "project_name": "Website"}
        )

        assert title == "Task assigned: Write docs"
        assert message == 'You have been assigned to work on "Write docs" in project "Website".'

    def test_due_soon(self):
        _, message = build_content(
            NotificationType.TASK_DUE_SOON,
            {"title": "Write docs", "due_date": "2025-11-08T04:30:00+00:00"},
        )

        assert message == 'Your task "Write docs" is due on Sat Nov 08, 2025'

    def test_overdue_with_days(self):
        _, message = build_content(
            NotificationType.TASK_OVERDUE, {"title": "Write docs", "overdue_days": 2}
        )

        assert message == 'Your task "Write docs" is 2 day(s) overdue'

    def test_overdue_without_days(self):
        _, message = build_content(
            NotificationType.TASK_OVERDUE,
            {"title": "Write docs", "due_date": "2025-11-05T17:00:00.000000Z"},
        )

        assert "was due on Wed Nov 05, 2025 and is now overdue" in message

    def test_missing_title(self):
        title, _ = build_content(NotificationType.TASK_STATUS_CHANGED, {"status": "Done"})

        assert title == "Task status updated: Untitled"


class TestMeetingWording:
    START = "2025-11-07T16:30:00+00:00"

    def test_starting_soon_tier(self):
        title, message = build_content(
            NotificationType.MEETING_REMINDER,
            {"title": "Sprint planning", "start_time": self.START, "reminder_type": "15minutes"},
        )

        assert title == "Meeting starting soon: Sprint planning"
        assert message == '"Sprint planning" starts in 15 minutes at 16:30 UTC'

    def test_one_hour_tier(self):
        title, _ = build_content(
            NotificationType.MEETING_REMINDER,
            {"title": "Sprint planning", "start_time": self.START, "reminder_type": "1hour"},
        )

        assert title == "Meeting in 1 hour: Sprint planning"

    def test_untiered_reminder(self):
        _, message = build_content(
            NotificationType.MEETING_REMINDER, {"title": "Sprint planning", "start_time": self.START}
        )

        assert "scheduled for Fri Nov 07, 2025 at 16:30 UTC" in message

    def test_meeting_link(self):
        _, message = build_content(
            NotificationType.MEETING_STARTING_SOON,
            {"title": "Sprint planning", "meeting_link": "https://meet.acme.io/sprint"},
        )

        assert message.endswith("Join now: https://meet.acme.io/sprint")


class TestReportWording:
    def test_report_due(self):
        title, message = build_content(
            NotificationType.WEEKLY_REPORT_DUE,
            {"week_start": "2025-11-03T00:00:00+00:00", "due_in": "today", "due_time": "17:00"},
        )

        assert title == "Weekly report due today"
        assert message == (
            "Your weekly report for the week of Mon Nov 03, 2025 is due today. "
            "Please submit it by 17:00."
        )

    def test_plan_overdue(self):
        title, _ = build_content(NotificationType.WEEKLY_PLAN_OVERDUE, {})

        assert title == "Weekly plan overdue"

    def test_submission_received(self):
        title, message = build_content(
            NotificationType.REPORT_SUBMISSION_RECEIVED,
            {"submission_type": "Weekly Plan", "user_name": "Dana Scully"},
        )

        assert title == "Weekly Plan submitted"
        assert message.startswith("Dana Scully has submitted their weekly plan")

    def test_low_compliance(self):
        title, message = build_content(NotificationType.LOW_COMPLIANCE_ALERT, {"compliance_rate": 60})

        assert title == "Low team compliance alert"
        assert message.startswith("Team compliance has dropped to 60%.")


class TestSystemWording:
    def test_defaults(self):
        title, _ = build_content(NotificationType.SYSTEM_MAINTENANCE, {})

        assert title == "Scheduled maintenance"

    def test_payload_overrides(self):
        title, message = build_content(
            NotificationType.CUSTOM, {"title": "Office closed", "message": "See you Monday."}
        )

        assert (title, message) == ("Office closed", "See you Monday.")
