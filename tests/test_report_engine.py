"""Tests for the weekly plan/report reminder engine.

Tests the ReportReminderEngine for:
- DUE reminders inside the due window and their suppression
- OVERDUE reminders and the Overdue status write-back
- Report reminders only after the week's plan is submitted
- Settings: enforcement, reminder days, channels, lazy defaults
- Low compliance alerts (rates, recipients, once per week)
- Submission notifications to managers
- Per-organization failure isolation
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from notifier.config.models import ReminderConfig
from notifier.domain.models import (
    NotificationChannel,
    NotificationPriority,
    NotificationType,
    Role,
    SubmissionStatus,
)
from notifier.persistence.exceptions import RecordNotFoundError
from notifier.persistence.repositories import ReportSettingsRepository, WeeklyReportRepository
from notifier.reminders.engine import ReportReminderEngine

from tests.helpers import (
    add_organization,
    add_preference,
    add_report_settings,
    add_submission,
    add_team,
    add_user,
    list_notifications,
)

WEEK_START = datetime(2025, 11, 3, tzinfo=timezone.utc)


@pytest.fixture
def engine(database, dispatcher, clock):
    return ReportReminderEngine(database, dispatcher, timezone="UTC", clock=clock)


@pytest.fixture
def team(database, organization):
    """Three members (org-1-member-1..3) and one admin."""
    return add_team(database, "org-1", members=3, admins=1)


@pytest.fixture
def planned_team(database, team):
    """The same team with every member's plan for this week submitted."""
    for user in team:
        if user.role == Role.MEMBER:
            add_submission(database, "plan", user.id, WEEK_START)
    return team


def reminders_for(database, user_id):
    return [
        n
        for n in list_notifications(database, user_id)
        if n.type
        in (
            NotificationType.WEEKLY_REPORT_DUE,
            NotificationType.WEEKLY_REPORT_OVERDUE,
            NotificationType.WEEKLY_PLAN_DUE,
            NotificationType.WEEKLY_PLAN_OVERDUE,
        )
    ]


class TestWeeklyReportDue:
    """Test DUE reminders and their suppression."""

    def test_friday_afternoon_due_reminder(self, engine, database, planned_team):
        """16:30 on the due day with a 17:00 deadline sends a DUE reminder."""
        add_submission(database, "report", "org-1-member-1", WEEK_START)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 2
        assert result.users_evaluated == 3
        assert reminders_for(database, "org-1-member-1") == []
        assert reminders_for(database, "org-1-admin-1") == []

        [reminder] = reminders_for(database, "org-1-member-2")
        assert reminder.type == NotificationType.WEEKLY_REPORT_DUE
        assert reminder.priority == NotificationPriority.MEDIUM
        assert reminder.title == "Weekly report due today"
        assert reminder.dedup_key == "weekly-report-reminder:org-1-member-2:2025-11-07"
        assert reminder.data["week_start"] == WEEK_START.isoformat()
        assert reminder.data["due_in"] == "today"
        assert reminder.data["submission_type"] == "Weekly Report"

    def test_second_run_within_window_is_suppressed(self, engine, database, planned_team, clock):
        engine.check_weekly_report_reminders()
        clock.advance(minutes=15)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0
        assert result.suppressed == 3
        assert len(reminders_for(database, "org-1-member-2")) == 1

    def test_due_then_overdue_within_window_sends_one_reminder(self, engine, database, planned_team, clock):
        """A user never gets both DUE and OVERDUE of one type within 24 hours."""
        engine.check_weekly_report_reminders()
        clock.advance(hours=1)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0
        for member in ("org-1-member-1", "org-1-member-2", "org-1-member-3"):
            [reminder] = reminders_for(database, member)
            assert reminder.type == NotificationType.WEEKLY_REPORT_DUE

    def test_day_before_due_day(self, engine, database, planned_team, clock):
        clock.set(datetime(2025, 11, 6, 14, 0, tzinfo=timezone.utc))

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 3
        reminder = reminders_for(database, "org-1-member-1")[0]
        assert reminder.title == "Weekly report due tomorrow"

    def test_due_day_morning_sends_nothing(self, engine, database, planned_team, clock):
        clock.set(datetime(2025, 11, 7, 9, 0, tzinfo=timezone.utc))

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0
        assert list_notifications(database) == []

    def test_not_a_reminder_day(self, engine, database, planned_team, clock):
        clock.set(datetime(2025, 11, 8, 9, 0, tzinfo=timezone.utc))

        result = engine.check_weekly_report_reminders()

        assert result.users_evaluated == 0
        assert result.reminders_sent == 0


class TestWeeklyReportOverdue:
    """Test OVERDUE reminders and status write-back."""

    def test_overdue_reminder_and_write_back(self, engine, database, planned_team, clock):
        add_submission(database, "report", "org-1-member-2", WEEK_START, status=SubmissionStatus.DRAFT)
        clock.set(datetime(2025, 11, 7, 17, 30, tzinfo=timezone.utc))

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 3
        assert result.marked_overdue == 1
        [reminder] = reminders_for(database, "org-1-member-2")
        assert reminder.type == NotificationType.WEEKLY_REPORT_OVERDUE
        assert reminder.priority == NotificationPriority.HIGH
        assert reminder.entity_id == "report-org-1-member-2"

        with database.session() as session:
            report = WeeklyReportRepository(session).get("report-org-1-member-2")
        assert report.status == SubmissionStatus.OVERDUE
        assert report.is_overdue is True

    def test_write_back_happens_even_when_reminder_suppressed(self, engine, database, planned_team, clock):
        add_submission(database, "report", "org-1-member-2", WEEK_START, status=SubmissionStatus.DRAFT)
        engine.check_weekly_report_reminders()
        clock.set(datetime(2025, 11, 7, 17, 30, tzinfo=timezone.utc))

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0
        assert result.marked_overdue == 1

    def test_write_back_is_idempotent(self, engine, database, planned_team, clock):
        add_submission(database, "report", "org-1-member-2", WEEK_START, status=SubmissionStatus.DRAFT)
        clock.set(datetime(2025, 11, 7, 17, 30, tzinfo=timezone.utc))
        engine.check_weekly_report_reminders()

        result = engine.check_weekly_report_reminders()

        assert result.marked_overdue == 0

    def test_submitted_report_is_never_overdue(self, engine, database, planned_team, clock):
        add_submission(database, "report", "org-1-member-1", WEEK_START, status=SubmissionStatus.APPROVED)
        clock.set(datetime(2025, 11, 7, 17, 30, tzinfo=timezone.utc))

        engine.check_weekly_report_reminders()

        assert reminders_for(database, "org-1-member-1") == []


class TestReportNeedsSubmittedPlan:
    """Report reminders only go to users whose plan for the week is in."""

    def test_missing_plan_gets_no_report_reminder(self, engine, database, team):
        add_submission(database, "plan", "org-1-member-1", WEEK_START)

        result = engine.check_weekly_report_reminders()

        assert result.users_evaluated == 3
        assert result.reminders_sent == 1
        assert len(reminders_for(database, "org-1-member-1")) == 1
        assert reminders_for(database, "org-1-member-2") == []

    def test_draft_plan_gets_no_report_reminder(self, engine, database, team, clock):
        add_submission(database, "plan", "org-1-member-1", WEEK_START, status=SubmissionStatus.DRAFT)
        add_submission(database, "report", "org-1-member-1", WEEK_START, status=SubmissionStatus.DRAFT)
        clock.set(datetime(2025, 11, 7, 17, 30, tzinfo=timezone.utc))

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0
        assert result.marked_overdue == 0
        with database.session() as session:
            report = WeeklyReportRepository(session).get("report-org-1-member-1")
        assert report.status == SubmissionStatus.DRAFT

    def test_approved_plan_counts_as_submitted(self, engine, database, team):
        add_submission(database, "plan", "org-1-member-2", WEEK_START, status=SubmissionStatus.APPROVED)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 1
        [reminder] = reminders_for(database, "org-1-member-2")
        assert reminder.type == NotificationType.WEEKLY_REPORT_DUE


class TestWeeklyPlan:
    """Test plan reminders (default due Monday 10:00)."""

    def test_monday_morning_due(self, engine, database, team, clock):
        clock.set(datetime(2025, 11, 3, 8, 30, tzinfo=timezone.utc))

        result = engine.check_weekly_plan_reminders()

        assert result.check == "weekly-plan-reminders"
        assert result.reminders_sent == 3
        reminder = reminders_for(database, "org-1-member-1")[0]
        assert reminder.type == NotificationType.WEEKLY_PLAN_DUE
        assert reminder.dedup_key == "weekly-plan-reminder:org-1-member-1:2025-11-03"

    def test_monday_after_deadline_overdue(self, engine, database, team, clock):
        add_submission(database, "plan", "org-1-member-1", WEEK_START)
        clock.set(datetime(2025, 11, 3, 11, 0, tzinfo=timezone.utc))

        result = engine.check_weekly_plan_reminders()

        assert result.reminders_sent == 2
        reminder = reminders_for(database, "org-1-member-2")[0]
        assert reminder.type == NotificationType.WEEKLY_PLAN_OVERDUE


class TestReminderSettings:
    """Test organization settings and user preferences."""

    def test_settings_created_lazily(self, engine, database, organization):
        settings = engine.get_report_settings("org-1")

        assert settings.report_due_day == 5
        with database.session() as session:
            assert ReportSettingsRepository(session).get("org-1") is not None

    def test_initialize_all_report_settings(self, engine, database):
        add_organization(database, "org-1")
        add_organization(database, "org-2")
        add_report_settings(database, "org-2")

        assert engine.initialize_all_report_settings() == 1
        assert engine.initialize_all_report_settings() == 0

    def test_not_enforced_skips_organization(self, engine, database, planned_team):
        add_report_settings(database, "org-1", is_enforced=False)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0
        assert list_notifications(database) == []

    def test_custom_reminder_days(self, engine, database, planned_team):
        add_report_settings(database, "org-1", report_reminder_days=[1, 2])

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0

    def test_report_preference_disabled(self, engine, database, planned_team):
        add_preference(database, "org-1-member-2", report_notifications=False)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 2
        assert reminders_for(database, "org-1-member-2") == []

    def test_email_disabled_in_settings(self, engine, database, planned_team, smtp_client):
        add_report_settings(database, "org-1", email_notifications=False)

        engine.check_weekly_report_reminders()

        smtp_client.send.assert_not_called()
        assert all(n.in_app_delivered for n in list_notifications(database))

    def test_no_channels_sends_nothing(self, engine, database, planned_team):
        add_report_settings(database, "org-1", email_notifications=False, in_app_notifications=False)

        result = engine.check_weekly_report_reminders()

        assert result.reminders_sent == 0

    def test_failure_in_one_organization_does_not_stop_others(self, engine, database, planned_team):
        add_organization(database, "org-2", "Globex")
        for user in add_team(database, "org-2", members=2, admins=0):
            add_submission(database, "plan", user.id, WEEK_START, organization_id="org-2")
        original = engine._remind_organization

        def failing(artifact, organization, now, result):
            if organization.id == "org-1":
                raise RuntimeError("settings table locked")
            return original(artifact, organization, now, result)

        with patch.object(engine, "_remind_organization", side_effect=failing):
            result = engine.check_weekly_report_reminders()

        assert result.organizations == 2
        assert result.failed_organizations == ["org-1"]
        assert result.reminders_sent == 2


class TestComplianceAlerts:
    """Test weekly low-compliance alerts."""

    @pytest.fixture
    def large_team(self, database, organization):
        """Ten members, two admins: 7 plans and 6 reports submitted."""
        users = add_team(database, "org-1", members=10, admins=2)
        members = [u for u in users if u.role == Role.MEMBER]
        for i, member in enumerate(members):
            if i < 7:
                add_submission(database, "plan", member.id, WEEK_START)
            elif i < 9:
                add_submission(database, "plan", member.id, WEEK_START, status=SubmissionStatus.OVERDUE)
            if i < 6:
                add_submission(database, "report", member.id, WEEK_START)
        return users

    def test_low_compliance_alerts_each_admin_once(self, engine, database, large_team):
        result = engine.check_compliance_alerts()

        assert result.alerts_sent == 2
        for admin_id in ("org-1-admin-1", "org-1-admin-2"):
            [alert] = list_notifications(database, admin_id)
            assert alert.type == NotificationType.LOW_COMPLIANCE_ALERT
            assert alert.priority == NotificationPriority.HIGH
            assert alert.data["plan_compliance_rate"] == 70
            assert alert.data["report_compliance_rate"] == 60
            assert alert.data["compliance_rate"] == 60
            assert alert.data["total_users"] == 10
            assert alert.data["overdue_plans"] == 2
            assert alert.data["overdue_count"] == 2
            assert alert.message.startswith("Team compliance has dropped to 60%.")
            assert alert.dedup_key == f"LOW_COMPLIANCE_ALERT:org-1:2025-11-03:{admin_id}"

        # Members are not alerted
        assert list_notifications(database, "org-1-member-1") == []

    def test_second_run_same_week_sends_nothing(self, engine, database, large_team, clock):
        engine.check_compliance_alerts()
        clock.advance(days=1)

        result = engine.check_compliance_alerts()

        assert result.alerts_sent == 0
        assert len(list_notifications(database)) == 2

    def test_next_week_alerts_again(self, engine, database, large_team, clock):
        engine.check_compliance_alerts()
        clock.advance(days=7)

        result = engine.check_compliance_alerts()

        # Nothing was submitted for the new week
        assert result.alerts_sent == 2

    def test_healthy_compliance_sends_nothing(self, engine, database, team):
        for member_id in ("org-1-member-1", "org-1-member-2", "org-1-member-3"):
            add_submission(database, "plan", member_id, WEEK_START)
            add_submission(database, "report", member_id, WEEK_START)

        result = engine.check_compliance_alerts()

        assert result.alerts_sent == 0

    def test_manager_notifications_disabled(self, engine, database, large_team):
        add_report_settings(database, "org-1", manager_notifications=False)

        assert engine.check_compliance_alerts().alerts_sent == 0

    def test_all_channels_disabled_sends_nothing(self, engine, database, large_team):
        """Same as the weekly reminders: no channel means no notification."""
        add_report_settings(
            database, "org-1", email_notifications=False, in_app_notifications=False
        )

        result = engine.check_compliance_alerts()

        assert result.alerts_sent == 0
        assert list_notifications(database) == []

    def test_alert_uses_organization_channels(self, engine, database, large_team, smtp_client):
        add_report_settings(database, "org-1", email_notifications=False)

        assert engine.check_compliance_alerts().alerts_sent == 2

        smtp_client.send.assert_not_called()
        assert all(n.in_app_delivered for n in list_notifications(database))

    def test_organization_without_members_is_skipped(self, engine, database, organization):
        add_user(database, "boss", role=Role.ADMIN)

        result = engine.check_compliance_alerts()

        assert result.alerts_sent == 0
        assert result.failed_organizations == []

    def test_custom_threshold(self, database, dispatcher, clock, large_team):
        engine = ReportReminderEngine(
            database,
            dispatcher,
            ReminderConfig(compliance_threshold=50),
            clock=clock,
        )

        assert engine.check_compliance_alerts().alerts_sent == 0


class TestSubmissionNotifications:
    """Test notifications when a plan or report is submitted."""

    def test_managers_notified(self, engine, database, team):
        add_submission(database, "plan", "org-1-member-1", WEEK_START)

        bulk = engine.notify_report_submission("plan-org-1-member-1", "plan")

        assert bulk.created_count == 1
        [notification] = list_notifications(database, "org-1-admin-1")
        assert notification.type == NotificationType.REPORT_SUBMISSION_RECEIVED
        assert notification.title == "Weekly Plan submitted"
        assert "Org 1 Member 1 has submitted their weekly plan" in notification.message
        assert notification.entity_type == "WeeklyPlan"

    def test_author_is_not_notified(self, engine, database, team):
        add_user(database, "lead", role=Role.MANAGER)
        add_submission(database, "report", "lead", WEEK_START)

        bulk = engine.notify_report_submission("report-lead", "report")

        assert set(bulk.results) == {"org-1-admin-1"}

    def test_unknown_kind(self, engine):
        with pytest.raises(ValueError, match="Unknown submission kind"):
            engine.notify_report_submission("x", "memo")

    def test_unknown_submission(self, engine, organization):
        with pytest.raises(RecordNotFoundError):
            engine.notify_report_submission("missing", "report")

    def test_manager_notifications_disabled(self, engine, database, team):
        add_report_settings(database, "org-1", manager_notifications=False)
        add_submission(database, "plan", "org-1-member-1", WEEK_START)

        bulk = engine.notify_report_submission("plan-org-1-member-1", "plan")

        assert bulk.results == {}
        assert list_notifications(database) == []

    def test_all_channels_disabled(self, engine, database, team, smtp_client):
        add_report_settings(
            database, "org-1", email_notifications=False, in_app_notifications=False
        )
        add_submission(database, "plan", "org-1-member-1", WEEK_START)

        bulk = engine.notify_report_submission("plan-org-1-member-1", "plan")

        assert bulk.results == {}
        smtp_client.send.assert_not_called()

    def test_email_disabled_in_settings(self, engine, database, team, smtp_client):
        add_report_settings(database, "org-1", email_notifications=False)
        add_submission(database, "plan", "org-1-member-1", WEEK_START)

        bulk = engine.notify_report_submission("plan-org-1-member-1", "plan")

        assert bulk.created_count == 1
        smtp_client.send.assert_not_called()


def test_channels_follow_settings(engine, database, planned_team, dispatcher):
    add_report_settings(database, "org-1", email_notifications=False)

    with patch.object(dispatcher, "create_notification", wraps=dispatcher.create_notification) as create:
        engine.check_weekly_report_reminders()

    spec = create.call_args_list[0][0][0]
    assert spec.channels == [NotificationChannel.IN_APP]
    assert spec.dedup_key.startswith("weekly-report-reminder:")
    assert create.call_count == 3
    assert spec.scheduled_for is None
    assert spec.data["due_date"] == (WEEK_START + timedelta(days=4, hours=17)).isoformat()
