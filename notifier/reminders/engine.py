"""Weekly plan/report reminders and team compliance alerts.

The engine reads organization state, applies the pure policy in
:mod:`notifier.reminders.policy` and asks the dispatcher to create the
resulting notifications. Organizations are processed independently: a
failure in one is logged and the run continues with the next.

Two guards keep overlapping runs from sending duplicates:

- A look-back over the dedup window for any reminder of the same family
  (due or overdue) for the user
- A per-user, per-day dedup key enforced by a unique constraint in the store
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from notifier.config.models import ReminderConfig
from notifier.domain.models import (
    NotificationChannel,
    NotificationPreference,
    NotificationPriority,
    NotificationSpec,
    NotificationType,
    Organization,
    ReportSettings,
    SubmissionStatus,
    User,
    WeeklySubmission,
)
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.notifications.dispatcher import NotificationDispatcher
from notifier.notifications.models import BulkNotificationResult
from notifier.persistence.database import Database
from notifier.persistence.exceptions import DataIntegrityError, RecordNotFoundError
from notifier.persistence.repositories import (
    DirectoryRepository,
    NotificationRepository,
    PreferenceRepository,
    ReportSettingsRepository,
    WeeklyPlanRepository,
    WeeklyReportRepository,
)
from notifier.utils.timestamps import Clock, format_timestamp_for_log, get_zone, utc_now

from .policy import (
    ReminderKind,
    classify_reminder,
    compliance_rate,
    due_day_label,
    due_instant,
    is_low_compliance,
    is_reminder_day,
    week_end,
    week_start,
)

logger = get_logger(__name__, component="reminders")

_CREATED_STATUSES = ("delivered", "scheduled", "created")


@dataclass(frozen=True)
class _Artifact:
    """Static description of one kind of weekly submission."""

    name: str
    label: str
    due_type: NotificationType
    overdue_type: NotificationType
    repository: type
    due_day_field: str
    due_time_field: str
    reminder_days_field: str
    # Submission that must be in before reminders for this one make sense
    prerequisite: Optional[type] = None


PLAN = _Artifact(
    name="plan",
    label="Weekly Plan",
    due_type=NotificationType.WEEKLY_PLAN_DUE,
    overdue_type=NotificationType.WEEKLY_PLAN_OVERDUE,
    repository=WeeklyPlanRepository,
    due_day_field="plan_due_day",
    due_time_field="plan_due_time",
    reminder_days_field="plan_reminder_days",
)

REPORT = _Artifact(
    name="report",
    label="Weekly Report",
    due_type=NotificationType.WEEKLY_REPORT_DUE,
    overdue_type=NotificationType.WEEKLY_REPORT_OVERDUE,
    repository=WeeklyReportRepository,
    due_day_field="report_due_day",
    due_time_field="report_due_time",
    reminder_days_field="report_reminder_days",
    prerequisite=WeeklyPlanRepository,
)

ARTIFACTS = {PLAN.name: PLAN, REPORT.name: REPORT}


@dataclass
class ReminderRunResult:
    """Summary of one reminder or compliance check."""

    check: str
    organizations: int = 0
    users_evaluated: int = 0
    reminders_sent: int = 0
    suppressed: int = 0
    marked_overdue: int = 0
    alerts_sent: int = 0
    failed_users: int = 0
    failed_organizations: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "check": self.check,
            "organizations": self.organizations,
            "users_evaluated": self.users_evaluated,
            "reminders_sent": self.reminders_sent,
            "suppressed": self.suppressed,
            "marked_overdue": self.marked_overdue,
            "alerts_sent": self.alerts_sent,
            "failed_users": self.failed_users,
            "failed_organizations": list(self.failed_organizations),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class _WeekSnapshot:
    """State of one organization read in a single session."""

    settings: ReportSettings
    members: List[User]
    submissions: Dict[str, WeeklySubmission]
    preferences: Dict[str, NotificationPreference]
    prerequisites: Optional[Dict[str, WeeklySubmission]] = None


class ReportReminderEngine:
    """Evaluates weekly submission policy for every organization."""

    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        reminder_config: Optional[ReminderConfig] = None,
        timezone: str = "UTC",
        clock: Clock = utc_now,
    ):
        """Initialize the engine.

        Args:
            database: Store with organizations, users and submissions
            dispatcher: Used to create every notification
            reminder_config: Windows and thresholds (defaults if None)
            timezone: IANA zone that defines "local" days and weeks
            clock: Source of "now"
        """
        self.database = database
        self.dispatcher = dispatcher
        self.config = reminder_config or ReminderConfig()
        self.zone = get_zone(timezone)
        self.clock = clock

    # Settings

    def get_report_settings(self, organization_id: str) -> ReportSettings:
        """Return the organization's settings, creating the defaults on first access."""
        with self.database.session() as session:
            settings = ReportSettingsRepository(session).get(organization_id)
        if settings is not None:
            return settings
        return self.initialize_report_settings(organization_id)

    def initialize_report_settings(self, organization_id: str) -> ReportSettings:
        """Create default settings for an organization that has none.

        Returns:
            The organization's settings (existing or newly created)
        """
        try:
            with self.database.session() as session:
                repo = ReportSettingsRepository(session)
                existing = repo.get(organization_id)
                if existing is not None:
                    return existing
                settings = repo.add(ReportSettings.defaults(organization_id))
        except DataIntegrityError:
            # Created concurrently by another run
            with self.database.session() as session:
                return ReportSettingsRepository(session).get(organization_id)

        logger.info(
            f"Created default report settings for organization {organization_id}",
            extra={"event": "report_settings.created", "org_id": organization_id},
        )
        return settings

    def initialize_all_report_settings(self) -> int:
        """Create default settings for every organization lacking them.

        Returns:
            Number of organizations initialized
        """
        with self.database.session() as session:
            missing = ReportSettingsRepository(session).organizations_without_settings()

        for organization_id in missing:
            self.initialize_report_settings(organization_id)

        logger.info(
            f"Initialized report settings for {len(missing)} organization(s)",
            extra={"event": "report_settings.initialized", "count": len(missing)},
        )
        return len(missing)

    # Weekly reminders

    def check_weekly_plan_reminders(self, now: Optional[datetime] = None) -> ReminderRunResult:
        """Send weekly plan due/overdue reminders for every organization."""
        return self._run_reminders(PLAN, now or self.clock())

    def check_weekly_report_reminders(self, now: Optional[datetime] = None) -> ReminderRunResult:
        """Send weekly report due/overdue reminders for every organization."""
        return self._run_reminders(REPORT, now or self.clock())

    def _run_reminders(self, artifact: _Artifact, now: datetime) -> ReminderRunResult:
        start = time.monotonic()
        result = ReminderRunResult(check=f"weekly-{artifact.name}-reminders")

        for organization in self._organizations():
            result.organizations += 1
            with log_context(org_id=organization.id):
                try:
                    self._remind_organization(artifact, organization, now, result)
                except Exception as e:
                    result.failed_organizations.append(organization.id)
                    logger.error(
                        f"Weekly {artifact.name} reminders failed for organization "
                        f"{organization.id}: {e}",
                        exc_info=True,
                        extra={
                            "event": "reminders.organization.failed",
                            "error_type": type(e).__name__,
                        },
                    )

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Weekly {artifact.name} reminders: {result.reminders_sent} sent, "
            f"{result.suppressed} suppressed, {result.marked_overdue} marked overdue",
            extra={"event": "reminders.check.completed", **result.to_dict()},
        )
        return result

    def _remind_organization(
        self,
        artifact: _Artifact,
        organization: Organization,
        now: datetime,
        result: ReminderRunResult,
    ) -> None:
        settings = self.get_report_settings(organization.id)
        if not settings.is_enforced:
            logger.debug(
                f"Weekly {artifact.name}s not enforced for organization {organization.id}",
                extra={"event": "reminders.organization.skipped", "reason": "not_enforced"},
            )
            return

        if not is_reminder_day(now, self.zone, getattr(settings, artifact.reminder_days_field)):
            return

        anchor = week_start(now, self.zone)
        due = due_instant(
            anchor,
            getattr(settings, artifact.due_day_field),
            getattr(settings, artifact.due_time_field),
            self.zone,
        )
        kind = classify_reminder(now, due, self.zone, self.config.due_window_delta)
        if kind is None:
            return

        channels = _channels(settings)
        if not channels:
            return

        snapshot = self._load_week(artifact, organization.id, anchor, settings)
        for user in snapshot.members:
            result.users_evaluated += 1
            try:
                self._remind_user(artifact, user, snapshot, kind, anchor, due, now, channels, result)
            except Exception as e:
                result.failed_users += 1
                logger.error(
                    f"Weekly {artifact.name} reminder failed for user {user.id}: {e}",
                    exc_info=True,
                    extra={"event": "reminders.user.failed", "user_id": user.id},
                )

    def _remind_user(
        self,
        artifact: _Artifact,
        user: User,
        snapshot: _WeekSnapshot,
        kind: ReminderKind,
        anchor: datetime,
        due: datetime,
        now: datetime,
        channels: List[NotificationChannel],
        result: ReminderRunResult,
    ) -> None:
        preference = snapshot.preferences.get(user.id)
        if preference is not None and not preference.report_notifications:
            return

        if snapshot.prerequisites is not None:
            prerequisite = snapshot.prerequisites.get(user.id)
            if prerequisite is None or not prerequisite.is_submitted:
                logger.debug(
                    f"Skipping weekly {artifact.name} reminder for user {user.id} - "
                    "no submitted plan this week",
                    extra={"event": "reminders.user.skipped", "user_id": user.id},
                )
                return

        submission = snapshot.submissions.get(user.id)
        if submission is not None and submission.is_submitted:
            return

        if (
            kind == ReminderKind.OVERDUE
            and submission is not None
            and submission.status != SubmissionStatus.OVERDUE
        ):
            with self.database.session() as session:
                changed = artifact.repository(session).mark_overdue(submission.id, now)
            if changed:
                result.marked_overdue += 1
                logger.info(
                    f"Marked weekly {artifact.name} {submission.id} overdue",
                    extra={"event": "reminders.submission.marked_overdue", "user_id": user.id},
                )

        since = now - self.config.dedup_window_delta
        with self.database.session() as session:
            recent = NotificationRepository(session).exists_since(
                user.id, (artifact.due_type, artifact.overdue_type), since
            )
        if recent:
            result.suppressed += 1
            logger.debug(
                f"Suppressing weekly {artifact.name} reminder for user {user.id} - "
                "reminded within the dedup window",
                extra={"event": "reminders.user.suppressed", "user_id": user.id},
            )
            return

        overdue = kind == ReminderKind.OVERDUE
        local_day = now.astimezone(self.zone).date().isoformat()
        spec = NotificationSpec(
            user_id=user.id,
            organization_id=user.organization_id,
            type=artifact.overdue_type if overdue else artifact.due_type,
            data={
                "user_name": user.name,
                "submission_type": artifact.label,
                "submission_id": submission.id if submission else None,
                "week_start": anchor.isoformat(),
                "due_date": due.isoformat(),
                "due_time": getattr(snapshot.settings, artifact.due_time_field),
                "due_in": due_day_label(now, due, self.zone),
            },
            priority=NotificationPriority.HIGH if overdue else NotificationPriority.MEDIUM,
            entity_type=artifact.label.replace(" ", ""),
            entity_id=submission.id if submission else None,
            channels=channels,
            dedup_key=f"weekly-{artifact.name}-reminder:{user.id}:{local_day}",
        )
        outcome = self.dispatcher.create_notification(spec)
        if outcome.status in _CREATED_STATUSES:
            result.reminders_sent += 1
        elif outcome.status == "duplicate":
            result.suppressed += 1

    def _load_week(
        self,
        artifact: _Artifact,
        organization_id: str,
        anchor: datetime,
        settings: ReportSettings,
    ) -> _WeekSnapshot:
        with self.database.session() as session:
            members = DirectoryRepository(session).list_team_members(organization_id)
            submissions = artifact.repository(session).list_for_week(organization_id, anchor)
            prerequisites = None
            if artifact.prerequisite is not None:
                prerequisites = {
                    s.user_id: s
                    for s in artifact.prerequisite(session).list_for_week(organization_id, anchor)
                }
            preference_repo = PreferenceRepository(session)
            preferences = {}
            for user in members:
                preference = preference_repo.get(user.id)
                if preference is not None:
                    preferences[user.id] = preference
        return _WeekSnapshot(
            settings=settings,
            members=members,
            submissions={s.user_id: s for s in submissions},
            preferences=preferences,
            prerequisites=prerequisites,
        )

    # Compliance

    def check_compliance_alerts(self, now: Optional[datetime] = None) -> ReminderRunResult:
        """Alert admins and managers of organizations whose weekly compliance is low.

        At most one alert per organization per week, however often this runs.
        """
        now = now or self.clock()
        start = time.monotonic()
        result = ReminderRunResult(check="weekly-compliance-alerts")

        for organization in self._organizations():
            result.organizations += 1
            with log_context(org_id=organization.id):
                try:
                    result.alerts_sent += self._check_organization_compliance(organization, now)
                except Exception as e:
                    result.failed_organizations.append(organization.id)
                    logger.error(
                        f"Compliance check failed for organization {organization.id}: {e}",
                        exc_info=True,
                        extra={
                            "event": "compliance.organization.failed",
                            "error_type": type(e).__name__,
                        },
                    )

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Compliance check: {result.alerts_sent} alert(s) sent across "
            f"{result.organizations} organization(s)",
            extra={"event": "compliance.check.completed", **result.to_dict()},
        )
        return result

    def _check_organization_compliance(self, organization: Organization, now: datetime) -> int:
        settings = self.get_report_settings(organization.id)
        if not settings.manager_notifications:
            return 0

        anchor = week_start(now, self.zone)
        with self.database.session() as session:
            members = DirectoryRepository(session).list_team_members(organization.id)
            managers = DirectoryRepository(session).list_managers(organization.id)
            plans = WeeklyPlanRepository(session).list_for_week(organization.id, anchor)
            reports = WeeklyReportRepository(session).list_for_week(organization.id, anchor)
            already_alerted = NotificationRepository(session).exists_for_organization(
                organization.id,
                NotificationType.LOW_COMPLIANCE_ALERT,
                anchor,
                week_end(now, self.zone),
            )

        member_ids = {user.id for user in members}
        total = len(member_ids)
        plans = [p for p in plans if p.user_id in member_ids]
        reports = [r for r in reports if r.user_id in member_ids]

        plan_rate = compliance_rate(sum(1 for p in plans if p.is_submitted), total)
        report_rate = compliance_rate(sum(1 for r in reports if r.is_submitted), total)
        threshold = self.config.compliance_threshold

        logger.debug(
            f"Compliance for organization {organization.id}: plans {plan_rate}%, "
            f"reports {report_rate}% of {total} user(s)",
            extra={
                "event": "compliance.computed",
                "plan_rate": plan_rate,
                "report_rate": report_rate,
                "total_users": total,
            },
        )

        if not (is_low_compliance(plan_rate, threshold) or is_low_compliance(report_rate, threshold)):
            return 0
        if already_alerted:
            logger.debug(
                f"Compliance alert already sent this week for organization {organization.id}",
                extra={"event": "compliance.alert.suppressed"},
            )
            return 0
        if not managers:
            logger.warning(
                f"Low compliance in organization {organization.id} but no active managers to alert",
                extra={"event": "compliance.alert.no_recipients"},
            )
            return 0

        channels = _channels(settings)
        if not channels:
            logger.debug(
                f"Low compliance in organization {organization.id} but every channel is disabled",
                extra={"event": "compliance.alert.skipped", "reason": "no_channels"},
            )
            return 0

        overdue_plans = sum(1 for p in plans if _is_overdue(p))
        overdue_reports = sum(1 for r in reports if _is_overdue(r))
        spec = NotificationSpec(
            organization_id=organization.id,
            type=NotificationType.LOW_COMPLIANCE_ALERT,
            data={
                "organization_name": organization.name,
                "week_start": anchor.isoformat(),
                "compliance_rate": min(plan_rate, report_rate),
                "plan_compliance_rate": plan_rate,
                "report_compliance_rate": report_rate,
                "overdue_plans": overdue_plans,
                "overdue_reports": overdue_reports,
                "overdue_count": overdue_plans + overdue_reports,
                "total_users": total,
                "threshold": threshold,
            },
            priority=NotificationPriority.HIGH,
            entity_type="Organization",
            entity_id=organization.id,
            channels=channels,
            dedup_key=f"LOW_COMPLIANCE_ALERT:{organization.id}:{anchor.date().isoformat()}",
        )
        bulk = self.dispatcher.create_bulk_notifications([m.id for m in managers], spec)

        logger.warning(
            f"Low compliance alert for organization {organization.id}: plans {plan_rate}%, "
            f"reports {report_rate}% (threshold {threshold}%)",
            extra={
                "event": "compliance.alert.sent",
                "recipients": bulk.created_count,
                "week_start": format_timestamp_for_log(anchor),
            },
        )
        return bulk.created_count

    # Submission events

    def notify_report_submission(self, submission_id: str, kind: str) -> BulkNotificationResult:
        """Tell the organization's admins and managers that a plan or report came in.

        Args:
            submission_id: Id of the weekly plan or report
            kind: "plan" or "report"

        Returns:
            Per-recipient results (empty when manager notifications are off)

        Raises:
            ValueError: If ``kind`` is unknown
            RecordNotFoundError: If the submission or its author does not exist
        """
        artifact = ARTIFACTS.get(kind)
        if artifact is None:
            raise ValueError(f"Unknown submission kind '{kind}', expected one of: plan, report")

        with self.database.session() as session:
            submission = artifact.repository(session).get(submission_id)
            if submission is None:
                raise RecordNotFoundError(f"Weekly {kind} {submission_id} not found")
            directory = DirectoryRepository(session)
            author = directory.get_user(submission.user_id)
            if author is None:
                raise RecordNotFoundError(f"User {submission.user_id} not found")
            managers = directory.list_managers(submission.organization_id)

        settings = self.get_report_settings(submission.organization_id)
        channels = _channels(settings)
        if not settings.manager_notifications or not channels:
            return BulkNotificationResult()

        recipients = [m.id for m in managers if m.id != author.id]
        return self.dispatcher.notify_report_update(
            submission,
            NotificationType.REPORT_SUBMISSION_RECEIVED,
            recipients,
            artifact.label,
            channels=channels,
            user_name=author.name,
        )

    def _organizations(self) -> List[Organization]:
        with self.database.session() as session:
            return DirectoryRepository(session).list_organizations()


def _channels(settings: ReportSettings) -> List[NotificationChannel]:
    channels = []
    if settings.in_app_notifications:
        channels.append(NotificationChannel.IN_APP)
    if settings.email_notifications:
        channels.append(NotificationChannel.EMAIL)
    return channels


def _is_overdue(submission: WeeklySubmission) -> bool:
    return submission.is_overdue or submission.status == SubmissionStatus.OVERDUE
