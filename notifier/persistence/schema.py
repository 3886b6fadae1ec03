"""Database schema definition and ORM models.

Defines the SQLAlchemy tables for notification state (notifications, queue,
preferences, templates, report settings) and for the project-management
records the reminder engine reads (organizations, users, tasks, meetings,
weekly plans and reports), plus conversions to and from domain models.

Timestamps are stored as fixed-width UTC strings so range filters are plain
string comparisons on every backend.
"""

import uuid
from typing import List

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from notifier.domain.models import (
    Meeting,
    Notification,
    NotificationPreference,
    NotificationQueueEntry,
    NotificationTemplate,
    Organization,
    ReportSettings,
    Task,
    User,
    WeeklyPlan,
    WeeklyReport,
)
from notifier.logging import get_logger
from notifier.utils.timestamps import format_timestamp as _format_datetime
from notifier.utils.timestamps import parse_timestamp as _parse_datetime

logger = get_logger(__name__, component="database")

Base = declarative_base()


def new_id() -> str:
    """Generate a primary key for a new row."""
    return uuid.uuid4().hex


class OrganizationModel(Base):
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)

    def to_domain(self) -> Organization:
        return Organization(id=self.id, name=self.name)

    @classmethod
    def from_domain(cls, organization: Organization) -> "OrganizationModel":
        return cls(id=organization.id, name=organization.name)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False)
    role = Column(String(20), nullable=False, default="Member")
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_users_org_role", "organization_id", "role", "is_active"),)

    def to_domain(self) -> User:
        return User(
            id=self.id,
            organization_id=self.organization_id,
            name=self.name,
            email=self.email,
            role=self.role,
            is_active=self.is_active,
        )

    @classmethod
    def from_domain(cls, user: User) -> "UserModel":
        return cls(
            id=user.id,
            organization_id=user.organization_id,
            name=user.name,
            email=user.email,
            role=user.role.value,
            is_active=user.is_active,
        )


class TaskModel(Base):
    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True, default=new_id)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    project_id = Column(String(64), nullable=True)
    title = Column(Text, nullable=False)
    status = Column(String(30), nullable=False, default="Todo")
    priority = Column(String(20), nullable=False, default="Medium")
    due_date = Column(String(32), nullable=True)
    assignee_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (Index("idx_tasks_due_status", "due_date", "status"),)

    def to_domain(self) -> Task:
        return Task(
            id=self.id,
            organization_id=self.organization_id,
            project_id=self.project_id,
            title=self.title,
            status=self.status,
            priority=self.priority,
            due_date=_parse_datetime(self.due_date),
            assignee_id=self.assignee_id,
        )

    @classmethod
    def from_domain(cls, task: Task) -> "TaskModel":
        return cls(
            id=task.id,
            organization_id=task.organization_id,
            project_id=task.project_id,
            title=task.title,
            status=task.status,
            priority=task.priority,
            due_date=_format_datetime(task.due_date),
            assignee_id=task.assignee_id,
        )


class MeetingAttendeeModel(Base):
    __tablename__ = "meeting_attendees"

    meeting_id = Column(
        String(64), ForeignKey("meetings.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)


class MeetingModel(Base):
    __tablename__ = "meetings"

    id = Column(String(64), primary_key=True, default=new_id)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    project_id = Column(String(64), nullable=True)
    title = Column(Text, nullable=False)
    start_time = Column(String(32), nullable=False)
    status = Column(String(30), nullable=False, default="Scheduled")
    location = Column(String(255), nullable=True)
    meeting_link = Column(Text, nullable=True)

    attendees = relationship(
        MeetingAttendeeModel,
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by=MeetingAttendeeModel.user_id,
    )

    __table_args__ = (Index("idx_meetings_start_status", "start_time", "status"),)

    def to_domain(self) -> Meeting:
        return Meeting(
            id=self.id,
            organization_id=self.organization_id,
            project_id=self.project_id,
            title=self.title,
            start_time=_parse_datetime(self.start_time),
            status=self.status,
            location=self.location,
            meeting_link=self.meeting_link,
            attendee_ids=[attendee.user_id for attendee in self.attendees],
        )

    @classmethod
    def from_domain(cls, meeting: Meeting) -> "MeetingModel":
        return cls(
            id=meeting.id,
            organization_id=meeting.organization_id,
            project_id=meeting.project_id,
            title=meeting.title,
            start_time=_format_datetime(meeting.start_time),
            status=meeting.status,
            location=meeting.location,
            meeting_link=meeting.meeting_link,
            attendees=[MeetingAttendeeModel(user_id=user_id) for user_id in meeting.attendee_ids],
        )


class WeeklyPlanModel(Base):
    __tablename__ = "weekly_plans"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    week_start = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default="Draft")
    is_overdue = Column(Boolean, nullable=False, default=False)
    submitted_at = Column(String(32), nullable=True)
    updated_at = Column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_weekly_plans_user_week"),
        Index("idx_weekly_plans_org_week", "organization_id", "week_start"),
    )

    def to_domain(self) -> WeeklyPlan:
        return WeeklyPlan(
            id=self.id,
            user_id=self.user_id,
            organization_id=self.organization_id,
            week_start=_parse_datetime(self.week_start),
            status=self.status,
            is_overdue=self.is_overdue,
            submitted_at=_parse_datetime(self.submitted_at),
        )

    @classmethod
    def from_domain(cls, plan: WeeklyPlan) -> "WeeklyPlanModel":
        return cls(
            id=plan.id,
            user_id=plan.user_id,
            organization_id=plan.organization_id,
            week_start=_format_datetime(plan.week_start),
            status=plan.status.value,
            is_overdue=plan.is_overdue,
            submitted_at=_format_datetime(plan.submitted_at),
        )


class WeeklyReportModel(Base):
    __tablename__ = "weekly_reports"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    plan_id = Column(
        String(64), ForeignKey("weekly_plans.id", ondelete="SET NULL"), nullable=True
    )
    week_start = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default="Draft")
    is_overdue = Column(Boolean, nullable=False, default=False)
    submitted_at = Column(String(32), nullable=True)
    updated_at = Column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_weekly_reports_user_week"),
        Index("idx_weekly_reports_org_week", "organization_id", "week_start"),
    )

    def to_domain(self) -> WeeklyReport:
        return WeeklyReport(
            id=self.id,
            user_id=self.user_id,
            organization_id=self.organization_id,
            plan_id=self.plan_id,
            week_start=_parse_datetime(self.week_start),
            status=self.status,
            is_overdue=self.is_overdue,
            submitted_at=_parse_datetime(self.submitted_at),
        )

    @classmethod
    def from_domain(cls, report: WeeklyReport) -> "WeeklyReportModel":
        return cls(
            id=report.id,
            user_id=report.user_id,
            organization_id=report.organization_id,
            plan_id=report.plan_id,
            week_start=_format_datetime(report.week_start),
            status=report.status.value,
            is_overdue=report.is_overdue,
            submitted_at=_format_datetime(report.submitted_at),
        )


class ReportSettingsModel(Base):
    __tablename__ = "report_settings"

    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True
    )
    plan_due_day = Column(Integer, nullable=False, default=1)
    plan_due_time = Column(String(5), nullable=False, default="10:00")
    plan_reminder_days = Column(JSON, nullable=False)
    report_due_day = Column(Integer, nullable=False, default=5)
    report_due_time = Column(String(5), nullable=False, default="17:00")
    report_reminder_days = Column(JSON, nullable=False)
    is_enforced = Column(Boolean, nullable=False, default=True)
    grace_period_hours = Column(Integer, nullable=False, default=24)
    email_notifications = Column(Boolean, nullable=False, default=True)
    in_app_notifications = Column(Boolean, nullable=False, default=True)
    manager_notifications = Column(Boolean, nullable=False, default=True)

    def to_domain(self) -> ReportSettings:
        return ReportSettings(
            organization_id=self.organization_id,
            plan_due_day=self.plan_due_day,
            plan_due_time=self.plan_due_time,
            plan_reminder_days=list(self.plan_reminder_days or []),
            report_due_day=self.report_due_day,
            report_due_time=self.report_due_time,
            report_reminder_days=list(self.report_reminder_days or []),
            is_enforced=self.is_enforced,
            grace_period_hours=self.grace_period_hours,
            email_notifications=self.email_notifications,
            in_app_notifications=self.in_app_notifications,
            manager_notifications=self.manager_notifications,
        )

    @classmethod
    def from_domain(cls, settings: ReportSettings) -> "ReportSettingsModel":
        return cls(**settings.model_dump())


class NotificationModel(Base):
    """One row per notification decided by the service."""

    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False)
    organization_id = Column(String(64), nullable=False)
    type = Column(String(50), nullable=False)
    category = Column(String(20), nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    priority = Column(String(10), nullable=False, default="MEDIUM")
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(String(32), nullable=True)
    scheduled_for = Column(String(32), nullable=True)
    delivered_at = Column(String(32), nullable=True)
    in_app_delivered = Column(Boolean, nullable=False, default=False)
    email_delivered = Column(Boolean, nullable=False, default=False)
    push_delivered = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(String(32), nullable=True)
    email_error = Column(Text, nullable=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(64), nullable=True)
    dedup_key = Column(String(255), nullable=True)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("dedup_key", name="uq_notifications_dedup_key"),
        Index("idx_notifications_user_read", "user_id", "is_read", "created_at"),
        Index("idx_notifications_user_type_created", "user_id", "type", "created_at"),
        Index("idx_notifications_org_type_created", "organization_id", "type", "created_at"),
    )

    def to_domain(self) -> Notification:
        return Notification(
            id=self.id,
            user_id=self.user_id,
            organization_id=self.organization_id,
            type=self.type,
            category=self.category,
            title=self.title,
            message=self.message,
            data=dict(self.data or {}),
            priority=self.priority,
            is_read=self.is_read,
            read_at=_parse_datetime(self.read_at),
            scheduled_for=_parse_datetime(self.scheduled_for),
            delivered_at=_parse_datetime(self.delivered_at),
            in_app_delivered=self.in_app_delivered,
            email_delivered=self.email_delivered,
            push_delivered=self.push_delivered,
            email_sent_at=_parse_datetime(self.email_sent_at),
            email_error=self.email_error,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            dedup_key=self.dedup_key,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationModel":
        return cls(
            id=notification.id or new_id(),
            user_id=notification.user_id,
            organization_id=notification.organization_id,
            type=notification.type.value,
            category=notification.category.value,
            title=notification.title,
            message=notification.message,
            data=notification.data,
            priority=notification.priority.value,
            is_read=notification.is_read,
            read_at=_format_datetime(notification.read_at),
            scheduled_for=_format_datetime(notification.scheduled_for),
            delivered_at=_format_datetime(notification.delivered_at),
            in_app_delivered=notification.in_app_delivered,
            email_delivered=notification.email_delivered,
            push_delivered=notification.push_delivered,
            email_sent_at=_format_datetime(notification.email_sent_at),
            email_error=notification.email_error,
            entity_type=notification.entity_type,
            entity_id=notification.entity_id,
            dedup_key=notification.dedup_key,
            created_at=_format_datetime(notification.created_at),
            updated_at=_format_datetime(notification.updated_at or notification.created_at),
        )


class NotificationPreferenceModel(Base):
    __tablename__ = "notification_preferences"

    user_id = Column(String(64), primary_key=True)
    organization_id = Column(String(64), nullable=False)
    enable_in_app = Column(Boolean, nullable=False, default=True)
    enable_email = Column(Boolean, nullable=False, default=True)
    enable_push = Column(Boolean, nullable=False, default=True)
    task_notifications = Column(Boolean, nullable=False, default=True)
    project_notifications = Column(Boolean, nullable=False, default=True)
    meeting_notifications = Column(Boolean, nullable=False, default=True)
    report_notifications = Column(Boolean, nullable=False, default=True)
    system_notifications = Column(Boolean, nullable=False, default=True)
    task_email = Column(Boolean, nullable=False, default=True)
    project_email = Column(Boolean, nullable=False, default=True)
    meeting_email = Column(Boolean, nullable=False, default=True)
    report_email = Column(Boolean, nullable=False, default=True)
    system_email = Column(Boolean, nullable=False, default=True)
    quiet_hours_enabled = Column(Boolean, nullable=False, default=False)
    quiet_hours_start = Column(String(5), nullable=False, default="22:00")
    quiet_hours_end = Column(String(5), nullable=False, default="08:00")
    quiet_hours_timezone = Column(String(64), nullable=False, default="UTC")

    def to_domain(self) -> NotificationPreference:
        return NotificationPreference(
            **{column.key: getattr(self, column.key) for column in self.__table__.columns}
        )

    @classmethod
    def from_domain(cls, preference: NotificationPreference) -> "NotificationPreferenceModel":
        return cls(**preference.model_dump())


class NotificationQueueModel(Base):
    """Durable delivery task; the retry processor's work list."""

    __tablename__ = "notification_queue"

    id = Column(String(64), primary_key=True, default=new_id)
    notification_id = Column(
        String(64), ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    job_type = Column(String(50), nullable=False, default="deliver_notification")
    user_id = Column(String(64), nullable=False)
    organization_id = Column(String(64), nullable=False)
    notification_type = Column(String(50), nullable=False)
    priority = Column(String(10), nullable=False, default="MEDIUM")
    channels = Column(JSON, nullable=False, default=list)
    scheduled_for = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default="Pending")
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_attempt_at = Column(String(32), nullable=True)
    next_attempt_at = Column(String(32), nullable=True)
    processed_at = Column(String(32), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    __table_args__ = (
        Index("idx_queue_status_scheduled", "status", "scheduled_for"),
        Index("idx_queue_notification", "notification_id"),
    )

    def to_domain(self) -> NotificationQueueEntry:
        return NotificationQueueEntry(
            id=self.id,
            notification_id=self.notification_id,
            job_type=self.job_type,
            user_id=self.user_id,
            organization_id=self.organization_id,
            notification_type=self.notification_type,
            priority=self.priority,
            channels=list(self.channels or []),
            scheduled_for=_parse_datetime(self.scheduled_for),
            status=self.status,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            last_attempt_at=_parse_datetime(self.last_attempt_at),
            next_attempt_at=_parse_datetime(self.next_attempt_at),
            processed_at=_parse_datetime(self.processed_at),
            error=self.error,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, entry: NotificationQueueEntry) -> "NotificationQueueModel":
        return cls(
            id=entry.id or new_id(),
            notification_id=entry.notification_id,
            job_type=entry.job_type,
            user_id=entry.user_id,
            organization_id=entry.organization_id,
            notification_type=entry.notification_type.value,
            priority=entry.priority.value,
            channels=[channel.value for channel in entry.channels],
            scheduled_for=_format_datetime(entry.scheduled_for),
            status=entry.status.value,
            attempts=entry.attempts,
            max_attempts=entry.max_attempts,
            last_attempt_at=_format_datetime(entry.last_attempt_at),
            next_attempt_at=_format_datetime(entry.next_attempt_at),
            processed_at=_format_datetime(entry.processed_at),
            error=entry.error,
            created_at=_format_datetime(entry.created_at),
            updated_at=_format_datetime(entry.updated_at or entry.created_at),
        )


class NotificationTemplateModel(Base):
    __tablename__ = "notification_templates"

    id = Column(String(64), primary_key=True, default=new_id)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    title_template = Column(Text, nullable=False)
    message_template = Column(Text, nullable=False)
    email_subject = Column(Text, nullable=True)
    email_template = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "type", name="uq_notification_templates_org_type"),
    )

    def to_domain(self) -> NotificationTemplate:
        return NotificationTemplate(
            id=self.id,
            organization_id=self.organization_id,
            type=self.type,
            name=self.name,
            title_template=self.title_template,
            message_template=self.message_template,
            email_subject=self.email_subject,
            email_template=self.email_template,
            is_active=self.is_active,
        )

    @classmethod
    def from_domain(cls, template: NotificationTemplate) -> "NotificationTemplateModel":
        return cls(
            id=template.id or new_id(),
            organization_id=template.organization_id,
            type=template.type.value,
            name=template.name,
            title_template=template.title_template,
            message_template=template.message_template,
            email_subject=template.email_subject,
            email_template=template.email_template,
            is_active=template.is_active,
        )


def create_schema(engine: Engine) -> List[str]:
    """Create all tables and indexes that do not exist yet (idempotent).

    Args:
        engine: SQLAlchemy engine instance

    Returns:
        Names of the tables present after creation
    """
    Base.metadata.create_all(engine, checkfirst=True)
    tables = inspect(engine).get_table_names()
    logger.info(
        f"Database schema ready. Tables: {', '.join(tables)}",
        extra={"event": "database.schema.ready", "table_count": len(tables)},
    )
    return tables
