"""Core domain models for notifications and the records they are derived from.

This module defines:
- Closed enumerations (notification types, categories, statuses, roles)
- Notification, NotificationPreference, NotificationQueueEntry and
  NotificationTemplate, which the service owns
- ReportSettings, the per-organization weekly cadence policy
- Read models for the external project-management records the reminder
  engine evaluates (users, tasks, meetings, weekly plans and reports)
- NotificationSpec, the input accepted by the dispatcher
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class NotificationType(str, Enum):
    """Every kind of notification the platform emits."""

    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_DUE_SOON = "TASK_DUE_SOON"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    TASK_COMMENT_ADDED = "TASK_COMMENT_ADDED"
    TASK_MENTION = "TASK_MENTION"
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_UPDATED = "PROJECT_UPDATED"
    PROJECT_MEMBER_ADDED = "PROJECT_MEMBER_ADDED"
    PROJECT_DEADLINE_APPROACHING = "PROJECT_DEADLINE_APPROACHING"
    MEETING_SCHEDULED = "MEETING_SCHEDULED"
    MEETING_REMINDER = "MEETING_REMINDER"
    MEETING_CANCELLED = "MEETING_CANCELLED"
    MEETING_UPDATED = "MEETING_UPDATED"
    MEETING_STARTING_SOON = "MEETING_STARTING_SOON"
    WEEKLY_PLAN_DUE = "WEEKLY_PLAN_DUE"
    WEEKLY_PLAN_OVERDUE = "WEEKLY_PLAN_OVERDUE"
    WEEKLY_REPORT_DUE = "WEEKLY_REPORT_DUE"
    WEEKLY_REPORT_OVERDUE = "WEEKLY_REPORT_OVERDUE"
    REPORT_SUBMISSION_RECEIVED = "REPORT_SUBMISSION_RECEIVED"
    LOW_COMPLIANCE_ALERT = "LOW_COMPLIANCE_ALERT"
    SYSTEM_MAINTENANCE = "SYSTEM_MAINTENANCE"
    ACCOUNT_UPDATED = "ACCOUNT_UPDATED"
    SECURITY_ALERT = "SECURITY_ALERT"
    WELCOME = "WELCOME"
    CUSTOM = "CUSTOM"


class NotificationCategory(str, Enum):
    """Preference bucket a notification type belongs to."""

    TASK = "TASK"
    PROJECT = "PROJECT"
    MEETING = "MEETING"
    REPORT = "REPORT"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class NotificationChannel(str, Enum):
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    PUSH = "PUSH"


DEFAULT_CHANNELS = (NotificationChannel.IN_APP, NotificationChannel.EMAIL)


class QueueStatus(str, Enum):
    """Lifecycle of a queue entry: Pending -> Processing -> Completed | Pending | Failed."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class SubmissionStatus(str, Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "UnderReview"
    APPROVED = "Approved"
    NEEDS_REVISION = "NeedsRevision"
    OVERDUE = "Overdue"


# A plan or report in any of these states counts as handed in for the week
SUBMITTED_STATES = frozenset(
    {
        SubmissionStatus.SUBMITTED,
        SubmissionStatus.UNDER_REVIEW,
        SubmissionStatus.APPROVED,
    }
)


class Role(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    MEMBER = "Member"


_TYPE_PREFIX_CATEGORY = (
    ("TASK_", NotificationCategory.TASK),
    ("PROJECT_", NotificationCategory.PROJECT),
    ("MEETING_", NotificationCategory.MEETING),
    ("WEEKLY_", NotificationCategory.REPORT),
)

_TYPE_CATEGORY_OVERRIDES = {
    NotificationType.REPORT_SUBMISSION_RECEIVED: NotificationCategory.REPORT,
    NotificationType.LOW_COMPLIANCE_ALERT: NotificationCategory.REPORT,
}


def category_for(notification_type: NotificationType) -> NotificationCategory:
    """Return the category a notification type is filed under."""
    notification_type = NotificationType(notification_type)
    if notification_type in _TYPE_CATEGORY_OVERRIDES:
        return _TYPE_CATEGORY_OVERRIDES[notification_type]
    for prefix, category in _TYPE_PREFIX_CATEGORY:
        if notification_type.value.startswith(prefix):
            return category
    return NotificationCategory.SYSTEM


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class _TimestampedModel(BaseModel):
    """Normalizes every datetime field to timezone-aware UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return _as_utc(v)
        return v


class Notification(_TimestampedModel):
    """One user-facing alert.

    ``type``, ``category`` and ``user_id`` never change after creation. The
    row is otherwise mutated only by read-state transitions and delivery
    bookkeeping.
    """

    id: Optional[str] = None
    user_id: str
    organization_id: str
    type: NotificationType
    category: NotificationCategory
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    is_read: bool = False
    read_at: Optional[datetime] = None
    scheduled_for: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    in_app_delivered: bool = False
    email_delivered: bool = False
    push_delivered: bool = False
    email_sent_at: Optional[datetime] = None
    email_error: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    dedup_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_read_state(self):
        """read_at is present exactly when the notification is read."""
        if self.is_read and self.read_at is None:
            raise ValueError("read_at must be set when is_read is true")
        if not self.is_read and self.read_at is not None:
            raise ValueError("read_at must be empty when is_read is false")
        return self


class NotificationSpec(BaseModel):
    """Input to the dispatcher describing a notification to create.

    ``title`` and ``message`` may be omitted, in which case they are rendered
    from ``data`` by the per-type content registry. ``category`` defaults to
    the type's category.
    """

    user_id: Optional[str] = None
    organization_id: str
    type: NotificationType
    category: Optional[NotificationCategory] = None
    title: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    scheduled_for: Optional[datetime] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    channels: Optional[List[NotificationChannel]] = None
    dedup_key: Optional[str] = None

    @field_validator("scheduled_for")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def resolved_category(self) -> NotificationCategory:
        return self.category or category_for(self.type)


class NotificationPreference(BaseModel):
    """A user's notification switches.

    A missing row is equivalent to :meth:`defaults` - everything enabled,
    quiet hours off.
    """

    user_id: str
    organization_id: str
    enable_in_app: bool = True
    enable_email: bool = True
    enable_push: bool = True
    task_notifications: bool = True
    project_notifications: bool = True
    meeting_notifications: bool = True
    report_notifications: bool = True
    system_notifications: bool = True
    task_email: bool = True
    project_email: bool = True
    meeting_email: bool = True
    report_email: bool = True
    system_email: bool = True
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "08:00"
    quiet_hours_timezone: str = "UTC"

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_time_of_day(cls, v: str) -> str:
        if not _TIME_OF_DAY.match(v.strip()):
            raise ValueError(f"Expected HH:MM, got '{v}'")
        return v.strip()

    @classmethod
    def defaults(cls, user_id: str, organization_id: str) -> "NotificationPreference":
        return cls(user_id=user_id, organization_id=organization_id)


class NotificationQueueEntry(_TimestampedModel):
    """A durable, retryable delivery task for one notification."""

    id: Optional[str] = None
    notification_id: str
    job_type: str = "deliver_notification"
    user_id: str
    organization_id: str
    notification_type: NotificationType
    priority: NotificationPriority = NotificationPriority.MEDIUM
    channels: List[NotificationChannel] = Field(default_factory=list)
    scheduled_for: datetime
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class NotificationTemplate(BaseModel):
    """Organization-specific wording override for one notification type."""

    id: Optional[str] = None
    organization_id: str
    type: NotificationType
    name: str
    title_template: str
    message_template: str
    email_subject: Optional[str] = None
    email_template: Optional[str] = None
    is_active: bool = True


class ReportSettings(BaseModel):
    """Per-organization weekly plan/report cadence.

    Due days count from the week start: 1 = Monday ... 7 = Sunday.
    Reminder days use Sunday-based weekday numbers: 0 = Sunday ... 6 = Saturday.
    """

    organization_id: str
    plan_due_day: int = Field(1, ge=1, le=7)
    plan_due_time: str = "10:00"
    plan_reminder_days: List[int] = Field(default_factory=lambda: [0, 1])
    report_due_day: int = Field(5, ge=1, le=7)
    report_due_time: str = "17:00"
    report_reminder_days: List[int] = Field(default_factory=lambda: [3, 4, 5])
    is_enforced: bool = True
    grace_period_hours: int = Field(24, ge=0)
    email_notifications: bool = True
    in_app_notifications: bool = True
    manager_notifications: bool = True

    @field_validator("plan_due_time", "report_due_time")
    @classmethod
    def validate_due_time(cls, v: str) -> str:
        if not _TIME_OF_DAY.match(v.strip()):
            raise ValueError(f"Expected HH:MM, got '{v}'")
        return v.strip()

    @field_validator("plan_reminder_days", "report_reminder_days")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"Weekday must be between 0 (Sunday) and 6 (Saturday), got {day}")
        return sorted(set(v))

    @classmethod
    def defaults(cls, organization_id: str) -> "ReportSettings":
        return cls(organization_id=organization_id)


class Organization(BaseModel):
    id: str
    name: str


class User(BaseModel):
    id: str
    organization_id: str
    name: str
    email: str
    role: Role = Role.MEMBER
    is_active: bool = True


class Task(_TimestampedModel):
    id: str
    organization_id: str
    project_id: Optional[str] = None
    title: str
    status: str = "Todo"
    priority: str = "Medium"
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None


class Meeting(_TimestampedModel):
    id: str
    organization_id: str
    project_id: Optional[str] = None
    title: str
    start_time: datetime
    status: str = "Scheduled"
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    attendee_ids: List[str] = Field(default_factory=list)


class WeeklySubmission(_TimestampedModel):
    """Shared shape of weekly plans and reports."""

    id: str
    user_id: str
    organization_id: str
    week_start: datetime
    status: SubmissionStatus = SubmissionStatus.DRAFT
    is_overdue: bool = False
    submitted_at: Optional[datetime] = None

    @property
    def is_submitted(self) -> bool:
        return self.status in SUBMITTED_STATES


class WeeklyPlan(WeeklySubmission):
    pass


class WeeklyReport(WeeklySubmission):
    plan_id: Optional[str] = None
