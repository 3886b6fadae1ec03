"""Domain models shared across the notification service."""

from .models import (
    DEFAULT_CHANNELS,
    Meeting,
    Notification,
    NotificationCategory,
    NotificationChannel,
    NotificationPreference,
    NotificationPriority,
    NotificationQueueEntry,
    NotificationSpec,
    NotificationTemplate,
    NotificationType,
    Organization,
    QueueStatus,
    ReportSettings,
    Role,
    SubmissionStatus,
    Task,
    User,
    WeeklyPlan,
    WeeklyReport,
    WeeklySubmission,
    category_for,
)

__all__ = [
    "DEFAULT_CHANNELS",
    "Meeting",
    "Notification",
    "NotificationCategory",
    "NotificationChannel",
    "NotificationPreference",
    "NotificationPriority",
    "NotificationQueueEntry",
    "NotificationSpec",
    "NotificationTemplate",
    "NotificationType",
    "Organization",
    "QueueStatus",
    "ReportSettings",
    "Role",
    "SubmissionStatus",
    "Task",
    "User",
    "WeeklyPlan",
    "WeeklyReport",
    "WeeklySubmission",
    "category_for",
]
