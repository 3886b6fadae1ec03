"""Result types and exceptions for the notification layer."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from notifier.domain.models import Notification, NotificationChannel


class NotificationError(Exception):
    """Base exception for notification-related errors."""


class NotificationTemplateError(NotificationError):
    """Raised when a template cannot be rendered."""


class SMTPDeliveryError(NotificationError):
    """Raised when the email channel could not hand a message to the relay.

    Transient by default: the retry queue tries again later.
    """


class EmailTimeoutError(SMTPDeliveryError):
    """The SMTP conversation exceeded its time limit."""


class RecipientRejectedError(SMTPDeliveryError):
    """The address is invalid or the relay refused it.

    Permanent: retrying will not help.
    """


@dataclass
class DeliveryResult:
    """Outcome of one call to the delivery primitive.

    Attributes:
        notification_id: Notification that was delivered
        delivered_channels: Channels marked delivered by this call
        skipped_channels: Requested channels not attempted (disabled or unavailable)
        email_error: Error text when the email channel failed
        retryable: Whether a failed email may succeed on a later attempt
        message_id: Message-ID of a sent email
    """

    notification_id: str
    delivered_channels: List[NotificationChannel] = field(default_factory=list)
    skipped_channels: List[NotificationChannel] = field(default_factory=list)
    email_error: Optional[str] = None
    retryable: bool = False
    message_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.email_error is None


@dataclass
class NotificationResult:
    """Outcome of creating one notification.

    Attributes:
        status: One of "delivered", "scheduled", "created", "skipped", "duplicate"
        notification: The persisted notification (absent for skipped/duplicate)
        delivery: Result of immediate delivery, when it happened
        queue_entry_id: Queue entry created for deferred or retried delivery
        reason: Why nothing was created (skipped/duplicate)
    """

    status: str  # "delivered", "scheduled", "created", "skipped", "duplicate"
    notification: Optional[Notification] = None
    delivery: Optional[DeliveryResult] = None
    queue_entry_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def notification_id(self) -> Optional[str]:
        return self.notification.id if self.notification else None

    @property
    def created(self) -> bool:
        """Whether a notification row exists as a result of the call."""
        return self.notification is not None


@dataclass
class BulkNotificationResult:
    """Per-recipient outcomes of a bulk creation.

    Partial success is normal: ``failed`` maps each recipient whose creation
    raised to the error text, while every other recipient has a result.
    """

    results: Dict[str, NotificationResult] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def created_count(self) -> int:
        return sum(1 for result in self.results.values() if result.created)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)


@dataclass
class NotificationPage:
    """One page of a user's notifications."""

    notifications: List[Notification]
    total: int
    unread_count: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.notifications) < self.total


@dataclass
class NotificationStats:
    """Delivery statistics for an organization over a trailing period."""

    organization_id: str
    days: int
    total: int
    delivered: int
    report_reminders: int
    overdue_alerts: int

    @property
    def delivery_rate(self) -> int:
        """Percentage of notifications delivered, rounded."""
        if self.total == 0:
            return 0
        return int(self.delivered / self.total * 100 + 0.5)
