"""Notification dispatcher: the only path that creates and delivers notifications.

The dispatcher applies the recipient's preferences, persists the
notification, then either delivers it right away, hands it to the retry
queue for a later instant, or both (email deferred past quiet hours, or
retried after a transient failure).

Email failures never escape the creation call: the error is recorded on the
notification and, when it may succeed later, a queue entry is created.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from notifier.config.models import QueueConfig
from notifier.domain.models import (
    DEFAULT_CHANNELS,
    Meeting,
    Notification,
    NotificationCategory,
    NotificationChannel,
    NotificationPreference,
    NotificationPriority,
    NotificationQueueEntry,
    NotificationSpec,
    NotificationType,
    QueueStatus,
    Task,
    WeeklySubmission,
)
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence.database import Database
from notifier.persistence.exceptions import DuplicateNotificationError, RecordNotFoundError
from notifier.persistence.repositories import (
    DirectoryRepository,
    NotificationRepository,
    PreferenceRepository,
    QueueRepository,
    TemplateRepository,
)
from notifier.utils.timestamps import Clock, format_timestamp_for_log, utc_now

from .content import build_content
from .models import (
    BulkNotificationResult,
    DeliveryResult,
    NotificationPage,
    NotificationResult,
    NotificationStats,
    NotificationTemplateError,
    RecipientRejectedError,
    SMTPDeliveryError,
)
from .preferences import category_enabled, in_quiet_hours, quiet_hours_end, resolve_channels
from .smtp_client import SMTPClient
from .templates import TemplateRenderer

logger = get_logger(__name__, component="dispatcher")

MAX_PAGE_SIZE = 100

_REMINDER_TYPES = (
    NotificationType.WEEKLY_PLAN_DUE,
    NotificationType.WEEKLY_PLAN_OVERDUE,
    NotificationType.WEEKLY_REPORT_DUE,
    NotificationType.WEEKLY_REPORT_OVERDUE,
)
_OVERDUE_TYPES = (
    NotificationType.TASK_OVERDUE,
    NotificationType.WEEKLY_PLAN_OVERDUE,
    NotificationType.WEEKLY_REPORT_OVERDUE,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class NotificationDispatcher:
    """Creates notifications, gates them on preferences and delivers them.

    Each store interaction uses its own short session; no session is held
    open while talking to the SMTP relay.
    """

    def __init__(
        self,
        database: Database,
        smtp_client: Optional[SMTPClient] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        queue_config: Optional[QueueConfig] = None,
        clock: Clock = utc_now,
    ):
        """Initialize the dispatcher.

        Args:
            database: Store holding notifications, preferences and the queue
            smtp_client: Email channel; None disables email delivery
            template_renderer: Email renderer (creates default if None)
            queue_config: Retry settings (defaults if None)
            clock: Source of "now"
        """
        self.database = database
        self.smtp_client = smtp_client
        self.template_renderer = template_renderer or TemplateRenderer()
        self.queue_config = queue_config or QueueConfig()
        self.clock = clock

    # Creation

    def create_notification(
        self, spec: NotificationSpec, deliver_immediately: bool = True
    ) -> NotificationResult:
        """Create one notification and deliver or schedule it.

        Args:
            spec: What to create; ``user_id`` is required
            deliver_immediately: Deliver synchronously when not scheduled

        Returns:
            NotificationResult with status "delivered", "scheduled", "created",
            "skipped" (category disabled by the recipient) or "duplicate"
            (dedup key already used)

        Raises:
            ValueError: If the spec has no recipient
            PersistenceError: If the store fails
        """
        if not spec.user_id:
            raise ValueError("NotificationSpec.user_id is required")

        now = self.clock()
        category = spec.resolved_category()

        with self.database.session() as session:
            preference = self._load_preference(session, spec.user_id, spec.organization_id)

        if not category_enabled(preference, category):
            logger.info(
                f"Skipping {spec.type.value} for user {spec.user_id} - "
                f"{category.value.lower()} notifications disabled",
                extra={
                    "event": "notification.skip",
                    "reason": "category_disabled",
                    "user_id": spec.user_id,
                    "notification_type": spec.type.value,
                },
            )
            return NotificationResult(status="skipped", reason="category_disabled")

        title, message = spec.title, spec.message
        if title is None or message is None:
            default_title, default_message = build_content(spec.type, spec.data)
            title = default_title if title is None else title
            message = default_message if message is None else message

        # A schedule that is already due is delivered like an immediate notification
        scheduled_for = spec.scheduled_for if spec.scheduled_for and spec.scheduled_for > now else None
        requested = list(spec.channels) if spec.channels is not None else list(DEFAULT_CHANNELS)

        notification = Notification(
            user_id=spec.user_id,
            organization_id=spec.organization_id,
            type=spec.type,
            category=category,
            title=title,
            message=message,
            data=spec.data,
            priority=spec.priority,
            scheduled_for=scheduled_for,
            entity_type=spec.entity_type,
            entity_id=spec.entity_id,
            dedup_key=spec.dedup_key,
            created_at=now,
            updated_at=now,
        )

        try:
            with self.database.session() as session:
                notification = NotificationRepository(session).add(notification)
                queue_entry = None
                if scheduled_for is not None:
                    queue_entry = self._enqueue(session, notification, requested, scheduled_for, now)
        except DuplicateNotificationError:
            logger.info(
                f"Skipping {spec.type.value} for user {spec.user_id} - already sent",
                extra={
                    "event": "notification.duplicate",
                    "user_id": spec.user_id,
                    "dedup_key": spec.dedup_key,
                },
            )
            return NotificationResult(status="duplicate", reason="dedup_key_exists")

        with log_context(notification_id=notification.id):
            logger.info(
                f"Created {notification.type.value} notification for user {notification.user_id}",
                extra={
                    "event": "notification.created",
                    "user_id": notification.user_id,
                    "notification_type": notification.type.value,
                    "priority": notification.priority.value,
                },
            )

            if queue_entry is not None:
                logger.info(
                    f"Scheduled delivery for {format_timestamp_for_log(scheduled_for)}",
                    extra={"event": "notification.scheduled", "queue_entry_id": queue_entry.id},
                )
                return NotificationResult(
                    status="scheduled", notification=notification, queue_entry_id=queue_entry.id
                )

            if not deliver_immediately:
                return NotificationResult(status="created", notification=notification)

            return self._deliver_now(notification, preference, requested, now)

    def create_bulk_notifications(
        self,
        user_ids: Iterable[str],
        base_spec: NotificationSpec,
        deliver_immediately: bool = True,
    ) -> BulkNotificationResult:
        """Create the same notification for several recipients.

        A failure for one recipient is logged and reported in
        ``BulkNotificationResult.failed``; the remaining recipients are
        still processed. A dedup key on ``base_spec`` is made per-recipient.
        """
        bulk = BulkNotificationResult()
        for user_id in dict.fromkeys(user_ids):
            update: Dict[str, Any] = {"user_id": user_id}
            if base_spec.dedup_key:
                update["dedup_key"] = f"{base_spec.dedup_key}:{user_id}"
            spec = base_spec.model_copy(update=update)
            try:
                bulk.results[user_id] = self.create_notification(spec, deliver_immediately)
            except Exception as e:
                bulk.failed[user_id] = str(e)
                logger.error(
                    f"Failed to create {base_spec.type.value} for user {user_id}: {e}",
                    exc_info=True,
                    extra={
                        "event": "notification.bulk.recipient_failed",
                        "user_id": user_id,
                        "error_type": type(e).__name__,
                    },
                )

        if bulk.failed:
            logger.warning(
                f"Bulk {base_spec.type.value}: {bulk.created_count} created, "
                f"{len(bulk.failed)} failed",
                extra={
                    "event": "notification.bulk.partial_failure",
                    "created": bulk.created_count,
                    "failed": len(bulk.failed),
                },
            )
        return bulk

    # Delivery

    def deliver(
        self,
        notification_id: str,
        channels: Optional[Sequence[NotificationChannel]] = None,
    ) -> DeliveryResult:
        """Deliver a stored notification over the requested channels.

        Channels are filtered by the recipient's current preferences. In-app
        delivery is a flag on the row. Email is sent at most once: a
        notification whose email is already delivered is not resent. Push is
        tracked but not delivered.

        Args:
            notification_id: Notification to deliver
            channels: Requested channels (default: in-app + email)

        Returns:
            DeliveryResult; ``email_error`` is set when the email channel failed

        Raises:
            RecordNotFoundError: If the notification does not exist
        """
        now = self.clock()
        requested = [
            NotificationChannel(c) for c in (DEFAULT_CHANNELS if channels is None else channels)
        ]

        with self.database.session() as session:
            notification = NotificationRepository(session).get(notification_id)
            if notification is None:
                raise RecordNotFoundError(f"Notification {notification_id} not found")
            preference = self._load_preference(
                session, notification.user_id, notification.organization_id
            )
            recipient = DirectoryRepository(session).get_user(notification.user_id)
            template = TemplateRepository(session).get_active(
                notification.organization_id, notification.type
            )

        allowed = resolve_channels(preference, notification.category, requested)
        result = DeliveryResult(
            notification_id=notification_id,
            skipped_channels=[c for c in requested if c not in allowed],
        )
        updates: Dict[str, Any] = {}

        if NotificationChannel.IN_APP in allowed:
            result.delivered_channels.append(NotificationChannel.IN_APP)
            if not notification.in_app_delivered:
                updates["in_app_delivered"] = True

        if NotificationChannel.PUSH in allowed:
            result.skipped_channels.append(NotificationChannel.PUSH)

        if NotificationChannel.EMAIL in allowed:
            if notification.email_delivered:
                result.delivered_channels.append(NotificationChannel.EMAIL)
            elif self.smtp_client is None:
                result.skipped_channels.append(NotificationChannel.EMAIL)
                logger.warning(
                    "Email channel not configured, skipping email delivery",
                    extra={"event": "notification.email.disabled", "notification_id": notification_id},
                )
            else:
                self._send_email(notification, recipient, template, result, updates, now)

        if result.delivered_channels and notification.delivered_at is None:
            updates["delivered_at"] = now

        if updates:
            with self.database.session() as session:
                NotificationRepository(session).update_delivery(notification_id, now, **updates)

        return result

    def _send_email(self, notification, recipient, template, result, updates, now) -> None:
        try:
            if recipient is None or not recipient.email:
                raise RecipientRejectedError(f"User {notification.user_id} has no email address")
            rendered = self.template_renderer.render_email(notification, recipient, template)
            result.message_id = self.smtp_client.send(
                recipient.email,
                rendered["subject"],
                rendered["text_body"],
                rendered["html_body"],
            )
        except (RecipientRejectedError, NotificationTemplateError) as e:
            result.email_error = str(e)
            result.retryable = False
        except SMTPDeliveryError as e:
            result.email_error = str(e)
            result.retryable = True
        except Exception as e:
            # Channel failures never fail the notification itself
            logger.error(
                f"Unexpected email channel error for notification {notification.id}: {e}",
                exc_info=True,
                extra={"event": "notification.email.error", "error_type": type(e).__name__},
            )
            result.email_error = f"Unexpected email channel error: {e}"
            result.retryable = True
        else:
            result.delivered_channels.append(NotificationChannel.EMAIL)
            updates.update(email_delivered=True, email_sent_at=now, email_error=None)
            logger.info(
                f"Email sent for notification {notification.id}",
                extra={"event": "notification.email.sent", "message_id": result.message_id},
            )
            return

        updates["email_error"] = result.email_error
        logger.warning(
            f"Email delivery failed for notification {notification.id}: {result.email_error}",
            extra={
                "event": "notification.email.failed",
                "notification_id": notification.id,
                "retryable": result.retryable,
            },
        )

    def _deliver_now(
        self,
        notification: Notification,
        preference: NotificationPreference,
        requested: List[NotificationChannel],
        now: datetime,
    ) -> NotificationResult:
        wants_email = NotificationChannel.EMAIL in resolve_channels(
            preference, notification.category, requested
        )

        if wants_email and in_quiet_hours(preference, now):
            immediate = [c for c in requested if c != NotificationChannel.EMAIL]
            delivery = self.deliver(notification.id, immediate)
            resume_at = quiet_hours_end(preference, now)
            with self.database.session() as session:
                entry = self._enqueue(
                    session, notification, [NotificationChannel.EMAIL], resume_at, now
                )
            logger.info(
                f"Email deferred until {format_timestamp_for_log(resume_at)} (quiet hours)",
                extra={"event": "notification.email.deferred", "queue_entry_id": entry.id},
            )
            return NotificationResult(
                status="delivered",
                notification=notification,
                delivery=delivery,
                queue_entry_id=entry.id,
            )

        delivery = self.deliver(notification.id, requested)
        entry_id = None
        if delivery.email_error and delivery.retryable and self.queue_config.max_attempts > 1:
            with self.database.session() as session:
                entry = self._enqueue(
                    session,
                    notification,
                    [NotificationChannel.EMAIL],
                    now,
                    now,
                    attempts=1,
                    error=delivery.email_error,
                )
            entry_id = entry.id
            logger.info(
                f"Email retry scheduled for {format_timestamp_for_log(entry.next_attempt_at)}",
                extra={"event": "queue.entry.retry_scheduled", "queue_entry_id": entry_id},
            )

        return NotificationResult(
            status="delivered",
            notification=notification,
            delivery=delivery,
            queue_entry_id=entry_id,
        )

    def _enqueue(
        self,
        session,
        notification: Notification,
        channels: Sequence[NotificationChannel],
        scheduled_for: datetime,
        now: datetime,
        attempts: int = 0,
        error: Optional[str] = None,
    ) -> NotificationQueueEntry:
        entry = NotificationQueueEntry(
            notification_id=notification.id,
            user_id=notification.user_id,
            organization_id=notification.organization_id,
            notification_type=notification.type,
            priority=notification.priority,
            channels=list(channels),
            scheduled_for=scheduled_for,
            status=QueueStatus.PENDING,
            attempts=attempts,
            max_attempts=self.queue_config.max_attempts,
            last_attempt_at=now if attempts else None,
            next_attempt_at=(
                now + attempts * self.queue_config.retry_backoff_delta if attempts else None
            ),
            error=error,
            created_at=now,
            updated_at=now,
        )
        return QueueRepository(session).add(entry)

    def _load_preference(self, session, user_id: str, organization_id: str) -> NotificationPreference:
        preference = PreferenceRepository(session).get(user_id)
        return preference or NotificationPreference.defaults(user_id, organization_id)

    # Read state

    def mark_as_read(self, user_id: str, notification_id: str) -> bool:
        """Mark one of the user's notifications as read.

        Returns:
            True if the notification belonged to the user and was unread
        """
        return self.mark_multiple_as_read(user_id, [notification_id]) == 1

    def mark_multiple_as_read(self, user_id: str, notification_ids: Sequence[str]) -> int:
        """Mark several notifications as read; ids owned by other users are ignored.

        Returns:
            Number of notifications changed
        """
        with self.database.session() as session:
            changed = NotificationRepository(session).mark_read(
                user_id, notification_ids, self.clock()
            )
        logger.debug(
            f"Marked {changed} notification(s) read for user {user_id}",
            extra={"event": "notification.read", "user_id": user_id, "count": changed},
        )
        return changed

    def mark_all_as_read(self, user_id: str, organization_id: Optional[str] = None) -> int:
        """Mark every unread notification of the user as read.

        Returns:
            Number of notifications changed
        """
        with self.database.session() as session:
            changed = NotificationRepository(session).mark_all_read(
                user_id, self.clock(), organization_id
            )
        logger.debug(
            f"Marked all ({changed}) notifications read for user {user_id}",
            extra={"event": "notification.read_all", "user_id": user_id, "count": changed},
        )
        return changed

    def get_user_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        category: Optional[NotificationCategory] = None,
        notification_type: Optional[NotificationType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> NotificationPage:
        """Page through a user's notifications, newest first.

        Raises:
            ValueError: If limit is outside 1..100 or offset is negative
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
        if offset < 0:
            raise ValueError(f"offset must not be negative, got {offset}")

        with self.database.session() as session:
            page, total, unread = NotificationRepository(session).list_for_user(
                user_id,
                is_read=is_read,
                category=category,
                notification_type=notification_type,
                limit=limit,
                offset=offset,
            )
        return NotificationPage(
            notifications=page, total=total, unread_count=unread, limit=limit, offset=offset
        )

    # Maintenance

    def cleanup_old_notifications(self, days_to_keep: int = 30) -> int:
        """Delete read notifications older than ``days_to_keep`` days.

        Unread notifications are kept regardless of age.

        Returns:
            Number of notifications deleted
        """
        if days_to_keep < 1:
            raise ValueError(f"days_to_keep must be at least 1, got {days_to_keep}")

        cutoff = self.clock() - timedelta(days=days_to_keep)
        with self.database.session() as session:
            deleted = NotificationRepository(session).delete_read_before(cutoff)

        logger.info(
            f"Deleted {deleted} read notification(s) older than {days_to_keep} days",
            extra={
                "event": "notification.cleanup.completed",
                "deleted": deleted,
                "cutoff": format_timestamp_for_log(cutoff),
            },
        )
        return deleted

    def get_notification_stats(self, organization_id: str, days: int = 7) -> NotificationStats:
        """Summarize an organization's notifications over the last ``days`` days."""
        since = self.clock() - timedelta(days=days)
        with self.database.session() as session:
            repo = NotificationRepository(session)
            total = repo.count_for_organization(organization_id, since)
            delivered = repo.count_for_organization(organization_id, since, delivered_only=True)
            reminders = repo.count_for_organization(organization_id, since, types=_REMINDER_TYPES)
            overdue = repo.count_for_organization(organization_id, since, types=_OVERDUE_TYPES)
        return NotificationStats(
            organization_id=organization_id,
            days=days,
            total=total,
            delivered=delivered,
            report_reminders=reminders,
            overdue_alerts=overdue,
        )

    # Domain event helpers

    def notify_task_update(
        self,
        task: Task,
        notification_type: NotificationType,
        recipient_ids: Iterable[str],
        **payload: Any,
    ) -> BulkNotificationResult:
        """Notify users about a change to a task.

        Extra keyword arguments (e.g. ``commenter_name``) are added to the
        payload used for the wording.
        """
        data = {
            "task_id": task.id,
            "project_id": task.project_id,
            "title": task.title,
            "status": task.status,
            "task_priority": task.priority,
            "due_date": _iso(task.due_date),
        }
        data.update(payload)
        urgent = notification_type == NotificationType.TASK_OVERDUE or task.priority == "Critical"
        spec = NotificationSpec(
            organization_id=task.organization_id,
            type=notification_type,
            data=data,
            priority=NotificationPriority.HIGH if urgent else NotificationPriority.MEDIUM,
            entity_type="Task",
            entity_id=task.id,
        )
        return self.create_bulk_notifications(recipient_ids, spec)

    def notify_meeting_update(
        self,
        meeting: Meeting,
        notification_type: NotificationType,
        recipient_ids: Optional[Iterable[str]] = None,
        **payload: Any,
    ) -> BulkNotificationResult:
        """Notify meeting attendees (or ``recipient_ids``) about a meeting change."""
        data = {
            "meeting_id": meeting.id,
            "project_id": meeting.project_id,
            "title": meeting.title,
            "start_time": _iso(meeting.start_time),
            "location": meeting.location,
            "meeting_link": meeting.meeting_link,
        }
        data.update(payload)
        cancelled = notification_type == NotificationType.MEETING_CANCELLED
        spec = NotificationSpec(
            organization_id=meeting.organization_id,
            type=notification_type,
            data=data,
            priority=NotificationPriority.HIGH if cancelled else NotificationPriority.MEDIUM,
            entity_type="Meeting",
            entity_id=meeting.id,
        )
        recipients = meeting.attendee_ids if recipient_ids is None else recipient_ids
        return self.create_bulk_notifications(recipients, spec)

    def notify_report_update(
        self,
        submission: WeeklySubmission,
        notification_type: NotificationType,
        recipient_ids: Iterable[str],
        submission_type: str,
        channels: Optional[List[NotificationChannel]] = None,
        **payload: Any,
    ) -> BulkNotificationResult:
        """Notify users about a weekly plan or report.

        Args:
            submission: The plan or report
            notification_type: Type to emit
            recipient_ids: Users to notify
            submission_type: "Weekly Plan" or "Weekly Report"
            channels: Channels to use (defaults to in-app and email)
            **payload: Extra wording fields (e.g. ``user_name``)
        """
        data = {
            "submission_id": submission.id,
            "submission_type": submission_type,
            "week_start": _iso(submission.week_start),
            "status": submission.status.value,
        }
        data.update(payload)
        urgent = "OVERDUE" in NotificationType(notification_type).value
        spec = NotificationSpec(
            organization_id=submission.organization_id,
            type=notification_type,
            data=data,
            priority=NotificationPriority.HIGH if urgent else NotificationPriority.MEDIUM,
            entity_type=submission_type.replace(" ", ""),
            entity_id=submission.id,
            channels=channels,
        )
        return self.create_bulk_notifications(recipient_ids, spec)
