"""Task due-date and meeting start-time scans.

Unlike the weekly reminders these scans keep no history: every run that
finds a matching task or meeting notifies again, so the job cadence is what
limits how often a user hears about the same item.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from notifier.config.models import ReminderConfig
from notifier.domain.models import (
    Meeting,
    NotificationPriority,
    NotificationSpec,
    NotificationType,
    Task,
)
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.notifications.dispatcher import NotificationDispatcher
from notifier.persistence.database import Database
from notifier.persistence.repositories import MeetingRepository, TaskRepository
from notifier.utils.timestamps import Clock, utc_now

from .policy import meeting_tier, overdue_days

logger = get_logger(__name__, component="reminders")

CRITICAL_TASK_PRIORITY = "Critical"


@dataclass
class ScanResult:
    """Summary of one task or meeting scan."""

    scan: str
    items: int = 0
    notifications_created: int = 0
    failures: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "scan": self.scan,
            "items": self.items,
            "notifications_created": self.notifications_created,
            "failures": self.failures,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def _task_data(task: Task) -> dict:
    return {
        "task_id": task.id,
        "project_id": task.project_id,
        "title": task.title,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "task_priority": task.priority,
    }


class DueDateScanner:
    """Emits task due-soon/overdue and meeting reminders."""

    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        reminder_config: Optional[ReminderConfig] = None,
        clock: Clock = utc_now,
    ):
        self.database = database
        self.dispatcher = dispatcher
        self.config = reminder_config or ReminderConfig()
        self.clock = clock

    def check_task_due_reminders(self, now: Optional[datetime] = None) -> ScanResult:
        """Remind assignees of open tasks that are due soon or overdue.

        Tasks due within the task window get TASK_DUE_SOON; tasks already past
        their due date get TASK_OVERDUE with the number of whole days overdue.
        """
        now = now or self.clock()
        start = time.monotonic()
        result = ScanResult(scan="task-due-reminders")

        with self.database.session() as session:
            repo = TaskRepository(session)
            due_soon = repo.list_due_between(now, now + self.config.task_due_window_delta)
            overdue = repo.list_overdue(now)

        for task in due_soon:
            urgent = task.priority == CRITICAL_TASK_PRIORITY
            spec = NotificationSpec(
                user_id=task.assignee_id,
                organization_id=task.organization_id,
                type=NotificationType.TASK_DUE_SOON,
                data=_task_data(task),
                priority=NotificationPriority.HIGH if urgent else NotificationPriority.MEDIUM,
                entity_type="Task",
                entity_id=task.id,
            )
            self._notify(spec, result)

        for task in overdue:
            data = _task_data(task)
            data["overdue_days"] = overdue_days(task.due_date, now)
            spec = NotificationSpec(
                user_id=task.assignee_id,
                organization_id=task.organization_id,
                type=NotificationType.TASK_OVERDUE,
                data=data,
                priority=NotificationPriority.HIGH,
                entity_type="Task",
                entity_id=task.id,
            )
            self._notify(spec, result)

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Task scan: {len(due_soon)} due soon, {len(overdue)} overdue, "
            f"{result.notifications_created} notification(s) created",
            extra={
                "event": "reminders.tasks.completed",
                "due_soon": len(due_soon),
                "overdue": len(overdue),
                **result.to_dict(),
            },
        )
        return result

    def check_meeting_reminders(self, now: Optional[datetime] = None) -> ScanResult:
        """Remind attendees of meetings starting within the reminder window.

        Each meeting falls in exactly one tier: starting soon (15 minutes) or
        upcoming (1 hour).
        """
        now = now or self.clock()
        start = time.monotonic()
        result = ScanResult(scan="meeting-reminders")

        with self.database.session() as session:
            meetings = MeetingRepository(session).list_starting_between(
                now, now + self.config.meeting_reminder_delta
            )

        for meeting in meetings:
            tier = meeting_tier(
                now,
                meeting.start_time,
                self.config.meeting_starting_soon_delta,
                self.config.meeting_reminder_delta,
            )
            if tier is None or not meeting.attendee_ids:
                continue
            with log_context(meeting_id=meeting.id):
                self._remind_attendees(meeting, tier, result)

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Meeting scan: {result.items} reminder(s) for {len(meetings)} meeting(s)",
            extra={"event": "reminders.meetings.completed", **result.to_dict()},
        )
        return result

    def _remind_attendees(self, meeting: Meeting, tier: str, result: ScanResult) -> None:
        spec = NotificationSpec(
            organization_id=meeting.organization_id,
            type=NotificationType.MEETING_REMINDER,
            data={
                "meeting_id": meeting.id,
                "project_id": meeting.project_id,
                "title": meeting.title,
                "start_time": meeting.start_time.isoformat(),
                "location": meeting.location,
                "meeting_link": meeting.meeting_link,
                "reminder_type": tier,
            },
            priority=NotificationPriority.MEDIUM,
            entity_type="Meeting",
            entity_id=meeting.id,
        )
        bulk = self.dispatcher.create_bulk_notifications(meeting.attendee_ids, spec)
        result.items += len(meeting.attendee_ids)
        result.notifications_created += bulk.created_count
        result.failures += len(bulk.failed)

    def _notify(self, spec: NotificationSpec, result: ScanResult) -> None:
        result.items += 1
        try:
            outcome = self.dispatcher.create_notification(spec)
        except Exception as e:
            result.failures += 1
            logger.error(
                f"Failed to create {spec.type.value} for task {spec.entity_id}: {e}",
                exc_info=True,
                extra={"event": "reminders.task.failed", "task_id": spec.entity_id},
            )
            return
        if outcome.created:
            result.notifications_created += 1
