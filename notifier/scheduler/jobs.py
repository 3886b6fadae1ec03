"""Job bodies for the recurring jobs and the manual check kinds that map to them."""

from typing import Any, Callable, Dict

from notifier.notifications.dispatcher import NotificationDispatcher
from notifier.notifications.queue import RetryQueueProcessor
from notifier.reminders.engine import ReportReminderEngine
from notifier.reminders.scans import DueDateScanner

JobBody = Callable[[], Any]

# Manual check kind -> job whose body it runs
MANUAL_CHECKS: Dict[str, str] = {
    "plan": "daily-plan-reminders",
    "report": "daily-report-reminders",
    "compliance": "weekly-compliance-alerts",
    "scheduled": "process-scheduled-notifications",
    "tasks": "task-due-reminders",
    "meetings": "meeting-reminders",
    "cleanup": "notification-cleanup",
}


def build_job_bodies(
    dispatcher: NotificationDispatcher,
    queue_processor: RetryQueueProcessor,
    reminder_engine: ReportReminderEngine,
    scanner: DueDateScanner,
    days_to_keep: int = 30,
) -> Dict[str, JobBody]:
    """Bind every job name to the component call it performs.

    Returns:
        Mapping of job name to a zero-argument callable
    """

    def evening_reminders() -> Dict[str, Any]:
        return {
            "plan": reminder_engine.check_weekly_plan_reminders().to_dict(),
            "report": reminder_engine.check_weekly_report_reminders().to_dict(),
        }

    def cleanup() -> Dict[str, int]:
        return {"deleted": dispatcher.cleanup_old_notifications(days_to_keep)}

    return {
        "daily-plan-reminders": reminder_engine.check_weekly_plan_reminders,
        "daily-report-reminders": reminder_engine.check_weekly_report_reminders,
        "weekly-compliance-alerts": reminder_engine.check_compliance_alerts,
        "process-scheduled-notifications": queue_processor.process_pending,
        "evening-reminders": evening_reminders,
        "task-due-reminders": scanner.check_task_due_reminders,
        "meeting-reminders": scanner.check_meeting_reminders,
        "notification-cleanup": cleanup,
    }
