"""Title and message wording for every notification type.

Each notification type maps to a small pure function that turns the
notification payload into a ``(title, message)`` pair. The mapping is
checked against :class:`NotificationType` at import time, so adding a type
without wording fails immediately instead of falling back to generic text.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Tuple

from notifier.domain.models import NotificationType
from notifier.utils.timestamps import parse_timestamp

Payload = Mapping[str, Any]
ContentBuilder = Callable[[Payload], Tuple[str, str]]


def _as_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return parse_timestamp(value)
    return None


def _date(value: Any) -> str:
    dt = _as_datetime(value)
    return dt.strftime("%a %b %d, %Y") if dt else "an unspecified date"


def _time(value: Any) -> str:
    dt = _as_datetime(value)
    return dt.strftime("%H:%M %Z").strip() if dt else "an unspecified time"


def _title(payload: Payload) -> str:
    return str(payload.get("title") or "Untitled")


# Tasks

def _task_assigned(p: Payload) -> Tuple[str, str]:
    project = p.get("project_name")
    where = f' in project "{project}"' if project else ""
    return (
        f"Task assigned: {_title(p)}",
        f'You have been assigned to work on "{_title(p)}"{where}.',
    )


def _task_due_soon(p: Payload) -> Tuple[str, str]:
    return (
        f"Task due soon: {_title(p)}",
        f'Your task "{_title(p)}" is due on {_date(p.get("due_date"))}',
    )


def _task_overdue(p: Payload) -> Tuple[str, str]:
    days = p.get("overdue_days")
    if days is None:
        detail = f'was due on {_date(p.get("due_date"))} and is now overdue'
    else:
        detail = f"is {days} day(s) overdue"
    return f"Task overdue: {_title(p)}", f'Your task "{_title(p)}" {detail}'


def _task_status_changed(p: Payload) -> Tuple[str, str]:
    return (
        f"Task status updated: {_title(p)}",
        f'The status of "{_title(p)}" has been changed to "{p.get("status", "unknown")}".',
    )


def _task_comment_added(p: Payload) -> Tuple[str, str]:
    author = p.get("commenter_name") or "Someone"
    return f"New comment on: {_title(p)}", f'{author} added a comment to "{_title(p)}".'


def _task_mention(p: Payload) -> Tuple[str, str]:
    author = p.get("mentioned_by") or "Someone"
    return f"You were mentioned: {_title(p)}", f'{author} mentioned you on "{_title(p)}".'


# Projects

def _project_created(p: Payload) -> Tuple[str, str]:
    return f"Project created: {_title(p)}", f'The project "{_title(p)}" has been created.'


def _project_updated(p: Payload) -> Tuple[str, str]:
    return f"Project updated: {_title(p)}", f'The project "{_title(p)}" has been updated.'


def _project_member_added(p: Payload) -> Tuple[str, str]:
    return (
        f"Added to project: {_title(p)}",
        f'You have been added as a member of "{_title(p)}".',
    )


def _project_deadline(p: Payload) -> Tuple[str, str]:
    return (
        f"Project deadline approaching: {_title(p)}",
        f'The project "{_title(p)}" is due on {_date(p.get("due_date"))}.',
    )


# Meetings

def _meeting_scheduled(p: Payload) -> Tuple[str, str]:
    start = p.get("start_time")
    return (
        f"Meeting scheduled: {_title(p)}",
        f'You have been invited to "{_title(p)}" on {_date(start)} at {_time(start)}.',
    )


def _meeting_reminder(p: Payload) -> Tuple[str, str]:
    start = p.get("start_time")
    tier = p.get("reminder_type")
    if tier == "15minutes":
        return (
            f"Meeting starting soon: {_title(p)}",
            f'"{_title(p)}" starts in 15 minutes at {_time(start)}',
        )
    if tier == "1hour":
        return f"Meeting in 1 hour: {_title(p)}", f'"{_title(p)}" starts at {_time(start)}'
    return (
        f"Meeting reminder: {_title(p)}",
        f'Don\'t forget about "{_title(p)}" scheduled for {_date(start)} at {_time(start)}.',
    )


def _meeting_cancelled(p: Payload) -> Tuple[str, str]:
    return (
        f"Meeting cancelled: {_title(p)}",
        f'The meeting "{_title(p)}" scheduled for {_date(p.get("start_time"))} has been cancelled.',
    )


def _meeting_updated(p: Payload) -> Tuple[str, str]:
    return (
        f"Meeting updated: {_title(p)}",
        f'The meeting "{_title(p)}" has been updated. Please check the new details.',
    )


def _meeting_starting_soon(p: Payload) -> Tuple[str, str]:
    link = p.get("meeting_link")
    join = f" Join now: {link}" if link else ""
    return f"Meeting starting soon: {_title(p)}", f'"{_title(p)}" is starting in 15 minutes.{join}'


# Weekly plans and reports

def _weekly_due(artifact: str) -> ContentBuilder:
    def build(p: Payload) -> Tuple[str, str]:
        due_in = p.get("due_in", "tomorrow")
        due_time = p.get("due_time")
        deadline = f" Please submit it by {due_time}." if due_time else ""
        return (
            f"Weekly {artifact} due {due_in}",
            f"Your weekly {artifact} for the week of {_date(p.get('week_start'))} "
            f"is due {due_in}.{deadline}",
        )

    return build


def _weekly_overdue(artifact: str) -> ContentBuilder:
    def build(p: Payload) -> Tuple[str, str]:
        return (
            f"Weekly {artifact} overdue",
            f"Your weekly {artifact} for the week of {_date(p.get('week_start'))} "
            "is overdue. Please submit it as soon as possible.",
        )

    return build


def _submission_received(p: Payload) -> Tuple[str, str]:
    kind = p.get("submission_type", "Weekly Report")
    return (
        f"{kind} submitted",
        f"{p.get('user_name', 'A team member')} has submitted their {kind.lower()} "
        f"for the week of {_date(p.get('week_start'))}.",
    )


def _low_compliance(p: Payload) -> Tuple[str, str]:
    return (
        "Low team compliance alert",
        f"Team compliance has dropped to {p.get('compliance_rate', 0)}%. "
        "Please follow up with team members who haven't submitted their reports.",
    )


# System

def _system_message(default_title: str, default_message: str) -> ContentBuilder:
    def build(p: Payload) -> Tuple[str, str]:
        return str(p.get("title") or default_title), str(p.get("message") or default_message)

    return build


CONTENT_BUILDERS: Dict[NotificationType, ContentBuilder] = {
    NotificationType.TASK_ASSIGNED: _task_assigned,
    NotificationType.TASK_DUE_SOON: _task_due_soon,
    NotificationType.TASK_OVERDUE: _task_overdue,
    NotificationType.TASK_STATUS_CHANGED: _task_status_changed,
    NotificationType.TASK_COMMENT_ADDED: _task_comment_added,
    NotificationType.TASK_MENTION: _task_mention,
    NotificationType.PROJECT_CREATED: _project_created,
    NotificationType.PROJECT_UPDATED: _project_updated,
    NotificationType.PROJECT_MEMBER_ADDED: _project_member_added,
    NotificationType.PROJECT_DEADLINE_APPROACHING: _project_deadline,
    NotificationType.MEETING_SCHEDULED: _meeting_scheduled,
    NotificationType.MEETING_REMINDER: _meeting_reminder,
    NotificationType.MEETING_CANCELLED: _meeting_cancelled,
    NotificationType.MEETING_UPDATED: _meeting_updated,
    NotificationType.MEETING_STARTING_SOON: _meeting_starting_soon,
    NotificationType.WEEKLY_PLAN_DUE: _weekly_due("plan"),
    NotificationType.WEEKLY_PLAN_OVERDUE: _weekly_overdue("plan"),
    NotificationType.WEEKLY_REPORT_DUE: _weekly_due("report"),
    NotificationType.WEEKLY_REPORT_OVERDUE: _weekly_overdue("report"),
    NotificationType.REPORT_SUBMISSION_RECEIVED: _submission_received,
    NotificationType.LOW_COMPLIANCE_ALERT: _low_compliance,
    NotificationType.SYSTEM_MAINTENANCE: _system_message(
        "Scheduled maintenance", "The platform will be briefly unavailable for maintenance."
    ),
    NotificationType.ACCOUNT_UPDATED: _system_message(
        "Account updated", "Your account details have been updated."
    ),
    NotificationType.SECURITY_ALERT: _system_message(
        "Security alert", "A security-relevant change was made to your account."
    ),
    NotificationType.WELCOME: _system_message(
        "Welcome to ProjectFlow", "Your account is ready. Start by exploring your projects."
    ),
    NotificationType.CUSTOM: _system_message("Notification", ""),
}


def _check_registry() -> None:
    missing = [t.value for t in NotificationType if t not in CONTENT_BUILDERS]
    if missing:
        raise RuntimeError(f"No content builder for notification types: {', '.join(missing)}")


_check_registry()


def build_content(notification_type: NotificationType, payload: Payload) -> Tuple[str, str]:
    """Render the title and message for a notification.

    Args:
        notification_type: Type being created
        payload: Structured data stored on the notification

    Returns:
        Tuple of (title, message)
    """
    return CONTENT_BUILDERS[NotificationType(notification_type)](payload or {})
