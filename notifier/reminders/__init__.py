"""Reminder policy and the checks that turn it into notifications."""

from .engine import ARTIFACTS, ReminderRunResult, ReportReminderEngine
from .policy import (
    ReminderKind,
    classify_reminder,
    compliance_rate,
    due_day_label,
    due_instant,
    is_low_compliance,
    is_reminder_day,
    js_weekday,
    meeting_tier,
    overdue_days,
    parse_due_time,
    week_end,
    week_start,
)
from .scans import DueDateScanner, ScanResult

__all__ = [
    "ReportReminderEngine",
    "DueDateScanner",
    "ReminderRunResult",
    "ScanResult",
    "ARTIFACTS",
    "ReminderKind",
    "classify_reminder",
    "compliance_rate",
    "due_day_label",
    "due_instant",
    "is_low_compliance",
    "is_reminder_day",
    "js_weekday",
    "meeting_tier",
    "overdue_days",
    "parse_due_time",
    "week_end",
    "week_start",
]
