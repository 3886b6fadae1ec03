"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List

from apscheduler.triggers.cron import CronTrigger


def validate_cron_expression(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Parse a five-field crontab expression into an APScheduler trigger.

    Day-of-week names ("mon", "fri") are preferred over numbers because
    APScheduler counts weekdays from Monday = 0, unlike classic cron.

    Args:
        expression: Crontab expression (minute hour day month day_of_week)
        timezone: IANA zone the expression is evaluated in

    Returns:
        CronTrigger for the expression

    Raises:
        ValueError: If the expression cannot be parsed
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ValueError("Cron expression cannot be empty")

    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(
            f"Invalid cron expression '{expression}': expected 5 fields, got {len(fields)}"
        )

    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid cron expression '{expression}': {e}") from e


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for suspicious but valid settings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    reminders = config_dict.get("reminders") or {}
    if isinstance(reminders, dict):
        threshold = reminders.get("compliance_threshold")
        if threshold == 0:
            warning_messages.append(
                "compliance_threshold is 0; low compliance alerts will never be sent"
            )
        elif threshold == 100:
            warning_messages.append(
                "compliance_threshold is 100; an alert is sent whenever anyone misses a submission"
            )

    queue = config_dict.get("queue") or {}
    if isinstance(queue, dict):
        max_attempts = queue.get("max_attempts")
        if isinstance(max_attempts, int) and max_attempts == 1:
            warning_messages.append(
                "queue.max_attempts is 1; failed deliveries will never be retried"
            )

    scheduler = config_dict.get("scheduler") or {}
    if isinstance(scheduler, dict):
        jobs = scheduler.get("jobs") or {}
        if isinstance(jobs, dict):
            queue_cron = jobs.get("process-scheduled-notifications")
            if isinstance(queue_cron, str) and queue_cron.split()[:1] == ["*"]:
                warning_messages.append(
                    "process-scheduled-notifications runs every minute; "
                    "consider a longer interval to reduce store load"
                )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
