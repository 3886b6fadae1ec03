"""Test helper utilities for notifier tests."""

from .factories import (
    FrozenClock,
    add_meeting,
    add_organization,
    add_preference,
    add_report_settings,
    add_submission,
    add_task,
    add_team,
    add_user,
    list_notifications,
    list_queue_entries,
)

__all__ = [
    "FrozenClock",
    "add_meeting",
    "add_organization",
    "add_preference",
    "add_report_settings",
    "add_submission",
    "add_task",
    "add_team",
    "add_user",
    "list_notifications",
    "list_queue_entries",
]
