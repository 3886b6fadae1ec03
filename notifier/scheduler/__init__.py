"""Scheduling of the recurring reminder, queue and cleanup jobs."""

from .exceptions import (
    InvalidCheckKindError,
    InvalidCronExpressionError,
    SchedulerError,
    UnknownJobError,
)
from .jobs import MANUAL_CHECKS, build_job_bodies
from .service import SchedulerService

__all__ = [
    "SchedulerService",
    "build_job_bodies",
    "MANUAL_CHECKS",
    "SchedulerError",
    "UnknownJobError",
    "InvalidCronExpressionError",
    "InvalidCheckKindError",
]
