"""Configuration schema models using Pydantic."""

from datetime import timedelta
from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field, field_validator, model_validator

from notifier.utils.timestamps import get_zone

from .duration import (
    DurationParseError,
    parse_duration,
    parse_timedelta,
    validate_duration_range,
)
from .validators import validate_cron_expression

# Stable job names and their default cadence. Day-of-week uses names so the
# expression means the same thing to APScheduler and to classic cron.
DEFAULT_JOB_SCHEDULES: Dict[str, str] = {
    "daily-plan-reminders": "0 9 * * *",
    "daily-report-reminders": "0 14 * * *",
    "weekly-compliance-alerts": "0 10 * * mon",
    "process-scheduled-notifications": "*/15 * * * *",
    "evening-reminders": "0 16 * * *",
    "task-due-reminders": "0 8-18/2 * * *",
    "meeting-reminders": "*/30 * * * *",
    "notification-cleanup": "30 3 * * *",
}


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _duration_field(value: str, setting: str, min_seconds: int, max_seconds: int) -> str:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, setting, min_seconds, max_seconds)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class SchedulerConfig(BaseModel):
    """Recurring job settings."""

    jobs: Dict[str, str] = Field(
        default_factory=dict,
        description="Cron expression overrides keyed by job name",
    )
    misfire_grace_time: int = Field(
        300, ge=1, le=3600, description="Seconds a late tick may still run"
    )

    @field_validator("jobs")
    @classmethod
    def validate_job_overrides(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject unknown job names and unparsable cron expressions."""
        for name, expression in v.items():
            if name not in DEFAULT_JOB_SCHEDULES:
                known = ", ".join(sorted(DEFAULT_JOB_SCHEDULES))
                raise ValueError(f"Unknown job '{name}'. Known jobs: {known}")
            validate_cron_expression(expression)
        return {name: expression.strip() for name, expression in v.items()}


class QueueConfig(BaseModel):
    """Retry queue settings."""

    batch_size: int = Field(50, ge=1, le=1000, description="Entries claimed per drain")
    max_attempts: int = Field(3, ge=1, le=20, description="Attempts before an entry fails")
    retry_backoff: str = Field(
        "5m", description="Backoff step; the n-th retry waits n times this long"
    )
    processing_lease: str = Field(
        "10m", description="Age after which an unfinished Processing entry is reclaimed"
    )

    @field_validator("retry_backoff", "processing_lease")
    @classmethod
    def validate_durations(cls, v: str, info) -> str:
        """Validate the backoff step and the processing lease."""
        return _duration_field(v, info.field_name, 1, 86400)

    @property
    def retry_backoff_delta(self) -> timedelta:
        return parse_timedelta(self.retry_backoff)

    @property
    def processing_lease_delta(self) -> timedelta:
        return parse_timedelta(self.processing_lease)


class ReminderConfig(BaseModel):
    """Reminder classification windows and compliance policy."""

    due_window: str = Field("2h", description="Lead time before the due instant")
    dedup_window: str = Field("24h", description="Look-back for repeat weekly reminders")
    task_due_window: str = Field("24h", description="Horizon for task due-soon reminders")
    meeting_reminder_window: str = Field("1h", description="Outer meeting reminder tier")
    meeting_starting_soon_window: str = Field("15m", description="Inner meeting reminder tier")
    compliance_threshold: int = Field(
        80, ge=0, le=100, description="Alert when a compliance rate drops below this"
    )

    @field_validator("due_window", "dedup_window", "task_due_window")
    @classmethod
    def validate_long_windows(cls, v: str, info) -> str:
        """Validate hour-scale windows."""
        return _duration_field(v, info.field_name, 60, 7 * 86400)

    @field_validator("meeting_reminder_window", "meeting_starting_soon_window")
    @classmethod
    def validate_meeting_windows(cls, v: str, info) -> str:
        """Validate minute-scale windows."""
        return _duration_field(v, info.field_name, 60, 86400)

    @model_validator(mode="after")
    def validate_meeting_tiers(self):
        """The inner tier must be shorter than the outer one."""
        if parse_duration(self.meeting_starting_soon_window) >= parse_duration(
            self.meeting_reminder_window
        ):
            raise ValueError(
                "meeting_starting_soon_window must be shorter than meeting_reminder_window"
            )
        return self

    @property
    def due_window_delta(self) -> timedelta:
        return parse_timedelta(self.due_window)

    @property
    def dedup_window_delta(self) -> timedelta:
        return parse_timedelta(self.dedup_window)

    @property
    def task_due_window_delta(self) -> timedelta:
        return parse_timedelta(self.task_due_window)

    @property
    def meeting_reminder_delta(self) -> timedelta:
        return parse_timedelta(self.meeting_reminder_window)

    @property
    def meeting_starting_soon_delta(self) -> timedelta:
        return parse_timedelta(self.meeting_starting_soon_window)


class EmailConfig(BaseModel):
    """Email channel settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    timeout_seconds: int = Field(
        30, ge=1, le=300, description="Upper bound for one SMTP conversation"
    )


class RetentionConfig(BaseModel):
    """Read-notification cleanup settings."""

    days_to_keep: int = Field(30, ge=1, le=3650, description="Age before read rows are deleted")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification service."""

    timezone: str = Field("UTC", description="Local zone for weeks, due times and cron")
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the zone name resolves."""
        get_zone(v.strip())
        return v.strip()

    def job_schedules(self) -> Dict[str, str]:
        """Default job table with configured overrides applied."""
        return {**DEFAULT_JOB_SCHEDULES, **self.scheduler.jobs}
