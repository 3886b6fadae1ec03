"""Configuration management for the notification service."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import build_app_config, load_config, validate_config_file
from .models import (
    DEFAULT_JOB_SCHEDULES,
    AppConfig,
    EmailConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    QueueConfig,
    ReminderConfig,
    RetentionConfig,
    SchedulerConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "build_app_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "SchedulerConfig",
    "QueueConfig",
    "ReminderConfig",
    "EmailConfig",
    "RetentionConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    "DEFAULT_JOB_SCHEDULES",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
