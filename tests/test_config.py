"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from notifier.config import (
    DEFAULT_JOB_SCHEDULES,
    ConfigurationError,
    build_app_config,
    load_config,
    validate_config_file,
)
from notifier.config.duration import DurationParseError, parse_duration, validate_duration_range
from notifier.config.environment import load_environment_config
from notifier.config.validators import check_for_warnings, validate_cron_expression

ENV_VARS = (
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "SMTP_FROM",
    "SMTP_SENDER_NAME",
    "LOG_LEVEL",
    "DATABASE_URL",
    "ENVIRONMENT",
)

VALID_CONFIG = """
timezone: Europe/Berlin
scheduler:
  misfire_grace_time: 120
  jobs:
    process-scheduled-notifications: "*/5 * * * *"
    weekly-compliance-alerts: "0 9 * * mon"
queue:
  batch_size: 25
  max_attempts: 5
  retry_backoff: PT10M
reminders:
  due_window: 3h
  compliance_threshold: 75
retention:
  days_to_keep: 14
logging:
  level: DEBUG
  format: json
"""


@pytest.fixture
def clean_env(monkeypatch):
    """Environment with none of the service variables set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(content)
    return path


class TestConfigurationLoading:
    """Test configuration loading from YAML files."""

    def test_load_valid_config(self, tmp_path, clean_env):
        app_config, env_config = load_config(write_config(tmp_path, VALID_CONFIG))

        assert app_config.timezone == "Europe/Berlin"
        assert app_config.scheduler.misfire_grace_time == 120
        assert app_config.queue.batch_size == 25
        assert app_config.queue.max_attempts == 5
        assert app_config.queue.retry_backoff_delta.total_seconds() == 600
        assert app_config.reminders.due_window_delta.total_seconds() == 3 * 3600
        assert app_config.reminders.compliance_threshold == 75
        assert app_config.retention.days_to_keep == 14
        assert app_config.logging.level == "DEBUG"
        assert app_config.logging.format == "json"

        # Overrides are merged over the default job table
        schedules = app_config.job_schedules()
        assert schedules["process-scheduled-notifications"] == "*/5 * * * *"
        assert schedules["meeting-reminders"] == DEFAULT_JOB_SCHEDULES["meeting-reminders"]
        assert set(schedules) == set(DEFAULT_JOB_SCHEDULES)

        assert env_config.email_enabled is False

    def test_empty_file_uses_defaults(self, tmp_path, clean_env):
        app_config, _ = load_config(write_config(tmp_path, ""))

        assert app_config.timezone == "UTC"
        assert app_config.queue.max_attempts == 3
        assert app_config.reminders.dedup_window == "24h"
        assert app_config.job_schedules() == DEFAULT_JOB_SCHEDULES

    def test_no_config_file_uses_defaults(self, tmp_path, clean_env):
        clean_env.chdir(tmp_path)

        app_config, _ = load_config()

        assert app_config.retention.days_to_keep == 30

    def test_config_file_not_found(self, tmp_path, clean_env):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml_syntax(self, tmp_path, clean_env):
        path = write_config(tmp_path, "queue:\n  batch_size: [1, 2\n")

        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_config(path)

    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            build_app_config(["not", "a", "mapping"])


class TestConfigurationValidation:
    """Test schema validation errors."""

    def test_unknown_job_name(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_app_config({"scheduler": {"jobs": {"weekly-digest": "0 9 * * mon"}}})

        assert "Unknown job 'weekly-digest'" in str(exc_info.value)

    def test_invalid_cron_expression(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_app_config({"scheduler": {"jobs": {"meeting-reminders": "*/30 * *"}}})

        assert "expected 5 fields" in str(exc_info.value)

    def test_unknown_timezone(self):
        with pytest.raises(ConfigurationError, match="Unknown timezone"):
            build_app_config({"timezone": "Mars/Olympus_Mons"})

    def test_retry_backoff_too_long(self):
        with pytest.raises(ConfigurationError, match="retry_backoff too long"):
            build_app_config({"queue": {"retry_backoff": "2d"}})

    def test_processing_lease(self):
        assert build_app_config({}).queue.processing_lease_delta.total_seconds() == 600
        assert build_app_config({"queue": {"processing_lease": "30m"}}).queue.processing_lease == "30m"

        with pytest.raises(ConfigurationError, match="processing_lease too long"):
            build_app_config({"queue": {"processing_lease": "2d"}})

    def test_invalid_duration(self):
        with pytest.raises(ConfigurationError, match="Invalid duration format"):
            build_app_config({"reminders": {"dedup_window": "a day"}})

    def test_meeting_tiers_must_nest(self):
        with pytest.raises(ConfigurationError, match="shorter than meeting_reminder_window"):
            build_app_config(
                {
                    "reminders": {
                        "meeting_reminder_window": "30m",
                        "meeting_starting_soon_window": "45m",
                    }
                }
            )

    def test_days_to_keep_must_be_positive(self):
        with pytest.raises(ConfigurationError, match="days_to_keep"):
            build_app_config({"retention": {"days_to_keep": 0}})

    def test_wrong_type_is_reported(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_app_config({"queue": {"batch_size": "lots"}})

        assert "queue -> batch_size" in str(exc_info.value)
        assert "Suggestions:" in str(exc_info.value)

    def test_warnings_for_suspicious_values(self):
        warnings = check_for_warnings(
            {
                "reminders": {"compliance_threshold": 0},
                "queue": {"max_attempts": 1},
                "scheduler": {"jobs": {"process-scheduled-notifications": "* * * * *"}},
            }
        )

        assert len(warnings) == 3

    def test_warning_is_emitted(self):
        with pytest.warns(UserWarning, match="never be retried"):
            build_app_config({"queue": {"max_attempts": 1}})


class TestCronValidation:
    """Test cron expression parsing."""

    def test_valid_expression(self):
        trigger = validate_cron_expression("0 10 * * mon", "UTC")

        assert trigger is not None

    @pytest.mark.parametrize("expression", ["", "   ", "0 9 * *", "61 * * * *", "0 9 * * funday"])
    def test_invalid_expression(self, expression):
        with pytest.raises(ValueError):
            validate_cron_expression(expression)


class TestDurationParsing:
    """Test duration string parsing."""

    def test_parse_human_readable(self):
        assert parse_duration("15m") == 900
        assert parse_duration("2h") == 7200
        assert parse_duration("30s") == 30
        assert parse_duration("1d") == 86400

    def test_parse_human_readable_combined(self):
        assert parse_duration("1h30m") == 5400

    def test_parse_iso8601(self):
        assert parse_duration("PT15M") == 900
        assert parse_duration("PT1H30M") == 5400
        assert parse_duration("P1D") == 86400

    @pytest.mark.parametrize("value", ["15x", "2 hours", "PT", "", "0m"])
    def test_parse_invalid(self, value):
        with pytest.raises(DurationParseError):
            parse_duration(value)

    def test_validate_duration_range(self):
        validate_duration_range(300, "retry_backoff", 1, 3600)

        with pytest.raises(DurationParseError, match="too short: 30 seconds"):
            validate_duration_range(30, "due_window", 60, 3600)

        with pytest.raises(DurationParseError, match="Maximum is 1 hour"):
            validate_duration_range(7200, "due_window", 60, 3600)


class TestEnvironmentVariables:
    """Test environment variable loading."""

    def test_defaults_without_variables(self, clean_env):
        env_config = load_environment_config()

        assert env_config.email_enabled is False
        assert env_config.smtp_port == 587
        assert env_config.smtp_sender_name == "ProjectFlow"
        assert env_config.database_url == "sqlite:///./data/notifier.db"
        assert env_config.environment == "local"

    def test_full_smtp_configuration(self, clean_env):
        clean_env.setenv("SMTP_HOST", "smtp.acme.io")
        clean_env.setenv("SMTP_PORT", "465")
        clean_env.setenv("SMTP_USER", "notifier")
        clean_env.setenv("SMTP_PASS", "secret")
        clean_env.setenv("SMTP_FROM", "notifications@acme.io")
        clean_env.setenv("LOG_LEVEL", "debug")

        env_config = load_environment_config()

        assert env_config.email_enabled is True
        assert env_config.smtp_port == 465
        assert env_config.smtp_from == "notifications@acme.io"
        assert env_config.log_level == "DEBUG"

    def test_invalid_smtp_port(self, clean_env):
        clean_env.setenv("SMTP_PORT", "not-a-number")

        with pytest.raises(ConfigurationError, match="Invalid SMTP_PORT"):
            load_environment_config()

    def test_smtp_port_out_of_range(self, clean_env):
        clean_env.setenv("SMTP_PORT", "70000")

        with pytest.raises(ConfigurationError, match="between 1 and 65535"):
            load_environment_config()

    def test_user_without_password(self, clean_env):
        clean_env.setenv("SMTP_USER", "notifier")

        with pytest.raises(ConfigurationError, match="SMTP_PASS is not"):
            load_environment_config()

    def test_invalid_from_address(self, clean_env):
        clean_env.setenv("SMTP_FROM", "not-an-email")

        with pytest.raises(ConfigurationError, match="Invalid SMTP_FROM"):
            load_environment_config()

    def test_errors_are_collected(self, clean_env):
        clean_env.setenv("SMTP_PORT", "0")
        clean_env.setenv("LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 2


class TestConfigurationHelpers:
    """Test helper utilities."""

    def test_validate_config_file_utility(self, tmp_path, capsys):
        assert validate_config_file(write_config(tmp_path, VALID_CONFIG)) is True
        assert "is valid" in capsys.readouterr().out

    def test_validate_config_file_invalid(self, tmp_path, capsys):
        path = write_config(tmp_path, "queue:\n  max_attempts: 0\n")

        assert validate_config_file(path) is False
        assert "validation failed" in capsys.readouterr().out
