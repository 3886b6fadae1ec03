"""Environment variable loading and validation."""

import os
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/notifier.db"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Secrets and deployment-specific settings read from the environment."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_from: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        log_level: Optional[str] = None,
        database_url: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        """Initialize environment configuration."""
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_from = smtp_from
        self.smtp_sender_name = smtp_sender_name or "ProjectFlow"
        self.log_level = log_level
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.environment = environment or "local"

    @property
    def email_enabled(self) -> bool:
        """Whether an SMTP relay is configured."""
        return bool(self.smtp_host)


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional. Without SMTP_HOST the email channel is
    disabled and only in-app delivery happens.

    Recognised variables:
    - SMTP_HOST / SMTP_PORT: SMTP relay (port defaults to 587)
    - SMTP_USER / SMTP_PASS: SMTP credentials, set both or neither
    - SMTP_FROM: Sender address (defaults to SMTP_USER)
    - SMTP_SENDER_NAME: Display name for the sender
    - LOG_LEVEL: Override log level
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/notifier.db)
    - ENVIRONMENT: Label stamped on every log record

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is malformed
    """
    errors = []

    smtp_host = os.getenv("SMTP_HOST") or None
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER") or None
    smtp_pass = os.getenv("SMTP_PASS") or None
    smtp_from = os.getenv("SMTP_FROM") or None
    log_level = os.getenv("LOG_LEVEL") or None

    smtp_port = 587
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if not 1 <= smtp_port <= 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if smtp_user and not smtp_pass:
        errors.append(
            "SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication."
        )
    elif smtp_pass and not smtp_user:
        errors.append(
            "SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication."
        )

    if smtp_from:
        try:
            smtp_from = validate_email(smtp_from, check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors.append(f"Invalid SMTP_FROM address '{smtp_from}': {e}")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Leave SMTP_HOST unset to run with in-app notifications only",
                "Verify SMTP_PORT is a number between 1 and 65535",
            ],
        )

    return EnvironmentConfig(
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_from=smtp_from,
        smtp_sender_name=os.getenv("SMTP_SENDER_NAME") or None,
        log_level=log_level.upper() if log_level else None,
        database_url=os.getenv("DATABASE_URL") or None,
        environment=os.getenv("ENVIRONMENT") or None,
    )
