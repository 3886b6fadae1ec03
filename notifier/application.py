"""Explicit wiring of the service components.

Every component is constructed once here and handed its collaborators; no
module keeps global service instances.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from notifier.config.environment import EnvironmentConfig
from notifier.config.models import AppConfig
from notifier.logging import get_logger
from notifier.notifications.dispatcher import NotificationDispatcher
from notifier.notifications.queue import RetryQueueProcessor
from notifier.notifications.smtp_client import SMTPClient
from notifier.notifications.templates import TemplateRenderer
from notifier.persistence.database import Database, init_database
from notifier.reminders.engine import ReportReminderEngine
from notifier.reminders.scans import DueDateScanner
from notifier.scheduler.jobs import build_job_bodies
from notifier.scheduler.service import SchedulerService
from notifier.utils.timestamps import Clock, utc_now

logger = get_logger(__name__, component="application")


@dataclass
class ApplicationContext:
    """The wired components of one running service."""

    app_config: AppConfig
    env_config: EnvironmentConfig
    database: Database
    dispatcher: NotificationDispatcher
    queue_processor: RetryQueueProcessor
    reminder_engine: ReportReminderEngine
    scanner: DueDateScanner
    scheduler: SchedulerService

    def close(self) -> None:
        """Stop the scheduler and release database connections."""
        if self.scheduler.is_running():
            self.scheduler.shutdown(wait=False)
        self.database.close()


def build_application(
    app_config: AppConfig,
    env_config: EnvironmentConfig,
    database: Optional[Database] = None,
    smtp_client: Optional[SMTPClient] = None,
    shutdown_event: Optional[threading.Event] = None,
    clock: Clock = utc_now,
) -> ApplicationContext:
    """Construct every component from configuration.

    Args:
        app_config: Validated YAML configuration
        env_config: Environment settings (database URL, SMTP relay)
        database: Existing database to use instead of opening ``database_url``
        smtp_client: Email channel to use instead of one built from ``env_config``
        shutdown_event: Event set when the scheduler shuts down
        clock: Source of "now" shared by all components

    Returns:
        ApplicationContext with all components wired

    Raises:
        DatabaseConnectionError: If the database cannot be opened
    """
    if database is None:
        database = init_database(env_config.database_url)

    if smtp_client is None and env_config.email_enabled:
        smtp_client = SMTPClient(
            env_config,
            use_tls=app_config.email.use_tls,
            timeout=app_config.email.timeout_seconds,
        )
    if smtp_client is None:
        logger.warning(
            "SMTP_HOST is not set; email delivery is disabled",
            extra={"event": "email.disabled"},
        )

    dispatcher = NotificationDispatcher(
        database,
        smtp_client=smtp_client,
        template_renderer=TemplateRenderer(app_name=env_config.smtp_sender_name),
        queue_config=app_config.queue,
        clock=clock,
    )
    queue_processor = RetryQueueProcessor(database, dispatcher, app_config.queue, clock=clock)
    reminder_engine = ReportReminderEngine(
        database,
        dispatcher,
        app_config.reminders,
        timezone=app_config.timezone,
        clock=clock,
    )
    scanner = DueDateScanner(database, dispatcher, app_config.reminders, clock=clock)

    scheduler = SchedulerService(
        build_job_bodies(
            dispatcher,
            queue_processor,
            reminder_engine,
            scanner,
            days_to_keep=app_config.retention.days_to_keep,
        ),
        app_config.job_schedules(),
        timezone=app_config.timezone,
        misfire_grace_time=app_config.scheduler.misfire_grace_time,
        shutdown_event=shutdown_event,
        clock=clock,
    )

    logger.info(
        "Services initialized",
        extra={
            "event": "services.initialized",
            "email_enabled": smtp_client is not None,
            "timezone": app_config.timezone,
        },
    )

    return ApplicationContext(
        app_config=app_config,
        env_config=env_config,
        database=database,
        dispatcher=dispatcher,
        queue_processor=queue_processor,
        reminder_engine=reminder_engine,
        scanner=scanner,
        scheduler=scheduler,
    )
