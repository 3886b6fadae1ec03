"""Persistence layer for notification state and the records reminders read.

Public API:
    - init_database(database_url) -> Database
    - Database.session() -> ContextManager[Session]
    - Repository classes, each bound to one session
    - PersistenceError and its subclasses

Example usage:
    >>> from notifier.persistence import NotificationRepository, init_database
    >>> database = init_database("sqlite:///./data/notifier.db")
    >>> with database.session() as session:
    ...     notification = NotificationRepository(session).get("3f2a...")
"""

from .database import Database, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    DuplicateNotificationError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    DirectoryRepository,
    MeetingRepository,
    NotificationRepository,
    PreferenceRepository,
    QueueRepository,
    ReportSettingsRepository,
    TaskRepository,
    TemplateRepository,
    WeeklyPlanRepository,
    WeeklyReportRepository,
)

__all__ = [
    # Database
    "Database",
    "init_database",
    # Repositories
    "DirectoryRepository",
    "MeetingRepository",
    "NotificationRepository",
    "PreferenceRepository",
    "QueueRepository",
    "ReportSettingsRepository",
    "TaskRepository",
    "TemplateRepository",
    "WeeklyPlanRepository",
    "WeeklyReportRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "DuplicateNotificationError",
]
