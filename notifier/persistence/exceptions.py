"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can
handle store failures with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""


class DatabaseConnectionError(PersistenceError):
    """Raised when the engine cannot be created or the database is unreachable."""


class RecordNotFoundError(PersistenceError):
    """Raised when an operation requires a row that does not exist.

    Plain lookups return None instead.
    """


class DataIntegrityError(PersistenceError):
    """Raised when a write violates a constraint."""


class DuplicateNotificationError(DataIntegrityError):
    """Raised when a notification with the same de-duplication key exists.

    The unique key on ``notifications.dedup_key`` is what makes concurrent
    reminder checks safe: the second insert loses and is reported as a
    duplicate instead of producing a second reminder.
    """

    def __init__(self, dedup_key: str):
        self.dedup_key = dedup_key
        super().__init__(f"Notification with dedup key '{dedup_key}' already exists")
