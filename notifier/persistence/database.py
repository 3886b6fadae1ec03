"""Database connection and session management.

A :class:`Database` bundles an engine and its session factory. It is built
once at process start by :func:`init_database` and handed to every component
that needs the store.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from notifier.logging import get_logger

from .exceptions import DatabaseConnectionError

logger = get_logger(__name__, component="database")


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, engine: Engine, url: str):
        """
        Args:
            engine: Configured SQLAlchemy engine
            url: URL the engine was created from (kept for logging)
        """
        self.engine = engine
        self.url = url
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=True,
            expire_on_commit=False,
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a session with automatic transaction management.

        Commits when the block exits normally, rolls back on any exception
        and always closes the session.

        Yields:
            Session: SQLAlchemy session for database operations

        Example:
            >>> with database.session() as session:
            ...     repo = NotificationRepository(session)
            ...     notification = repo.get("3f2a...")
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.debug(
                f"Database session rolled back: {e}",
                extra={
                    "event": "database.session.rolled_back",
                    "error_type": type(e).__name__,
                },
            )
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of pooled connections."""
        logger.info(
            "Closing database connections",
            extra={"event": "database.closing", "database_url": _redact_url(self.url)},
        )
        self.engine.dispose()


def init_database(database_url: str) -> Database:
    """Create the engine, verify connectivity and create missing tables.

    Args:
        database_url: SQLAlchemy URL (e.g., "sqlite:///./data/notifier.db")

    Returns:
        Ready-to-use Database

    Raises:
        DatabaseConnectionError: If initialization fails
    """
    if not database_url or not isinstance(database_url, str):
        raise DatabaseConnectionError("Database URL must be a non-empty string")

    logger.info(
        "Initializing database",
        extra={"event": "database.initializing", "database_url": _redact_url(database_url)},
    )

    try:
        engine = _create_engine(database_url)
        _validate_connection(engine)

        from .schema import create_schema

        create_schema(engine)
    except DatabaseConnectionError:
        raise
    except Exception as e:
        error_msg = f"Failed to initialize database: {e}"
        logger.error(error_msg, exc_info=True, extra={"event": "database.init_failed"})
        raise DatabaseConnectionError(error_msg) from e

    logger.info(
        "Database initialized",
        extra={"event": "database.initialized", "database_url": _redact_url(database_url)},
    )
    return Database(engine, database_url)


def _create_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    in_memory = database_url in ("sqlite://", "sqlite:///:memory:")
    if not in_memory and database_url.startswith("sqlite:///"):
        db_file = Path(database_url.replace("sqlite:///", "", 1))
        if not db_file.parent.exists():
            logger.info(f"Creating database directory: {db_file.parent}")
            db_file.parent.mkdir(parents=True, exist_ok=True)

    engine_kwargs = {
        "connect_args": {
            # Scheduler jobs run on worker threads
            "check_same_thread": False,
            "timeout": 30,
        },
    }
    if in_memory:
        # One shared connection, otherwise every session sees an empty database
        engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **engine_kwargs)
    _configure_sqlite(engine, wal=not in_memory)
    return engine


def _configure_sqlite(engine: Engine, wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def _validate_connection(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except Exception as e:
        raise DatabaseConnectionError(f"Failed to validate database connection: {e}") from e


def _redact_url(url: str) -> str:
    """Hide credentials in a database URL before logging it.

    Args:
        url: Database connection URL

    Returns:
        URL with any password replaced by ``***``
    """
    if url.startswith("sqlite") or "@" not in url:
        return url

    credentials, _, host = url.rpartition("@")
    scheme, _, user_info = credentials.partition("://")
    username = user_info.split(":", 1)[0]
    return f"{scheme}://{username}:***@{host}"
