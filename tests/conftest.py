"""Shared fixtures: a throwaway SQLite store and a frozen clock."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from notifier.config.models import QueueConfig
from notifier.logging.context import clear_log_context
from notifier.notifications.dispatcher import NotificationDispatcher
from notifier.notifications.smtp_client import SMTPClient
from notifier.persistence.database import init_database

from tests.helpers import FrozenClock, add_organization

# Friday 2025-11-07, 16:30 UTC; the week starts Monday 2025-11-03
FRIDAY_AFTERNOON = datetime(2025, 11, 7, 16, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_log_context():
    """Every test starts without bound log fields."""
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database with the schema created."""
    db = init_database(f"sqlite:///{tmp_path / 'notifier.db'}")
    yield db
    db.close()


@pytest.fixture
def clock():
    return FrozenClock(FRIDAY_AFTERNOON)


@pytest.fixture
def organization(database):
    return add_organization(database, "org-1", "Acme Corp")


@pytest.fixture
def smtp_client():
    """SMTP client double; ``send`` returns a message id."""
    client = Mock(spec=SMTPClient)
    client.send.return_value = "<message-1@acme.io>"
    return client


@pytest.fixture
def queue_config():
    return QueueConfig(batch_size=50, max_attempts=3, retry_backoff="5m")


@pytest.fixture
def dispatcher(database, smtp_client, queue_config, clock):
    return NotificationDispatcher(
        database, smtp_client=smtp_client, queue_config=queue_config, clock=clock
    )
