"""Retry queue processor.

Drains due entries of the durable delivery queue in bounded batches and
hands each one to the dispatcher's delivery primitive. Every entry is
claimed with a conditional update (Pending -> Processing), so an entry is
processed by at most one drain even when two drains overlap. An entry
whose drain stopped before recording an outcome stays in Processing until
its lease runs out and a later drain reclaims it.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from notifier.config.models import QueueConfig
from notifier.domain.models import NotificationQueueEntry
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence.database import Database
from notifier.persistence.exceptions import PersistenceError, RecordNotFoundError
from notifier.persistence.repositories import QueueRepository
from notifier.utils.timestamps import Clock, format_timestamp_for_log, utc_now

from .dispatcher import NotificationDispatcher

logger = get_logger(__name__, component="queue")


@dataclass
class QueueRunResult:
    """Counters for one drain of the queue."""

    selected: int = 0
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "selected": self.selected,
            "claimed": self.claimed,
            "completed": self.completed,
            "retried": self.retried,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class RetryQueueProcessor:
    """Delivers deferred notifications and retries failed emails."""

    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        queue_config: Optional[QueueConfig] = None,
        clock: Clock = utc_now,
    ):
        self.database = database
        self.dispatcher = dispatcher
        self.queue_config = queue_config or QueueConfig()
        self.clock = clock

    def process_pending(self, now: Optional[datetime] = None) -> QueueRunResult:
        """Process up to one batch of due queue entries.

        An entry is due when it is Pending, its scheduled time has passed and
        its backoff (if any) has elapsed, or when it has been Processing for
        longer than the processing lease. Each entry's outcome is independent
        of the others.

        Args:
            now: Evaluation time (defaults to the clock)

        Returns:
            QueueRunResult with per-outcome counters
        """
        start = time.monotonic()
        now = now or self.clock()
        result = QueueRunResult()

        stale_before = now - self.queue_config.processing_lease_delta

        with self.database.session() as session:
            due = QueueRepository(session).list_due(
                now, self.queue_config.batch_size, stale_before=stale_before
            )
        result.selected = len(due)

        logger.info(
            f"Processing {len(due)} due queue entr{'y' if len(due) == 1 else 'ies'}",
            extra={"event": "queue.drain.started", "selected": len(due)},
        )

        for entry in due:
            with log_context(queue_entry_id=entry.id, notification_id=entry.notification_id):
                try:
                    outcome = self._process_entry(entry, now, stale_before)
                except PersistenceError as e:
                    # Left in Processing; reclaimed once the lease expires
                    logger.error(
                        f"Store error while processing queue entry {entry.id}: {e}",
                        exc_info=True,
                        extra={"event": "queue.entry.error", "error_type": type(e).__name__},
                    )
                    continue
            if outcome is None:
                continue
            result.claimed += 1
            if outcome == "completed":
                result.completed += 1
            elif outcome == "retried":
                result.retried += 1
            else:
                result.failed += 1

        result.duration_seconds = time.monotonic() - start
        logger.info(
            f"Queue drain finished: {result.completed} completed, {result.retried} retried, "
            f"{result.failed} failed",
            extra={"event": "queue.drain.completed", **result.to_dict()},
        )
        return result

    def _process_entry(
        self, entry: NotificationQueueEntry, now: datetime, stale_before: datetime
    ) -> Optional[str]:
        with self.database.session() as session:
            claimed = QueueRepository(session).claim(entry.id, now, stale_before)
        if claimed is None:
            logger.debug(
                f"Queue entry {entry.id} was claimed by another drain",
                extra={"event": "queue.entry.claim_lost"},
            )
            return None

        retryable = True
        try:
            delivery = self.dispatcher.deliver(claimed.notification_id, claimed.channels or None)
            error = delivery.email_error
            retryable = delivery.retryable
        except RecordNotFoundError as e:
            error = str(e)
            retryable = False
        except Exception as e:
            logger.error(
                f"Unexpected error delivering queued notification {claimed.notification_id}: {e}",
                exc_info=True,
                extra={"event": "queue.entry.error", "error_type": type(e).__name__},
            )
            error = f"Unexpected delivery error: {e}"

        with self.database.session() as session:
            queue = QueueRepository(session)
            if error is None:
                queue.complete(claimed.id, now)
                logger.info(
                    f"Delivered queued notification {claimed.notification_id}",
                    extra={"event": "queue.entry.completed", "attempts": claimed.attempts},
                )
                return "completed"

            if retryable and claimed.attempts < claimed.max_attempts:
                next_attempt_at = now + claimed.attempts * self.queue_config.retry_backoff_delta
                queue.schedule_retry(claimed.id, next_attempt_at, error, now)
                logger.warning(
                    f"Delivery attempt {claimed.attempts}/{claimed.max_attempts} failed, "
                    f"retrying at {format_timestamp_for_log(next_attempt_at)}: {error}",
                    extra={
                        "event": "queue.entry.retry_scheduled",
                        "attempts": claimed.attempts,
                        "next_attempt_at": format_timestamp_for_log(next_attempt_at),
                    },
                )
                return "retried"

            queue.fail(claimed.id, error, now)
            logger.error(
                f"Queue entry {claimed.id} failed permanently after "
                f"{claimed.attempts} attempt(s): {error}",
                extra={
                    "event": "queue.entry.failed",
                    "attempts": claimed.attempts,
                    "retryable": retryable,
                },
            )
            return "failed"

    def summary(self) -> Dict[str, int]:
        """Number of queue entries per status."""
        with self.database.session() as session:
            return QueueRepository(session).count_by_status()
