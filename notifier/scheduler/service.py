"""Scheduler service owning the named recurring jobs."""

import threading
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from notifier.config.validators import validate_cron_expression
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.utils.timestamps import Clock, format_timestamp_for_log, get_zone, utc_now

from .exceptions import InvalidCheckKindError, InvalidCronExpressionError, UnknownJobError
from .jobs import MANUAL_CHECKS, JobBody

logger = get_logger(__name__, component="scheduler")

# Upper bound when counting missed fire times of one job
_MAX_PENDING_COUNT = 100


class SchedulerService:
    """
    Wraps APScheduler to run the named jobs on their cron schedules.

    Uses BackgroundScheduler to run jobs in worker threads while allowing
    the main thread to handle signals and coordinate shutdown. Each job is
    serialized against itself (``max_instances=1``) and late ticks are
    collapsed into one run (``coalesce``).

    A failing tick is logged and the job stays scheduled. Manual checks run
    the same wrapper synchronously and re-raise the failure to the caller.
    """

    def __init__(
        self,
        job_bodies: Mapping[str, JobBody],
        schedules: Mapping[str, str],
        timezone: str = "UTC",
        misfire_grace_time: int = 300,
        shutdown_event: Optional[threading.Event] = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize the scheduler service.

        Args:
            job_bodies: Job name -> callable run on each tick
            schedules: Job name -> cron expression
            timezone: IANA zone the cron expressions are evaluated in
            misfire_grace_time: Seconds a late tick may still run
            shutdown_event: Optional event to set on shutdown for coordination
            clock: Source of "now" for introspection
        """
        missing = sorted(set(schedules) - set(job_bodies))
        if missing:
            raise UnknownJobError(missing[0])

        self.job_bodies = dict(job_bodies)
        self.schedules = dict(schedules)
        self.timezone = timezone
        self.shutdown_event = shutdown_event
        self.clock = clock

        self._lock = threading.Lock()
        self._running_jobs: Dict[str, int] = {}
        self._last_runs: Dict[str, Dict[str, Any]] = {}
        self._initialized = False

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # Prevent overlapping runs of the same job
                "coalesce": True,  # If runs were missed, only execute once
                "misfire_grace_time": misfire_grace_time,
            },
            timezone=get_zone(timezone),
        )

    # Registration

    def initialize(self) -> List[str]:
        """Register every configured job, replacing any existing registration.

        Calling it again after cancellations restores the full job table.

        Returns:
            Names of the registered jobs

        Raises:
            InvalidCronExpressionError: If a configured expression is invalid
        """
        triggers = {}
        for name, expression in self.schedules.items():
            try:
                triggers[name] = validate_cron_expression(expression, self.timezone)
            except ValueError as e:
                raise InvalidCronExpressionError(expression, str(e)) from e

        for name, trigger in triggers.items():
            # A stopped scheduler queues duplicates instead of replacing them
            if self.scheduler.get_job(name) is not None:
                self.scheduler.remove_job(name)
            self.scheduler.add_job(
                func=self._run_scheduled,
                trigger=trigger,
                args=[name],
                id=name,
                name=name,
                replace_existing=True,
            )

        self._initialized = True
        logger.info(
            f"Registered {len(triggers)} job(s)",
            extra={"event": "scheduler.initialized", "jobs": sorted(triggers)},
        )
        return list(triggers)

    def cancel_job(self, name: str) -> bool:
        """Stop future ticks of one job. An in-flight tick is allowed to finish.

        Returns:
            True if the job was registered, False otherwise (nothing changes)
        """
        try:
            self.scheduler.remove_job(name)
        except JobLookupError:
            logger.warning(
                f"Cannot cancel unknown job '{name}'",
                extra={"event": "scheduler.job.cancel_unknown", "job_name": name},
            )
            return False

        logger.info(
            f"Cancelled job '{name}'",
            extra={"event": "scheduler.job.cancelled", "job_name": name},
        )
        return True

    def cancel_all_jobs(self) -> int:
        """Stop future ticks of every job.

        Returns:
            Number of jobs cancelled
        """
        count = len(self.scheduler.get_jobs())
        self.scheduler.remove_all_jobs()
        logger.info(
            f"Cancelled {count} job(s)",
            extra={"event": "scheduler.jobs.cancelled", "count": count},
        )
        return count

    def reschedule_job(self, name: str, expression: str) -> bool:
        """Swap a job's cron expression.

        The expression is validated first; on any failure the old schedule
        stays active.

        Returns:
            True if the new schedule is in effect
        """
        try:
            trigger = validate_cron_expression(expression, self.timezone)
        except ValueError as e:
            logger.warning(
                f"Rejected new schedule for '{name}': {e}",
                extra={"event": "scheduler.job.reschedule_rejected", "job_name": name},
            )
            return False

        try:
            self.scheduler.reschedule_job(name, trigger=trigger)
        except JobLookupError:
            logger.warning(
                f"Cannot reschedule unknown job '{name}'",
                extra={"event": "scheduler.job.reschedule_rejected", "job_name": name},
            )
            return False

        self.schedules[name] = expression
        logger.info(
            f"Rescheduled job '{name}' to '{expression}'",
            extra={"event": "scheduler.job.rescheduled", "job_name": name, "cron": expression},
        )
        return True

    # Execution

    def run_manual_check(self, kind: str) -> Any:
        """Run one job body now, in the calling thread.

        Args:
            kind: One of plan, report, compliance, scheduled, tasks, meetings, cleanup

        Returns:
            Whatever the job body returns (a run summary)

        Raises:
            InvalidCheckKindError: If ``kind`` is unknown (nothing runs)
            Exception: Whatever the job body raised
        """
        if kind not in MANUAL_CHECKS:
            raise InvalidCheckKindError(kind, MANUAL_CHECKS)
        return self._run(MANUAL_CHECKS[kind], manual=True)

    def _run_scheduled(self, name: str) -> None:
        self._run(name, manual=False)

    def _run(self, name: str, manual: bool) -> Any:
        body = self.job_bodies[name]
        run_id = uuid.uuid4().hex[:12]
        trigger = "manual" if manual else "scheduled"

        with log_context(job_name=name, run_id=run_id):
            started_at = self.clock()
            start = time.monotonic()
            with self._lock:
                self._running_jobs[name] = self._running_jobs.get(name, 0) + 1

            logger.info(
                f"Job '{name}' started ({trigger})",
                extra={"event": "scheduler.job.started", "trigger": trigger},
            )
            try:
                result = body()
            except Exception as e:
                duration = time.monotonic() - start
                self._record_run(name, started_at, "failed", duration, str(e))
                logger.error(
                    f"Job '{name}' failed after {duration:.2f}s: {e}",
                    exc_info=True,
                    extra={
                        "event": "scheduler.job.failed",
                        "trigger": trigger,
                        "error_type": type(e).__name__,
                        "duration_seconds": round(duration, 3),
                    },
                )
                if manual:
                    raise
                return None

            duration = time.monotonic() - start
            self._record_run(name, started_at, "succeeded", duration, None)
            summary = result.to_dict() if hasattr(result, "to_dict") else result
            logger.info(
                f"Job '{name}' completed in {duration:.2f}s",
                extra={
                    "event": "scheduler.job.completed",
                    "trigger": trigger,
                    "duration_seconds": round(duration, 3),
                    "summary": summary,
                },
            )
            return result

    def _record_run(
        self,
        name: str,
        started_at: datetime,
        status: str,
        duration: float,
        error: Optional[str],
    ) -> None:
        with self._lock:
            self._running_jobs[name] -= 1
            if not self._running_jobs[name]:
                del self._running_jobs[name]
            self._last_runs[name] = {
                "started_at": format_timestamp_for_log(started_at),
                "status": status,
                "duration_seconds": round(duration, 3),
                "error": error,
            }

    # Introspection

    def get_job(self, name: str) -> Dict[str, Any]:
        """Describe one registered job.

        Raises:
            UnknownJobError: If no job with that name is registered
        """
        job = self.scheduler.get_job(name)
        if job is None:
            raise UnknownJobError(name)
        return self._describe(job, self.clock())

    def get_job_info(self) -> List[Dict[str, Any]]:
        """Describe every registered job: name, cron, next run and pending runs."""
        now = self.clock()
        return [self._describe(job, now) for job in self.scheduler.get_jobs()]

    def get_status(self) -> Dict[str, Any]:
        """Scheduler-wide status; never changes schedule state."""
        jobs = self.get_job_info()
        registered = {job["name"] for job in jobs}
        return {
            "running": self.is_running(),
            "initialized": self._initialized,
            "timezone": self.timezone,
            "job_count": len(jobs),
            "jobs": jobs,
            "cancelled_jobs": sorted(set(self.schedules) - registered),
        }

    def _describe(self, job, now: datetime) -> Dict[str, Any]:
        # Jobs added before start() have no next_run_time yet
        if job.pending:
            next_run = job.trigger.get_next_fire_time(None, now)
        else:
            next_run = job.next_run_time

        with self._lock:
            running = self._running_jobs.get(job.id, 0)
            last_run = self._last_runs.get(job.id)

        return {
            "name": job.id,
            "cron": self.schedules.get(job.id),
            "state": "running" if running else "scheduled",
            "next_run_time": format_timestamp_for_log(next_run),
            "pending_runs": _pending_run_count(job.trigger, next_run, now),
            "last_run": last_run,
        }

    # Lifecycle

    def start(self) -> None:
        """Register the jobs (if needed) and start the scheduler threads."""
        if not self._initialized:
            self.initialize()
        self.scheduler.start()
        logger.info(
            f"Scheduler started with {len(self.scheduler.get_jobs())} job(s)",
            extra={"event": "scheduler.started", "timezone": self.timezone},
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running


def _pending_run_count(trigger, next_run: Optional[datetime], now: datetime) -> int:
    """Number of fire times at or before ``now`` not yet executed."""
    count = 0
    fire_time = next_run
    while fire_time is not None and fire_time <= now and count < _MAX_PENDING_COUNT:
        count += 1
        fire_time = trigger.get_next_fire_time(fire_time, fire_time)
    return count
