"""Data access layer (repositories) for persistence operations.

Repositories are bound to one session, encapsulate all queries and return
domain models rather than ORM rows. The caller owns the transaction: use a
repository inside ``with database.session() as session:``.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Type

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.domain.models import (
    Meeting,
    Notification,
    NotificationCategory,
    NotificationPreference,
    NotificationQueueEntry,
    NotificationTemplate,
    NotificationType,
    Organization,
    QueueStatus,
    ReportSettings,
    Role,
    SubmissionStatus,
    Task,
    User,
    WeeklySubmission,
)
from notifier.logging import get_logger
from notifier.utils.timestamps import format_timestamp

from .exceptions import (
    DataIntegrityError,
    DuplicateNotificationError,
    PersistenceError,
    RecordNotFoundError,
)
from .schema import (
    MeetingModel,
    NotificationModel,
    NotificationPreferenceModel,
    NotificationQueueModel,
    NotificationTemplateModel,
    OrganizationModel,
    ReportSettingsModel,
    TaskModel,
    UserModel,
    WeeklyPlanModel,
    WeeklyReportModel,
)

logger = get_logger(__name__, component="database")

DONE_TASK_STATUS = "Done"
CLOSED_MEETING_STATUSES = ("Completed", "Cancelled")

_DELIVERY_FIELDS = frozenset(
    {
        "in_app_delivered",
        "email_delivered",
        "push_delivered",
        "email_sent_at",
        "email_error",
        "delivered_at",
    }
)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into persistence exceptions.

    Args:
        action: Short description used in log lines and error messages
    """
    try:
        yield
    except PersistenceError:
        raise
    except IntegrityError as e:
        logger.error(
            f"Integrity error while trying to {action}: {e}",
            exc_info=True,
            extra={"event": "database.integrity_error", "action": action},
        )
        raise DataIntegrityError(f"Failed to {action} due to constraint violation: {e}") from e
    except SQLAlchemyError as e:
        logger.error(
            f"Database error while trying to {action}: {e}",
            exc_info=True,
            extra={"event": "database.error", "action": action},
        )
        raise PersistenceError(f"Failed to {action}: {e}") from e


class NotificationRepository:
    """Repository for notification rows."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def add(self, notification: Notification) -> Notification:
        """Insert a new notification.

        Args:
            notification: Notification to persist (id is generated when absent)

        Returns:
            Persisted notification with its id

        Raises:
            DuplicateNotificationError: If the dedup key is already taken
            DataIntegrityError: On any other constraint violation
            PersistenceError: If a database error occurs
        """
        model = NotificationModel.from_domain(notification)
        try:
            self.session.add(model)
            self.session.flush()
        except IntegrityError as e:
            if notification.dedup_key and "dedup_key" in str(e.orig):
                raise DuplicateNotificationError(notification.dedup_key) from e
            logger.error(f"Integrity error inserting notification: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to insert notification: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting notification: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert notification: {e}") from e

        return model.to_domain()

    def get(self, notification_id: str) -> Optional[Notification]:
        """Retrieve a notification by id, or None."""
        with _store_errors("load notification"):
            model = self.session.get(NotificationModel, notification_id)
            return model.to_domain() if model else None

    def exists_since(
        self,
        user_id: str,
        types: Iterable[NotificationType],
        since: datetime,
    ) -> bool:
        """Check whether the user got any of ``types`` at or after ``since``.

        Args:
            user_id: Recipient
            types: Notification types to look for
            since: Start of the look-back window

        Returns:
            True if a matching notification exists
        """
        with _store_errors("check recent notifications"):
            stmt = (
                select(NotificationModel.id)
                .where(
                    NotificationModel.user_id == user_id,
                    NotificationModel.type.in_([t.value for t in types]),
                    NotificationModel.created_at >= format_timestamp(since),
                )
                .limit(1)
            )
            return self.session.execute(stmt).first() is not None

    def exists_for_organization(
        self,
        organization_id: str,
        notification_type: NotificationType,
        start: datetime,
        end: datetime,
    ) -> bool:
        """Check whether the organization got ``notification_type`` in [start, end]."""
        with _store_errors("check organization notifications"):
            stmt = (
                select(NotificationModel.id)
                .where(
                    NotificationModel.organization_id == organization_id,
                    NotificationModel.type == notification_type.value,
                    NotificationModel.created_at >= format_timestamp(start),
                    NotificationModel.created_at <= format_timestamp(end),
                )
                .limit(1)
            )
            return self.session.execute(stmt).first() is not None

    def update_delivery(
        self, notification_id: str, updated_at: datetime, **fields
    ) -> Notification:
        """Record delivery bookkeeping on a notification.

        Args:
            notification_id: Notification to update
            updated_at: Timestamp of the change
            **fields: Any of in_app_delivered, email_delivered, push_delivered,
                email_sent_at, email_error, delivered_at

        Returns:
            Updated notification

        Raises:
            RecordNotFoundError: If the notification does not exist
            ValueError: If a field outside the delivery columns is passed
        """
        unknown = set(fields) - _DELIVERY_FIELDS
        if unknown:
            raise ValueError(f"Not a delivery field: {', '.join(sorted(unknown))}")

        with _store_errors("update notification delivery"):
            model = self.session.get(NotificationModel, notification_id)
            if model is None:
                raise RecordNotFoundError(f"Notification {notification_id} not found")

            for key, value in fields.items():
                setattr(model, key, format_timestamp(value) if isinstance(value, datetime) else value)
            model.updated_at = format_timestamp(updated_at)
            self.session.flush()
            return model.to_domain()

    def mark_read(
        self, user_id: str, notification_ids: Sequence[str], read_at: datetime
    ) -> int:
        """Mark the user's own unread notifications among ``notification_ids`` as read.

        Ids belonging to other users are ignored.

        Returns:
            Number of rows changed
        """
        if not notification_ids:
            return 0

        with _store_errors("mark notifications read"):
            stamp = format_timestamp(read_at)
            stmt = (
                update(NotificationModel)
                .where(
                    NotificationModel.id.in_(list(notification_ids)),
                    NotificationModel.user_id == user_id,
                    NotificationModel.is_read.is_(False),
                )
                .values(is_read=True, read_at=stamp, updated_at=stamp)
                .execution_options(synchronize_session=False)
            )
            return self.session.execute(stmt).rowcount

    def mark_all_read(
        self, user_id: str, read_at: datetime, organization_id: Optional[str] = None
    ) -> int:
        """Mark every unread notification of a user as read.

        Returns:
            Number of rows changed
        """
        with _store_errors("mark all notifications read"):
            stamp = format_timestamp(read_at)
            conditions = [
                NotificationModel.user_id == user_id,
                NotificationModel.is_read.is_(False),
            ]
            if organization_id:
                conditions.append(NotificationModel.organization_id == organization_id)
            stmt = (
                update(NotificationModel)
                .where(*conditions)
                .values(is_read=True, read_at=stamp, updated_at=stamp)
                .execution_options(synchronize_session=False)
            )
            return self.session.execute(stmt).rowcount

    def list_for_user(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        category: Optional[NotificationCategory] = None,
        notification_type: Optional[NotificationType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Notification], int, int]:
        """Page through a user's notifications, newest first.

        Args:
            user_id: Recipient
            is_read: Filter on read state
            category: Filter on category
            notification_type: Filter on type
            limit: Page size
            offset: Rows to skip

        Returns:
            Tuple of (page, total matching the filters, total unread for the user)
        """
        with _store_errors("list user notifications"):
            conditions = [NotificationModel.user_id == user_id]
            if is_read is not None:
                conditions.append(NotificationModel.is_read.is_(is_read))
            if category is not None:
                conditions.append(NotificationModel.category == category.value)
            if notification_type is not None:
                conditions.append(NotificationModel.type == notification_type.value)

            page_stmt = (
                select(NotificationModel)
                .where(*conditions)
                .order_by(NotificationModel.created_at.desc(), NotificationModel.id)
                .limit(limit)
                .offset(offset)
            )
            total_stmt = select(func.count()).select_from(NotificationModel).where(*conditions)
            unread_stmt = (
                select(func.count())
                .select_from(NotificationModel)
                .where(
                    NotificationModel.user_id == user_id,
                    NotificationModel.is_read.is_(False),
                )
            )

            page = [model.to_domain() for model in self.session.execute(page_stmt).scalars()]
            total = self.session.execute(total_stmt).scalar_one()
            unread = self.session.execute(unread_stmt).scalar_one()
            return page, total, unread

    def delete_read_before(self, cutoff: datetime) -> int:
        """Delete notifications that are read and were created before ``cutoff``.

        Unread notifications are never deleted.

        Returns:
            Number of rows removed
        """
        with _store_errors("delete old notifications"):
            stmt = (
                delete(NotificationModel)
                .where(
                    NotificationModel.is_read.is_(True),
                    NotificationModel.created_at < format_timestamp(cutoff),
                )
                .execution_options(synchronize_session=False)
            )
            return self.session.execute(stmt).rowcount

    def count_for_organization(
        self,
        organization_id: str,
        since: datetime,
        types: Optional[Iterable[NotificationType]] = None,
        delivered_only: bool = False,
    ) -> int:
        """Count an organization's notifications created since ``since``."""
        with _store_errors("count organization notifications"):
            conditions = [
                NotificationModel.organization_id == organization_id,
                NotificationModel.created_at >= format_timestamp(since),
            ]
            if types is not None:
                conditions.append(NotificationModel.type.in_([t.value for t in types]))
            if delivered_only:
                conditions.append(NotificationModel.delivered_at.is_not(None))
            stmt = select(func.count()).select_from(NotificationModel).where(*conditions)
            return self.session.execute(stmt).scalar_one()


class PreferenceRepository:
    """Repository for per-user notification preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[NotificationPreference]:
        """Return the stored preferences, or None when the user has none."""
        with _store_errors("load notification preferences"):
            model = self.session.get(NotificationPreferenceModel, user_id)
            return model.to_domain() if model else None

    def upsert(self, preference: NotificationPreference) -> NotificationPreference:
        """Insert or replace a user's preferences."""
        with _store_errors("save notification preferences"):
            model = self.session.merge(NotificationPreferenceModel.from_domain(preference))
            self.session.flush()
            return model.to_domain()


class QueueRepository:
    """Repository for the durable delivery queue.

    Status changes are conditional updates so that two drains running at
    the same time can never both take the same entry.
    """

    def __init__(self, session: Session):
        self.session = session

    def add(self, entry: NotificationQueueEntry) -> NotificationQueueEntry:
        """Insert a queue entry."""
        with _store_errors("enqueue notification"):
            model = NotificationQueueModel.from_domain(entry)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def get(self, entry_id: str) -> Optional[NotificationQueueEntry]:
        with _store_errors("load queue entry"):
            model = self.session.get(NotificationQueueModel, entry_id)
            return model.to_domain() if model else None

    def list_due(
        self, now: datetime, limit: int, stale_before: Optional[datetime] = None
    ) -> List[NotificationQueueEntry]:
        """Pending entries whose scheduled time and backoff have both passed.

        With ``stale_before``, Processing entries whose last attempt started
        at or before that time are due as well. Those were left behind by a
        drain that stopped before recording an outcome.

        Args:
            now: Current time
            limit: Maximum number of entries
            stale_before: Lease cut-off for abandoned Processing entries

        Returns:
            Due entries, oldest schedule first
        """
        with _store_errors("list due queue entries"):
            stamp = format_timestamp(now)
            stmt = (
                select(NotificationQueueModel)
                .where(
                    NotificationQueueModel.scheduled_for <= stamp,
                    self._claimable(stamp, stale_before),
                )
                .order_by(NotificationQueueModel.scheduled_for, NotificationQueueModel.created_at)
                .limit(limit)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]

    def claim(
        self, entry_id: str, now: datetime, stale_before: Optional[datetime] = None
    ) -> Optional[NotificationQueueEntry]:
        """Move a Pending (or abandoned Processing) entry to Processing.

        The attempt is counted and ``last_attempt_at`` restarts the lease.

        Returns:
            The claimed entry, or None if another drain holds it
        """
        with _store_errors("claim queue entry"):
            stamp = format_timestamp(now)
            stmt = (
                update(NotificationQueueModel)
                .where(
                    NotificationQueueModel.id == entry_id,
                    self._claimable(stamp, stale_before),
                )
                .values(
                    status=QueueStatus.PROCESSING.value,
                    attempts=NotificationQueueModel.attempts + 1,
                    last_attempt_at=stamp,
                    updated_at=stamp,
                )
                .execution_options(synchronize_session=False)
            )
            if self.session.execute(stmt).rowcount != 1:
                return None
            self.session.expire_all()
            return self.get(entry_id)

    @staticmethod
    def _claimable(stamp: str, stale_before: Optional[datetime]):
        pending = and_(
            NotificationQueueModel.status == QueueStatus.PENDING.value,
            or_(
                NotificationQueueModel.next_attempt_at.is_(None),
                NotificationQueueModel.next_attempt_at <= stamp,
            ),
        )
        if stale_before is None:
            return pending
        abandoned = and_(
            NotificationQueueModel.status == QueueStatus.PROCESSING.value,
            NotificationQueueModel.last_attempt_at <= format_timestamp(stale_before),
        )
        return or_(pending, abandoned)

    def complete(self, entry_id: str, now: datetime) -> None:
        """Processing -> Completed."""
        stamp = format_timestamp(now)
        self._transition(
            entry_id,
            QueueStatus.COMPLETED,
            processed_at=stamp,
            next_attempt_at=None,
            error=None,
            updated_at=stamp,
        )

    def schedule_retry(
        self, entry_id: str, next_attempt_at: datetime, error: str, now: datetime
    ) -> None:
        """Processing -> Pending with a backoff."""
        self._transition(
            entry_id,
            QueueStatus.PENDING,
            next_attempt_at=format_timestamp(next_attempt_at),
            error=error,
            updated_at=format_timestamp(now),
        )

    def fail(self, entry_id: str, error: str, now: datetime) -> None:
        """Processing -> Failed (terminal)."""
        stamp = format_timestamp(now)
        self._transition(
            entry_id,
            QueueStatus.FAILED,
            processed_at=stamp,
            next_attempt_at=None,
            error=error,
            updated_at=stamp,
        )

    def _transition(self, entry_id: str, target: QueueStatus, **values) -> None:
        with _store_errors(f"move queue entry to {target.value}"):
            stmt = (
                update(NotificationQueueModel)
                .where(
                    NotificationQueueModel.id == entry_id,
                    NotificationQueueModel.status == QueueStatus.PROCESSING.value,
                )
                .values(status=target.value, **values)
                .execution_options(synchronize_session=False)
            )
            if self.session.execute(stmt).rowcount != 1:
                raise RecordNotFoundError(
                    f"Queue entry {entry_id} is not in Processing state"
                )

    def count_by_status(self) -> Dict[str, int]:
        """Number of entries per status (every status is present)."""
        with _store_errors("count queue entries"):
            stmt = select(NotificationQueueModel.status, func.count()).group_by(
                NotificationQueueModel.status
            )
            counts = {status.value: 0 for status in QueueStatus}
            for status, count in self.session.execute(stmt):
                counts[status] = count
            return counts


class ReportSettingsRepository:
    """Repository for per-organization report cadence settings."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, organization_id: str) -> Optional[ReportSettings]:
        with _store_errors("load report settings"):
            model = self.session.get(ReportSettingsModel, organization_id)
            return model.to_domain() if model else None

    def add(self, settings: ReportSettings) -> ReportSettings:
        """Insert settings for an organization that has none.

        Raises:
            DataIntegrityError: If the organization already has settings
        """
        with _store_errors("create report settings"):
            model = ReportSettingsModel.from_domain(settings)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def upsert(self, settings: ReportSettings) -> ReportSettings:
        with _store_errors("save report settings"):
            model = self.session.merge(ReportSettingsModel.from_domain(settings))
            self.session.flush()
            return model.to_domain()

    def organizations_without_settings(self) -> List[str]:
        with _store_errors("list organizations without report settings"):
            stmt = (
                select(OrganizationModel.id)
                .outerjoin(
                    ReportSettingsModel,
                    ReportSettingsModel.organization_id == OrganizationModel.id,
                )
                .where(ReportSettingsModel.organization_id.is_(None))
                .order_by(OrganizationModel.id)
            )
            return list(self.session.execute(stmt).scalars())


class DirectoryRepository:
    """Read access to organizations and users, plus inserts for seeding."""

    def __init__(self, session: Session):
        self.session = session

    def add_organization(self, organization: Organization) -> Organization:
        with _store_errors("create organization"):
            model = OrganizationModel.from_domain(organization)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def add_user(self, user: User) -> User:
        with _store_errors("create user"):
            model = UserModel.from_domain(user)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def list_organizations(self) -> List[Organization]:
        with _store_errors("list organizations"):
            stmt = select(OrganizationModel).order_by(OrganizationModel.id)
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]

    def get_user(self, user_id: str) -> Optional[User]:
        with _store_errors("load user"):
            model = self.session.get(UserModel, user_id)
            return model.to_domain() if model else None

    def list_team_members(self, organization_id: str) -> List[User]:
        """Active non-admin users; the population expected to submit plans and reports."""
        with _store_errors("list team members"):
            stmt = (
                select(UserModel)
                .where(
                    UserModel.organization_id == organization_id,
                    UserModel.is_active.is_(True),
                    UserModel.role != Role.ADMIN.value,
                )
                .order_by(UserModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]

    def list_managers(self, organization_id: str) -> List[User]:
        """Active admins and managers of an organization."""
        with _store_errors("list managers"):
            stmt = (
                select(UserModel)
                .where(
                    UserModel.organization_id == organization_id,
                    UserModel.is_active.is_(True),
                    UserModel.role.in_([Role.ADMIN.value, Role.MANAGER.value]),
                )
                .order_by(UserModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]


class TaskRepository:
    """Read access to tasks for due-date scans."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, task: Task) -> Task:
        with _store_errors("create task"):
            model = TaskModel.from_domain(task)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def list_due_between(self, start: datetime, end: datetime) -> List[Task]:
        """Open, assigned tasks with a due date in [start, end]."""
        with _store_errors("list tasks due soon"):
            stmt = (
                select(TaskModel)
                .where(
                    TaskModel.due_date >= format_timestamp(start),
                    TaskModel.due_date <= format_timestamp(end),
                    TaskModel.status != DONE_TASK_STATUS,
                    TaskModel.assignee_id.is_not(None),
                )
                .order_by(TaskModel.due_date, TaskModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]

    def list_overdue(self, before: datetime) -> List[Task]:
        """Open, assigned tasks whose due date is before ``before``."""
        with _store_errors("list overdue tasks"):
            stmt = (
                select(TaskModel)
                .where(
                    TaskModel.due_date < format_timestamp(before),
                    TaskModel.status != DONE_TASK_STATUS,
                    TaskModel.assignee_id.is_not(None),
                )
                .order_by(TaskModel.due_date, TaskModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]


class MeetingRepository:
    """Read access to meetings for reminder scans."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, meeting: Meeting) -> Meeting:
        with _store_errors("create meeting"):
            model = MeetingModel.from_domain(meeting)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def list_starting_between(self, start: datetime, end: datetime) -> List[Meeting]:
        """Meetings that are not completed or cancelled and start in [start, end]."""
        with _store_errors("list upcoming meetings"):
            stmt = (
                select(MeetingModel)
                .where(
                    MeetingModel.start_time >= format_timestamp(start),
                    MeetingModel.start_time <= format_timestamp(end),
                    MeetingModel.status.not_in(CLOSED_MEETING_STATUSES),
                )
                .order_by(MeetingModel.start_time, MeetingModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]


class _SubmissionRepository:
    """Shared queries for weekly plans and reports."""

    model_cls: Type = None
    label: str = "submission"

    def __init__(self, session: Session):
        self.session = session

    def add(self, submission: WeeklySubmission) -> WeeklySubmission:
        with _store_errors(f"create weekly {self.label}"):
            model = self.model_cls.from_domain(submission)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

    def get(self, submission_id: str) -> Optional[WeeklySubmission]:
        with _store_errors(f"load weekly {self.label}"):
            model = self.session.get(self.model_cls, submission_id)
            return model.to_domain() if model else None

    def list_for_week(self, organization_id: str, week_start: datetime) -> List[WeeklySubmission]:
        """All submissions of an organization anchored at ``week_start``."""
        with _store_errors(f"list weekly {self.label}s"):
            stmt = (
                select(self.model_cls)
                .where(
                    self.model_cls.organization_id == organization_id,
                    self.model_cls.week_start == format_timestamp(week_start),
                )
                .order_by(self.model_cls.user_id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]

    def mark_overdue(self, submission_id: str, now: datetime) -> bool:
        """Set status Overdue unless it already is.

        Returns:
            True if the row changed
        """
        with _store_errors(f"mark weekly {self.label} overdue"):
            stmt = (
                update(self.model_cls)
                .where(
                    self.model_cls.id == submission_id,
                    self.model_cls.status != SubmissionStatus.OVERDUE.value,
                )
                .values(
                    status=SubmissionStatus.OVERDUE.value,
                    is_overdue=True,
                    updated_at=format_timestamp(now),
                )
                .execution_options(synchronize_session=False)
            )
            return self.session.execute(stmt).rowcount == 1


class WeeklyPlanRepository(_SubmissionRepository):
    model_cls = WeeklyPlanModel
    label = "plan"


class WeeklyReportRepository(_SubmissionRepository):
    model_cls = WeeklyReportModel
    label = "report"


class TemplateRepository:
    """Repository for organization-specific notification wording."""

    def __init__(self, session: Session):
        self.session = session

    def get_active(
        self, organization_id: str, notification_type: NotificationType
    ) -> Optional[NotificationTemplate]:
        with _store_errors("load notification template"):
            stmt = select(NotificationTemplateModel).where(
                NotificationTemplateModel.organization_id == organization_id,
                NotificationTemplateModel.type == notification_type.value,
                NotificationTemplateModel.is_active.is_(True),
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None

    def add(self, template: NotificationTemplate) -> NotificationTemplate:
        with _store_errors("create notification template"):
            model = NotificationTemplateModel.from_domain(template)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
