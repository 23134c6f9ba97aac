"""
SQLAlchemy-backed stores and unit of work.

CONCURRENCY STRATEGY: Atomic Conditional Updates
================================================

Problem:
  Two users try to take the last slot of an activity simultaneously.
  Both read current_participants=9 of 10, both write 10, both insert a
  registration. Result: 11 registrations against a capacity of 10.

Solution:
  The counter is never read-modified-written from Python. Every change is
  one statement whose WHERE clause carries the admission rule:

    UPDATE activities
       SET current_participants = current_participants + 1, version = version + 1
     WHERE id = :id AND status = 'open' AND current_participants + 1 <= max_participants

  The affected-row count is the success signal. The database serializes
  concurrent writers on the row lock; the loser either sees the committed
  increment and gets 0 rows, or waits and then gets 0 rows. The registration
  insert happens only after a successful increment, inside the same
  transaction, so a failed insert rolls the increment back with it.

  Withdrawal mirrors this: the registration's status change is conditioned on
  its current status (only one concurrent withdraw can change the row), and
  the decrement is floored at zero in SQL.

  Uniqueness of the active registration per (user, activity) and of the
  comment per (user, activity) is enforced by indexes. A violation surfaces
  as DuplicateEntry; the unit of work rolls back and re-runs the step, which
  then finds the row that won.

  DB CHECK constraints (0 <= current <= max) are the final safety net.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.config import get_settings
from enrollment.core.exceptions import DuplicateEntry, Unavailable
from enrollment.core.logging import get_logger
from enrollment.core.metrics import record_transaction_retry
from enrollment.models.activity import Activity, ActivityStatus
from enrollment.models.comment import Comment
from enrollment.models.registration import Registration, RegistrationStatus
from enrollment.models.user import User
from enrollment.services.interfaces.stores import (
    ActivityStore,
    CommentRow,
    CommentStore,
    RegistrationRow,
    RegistrationStore,
    UnitOfWork,
    UserStore,
)

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


def _newest_first(model):
    return (model.created_at.desc(), model.id.desc())


class SqlAlchemyActivityStore(ActivityStore):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, activity_id: int) -> Optional[Activity]:
        result = await self.session.execute(
            select(Activity)
            .where(Activity.id == activity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def increment_participants(self, activity_id: int, by: int = 1) -> bool:
        result = await self.session.execute(
            update(Activity)
            .where(
                Activity.id == activity_id,
                Activity.status == ActivityStatus.OPEN.value,
                Activity.current_participants + by <= Activity.max_participants,
            )
            .values(
                current_participants=Activity.current_participants + by,
                version=Activity.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def decrement_participants(self, activity_id: int, by: int = 1, floor: int = 0) -> bool:
        result = await self.session.execute(
            update(Activity)
            .where(Activity.id == activity_id)
            .values(
                current_participants=case(
                    (Activity.current_participants - by > floor, Activity.current_participants - by),
                    else_=floor,
                ),
                version=Activity.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def compare_and_set_status(
        self, activity_id: int, expected: ActivityStatus, new: ActivityStatus
    ) -> bool:
        result = await self.session.execute(
            update(Activity)
            .where(Activity.id == activity_id, Activity.status == expected.value)
            .values(status=new.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlAlchemyRegistrationStore(RegistrationStore):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _joined(self):
        return (
            select(Registration, Activity, User)
            .join(Activity, Activity.id == Registration.activity_id)
            .join(User, User.id == Registration.user_id)
        )

    async def _page(self, where, page: int, limit: int) -> tuple[list[RegistrationRow], int]:
        total = (
            await self.session.execute(
                select(func.count()).select_from(Registration).where(*where)
            )
        ).scalar_one()
        result = await self.session.execute(
            self._joined()
            .where(*where)
            .order_by(*_newest_first(Registration))
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [tuple(row) for row in result.all()], total

    async def get(self, registration_id: int) -> Optional[Registration]:
        result = await self.session.execute(
            select(Registration)
            .where(Registration.id == registration_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_active(self, user_id: int, activity_id: int) -> Optional[Registration]:
        result = await self.session.execute(
            select(Registration)
            .where(
                Registration.user_id == user_id,
                Registration.activity_id == activity_id,
                Registration.status != RegistrationStatus.CANCELLED.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_latest(self, user_id: int, activity_id: int) -> Optional[Registration]:
        result = await self.session.execute(
            select(Registration)
            .where(Registration.user_id == user_id, Registration.activity_id == activity_id)
            .order_by(*_newest_first(Registration))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def exists_for(self, user_id: int, activity_id: int) -> bool:
        result = await self.session.execute(
            select(Registration.id)
            .where(Registration.user_id == user_id, Registration.activity_id == activity_id)
            .limit(1)
        )
        return result.first() is not None

    async def create(
        self,
        user_id: int,
        activity_id: int,
        status: RegistrationStatus,
        notes: Optional[str],
    ) -> Registration:
        registration = Registration(
            user_id=user_id,
            activity_id=activity_id,
            status=status.value,
            notes=notes,
        )
        self.session.add(registration)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntry(
                f"Active registration already exists for user {user_id} on activity {activity_id}"
            ) from e
        await self.session.refresh(registration)
        return registration

    async def update_notes(self, registration: Registration, notes: Optional[str]) -> Registration:
        registration.notes = notes
        await self.session.flush()
        await self.session.refresh(registration)
        return registration

    async def transition_status(
        self,
        registration_id: int,
        allowed_from: Sequence[RegistrationStatus],
        new_status: RegistrationStatus,
    ) -> bool:
        result = await self.session.execute(
            update(Registration)
            .where(
                Registration.id == registration_id,
                Registration.status.in_([s.value for s in allowed_from]),
            )
            .values(status=new_status.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_user(self, user_id: int, page: int, limit: int) -> tuple[list[RegistrationRow], int]:
        return await self._page([Registration.user_id == user_id], page, limit)

    async def list_by_activity(
        self,
        activity_id: int,
        page: int,
        limit: int,
        status: Optional[RegistrationStatus] = None,
    ) -> tuple[list[RegistrationRow], int]:
        where = [Registration.activity_id == activity_id]
        if status is not None:
            where.append(Registration.status == status.value)
        return await self._page(where, page, limit)


class SqlAlchemyCommentStore(CommentStore):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, user_id: int, activity_id: int) -> Optional[Comment]:
        result = await self.session.execute(
            select(Comment)
            .where(Comment.user_id == user_id, Comment.activity_id == activity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, user_id: int, activity_id: int, rating: int, content: str) -> Comment:
        comment = Comment(user_id=user_id, activity_id=activity_id, rating=rating, content=content)
        self.session.add(comment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntry(
                f"Comment already exists for user {user_id} on activity {activity_id}"
            ) from e
        await self.session.refresh(comment)
        return comment

    async def update(self, comment: Comment, rating: int, content: str) -> Comment:
        comment.rating = rating
        comment.content = content
        await self.session.flush()
        await self.session.refresh(comment)
        return comment

    async def list_by_activity(self, activity_id: int, page: int, limit: int) -> tuple[list[CommentRow], int]:
        total = (
            await self.session.execute(
                select(func.count()).select_from(Comment).where(Comment.activity_id == activity_id)
            )
        ).scalar_one()
        result = await self.session.execute(
            select(Comment, User)
            .join(User, User.id == Comment.user_id)
            .where(Comment.activity_id == activity_id)
            .order_by(*_newest_first(Comment))
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [tuple(row) for row in result.all()], total

    async def average_rating(self, activity_id: int) -> float:
        result = await self.session.execute(
            select(func.avg(Comment.rating)).where(Comment.activity_id == activity_id)
        )
        average = result.scalar()
        return round(float(average), 2) if average is not None else 0.0


class SqlAlchemyUserStore(UserStore):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[User]:
        return await self.session.get(User, user_id, populate_existing=True)


def is_transient(error: DBAPIError) -> bool:
    """Lock timeouts, serialization failures, deadlocks and dropped connections."""
    if error.connection_invalidated or isinstance(error, OperationalError):
        return True
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    return sqlstate in TRANSIENT_SQLSTATES


class SqlAlchemyUnitOfWork(UnitOfWork):
    """
    Runs engine steps as single transactions on one AsyncSession.

    One unit of work per request (it shares the request's session), never
    shared between concurrent callers.
    """

    def __init__(
        self,
        session: AsyncSession,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.session = session
        self.max_attempts = max_attempts or settings.STORE_RETRY_ATTEMPTS
        self.backoff_seconds = (
            settings.STORE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.activities = SqlAlchemyActivityStore(session)
        self.registrations = SqlAlchemyRegistrationStore(session)
        self.comments = SqlAlchemyCommentStore(session)
        self.users = SqlAlchemyUserStore(session)

    async def run(self, step: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await step(*args, **kwargs)
                await self.session.commit()
                return result
            except DuplicateEntry as e:
                await self.session.rollback()
                last_error = e
                record_transaction_retry("conflict")
                logger.info("transaction_retry", attempt=attempt, reason="conflict", error=str(e))
            except DBAPIError as e:
                await self.session.rollback()
                if not is_transient(e):
                    raise
                last_error = e
                record_transaction_retry("transient")
                logger.warning("transaction_retry", attempt=attempt, reason="transient", error=str(e))
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)
            except Exception:
                await self.session.rollback()
                raise

        logger.error("transaction_failed", attempts=self.max_attempts, error=str(last_error))
        raise Unavailable("The store is busy. Please try again.") from last_error
