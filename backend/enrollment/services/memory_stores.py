"""
In-memory stores implementing the same contracts as the SQLAlchemy stores.

Used to exercise the engine's concurrency properties without a database:
every store call yields to the event loop first (like real I/O would), then
applies its effect in one synchronous step, so conditional updates are
atomic with respect to other tasks exactly as a single SQL statement is.

Each unit of work keeps an undo journal; a failed step replays it in
reverse. Undo entries for counters are compensating adjustments rather than
snapshots, so interleaved transactions roll back correctly.

No isolation beyond that: uncommitted rows are visible to other units of
work. One unit of work per concurrent caller.
"""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from enrollment.core.exceptions import DuplicateEntry, Unavailable
from enrollment.core.logging import get_logger
from enrollment.core.metrics import record_transaction_retry
from enrollment.models.activity import Activity, ActivityStatus, ActivityType
from enrollment.models.comment import Comment
from enrollment.models.registration import Registration, RegistrationStatus
from enrollment.models.user import User, UserRole
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


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _io() -> None:
    await asyncio.sleep(0)


def _newest_first(rows):
    return sorted(rows, key=lambda r: (r.created_at, r.id), reverse=True)


class InMemoryDatabase:
    """Shared state for any number of InMemoryUnitOfWork instances."""

    def __init__(self):
        self.users: dict[int, User] = {}
        self.activities: dict[int, Activity] = {}
        self.registrations: dict[int, Registration] = {}
        self.comments: dict[int, Comment] = {}
        self._ids = {name: itertools.count(1) for name in ("users", "activities", "registrations", "comments")}

    def next_id(self, table: str) -> int:
        return next(self._ids[table])

    def add_user(self, username: str, role: UserRole = UserRole.USER, **fields) -> User:
        now = _now()
        user = User(
            id=self.next_id("users"),
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            role=role.value,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.users[user.id] = user
        return user

    def add_activity(
        self,
        title: str = "Morning Yoga",
        max_participants: int = 10,
        status: ActivityStatus = ActivityStatus.OPEN,
        **fields,
    ) -> Activity:
        now = _now()
        start = fields.pop("start_time", now.replace(microsecond=0))
        activity = Activity(
            id=self.next_id("activities"),
            title=title,
            description=fields.pop("description", "An activity for testing"),
            type=fields.pop("type", ActivityType.OTHER.value),
            start_time=start,
            end_time=fields.pop("end_time", start + timedelta(hours=2)),
            location=fields.pop("location", "Main Hall"),
            image_url=fields.pop("image_url", None),
            max_participants=max_participants,
            current_participants=fields.pop("current_participants", 0),
            status=status.value,
            version=1,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.activities[activity.id] = activity
        return activity


class _JournalingStore:

    def __init__(self, db: InMemoryDatabase, uow: "InMemoryUnitOfWork"):
        self.db = db
        self.uow = uow

    def _undo(self, action: Callable[[], None]) -> None:
        self.uow.journal.append(action)


class InMemoryActivityStore(_JournalingStore, ActivityStore):

    async def get(self, activity_id: int) -> Optional[Activity]:
        await _io()
        return self.db.activities.get(activity_id)

    def _adjust(self, activity: Activity, delta: int) -> None:
        activity.current_participants += delta
        activity.version += 1

    async def increment_participants(self, activity_id: int, by: int = 1) -> bool:
        await _io()
        activity = self.db.activities.get(activity_id)
        if (
            activity is None
            or activity.status != ActivityStatus.OPEN
            or activity.current_participants + by > activity.max_participants
        ):
            return False
        self._adjust(activity, by)
        self._undo(lambda: self._adjust(activity, -by))
        return True

    async def decrement_participants(self, activity_id: int, by: int = 1, floor: int = 0) -> bool:
        await _io()
        activity = self.db.activities.get(activity_id)
        if activity is None:
            return False
        released = activity.current_participants - max(activity.current_participants - by, floor)
        self._adjust(activity, -released)
        self._undo(lambda: self._adjust(activity, released))
        return True

    async def compare_and_set_status(
        self, activity_id: int, expected: ActivityStatus, new: ActivityStatus
    ) -> bool:
        await _io()
        activity = self.db.activities.get(activity_id)
        if activity is None or activity.status != expected:
            return False
        activity.status = new.value
        activity.updated_at = _now()
        self._undo(lambda: setattr(activity, "status", expected.value))
        return True


class InMemoryRegistrationStore(_JournalingStore, RegistrationStore):

    def _for_pair(self, user_id: int, activity_id: int) -> list[Registration]:
        return [
            r for r in self.db.registrations.values()
            if r.user_id == user_id and r.activity_id == activity_id
        ]

    def _rows(self, registrations) -> list[RegistrationRow]:
        return [
            (r, self.db.activities[r.activity_id], self.db.users[r.user_id])
            for r in registrations
        ]

    def _page(self, registrations, page: int, limit: int) -> tuple[list[RegistrationRow], int]:
        ordered = _newest_first(registrations)
        start = (page - 1) * limit
        return self._rows(ordered[start:start + limit]), len(ordered)

    async def get(self, registration_id: int) -> Optional[Registration]:
        await _io()
        return self.db.registrations.get(registration_id)

    async def find_active(self, user_id: int, activity_id: int) -> Optional[Registration]:
        await _io()
        for registration in self._for_pair(user_id, activity_id):
            if registration.status != RegistrationStatus.CANCELLED:
                return registration
        return None

    async def find_latest(self, user_id: int, activity_id: int) -> Optional[Registration]:
        await _io()
        ordered = _newest_first(self._for_pair(user_id, activity_id))
        return ordered[0] if ordered else None

    async def exists_for(self, user_id: int, activity_id: int) -> bool:
        await _io()
        return bool(self._for_pair(user_id, activity_id))

    async def create(
        self,
        user_id: int,
        activity_id: int,
        status: RegistrationStatus,
        notes: Optional[str],
    ) -> Registration:
        await _io()
        if any(r.status != RegistrationStatus.CANCELLED for r in self._for_pair(user_id, activity_id)):
            raise DuplicateEntry(
                f"Active registration already exists for user {user_id} on activity {activity_id}"
            )
        now = _now()
        registration = Registration(
            id=self.db.next_id("registrations"),
            user_id=user_id,
            activity_id=activity_id,
            status=status.value,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.registrations[registration.id] = registration
        self._undo(lambda: self.db.registrations.pop(registration.id, None))
        return registration

    async def update_notes(self, registration: Registration, notes: Optional[str]) -> Registration:
        await _io()
        previous = registration.notes
        registration.notes = notes
        registration.updated_at = _now()
        self._undo(lambda: setattr(registration, "notes", previous))
        return registration

    async def transition_status(
        self,
        registration_id: int,
        allowed_from: Sequence[RegistrationStatus],
        new_status: RegistrationStatus,
    ) -> bool:
        await _io()
        registration = self.db.registrations.get(registration_id)
        if registration is None or registration.status not in allowed_from:
            return False
        previous = registration.status
        registration.status = new_status.value
        registration.updated_at = _now()
        self._undo(lambda: setattr(registration, "status", previous))
        return True

    async def list_by_user(self, user_id: int, page: int, limit: int) -> tuple[list[RegistrationRow], int]:
        await _io()
        return self._page(
            [r for r in self.db.registrations.values() if r.user_id == user_id], page, limit
        )

    async def list_by_activity(
        self,
        activity_id: int,
        page: int,
        limit: int,
        status: Optional[RegistrationStatus] = None,
    ) -> tuple[list[RegistrationRow], int]:
        await _io()
        return self._page(
            [
                r for r in self.db.registrations.values()
                if r.activity_id == activity_id and (status is None or r.status == status)
            ],
            page,
            limit,
        )


class InMemoryCommentStore(_JournalingStore, CommentStore):

    async def find(self, user_id: int, activity_id: int) -> Optional[Comment]:
        await _io()
        for comment in self.db.comments.values():
            if comment.user_id == user_id and comment.activity_id == activity_id:
                return comment
        return None

    async def create(self, user_id: int, activity_id: int, rating: int, content: str) -> Comment:
        await _io()
        if any(c.user_id == user_id and c.activity_id == activity_id for c in self.db.comments.values()):
            raise DuplicateEntry(f"Comment already exists for user {user_id} on activity {activity_id}")
        now = _now()
        comment = Comment(
            id=self.db.next_id("comments"),
            user_id=user_id,
            activity_id=activity_id,
            rating=rating,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self.db.comments[comment.id] = comment
        self._undo(lambda: self.db.comments.pop(comment.id, None))
        return comment

    async def update(self, comment: Comment, rating: int, content: str) -> Comment:
        await _io()
        previous = (comment.rating, comment.content)
        comment.rating = rating
        comment.content = content
        comment.updated_at = _now()

        def restore():
            comment.rating, comment.content = previous

        self._undo(restore)
        return comment

    async def list_by_activity(self, activity_id: int, page: int, limit: int) -> tuple[list[CommentRow], int]:
        await _io()
        ordered = _newest_first([c for c in self.db.comments.values() if c.activity_id == activity_id])
        start = (page - 1) * limit
        return [(c, self.db.users[c.user_id]) for c in ordered[start:start + limit]], len(ordered)

    async def average_rating(self, activity_id: int) -> float:
        await _io()
        ratings = [c.rating for c in self.db.comments.values() if c.activity_id == activity_id]
        return round(sum(ratings) / len(ratings), 2) if ratings else 0.0


class InMemoryUserStore(_JournalingStore, UserStore):

    async def get(self, user_id: int) -> Optional[User]:
        await _io()
        return self.db.users.get(user_id)


class InMemoryUnitOfWork(UnitOfWork):

    def __init__(self, db: InMemoryDatabase, max_attempts: int = 3):
        self.db = db
        self.max_attempts = max_attempts
        self.journal: list[Callable[[], None]] = []
        self.activities = InMemoryActivityStore(db, self)
        self.registrations = InMemoryRegistrationStore(db, self)
        self.comments = InMemoryCommentStore(db, self)
        self.users = InMemoryUserStore(db, self)

    def _rollback(self) -> None:
        while self.journal:
            self.journal.pop()()

    async def run(self, step: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            self.journal = []
            try:
                result = await step(*args, **kwargs)
                self.journal = []
                return result
            except DuplicateEntry as e:
                self._rollback()
                last_error = e
                record_transaction_retry("conflict")
                logger.info("transaction_retry", attempt=attempt, reason="conflict", error=str(e))
            except Exception:
                self._rollback()
                raise

        raise Unavailable("The store is busy. Please try again.") from last_error
