"""
Store interfaces consumed by the enrollment engine.

The engine depends only on these contracts, so the SQLAlchemy-backed stores
and the in-memory stores are interchangeable. Identity generation belongs to
the store; every state-transition decision belongs to the engine.

Listings return `(rows, total)` ordered newest first (created_at desc, id desc).
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from enrollment.models.activity import Activity, ActivityStatus
from enrollment.models.comment import Comment
from enrollment.models.registration import Registration, RegistrationStatus
from enrollment.models.user import User

T = TypeVar("T")

RegistrationRow = tuple[Registration, Activity, User]
CommentRow = tuple[Comment, User]


class ActivityStore(ABC):

    @abstractmethod
    async def get(self, activity_id: int) -> Optional[Activity]:
        pass

    @abstractmethod
    async def increment_participants(self, activity_id: int, by: int = 1) -> bool:
        """
        Atomically add `by` to the participant counter.

        Succeeds only if the activity is OPEN and the result stays within
        `max_participants`. Returns False when no row was changed.
        """
        pass

    @abstractmethod
    async def decrement_participants(self, activity_id: int, by: int = 1, floor: int = 0) -> bool:
        """
        Atomically set the counter to max(current - by, floor).

        Returns False only when the activity does not exist.
        """
        pass

    @abstractmethod
    async def compare_and_set_status(
        self, activity_id: int, expected: ActivityStatus, new: ActivityStatus
    ) -> bool:
        pass


class RegistrationStore(ABC):

    @abstractmethod
    async def get(self, registration_id: int) -> Optional[Registration]:
        pass

    @abstractmethod
    async def find_active(self, user_id: int, activity_id: int) -> Optional[Registration]:
        """The pair's non-cancelled registration, if any."""
        pass

    @abstractmethod
    async def find_latest(self, user_id: int, activity_id: int) -> Optional[Registration]:
        """The pair's most recent registration regardless of status."""
        pass

    @abstractmethod
    async def exists_for(self, user_id: int, activity_id: int) -> bool:
        """True if the user holds or ever held a registration for the activity."""
        pass

    @abstractmethod
    async def create(
        self,
        user_id: int,
        activity_id: int,
        status: RegistrationStatus,
        notes: Optional[str],
    ) -> Registration:
        """Insert a registration. Raises DuplicateEntry if the pair already has an active one."""
        pass

    @abstractmethod
    async def update_notes(self, registration: Registration, notes: Optional[str]) -> Registration:
        pass

    @abstractmethod
    async def transition_status(
        self,
        registration_id: int,
        allowed_from: Sequence[RegistrationStatus],
        new_status: RegistrationStatus,
    ) -> bool:
        """
        Conditional status update: only applies while the current status is
        one of `allowed_from`. Returns whether a row changed.
        """
        pass

    @abstractmethod
    async def list_by_user(self, user_id: int, page: int, limit: int) -> tuple[list[RegistrationRow], int]:
        pass

    @abstractmethod
    async def list_by_activity(
        self,
        activity_id: int,
        page: int,
        limit: int,
        status: Optional[RegistrationStatus] = None,
    ) -> tuple[list[RegistrationRow], int]:
        pass


class CommentStore(ABC):

    @abstractmethod
    async def find(self, user_id: int, activity_id: int) -> Optional[Comment]:
        pass

    @abstractmethod
    async def create(self, user_id: int, activity_id: int, rating: int, content: str) -> Comment:
        """Raises DuplicateEntry if the pair already has a comment."""
        pass

    @abstractmethod
    async def update(self, comment: Comment, rating: int, content: str) -> Comment:
        pass

    @abstractmethod
    async def list_by_activity(self, activity_id: int, page: int, limit: int) -> tuple[list[CommentRow], int]:
        pass

    @abstractmethod
    async def average_rating(self, activity_id: int) -> float:
        pass


class UserStore(ABC):

    @abstractmethod
    async def get(self, user_id: int) -> Optional[User]:
        pass


class UnitOfWork(ABC):
    """
    One transactional scope over all stores.

    `run` executes an engine step inside a transaction: commit on success,
    rollback on any exception. DuplicateEntry and transient store faults
    roll back and re-run the step; exhausting the attempts raises
    Unavailable. Everything else propagates unchanged after the rollback.
    """

    activities: ActivityStore
    registrations: RegistrationStore
    comments: CommentStore
    users: UserStore

    @abstractmethod
    async def run(self, step: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        pass
