"""
Enrollment engine: the registration lifecycle over capacity-limited activities.

Every public operation validates its arguments, then runs one step inside the
unit of work (one transaction). The engine holds no mutable state of its own;
the stores are the single source of truth.

Registration lifecycle
======================

    PENDING ──set_status──▶ CONFIRMED
       │                        │
       │ withdraw / set_status  │ withdraw (admin only)
       ▼                        ▼
    CANCELLED ◀─────────────────┘      (terminal)

A non-cancelled registration always holds exactly one slot of its activity's
capacity: creating one increments the counter in the same transaction, and
every path into CANCELLED decrements it in the same transaction.
"""

import time
from typing import Optional, Union

from enrollment.core.config import get_settings
from enrollment.core.exceptions import (
    CapacityExceeded,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    NotRegistered,
)
from enrollment.core.logging import get_logger
from enrollment.core.metrics import (
    enrollment_latency,
    record_enrollment_attempt,
    record_status_change,
    record_withdrawal,
)
from enrollment.models.activity import Activity, ActivityStatus
from enrollment.models.comment import Comment
from enrollment.models.registration import Registration, RegistrationStatus
from enrollment.models.user import User, UserRole
from enrollment.schemas.activity import ActivitySummary
from enrollment.schemas.comment import (
    CommentResponse,
    MAX_CONTENT_LENGTH,
    MAX_RATING,
    MIN_CONTENT_LENGTH,
    MIN_RATING,
)
from enrollment.schemas.registration import MAX_NOTES_LENGTH, RegistrationResponse
from enrollment.schemas.user import CommentAuthor, UserSummary
from enrollment.services.interfaces.stores import UnitOfWork

logger = get_logger(__name__)

MAX_PAGE_LIMIT = get_settings().MAX_PAGE_LIMIT

# Transitions reachable through set_status. CONFIRMED -> CANCELLED exists
# only through withdraw by an administrator.
STATUS_TRANSITIONS = {
    RegistrationStatus.PENDING: {RegistrationStatus.CONFIRMED, RegistrationStatus.CANCELLED},
    RegistrationStatus.CONFIRMED: set(),
    RegistrationStatus.CANCELLED: set(),
}

Role = Union[UserRole, str]


def to_registration_response(registration: Registration, activity: Activity, user: User) -> RegistrationResponse:
    return RegistrationResponse(
        id=registration.id,
        status=registration.status,
        notes=registration.notes,
        created_at=registration.created_at,
        updated_at=registration.updated_at,
        activity=ActivitySummary.model_validate(activity),
        user=UserSummary.model_validate(user),
    )


def to_comment_response(comment: Comment, user: User) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        user=CommentAuthor.model_validate(user),
        rating=comment.rating,
        content=comment.content,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
    )


def is_admin(role: Optional[Role]) -> bool:
    return role == UserRole.ADMIN


def parse_registration_status(value: Union[RegistrationStatus, str]) -> RegistrationStatus:
    if isinstance(value, RegistrationStatus):
        return value
    try:
        return RegistrationStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidArgument(
            f"Invalid registration status {value!r}. "
            f"Expected one of: {', '.join(s.value for s in RegistrationStatus)}"
        )


def _check_notes(notes: Optional[str]) -> None:
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise InvalidArgument(f"Notes must be at most {MAX_NOTES_LENGTH} characters")


def _check_comment(rating: int, content: str) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidArgument(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}")
    if not isinstance(content, str) or not MIN_CONTENT_LENGTH <= len(content) <= MAX_CONTENT_LENGTH:
        raise InvalidArgument(
            f"Content must be between {MIN_CONTENT_LENGTH} and {MAX_CONTENT_LENGTH} characters"
        )


def _check_page(page: int, limit: int) -> None:
    if page < 1:
        raise InvalidArgument("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_LIMIT:
        raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_LIMIT}")


def _authorize_owner_or_admin(registration: Registration, caller_id: int, caller_role: Optional[Role]) -> None:
    if registration.user_id != caller_id and not is_admin(caller_role):
        raise Forbidden("You are not allowed to access this registration")


class EnrollmentEngine:
    """
    Public operations: enroll, amend, withdraw, set_status, comment,
    and the read projections list_mine, list_for_activity,
    get_registration, list_comments.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    # -- lookups -----------------------------------------------------------

    async def _require_activity(self, activity_id: int) -> Activity:
        activity = await self.uow.activities.get(activity_id)
        if activity is None:
            raise NotFound(f"Activity {activity_id} not found")
        return activity

    async def _require_user(self, user_id: int) -> User:
        user = await self.uow.users.get(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    async def _require_registration(self, registration_id: int) -> Registration:
        registration = await self.uow.registrations.get(registration_id)
        if registration is None:
            raise NotFound(f"Registration {registration_id} not found")
        return registration

    async def _project(self, registration: Registration) -> RegistrationResponse:
        activity = await self._require_activity(registration.activity_id)
        user = await self._require_user(registration.user_id)
        return to_registration_response(registration, activity, user)

    async def _release_slot(self, registration: Registration, allowed_from: tuple) -> Registration:
        """Cancel the registration and give its slot back, or raise if another writer got there first."""
        changed = await self.uow.registrations.transition_status(
            registration.id, allowed_from, RegistrationStatus.CANCELLED
        )
        if not changed:
            raise InvalidTransition(f"Registration {registration.id} was modified concurrently")
        await self.uow.activities.decrement_participants(registration.activity_id, by=1, floor=0)
        return await self._require_registration(registration.id)

    # -- enroll ------------------------------------------------------------

    async def enroll(self, activity_id: int, user_id: int, notes: Optional[str] = None) -> RegistrationResponse:
        """
        Enroll a user in an OPEN activity.

        Idempotent: an existing active registration is returned as-is and the
        counter is not touched. Raises NotFound, InvalidTransition (activity not
        open) or CapacityExceeded.
        """
        _check_notes(notes)
        start = time.perf_counter()
        try:
            return await self.uow.run(self._enroll, activity_id, user_id, notes)
        finally:
            enrollment_latency.observe(time.perf_counter() - start)

    async def _enroll(self, activity_id: int, user_id: int, notes: Optional[str]) -> RegistrationResponse:
        user = await self._require_user(user_id)
        activity = await self._require_activity(activity_id)

        if activity.status != ActivityStatus.OPEN:
            record_enrollment_attempt("rejected")
            raise InvalidTransition(f"Activity {activity_id} is not open for enrollment")

        existing = await self.uow.registrations.find_active(user_id, activity_id)
        if existing is not None:
            record_enrollment_attempt("existing")
            logger.info("registration_exists", registration_id=existing.id, user_id=user_id, activity_id=activity_id)
            return to_registration_response(existing, activity, user)

        # Check-and-increment is one conditional UPDATE; no separate capacity read.
        if not await self.uow.activities.increment_participants(activity_id, by=1):
            latest = await self._require_activity(activity_id)
            if latest.status != ActivityStatus.OPEN:
                record_enrollment_attempt("rejected")
                raise InvalidTransition(f"Activity {activity_id} is not open for enrollment")
            record_enrollment_attempt("capacity_exceeded")
            logger.warning(
                "enrollment_rejected_capacity",
                activity_id=activity_id,
                user_id=user_id,
                max_participants=latest.max_participants,
                current_participants=latest.current_participants,
            )
            raise CapacityExceeded(
                f"Activity {activity_id} is full ({latest.current_participants}/{latest.max_participants})"
            )

        registration = await self.uow.registrations.create(
            user_id, activity_id, RegistrationStatus.PENDING, notes
        )
        record_enrollment_attempt("created")
        logger.info(
            "registration_created",
            registration_id=registration.id,
            user_id=user_id,
            activity_id=activity_id,
        )
        return to_registration_response(registration, activity, user)

    # -- amend -------------------------------------------------------------

    async def amend(self, activity_id: int, user_id: int, notes: Optional[str]) -> RegistrationResponse:
        """Update the notes of the caller's registration. No capacity or status effect."""
        _check_notes(notes)
        return await self.uow.run(self._amend, activity_id, user_id, notes)

    async def _amend(self, activity_id: int, user_id: int, notes: Optional[str]) -> RegistrationResponse:
        registration = await self.uow.registrations.find_latest(user_id, activity_id)
        if registration is None:
            raise NotRegistered(f"You are not registered for activity {activity_id}")
        if registration.status == RegistrationStatus.CANCELLED:
            raise InvalidTransition(f"Registration {registration.id} is cancelled and cannot be amended")

        registration = await self.uow.registrations.update_notes(registration, notes)
        logger.info("registration_amended", registration_id=registration.id, user_id=user_id)
        return await self._project(registration)

    # -- withdraw ----------------------------------------------------------

    async def withdraw(self, registration_id: int, caller_id: int, caller_role: Optional[Role]) -> RegistrationResponse:
        """
        Cancel a registration and free its slot.

        Owners may withdraw PENDING registrations; administrators may also
        withdraw CONFIRMED ones.
        """
        return await self.uow.run(self._withdraw, registration_id, caller_id, caller_role)

    async def _withdraw(self, registration_id: int, caller_id: int, caller_role: Optional[Role]) -> RegistrationResponse:
        registration = await self._require_registration(registration_id)
        _authorize_owner_or_admin(registration, caller_id, caller_role)
        admin = is_admin(caller_role)

        if registration.status == RegistrationStatus.CANCELLED:
            raise InvalidTransition(f"Registration {registration_id} is already cancelled")
        if registration.status == RegistrationStatus.CONFIRMED and not admin:
            raise InvalidTransition(
                f"Registration {registration_id} is confirmed and can only be withdrawn by an administrator"
            )

        allowed_from = (
            (RegistrationStatus.PENDING, RegistrationStatus.CONFIRMED) if admin
            else (RegistrationStatus.PENDING,)
        )
        registration = await self._release_slot(registration, allowed_from)

        record_withdrawal(by_admin=admin and registration.user_id != caller_id)
        logger.info(
            "registration_withdrawn",
            registration_id=registration_id,
            activity_id=registration.activity_id,
            caller_id=caller_id,
            by_admin=admin,
        )
        return await self._project(registration)

    # -- set_status --------------------------------------------------------

    async def set_status(
        self,
        registration_id: int,
        new_status: Union[RegistrationStatus, str],
        caller_role: Optional[Role],
    ) -> RegistrationResponse:
        """
        Administrative status change.

        PENDING -> CONFIRMED leaves the counter alone. PENDING -> CANCELLED
        releases the slot. Re-applying the current status is a no-op.
        """
        if not is_admin(caller_role):
            raise Forbidden("Only administrators can change registration status")
        target = parse_registration_status(new_status)
        return await self.uow.run(self._set_status, registration_id, target)

    async def _set_status(self, registration_id: int, target: RegistrationStatus) -> RegistrationResponse:
        registration = await self._require_registration(registration_id)
        current = RegistrationStatus(registration.status)

        if current == target:
            return await self._project(registration)
        if target not in STATUS_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot change registration {registration_id} from {current.value} to {target.value}"
            )

        if target == RegistrationStatus.CANCELLED:
            registration = await self._release_slot(registration, (current,))
        else:
            if not await self.uow.registrations.transition_status(registration_id, (current,), target):
                raise InvalidTransition(f"Registration {registration_id} was modified concurrently")
            registration = await self._require_registration(registration_id)

        record_status_change(target.value)
        logger.info(
            "registration_status_changed",
            registration_id=registration_id,
            from_status=current.value,
            to_status=target.value,
        )
        return await self._project(registration)

    # -- comment -----------------------------------------------------------

    async def comment(self, activity_id: int, user_id: int, rating: int, content: str) -> CommentResponse:
        """
        Create or overwrite the caller's comment on an activity.

        Anyone who holds or ever held a registration for the activity may
        comment, including participants who withdrew.
        """
        _check_comment(rating, content)
        return await self.uow.run(self._comment, activity_id, user_id, rating, content)

    async def _comment(self, activity_id: int, user_id: int, rating: int, content: str) -> CommentResponse:
        if not await self.uow.registrations.exists_for(user_id, activity_id):
            raise NotRegistered(f"You must register for activity {activity_id} before commenting")

        await self._require_activity(activity_id)
        user = await self._require_user(user_id)

        existing = await self.uow.comments.find(user_id, activity_id)
        if existing is not None:
            comment = await self.uow.comments.update(existing, rating, content)
            logger.info("comment_updated", comment_id=comment.id, user_id=user_id, activity_id=activity_id)
        else:
            comment = await self.uow.comments.create(user_id, activity_id, rating, content)
            logger.info("comment_created", comment_id=comment.id, user_id=user_id, activity_id=activity_id)
        return to_comment_response(comment, user)

    async def update_comment(self, activity_id: int, user_id: int, rating: int, content: str) -> CommentResponse:
        """Edit the caller's existing comment. Unlike `comment`, never creates one."""
        _check_comment(rating, content)
        return await self.uow.run(self._update_comment, activity_id, user_id, rating, content)

    async def _update_comment(self, activity_id: int, user_id: int, rating: int, content: str) -> CommentResponse:
        existing = await self.uow.comments.find(user_id, activity_id)
        if existing is None:
            raise NotFound(f"You have not commented on activity {activity_id}")
        user = await self._require_user(user_id)

        comment = await self.uow.comments.update(existing, rating, content)
        logger.info("comment_updated", comment_id=comment.id, user_id=user_id, activity_id=activity_id)
        return to_comment_response(comment, user)

    # -- read projections --------------------------------------------------

    async def get_registration(
        self, registration_id: int, caller_id: int, caller_role: Optional[Role]
    ) -> RegistrationResponse:
        return await self.uow.run(self._get_registration, registration_id, caller_id, caller_role)

    async def _get_registration(
        self, registration_id: int, caller_id: int, caller_role: Optional[Role]
    ) -> RegistrationResponse:
        registration = await self._require_registration(registration_id)
        _authorize_owner_or_admin(registration, caller_id, caller_role)
        return await self._project(registration)

    async def list_mine(self, user_id: int, page: int = 1, limit: int = 10) -> tuple[list[RegistrationResponse], int]:
        _check_page(page, limit)
        return await self.uow.run(self._list_mine, user_id, page, limit)

    async def _list_mine(self, user_id: int, page: int, limit: int) -> tuple[list[RegistrationResponse], int]:
        rows, total = await self.uow.registrations.list_by_user(user_id, page, limit)
        return [to_registration_response(*row) for row in rows], total

    async def list_for_activity(
        self,
        activity_id: int,
        page: int = 1,
        limit: int = 10,
        status: Optional[Union[RegistrationStatus, str]] = None,
    ) -> tuple[list[RegistrationResponse], int]:
        _check_page(page, limit)
        status_filter = parse_registration_status(status) if status is not None else None
        return await self.uow.run(self._list_for_activity, activity_id, page, limit, status_filter)

    async def _list_for_activity(
        self,
        activity_id: int,
        page: int,
        limit: int,
        status: Optional[RegistrationStatus],
    ) -> tuple[list[RegistrationResponse], int]:
        await self._require_activity(activity_id)
        rows, total = await self.uow.registrations.list_by_activity(activity_id, page, limit, status)
        return [to_registration_response(*row) for row in rows], total

    async def list_comments(self, activity_id: int, page: int = 1, limit: int = 10) -> tuple[list[CommentResponse], int]:
        _check_page(page, limit)
        return await self.uow.run(self._list_comments, activity_id, page, limit)

    async def _list_comments(self, activity_id: int, page: int, limit: int) -> tuple[list[CommentResponse], int]:
        await self._require_activity(activity_id)
        rows, total = await self.uow.comments.list_by_activity(activity_id, page, limit)
        return [to_comment_response(*row) for row in rows], total
