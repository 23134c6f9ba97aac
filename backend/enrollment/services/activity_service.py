"""
Activity administration: create, read, list, edit, status changes and deletion.

Participant counters are never written here; they belong to the enrollment
engine. Status changes go through the same compare-and-set the stores use so
they cannot silently overwrite a concurrent change.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.exceptions import CapacityExceeded, InvalidArgument, InvalidTransition, NotFound
from enrollment.core.logging import get_logger
from enrollment.models.activity import Activity, ActivityStatus, ActivityType
from enrollment.models.comment import Comment
from enrollment.models.registration import Registration
from enrollment.schemas.activity import ActivityCreate, ActivityDetailResponse, ActivityUpdate
from enrollment.services.enrollment_engine import to_comment_response
from enrollment.services.sql_stores import SqlAlchemyActivityStore, SqlAlchemyCommentStore

logger = get_logger(__name__)

DETAIL_COMMENT_LIMIT = 50


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def create_activity(db: AsyncSession, activity_data: ActivityCreate) -> Activity:
    """Create a new activity with no participants."""
    if _aware(activity_data.start_time) < datetime.now(timezone.utc):
        raise InvalidArgument("Activity start time must not be in the past")

    activity = Activity(
        title=activity_data.title,
        description=activity_data.description,
        type=activity_data.type.value,
        start_time=activity_data.start_time,
        end_time=activity_data.end_time,
        location=activity_data.location,
        image_url=activity_data.image_url,
        max_participants=activity_data.max_participants,
        current_participants=0,
        status=activity_data.status.value,
        version=1,
    )
    db.add(activity)
    await db.commit()
    await db.refresh(activity)

    logger.info(
        "activity_created",
        activity_id=activity.id,
        title=activity.title,
        max_participants=activity.max_participants,
    )
    return activity


async def get_activity(db: AsyncSession, activity_id: int) -> Activity:
    """Get a single activity by ID."""
    activity = await SqlAlchemyActivityStore(db).get(activity_id)
    if not activity:
        raise NotFound(f"Activity {activity_id} not found")
    return activity


async def get_activity_detail(db: AsyncSession, activity_id: int) -> ActivityDetailResponse:
    """Activity with its average rating and the most recent comments."""
    activity = await get_activity(db, activity_id)
    comments = SqlAlchemyCommentStore(db)
    average = await comments.average_rating(activity_id)
    rows, _ = await comments.list_by_activity(activity_id, 1, DETAIL_COMMENT_LIMIT)

    detail = ActivityDetailResponse.model_validate(activity)
    detail.average_rating = average
    detail.comments = [to_comment_response(*row) for row in rows]
    return detail


async def list_activities(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 10,
    status: Optional[ActivityStatus] = None,
    activity_type: Optional[ActivityType] = None,
    keyword: Optional[str] = None,
) -> tuple[list[Activity], int]:
    """
    List activities with pagination, soonest first.
    Status filtering uses the ix_activities_status_start_time composite index.
    """
    query = select(Activity)

    if status is not None:
        query = query.where(Activity.status == status.value)
    if activity_type is not None:
        query = query.where(Activity.type == activity_type.value)
    if keyword:
        query = query.where(Activity.title.icontains(keyword, autoescape=True))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    activities_query = (
        query
        .order_by(Activity.start_time.asc(), Activity.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(activities_query)
    activities = list(result.scalars().all())

    return activities, total


async def update_activity(db: AsyncSession, activity_id: int, data: ActivityUpdate) -> Activity:
    """
    Edit activity details.

    A new capacity is applied only if it still holds the current participants;
    the check and the write are one conditional UPDATE so a concurrent
    enrollment cannot slip in between.
    """
    activity = await get_activity(db, activity_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        return activity

    if "type" in changes:
        changes["type"] = changes["type"].value
    start = _aware(changes.get("start_time", activity.start_time))
    end = _aware(changes.get("end_time", activity.end_time))
    if start >= end:
        raise InvalidArgument("Activity start time must be before its end time")
    if "start_time" in changes and start < datetime.now(timezone.utc):
        raise InvalidArgument("Activity start time must not be in the past")

    statement = update(Activity).where(Activity.id == activity_id)
    new_max = changes.get("max_participants")
    if new_max is not None:
        statement = statement.where(Activity.current_participants <= new_max)
        changes["version"] = Activity.version + 1

    result = await db.execute(
        statement
        .values(**changes, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await get_activity(db, activity_id)
        raise CapacityExceeded(
            f"Activity {activity_id} has {current.current_participants} participants; "
            f"max_participants cannot drop to {new_max}"
        )
    await db.commit()

    logger.info("activity_updated", activity_id=activity_id, fields=sorted(data.model_fields_set))
    return await get_activity(db, activity_id)


async def update_activity_status(
    db: AsyncSession,
    activity_id: int,
    new_status: ActivityStatus,
    expected_status: Optional[ActivityStatus] = None,
) -> Activity:
    """
    Compare-and-set the activity status.

    Without `expected_status` the status read just before the write is used,
    so a concurrent change between the read and the write still fails.
    """
    activity = await get_activity(db, activity_id)
    expected = expected_status or ActivityStatus(activity.status)

    changed = await SqlAlchemyActivityStore(db).compare_and_set_status(activity_id, expected, new_status)
    if not changed:
        await db.rollback()
        raise InvalidTransition(
            f"Activity {activity_id} status is no longer {expected.value}"
        )
    await db.commit()

    logger.info(
        "activity_status_changed",
        activity_id=activity_id,
        from_status=expected.value,
        to_status=new_status.value,
    )
    return await get_activity(db, activity_id)


async def delete_activity(db: AsyncSession, activity_id: int) -> None:
    """Delete an activity that never had any registrations."""
    await get_activity(db, activity_id)

    registrations = (
        await db.execute(
            select(func.count()).select_from(Registration).where(Registration.activity_id == activity_id)
        )
    ).scalar_one()
    if registrations:
        await db.rollback()
        raise InvalidTransition(
            f"Activity {activity_id} has {registrations} registrations and cannot be deleted"
        )

    await db.execute(delete(Comment).where(Comment.activity_id == activity_id))
    await db.execute(delete(Activity).where(Activity.id == activity_id))
    await db.commit()
    logger.info("activity_deleted", activity_id=activity_id)
