"""
Activity endpoints with Redis caching on list operations.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.api.deps import get_engine, get_identity, require_admin
from enrollment.core.config import get_settings
from enrollment.core.logging import get_logger
from enrollment.core.security import Identity
from enrollment.db.session import get_db
from enrollment.models.activity import ActivityStatus, ActivityType
from enrollment.schemas.activity import (
    ActivityCreate,
    ActivityDetailResponse,
    ActivityListResponse,
    ActivityResponse,
    ActivityStatusUpdate,
    ActivityUpdate,
)
from enrollment.schemas.comment import CommentCreate, CommentListResponse, CommentResponse
from enrollment.services import activity_service
from enrollment.services.cache_service import (
    activity_list_key,
    get_cached,
    invalidate_activity_cache,
    set_cached,
)
from enrollment.services.enrollment_engine import EnrollmentEngine

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/activities", tags=["Activities"])


@router.post("/", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
async def create_activity(
    data: ActivityCreate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    activity = await activity_service.create_activity(db, data)
    await invalidate_activity_cache()
    return activity


@router.get("/", response_model=ActivityListResponse)
async def list_activities(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    status_filter: Optional[ActivityStatus] = Query(None, alias="status"),
    type_filter: Optional[ActivityType] = Query(None, alias="type"),
    keyword: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    """
    List activities, soonest first.
    Results are cached in Redis and invalidated whenever participant counts
    or activities change.
    """
    key = activity_list_key(
        page,
        page_size,
        status_filter.value if status_filter else None,
        type_filter.value if type_filter else None,
        keyword,
    )
    cached = await get_cached(key)
    if cached:
        logger.info("activities_list_cache_hit", page=page)
        cached["cached"] = True
        return ActivityListResponse(**cached)

    activities, total = await activity_service.list_activities(
        db, page, page_size, status_filter, type_filter, keyword
    )

    response_data = {
        "activities": [ActivityResponse.model_validate(a).model_dump(mode="json") for a in activities],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached(key, response_data)

    return ActivityListResponse(**response_data)


@router.get("/{activity_id}", response_model=ActivityDetailResponse)
async def get_activity(
    activity_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Single activity with rating summary. Not cached (needs live participant counts)."""
    return await activity_service.get_activity_detail(db, activity_id)


@router.put("/{activity_id}", response_model=ActivityResponse)
async def update_activity(
    activity_id: int,
    data: ActivityUpdate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    activity = await activity_service.update_activity(db, activity_id, data)
    await invalidate_activity_cache()
    return activity


@router.patch("/{activity_id}/status", response_model=ActivityResponse)
async def update_activity_status(
    activity_id: int,
    data: ActivityStatusUpdate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    activity = await activity_service.update_activity_status(
        db, activity_id, data.status, data.expected_status
    )
    await invalidate_activity_cache()
    return activity


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_activity(
    activity_id: int,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await activity_service.delete_activity(db, activity_id)
    await invalidate_activity_cache()


@router.get("/{activity_id}/comments", response_model=CommentListResponse)
async def list_comments(
    activity_id: int,
    page: int = Query(1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT),
    engine: EnrollmentEngine = Depends(get_engine),
):
    comments, total = await engine.list_comments(activity_id, page, limit)
    return CommentListResponse(comments=comments, total=total, page=page, limit=limit)


@router.post("/{activity_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def comment_on_activity(
    activity_id: int,
    data: CommentCreate,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """Create or replace the caller's comment. Requires a past or present registration."""
    return await engine.comment(activity_id, identity.user_id, data.rating, data.content)


@router.put("/{activity_id}/comments", response_model=CommentResponse)
async def update_comment(
    activity_id: int,
    data: CommentCreate,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """Edit the caller's existing comment. 404 if they have not commented yet."""
    return await engine.update_comment(activity_id, identity.user_id, data.rating, data.content)
