"""
Registration endpoints: enroll, amend, withdraw, status changes and listings.

Every write goes through the enrollment engine (one transaction per call) and
then drops the cached listings it affected.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from enrollment.api.deps import get_engine, get_identity, require_admin
from enrollment.core.config import get_settings
from enrollment.core.logging import get_logger
from enrollment.core.security import Identity
from enrollment.schemas.registration import (
    RegistrationCreate,
    RegistrationListResponse,
    RegistrationResponse,
    RegistrationStatusUpdate,
    RegistrationUpdate,
)
from enrollment.services.cache_service import (
    get_cached,
    invalidate_registration_cache,
    registration_list_key,
    set_cached,
)
from enrollment.services.enrollment_engine import EnrollmentEngine

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/registrations", tags=["Registrations"])


@router.post("/", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def enroll(
    data: RegistrationCreate,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """
    Enroll the caller in an activity.

    Capacity is checked and claimed in one conditional update, so concurrent
    enrollments can never overfill an activity. Enrolling twice returns the
    existing registration.
    """
    registration = await engine.enroll(data.activity_id, identity.user_id, data.notes)
    await invalidate_registration_cache(data.activity_id)
    return registration


@router.get("/my", response_model=RegistrationListResponse)
async def list_my_registrations(
    page: int = Query(1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT),
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    registrations, total = await engine.list_mine(identity.user_id, page, limit)
    return RegistrationListResponse(registrations=registrations, total=total, page=page, limit=limit)


@router.get("/activity/{activity_id}", response_model=RegistrationListResponse)
async def list_activity_registrations(
    activity_id: int,
    page: int = Query(1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT),
    status_filter: Optional[str] = Query(None, alias="status"),
    admin: Identity = Depends(require_admin),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """All registrations for an activity. Administrators only; cached in Redis."""
    key = registration_list_key(activity_id, page, limit, status_filter.upper() if status_filter else None)
    cached = await get_cached(key)
    if cached:
        logger.info("registrations_list_cache_hit", activity_id=activity_id, page=page)
        return RegistrationListResponse(**cached)

    registrations, total = await engine.list_for_activity(activity_id, page, limit, status_filter)
    response = RegistrationListResponse(registrations=registrations, total=total, page=page, limit=limit)
    await set_cached(key, response.model_dump(mode="json"))
    return response


@router.put("/activity/{activity_id}", response_model=RegistrationResponse)
async def amend_registration(
    activity_id: int,
    data: RegistrationUpdate,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """Update the notes on the caller's registration for an activity."""
    registration = await engine.amend(activity_id, identity.user_id, data.notes)
    await invalidate_registration_cache(activity_id)
    return registration


@router.get("/{registration_id}", response_model=RegistrationResponse)
async def get_registration(
    registration_id: int,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    return await engine.get_registration(registration_id, identity.user_id, identity.role)


@router.put("/{registration_id}/status", response_model=RegistrationResponse)
async def set_registration_status(
    registration_id: int,
    data: RegistrationStatusUpdate,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """Administrative status change (PENDING to CONFIRMED or CANCELLED)."""
    registration = await engine.set_status(registration_id, data.status, identity.role)
    await invalidate_registration_cache(registration.activity.id)
    return registration


@router.delete("/{registration_id}", response_model=RegistrationResponse)
async def withdraw_registration(
    registration_id: int,
    identity: Identity = Depends(get_identity),
    engine: EnrollmentEngine = Depends(get_engine),
):
    """Withdraw a registration and release its slot back to the activity."""
    registration = await engine.withdraw(registration_id, identity.user_id, identity.role)
    await invalidate_registration_cache(registration.activity.id)
    return registration
