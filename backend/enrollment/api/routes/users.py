"""
User profile endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.api.deps import get_identity
from enrollment.core.security import Identity
from enrollment.db.session import get_db
from enrollment.schemas.user import UserProfileResponse, UserProfileUpdate, UserPublicProfile
from enrollment.services import user_service

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserProfileResponse)
async def get_my_profile(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user(db, identity.user_id)


@router.put("/me", response_model=UserProfileResponse)
async def update_my_profile(
    data: UserProfileUpdate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_profile(db, identity.user_id, data)


@router.get("/{user_id}", response_model=UserPublicProfile)
async def get_user_profile(
    user_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Public view of another user. Email and phone are only on /users/me."""
    return await user_service.get_user(db, user_id)
