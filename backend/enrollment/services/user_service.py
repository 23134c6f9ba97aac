"""
User profile reads and self-service edits.

Accounts are created elsewhere; this module never touches usernames, emails
or roles.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.exceptions import NotFound
from enrollment.core.logging import get_logger
from enrollment.models.user import User
from enrollment.schemas.user import UserProfileUpdate
from enrollment.services.sql_stores import SqlAlchemyUserStore

logger = get_logger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await SqlAlchemyUserStore(db).get(user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


async def update_profile(db: AsyncSession, user_id: int, data: UserProfileUpdate) -> User:
    """Apply the fields the caller sent. Omitted fields are left alone."""
    user = await get_user(db, user_id)
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        return user

    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)

    logger.info("user_profile_updated", user_id=user_id, fields=sorted(changes))
    return user
