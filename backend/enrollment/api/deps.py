"""
Request-scoped dependencies: unit of work, engine and caller identity.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from enrollment.core.exceptions import Forbidden
from enrollment.core.security import (
    Identity,
    IdentityVerifier,
    extract_bearer_token,
    get_identity_verifier,
)
from enrollment.db.session import get_db
from enrollment.services.enrollment_engine import EnrollmentEngine
from enrollment.services.interfaces import UnitOfWork
from enrollment.services.sql_stores import SqlAlchemyUnitOfWork


async def get_uow(db: AsyncSession = Depends(get_db)) -> UnitOfWork:
    return SqlAlchemyUnitOfWork(db)


async def get_engine(uow: UnitOfWork = Depends(get_uow)) -> EnrollmentEngine:
    return EnrollmentEngine(uow)


async def get_identity(
    authorization: Optional[str] = Header(None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Identity:
    """Verify the bearer token. Raises Unauthenticated or Expired."""
    return verifier.verify(extract_bearer_token(authorization))


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Administrator role required")
    return identity
