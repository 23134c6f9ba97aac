"""
Identity assertions.

The engine never parses credentials: it receives an `Identity` that the
verifier derived from a bearer token and trusts it verbatim. Tokens are
HS256 JWTs carrying `sub` (user id), `username` and `role`.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from enrollment.core.config import get_settings
from enrollment.core.exceptions import Expired, Unauthenticated
from enrollment.core.logging import get_logger
from enrollment.models.user import UserRole

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(
    user_id: int,
    username: str,
    role: str = UserRole.USER.value,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Mint a token for an existing user. Used by tests and operator tooling."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "iss": settings.TOKEN_ISSUER,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


class IdentityVerifier:
    """Turns a bearer token into an `Identity` or raises Unauthenticated/Expired."""

    def __init__(self, secret: str, algorithm: str, issuer: str):
        self.secret = secret
        self.algorithm = algorithm
        self.issuer = issuer

    def verify(self, token: Optional[str]) -> Identity:
        if not token:
            raise Unauthenticated("Missing bearer token")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("token_expired")
            raise Expired("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning("token_invalid", error=str(e))
            raise Unauthenticated("Invalid token")

        try:
            user_id = int(payload["sub"])
            role = UserRole(payload.get("role", UserRole.USER.value))
        except (TypeError, ValueError):
            raise Unauthenticated("Invalid token payload")

        return Identity(user_id=user_id, username=payload.get("username", ""), role=role)


def get_identity_verifier() -> IdentityVerifier:
    settings = get_settings()
    return IdentityVerifier(settings.SECRET_KEY, settings.ALGORITHM, settings.TOKEN_ISSUER)
