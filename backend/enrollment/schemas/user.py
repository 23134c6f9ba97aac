"""
User profiles and the user projections embedded in registration and comment responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

PHONE_PATTERN = r"^[0-9+() -]{3,20}$"


class UserSummary(BaseModel):
    id: int
    username: str
    real_name: Optional[str]
    phone: Optional[str]
    email: str

    model_config = {"from_attributes": True}


class CommentAuthor(BaseModel):
    id: int
    username: str
    avatar: Optional[str]

    model_config = {"from_attributes": True}


class UserProfileResponse(BaseModel):
    """The caller's own profile."""

    id: int
    username: str
    email: str
    real_name: Optional[str]
    phone: Optional[str]
    avatar: Optional[str]
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


class UserPublicProfile(BaseModel):
    """What other users may see. Contact details stay private."""

    id: int
    username: str
    real_name: Optional[str]
    avatar: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class UserProfileUpdate(BaseModel):
    real_name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN, max_length=20)
    avatar: Optional[str] = Field(None, max_length=2000)
