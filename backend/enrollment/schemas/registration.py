"""
Pydantic schemas for registration-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from enrollment.models.registration import RegistrationStatus
from enrollment.schemas.activity import ActivitySummary
from enrollment.schemas.user import UserSummary

MAX_NOTES_LENGTH = 200


class RegistrationCreate(BaseModel):
    activity_id: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


class RegistrationUpdate(BaseModel):
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)


class RegistrationStatusUpdate(BaseModel):
    # Plain string: the engine owns enum validation and reports InvalidArgument
    status: str


class RegistrationResponse(BaseModel):
    id: int
    status: RegistrationStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    activity: ActivitySummary
    user: UserSummary


class RegistrationListResponse(BaseModel):
    registrations: list[RegistrationResponse]
    total: int
    page: int
    limit: int
