"""
Pydantic schemas for activity-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from enrollment.models.activity import ActivityStatus, ActivityType
from enrollment.schemas.comment import CommentResponse


class ActivityCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    type: ActivityType = ActivityType.OTHER
    start_time: datetime
    end_time: datetime
    location: str = Field(..., min_length=2, max_length=200)
    max_participants: int = Field(..., ge=1, le=100000)
    image_url: Optional[str] = Field(None, max_length=2000)
    status: ActivityStatus = ActivityStatus.OPEN

    @model_validator(mode="after")
    def check_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ActivityUpdate(BaseModel):
    """Partial edit. Status changes go through ActivityStatusUpdate instead."""

    title: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    type: Optional[ActivityType] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = Field(None, min_length=2, max_length=200)
    max_participants: Optional[int] = Field(None, ge=1, le=100000)
    image_url: Optional[str] = Field(None, max_length=2000)


class ActivityStatusUpdate(BaseModel):
    status: ActivityStatus
    expected_status: Optional[ActivityStatus] = None


class ActivityResponse(BaseModel):
    id: int
    title: str
    description: str
    type: ActivityType
    start_time: datetime
    end_time: datetime
    location: str
    image_url: Optional[str]
    max_participants: int
    current_participants: int
    status: ActivityStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ActivityDetailResponse(ActivityResponse):
    average_rating: float = 0.0
    comments: list[CommentResponse] = []


class ActivityListResponse(BaseModel):
    activities: list[ActivityResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class ActivitySummary(BaseModel):
    """Activity fields embedded in a registration projection."""

    id: int
    title: str
    type: ActivityType
    start_time: datetime
    end_time: datetime
    location: str
    image_url: Optional[str]

    model_config = {"from_attributes": True}
