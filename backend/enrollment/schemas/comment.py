"""
Pydantic schemas for activity comments.
"""

from datetime import datetime
from pydantic import BaseModel, Field

from enrollment.schemas.user import CommentAuthor

MIN_RATING = 1
MAX_RATING = 5
MIN_CONTENT_LENGTH = 5
MAX_CONTENT_LENGTH = 500


class CommentCreate(BaseModel):
    rating: int = Field(..., ge=MIN_RATING, le=MAX_RATING)
    content: str = Field(..., min_length=MIN_CONTENT_LENGTH, max_length=MAX_CONTENT_LENGTH)


class CommentResponse(BaseModel):
    id: int
    user: CommentAuthor
    rating: int
    content: str
    created_at: datetime
    updated_at: datetime


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]
    total: int
    page: int
    limit: int
