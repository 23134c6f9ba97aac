from enrollment.schemas.user import (
    UserSummary, CommentAuthor, UserProfileResponse, UserPublicProfile, UserProfileUpdate,
)
from enrollment.schemas.comment import CommentCreate, CommentResponse, CommentListResponse
from enrollment.schemas.activity import (
    ActivityCreate, ActivityUpdate, ActivityStatusUpdate, ActivityResponse, ActivityDetailResponse,
    ActivityListResponse, ActivitySummary,
)
from enrollment.schemas.registration import (
    RegistrationCreate, RegistrationUpdate, RegistrationStatusUpdate,
    RegistrationResponse, RegistrationListResponse,
)

__all__ = [
    "UserSummary", "CommentAuthor", "UserProfileResponse", "UserPublicProfile", "UserProfileUpdate",
    "CommentCreate", "CommentResponse", "CommentListResponse",
    "ActivityCreate", "ActivityUpdate", "ActivityStatusUpdate", "ActivityResponse", "ActivityDetailResponse",
    "ActivityListResponse", "ActivitySummary",
    "RegistrationCreate", "RegistrationUpdate", "RegistrationStatusUpdate",
    "RegistrationResponse", "RegistrationListResponse",
]
