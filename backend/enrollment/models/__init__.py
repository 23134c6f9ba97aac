from enrollment.models.user import User, UserRole
from enrollment.models.activity import Activity, ActivityStatus, ActivityType
from enrollment.models.registration import Registration, RegistrationStatus
from enrollment.models.comment import Comment

__all__ = [
    "User", "UserRole",
    "Activity", "ActivityStatus", "ActivityType",
    "Registration", "RegistrationStatus",
    "Comment",
]
