"""
Typed failures raised by the enrollment engine and its collaborators.

Every error carries a stable `kind` (safe to branch on in clients) and a
human-readable message. The HTTP layer renders them through a single
exception handler; nothing here knows about FastAPI.

Business outcomes (capacity, authorization, illegal transitions) are never
retried. Store conflicts and transient faults are retried by the unit of
work and only surface as `Unavailable` once retries are exhausted.
"""

from fastapi import status


class EnrollmentError(Exception):
    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class NotFound(EnrollmentError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class NotRegistered(EnrollmentError):
    kind = "not_registered"
    status_code = status.HTTP_403_FORBIDDEN


class Forbidden(EnrollmentError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class CapacityExceeded(EnrollmentError):
    kind = "capacity_exceeded"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(EnrollmentError):
    kind = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class InvalidArgument(EnrollmentError):
    kind = "invalid_argument"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthenticated(EnrollmentError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class Expired(EnrollmentError):
    kind = "expired"
    status_code = status.HTTP_401_UNAUTHORIZED


class Unavailable(EnrollmentError):
    kind = "unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DuplicateEntry(Exception):
    """
    Raised by a store when a uniqueness constraint rejects a write.

    Internal to the store/unit-of-work boundary: the unit of work rolls the
    transaction back and re-runs the step, which then observes the row that
    won the race.
    """
