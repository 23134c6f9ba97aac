"""
Registration model: a user's claim on one slot of an activity's capacity.

Key design decisions:
- Withdrawal is a soft cancel (status CANCELLED); rows are never deleted, so
  "has ever registered" stays answerable for the comment precondition
- A partial unique index allows at most one non-cancelled registration per
  (user, activity) pair, which holds even under concurrent inserts
- Foreign keys only; no ORM relationships back to users or activities
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, Index, CheckConstraint, text

from enrollment.db.base import Base, TimestampMixin


class RegistrationStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


ACTIVE_REGISTRATION = text("status <> 'CANCELLED'")


class Registration(Base, TimestampMixin):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=RegistrationStatus.PENDING.value)
    notes = Column(String(200), nullable=True)

    __table_args__ = (
        Index(
            "uq_registrations_active_user_activity",
            "user_id",
            "activity_id",
            unique=True,
            postgresql_where=ACTIVE_REGISTRATION,
            sqlite_where=ACTIVE_REGISTRATION,
        ),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')",
            name="check_registration_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Registration(id={self.id}, user={self.user_id}, "
            f"activity={self.activity_id}, status={self.status})>"
        )
