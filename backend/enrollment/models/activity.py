"""
Activity model with participant capacity tracking.

Key design decisions:
- `current_participants` is denormalized (avoids COUNT on registrations) and only
  ever changed through single conditional UPDATE statements
- CHECK constraints keep the counter within [0, max_participants] at the DB level
- `version` is bumped on every counter change so readers can detect movement
- Index on `start_time` for the listing query
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Index, CheckConstraint

from enrollment.db.base import Base, TimestampMixin


class ActivityStatus(str, enum.Enum):
    PENDING = "pending"
    OPEN = "open"
    FULL = "full"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ActivityType(str, enum.Enum):
    BASKETBALL = "basketball"
    FOOTBALL = "football"
    BADMINTON = "badminton"
    TENNIS = "tennis"
    SWIMMING = "swimming"
    YOGA = "yoga"
    FITNESS = "fitness"
    OTHER = "other"


class Activity(Base, TimestampMixin):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default=ActivityType.OTHER.value)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(200), nullable=False)
    image_url = Column(Text, nullable=True)
    max_participants = Column(Integer, nullable=False, default=10)
    current_participants = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ActivityStatus.PENDING.value)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("max_participants >= 1", name="check_max_participants_positive"),
        CheckConstraint("current_participants >= 0", name="check_current_participants_non_negative"),
        CheckConstraint("current_participants <= max_participants", name="check_current_lte_max"),
        CheckConstraint("start_time < end_time", name="check_activity_window"),
        CheckConstraint(
            "status IN ('pending', 'open', 'full', 'closed', 'cancelled')",
            name="check_activity_status",
        ),
        Index("ix_activities_start_time", "start_time"),
        Index("ix_activities_status_start_time", "status", "start_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<Activity(id={self.id}, title={self.title}, "
            f"participants={self.current_participants}/{self.max_participants}, status={self.status})>"
        )
