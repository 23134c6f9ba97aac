"""
Comment model: at most one per (user, activity), overwritten on re-submission.
"""

from sqlalchemy import Column, Integer, Text, ForeignKey, UniqueConstraint, CheckConstraint

from enrollment.db.base import Base, TimestampMixin


class Comment(Base, TimestampMixin):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False, default=5)
    content = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "activity_id", name="uq_comments_user_activity"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="check_comment_rating"),
    )

    def __repr__(self) -> str:
        return f"<Comment(id={self.id}, user={self.user_id}, activity={self.activity_id}, rating={self.rating})>"
