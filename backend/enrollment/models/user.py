"""
User model. Users are referenced by registrations and comments, never owned by them.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, CheckConstraint

from enrollment.db.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    real_name = Column(String(50), nullable=True)
    phone = Column(String(20), nullable=True)
    avatar = Column(Text, nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')", name="check_user_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
