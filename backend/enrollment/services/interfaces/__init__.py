"""
Service interfaces for dependency inversion.
Allows swapping store implementations without changing business logic.
"""

from .stores import (
    ActivityStore,
    RegistrationStore,
    CommentStore,
    UserStore,
    UnitOfWork,
    RegistrationRow,
    CommentRow,
)

__all__ = [
    'ActivityStore',
    'RegistrationStore',
    'CommentStore',
    'UserStore',
    'UnitOfWork',
    'RegistrationRow',
    'CommentRow',
]
