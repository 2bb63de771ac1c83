"""
GradeLedger - Session Principal

The authenticated identity attached to a login session. Every authorization
and lifecycle function receives it (or None) as an explicit argument.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from backend.auth.models import ApprovalStatus, Role, User


# Fields copied into live sessions after a profile edit or approval decision
REFRESHABLE_FIELDS = ("email", "first_name", "last_name", "approval_status")


class SessionPrincipal(BaseModel):
    """
    Ephemeral view of a User for the lifetime of a session.

    Never carries the password hash, the failed-login counter or the lock
    timestamp.
    """
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: Role
    approval_status: ApprovalStatus
    student_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True

    @classmethod
    def from_user(cls, user: User) -> "SessionPrincipal":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            approval_status=user.approval_status,
            student_id=user.student_id,
            is_active=user.is_active,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def refreshed(self, user: User) -> "SessionPrincipal":
        """Copy with the profile fields taken from a freshly loaded user."""
        return self.model_copy(
            update={field: getattr(user, field) for field in REFRESHABLE_FIELDS}
        )
