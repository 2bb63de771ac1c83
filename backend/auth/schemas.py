"""
GradeLedger - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.

Password strength is not checked here: the lifecycle manager applies the
full policy and reports WeakPassword with its own message.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator
import re

from backend.auth.models import ApprovalStatus, Role


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


def normalize_email(value: str) -> str:
    """Basic email format validation (allows .local for development)."""
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value.lower()


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")

    @validator("email")
    def email_format(cls, v):
        return normalize_email(v)


class LoginResponse(BaseModel):
    """Response body for successful login."""
    access_token: str = Field(..., description="Signed session token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Seconds until the session expires")
    session_id: str = Field(..., description="Server-side session ID")
    user: "UserResponse"


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    email: str
    password: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: Role = Field(default=Role.STUDENT)

    @validator("email")
    def email_format(cls, v):
        return normalize_email(v)

    @validator("first_name", "last_name")
    def strip_names(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v


class CreateUserRequest(RegisterRequest):
    """Request body for POST /admin/users. Any role, approved immediately."""
    pass


class ProfileUpdateRequest(BaseModel):
    """Request body for PATCH /auth/me. Only names are editable."""
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @validator("first_name", "last_name")
    def strip_names(cls, v):
        return v.strip() if v is not None else v


class PasswordChangeRequest(BaseModel):
    """Request body for POST /auth/password."""
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class RejectRequest(BaseModel):
    """Request body for POST /admin/users/{id}/reject."""
    reason: str = Field(..., min_length=5, max_length=1000, description="Shown to the rejected user")

    @validator("reason")
    def strip_reason(cls, v):
        v = v.strip()
        if len(v) < 5:
            raise ValueError("Rejection reason must be at least 5 characters")
        return v


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout (optional)."""
    all_sessions: bool = Field(
        default=False,
        description="Invalidate all sessions (logout everywhere)"
    )


class LogoutResponse(BaseModel):
    """Response body for logout."""
    message: str = Field(default="Session invalidated")
    sessions_invalidated: int = Field(default=1)


class UserResponse(BaseModel):
    """Public view of a user account. Never includes password or lock state."""
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: Role
    student_id: Optional[str] = None
    approval_status: ApprovalStatus
    rejection_reason: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionInfo(BaseModel):
    """Session information for user display."""
    session_id: UUID
    issued_at: datetime
    last_seen: datetime
    expires_at: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]
    is_current: bool = False

    class Config:
        from_attributes = True


class ActiveSessionsResponse(BaseModel):
    """Response body for GET /auth/sessions."""
    sessions: list[SessionInfo]
    total: int


class EmailCheckRequest(BaseModel):
    """Request body for POST /auth/validate/email."""
    email: str

    @validator("email")
    def email_format(cls, v):
        return normalize_email(v)


class EmailValidationResponse(BaseModel):
    """Response body for POST /auth/validate/email."""
    email: str
    available: bool


class MessageResponse(BaseModel):
    message: str


class ApprovalStatusResponse(BaseModel):
    """Response body for GET /auth/pending-approval."""
    approval_status: ApprovalStatus
    rejection_reason: Optional[str] = None
    message: str
    flash: Optional[dict] = None


class LoginPageResponse(BaseModel):
    """Response body for GET /auth/login."""
    message: str
    login_endpoint: str
    flash: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    error_code: Optional[str] = None
    request_id: Optional[str] = None


LoginResponse.model_rebuild()
