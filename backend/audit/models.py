"""
GradeLedger - Audit Models

The append-only audit_logs table plus the small value types used to build
and query audit events.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column, DateTime, String, Text

from backend.auth.models import utcnow


class AuditAction(str, Enum):
    """Action labels written by the core. Callers may also pass free-form labels."""
    USER_REGISTERED = "USER_REGISTERED"
    USER_CREATED = "USER_CREATED"
    USER_APPROVED = "USER_APPROVED"
    USER_REJECTED = "USER_REJECTED"
    USER_ACTIVATED = "USER_ACTIVATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    USER_DEACTIVATION_REFUSED = "USER_DEACTIVATION_REFUSED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
    AUTH_LOGIN_SUCCESS = "AUTH_LOGIN_SUCCESS"
    AUTH_LOGIN_FAILED = "AUTH_LOGIN_FAILED"
    AUTH_LOGOUT = "AUTH_LOGOUT"
    SESSIONS_REVOKED = "SESSIONS_REVOKED"
    COURSE_CREATED = "COURSE_CREATED"
    STUDENT_ENROLLED = "STUDENT_ENROLLED"


class Origin(BaseModel):
    """Network origin of the request that triggered an audited action."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLog(SQLModel, table=True):
    """
    One immutable audit event.

    Rows are only ever inserted; nothing in the application updates or
    deletes them.
    """
    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, nullable=True, index=True)
    action: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    table_name: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    record_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    old_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    new_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(45), nullable=True))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, index=True),
    )


class AuditQuery(BaseModel):
    """Filters for browsing the audit trail."""
    user_id: Optional[UUID] = None
    action: Optional[str] = None
    table_name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = PydanticField(default=1, ge=1)
    limit: int = PydanticField(default=50, ge=1, le=500)
