"""
GradeLedger - Database Models

SQLModel-based models for accounts, login sessions and the course/enrollment
records the authorization gate inspects.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only
- Sessions are server-controlled for immediate revocation
- All timestamps in UTC (naive, so SQLite round-trips compare cleanly)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Text,
    UniqueConstraint,
)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """
    User roles.

    Fixed at account creation; never changed afterwards.
    """
    ADMIN = "admin"
    LECTURER = "lecturer"
    STUDENT = "student"


class ApprovalStatus(str, Enum):
    """Account approval gate, independent of role and of is_active."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    DROPPED = "dropped"
    COMPLETED = "completed"


class User(SQLModel, table=True):
    """
    User account for authentication and authorization.

    Attributes:
        id: Unique identifier (UUIDv4)
        email: Login identifier (unique, stored lower-cased)
        password_hash: bcrypt hash (never store plaintext)
        role: admin, lecturer or student
        student_id: Generated identifier for students (unique when present)
        approval_status: pending until an admin approves or rejects
        approved_by: Admin who made the approval decision
        approved_at: When the decision was made
        rejection_reason: Present only when rejected
        is_active: Deactivated users cannot log in, even if approved
        login_attempts: Consecutive failed logins
        locked_until: End of a temporary lock (null when unlocked)
        last_login: Last successful authentication
    """
    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique user identifier"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="User email address (login identifier)"
    )
    password_hash: str = Field(
        sa_column=Column(String(255), nullable=False),
        description="bcrypt password hash"
    )
    first_name: str = Field(sa_column=Column(String(100), nullable=False))
    last_name: str = Field(sa_column=Column(String(100), nullable=False))
    role: Role = Field(
        sa_column=Column(SQLEnum(Role), nullable=False, index=True),
        description="User role"
    )
    student_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(50), unique=True, index=True, nullable=True),
    )
    approval_status: ApprovalStatus = Field(
        default=ApprovalStatus.PENDING,
        sa_column=Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING),
    )
    approved_by: Optional[UUID] = Field(default=None, nullable=True)
    approved_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    rejection_reason: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True),
        description="Whether user can authenticate"
    )
    login_attempts: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    locked_until: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    last_login: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
        description="Account creation timestamp"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
        description="Last update timestamp"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Session(SQLModel, table=True):
    """
    Server-side login session.

    Holds the Session Principal snapshot for the lifetime of the session.
    Tokens are validated against active sessions, so revoking a session
    immediately invalidates the browser cookie bound to it.

    Attributes:
        session_id: Unique session identifier (UUIDv4)
        user_id: Foreign key to user
        principal: Serialized SessionPrincipal
        issued_at: Session creation timestamp
        expires_at: Absolute expiry (issued_at + SESSION_EXPIRE_HOURS)
        last_seen: Last activity timestamp
        is_valid: Whether session is active (false after logout)
        ip_address: Client IP for audit
        user_agent: Client user-agent for audit
    """
    __tablename__ = "sessions"

    session_id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique session identifier"
    )
    user_id: UUID = Field(
        foreign_key="users.id",
        nullable=False,
        index=True,
        description="Reference to user"
    )
    principal: dict = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
        description="Session principal snapshot"
    )
    issued_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime, nullable=False),
        description="Session expiration timestamp"
    )
    last_seen: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    is_valid: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True),
    )
    ip_address: Optional[str] = Field(
        default=None,
        sa_column=Column(String(45), nullable=True),
    )
    user_agent: Optional[str] = Field(
        default=None,
        sa_column=Column(String(512), nullable=True),
    )


class Course(SQLModel, table=True):
    """Course record. The core only reads lecturer_id."""
    __tablename__ = "courses"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    code: str = Field(sa_column=Column(String(20), unique=True, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    lecturer_id: Optional[UUID] = Field(default=None, foreign_key="users.id", nullable=True, index=True)
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )


class Enrollment(SQLModel, table=True):
    """Student participation in a course. The core reads student_id, course_id, status."""
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("student_id", "course_id"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    student_id: UUID = Field(foreign_key="users.id", nullable=False, index=True)
    course_id: UUID = Field(foreign_key="courses.id", nullable=False, index=True)
    status: EnrollmentStatus = Field(
        default=EnrollmentStatus.ACTIVE,
        sa_column=Column(SQLEnum(EnrollmentStatus), nullable=False, default=EnrollmentStatus.ACTIVE),
    )
    enrolled_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )


class Notification(SQLModel, table=True):
    """
    In-app notification.

    A null user_id addresses every administrator.
    """
    __tablename__ = "notifications"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: Optional[UUID] = Field(default=None, foreign_key="users.id", nullable=True, index=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    type: str = Field(default="info", sa_column=Column(String(20), nullable=False, default="info"))
    is_read: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
