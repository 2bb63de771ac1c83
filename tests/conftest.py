"""
GradeLedger - Test Configuration

Pytest fixtures for store, service and HTTP tests.
Provides an in-memory database, wired services, user factories and a
test client.
"""

import os

# Settings are read at import time; keep hashing cheap and the key stable
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Generator, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlmodel import Session

from backend.app import create_app
from backend.audit.recorder import AuditRecorder
from backend.audit.store import AuditStore
from backend.auth.database import get_engine, get_session_factory, init_db
from backend.auth.lifecycle import AccountLifecycleManager
from backend.auth.lockout import LockoutTracker
from backend.auth.models import ApprovalStatus, Role, User
from backend.auth.password import hash_password
from backend.auth.service import AuthService
from backend.auth.sessions import SessionStore
from backend.auth.store import NotificationStore, ResourceStore, UserStore


# In-memory SQLite, shared across threads through StaticPool
TEST_DATABASE_URL = "sqlite://"

DEFAULT_PASSWORD = "Passw0rd!"


def insert_user(
    session_factory,
    email: str,
    role: Role = Role.STUDENT,
    password: str = DEFAULT_PASSWORD,
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
    is_active: bool = True,
    first_name: str = "Test",
    last_name: Optional[str] = None,
    **fields,
) -> User:
    """Write a user straight to the database, bypassing the lifecycle manager."""
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name or role.value.capitalize(),
        role=role,
        approval_status=approval_status,
        is_active=is_active,
        **fields,
    )
    with session_factory() as db:
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


# =============================================================================
# Database and stores
# =============================================================================

@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = get_engine(TEST_DATABASE_URL)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return get_session_factory(test_engine)


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def user_store(session_factory) -> UserStore:
    return UserStore(session_factory)


@pytest.fixture
def resource_store(session_factory) -> ResourceStore:
    return ResourceStore(session_factory)


@pytest.fixture
def notification_store(session_factory) -> NotificationStore:
    return NotificationStore(session_factory)


@pytest.fixture
def session_store(session_factory) -> SessionStore:
    return SessionStore(session_factory)


@pytest.fixture
def audit_store(session_factory) -> AuditStore:
    return AuditStore(session_factory)


@pytest_asyncio.fixture
async def recorder(audit_store):
    """Recorder whose drain task is stopped (and drained) after the test."""
    recorder = AuditRecorder(audit_store)
    yield recorder
    await recorder.stop()


@pytest.fixture
def lockout(user_store) -> LockoutTracker:
    return LockoutTracker(user_store, max_attempts=5, lockout_minutes=15)


@pytest.fixture
def auth_service(user_store, session_store, lockout, recorder) -> AuthService:
    return AuthService(user_store, session_store, lockout, recorder)


@pytest.fixture
def lifecycle(user_store, notification_store, recorder) -> AccountLifecycleManager:
    return AccountLifecycleManager(user_store, notification_store, recorder)


# =============================================================================
# Users
# =============================================================================

@pytest.fixture
def admin_user(session_factory) -> User:
    return insert_user(session_factory, "admin@test.com", Role.ADMIN)


@pytest.fixture
def lecturer_user(session_factory) -> User:
    return insert_user(session_factory, "lecturer@test.com", Role.LECTURER)


@pytest.fixture
def student_user(session_factory) -> User:
    return insert_user(session_factory, "student@test.com", Role.STUDENT, student_id="STU20260001")


@pytest.fixture
def pending_student(session_factory) -> User:
    return insert_user(
        session_factory,
        "pending@test.com",
        Role.STUDENT,
        approval_status=ApprovalStatus.PENDING,
        student_id="STU20260002",
    )


@pytest.fixture
def inactive_user(session_factory) -> User:
    return insert_user(session_factory, "inactive@test.com", Role.LECTURER, is_active=False)


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture(scope="function")
def client() -> Generator[TestClient, None, None]:
    """Test client over a fresh in-memory database (lifespan runs)."""
    app = create_app(TEST_DATABASE_URL)
    with TestClient(app) as c:
        yield c


def seed(client: TestClient, email: str, role: Role = Role.STUDENT, **kwargs) -> User:
    """Insert a user into the client's database."""
    return insert_user(client.app.state.db_session_factory, email, role, **kwargs)


def login_user(client: TestClient, email: str, password: str = DEFAULT_PASSWORD) -> Optional[dict]:
    """Helper function to login and return the response body."""
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    return response.json() if response.status_code == 200 else None


def auth_headers(access_token: str) -> dict:
    """Authorization header for API-style requests."""
    return {"Authorization": f"Bearer {access_token}"}


def flush_audit(client: TestClient) -> None:
    """Wait for queued audit events to reach the database."""
    client.portal.call(client.app.state.recorder.flush)
