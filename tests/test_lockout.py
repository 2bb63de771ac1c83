"""
GradeLedger - Lockout Tracker Tests

Run with: pytest tests/test_lockout.py -v
"""

import asyncio

import pytest
from datetime import timedelta

from sqlalchemy.pool import StaticPool

from backend.audit.recorder import AuditRecorder
from backend.audit.store import AuditStore
from backend.auth import service as service_module
from backend.auth.database import get_engine, get_session_factory, init_db, is_memory_sqlite
from backend.auth.errors import AccountLocked, InvalidCredentials
from backend.auth.lockout import LockoutTracker
from backend.auth.models import Role, utcnow
from backend.auth.service import AuthService
from backend.auth.sessions import SessionStore
from backend.auth.store import UserStore
from tests.conftest import DEFAULT_PASSWORD, insert_user


@pytest.fixture
def verify_spy(monkeypatch):
    """Count calls to the password verifier used by the auth service."""
    calls = []
    real = service_module.verify_password

    def spy(plain, hashed):
        calls.append(plain)
        return real(plain, hashed)

    monkeypatch.setattr(service_module, "verify_password", spy)
    return calls


class TestLockoutTracker:

    def test_minutes_remaining_none_when_unlocked(self, lockout, student_user):
        assert lockout.minutes_remaining(student_user) is None

    def test_minutes_remaining_rounds_up(self, lockout, student_user):
        now = utcnow()
        student_user.locked_until = now + timedelta(minutes=14, seconds=30)

        assert lockout.minutes_remaining(student_user, now=now) == 15

    def test_minutes_remaining_at_least_one(self, lockout, student_user):
        now = utcnow()
        student_user.locked_until = now + timedelta(seconds=5)

        assert lockout.minutes_remaining(student_user, now=now) == 1

    def test_expired_lock_is_not_a_lock(self, lockout, student_user):
        now = utcnow()
        student_user.locked_until = now - timedelta(seconds=1)

        assert lockout.minutes_remaining(student_user, now=now) is None

    @pytest.mark.asyncio
    async def test_locks_at_threshold(self, lockout, student_user):
        user = student_user
        for _ in range(4):
            user = await lockout.record_failure(user)
            assert user.locked_until is None

        user = await lockout.record_failure(user)

        assert user.login_attempts == 5
        assert user.locked_until is not None
        assert lockout.minutes_remaining(user) == 15

    @pytest.mark.asyncio
    async def test_increment_is_computed_by_the_database(self, lockout, student_user):
        """A stale in-memory user never causes an under-count."""
        stale = student_user
        for _ in range(5):
            await lockout.record_failure(stale)

        fresh = await lockout._store.find_by_id(stale.id)
        assert fresh.login_attempts == 5
        assert fresh.locked_until is not None

    @pytest.mark.asyncio
    async def test_success_resets_counter_and_lock(self, lockout, student_user):
        user = student_user
        for _ in range(5):
            user = await lockout.record_failure(user)

        user = await lockout.record_success(user)

        assert user.login_attempts == 0
        assert user.locked_until is None
        assert user.last_login is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_attempts,minutes", [(0, 15), (5, 0), (-1, -1)])
    async def test_disabled_configuration_never_locks(self, user_store, student_user, max_attempts, minutes):
        tracker = LockoutTracker(user_store, max_attempts=max_attempts, lockout_minutes=minutes)
        assert tracker.enabled is False

        user = student_user
        for _ in range(10):
            user = await tracker.record_failure(user)

        assert user.login_attempts == 10
        assert user.locked_until is None


class TestLockoutDuringLogin:

    @pytest.mark.asyncio
    async def test_sixth_attempt_is_locked_even_with_correct_password(
        self, auth_service, student_user, verify_spy
    ):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                await auth_service.authenticate(student_user.email, "Wrong-pass1")
        assert len(verify_spy) == 5

        with pytest.raises(AccountLocked) as exc_info:
            await auth_service.authenticate(student_user.email, DEFAULT_PASSWORD)

        assert exc_info.value.minutes_remaining == 15
        assert "15 minutes" in exc_info.value.message
        # The verifier is not consulted while locked
        assert len(verify_spy) == 5

    @pytest.mark.asyncio
    async def test_locked_attempts_do_not_increment(self, auth_service, user_store, student_user):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                await auth_service.authenticate(student_user.email, "Wrong-pass1")

        for _ in range(3):
            with pytest.raises(AccountLocked):
                await auth_service.authenticate(student_user.email, "Wrong-pass1")

        user = await user_store.find_by_id(student_user.id)
        assert user.login_attempts == 5

    @pytest.mark.asyncio
    async def test_login_allowed_after_lock_expires(self, auth_service, user_store, student_user):
        await user_store.update_partial(student_user.id, {
            "login_attempts": 5,
            "locked_until": utcnow() - timedelta(seconds=1),
        })

        principal = await auth_service.authenticate(student_user.email, DEFAULT_PASSWORD)

        user = await user_store.find_by_id(principal.id)
        assert user.login_attempts == 0
        assert user.locked_until is None

    @pytest.mark.asyncio
    async def test_failures_below_threshold_reset_on_success(self, auth_service, user_store, student_user):
        for _ in range(4):
            with pytest.raises(InvalidCredentials):
                await auth_service.authenticate(student_user.email, "Wrong-pass1")

        await auth_service.authenticate(student_user.email, DEFAULT_PASSWORD)

        user = await user_store.find_by_id(student_user.id)
        assert user.login_attempts == 0

    @pytest.mark.asyncio
    async def test_disabled_lockout_never_blocks_login(
        self, user_store, session_store, recorder, session_factory
    ):
        user = insert_user(session_factory, "nolock@test.com", Role.LECTURER)
        service = AuthService(
            user_store,
            session_store,
            LockoutTracker(user_store, max_attempts=0, lockout_minutes=15),
            recorder,
        )

        for _ in range(8):
            with pytest.raises(InvalidCredentials):
                await service.authenticate(user.email, "Wrong-pass1")

        principal = await service.authenticate(user.email, DEFAULT_PASSWORD)
        assert principal.id == user.id


class TestConcurrentFailures:

    @pytest.fixture
    def file_stores(self, tmp_path):
        """Stores over a SQLite file, where each thread gets its own connection."""
        engine = get_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        init_db(engine)
        factory = get_session_factory(engine)
        yield factory, UserStore(factory), SessionStore(factory), AuditStore(factory)
        engine.dispose()

    def test_file_database_does_not_share_one_connection(self, tmp_path):
        engine = get_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        memory = get_engine("sqlite://")

        assert not isinstance(engine.pool, StaticPool)
        assert isinstance(memory.pool, StaticPool)
        assert is_memory_sqlite("sqlite:///:memory:")
        assert not is_memory_sqlite("sqlite:///./gradeledger.db")
        engine.dispose()
        memory.dispose()

    @pytest.mark.asyncio
    async def test_parallel_failures_are_all_counted(self, file_stores):
        factory, users, sessions, audit = file_stores
        user = insert_user(factory, "busy@test.com", Role.STUDENT)
        recorder = AuditRecorder(audit)
        # High threshold so no attempt is turned away as locked
        service = AuthService(users, sessions, LockoutTracker(users, max_attempts=1000, lockout_minutes=15), recorder)

        try:
            results = await asyncio.gather(
                *(service.authenticate(user.email, "Wrong-pass1") for _ in range(20)),
                return_exceptions=True,
            )
        finally:
            await recorder.stop()

        assert all(isinstance(r, InvalidCredentials) for r in results), results
        stored = await users.find_by_id(user.id)
        assert stored.login_attempts == 20
