"""
GradeLedger - Authentication Service

Turns an email/password pair into a Session Principal.

Order of checks (each failure stops the flow):
1. Look up the user by email (miss -> InvalidCredentials)
2. Reject locked accounts before touching the password (AccountLocked)
3. Verify the password (mismatch -> count failure, InvalidCredentials)
4. Reject deactivated accounts, only after a correct password (AccountDeactivated)
5. Reset lockout state
6. Build the principal

Every authenticate() call records exactly one audit event.
"""

import logging
from typing import Optional, Tuple
from uuid import UUID

from starlette.concurrency import run_in_threadpool

from backend.audit.models import AuditAction, Origin
from backend.audit.recorder import AuditRecorder
from backend.auth.errors import AccountDeactivated, AccountLocked, InvalidCredentials
from backend.auth.lockout import LockoutTracker
from backend.auth.models import Session
from backend.auth.password import hash_password, needs_rehash, verify_password
from backend.auth.principal import SessionPrincipal
from backend.auth.sessions import SessionStore
from backend.auth.store import UserStore


logger = logging.getLogger("gradeledger.auth")


class AuthService:
    """
    Authentication and logout.

    Usage:
        service = AuthService(users, sessions, LockoutTracker(users), recorder)
        principal, session = await service.login(email, password, origin)
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        lockout: LockoutTracker,
        recorder: AuditRecorder,
    ):
        self._users = users
        self._sessions = sessions
        self._lockout = lockout
        self._recorder = recorder

    async def authenticate(
        self,
        email: str,
        password: str,
        origin: Optional[Origin] = None,
    ) -> SessionPrincipal:
        """
        Verify credentials and return the principal for a new session.

        Raises:
            InvalidCredentials: Unknown email or wrong password
            AccountLocked: Too many recent failures
            AccountDeactivated: Correct password on a deactivated account
        """
        user = await self._users.find_by_email(email)
        if user is None:
            self._record_failure(None, email, "user_not_found", origin)
            raise InvalidCredentials()

        remaining = self._lockout.minutes_remaining(user)
        if remaining is not None:
            self._record_failure(user.id, email, "account_locked", origin)
            raise AccountLocked(remaining)

        if not await run_in_threadpool(verify_password, password, user.password_hash):
            await self._lockout.record_failure(user)
            self._record_failure(user.id, email, "invalid_password", origin)
            raise InvalidCredentials()

        if not user.is_active:
            self._record_failure(user.id, email, "account_deactivated", origin)
            raise AccountDeactivated()

        user = await self._lockout.record_success(user)

        # Work factor upgrade
        if needs_rehash(user.password_hash):
            new_hash = await run_in_threadpool(hash_password, password)
            await self._users.update_partial(user.id, {"password_hash": new_hash})

        principal = SessionPrincipal.from_user(user)
        self._recorder.record(
            principal.id,
            AuditAction.AUTH_LOGIN_SUCCESS,
            table_name="users",
            record_id=principal.id,
            new_values={"email": principal.email},
            origin=origin,
        )
        logger.info("User %s logged in", principal.id)
        return principal

    async def login(
        self,
        email: str,
        password: str,
        origin: Optional[Origin] = None,
    ) -> Tuple[SessionPrincipal, Session]:
        """Authenticate and persist the principal in a new server-side session."""
        origin = origin or Origin()
        principal = await self.authenticate(email, password, origin)
        session = await self._sessions.create_session(
            principal,
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )
        return principal, session

    async def logout(
        self,
        principal: SessionPrincipal,
        session_id: UUID,
        origin: Optional[Origin] = None,
    ) -> bool:
        invalidated = await self._sessions.invalidate_session(session_id)
        self._recorder.record(
            principal.id,
            AuditAction.AUTH_LOGOUT,
            table_name="sessions",
            record_id=session_id,
            origin=origin,
        )
        return invalidated

    def _record_failure(
        self,
        user_id: Optional[UUID],
        email: str,
        reason: str,
        origin: Optional[Origin],
    ) -> None:
        logger.info("Login failed for %s: %s", user_id or "unknown user", reason)
        self._recorder.record(
            user_id,
            AuditAction.AUTH_LOGIN_FAILED,
            table_name="users",
            record_id=user_id,
            old_values={"email": email, "reason": reason},
            origin=origin,
        )
