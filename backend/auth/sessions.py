"""
GradeLedger - Session Management

Server-side session store holding the Session Principal for each login.
Sessions enable immediate revocation and activity tracking.

Security:
- Sessions are stored server-side (the cookie only names the session)
- Logout immediately invalidates session
- Sessions expire after an absolute lifetime (SESSION_EXPIRE_HOURS), not sliding
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session as DBSession, select
from starlette.concurrency import run_in_threadpool

from backend.auth.errors import InfrastructureError
from backend.auth.models import Session, User, utcnow
from backend.auth.principal import SessionPrincipal
from backend.auth.tokens import session_lifetime


logger = logging.getLogger("gradeledger.auth.sessions")


class SessionStore:
    """
    Persistence for login sessions.

    Usage:
        sessions = SessionStore(get_session_factory(engine))
        session = await sessions.create_session(principal, origin_ip, agent)
        principal = await sessions.validate_session(session.session_id, principal.id)
    """

    def __init__(self, session_factory: Callable[[], DBSession]):
        self._session_factory = session_factory

    async def _run(self, fn: Callable, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as exc:
            logger.error("Session storage failure in %s: %s", fn.__name__, exc)
            raise InfrastructureError("Session storage failed") from exc

    async def create_session(
        self,
        principal: SessionPrincipal,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Session:
        """
        Create a new server-side session holding the principal.

        Security:
            - Session ID is UUIDv4 (cryptographically random)
            - IP and user-agent kept for audit
            - Expires SESSION_EXPIRE_HOURS after issue, regardless of activity
        """
        now = utcnow()
        session = Session(
            user_id=principal.id,
            principal=principal.model_dump(mode="json"),
            issued_at=now,
            expires_at=now + session_lifetime(),
            last_seen=now,
            is_valid=True,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        def _create() -> Session:
            with self._session_factory() as db:
                db.add(session)
                db.commit()
                db.refresh(session)
                return session

        return await self._run(_create)

    async def validate_session(
        self,
        session_id: UUID,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> Optional[SessionPrincipal]:
        """
        Return the session's principal if the session is still usable.

        Validation checks:
            1. Session exists
            2. Session belongs to user
            3. Session is not invalidated
            4. Session is not expired
        """
        now = now or utcnow()

        def _validate() -> Optional[SessionPrincipal]:
            with self._session_factory() as db:
                statement = select(Session).where(
                    Session.session_id == session_id,
                    Session.user_id == user_id,
                    Session.is_valid == True,  # noqa: E712
                )
                session = db.exec(statement).first()

                if not session:
                    return None

                if now >= session.expires_at:
                    session.is_valid = False
                    db.add(session)
                    db.commit()
                    return None

                session.last_seen = now
                db.add(session)
                db.commit()
                return SessionPrincipal.model_validate(session.principal)

        return await self._run(_validate)

    async def refresh_principal(self, user: User) -> int:
        """
        Push profile changes into every live session of the user.

        Returns:
            Number of sessions refreshed
        """
        def _refresh() -> int:
            with self._session_factory() as db:
                statement = select(Session).where(
                    Session.user_id == user.id,
                    Session.is_valid == True,  # noqa: E712
                )
                count = 0
                for session in db.exec(statement).all():
                    principal = SessionPrincipal.model_validate(session.principal)
                    session.principal = principal.refreshed(user).model_dump(mode="json")
                    db.add(session)
                    count += 1
                db.commit()
                return count

        return await self._run(_refresh)

    async def invalidate_session(self, session_id: UUID) -> bool:
        """
        Invalidate a session (logout).

        Returns:
            True if session was invalidated, False if not found
        """
        def _invalidate() -> bool:
            with self._session_factory() as db:
                result = db.execute(
                    update(Session)
                    .where(Session.session_id == session_id)
                    .values(is_valid=False)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                return result.rowcount > 0

        return await self._run(_invalidate)

    async def invalidate_all_user_sessions(self, user_id: UUID) -> int:
        """
        Invalidate all sessions for a user (force logout everywhere).

        Use cases:
            - Admin deactivation
            - Account compromise
        """
        def _invalidate() -> int:
            with self._session_factory() as db:
                result = db.execute(
                    update(Session)
                    .where(Session.user_id == user_id, Session.is_valid == True)  # noqa: E712
                    .values(is_valid=False)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                return result.rowcount

        return await self._run(_invalidate)

    async def get_active_sessions(self, user_id: UUID) -> List[Session]:
        """All unexpired, valid sessions for a user."""
        def _list() -> List[Session]:
            with self._session_factory() as db:
                statement = select(Session).where(
                    Session.user_id == user_id,
                    Session.is_valid == True,  # noqa: E712
                    Session.expires_at > utcnow(),
                )
                return list(db.exec(statement).all())

        return await self._run(_list)

    async def cleanup_expired_sessions(self) -> int:
        """
        Mark all expired sessions as invalid.

        Should be run periodically (e.g., daily cron job).
        """
        def _cleanup() -> int:
            with self._session_factory() as db:
                result = db.execute(
                    update(Session)
                    .where(Session.is_valid == True, Session.expires_at < utcnow())  # noqa: E712
                    .values(is_valid=False)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                return result.rowcount

        return await self._run(_cleanup)
