"""
GradeLedger - Persistence Stores

Repository classes over SQLModel for the records the core reads and writes:
users, courses/enrollments and notifications. Route, service and gate code
never touches SQL directly.

Concurrency:
- Every public method is async; the blocking SQLModel work runs in
  Starlette's thread pool so no request blocks the event loop.
- Writes are field-scoped UPDATE statements, never full-record overwrites.
- Lockout increments and last-admin protection are single conditional
  updates, so concurrent requests cannot under-count failures or deactivate
  every admin.

Errors:
- SQLAlchemy failures are re-raised as InfrastructureError.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session as DBSession, select
from starlette.concurrency import run_in_threadpool

from backend.auth.errors import DuplicateEmail, InfrastructureError, ValidationFailed
from backend.auth.models import (
    ApprovalStatus,
    Course,
    Enrollment,
    EnrollmentStatus,
    Notification,
    Role,
    User,
    utcnow,
)


logger = logging.getLogger("gradeledger.store")

# Columns update_partial refuses to touch
IMMUTABLE_USER_FIELDS = frozenset({"id", "role", "created_at"})


class _SQLStore:
    """Shared plumbing: session handling and error translation."""

    def __init__(self, session_factory: Callable[[], DBSession]):
        self._session_factory = session_factory

    async def _run(self, fn: Callable, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Storage failure in %s: %s", fn.__name__, exc)
            raise InfrastructureError("Storage operation failed") from exc


class UserStore(_SQLStore):
    """
    Repository for User records.

    Usage:
        store = UserStore(get_session_factory(engine))
        user = await store.find_by_email("Ada@Example.com")
        await store.update_partial(user.id, {"first_name": "Ada"})
    """

    async def find_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup."""
        def _find() -> Optional[User]:
            with self._session_factory() as db:
                statement = select(User).where(func.lower(User.email) == email.strip().lower())
                return db.exec(statement).first()

        return await self._run(_find)

    async def find_by_id(self, user_id: UUID) -> Optional[User]:
        def _find() -> Optional[User]:
            with self._session_factory() as db:
                return db.get(User, user_id)

        return await self._run(_find)

    async def find_by_student_id(self, student_id: str) -> Optional[User]:
        def _find() -> Optional[User]:
            with self._session_factory() as db:
                return db.exec(select(User).where(User.student_id == student_id)).first()

        return await self._run(_find)

    async def insert(self, user: User) -> User:
        """
        Persist a new user.

        Raises:
            DuplicateEmail: If the email is already registered (race with the
                pre-insert check)
        """
        user.email = user.email.strip().lower()

        def _insert() -> User:
            with self._session_factory() as db:
                db.add(user)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise
                db.refresh(user)
                return user

        try:
            return await self._run(_insert)
        except IntegrityError as exc:
            if "email" in str(exc.orig).lower():
                raise DuplicateEmail() from exc
            raise InfrastructureError("Storage operation failed") from exc

    async def update_partial(self, user_id: UUID, fields: Dict[str, Any]) -> Optional[User]:
        """
        Update only the given columns and return the fresh record.

        Raises:
            ValueError: If an immutable column (id, role, created_at) is included
        """
        forbidden = IMMUTABLE_USER_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"Immutable user fields: {sorted(forbidden)}")

        values = dict(fields)
        values["updated_at"] = utcnow()

        def _update() -> Optional[User]:
            with self._session_factory() as db:
                db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                return db.get(User, user_id)

        return await self._run(_update)

    async def list_all(self) -> List[User]:
        def _list() -> List[User]:
            with self._session_factory() as db:
                return list(db.exec(select(User).order_by(User.created_at.desc())).all())

        return await self._run(_list)

    async def list_by_role(self, role: Role) -> List[User]:
        def _list() -> List[User]:
            with self._session_factory() as db:
                statement = select(User).where(User.role == role).order_by(User.created_at.desc())
                return list(db.exec(statement).all())

        return await self._run(_list)

    async def list_pending(self) -> List[User]:
        def _list() -> List[User]:
            with self._session_factory() as db:
                statement = (
                    select(User)
                    .where(User.approval_status == ApprovalStatus.PENDING)
                    .order_by(User.created_at.desc())
                )
                return list(db.exec(statement).all())

        return await self._run(_list)

    async def count_active_by_role(self, role: Role) -> int:
        def _count() -> int:
            with self._session_factory() as db:
                statement = (
                    select(func.count())
                    .select_from(User)
                    .where(User.role == role, User.is_active == True)  # noqa: E712
                )
                return db.exec(statement).one()

        return await self._run(_count)

    async def record_failed_login(
        self,
        user_id: UUID,
        max_attempts: int,
        lock_until: Optional[datetime],
    ) -> Optional[User]:
        """
        Increment the failure counter and lock once it reaches max_attempts.

        Both statements run in one transaction; the increment is computed by
        the database, not from a value read earlier. Pass lock_until=None to
        count without ever locking.
        """
        def _record() -> Optional[User]:
            with self._session_factory() as db:
                db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(login_attempts=User.login_attempts + 1, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if lock_until is not None:
                    db.execute(
                        update(User)
                        .where(User.id == user_id, User.login_attempts >= max_attempts)
                        .values(locked_until=lock_until)
                        .execution_options(synchronize_session=False)
                    )
                db.commit()
                return db.get(User, user_id)

        return await self._run(_record)

    async def record_successful_login(self, user_id: UUID, now: datetime) -> Optional[User]:
        return await self.update_partial(
            user_id, {"login_attempts": 0, "locked_until": None, "last_login": now}
        )

    async def deactivate_guarded(self, user_id: UUID) -> bool:
        """
        Deactivate a user unless it is the last active admin.

        The active-admin count is evaluated inside the UPDATE itself.

        Returns:
            True if the row was updated, False if the guard blocked it
        """
        users = User.__table__
        admins = users.alias("active_admins")
        active_admin_count = (
            select(func.count())
            .select_from(admins)
            .where(admins.c.role == Role.ADMIN, admins.c.is_active == True)  # noqa: E712
            .scalar_subquery()
        )
        statement = (
            update(users)
            .where(
                users.c.id == user_id,
                or_(users.c.role != Role.ADMIN, active_admin_count > 1),
            )
            .values(is_active=False, updated_at=utcnow())
        )

        def _deactivate() -> bool:
            with self._session_factory() as db:
                result = db.execute(statement)
                db.commit()
                return result.rowcount == 1

        return await self._run(_deactivate)


class ResourceStore(_SQLStore):
    """
    Courses and enrollments, as far as ownership checks and the admin
    course handlers need them.
    """

    async def find_course_by_id(self, course_id: UUID) -> Optional[Course]:
        def _find() -> Optional[Course]:
            with self._session_factory() as db:
                return db.get(Course, course_id)

        return await self._run(_find)

    async def list_active_enrollments_for_student(self, student_id: UUID) -> List[Enrollment]:
        def _list() -> List[Enrollment]:
            with self._session_factory() as db:
                statement = select(Enrollment).where(
                    Enrollment.student_id == student_id,
                    Enrollment.status == EnrollmentStatus.ACTIVE,
                )
                return list(db.exec(statement).all())

        return await self._run(_list)

    async def list_course_enrollments(self, course_id: UUID) -> List[Enrollment]:
        def _list() -> List[Enrollment]:
            with self._session_factory() as db:
                statement = select(Enrollment).where(
                    Enrollment.course_id == course_id,
                    Enrollment.status == EnrollmentStatus.ACTIVE,
                )
                return list(db.exec(statement).all())

        return await self._run(_list)

    async def create_course(self, course: Course) -> Course:
        def _insert() -> Course:
            with self._session_factory() as db:
                db.add(course)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise
                db.refresh(course)
                return course

        try:
            return await self._run(_insert)
        except IntegrityError as exc:
            raise ValidationFailed("A course with this code already exists") from exc

    async def enroll_student(self, enrollment: Enrollment) -> Enrollment:
        def _insert() -> Enrollment:
            with self._session_factory() as db:
                db.add(enrollment)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise
                db.refresh(enrollment)
                return enrollment

        try:
            return await self._run(_insert)
        except IntegrityError as exc:
            raise ValidationFailed("Student is already enrolled in this course") from exc


class NotificationStore(_SQLStore):
    """In-app notifications; user_id None addresses all admins."""

    async def create(self, notification: Notification) -> Notification:
        def _insert() -> Notification:
            with self._session_factory() as db:
                db.add(notification)
                db.commit()
                db.refresh(notification)
                return notification

        return await self._run(_insert)

    async def list_for_admins(self, unread_only: bool = False) -> List[Notification]:
        def _list() -> List[Notification]:
            with self._session_factory() as db:
                statement = select(Notification).where(Notification.user_id == None)  # noqa: E711
                if unread_only:
                    statement = statement.where(Notification.is_read == False)  # noqa: E712
                return list(db.exec(statement.order_by(Notification.created_at.desc())).all())

        return await self._run(_list)
