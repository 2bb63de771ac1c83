"""
GradeLedger - Account Lifecycle

Registration, admin approval/rejection, activation toggling and password
changes.

Lifecycle:
    register            -> pending (students and lecturers only)
    create_user (admin) -> approved, any role
    pending -> approved | rejected   by an admin
    active <-> inactive              by an admin, independent of approval

Every state change is handed to the audit recorder. Password material never
appears in an audit snapshot.
"""

import logging
import secrets
from typing import Optional
from uuid import UUID

from starlette.concurrency import run_in_threadpool

from backend.audit.models import AuditAction, Origin
from backend.audit.recorder import AuditRecorder
from backend.auth.errors import (
    DuplicateEmail,
    GradeLedgerError,
    InfrastructureError,
    InvalidCredentials,
    InvalidRole,
    LastAdminProtected,
    NotFound,
    ValidationFailed,
    WeakPassword,
)
from backend.auth.models import ApprovalStatus, Notification, Role, User, utcnow
from backend.auth.password import hash_password, validate_password_strength, verify_password
from backend.auth.schemas import CreateUserRequest, ProfileUpdateRequest, RegisterRequest
from backend.auth.store import NotificationStore, UserStore
from backend.config import settings


logger = logging.getLogger("gradeledger.auth.lifecycle")

SELF_REGISTERABLE_ROLES = frozenset({Role.STUDENT, Role.LECTURER})
STUDENT_ID_ATTEMPTS = 10


def generate_student_id(year: Optional[int] = None, prefix: Optional[str] = None) -> str:
    """
    Build a student identifier: prefix + 4-digit year + 4 random digits.

    Example:
        >>> generate_student_id(2026, "STU")[:7]
        'STU2026'
    """
    year = year or utcnow().year
    prefix = settings.STUDENT_ID_PREFIX if prefix is None else prefix
    return f"{prefix}{year:04d}{secrets.randbelow(10000):04d}"


class AccountLifecycleManager:
    """
    Orchestrates account state transitions.

    Usage:
        manager = AccountLifecycleManager(users, notifications, recorder)
        user = await manager.register(RegisterRequest(...), origin)
        await manager.approve(user.id, admin.id, origin)
    """

    def __init__(
        self,
        users: UserStore,
        notifications: NotificationStore,
        recorder: AuditRecorder,
    ):
        self._users = users
        self._notifications = notifications
        self._recorder = recorder

    # ------------------------------------------------------------------
    # Account creation
    # ------------------------------------------------------------------

    async def register(self, data: RegisterRequest, origin: Optional[Origin] = None) -> User:
        """
        Self-registration. The account starts pending approval.

        Raises:
            InvalidRole: role is not student or lecturer
            DuplicateEmail: email already registered
            WeakPassword: password fails the strength policy
        """
        if data.role not in SELF_REGISTERABLE_ROLES:
            raise InvalidRole()

        user = await self._build_user(data.email, data.password, data.first_name, data.last_name, data.role)
        user.approval_status = ApprovalStatus.PENDING
        user = await self._users.insert(user)

        await self._notify_admins(
            "New registration",
            f"{user.full_name} ({user.email}) registered as {user.role.value} and awaits approval",
        )
        self._recorder.record(
            user.id,
            AuditAction.USER_REGISTERED,
            table_name="users",
            record_id=user.id,
            new_values={
                "email": user.email,
                "role": user.role,
                "approval_status": user.approval_status,
            },
            origin=origin,
        )
        logger.info("Registered %s account %s", user.role.value, user.id)
        return user

    async def create_user(
        self,
        data: CreateUserRequest,
        admin_id: UUID,
        origin: Optional[Origin] = None,
    ) -> User:
        """Admin-created account of any role, approved from the start."""
        user = await self._build_user(data.email, data.password, data.first_name, data.last_name, data.role)
        user.approval_status = ApprovalStatus.APPROVED
        user.approved_by = admin_id
        user.approved_at = utcnow()
        user = await self._users.insert(user)

        self._recorder.record(
            admin_id,
            AuditAction.USER_CREATED,
            table_name="users",
            record_id=user.id,
            new_values={"email": user.email, "role": user.role},
            origin=origin,
        )
        return user

    async def _build_user(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Role,
    ) -> User:
        if await self._users.find_by_email(email) is not None:
            raise DuplicateEmail()

        strength = validate_password_strength(password)
        if not strength.valid:
            raise WeakPassword(strength.violations)

        student_id = await self._allocate_student_id() if role == Role.STUDENT else None
        return User(
            email=email.strip().lower(),
            password_hash=await run_in_threadpool(hash_password, password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            student_id=student_id,
            is_active=True,
        )

    async def _allocate_student_id(self) -> str:
        # Random, so collisions are possible; retry a bounded number of times
        for _ in range(STUDENT_ID_ATTEMPTS):
            candidate = generate_student_id()
            if await self._users.find_by_student_id(candidate) is None:
                return candidate
        raise InfrastructureError("Could not allocate a unique student identifier")

    async def _notify_admins(self, title: str, message: str) -> None:
        try:
            await self._notifications.create(
                Notification(user_id=None, title=title, message=message, type="info")
            )
        except GradeLedgerError:
            logger.warning("Could not create admin notification: %s", title)

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def approve(
        self,
        user_id: UUID,
        admin_id: UUID,
        origin: Optional[Origin] = None,
    ) -> User:
        """
        Approve an account.

        Already-decided accounts are overwritten rather than refused.
        """
        user = await self._require_user(user_id)
        before = {"approval_status": user.approval_status}

        updated = await self._users.update_partial(user_id, {
            "approval_status": ApprovalStatus.APPROVED,
            "approved_by": admin_id,
            "approved_at": utcnow(),
            "rejection_reason": None,
        })
        self._recorder.record(
            admin_id,
            AuditAction.USER_APPROVED,
            table_name="users",
            record_id=user_id,
            old_values=before,
            new_values={"approval_status": updated.approval_status},
            origin=origin,
        )
        return updated

    async def reject(
        self,
        user_id: UUID,
        reason: str,
        admin_id: UUID,
        origin: Optional[Origin] = None,
    ) -> User:
        """
        Reject an account with a reason.

        Raises:
            ValidationFailed: reason is empty (checked before any write)
        """
        if not reason or not reason.strip():
            raise ValidationFailed("A rejection reason is required")

        user = await self._require_user(user_id)
        before = {"approval_status": user.approval_status}

        updated = await self._users.update_partial(user_id, {
            "approval_status": ApprovalStatus.REJECTED,
            "approved_by": admin_id,
            "approved_at": utcnow(),
            "rejection_reason": reason.strip(),
        })
        self._recorder.record(
            admin_id,
            AuditAction.USER_REJECTED,
            table_name="users",
            record_id=user_id,
            old_values=before,
            new_values={"approval_status": updated.approval_status},
            origin=origin,
        )
        return updated

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def toggle_active(
        self,
        user_id: UUID,
        requested_by: UUID,
        origin: Optional[Origin] = None,
    ) -> User:
        """
        Flip is_active.

        Raises:
            LastAdminProtected: the user is the last active admin (nothing changes)
        """
        user = await self._require_user(user_id)

        if user.is_active:
            if not await self._users.deactivate_guarded(user_id):
                logger.warning("Refused to deactivate last active admin %s", user_id)
                self._recorder.record(
                    requested_by,
                    AuditAction.USER_DEACTIVATION_REFUSED,
                    table_name="users",
                    record_id=user_id,
                    old_values={"is_active": True},
                    new_values={"reason": "last_active_admin"},
                    origin=origin,
                )
                raise LastAdminProtected()
            action = AuditAction.USER_DEACTIVATED
        else:
            await self._users.update_partial(user_id, {"is_active": True})
            action = AuditAction.USER_ACTIVATED

        updated = await self._require_user(user_id)
        self._recorder.record(
            requested_by,
            action,
            table_name="users",
            record_id=user_id,
            old_values={"is_active": user.is_active},
            new_values={"is_active": updated.is_active},
            origin=origin,
        )
        return updated

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    async def change_password(
        self,
        user_id: UUID,
        current_password: str,
        new_password: str,
        origin: Optional[Origin] = None,
    ) -> None:
        """
        Re-authenticate with the current password, then store a new hash.

        Raises:
            InvalidCredentials: current password does not match
            WeakPassword: new password fails the strength policy
        """
        user = await self._require_user(user_id)

        if not await run_in_threadpool(verify_password, current_password, user.password_hash):
            self._password_change_failed(user_id, "invalid_current_password", origin)
            raise InvalidCredentials("Current password is incorrect")

        strength = validate_password_strength(new_password)
        if not strength.valid:
            self._password_change_failed(user_id, "weak_password", origin)
            raise WeakPassword(strength.violations)

        new_hash = await run_in_threadpool(hash_password, new_password)
        await self._users.update_partial(user_id, {"password_hash": new_hash})
        self._recorder.record(
            user_id,
            AuditAction.PASSWORD_CHANGED,
            table_name="users",
            record_id=user_id,
            origin=origin,
        )

    def _password_change_failed(self, user_id: UUID, reason: str, origin: Optional[Origin]) -> None:
        self._recorder.record(
            user_id,
            AuditAction.PASSWORD_CHANGE_FAILED,
            table_name="users",
            record_id=user_id,
            new_values={"reason": reason},
            origin=origin,
        )

    async def update_profile(
        self,
        user_id: UUID,
        data: ProfileUpdateRequest,
        origin: Optional[Origin] = None,
    ) -> User:
        """Change name fields. Callers refresh live sessions afterwards."""
        user = await self._require_user(user_id)
        changes = data.model_dump(exclude_none=True)
        if not changes:
            return user

        updated = await self._users.update_partial(user_id, changes)
        self._recorder.record(
            user_id,
            AuditAction.USER_UPDATED,
            table_name="users",
            record_id=user_id,
            old_values={field: getattr(user, field) for field in changes},
            new_values=changes,
            origin=origin,
        )
        return updated

    async def _require_user(self, user_id: UUID) -> User:
        user = await self._users.find_by_id(user_id)
        if user is None:
            raise NotFound("user", user_id)
        return user
