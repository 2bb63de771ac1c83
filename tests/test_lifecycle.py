"""
GradeLedger - Account Lifecycle Tests

Registration, approval, activation toggling, password and profile changes.

Run with: pytest tests/test_lifecycle.py -v
"""

import re

import pytest
from uuid import uuid4

from backend.audit.models import AuditQuery
from backend.auth import lifecycle as lifecycle_module
from backend.auth.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidRole,
    LastAdminProtected,
    NotFound,
    ValidationFailed,
    WeakPassword,
)
from backend.auth.lifecycle import generate_student_id
from backend.auth.models import ApprovalStatus, Role, utcnow
from backend.auth.password import verify_password
from backend.auth.schemas import CreateUserRequest, ProfileUpdateRequest, RegisterRequest
from tests.conftest import DEFAULT_PASSWORD, insert_user


def registration(role: Role = Role.STUDENT, email: str = "new@test.com", password: str = "Str0ng!Pass"):
    return RegisterRequest(
        email=email,
        password=password,
        first_name="Ada",
        last_name="Lovelace",
        role=role,
    )


async def audit_rows(recorder, audit_store, action):
    await recorder.flush()
    rows = (await audit_store.query(AuditQuery(action=action)))["data"]
    # The action filter is a substring match
    return [row for row in rows if row.action == action]


# =============================================================================
# REGISTRATION
# =============================================================================

class TestRegister:

    @pytest.mark.asyncio
    async def test_student_registers_pending_with_student_id(self, lifecycle):
        user = await lifecycle.register(registration())

        assert user.approval_status == ApprovalStatus.PENDING
        assert user.role == Role.STUDENT
        assert re.fullmatch(rf"STU{utcnow().year}\d{{4}}", user.student_id)
        assert verify_password("Str0ng!Pass", user.password_hash)

    @pytest.mark.asyncio
    async def test_lecturer_has_no_student_id(self, lifecycle):
        user = await lifecycle.register(registration(Role.LECTURER))

        assert user.student_id is None
        assert user.approval_status == ApprovalStatus.PENDING

    @pytest.mark.asyncio
    async def test_email_stored_lower_case(self, lifecycle):
        user = await lifecycle.register(registration(email="Mixed.Case@Test.com"))

        assert user.email == "mixed.case@test.com"

    @pytest.mark.asyncio
    async def test_admin_self_registration_always_rejected(self, lifecycle, student_user):
        """Rejected even when the email is taken and the password is weak."""
        with pytest.raises(InvalidRole):
            await lifecycle.register(registration(Role.ADMIN, email=student_user.email, password="weak"))

    @pytest.mark.asyncio
    async def test_duplicate_email(self, lifecycle, student_user):
        with pytest.raises(DuplicateEmail):
            await lifecycle.register(registration(email=student_user.email.upper()))

    @pytest.mark.asyncio
    async def test_weak_password_lists_violations(self, lifecycle, user_store):
        with pytest.raises(WeakPassword) as exc_info:
            await lifecycle.register(registration(password="short"))

        assert exc_info.value.message == "Password must be at least 8 characters long"
        assert len(exc_info.value.violations) == 4
        assert await user_store.find_by_email("new@test.com") is None

    @pytest.mark.asyncio
    async def test_password_over_bcrypt_limit_is_weak(self, lifecycle, user_store):
        with pytest.raises(WeakPassword) as exc_info:
            await lifecycle.register(registration(password="Aa1!" + "x" * 80))

        assert exc_info.value.violations == ["Password must be at most 72 bytes long"]
        assert await user_store.find_by_email("new@test.com") is None

    @pytest.mark.asyncio
    async def test_admins_are_notified(self, lifecycle, notification_store):
        await lifecycle.register(registration())

        notifications = await notification_store.list_for_admins()
        assert len(notifications) == 1
        assert "new@test.com" in notifications[0].message

    @pytest.mark.asyncio
    async def test_registration_is_audited(self, lifecycle, recorder, audit_store):
        user = await lifecycle.register(registration())

        rows = await audit_rows(recorder, audit_store, "USER_REGISTERED")
        assert len(rows) == 1
        assert rows[0].record_id == str(user.id)
        assert rows[0].new_values == {
            "email": "new@test.com",
            "role": "student",
            "approval_status": "pending",
        }

    @pytest.mark.asyncio
    async def test_student_id_collision_is_retried(self, lifecycle, student_user, monkeypatch):
        candidates = iter([student_user.student_id, "STU20269999"])
        monkeypatch.setattr(lifecycle_module, "generate_student_id", lambda: next(candidates))

        user = await lifecycle.register(registration())

        assert user.student_id == "STU20269999"

    def test_generate_student_id_format(self):
        assert re.fullmatch(r"STU2030\d{4}", generate_student_id(2030, "STU"))


class TestCreateUser:

    @pytest.mark.asyncio
    async def test_admin_creates_approved_admin(self, lifecycle, admin_user, recorder, audit_store):
        body = CreateUserRequest(
            email="second.admin@test.com",
            password="Str0ng!Pass",
            first_name="Second",
            last_name="Admin",
            role=Role.ADMIN,
        )

        user = await lifecycle.create_user(body, admin_user.id)

        assert user.role == Role.ADMIN
        assert user.approval_status == ApprovalStatus.APPROVED
        assert user.approved_by == admin_user.id
        rows = await audit_rows(recorder, audit_store, "USER_CREATED")
        assert rows[0].user_id == admin_user.id


# =============================================================================
# APPROVAL
# =============================================================================

class TestApproval:

    @pytest.mark.asyncio
    async def test_approve_pending(self, lifecycle, admin_user, pending_student, recorder, audit_store):
        user = await lifecycle.approve(pending_student.id, admin_user.id)

        assert user.approval_status == ApprovalStatus.APPROVED
        assert user.approved_by == admin_user.id
        assert user.approved_at is not None

        rows = await audit_rows(recorder, audit_store, "USER_APPROVED")
        assert rows[0].old_values == {"approval_status": "pending"}
        assert rows[0].new_values == {"approval_status": "approved"}

    @pytest.mark.asyncio
    async def test_approve_overwrites_rejected(self, lifecycle, admin_user, pending_student):
        await lifecycle.reject(pending_student.id, "Incomplete details", admin_user.id)

        user = await lifecycle.approve(pending_student.id, admin_user.id)

        assert user.approval_status == ApprovalStatus.APPROVED
        assert user.rejection_reason is None

    @pytest.mark.asyncio
    async def test_approve_missing_user(self, lifecycle, admin_user):
        with pytest.raises(NotFound):
            await lifecycle.approve(uuid4(), admin_user.id)

    @pytest.mark.asyncio
    async def test_reject_records_reason(self, lifecycle, admin_user, pending_student, recorder, audit_store):
        user = await lifecycle.reject(pending_student.id, "  Not a member of staff ", admin_user.id)

        assert user.approval_status == ApprovalStatus.REJECTED
        assert user.rejection_reason == "Not a member of staff"

        rows = await audit_rows(recorder, audit_store, "USER_REJECTED")
        assert len(rows) == 1
        assert rows[0].old_values == {"approval_status": "pending"}
        assert rows[0].new_values == {"approval_status": "rejected"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", ["", "   "])
    async def test_reject_requires_reason_before_any_write(
        self, lifecycle, user_store, admin_user, pending_student, reason
    ):
        with pytest.raises(ValidationFailed):
            await lifecycle.reject(pending_student.id, reason, admin_user.id)

        user = await user_store.find_by_id(pending_student.id)
        assert user.approval_status == ApprovalStatus.PENDING


# =============================================================================
# ACTIVATION
# =============================================================================

class TestToggleActive:

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_deactivated(self, lifecycle, user_store, admin_user, recorder, audit_store):
        with pytest.raises(LastAdminProtected):
            await lifecycle.toggle_active(admin_user.id, admin_user.id)

        user = await user_store.find_by_id(admin_user.id)
        assert user.is_active is True

        rows = await audit_rows(recorder, audit_store, "USER_DEACTIVATION_REFUSED")
        assert len(rows) == 1
        assert rows[0].new_values == {"reason": "last_active_admin"}
        assert await audit_rows(recorder, audit_store, "USER_DEACTIVATED") == []

    @pytest.mark.asyncio
    async def test_two_admins_one_may_go(self, lifecycle, user_store, session_factory, admin_user):
        other = insert_user(session_factory, "admin2@test.com", Role.ADMIN)

        user = await lifecycle.toggle_active(other.id, admin_user.id)
        assert user.is_active is False

        with pytest.raises(LastAdminProtected):
            await lifecycle.toggle_active(admin_user.id, admin_user.id)

        assert await user_store.count_active_by_role(Role.ADMIN) == 1

    @pytest.mark.asyncio
    async def test_inactive_admins_do_not_count(self, lifecycle, session_factory, admin_user):
        insert_user(session_factory, "dormant@test.com", Role.ADMIN, is_active=False)

        with pytest.raises(LastAdminProtected):
            await lifecycle.toggle_active(admin_user.id, admin_user.id)

    @pytest.mark.asyncio
    async def test_toggle_student_off_and_on(self, lifecycle, admin_user, student_user, recorder, audit_store):
        user = await lifecycle.toggle_active(student_user.id, admin_user.id)
        assert user.is_active is False

        user = await lifecycle.toggle_active(student_user.id, admin_user.id)
        assert user.is_active is True

        deactivated = await audit_rows(recorder, audit_store, "USER_DEACTIVATED")
        activated = await audit_rows(recorder, audit_store, "USER_ACTIVATED")
        assert deactivated[0].new_values == {"is_active": False}
        assert activated[0].new_values == {"is_active": True}

    @pytest.mark.asyncio
    async def test_deactivation_keeps_approval(self, lifecycle, admin_user, student_user):
        user = await lifecycle.toggle_active(student_user.id, admin_user.id)

        assert user.approval_status == ApprovalStatus.APPROVED


# =============================================================================
# SELF-SERVICE
# =============================================================================

class TestChangePassword:

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, lifecycle, user_store, student_user, recorder, audit_store):
        with pytest.raises(InvalidCredentials):
            await lifecycle.change_password(student_user.id, "Wrong-pass1", "N3w!Password")

        user = await user_store.find_by_id(student_user.id)
        assert verify_password(DEFAULT_PASSWORD, user.password_hash)

        rows = await audit_rows(recorder, audit_store, "PASSWORD_CHANGE_FAILED")
        assert len(rows) == 1
        assert rows[0].new_values == {"reason": "invalid_current_password"}
        assert await audit_rows(recorder, audit_store, "PASSWORD_CHANGED") == []

    @pytest.mark.asyncio
    async def test_weak_new_password(self, lifecycle, student_user, recorder, audit_store):
        with pytest.raises(WeakPassword):
            await lifecycle.change_password(student_user.id, DEFAULT_PASSWORD, "weakpass")

        rows = await audit_rows(recorder, audit_store, "PASSWORD_CHANGE_FAILED")
        assert len(rows) == 1
        assert rows[0].new_values == {"reason": "weak_password"}

    @pytest.mark.asyncio
    async def test_new_password_over_bcrypt_limit(self, lifecycle, user_store, student_user):
        with pytest.raises(WeakPassword) as exc_info:
            await lifecycle.change_password(student_user.id, DEFAULT_PASSWORD, "Aa1!" + "x" * 80)

        assert "Password must be at most 72 bytes long" in exc_info.value.violations
        user = await user_store.find_by_id(student_user.id)
        assert verify_password(DEFAULT_PASSWORD, user.password_hash)

    @pytest.mark.asyncio
    async def test_success_audited_without_payload(
        self, lifecycle, user_store, student_user, recorder, audit_store
    ):
        await lifecycle.change_password(student_user.id, DEFAULT_PASSWORD, "N3w!Password")

        user = await user_store.find_by_id(student_user.id)
        assert verify_password("N3w!Password", user.password_hash)

        rows = await audit_rows(recorder, audit_store, "PASSWORD_CHANGED")
        assert len(rows) == 1
        assert rows[0].old_values is None
        assert rows[0].new_values is None


class TestUpdateProfile:

    @pytest.mark.asyncio
    async def test_update_names(self, lifecycle, student_user, recorder, audit_store):
        user = await lifecycle.update_profile(student_user.id, ProfileUpdateRequest(first_name="Grace"))

        assert user.first_name == "Grace"
        rows = await audit_rows(recorder, audit_store, "USER_UPDATED")
        assert rows[0].old_values == {"first_name": "Test"}
        assert rows[0].new_values == {"first_name": "Grace"}

    @pytest.mark.asyncio
    async def test_empty_update_is_a_no_op(self, lifecycle, student_user, recorder, audit_store):
        user = await lifecycle.update_profile(student_user.id, ProfileUpdateRequest())

        assert user.first_name == "Test"
        assert await audit_rows(recorder, audit_store, "USER_UPDATED") == []

    @pytest.mark.asyncio
    async def test_role_is_immutable(self, user_store, student_user):
        with pytest.raises(ValueError):
            await user_store.update_partial(student_user.id, {"role": Role.ADMIN})
