"""
GradeLedger - Admin API Routes

Admin-only endpoints for account management:
- User listing, creation, approval, rejection and (de)activation
- Session revocation
- User statistics and admin notifications
- Audit log browsing

Every route passes the gate with a role permission from policies.yaml.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request, status
from pydantic import BaseModel

from backend.audit.models import AuditAction, AuditQuery
from backend.auth.models import ApprovalStatus, Role
from backend.auth.principal import SessionPrincipal
from backend.auth.schemas import CreateUserRequest, ErrorResponse, RejectRequest, UserResponse
from backend.gateway.dependencies import get_origin, require
from backend.gateway.rbac import Permission, RoleMembership


router = APIRouter()

require_admin = require(RoleMembership.for_permission(Permission.MANAGE_USERS))


# =============================================================================
# Request/Response Models
# =============================================================================

class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int


class UserStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    students: int
    lecturers: int
    admins: int
    active: int
    inactive: int


class AuditLogEntry(BaseModel):
    """Single audit log entry."""
    id: UUID
    user_id: Optional[UUID] = None
    action: str
    table_name: Optional[str] = None
    record_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    """Paginated audit log response."""
    logs: List[AuditLogEntry]
    pagination: Dict[str, int]


class NotificationItem(BaseModel):
    id: UUID
    title: str
    message: str
    type: str
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: List[NotificationItem]
    total: int


# =============================================================================
# User Management Endpoints
# =============================================================================

@router.get("/users", response_model=UserListResponse, summary="List All Users")
async def list_users(
    request: Request,
    role: Optional[Role] = Query(None, description="Filter by role"),
    admin: SessionPrincipal = Depends(require_admin),
):
    users_store = request.app.state.users
    users = await (users_store.list_by_role(role) if role else users_store.list_all())
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=len(users),
    )


@router.get("/users/pending", response_model=UserListResponse, summary="List Pending Users")
async def list_pending_users(request: Request, admin: SessionPrincipal = Depends(require_admin)):
    users = await request.app.state.users.list_pending()
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=len(users),
    )


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Create User",
)
async def create_user(
    request: Request,
    body: CreateUserRequest,
    admin: SessionPrincipal = Depends(require_admin),
):
    """Create an approved account of any role, admins included."""
    user = await request.app.state.lifecycle.create_user(body, admin.id, get_origin(request))
    return UserResponse.model_validate(user)


@router.post("/users/{target_user_id}/approve", response_model=UserResponse, summary="Approve User")
async def approve_user(
    request: Request,
    target_user_id: UUID = Path(..., description="User to approve"),
    admin: SessionPrincipal = Depends(require_admin),
):
    state = request.app.state
    user = await state.lifecycle.approve(target_user_id, admin.id, get_origin(request))
    await state.sessions.refresh_principal(user)
    return UserResponse.model_validate(user)


@router.post("/users/{target_user_id}/reject", response_model=UserResponse, summary="Reject User")
async def reject_user(
    request: Request,
    body: RejectRequest,
    target_user_id: UUID = Path(..., description="User to reject"),
    admin: SessionPrincipal = Depends(require_admin),
):
    state = request.app.state
    user = await state.lifecycle.reject(target_user_id, body.reason, admin.id, get_origin(request))
    await state.sessions.refresh_principal(user)
    return UserResponse.model_validate(user)


@router.post(
    "/users/{target_user_id}/toggle-active",
    response_model=UserResponse,
    responses={409: {"model": ErrorResponse}},
    summary="Activate or Deactivate User",
)
async def toggle_user_active(
    request: Request,
    target_user_id: UUID = Path(..., description="User to toggle"),
    admin: SessionPrincipal = Depends(require_admin),
):
    """
    Flip is_active. Deactivation also ends every session of the user.

    Raises:
        409: Target is the last active admin
    """
    state = request.app.state
    user = await state.lifecycle.toggle_active(target_user_id, admin.id, get_origin(request))
    if not user.is_active:
        await state.sessions.invalidate_all_user_sessions(user.id)
    return UserResponse.model_validate(user)


@router.post("/users/{target_user_id}/revoke-sessions", summary="Revoke User Sessions")
async def revoke_user_sessions(
    request: Request,
    target_user_id: UUID = Path(..., description="User ID to revoke sessions for"),
    admin: SessionPrincipal = Depends(require_admin),
):
    """Force the user to log in again everywhere."""
    state = request.app.state
    count = await state.sessions.invalidate_all_user_sessions(target_user_id)
    state.recorder.record(
        admin.id,
        AuditAction.SESSIONS_REVOKED,
        table_name="sessions",
        record_id=target_user_id,
        new_values={"sessions_invalidated": count},
        origin=get_origin(request),
    )
    return {"message": f"Revoked {count} sessions", "user_id": str(target_user_id)}


# =============================================================================
# Dashboard Endpoints
# =============================================================================

@router.get("/stats/users", response_model=UserStats, summary="User Statistics")
async def user_stats(
    request: Request,
    admin: SessionPrincipal = Depends(require(RoleMembership.for_permission(Permission.READ_STATS))),
):
    users = await request.app.state.users.list_all()
    return UserStats(
        total=len(users),
        pending=sum(1 for u in users if u.approval_status == ApprovalStatus.PENDING),
        approved=sum(1 for u in users if u.approval_status == ApprovalStatus.APPROVED),
        rejected=sum(1 for u in users if u.approval_status == ApprovalStatus.REJECTED),
        students=sum(1 for u in users if u.role == Role.STUDENT),
        lecturers=sum(1 for u in users if u.role == Role.LECTURER),
        admins=sum(1 for u in users if u.role == Role.ADMIN),
        active=sum(1 for u in users if u.is_active),
        inactive=sum(1 for u in users if not u.is_active),
    )


@router.get("/notifications", response_model=NotificationListResponse, summary="Admin Notifications")
async def list_notifications(
    request: Request,
    unread_only: bool = Query(False),
    admin: SessionPrincipal = Depends(require_admin),
):
    notifications = await request.app.state.notifications.list_for_admins(unread_only=unread_only)
    return NotificationListResponse(
        notifications=[NotificationItem.model_validate(n) for n in notifications],
        total=len(notifications),
    )


# =============================================================================
# Audit Log Endpoints
# =============================================================================

@router.get("/audit/logs", response_model=AuditLogResponse, summary="Get Audit Logs")
async def get_audit_logs(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    action: Optional[str] = Query(None, description="Filter by action (substring)"),
    table_name: Optional[str] = Query(None, description="Filter by table"),
    filter_user_id: Optional[UUID] = Query(None, alias="user_id", description="Filter by actor"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    admin: SessionPrincipal = Depends(require(RoleMembership.for_permission(Permission.READ_AUDIT))),
):
    """Audit events, newest first. Admin only."""
    result = await request.app.state.audit_store.query(AuditQuery(
        user_id=filter_user_id,
        action=action,
        table_name=table_name,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    ))
    return AuditLogResponse(
        logs=[AuditLogEntry.model_validate(row) for row in result["data"]],
        pagination=result["pagination"],
    )
