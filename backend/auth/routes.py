"""
GradeLedger - Authentication Routes

API endpoints for authentication and self-service:
- POST  /auth/register          - Self-registration (pending approval)
- GET   /auth/login             - Sign-in landing for redirected browsers
- POST  /auth/login             - Authenticate and create session
- POST  /auth/logout            - Invalidate session(s)
- GET   /auth/me                - Current user info
- PATCH /auth/me                - Update own name
- POST  /auth/password          - Change own password
- GET   /auth/sessions          - List active sessions
- GET   /auth/pending-approval  - Approval status for pending/rejected users
- POST  /auth/validate/email    - Email availability check

All state changes are logged to the audit trail.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from backend.audit.models import AuditAction
from backend.auth.models import ApprovalStatus
from backend.auth.principal import SessionPrincipal
from backend.auth.schemas import (
    ActiveSessionsResponse,
    ApprovalStatusResponse,
    EmailCheckRequest,
    EmailValidationResponse,
    ErrorResponse,
    LoginPageResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    MessageResponse,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    SessionInfo,
    UserResponse,
)
from backend.auth.errors import NotFound
from backend.auth.tokens import create_access_token, get_token_expiry_seconds
from backend.config import settings
from backend.gateway.dependencies import get_origin, require_login
from backend.gateway.responses import clear_flash, read_flash


router = APIRouter(prefix="/auth", tags=["authentication"])

APPROVAL_MESSAGES = {
    ApprovalStatus.PENDING: "Your account is awaiting administrator approval.",
    ApprovalStatus.APPROVED: "Your account has been approved.",
    ApprovalStatus.REJECTED: "Your registration was rejected.",
}


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=get_token_expiry_seconds(),
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Register a student or lecturer account",
)
async def register(request: Request, body: RegisterRequest):
    """
    Create an account awaiting admin approval.

    Raises:
        409: Email already registered
        422: Weak password or role not allowed
    """
    user = await request.app.state.lifecycle.register(body, get_origin(request))
    return UserResponse.model_validate(user)


@router.get("/login", response_model=LoginPageResponse, summary="Sign-in landing page")
async def login_page(request: Request, response: Response):
    """Recovery page for the UNAUTHENTICATED gate outcome; consumes the flash message."""
    flash = read_flash(request)
    if flash is not None:
        clear_flash(response)
    return LoginPageResponse(
        message="Sign in to continue.",
        login_endpoint=request.url.path,
        flash=flash,
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}, 423: {"model": ErrorResponse}},
    summary="Authenticate user and create session",
)
async def login(request: Request, response: Response, credentials: LoginRequest):
    """
    Authenticate user with email and password.

    On success:
    1. Creates a server-side session holding the principal
    2. Issues a token bound to that session (body and httpOnly cookie)

    Pending users may log in; the gate sends them to the approval page.

    Raises:
        401: Invalid credentials
        403: Account deactivated
        423: Account locked
    """
    state = request.app.state
    principal, session = await state.auth_service.login(
        credentials.email, credentials.password, get_origin(request)
    )
    access_token = create_access_token(principal.id, session.session_id)
    _set_session_cookie(response, access_token)

    user = await state.users.find_by_id(principal.id)
    return LoginResponse(
        access_token=access_token,
        expires_in=get_token_expiry_seconds(),
        session_id=str(session.session_id),
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Invalidate current session",
)
async def logout(
    request: Request,
    response: Response,
    body: Optional[LogoutRequest] = None,
    principal: SessionPrincipal = Depends(require_login),
):
    """
    Invalidate the current session, or every session with all_sessions=true.
    """
    state = request.app.state
    origin = get_origin(request)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)

    if body and body.all_sessions:
        count = await state.sessions.invalidate_all_user_sessions(principal.id)
        state.recorder.record(
            principal.id,
            AuditAction.SESSIONS_REVOKED,
            table_name="sessions",
            record_id=principal.id,
            new_values={"sessions_invalidated": count},
            origin=origin,
        )
        return LogoutResponse(message="All sessions invalidated", sessions_invalidated=count)

    await state.auth_service.logout(principal, request.state.session_id, origin)
    return LogoutResponse(message="Session invalidated", sessions_invalidated=1)


@router.get("/me", response_model=UserResponse, summary="Get current user information")
async def get_me(request: Request, principal: SessionPrincipal = Depends(require_login)):
    user = await request.app.state.users.find_by_id(principal.id)
    if user is None:
        raise NotFound("user", principal.id)
    return UserResponse.model_validate(user)


@router.patch("/me", response_model=UserResponse, summary="Update own profile")
async def update_me(
    request: Request,
    body: ProfileUpdateRequest,
    principal: SessionPrincipal = Depends(require_login),
):
    """Change first/last name and refresh every live session of the user."""
    state = request.app.state
    user = await state.lifecycle.update_profile(principal.id, body, get_origin(request))
    await state.sessions.refresh_principal(user)
    return UserResponse.model_validate(user)


@router.post(
    "/password",
    response_model=MessageResponse,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Change own password",
)
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    principal: SessionPrincipal = Depends(require_login),
):
    await request.app.state.lifecycle.change_password(
        principal.id, body.current_password, body.new_password, get_origin(request)
    )
    return MessageResponse(message="Password changed")


@router.get("/sessions", response_model=ActiveSessionsResponse, summary="List active sessions")
async def list_sessions(request: Request, principal: SessionPrincipal = Depends(require_login)):
    active = await request.app.state.sessions.get_active_sessions(principal.id)
    current = getattr(request.state, "session_id", None)

    infos = []
    for session in active:
        info = SessionInfo.model_validate(session)
        info.is_current = session.session_id == current
        infos.append(info)
    return ActiveSessionsResponse(sessions=infos, total=len(infos))


@router.get(
    "/pending-approval",
    response_model=ApprovalStatusResponse,
    summary="Approval status of the current account",
)
async def pending_approval(
    request: Request,
    response: Response,
    principal: SessionPrincipal = Depends(require_login),
):
    """Recovery page for the PENDING_APPROVAL gate outcome; consumes the flash message."""
    user = await request.app.state.users.find_by_id(principal.id)
    if user is None:
        raise NotFound("user", principal.id)

    flash = read_flash(request)
    if flash is not None:
        clear_flash(response)
    return ApprovalStatusResponse(
        approval_status=user.approval_status,
        rejection_reason=user.rejection_reason,
        message=APPROVAL_MESSAGES[user.approval_status],
        flash=flash,
    )


@router.post(
    "/validate/email",
    response_model=EmailValidationResponse,
    summary="Check whether an email is still available",
)
async def validate_email(request: Request, body: EmailCheckRequest):
    existing = await request.app.state.users.find_by_email(body.email)
    return EmailValidationResponse(email=body.email, available=existing is None)
