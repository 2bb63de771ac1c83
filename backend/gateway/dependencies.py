"""
GradeLedger - Gate Dependencies

FastAPI dependencies that resolve the Session Principal and run gate chains.

Usage:
    @router.get("/courses/{course_id}/roster")
    async def roster(
        principal: SessionPrincipal = Depends(require(
            RoleMembership.for_permission(Permission.VIEW_ROSTER),
            course_owner("course_id"),
        )),
    ):
        ...

Security:
- A token is accepted only while its server-side session is valid
- The principal comes from the session row, not from token claims
"""

import logging
from typing import Callable, Optional, Union
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.audit.models import Origin
from backend.auth.principal import SessionPrincipal
from backend.auth.tokens import InvalidTokenError, verify_access_token
from backend.config import settings
from backend.gateway.middleware import client_origin
from backend.gateway.rbac import (
    AuthenticationRequired,
    AuthorizationDenied,
    CourseOwnership,
    EnrollmentMembership,
    Predicate,
    ResourceOwnership,
    authorize,
    gate,
)


logger = logging.getLogger("gradeledger.gateway")

# HTTP Bearer scheme for API clients; browsers use the session cookie
security = HTTPBearer(auto_error=False)

PredicateSpec = Union[Predicate, Callable[[Request], Predicate]]


def get_origin(request: Request) -> Origin:
    """Origin set by SecurityMiddleware, or built from the request."""
    origin = getattr(request.state, "origin", None)
    return origin if origin is not None else client_origin(request)


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[SessionPrincipal]:
    """
    Resolve the Session Principal, or None for anonymous callers.

    Steps:
    1. Take the token from the Authorization header or the session cookie
    2. Verify signature and expiry
    3. Load the principal from the valid, unexpired session row
    """
    token = _extract_token(request, credentials)
    if not token:
        return None

    try:
        payload = verify_access_token(token)
        session_id = UUID(payload.sid)
        user_id = UUID(payload.sub)
    except (InvalidTokenError, ValueError):
        logger.debug("Rejected unreadable session token")
        return None

    principal = await request.app.state.sessions.validate_session(session_id, user_id)
    if principal is not None:
        request.state.session_id = session_id
    return principal


def path_uuid(request: Request, name: str) -> Optional[UUID]:
    """Path parameter as a UUID; None when missing or malformed."""
    try:
        return UUID(str(request.path_params[name]))
    except (KeyError, ValueError):
        return None


def owner_of(param: str) -> Callable[[Request], Predicate]:
    return lambda request: ResourceOwnership(path_uuid(request, param))


def course_owner(param: str = "course_id") -> Callable[[Request], Predicate]:
    return lambda request: CourseOwnership(path_uuid(request, param))


def enrolled_in(param: str = "course_id") -> Callable[[Request], Predicate]:
    return lambda request: EnrollmentMembership(path_uuid(request, param))


async def _enforce(request: Request, principal: Optional[SessionPrincipal], chain) -> SessionPrincipal:
    decision = await authorize(principal, chain, request.app.state.resources)
    if not decision.allowed:
        raise AuthorizationDenied(decision)
    return principal


def require(*predicates: PredicateSpec):
    """
    Dependency running gate(*predicates) for the current request.

    Items may be predicates or callables building one from the request
    (for path parameters). Returns the principal on success; raises
    AuthorizationDenied otherwise.
    """
    async def dependency(
        request: Request,
        principal: Optional[SessionPrincipal] = Depends(get_principal),
    ) -> SessionPrincipal:
        resolved = [p if isinstance(p, Predicate) else p(request) for p in predicates]
        return await _enforce(request, principal, gate(*resolved))

    return dependency


async def require_login(
    request: Request,
    principal: Optional[SessionPrincipal] = Depends(get_principal),
) -> SessionPrincipal:
    """Authentication only; pending and rejected users pass."""
    return await _enforce(request, principal, [AuthenticationRequired()])
