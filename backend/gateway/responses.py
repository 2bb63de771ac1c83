"""
GradeLedger - Failure Rendering

Turns gate decisions and account errors into HTTP responses.

Programmatic callers get a JSON body {"error": ..., "message": ...}.
Browser navigation gets a redirect to a recovery page, with the message kept
in a short-lived flash cookie for the next render.
"""

from typing import Optional
from urllib.parse import quote, unquote

from fastapi import status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.requests import Request
from starlette.responses import Response

from backend.auth.errors import AuthError
from backend.config import API_PREFIX, settings
from backend.gateway.rbac import Decision, Outcome


FLASH_COOKIE_NAME = "gradeledger_flash"
FLASH_MAX_AGE = 60

# Recovery pages served by the auth router
LOGIN_PAGE = f"{API_PREFIX}/auth/login"
PENDING_PAGE = f"{API_PREFIX}/auth/pending-approval"
HOME_PAGE = "/"


def wants_json(request: Request) -> bool:
    """
    True for XHR/API-style callers.

    Signals, in order: X-Requested-With, a JSON Accept or Content-Type, and
    finally the absence of text/html in Accept (browsers always send it).
    """
    if request.headers.get("x-requested-with", "").lower() == "xmlhttprequest":
        return True
    accept = request.headers.get("accept", "").lower()
    if "application/json" in accept:
        return True
    if "application/json" in request.headers.get("content-type", "").lower():
        return True
    return "text/html" not in accept


def set_flash(response: Response, message: str, category: str = "error") -> None:
    response.set_cookie(
        FLASH_COOKIE_NAME,
        quote(f"{category}:{message}"),
        max_age=FLASH_MAX_AGE,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def read_flash(request: Request) -> Optional[dict]:
    """Decode the flash cookie, if any. Callers clear it with clear_flash()."""
    raw = request.cookies.get(FLASH_COOKIE_NAME)
    if not raw:
        return None
    category, _, message = unquote(raw).partition(":")
    return {"category": category, "message": message}


def clear_flash(response: Response) -> None:
    response.delete_cookie(FLASH_COOKIE_NAME)


_STATUS = {
    Outcome.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    Outcome.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    Outcome.PENDING_APPROVAL: status.HTTP_403_FORBIDDEN,
}

_REDIRECT = {
    Outcome.UNAUTHENTICATED: LOGIN_PAGE,
    Outcome.FORBIDDEN: HOME_PAGE,
    Outcome.PENDING_APPROVAL: PENDING_PAGE,
}


def render_denial(request: Request, decision: Decision) -> Response:
    """Response for a failed gate chain."""
    if decision.outcome not in _STATUS:
        raise ValueError(f"Not a failure outcome: {decision.outcome!r}")

    if wants_json(request):
        headers = {"WWW-Authenticate": "Bearer"} if decision.outcome is Outcome.UNAUTHENTICATED else None
        return JSONResponse(
            status_code=_STATUS[decision.outcome],
            content={"error": decision.outcome.value, "message": decision.message},
            headers=headers,
        )

    response = RedirectResponse(_REDIRECT[decision.outcome], status_code=status.HTTP_302_FOUND)
    set_flash(response, decision.message)
    return response


def render_auth_error(exc: AuthError) -> JSONResponse:
    """JSON body for a typed account error."""
    content = {"error": exc.code, "message": exc.message}
    violations = getattr(exc, "violations", None)
    if violations:
        content["violations"] = violations
    minutes = getattr(exc, "minutes_remaining", None)
    if minutes is not None:
        content["minutes_remaining"] = minutes
    return JSONResponse(status_code=exc.status_code, content=content)
