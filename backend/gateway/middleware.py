"""
GradeLedger - Security Middleware

Request/response middleware for:
- Request ID injection for tracing
- Request origin capture for the audit trail
- Security headers
- Request timing in the access log
"""

import ipaddress
import logging
import time
import uuid
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.audit.models import Origin


logger = logging.getLogger("gradeledger.http")

USER_AGENT_MAX_LENGTH = 512
# Width of the audit_logs.ip_address column
IP_ADDRESS_MAX_LENGTH = 45


def _forwarded_ip(header: str) -> Optional[str]:
    """First X-Forwarded-For hop in canonical form, or None if it is not an IP address."""
    hop = header.split(",")[0].strip()
    try:
        return str(ipaddress.ip_address(hop))[:IP_ADDRESS_MAX_LENGTH]
    except ValueError:
        logger.debug("Ignoring malformed X-Forwarded-For hop %.64r", hop)
        return None


def client_origin(request: Request) -> Origin:
    """
    Client IP and user agent.

    The IP is the first X-Forwarded-For hop when it parses as an address,
    else the socket peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    ip = _forwarded_ip(forwarded) if forwarded else None
    if ip is None and request.client:
        ip = request.client.host[:IP_ADDRESS_MAX_LENGTH]

    user_agent = request.headers.get("User-Agent")
    if user_agent:
        user_agent = user_agent[:USER_AGENT_MAX_LENGTH]
    return Origin(ip_address=ip, user_agent=user_agent)


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Security-focused middleware for all incoming requests.

    Responsibilities:
    1. Inject X-Request-ID header for tracing
    2. Attach the request origin (IP, user agent) to request.state
    3. Add security headers to response
    4. Log method, path, status and duration
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.origin = client_origin(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Cache-Control"] = "no-store"

        logger.info(
            "%s %s -> %d (%.1f ms) [%s]",
            request.method, request.url.path, response.status_code, duration_ms, request_id,
        )
        return response
