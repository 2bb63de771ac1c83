"""
GradeLedger - Session Token Management

The browser holds a signed JWT that names the user and the server-side
session it belongs to:
- User ID (sub)
- Session ID (sid, for server-side validation and revocation)
- Unique token ID (jti), so two tokens for one session never compare equal

Security:
- Token lifetime equals the absolute session lifetime
- A valid signature is not enough: the session row must also be valid
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import jwt, JWTError
from pydantic import BaseModel, Field

from backend.config import settings


logger = logging.getLogger("gradeledger.auth.tokens")

_ephemeral_key: Optional[str] = None


class TokenPayload(BaseModel):
    """
    JWT token payload structure.

    Attributes:
        sub: Subject (user ID)
        sid: Session ID for server-side validation
        jti: Unique token ID
        exp: Expiration timestamp
        iat: Issued-at timestamp
    """
    sub: str = Field(..., description="User ID")
    sid: str = Field(..., description="Session ID")
    jti: str = Field(..., description="Token ID")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(..., description="Issued at time")


class InvalidTokenError(Exception):
    """Raised when JWT validation fails."""
    pass


def _signing_key() -> str:
    """
    SECRET_KEY, or a per-process random key when none is configured.

    Tokens signed with the random key stop working on restart.
    """
    global _ephemeral_key
    if settings.SECRET_KEY:
        return settings.SECRET_KEY
    if _ephemeral_key is None:
        logger.warning("SECRET_KEY is not set; using a per-process signing key")
        _ephemeral_key = secrets.token_urlsafe(48)
    return _ephemeral_key


def session_lifetime() -> timedelta:
    return timedelta(hours=settings.SESSION_EXPIRE_HOURS)


def create_access_token(
    user_id: UUID,
    session_id: UUID,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a new session token.

    Args:
        user_id: User's unique identifier
        session_id: Server-side session identifier
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or session_lifetime())

    payload = {
        "sub": str(user_id),
        "sid": str(session_id),
        "jti": secrets.token_hex(16),
        "exp": expire,
        "iat": now,
    }

    encoded_jwt = jwt.encode(payload, _signing_key(), algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def verify_access_token(token: str) -> TokenPayload:
    """
    Verify and decode a session token.

    Raises:
        InvalidTokenError: If token is invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, _signing_key(), algorithms=[settings.JWT_ALGORITHM])
        return TokenPayload(**payload)
    except (JWTError, ValueError) as e:
        raise InvalidTokenError(f"Token validation failed: {e}")


def get_token_expiry_seconds() -> int:
    """Token lifetime in seconds for login responses."""
    return int(session_lifetime().total_seconds())
