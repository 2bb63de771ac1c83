"""
GradeLedger - Password Hashing and Strength Policy

Production-grade password hashing using bcrypt.
Work factor is configurable (BCRYPT_ROUNDS) and defaults to 12.

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt automatically
- Supports hash upgrades on login
"""

import re
from typing import List, Optional

import bcrypt
from pydantic import BaseModel

from backend.config import settings


MIN_PASSWORD_LENGTH = 8
# bcrypt refuses longer input
MAX_PASSWORD_BYTES = 72
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

_STRENGTH_RULES = (
    (lambda p: len(p) >= MIN_PASSWORD_LENGTH,
     f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"),
    (lambda p: len(p.encode("utf-8")) <= MAX_PASSWORD_BYTES,
     f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"),
    (lambda p: re.search(r"[A-Z]", p) is not None,
     "Password must contain at least one uppercase letter"),
    (lambda p: re.search(r"[a-z]", p) is not None,
     "Password must contain at least one lowercase letter"),
    (lambda p: re.search(r"\d", p) is not None,
     "Password must contain at least one number"),
    (lambda p: any(c in SPECIAL_CHARACTERS for c in p),
     "Password must contain at least one special character"),
)


class PasswordStrength(BaseModel):
    """Outcome of the strength policy: every violated rule, in rule order."""
    valid: bool
    violations: List[str]


def _work_factor(rounds: Optional[int] = None) -> int:
    return rounds if rounds is not None else settings.BCRYPT_ROUNDS


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plaintext password
        rounds: Override the configured work factor

    Returns:
        bcrypt hash string (includes salt)

    Example:
        >>> hashed = hash_password("SecureP@ss123")
        >>> hashed.startswith("$2b$")
        True
    """
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=_work_factor(rounds))
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Uses constant-time comparison to prevent timing attacks.
    Returns False (never raises) for a malformed or empty hash.

    Example:
        >>> hashed = hash_password("SecureP@ss123")
        >>> verify_password("SecureP@ss123", hashed)
        True
        >>> verify_password("WrongPassword", hashed)
        False
    """
    try:
        password_bytes = plain_password.encode("utf-8")
        hashed_bytes = hashed_password.encode("utf-8")
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except (ValueError, TypeError, AttributeError):
        # Invalid hash format
        return False


def needs_rehash(hashed_password: str, target_work_factor: Optional[int] = None) -> bool:
    """
    Check if a password hash was produced with a lower work factor.

    Args:
        hashed_password: Existing bcrypt hash
        target_work_factor: Desired work factor (defaults to BCRYPT_ROUNDS)

    Returns:
        True if hash should be regenerated
    """
    try:
        # bcrypt hash format: $2b$XX$...
        _, work_factor_str, _ = hashed_password.split("$")[1:4]
        return int(work_factor_str) < _work_factor(target_work_factor)
    except (ValueError, IndexError, AttributeError):
        return True


def validate_password_strength(password: str) -> PasswordStrength:
    """
    Check a candidate password against every strength rule.

    All failing rules are collected; nothing short-circuits.

    Example:
        >>> validate_password_strength("abc").violations[0]
        'Password must be at least 8 characters long'
    """
    violations = [message for check, message in _STRENGTH_RULES if not check(password or "")]
    return PasswordStrength(valid=not violations, violations=violations)
