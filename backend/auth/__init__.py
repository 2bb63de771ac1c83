"""
GradeLedger - Authentication Package

Account authentication and lifecycle with:
- Server-side sessions holding the Session Principal
- bcrypt password hashing and temporary lockout
- Approval workflow with last-admin protection
- Full audit trail integration
"""

from backend.auth.models import User, Session, Role, ApprovalStatus
from backend.auth.principal import SessionPrincipal
from backend.auth.tokens import create_access_token, verify_access_token

__all__ = [
    "User",
    "Session",
    "Role",
    "ApprovalStatus",
    "SessionPrincipal",
    "create_access_token",
    "verify_access_token",
]
