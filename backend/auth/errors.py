"""
GradeLedger - Account and Authentication Errors

Typed exceptions raised by the authentication service, the lockout tracker
and the account lifecycle manager. Every AuthError is recoverable and
user-facing: it carries an HTTP status, a stable machine code and the
message that may be shown to the end user.

InfrastructureError is deliberately outside the AuthError hierarchy. It wraps
storage faults and is rendered as a generic failure without detail.
"""

from typing import List, Optional


class GradeLedgerError(Exception):
    """Base exception for all GradeLedger errors."""

    pass


class AuthError(GradeLedgerError):
    """Base class for recoverable, user-facing account errors."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Request could not be completed"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown email or wrong password. Never says which."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password"


class AccountLocked(AuthError):
    """Too many failed logins; the account is temporarily locked."""

    status_code = 423
    code = "account_locked"

    def __init__(self, minutes_remaining: int):
        self.minutes_remaining = minutes_remaining
        super().__init__(
            f"Account is locked. Please try again in {minutes_remaining} minutes."
        )


class AccountDeactivated(AuthError):
    """Correct credentials, but an administrator deactivated the account."""

    status_code = 403
    code = "account_deactivated"
    message = "Your account has been deactivated. Please contact an administrator."


class DuplicateEmail(AuthError):
    status_code = 409
    code = "duplicate_email"
    message = "An account with this email already exists"


class WeakPassword(AuthError):
    """Password failed one or more strength rules.

    Only the first violation is used as the message; the full list is kept
    on the exception for callers that want it.
    """

    status_code = 422
    code = "weak_password"

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        first = self.violations[0] if self.violations else "Password is too weak"
        super().__init__(first)


class InvalidRole(AuthError):
    status_code = 422
    code = "invalid_role"
    message = "Role must be student or lecturer"


class ValidationFailed(AuthError):
    status_code = 422
    code = "validation_failed"


class LastAdminProtected(AuthError):
    status_code = 409
    code = "last_admin_protected"
    message = "Cannot deactivate the last active administrator"


class NotFound(AuthError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: object = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found")


class InfrastructureError(GradeLedgerError):
    """Raised when the persistence layer fails (connectivity, bad shape)."""

    pass
