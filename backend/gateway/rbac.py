"""
GradeLedger - Authorization Gate

Ordered, composable access predicates evaluated per request.

Each predicate returns a Decision; authorize() walks the chain and stops at
the first failure. The chain built by gate() always starts with
AuthenticationRequired and ApprovalRequired, so an anonymous caller is
reported as UNAUTHENTICATED before any role or ownership question is asked.

Security:
- Deny-by-default: role permissions come only from policies.yaml
- Ownership and enrollment predicates fail closed when the record is missing
- Roles and approval states are closed enums; an unknown value raises
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set
from uuid import UUID

import yaml

from backend.auth.errors import GradeLedgerError
from backend.auth.models import ApprovalStatus, Role
from backend.auth.principal import SessionPrincipal
from backend.auth.store import ResourceStore


logger = logging.getLogger("gradeledger.gateway")


class Outcome(str, Enum):
    """Result of an authorization check."""
    OK = "ok"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    PENDING_APPROVAL = "pending_approval"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    message: str = ""

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def allow(cls) -> "Decision":
        return cls(Outcome.OK)

    @classmethod
    def deny(cls, outcome: Outcome, message: str) -> "Decision":
        return cls(outcome, message)


class AuthorizationDenied(GradeLedgerError):
    """Raised by the HTTP layer when a gate chain does not pass."""

    def __init__(self, decision: Decision):
        self.decision = decision
        super().__init__(decision.message or decision.outcome.value)


class Permission(str, Enum):
    """Granular permissions for system actions."""
    # Account administration
    MANAGE_USERS = "manage:users"
    READ_AUDIT = "read:audit"
    READ_STATS = "read:stats"

    # Courses
    CREATE_COURSE = "create:course"
    MANAGE_ENROLLMENTS = "manage:enrollments"
    VIEW_ROSTER = "view:roster"
    VIEW_COURSE = "view:course"

    # Own records
    VIEW_OWN_RECORDS = "view:own_records"


class RBACPolicy:
    """
    Manages role-to-permission mappings loaded from policies.yaml.

    Singleton; the file is read once per process.
    """

    _instance = None
    _policies: Dict[str, Set[str]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policies()
        return cls._instance

    def _load_policies(self):
        """Load policies from YAML configuration file."""
        policy_path = Path(__file__).parent / "policies.yaml"

        if not policy_path.exists():
            # Default deny-all if no policy file
            logger.warning("No policy file at %s; every permission is denied", policy_path)
            self._policies = {}
            return

        with open(policy_path, "r") as f:
            config = yaml.safe_load(f) or {}

        self._policies = {
            role: set(perms or [])
            for role, perms in config.get("roles", {}).items()
        }

    def has_permission(self, role: Role, permission: Permission) -> bool:
        role_perms = self._policies.get(Role(role).value, set())
        return permission.value in role_perms

    def roles_with(self, permission: Permission) -> FrozenSet[Role]:
        """Every role granted the permission."""
        return frozenset(role for role in Role if self.has_permission(role, permission))


# ----------------------------------------------------------------------
# Predicates
# ----------------------------------------------------------------------

class Predicate:
    """One access check. Subclasses implement evaluate()."""

    name = "predicate"

    async def evaluate(
        self,
        principal: Optional[SessionPrincipal],
        resources: Optional[ResourceStore],
    ) -> Decision:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


def _forbidden(message: str = "You do not have permission to access this resource") -> Decision:
    return Decision.deny(Outcome.FORBIDDEN, message)


def _role_of(principal: SessionPrincipal) -> Role:
    # Raises ValueError on anything outside the closed set
    return Role(principal.role)


class AuthenticationRequired(Predicate):
    name = "authentication_required"

    async def evaluate(self, principal, resources) -> Decision:
        if principal is None:
            return Decision.deny(Outcome.UNAUTHENTICATED, "Please log in to continue")
        return Decision.allow()


class ApprovalRequired(Predicate):
    """Admins skip approval; everyone else must be approved."""

    name = "approval_required"

    async def evaluate(self, principal, resources) -> Decision:
        role = _role_of(principal)
        if role is Role.ADMIN:
            return Decision.allow()
        if role not in (Role.LECTURER, Role.STUDENT):
            raise ValueError(f"Unhandled role: {role!r}")

        status = ApprovalStatus(principal.approval_status)
        if status is ApprovalStatus.APPROVED:
            return Decision.allow()
        if status is ApprovalStatus.PENDING:
            return Decision.deny(Outcome.PENDING_APPROVAL, "Your account is pending approval")
        if status is ApprovalStatus.REJECTED:
            return Decision.deny(Outcome.PENDING_APPROVAL, "Your account registration was rejected")
        raise ValueError(f"Unhandled approval status: {status!r}")


class RoleMembership(Predicate):
    name = "role_membership"

    def __init__(self, roles: Iterable[Role]):
        self.roles: FrozenSet[Role] = frozenset(Role(r) for r in roles)

    @classmethod
    def for_permission(cls, permission: Permission) -> "RoleMembership":
        """Roles granted the permission in policies.yaml."""
        return cls(RBACPolicy().roles_with(permission))

    async def evaluate(self, principal, resources) -> Decision:
        if _role_of(principal) in self.roles:
            return Decision.allow()
        return _forbidden()

    def __repr__(self) -> str:
        return f"<RoleMembership {sorted(r.value for r in self.roles)}>"


class ResourceOwnership(Predicate):
    """Admins pass; otherwise the principal must be the owner."""

    name = "resource_ownership"

    def __init__(self, owner_id: Optional[UUID]):
        self.owner_id = owner_id

    async def evaluate(self, principal, resources) -> Decision:
        if _role_of(principal) is Role.ADMIN:
            return Decision.allow()
        if self.owner_id is not None and principal.id == self.owner_id:
            return Decision.allow()
        return _forbidden()


class CourseOwnership(Predicate):
    """Admins pass; lecturers pass on courses they teach."""

    name = "course_ownership"

    def __init__(self, course_id: Optional[UUID]):
        self.course_id = course_id

    async def evaluate(self, principal, resources) -> Decision:
        role = _role_of(principal)
        if role is Role.ADMIN:
            return Decision.allow()
        if role is Role.STUDENT:
            return _forbidden()
        if role is not Role.LECTURER:
            raise ValueError(f"Unhandled role: {role!r}")

        if self.course_id is None or resources is None:
            return _forbidden()
        course = await resources.find_course_by_id(self.course_id)
        if course is None or course.lecturer_id != principal.id:
            return _forbidden("You do not teach this course")
        return Decision.allow()


class EnrollmentMembership(Predicate):
    """Admins and lecturers pass; students need an active enrollment."""

    name = "enrollment_membership"

    def __init__(self, course_id: Optional[UUID]):
        self.course_id = course_id

    async def evaluate(self, principal, resources) -> Decision:
        role = _role_of(principal)
        if role in (Role.ADMIN, Role.LECTURER):
            return Decision.allow()
        if role is not Role.STUDENT:
            raise ValueError(f"Unhandled role: {role!r}")

        if self.course_id is None or resources is None:
            return _forbidden()
        enrollments = await resources.list_active_enrollments_for_student(principal.id)
        if any(e.course_id == self.course_id for e in enrollments):
            return Decision.allow()
        return _forbidden("You are not enrolled in this course")


# ----------------------------------------------------------------------
# Chains
# ----------------------------------------------------------------------

def gate(*predicates: Predicate) -> List[Predicate]:
    """
    Build a chain: authentication, approval, then the given predicates.

    Usage:
        chain = gate(RoleMembership([Role.LECTURER]), CourseOwnership(course_id))
        decision = await authorize(principal, chain, resources)
    """
    return [AuthenticationRequired(), ApprovalRequired(), *predicates]


async def authorize(
    principal: Optional[SessionPrincipal],
    chain: Sequence[Predicate],
    resources: Optional[ResourceStore] = None,
) -> Decision:
    """
    Evaluate predicates in order and return the first failure, or OK.

    Later predicates never run once one fails.
    """
    for predicate in chain:
        decision = await predicate.evaluate(principal, resources)
        if not decision.allowed:
            logger.info(
                "Access denied by %s for %s: %s",
                predicate.name,
                principal.id if principal is not None else "anonymous",
                decision.outcome.value,
            )
            return decision
    return Decision.allow()
