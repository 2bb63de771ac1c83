"""
GradeLedger - Database Seed Script

Creates the initial admin account (and optional demo accounts) for
development. Seeded accounts are approved and active.

Usage:
    python -m scripts.seed_users
"""

import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session, select

from backend.config import settings
from backend.auth.database import get_engine, init_db
from backend.auth.lifecycle import generate_student_id
from backend.auth.models import ApprovalStatus, Role, User, utcnow
from backend.auth.password import hash_password, validate_password_strength


ADMIN_EMAIL = os.environ.get("GRADELEDGER_ADMIN_EMAIL", "admin@gradeledger.local")
ADMIN_PASSWORD = os.environ.get("GRADELEDGER_ADMIN_PASSWORD", "Admin@Ledger2024")

DEMO_USERS = [
    ("lecturer@gradeledger.local", "Lecturer@2024", "Lena", "Lecturer", Role.LECTURER),
    ("student@gradeledger.local", "Student@2024", "Sam", "Student", Role.STUDENT),
]


def _seed(session: Session, email: str, password: str, first: str, last: str, role: Role) -> bool:
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        print(f"User {email} already exists.")
        return False

    strength = validate_password_strength(password)
    if not strength.valid:
        raise SystemExit(f"Refusing weak password for {email}: {strength.violations[0]}")

    session.add(User(
        email=email,
        password_hash=hash_password(password),
        first_name=first,
        last_name=last,
        role=role,
        student_id=generate_student_id() if role == Role.STUDENT else None,
        approval_status=ApprovalStatus.APPROVED,
        approved_at=utcnow(),
        is_active=True,
    ))
    print(f"Created user: {email} ({role.value})")
    return True


def seed_admin_user():
    """Create default admin user for development."""
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        if _seed(session, ADMIN_EMAIL, ADMIN_PASSWORD, "System", "Administrator", Role.ADMIN):
            session.commit()
            print(f"  Email: {ADMIN_EMAIL}")
            print("  Role: admin")


def seed_demo_users():
    """Create one approved lecturer and one approved student."""
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)

    with Session(engine) as session:
        for email, password, first, last, role in DEMO_USERS:
            _seed(session, email, password, first, last, role)
        session.commit()


if __name__ == "__main__":
    print("=" * 50)
    print("GradeLedger - User Seed Script")
    print("=" * 50)

    seed_admin_user()

    print()
    response = input("Create demo lecturer and student accounts? (y/n): ")
    if response.lower() == "y":
        seed_demo_users()

    print()
    print("Done!")
