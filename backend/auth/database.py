"""
GradeLedger - Database Configuration

SQLModel database setup with connection pooling.
Supports PostgreSQL (production) and SQLite (development).

Usage:
    from backend.auth.database import get_engine, init_db

    engine = get_engine()
    init_db(engine)  # Creates tables
"""

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from backend.config import settings


def get_database_url() -> str:
    """
    Get database URL from settings.

    Returns:
        PostgreSQL or SQLite connection string
    """
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    # Default to SQLite for local development
    return "sqlite:///./gradeledger.db"


SQLITE_BUSY_TIMEOUT = 30


def is_memory_sqlite(url: str) -> bool:
    """True for SQLite URLs without a file (sqlite:// or :memory:)."""
    if not url.startswith("sqlite"):
        return False
    database = url.split("://", 1)[1].lstrip("/").split("?", 1)[0]
    return database in ("", ":memory:")


def get_engine(database_url: str = None, echo: bool = False):
    """
    Create SQLAlchemy engine with appropriate configuration.

    Args:
        database_url: Override database URL
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or get_database_url()

    if is_memory_sqlite(url):
        # One in-memory database only exists on one connection; share it
        # across the store thread pool
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif url.startswith("sqlite"):
        # File database: a connection per thread, writers wait on the file lock
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )
    else:
        # PostgreSQL configuration with connection pooling
        engine = create_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )

    return engine


def init_db(engine) -> None:
    """
    Initialize database tables.

    Creates all tables defined in SQLModel models.
    Safe to call multiple times (uses CREATE IF NOT EXISTS).
    """
    # Import models to register them with SQLModel
    from backend.auth.models import User, Session as LoginSession, Course, Enrollment, Notification
    from backend.audit.models import AuditLog

    SQLModel.metadata.create_all(engine)


def get_session_factory(engine):
    """
    Create a session factory bound to engine.

    Returns:
        Callable that creates new database sessions
    """
    def session_factory() -> Session:
        return Session(engine, expire_on_commit=False)

    return session_factory
