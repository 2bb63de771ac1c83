"""
GradeLedger - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
"""

from pydantic_settings import BaseSettings
from typing import List


# Mount point of every API router
API_PREFIX = "/api/v1"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        DATABASE_URL: SQLAlchemy URL for users, sessions, courses and audit logs
        SECRET_KEY: Signing key for session tokens
        BCRYPT_ROUNDS: bcrypt work factor for password hashes
        MAX_LOGIN_ATTEMPTS: Failed logins before a temporary lock (<= 0 disables)
        LOCKOUT_MINUTES: Duration of a temporary lock (<= 0 disables)
        SESSION_EXPIRE_HOURS: Absolute lifetime of a login session
        STUDENT_ID_PREFIX: Prefix of generated student identifiers
        AUDIT_QUEUE_SIZE: Pending audit events held before new ones are dropped
        ALLOWED_ORIGINS: CORS allowed origins for the frontend
    """

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./gradeledger.db"

    # Security
    SECRET_KEY: str = ""  # Must be set via environment
    JWT_ALGORITHM: str = "HS256"
    BCRYPT_ROUNDS: int = 12

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Sessions
    SESSION_EXPIRE_HOURS: int = 24  # Absolute, not sliding
    SESSION_COOKIE_NAME: str = "gradeledger_session"
    SESSION_COOKIE_SECURE: bool = False

    # Accounts
    STUDENT_ID_PREFIX: str = "STU"

    # Audit trail
    AUDIT_QUEUE_SIZE: int = 1000

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
