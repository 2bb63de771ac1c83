"""
GradeLedger - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS and security middleware
- Authentication, admin and course routes
- Database and audit recorder lifecycle
- Exception handlers for account errors and gate denials

Security: Every protected route passes the Authorization Gate.
Storage faults are reported as a generic failure, never in detail.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.admin.routes import router as admin_router
from backend.audit.recorder import AuditRecorder
from backend.audit.store import AuditStore
from backend.auth.database import get_engine, get_session_factory, init_db
from backend.auth.errors import AuthError, InfrastructureError
from backend.auth.lifecycle import AccountLifecycleManager
from backend.auth.lockout import LockoutTracker
from backend.auth.routes import router as auth_router
from backend.auth.service import AuthService
from backend.auth.sessions import SessionStore
from backend.auth.store import NotificationStore, ResourceStore, UserStore
from backend.config import API_PREFIX, settings
from backend.courses.routes import router as courses_router
from backend.gateway.middleware import SecurityMiddleware
from backend.gateway.rbac import AuthorizationDenied
from backend.gateway.responses import render_auth_error, render_denial


logger = logging.getLogger("gradeledger")

VERSION = "0.1.0"


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def wire_services(app: FastAPI, engine) -> None:
    """Build stores and services on app.state."""
    session_factory = get_session_factory(engine)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory

    app.state.users = UserStore(session_factory)
    app.state.resources = ResourceStore(session_factory)
    app.state.notifications = NotificationStore(session_factory)
    app.state.sessions = SessionStore(session_factory)
    app.state.audit_store = AuditStore(session_factory)
    app.state.recorder = AuditRecorder(app.state.audit_store)

    app.state.auth_service = AuthService(
        app.state.users,
        app.state.sessions,
        LockoutTracker(app.state.users),
        app.state.recorder,
    )
    app.state.lifecycle = AccountLifecycleManager(
        app.state.users,
        app.state.notifications,
        app.state.recorder,
    )


def create_app(database_url: Optional[str] = None) -> FastAPI:
    """
    Application factory.

    Args:
        database_url: Override DATABASE_URL (tests pass "sqlite://")
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
            - Create tables and wire stores/services
            - Invalidate sessions that expired while the app was down
            - Start the audit recorder queue
        Shutdown:
            - Drain pending audit events
            - Dispose the engine
        """
        engine = get_engine(database_url or settings.DATABASE_URL)
        init_db(engine)
        wire_services(app, engine)
        swept = await app.state.sessions.cleanup_expired_sessions()
        if swept:
            logger.info("Invalidated %d expired sessions", swept)
        app.state.recorder.start()
        logger.info("GradeLedger started")

        yield

        await app.state.recorder.stop()
        engine.dispose()
        logger.info("GradeLedger stopped")

    app = FastAPI(
        title="GradeLedger",
        description="Role-based academic records with account approval and audit trail",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS - restricted to the configured frontend origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
    )
    app.add_middleware(SecurityMiddleware)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return render_auth_error(exc)

    @app.exception_handler(AuthorizationDenied)
    async def denied_handler(request: Request, exc: AuthorizationDenied):
        return render_denial(request, exc.decision)

    @app.exception_handler(InfrastructureError)
    async def infrastructure_handler(request: Request, exc: InfrastructureError):
        logger.error("Infrastructure failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "An unexpected error occurred"},
        )

    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=f"{API_PREFIX}/admin", tags=["admin"])
    app.include_router(courses_router, prefix=API_PREFIX)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for local dev tooling."""
        return {
            "status": "healthy",
            "version": VERSION,
            "services": {
                "database": True,
                "audit_recorder": app.state.recorder.running,
            },
        }

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "GradeLedger",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


configure_logging()
app = create_app()
