from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .backend import Backend, build_backend
from .errors import AppError
from .logging_setup import configure_logging
from .routers import admin as admin_router
from .routers import auth as auth_router
from .routers import dashboard as dashboard_router
from .routers import notifications as notifications_router
from .routers import profile as profile_router
from .routers import storage as storage_router
from .routers import todos as todos_router
from .session import SessionStore
from .settings import Settings, get_settings
from .utils import utc_now

log = structlog.get_logger()

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "auth", "description": "Sign up, sign in, OAuth, token refresh and password recovery."},
    {
        "name": "todos",
        "description": "CRUD operations for the caller's todos with filtering, sorting, search and pagination.",
    },
    {"name": "notifications", "description": "Derived notifications, drawer state and toasts (polling or SSE)."},
    {"name": "dashboard", "description": "Summary counts for the dashboard."},
    {"name": "profile", "description": "The caller's profile and avatar."},
    {"name": "admin", "description": "User listing and role management."},
    {"name": "storage", "description": "Public stored objects such as avatars."},
]


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[Backend] = None,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings; read from the environment when omitted.
        backend: Backend services; built from settings when omitted.
        clock: Source of "now" for filters, timestamps and statistics.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    backend = backend or build_backend(settings, clock=clock)
    sessions = SessionStore(backend, bootstrap_admin_emails=settings.bootstrap_admin_emails, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await sessions.start()
        log.info("app.started", backend=backend.name)
        try:
            yield
        finally:
            await sessions.stop()
            log.info("app.stopped")

    app = FastAPI(
        title="Todo Dashboard",
        description="Backend API for a personal todo dashboard with notifications and role-based access.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.backend = backend
    app.state.sessions = sessions
    app.state.clock = clock

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers for consistent JSON on validation errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": jsonable_errors(exc),
            },
        )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """
        Render application errors as {"error": <class name>, "message": <text>}.
        """
        if exc.status_code >= 500:
            log.error("request.failed", path=request.url.path, error=type(exc).__name__, message=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": type(exc).__name__, "message": exc.message},
            headers=exc.headers,
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": backend.name}

    # Include routers
    app.include_router(auth_router.router)
    app.include_router(todos_router.router)
    app.include_router(notifications_router.router)
    app.include_router(dashboard_router.router)
    app.include_router(profile_router.router)
    app.include_router(admin_router.router)
    app.include_router(storage_router.router)
    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors with exception objects in `ctx` turned into strings."""
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) if isinstance(v, Exception) else v for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


app = create_app()
