"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from psycopg_pool import ConnectionPool
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.adapters.delivery import (
    BoundedNotificationSender,
    BoundedVerificationSender,
    ConsoleNotificationSender,
    ConsoleVerificationSender,
)
from src.adapters.repository import (
    InMemoryIdentityRepository,
    PostgresIdentityRepository,
    run_migrations,
)
from src.api.errors import envelope, error_response
from src.api.v1 import router as v1_router
from src.config.logging import configure_logging
from src.config.settings import Settings, get_settings
from src.domain.exceptions import IdentityError
from src.domain.models import utcnow

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {"name": "registration", "description": "Progressive patient registration and verification"},
    {"name": "auth", "description": "Login, session refresh, logout and password lifecycle"},
    {"name": "profile", "description": "Authenticated profile management"},
    {"name": "organizations", "description": "Organization (hospital) accounts"},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates the repository (database pool + migrations, or in-memory)
    - Wraps console senders with bounded-timeout delivery
    - Closes connection pool on shutdown
    """
    settings: Settings = app.state.settings

    logger.info("Starting application (%s)...", settings.environment)

    pool = None
    if settings.repository_backend == "postgres":
        logger.info("Connecting to database...")
        # Create connection pool with explicit sizing
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )
        logger.info("Running database migrations...")
        run_migrations(pool)
        app.state.repository = PostgresIdentityRepository(pool)
    else:
        logger.warning("Using in-memory repository; data is lost on restart")
        app.state.repository = InMemoryIdentityRepository()

    app.state.pool = pool
    app.state.code_sender = BoundedVerificationSender(
        ConsoleVerificationSender(), timeout=settings.delivery_timeout_seconds
    )
    app.state.notifier = BoundedNotificationSender(
        ConsoleNotificationSender(), timeout=settings.delivery_timeout_seconds
    )

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if pool is not None:
        pool.close()
        logger.info("Database connection pool closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; ``settings`` defaults to the environment."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="ayursutra-identity",
        description="Patient and organization identity lifecycle API",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.clock = utcnow

    @app.exception_handler(IdentityError)
    async def handle_identity_error(request: Request, exc: IdentityError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"][1:]) or "body",
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=envelope(False, "Validation errors", errors=errors),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(False, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        errors = None if settings.is_production else [type(exc).__name__]
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=envelope(False, "Internal server error", errors=errors),
        )

    # Include v1 API routes
    app.include_router(v1_router, prefix="/v1")

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, str]:
        """
        Health check endpoint with database validation.

        Returns 200 OK if application and database are healthy.
        Raises exception if database connection fails.
        """
        pool = request.app.state.pool
        if pool is not None:
            with pool.connection() as conn:
                conn.execute("SELECT 1")

        return {"status": "healthy", "repository": request.app.state.settings.repository_backend}

    return app


app = create_app()
