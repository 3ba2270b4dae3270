"""
Agora Forum Backend Application.

FastAPI application serving the forum API: accounts, categories,
topics, posts, moderation and notifications.
"""

import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from agora.api.v1 import router as api_v1_router
from agora.core.bootstrap import seed_database
from agora.core.config import DEFAULT_JWT_SECRET, settings
from agora.core.database import async_session_maker, close_db, init_db
from agora.core.exceptions import ForumError, RateLimitError, StorageError
from agora.core.ratelimit import api_limiter, auth_limiter
from agora.modules.notifications import NotificationService


def configure_logging() -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    logger.info("Starting Agora Forum Backend...")

    if settings.jwt_secret_key == DEFAULT_JWT_SECRET and not settings.debug:
        logger.warning("JWT_SECRET_KEY is not set! Using default for development only.")

    # Initialize database
    await init_db()
    async with async_session_maker() as session:
        await seed_database(session)
        await NotificationService(session).purge_read()
        await session.commit()
    logger.info("Database initialized")

    logger.info("Agora Forum Backend started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Agora Forum Backend...")

    await api_limiter.disconnect()
    await auth_limiter.disconnect()

    # Close database
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Agora Forum Backend

    ## Features

    - **Accounts**: Registration, login with bearer tokens
    - **Forum**: Categories, topics and replies
    - **Moderation**: Pinning, locking, bans and role management
    - **Notifications**: Topic subscriptions and reply notifications

    ## Documentation

    - [API Docs](/docs) - Interactive Swagger UI
    - [ReDoc](/redoc) - Alternative documentation
    """,
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Error handlers ====================


@app.exception_handler(ForumError)
async def forum_error_handler(request: Request, exc: ForumError) -> ORJSONResponse:
    """Map domain errors to their status code and a JSON body."""
    if isinstance(exc, StorageError):
        logger.error(f"{request.method} {request.url.path}: {exc.message}")

    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}

    return ORJSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> ORJSONResponse:
    """Malformed request bodies and query strings are 400s with field errors."""
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return ORJSONResponse(
        status_code=400,
        content={"error": "Validation failed", "errors": errors},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> ORJSONResponse:
    logger.exception(f"Database error on {request.method} {request.url.path}: {exc}")
    return ORJSONResponse(status_code=500, content=StorageError().to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return ORJSONResponse(status_code=500, content={"error": "Something went wrong!"})


# Include API router
app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


@app.get("/health", tags=["System"])
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


@app.get("/", tags=["System"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "api": settings.api_v1_prefix,
    }
