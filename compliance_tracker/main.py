"""Compliance Tracker: Main FastAPI Application.

A tracker for compliance audit engagements: organizations and their
users, engagement participants and control profiles, findings with
remediation plans, engagement messaging and framework scoring.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import (
    AuthenticationError,
    ConcurrencyError,
    DuplicateFieldError,
    NotFoundError,
    Settings,
    StateTransitionError,
    StorageError,
    TrackerError,
    ValidationError,
    get_settings,
)
from .core.container import build_container
from .schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[TrackerError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DuplicateFieldError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    StateTransitionError: status.HTTP_409_CONFLICT,
    ConcurrencyError: status.HTTP_409_CONFLICT,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
}


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def error_details(exc: TrackerError) -> list[ErrorDetail]:
    if isinstance(exc, ValidationError):
        return [
            ErrorDetail(field=e.get("field"), message=e["message"], code=exc.code)
            for e in exc.field_errors
        ]
    if isinstance(exc, DuplicateFieldError):
        return [ErrorDetail(field=exc.field, message=exc.message, code=exc.code)]
    return []


def create_app(settings: Settings | None = None, container=None) -> FastAPI:
    """Build the application.

    Tests pass a prebuilt container; otherwise one is built from settings
    when the application starts.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        app.state.container = container or build_container(settings)
        await app.state.container.start()
        logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
        yield
        await app.state.container.stop()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
    ## Compliance Tracker API

    Runs compliance audit engagements end to end.

    ### Key Features

    - **Organizations**: Registrable email domains, status lifecycle and membership roles.
    - **Engagements**: Participants, control profiles with evidence, stage tracking.
    - **Findings**: Remediation plans with progress and overdue reporting.
    - **Frameworks**: Control assessments, compliance scores and gap analysis.
    - **Messaging**: Threaded engagement messages, mentions and notifications.

    ### Authentication

    Sign in through an OAuth provider, then send the issued token in the
    `Authorization: Bearer <token>` header.
    """,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=lifespan,
    )

    # Credentials require explicit origins, not "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
        allow_headers=["*"],
        max_age=86400,
    )

    @app.exception_handler(TrackerError)
    async def tracker_exception_handler(request: Request, exc: TrackerError):
        """Map domain errors onto HTTP statuses."""
        status_code = next(
            (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        if status_code >= 500:
            logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.code,
                message=exc.message,
                details=error_details(exc),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
        message = "An unexpected error occurred"
        if settings.debug or settings.environment != "production":
            message = f"{message}: {str(exc)[:200]}"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="internal_error", message=message, details=[]).model_dump(),
        )

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "compliance_tracker.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
