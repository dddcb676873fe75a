"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from schedule_resolver import __version__
from schedule_resolver.api.routes import health_router, pending_router, schedules_router
from schedule_resolver.config import Settings, configure_logging, get_settings
from schedule_resolver.errors import (
    AlreadyDecidedError,
    DuplicateRequestError,
    NotFoundError,
    ScheduleError,
    StoreUnavailableError,
    ValidationError,
)
from schedule_resolver.service import ScheduleService

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[ScheduleError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DuplicateRequestError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyDecidedError: status.HTTP_409_CONFLICT,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: ScheduleError) -> int:
    """HTTP status for a schedule error (most specific class wins)."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    settings: Settings | None = None,
    service: ScheduleService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When ``service`` is given the application uses it as-is and leaves its
    lifecycle to the caller; otherwise one is built from settings on startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owned = None
        if getattr(app.state, "service", None) is None:
            owned = ScheduleService.from_settings(settings)
            await owned.create_schema()
            app.state.service = owned
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(
        title="Schedule Resolver API",
        description="Layered schedule resolution and pending-approval workflow",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ScheduleError)
    async def schedule_error_handler(request: Request, exc: ScheduleError) -> JSONResponse:
        """Map typed schedule errors to HTTP responses."""
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(schedules_router, prefix="/api/v1")
    app.include_router(pending_router, prefix="/api/v1")

    return app


def build_app() -> FastAPI:
    """Factory for uvicorn: settings and logging from the environment."""
    settings = get_settings()
    configure_logging(settings.log_level)
    return create_app(settings)
