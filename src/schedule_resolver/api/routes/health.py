"""Health check endpoints."""

import logging
from datetime import date, datetime

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from schedule_resolver import __version__
from schedule_resolver.api.dependencies import Service
from schedule_resolver.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response.

    ``local_date`` is today on the configured wall clock, the date a
    resolution request without an explicit date would refer to.
    """

    status: str
    version: str
    timestamp: datetime
    local_date: date
    utc_offset: str
    database: str


async def _database_status(service: Service) -> str:
    try:
        await service.ping()
    except (SQLAlchemyError, OSError, StoreUnavailableError) as e:
        logger.warning("Database health check failed: %s", e)
        return "unhealthy"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(service: Service) -> HealthResponse:
    """Report API, wall clock and database health."""
    db_status = await _database_status(service)
    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        timestamp=service.clock.now(),
        local_date=service.clock.today(),
        utc_offset=service.settings.local_utc_offset,
        database=db_status,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(service: Service, response: Response) -> dict[str, str]:
    """Ready once the layer store answers; 503 until then."""
    if await _database_status(service) != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready"}
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
