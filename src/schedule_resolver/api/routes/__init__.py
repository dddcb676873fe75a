"""API routes."""

from schedule_resolver.api.routes.health import router as health_router
from schedule_resolver.api.routes.pending import router as pending_router
from schedule_resolver.api.routes.schedules import router as schedules_router

__all__ = ["health_router", "pending_router", "schedules_router"]
