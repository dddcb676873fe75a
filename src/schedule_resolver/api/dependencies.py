"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from schedule_resolver.service import ScheduleService


def get_service(request: Request) -> ScheduleService:
    """Get the schedule service bound to the application."""
    return request.app.state.service


async def get_actor(x_actor: Annotated[str | None, Header()] = None) -> str:
    """Extract the acting user from header."""
    if not x_actor or not x_actor.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor header is required",
        )
    return x_actor.strip()


async def get_optional_actor(x_actor: Annotated[str | None, Header()] = None) -> str | None:
    return x_actor.strip() if x_actor and x_actor.strip() else None


# Type aliases for cleaner dependency injection
Service = Annotated[ScheduleService, Depends(get_service)]
Actor = Annotated[str, Depends(get_actor)]
OptionalActor = Annotated[str | None, Depends(get_optional_actor)]
