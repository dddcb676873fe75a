"""Resolved schedule endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query

from schedule_resolver.api.dependencies import Service
from schedule_resolver.api.schemas import ErrorResponse, MonthScheduleResponse, TimelineResponse
from schedule_resolver.timeline.types import ResolvedTimeline

router = APIRouter(prefix="/schedules", tags=["schedules"])


def _timeline_response(timeline: ResolvedTimeline) -> TimelineResponse:
    return TimelineResponse.model_validate(
        {**timeline.to_dict(), "has_proposal": timeline.has_proposal}
    )


@router.get(
    "/month/{year}/{month}",
    response_model=MonthScheduleResponse,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_month_schedule(
    service: Service,
    year: Annotated[int, Path()],
    month: Annotated[int, Path()],
    staff_id: Annotated[list[int] | None, Query()] = None,
) -> MonthScheduleResponse:
    """Resolve a calendar month for the given staff (all active staff by default)."""
    timelines = await service.resolve_month(staff_id, year, month)
    items = [_timeline_response(timelines[key]) for key in sorted(timelines)]
    return MonthScheduleResponse(year=year, month=month, items=items, total=len(items))


@router.get(
    "/{staff_id}/{day}",
    response_model=TimelineResponse,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_schedule(
    service: Service,
    staff_id: Annotated[int, Path()],
    day: Annotated[str, Path(description="Local date, YYYY-MM-DD")],
) -> TimelineResponse:
    """Resolved timeline plus the pending preview for one staff member and date."""
    timeline = await service.resolve_schedule(staff_id, day)
    return _timeline_response(timeline)
