"""Pending request API endpoints."""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from schedule_resolver.api.dependencies import Actor, OptionalActor, Service
from schedule_resolver.api.schemas import (
    AuditEntryResponse,
    BulkDecisionRequest,
    BulkDecisionResponse,
    DecisionRequest,
    ErrorResponse,
    PendingCreate,
    PendingCreateResponse,
    PendingListResponse,
    PendingResponse,
    PendingUpdate,
    ReconcileRequest,
    ReconciliationResponse,
)
from schedule_resolver.store.base import PendingFilter
from schedule_resolver.timeline.types import Decision
from schedule_resolver.workflow.pending_service import PendingRecord
from schedule_resolver.workflow.state_machine import PendingStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pending", tags=["pending"])


def _pending_response(record: PendingRecord) -> PendingResponse:
    return PendingResponse.model_validate(record.to_dict())


def _list_response(records: list[PendingRecord]) -> PendingListResponse:
    return PendingListResponse(
        items=[_pending_response(r) for r in records],
        total=len(records),
    )


# ============================================================================
# Submit and query
# ============================================================================


@router.post(
    "",
    response_model=PendingCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def submit_pending(
    service: Service,
    actor: OptionalActor,
    payload: PendingCreate,
) -> PendingCreateResponse:
    """Submit a proposed schedule change for approval."""
    pending_id = await service.submit_pending(
        payload.staff_id,
        payload.day,
        [i.model_dump() for i in payload.intervals],
        memo=payload.memo,
        pending_type=payload.pending_type,
        actor=actor,
    )
    return PendingCreateResponse(pending_id=pending_id)


@router.get(
    "",
    response_model=PendingListResponse,
    responses={422: {"model": ErrorResponse}},
)
async def list_pending(
    service: Service,
    staff_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    pending_type: str | None = None,
    state: Annotated[PendingStatus, Query()] = PendingStatus.PENDING,
) -> PendingListResponse:
    """List pending requests, awaiting decision by default."""
    records = await service.list_pending(
        PendingFilter(
            staff_id=staff_id,
            date_from=date_from,
            date_to=date_to,
            pending_type=pending_type,
            state=state,
        )
    )
    return _list_response(records)


@router.get(
    "/monthly/{year}/{month}",
    response_model=PendingListResponse,
    responses={422: {"model": ErrorResponse}},
)
async def monthly_pending(
    service: Service,
    year: Annotated[int, Path()],
    month: Annotated[int, Path()],
) -> PendingListResponse:
    """Every workflow request in a month, decided or not."""
    return _list_response(await service.monthly_pending(year, month))


@router.get(
    "/{pending_id}",
    response_model=PendingResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_pending(
    service: Service,
    pending_id: Annotated[int, Path()],
) -> PendingResponse:
    return _pending_response(await service.get_pending(pending_id))


@router.patch(
    "/{pending_id}",
    response_model=PendingResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def update_pending(
    service: Service,
    actor: Actor,
    pending_id: Annotated[int, Path()],
    payload: PendingUpdate,
) -> PendingResponse:
    """Edit a request while it is still awaiting decision."""
    record = await service.update_pending(
        pending_id, actor, **payload.model_dump(exclude_none=True)
    )
    return _pending_response(record)


# ============================================================================
# Decisions
# ============================================================================


@router.post(
    "/bulk-decision",
    response_model=BulkDecisionResponse,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def bulk_decision(
    service: Service,
    actor: Actor,
    payload: BulkDecisionRequest,
) -> BulkDecisionResponse:
    """Approve or reject many requests; failures are reported per id."""
    result = await service.bulk_decide(
        payload.pending_ids, payload.decision, actor, payload.reason
    )
    return BulkDecisionResponse(succeeded=result.succeeded, failed=result.failed)


@router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def reconcile(
    service: Service,
    actor: Actor,
    payload: ReconcileRequest,
) -> ReconciliationResponse:
    """Collapse duplicate active requests. Safe to re-run.

    Rejections are recorded under the system actor; the caller is logged.
    """
    report = await service.reconcile(payload.staff_id, payload.day, dry_run=payload.dry_run)
    logger.info(
        "Reconciliation requested by %s: %d duplicate groups, %d rejected%s",
        actor,
        report.duplicate_groups,
        report.rejected_count,
        " (dry run)" if report.dry_run else "",
    )
    return ReconciliationResponse.model_validate(report)


@router.post(
    "/{pending_id}/approve",
    response_model=PendingResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_pending(
    service: Service,
    actor: Actor,
    pending_id: Annotated[int, Path()],
    payload: DecisionRequest | None = None,
) -> PendingResponse:
    """Approve a request; it becomes part of the authoritative schedule."""
    reason = payload.reason if payload else None
    record = await service.decide(pending_id, Decision.APPROVE, actor, reason)
    return _pending_response(record)


@router.post(
    "/{pending_id}/reject",
    response_model=PendingResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reject_pending(
    service: Service,
    actor: Actor,
    pending_id: Annotated[int, Path()],
    payload: DecisionRequest | None = None,
) -> PendingResponse:
    """Reject a request; it stays queryable but never resolves."""
    reason = payload.reason if payload and payload.reason else "Rejected"
    record = await service.decide(pending_id, Decision.REJECT, actor, reason)
    return _pending_response(record)


@router.get(
    "/{pending_id}/history",
    response_model=list[AuditEntryResponse],
    responses={404: {"model": ErrorResponse}},
)
async def pending_history(
    service: Service,
    pending_id: Annotated[int, Path()],
) -> list[AuditEntryResponse]:
    """Approval log of a request, oldest first."""
    entries = await service.history(pending_id)
    return [AuditEntryResponse.model_validate(e) for e in entries]
