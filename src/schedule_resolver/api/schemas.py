"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Timeline schemas
# ============================================================================


class IntervalResponse(BaseModel):
    """One resolved status interval."""

    status: str
    start: str
    end: str
    layer: str
    source_id: int | None = None
    memo: str | None = None


class TimelineResponse(BaseModel):
    """Resolved timeline for one staff member and local date."""

    model_config = ConfigDict(populate_by_name=True)

    staff_id: int
    day: date = Field(alias="date")
    intervals: list[IntervalResponse]
    proposed: list[IntervalResponse]
    has_proposal: bool
    warnings: list[str] = []


class MonthScheduleResponse(BaseModel):
    """Resolved timelines for a calendar month."""

    year: int
    month: int
    items: list[TimelineResponse]
    total: int


# ============================================================================
# Pending request schemas
# ============================================================================


class IntervalInput(BaseModel):
    """Proposed interval. Times are "HH:MM" or decimal hours."""

    status: str
    start: str | float
    end: str | float


class PendingCreate(BaseModel):
    """Schema for submitting a pending request."""

    model_config = ConfigDict(populate_by_name=True)

    staff_id: int
    day: date = Field(alias="date")
    intervals: list[IntervalInput] = Field(min_length=1)
    memo: str | None = None
    pending_type: str | None = None


class PendingCreateResponse(BaseModel):
    pending_id: int
    state: str = "pending"


class PendingUpdate(BaseModel):
    """Schema for editing a request that is still awaiting decision."""

    status: str | None = None
    start: str | float | None = None
    end: str | float | None = None
    memo: str | None = None


class PendingResponse(BaseModel):
    """Schema for pending request response."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    staff_id: int
    day: date = Field(alias="date")
    status: str
    start: str
    end: str
    memo: str | None = None
    pending_type: str | None = None
    state: str
    submission_id: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None


class PendingListResponse(BaseModel):
    """Schema for listing pending requests."""

    items: list[PendingResponse]
    total: int


# ============================================================================
# Decision schemas
# ============================================================================


class DecisionRequest(BaseModel):
    reason: str | None = None


class BulkDecisionRequest(BaseModel):
    """Schema for deciding many requests at once."""

    pending_ids: list[int] = Field(min_length=1)
    decision: str
    reason: str | None = None


class BulkDecisionResponse(BaseModel):
    succeeded: list[int]
    failed: list[dict[str, Any]]


# ============================================================================
# Reconciliation schemas
# ============================================================================


class ReconcileRequest(BaseModel):
    """Schema for a reconciliation run."""

    model_config = ConfigDict(populate_by_name=True)

    staff_id: int | None = None
    day: date | None = Field(default=None, alias="date")
    dry_run: bool = False


class ReconciliationResponse(BaseModel):
    """Schema for reconciliation response."""

    model_config = ConfigDict(from_attributes=True)

    groups_scanned: int
    duplicate_groups: int
    kept: list[int]
    rejected: list[int]
    skipped: list[int]
    dry_run: bool


# ============================================================================
# Audit schemas
# ============================================================================


class AuditEntryResponse(BaseModel):
    """Schema for one approval log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    adjustment_id: int
    sequence: int
    from_state: str
    to_state: str
    actor: str
    reason: str | None = None
    created_at: datetime


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
