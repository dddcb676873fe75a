"""Layer store contract and record types.

The resolver and the workflow never talk to a database directly. They use
a ``LayerStore`` passed in explicitly; writes go through a
``StoreTransaction`` so a state change and its audit entry commit together.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol

from schedule_resolver.timeline.types import (
    LocalTimeRange,
    StaffRecord,
    StatusInterval,
    Weekday,
    WeeklyHours,
)
from schedule_resolver.workflow.state_machine import PendingStatus


@dataclass(frozen=True)
class AdjustmentRecord:
    """A persisted Layer-3 adjustment, with workflow metadata."""

    id: int
    staff_id: int
    day: date
    status: str
    start_at: datetime
    end_at: datetime
    memo: str | None = None
    reason: str | None = None
    is_pending: bool = False
    pending_type: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    batch_id: str | None = None
    submission_id: str | None = None
    submission_seq: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_workflow(self) -> bool:
        """Created through the approval workflow (or bulk-imported as pending).

        A tagged row that was never pending and carries no decision is a
        plain adjustment, not a request.
        """
        if self.pending_type is None:
            return False
        return self.is_pending or self.approved_at is not None or self.rejected_at is not None

    @property
    def state(self) -> PendingStatus | None:
        """Workflow state, or None for direct overrides."""
        if not self.is_workflow:
            return None
        if self.approved_at is not None:
            return PendingStatus.APPROVED
        if self.rejected_at is not None:
            return PendingStatus.REJECTED
        if self.is_awaiting_decision:
            return PendingStatus.PENDING
        return None

    @property
    def is_awaiting_decision(self) -> bool:
        return self.is_pending and self.approved_at is None and self.rejected_at is None

    @property
    def group_key(self) -> str:
        """Rows of one submission share a key; loose rows stand alone."""
        return self.submission_id or f"adjustment:{self.id}"


@dataclass(frozen=True)
class NewAdjustment:
    """Values for an adjustment insert."""

    staff_id: int
    day: date
    status: str
    start_at: datetime
    end_at: datetime
    memo: str | None = None
    reason: str | None = None
    is_pending: bool = False
    pending_type: str | None = None
    batch_id: str | None = None
    submission_id: str | None = None
    submission_seq: int = 0


@dataclass(frozen=True)
class ApprovalLogRecord:
    """Immutable audit entry for one workflow transition."""

    id: int
    adjustment_id: int
    sequence: int
    from_state: str
    to_state: str
    actor: str
    reason: str | None
    created_at: datetime


@dataclass(frozen=True)
class NewAuditEntry:
    adjustment_id: int
    from_state: str
    to_state: str
    actor: str
    reason: str | None = None


@dataclass(frozen=True)
class PendingFilter:
    """Selection for pending listings and reconciliation."""

    staff_id: int | None = None
    date_from: date | None = None
    date_to: date | None = None
    pending_type: str | None = None
    state: PendingStatus | None = PendingStatus.PENDING

    @classmethod
    def for_day(cls, staff_id: int | None = None, day: date | None = None) -> PendingFilter:
        return cls(staff_id=staff_id, date_from=day, date_to=day)


class StoreTransaction(Protocol):
    """Unit of work over the layer store. Commits on clean exit."""

    async def get_adjustment(self, adjustment_id: int) -> AdjustmentRecord | None:
        ...

    async def find_active_pending(
        self, staff_id: int, day: date, pending_type: str
    ) -> list[AdjustmentRecord]:
        ...

    async def submission_members(self, record: AdjustmentRecord) -> list[AdjustmentRecord]:
        ...

    async def put_adjustment(self, record: NewAdjustment) -> int:
        ...

    async def compare_and_set_decision(
        self,
        adjustment_id: int,
        to_state: PendingStatus,
        actor: str,
        at: datetime,
        reason: str | None = None,
    ) -> bool:
        """Move a row out of "awaiting decision"; False if it already left."""
        ...

    async def update_pending(
        self,
        adjustment_id: int,
        at: datetime,
        *,
        status: str | None = None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        memo: str | None = None,
    ) -> bool:
        """Edit a row only while it is awaiting decision."""
        ...

    async def append_audit(self, entry: NewAuditEntry) -> ApprovalLogRecord:
        ...


class LayerStore(Protocol):
    """Read access to the three schedule layers plus workflow writes.

    Every call completes or fails within the configured timeout; failures
    surface as StoreUnavailableError.
    """

    async def get_staff(self, staff_id: int) -> StaffRecord | None:
        ...

    async def list_staff(self) -> list[StaffRecord]:
        ...

    async def list_active_staff(self) -> list[int]:
        ...

    async def contract_holders(self) -> set[int]:
        """Staff ids that have a contract row."""
        ...

    async def get_weekly_hours(self, staff_id: int) -> WeeklyHours | None:
        ...

    async def get_contract_hours(
        self, staff_id: int, weekday: Weekday
    ) -> LocalTimeRange | None:
        ...

    async def get_monthly_entries(self, staff_id: int, day: date) -> list[StatusInterval]:
        ...

    async def get_adjustments(
        self, staff_id: int, day: date, include_pending: bool = False
    ) -> list[StatusInterval]:
        """Layer-3 intervals for a day.

        ``include_pending=False``: direct and approved adjustments.
        ``include_pending=True``: requests awaiting decision only.
        """
        ...

    async def get_adjustment(self, adjustment_id: int) -> AdjustmentRecord | None:
        ...

    async def list_adjustments(self, flt: PendingFilter) -> list[AdjustmentRecord]:
        ...

    async def put_adjustment(self, record: NewAdjustment) -> int:
        ...

    async def list_audit(
        self,
        adjustment_id: int | None = None,
        actor: str | None = None,
        since: datetime | None = None,
    ) -> list[ApprovalLogRecord]:
        ...

    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        ...
