"""Pending approval workflow - proposals, decisions and reconciliation."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence
from uuid import uuid4

from schedule_resolver.errors import (
    AlreadyDecidedError,
    DuplicateRequestError,
    NotFoundError,
    ScheduleError,
    StoreUnavailableError,
    ValidationError,
)
from schedule_resolver.store.base import (
    AdjustmentRecord,
    NewAdjustment,
    NewAuditEntry,
    PendingFilter,
)
from schedule_resolver.timeline.clock import WallClock
from schedule_resolver.timeline.resolver import month_days
from schedule_resolver.timeline.types import (
    DEFAULT_STATUSES,
    Decision,
    LocalTime,
    LocalTimeRange,
    normalize_status,
)
from schedule_resolver.workflow.locking import KeyedLockRegistry
from schedule_resolver.workflow.state_machine import PendingStateMachine, PendingStatus

if TYPE_CHECKING:
    from schedule_resolver.store.base import LayerStore, StoreTransaction

logger = logging.getLogger(__name__)

RECONCILE_ACTOR = "system:reconcile"
DUPLICATE_REASON = "duplicate"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class IntervalRequest:
    """One proposed status interval, in local wall-clock time."""

    status: str
    start: LocalTime
    end: LocalTime

    @classmethod
    def coerce(cls, value: IntervalRequest | Mapping[str, Any] | Sequence[Any]) -> IntervalRequest:
        """Accept an IntervalRequest, a mapping or a (status, start, end) triple.

        Times may be ``HH:MM`` strings, decimal hours or LocalTime values.
        """
        if isinstance(value, IntervalRequest):
            return value
        if isinstance(value, Mapping):
            try:
                status, start, end = value["status"], value["start"], value["end"]
            except KeyError as e:
                raise ValidationError(f"Interval is missing '{e.args[0]}'") from e
        elif isinstance(value, Sequence) and not isinstance(value, str) and len(value) == 3:
            status, start, end = value
        else:
            raise ValidationError(f"Cannot interpret interval {value!r}")
        return cls(status=status, start=LocalTime.coerce(start), end=LocalTime.coerce(end))


@dataclass(frozen=True)
class PendingRecord:
    """Workflow view of an adjustment, in local wall-clock time."""

    id: int
    staff_id: int
    day: date
    status: str
    start: LocalTime
    end: LocalTime
    memo: str | None
    pending_type: str | None
    state: PendingStatus
    submission_id: str | None = None
    batch_id: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_adjustment(cls, record: AdjustmentRecord, clock: WallClock) -> PendingRecord:
        _, start = clock.from_instant(record.start_at, record.day)
        _, end = clock.from_instant(record.end_at, record.day)
        return cls(
            id=record.id,
            staff_id=record.staff_id,
            day=record.day,
            status=record.status,
            start=start,
            end=end,
            memo=record.memo,
            pending_type=record.pending_type,
            state=record.state or PendingStatus.APPROVED,
            submission_id=record.submission_id,
            batch_id=record.batch_id,
            approved_at=record.approved_at,
            approved_by=record.approved_by,
            rejected_at=record.rejected_at,
            rejected_by=record.rejected_by,
            rejection_reason=record.rejection_reason,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "date": self.day.isoformat(),
            "status": self.status,
            "start": str(self.start),
            "end": str(self.end),
            "memo": self.memo,
            "pending_type": self.pending_type,
            "state": self.state.value,
            "submission_id": self.submission_id,
            "approved_at": self.approved_at,
            "approved_by": self.approved_by,
            "rejected_at": self.rejected_at,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
        }


@dataclass
class ReconciliationReport:
    """Result of a duplicate reconciliation run."""

    groups_scanned: int = 0
    duplicate_groups: int = 0
    kept: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    dry_run: bool = False

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)

    @property
    def is_clean(self) -> bool:
        """No duplicates were found."""
        return self.duplicate_groups == 0


@dataclass
class BulkDecisionResult:
    """Outcome of deciding many pending requests at once."""

    succeeded: list[int] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)


class PendingApprovalService:
    """Service for the pending request lifecycle.

    Operations:
    - submit: validate and persist a proposal (draft → pending)
    - approve / reject / decide: terminal decision, compare-and-swap
    - update: edit a request while it awaits a decision
    - bulk_decide: decide many requests, collecting typed failures
    - reconcile_duplicates: collapse duplicate active requests

    Every transition writes its audit entries in the same store transaction
    as the state change.
    """

    def __init__(
        self,
        store: LayerStore,
        clock: WallClock | None = None,
        locks: KeyedLockRegistry | None = None,
        statuses: Iterable[str] = DEFAULT_STATUSES,
        default_pending_type: str = "monthly-planner",
    ):
        self.store = store
        self.clock = clock or WallClock()
        self.locks = locks or KeyedLockRegistry()
        self.statuses = tuple(statuses)
        self.default_pending_type = default_pending_type

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_intervals(
        self, intervals: Iterable[IntervalRequest | Mapping[str, Any] | Sequence[Any]]
    ) -> list[IntervalRequest]:
        """Check intervals are well formed, known, inside the day and disjoint.

        Returns them normalized and sorted by start.
        """
        checked: list[IntervalRequest] = []
        for raw in intervals:
            interval = IntervalRequest.coerce(raw)
            LocalTimeRange(interval.start, interval.end)
            status = normalize_status(interval.status, self.statuses)
            checked.append(IntervalRequest(status, interval.start, interval.end))
        if not checked:
            raise ValidationError("At least one interval is required")

        checked.sort(key=lambda i: (i.start, i.end))
        for previous, current in zip(checked, checked[1:]):
            if current.start < previous.end:
                raise ValidationError(
                    f"Intervals {previous.start}-{previous.end} and "
                    f"{current.start}-{current.end} overlap"
                )
        return checked

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(
        self,
        staff_id: int,
        day: date | str,
        intervals: Iterable[IntervalRequest | Mapping[str, Any] | Sequence[Any]],
        memo: str | None = None,
        pending_type: str | None = None,
        actor: str | None = None,
    ) -> int:
        """Persist a proposal and return its pending id.

        A proposal with several intervals is stored as sibling rows sharing
        a submission id; the first row's id identifies the request.

        Raises:
            ValidationError: malformed intervals or unknown/inactive staff
            DuplicateRequestError: an active request exists for the same key
        """
        day = self.clock.parse_date(day)
        pending_type = (pending_type or self.default_pending_type).strip()
        if not pending_type:
            raise ValidationError("pending_type must not be blank")
        checked = self.validate_intervals(intervals)

        staff = await self.store.get_staff(staff_id)
        if staff is None:
            raise NotFoundError("Staff", staff_id)
        if not staff.is_active:
            raise ValidationError(f"Staff {staff_id} is inactive", staff_id=staff_id)

        actor = actor or f"staff:{staff_id}"
        key = (staff_id, day, pending_type)
        async with self.locks.hold(key):
            async with self.store.transaction() as tx:
                existing = await tx.find_active_pending(staff_id, day, pending_type)
                if existing:
                    raise DuplicateRequestError(
                        staff_id, day, pending_type, existing_id=existing[0].id
                    )

                submission_id = uuid4().hex
                ids: list[int] = []
                for seq, interval in enumerate(checked):
                    adjustment_id = await tx.put_adjustment(
                        NewAdjustment(
                            staff_id=staff_id,
                            day=day,
                            status=interval.status,
                            start_at=self.clock.to_instant(day, interval.start),
                            end_at=self.clock.to_instant(day, interval.end),
                            memo=memo,
                            is_pending=True,
                            pending_type=pending_type,
                            submission_id=submission_id,
                            submission_seq=seq,
                        )
                    )
                    await tx.append_audit(
                        NewAuditEntry(
                            adjustment_id=adjustment_id,
                            from_state=PendingStatus.DRAFT.value,
                            to_state=PendingStatus.PENDING.value,
                            actor=actor,
                            reason="submitted",
                        )
                    )
                    ids.append(adjustment_id)

        logger.info(
            "Pending request %s submitted for staff %s on %s (%s, %d interval(s))",
            ids[0],
            staff_id,
            day,
            pending_type,
            len(ids),
        )
        return ids[0]

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def approve(self, pending_id: int, actor: str, reason: str | None = None) -> PendingRecord:
        """Approve a request; it becomes a normal layer-3 adjustment."""
        return await self.decide(pending_id, Decision.APPROVE, actor, reason)

    async def reject(self, pending_id: int, actor: str, reason: str | None = None) -> PendingRecord:
        """Reject a request; it stays queryable but never resolves."""
        return await self.decide(pending_id, Decision.REJECT, actor, reason or "Rejected")

    async def decide(
        self,
        pending_id: int,
        decision: Decision | str,
        actor: str,
        reason: str | None = None,
    ) -> PendingRecord:
        """Apply a terminal decision to every row of a request.

        Raises:
            NotFoundError: no workflow request with this id
            AlreadyDecidedError: the request is already approved or rejected
        """
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown decision '{decision}'", decision=decision) from e
        if not actor or not actor.strip():
            raise ValidationError("A decision requires an actor")
        to_state = (
            PendingStatus.APPROVED if decision == Decision.APPROVE else PendingStatus.REJECTED
        )
        at = self.clock.now()

        async with self.store.transaction() as tx:
            record = await self._load(tx, pending_id)
            PendingStateMachine.validate_transition(pending_id, record.state, to_state)

            members = await tx.submission_members(record)
            members.sort(key=lambda m: (m.id != record.id, m.submission_seq, m.id))
            for member in members:
                if member.id != record.id and not member.is_awaiting_decision:
                    continue
                swapped = await tx.compare_and_set_decision(
                    member.id, to_state, actor, at, reason
                )
                if not swapped:
                    if member.id == record.id:
                        current = await tx.get_adjustment(pending_id)
                        state = current.state if current is not None else to_state
                        raise AlreadyDecidedError(pending_id, PendingStatus(state).value)
                    continue
                await tx.append_audit(
                    NewAuditEntry(
                        adjustment_id=member.id,
                        from_state=PendingStatus.PENDING.value,
                        to_state=to_state.value,
                        actor=actor,
                        reason=reason,
                    )
                )

        logger.info("Pending request %s %s by %s", pending_id, to_state.value, actor)
        return await self.get(pending_id)

    async def bulk_decide(
        self,
        pending_ids: Iterable[int],
        decision: Decision | str,
        actor: str,
        reason: str | None = None,
    ) -> BulkDecisionResult:
        """Decide each request independently, collecting typed failures."""
        result = BulkDecisionResult()
        for pending_id in dict.fromkeys(pending_ids):
            try:
                await self.decide(pending_id, decision, actor, reason)
            except StoreUnavailableError:
                raise
            except ScheduleError as e:
                logger.warning("Bulk decision skipped %s: %s", pending_id, e)
                result.failed.append(
                    {"pending_id": pending_id, "code": e.code, "message": e.message}
                )
            else:
                result.succeeded.append(pending_id)
        return result

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def update(
        self,
        pending_id: int,
        actor: str,
        *,
        status: str | None = None,
        start: LocalTime | str | float | None = None,
        end: LocalTime | str | float | None = None,
        memo: str | None = None,
    ) -> PendingRecord:
        """Edit one row of a request that is still awaiting a decision."""
        async with self.store.transaction() as tx:
            record = await self._load(tx, pending_id)
            if not PendingStateMachine.is_editable(record.state):
                raise AlreadyDecidedError(pending_id, PendingStatus(record.state).value)

            _, current_start = self.clock.from_instant(record.start_at, record.day)
            _, current_end = self.clock.from_instant(record.end_at, record.day)
            new_start = LocalTime.coerce(start) if start is not None else current_start
            new_end = LocalTime.coerce(end) if end is not None else current_end
            new_range = LocalTimeRange(new_start, new_end)
            new_status = normalize_status(status, self.statuses) if status is not None else None

            for sibling in await tx.submission_members(record):
                if sibling.id == record.id or not sibling.is_awaiting_decision:
                    continue
                _, s_start = self.clock.from_instant(sibling.start_at, sibling.day)
                _, s_end = self.clock.from_instant(sibling.end_at, sibling.day)
                if new_range.overlaps(LocalTimeRange(s_start, s_end)):
                    raise ValidationError(
                        f"Edited interval {new_range} overlaps {s_start}-{s_end} "
                        f"of the same request"
                    )

            updated = await tx.update_pending(
                pending_id,
                self.clock.now(),
                status=new_status,
                start_at=self.clock.to_instant(record.day, new_start),
                end_at=self.clock.to_instant(record.day, new_end),
                memo=memo,
            )
            if not updated:
                current = await tx.get_adjustment(pending_id)
                state = current.state if current is not None else PendingStatus.APPROVED
                raise AlreadyDecidedError(pending_id, PendingStatus(state).value)
            await tx.append_audit(
                NewAuditEntry(
                    adjustment_id=pending_id,
                    from_state=PendingStatus.PENDING.value,
                    to_state=PendingStatus.PENDING.value,
                    actor=actor,
                    reason="edited",
                )
            )

        return await self.get(pending_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, pending_id: int) -> PendingRecord:
        record = await self.store.get_adjustment(pending_id)
        if record is None or not record.is_workflow:
            raise NotFoundError("Pending request", pending_id)
        return PendingRecord.from_adjustment(record, self.clock)

    async def list_pending(self, flt: PendingFilter | None = None) -> list[PendingRecord]:
        """Requests matching the filter (default: all awaiting decision)."""
        flt = flt or PendingFilter()
        if flt.date_from and flt.date_to and flt.date_to < flt.date_from:
            raise ValidationError("date_to precedes date_from")
        records = await self.store.list_adjustments(flt)
        return [PendingRecord.from_adjustment(r, self.clock) for r in records]

    async def monthly_view(self, year: int, month: int) -> list[PendingRecord]:
        """Every workflow request in a month, decided or not, by date and start."""
        days = month_days(year, month)
        return await self.list_pending(
            PendingFilter(date_from=days[0], date_to=days[-1], state=None)
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_duplicates(
        self,
        staff_id: int | None = None,
        day: date | str | None = None,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        """Collapse duplicate active requests sharing (staff, date, type).

        The earliest-created request is kept; the others are rejected with
        reason "duplicate". Each row is re-checked right before rejection so
        a concurrent approval wins. Running again is a no-op.
        """
        if day is not None:
            day = self.clock.parse_date(day)
        report = ReconciliationReport(dry_run=dry_run)

        active = await self.store.list_adjustments(
            PendingFilter(staff_id=staff_id, date_from=day, date_to=day)
        )
        groups: dict[tuple[int, date, str], dict[str, list[AdjustmentRecord]]] = defaultdict(
            lambda: defaultdict(list)
        )
        for record in active:
            key = (record.staff_id, record.day, record.pending_type or "")
            groups[key][record.group_key].append(record)

        for key, submissions in groups.items():
            report.groups_scanned += 1
            if len(submissions) < 2:
                continue
            report.duplicate_groups += 1
            ordered = sorted(submissions.values(), key=_submission_age)
            report.kept.append(_primary(ordered[0]).id)
            logger.warning(
                "Duplicate pending requests for staff %s on %s (%s): keeping %s, rejecting %d",
                key[0],
                key[1],
                key[2],
                _primary(ordered[0]).id,
                len(ordered) - 1,
            )
            for rows in ordered[1:]:
                if dry_run:
                    report.rejected.extend(r.id for r in rows)
                    continue
                await self._reject_duplicate(rows, report)

        logger.info(
            "Reconciliation scanned %d key(s): %d duplicate group(s), %d rejected, %d skipped",
            report.groups_scanned,
            report.duplicate_groups,
            report.rejected_count,
            len(report.skipped),
        )
        return report

    async def _reject_duplicate(
        self, rows: list[AdjustmentRecord], report: ReconciliationReport
    ) -> None:
        at = self.clock.now()
        rejected: list[int] = []
        skipped: list[int] = []
        async with self.store.transaction() as tx:
            for row in rows:
                current = await tx.get_adjustment(row.id)
                if current is None or not current.is_awaiting_decision:
                    skipped.append(row.id)
                    continue
                swapped = await tx.compare_and_set_decision(
                    row.id, PendingStatus.REJECTED, RECONCILE_ACTOR, at, DUPLICATE_REASON
                )
                if not swapped:
                    skipped.append(row.id)
                    continue
                await tx.append_audit(
                    NewAuditEntry(
                        adjustment_id=row.id,
                        from_state=PendingStatus.PENDING.value,
                        to_state=PendingStatus.REJECTED.value,
                        actor=RECONCILE_ACTOR,
                        reason=DUPLICATE_REASON,
                    )
                )
                rejected.append(row.id)
        report.rejected.extend(rejected)
        report.skipped.extend(skipped)

    async def _load(self, tx: StoreTransaction, pending_id: int) -> AdjustmentRecord:
        record = await tx.get_adjustment(pending_id)
        if record is None or not record.is_workflow:
            raise NotFoundError("Pending request", pending_id)
        return record


def _submission_age(rows: list[AdjustmentRecord]) -> tuple[datetime, int]:
    return min((r.created_at or _EPOCH, r.id) for r in rows)


def _primary(rows: list[AdjustmentRecord]) -> AdjustmentRecord:
    return min(rows, key=lambda r: (r.submission_seq, r.id))
