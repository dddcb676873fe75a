"""SQLAlchemy-backed layer store."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schedule_resolver.errors import DuplicateRequestError, StoreUnavailableError, ValidationError
from schedule_resolver.models import Adjustment, ApprovalLogEntry, Contract, MonthlySchedule, Staff
from schedule_resolver.store.base import (
    AdjustmentRecord,
    ApprovalLogRecord,
    NewAdjustment,
    NewAuditEntry,
    PendingFilter,
)
from schedule_resolver.timeline.clock import WallClock
from schedule_resolver.timeline.types import (
    Layer,
    LocalTimeRange,
    StaffRecord,
    StatusInterval,
    Weekday,
    WeeklyHours,
)
from schedule_resolver.workflow.state_machine import PendingStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError)


def _awaiting_decision() -> tuple[Any, ...]:
    return (
        Adjustment.is_pending.is_(True),
        Adjustment.approved_at.is_(None),
        Adjustment.rejected_at.is_(None),
    )


def _workflow_rows() -> tuple[Any, ...]:
    return (
        Adjustment.pending_type.is_not(None),
        or_(
            Adjustment.is_pending.is_(True),
            Adjustment.approved_at.is_not(None),
            Adjustment.rejected_at.is_not(None),
        ),
    )


def _to_record(row: Adjustment) -> AdjustmentRecord:
    return AdjustmentRecord(
        id=row.id,
        staff_id=row.staff_id,
        day=row.work_date,
        status=row.status,
        start_at=row.start_at,
        end_at=row.end_at,
        memo=row.memo,
        reason=row.reason,
        is_pending=row.is_pending,
        pending_type=row.pending_type,
        approved_at=row.approved_at,
        approved_by=row.approved_by,
        rejected_at=row.rejected_at,
        rejected_by=row.rejected_by,
        rejection_reason=row.rejection_reason,
        batch_id=row.batch_id,
        submission_id=row.submission_id,
        submission_seq=row.submission_seq,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_log_record(row: ApprovalLogEntry) -> ApprovalLogRecord:
    return ApprovalLogRecord(
        id=row.id,
        adjustment_id=row.adjustment_id,
        sequence=row.sequence,
        from_state=row.from_state,
        to_state=row.to_state,
        actor=row.actor,
        reason=row.reason,
        created_at=row.created_at,
    )


class SqlLayerStore:
    """LayerStore over SQLAlchemy async sessions.

    Every read opens a short-lived session; writes go through
    ``transaction()``. Each database round trip is bounded by ``timeout``
    seconds and connection-level failures surface as StoreUnavailableError.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: WallClock,
        timeout: float = 5.0,
    ):
        self._session_factory = session_factory
        self.clock = clock
        self.timeout = timeout

    async def bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await with the store timeout, mapping failures to StoreUnavailableError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(operation, f"timed out after {self.timeout}s") from e
        except _UNAVAILABLE as e:
            raise StoreUnavailableError(operation, str(e)) from e

    async def _read(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def _run() -> T:
            async with self._session_factory() as session:
                return await fn(session)

        return await self.bounded(operation, _run())

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    async def get_staff(self, staff_id: int) -> StaffRecord | None:
        async def _q(session: AsyncSession) -> StaffRecord | None:
            staff = await session.get(Staff, staff_id)
            if staff is None:
                return None
            return StaffRecord(
                id=staff.id,
                name=staff.name,
                is_active=staff.is_active,
                department=staff.department,
            )

        return await self._read("get_staff", _q)

    async def list_staff(self) -> list[StaffRecord]:
        async def _q(session: AsyncSession) -> list[StaffRecord]:
            result = await session.execute(select(Staff).order_by(Staff.id))
            return [
                StaffRecord(id=s.id, name=s.name, is_active=s.is_active, department=s.department)
                for s in result.scalars().all()
            ]

        return await self._read("list_staff", _q)

    async def list_active_staff(self) -> list[int]:
        async def _q(session: AsyncSession) -> list[int]:
            result = await session.execute(
                select(Staff.id).where(Staff.is_active.is_(True)).order_by(Staff.id)
            )
            return list(result.scalars().all())

        return await self._read("list_active_staff", _q)

    async def contract_holders(self) -> set[int]:
        async def _q(session: AsyncSession) -> set[int]:
            result = await session.execute(select(Contract.staff_id))
            return set(result.scalars().all())

        return await self._read("contract_holders", _q)

    # ------------------------------------------------------------------
    # Layer 1
    # ------------------------------------------------------------------

    async def get_weekly_hours(self, staff_id: int) -> WeeklyHours | None:
        async def _q(session: AsyncSession) -> WeeklyHours | None:
            result = await session.execute(
                select(Contract).where(Contract.staff_id == staff_id)
            )
            contract = result.scalar_one_or_none()
            if contract is None:
                return None
            return self._weekly_hours(contract)

        return await self._read("get_weekly_hours", _q)

    async def get_contract_hours(
        self, staff_id: int, weekday: Weekday
    ) -> LocalTimeRange | None:
        weekly = await self.get_weekly_hours(staff_id)
        if weekly is None:
            return None
        return weekly[weekday]

    def _weekly_hours(self, contract: Contract) -> WeeklyHours:
        slots: list[LocalTimeRange | None] = []
        for weekday, raw in zip(Weekday, contract.weekday_columns()):
            if raw is None or not raw.strip():
                slots.append(None)
                continue
            try:
                slots.append(LocalTimeRange.parse(raw))
            except ValidationError:
                logger.error(
                    "Unparseable %s hours %r on contract for staff %s",
                    weekday.name.lower(),
                    raw,
                    contract.staff_id,
                )
                slots.append(None)
        return WeeklyHours(tuple(slots))

    # ------------------------------------------------------------------
    # Layers 2 and 3
    # ------------------------------------------------------------------

    def _interval(
        self,
        day: date,
        layer: Layer,
        row: MonthlySchedule | Adjustment,
    ) -> StatusInterval | None:
        try:
            span = self.clock.local_span(day, row.start_at, row.end_at)
        except ValidationError as e:
            logger.error(
                "%s row %s for staff %s has unusable times: %s; ignored",
                layer.label,
                row.id,
                row.staff_id,
                e.message,
            )
            return None
        if span is None:
            logger.warning(
                "%s row %s lies outside %s; ignored", layer.label, row.id, day
            )
            return None
        start, end = span
        return StatusInterval(
            status=row.status,
            start=start,
            end=end,
            layer=layer,
            source_id=row.id,
            memo=row.memo,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def get_monthly_entries(self, staff_id: int, day: date) -> list[StatusInterval]:
        async def _q(session: AsyncSession) -> list[StatusInterval]:
            result = await session.execute(
                select(MonthlySchedule)
                .where(
                    MonthlySchedule.staff_id == staff_id,
                    MonthlySchedule.work_date == day,
                )
                .order_by(MonthlySchedule.start_at, MonthlySchedule.id)
            )
            rows = result.scalars().all()
            return [i for i in (self._interval(day, Layer.MONTHLY, r) for r in rows) if i]

        return await self._read("get_monthly_entries", _q)

    async def get_adjustments(
        self, staff_id: int, day: date, include_pending: bool = False
    ) -> list[StatusInterval]:
        async def _q(session: AsyncSession) -> list[StatusInterval]:
            query = select(Adjustment).where(
                Adjustment.staff_id == staff_id,
                Adjustment.work_date == day,
            )
            if include_pending:
                query = query.where(*_awaiting_decision())
                layer = Layer.PENDING
            else:
                query = query.where(
                    Adjustment.rejected_at.is_(None),
                    or_(
                        Adjustment.is_pending.is_(False),
                        Adjustment.approved_at.is_not(None),
                    ),
                )
                layer = Layer.ADJUSTMENT
            result = await session.execute(
                query.order_by(Adjustment.start_at, Adjustment.id)
            )
            rows = result.scalars().all()
            return [i for i in (self._interval(day, layer, r) for r in rows) if i]

        return await self._read("get_adjustments", _q)

    async def get_adjustment(self, adjustment_id: int) -> AdjustmentRecord | None:
        async def _q(session: AsyncSession) -> AdjustmentRecord | None:
            row = await session.get(Adjustment, adjustment_id)
            return _to_record(row) if row is not None else None

        return await self._read("get_adjustment", _q)

    async def list_adjustments(self, flt: PendingFilter) -> list[AdjustmentRecord]:
        async def _q(session: AsyncSession) -> list[AdjustmentRecord]:
            query = select(Adjustment).where(*_workflow_rows())
            if flt.staff_id is not None:
                query = query.where(Adjustment.staff_id == flt.staff_id)
            if flt.date_from is not None:
                query = query.where(Adjustment.work_date >= flt.date_from)
            if flt.date_to is not None:
                query = query.where(Adjustment.work_date <= flt.date_to)
            if flt.pending_type is not None:
                query = query.where(Adjustment.pending_type == flt.pending_type)
            if flt.state == PendingStatus.PENDING:
                query = query.where(*_awaiting_decision())
            elif flt.state == PendingStatus.APPROVED:
                query = query.where(Adjustment.approved_at.is_not(None))
            elif flt.state == PendingStatus.REJECTED:
                query = query.where(Adjustment.rejected_at.is_not(None))
            result = await session.execute(
                query.order_by(
                    Adjustment.work_date,
                    Adjustment.start_at,
                    Adjustment.created_at,
                    Adjustment.id,
                )
            )
            return [_to_record(r) for r in result.scalars().all()]

        return await self._read("list_adjustments", _q)

    async def put_adjustment(self, record: NewAdjustment) -> int:
        async with self.transaction() as tx:
            return await tx.put_adjustment(record)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def list_audit(
        self,
        adjustment_id: int | None = None,
        actor: str | None = None,
        since: datetime | None = None,
    ) -> list[ApprovalLogRecord]:
        async def _q(session: AsyncSession) -> list[ApprovalLogRecord]:
            query = select(ApprovalLogEntry)
            if adjustment_id is not None:
                query = query.where(ApprovalLogEntry.adjustment_id == adjustment_id)
            if actor is not None:
                query = query.where(ApprovalLogEntry.actor == actor)
            if since is not None:
                query = query.where(ApprovalLogEntry.created_at >= since)
            result = await session.execute(
                query.order_by(
                    ApprovalLogEntry.adjustment_id,
                    ApprovalLogEntry.sequence,
                )
            )
            return [_to_log_record(r) for r in result.scalars().all()]

        return await self._read("list_audit", _q)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlStoreTransaction]:
        """Unit of work: commits on clean exit, rolls back on any error.

        The commit is bounded like every other round trip; a commit that
        times out leaves nothing behind once the session closes.
        """
        try:
            async with self._session_factory() as session:
                try:
                    yield SqlStoreTransaction(session, self)
                except BaseException:
                    await session.rollback()
                    raise
                await self.bounded("commit", session.commit())
        except _UNAVAILABLE as e:
            raise StoreUnavailableError("transaction", str(e)) from e


class SqlStoreTransaction:
    """Write operations sharing one session and one database transaction."""

    def __init__(self, session: AsyncSession, store: SqlLayerStore):
        self.session = session
        self.store = store

    async def get_adjustment(self, adjustment_id: int) -> AdjustmentRecord | None:
        row = await self.store.bounded(
            "get_adjustment", self.session.get(Adjustment, adjustment_id, populate_existing=True)
        )
        return _to_record(row) if row is not None else None

    async def find_active_pending(
        self, staff_id: int, day: date, pending_type: str
    ) -> list[AdjustmentRecord]:
        result = await self.store.bounded(
            "find_active_pending",
            self.session.execute(
                select(Adjustment)
                .where(
                    Adjustment.staff_id == staff_id,
                    Adjustment.work_date == day,
                    Adjustment.pending_type == pending_type,
                    *_awaiting_decision(),
                )
                .order_by(Adjustment.created_at, Adjustment.id)
            ),
        )
        return [_to_record(r) for r in result.scalars().all()]

    async def submission_members(self, record: AdjustmentRecord) -> list[AdjustmentRecord]:
        if record.submission_id is None:
            return [record]
        result = await self.store.bounded(
            "submission_members",
            self.session.execute(
                select(Adjustment)
                .where(Adjustment.submission_id == record.submission_id)
                .order_by(Adjustment.submission_seq, Adjustment.id)
                .execution_options(populate_existing=True)
            ),
        )
        return [_to_record(r) for r in result.scalars().all()]

    async def put_adjustment(self, record: NewAdjustment) -> int:
        row = Adjustment(
            staff_id=record.staff_id,
            work_date=record.day,
            status=record.status,
            start_at=record.start_at,
            end_at=record.end_at,
            memo=record.memo,
            reason=record.reason,
            is_pending=record.is_pending,
            pending_type=record.pending_type,
            batch_id=record.batch_id,
            submission_id=record.submission_id,
            submission_seq=record.submission_seq,
        )
        self.session.add(row)
        try:
            await self.store.bounded("put_adjustment", self.session.flush())
        except IntegrityError as e:
            if record.is_pending and record.pending_type is not None:
                raise DuplicateRequestError(
                    record.staff_id, record.day, record.pending_type
                ) from e
            raise
        return row.id

    async def compare_and_set_decision(
        self,
        adjustment_id: int,
        to_state: PendingStatus,
        actor: str,
        at: datetime,
        reason: str | None = None,
    ) -> bool:
        if to_state == PendingStatus.APPROVED:
            values: dict[str, Any] = {
                "approved_at": at,
                "approved_by": actor,
                "is_pending": False,
            }
        elif to_state == PendingStatus.REJECTED:
            values = {
                "rejected_at": at,
                "rejected_by": actor,
                "rejection_reason": reason,
            }
        else:
            raise ValueError(f"Not a decision state: {to_state}")

        result = await self.store.bounded(
            "compare_and_set_decision",
            self.session.execute(
                update(Adjustment)
                .where(Adjustment.id == adjustment_id, *_awaiting_decision())
                .values(**values, updated_at=at)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount == 1

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
        values: dict[str, Any] = {"updated_at": at}
        if status is not None:
            values["status"] = status
        if start_at is not None:
            values["start_at"] = start_at
        if end_at is not None:
            values["end_at"] = end_at
        if memo is not None:
            values["memo"] = memo

        result = await self.store.bounded(
            "update_pending",
            self.session.execute(
                update(Adjustment)
                .where(Adjustment.id == adjustment_id, *_awaiting_decision())
                .values(**values)
                .execution_options(synchronize_session=False)
            ),
        )
        return result.rowcount == 1

    async def append_audit(self, entry: NewAuditEntry) -> ApprovalLogRecord:
        last = await self.store.bounded(
            "append_audit",
            self.session.scalar(
                select(func.max(ApprovalLogEntry.sequence)).where(
                    ApprovalLogEntry.adjustment_id == entry.adjustment_id
                )
            ),
        )
        row = ApprovalLogEntry(
            adjustment_id=entry.adjustment_id,
            sequence=(last or 0) + 1,
            from_state=entry.from_state,
            to_state=entry.to_state,
            actor=entry.actor,
            reason=entry.reason,
        )
        self.session.add(row)
        await self.store.bounded("append_audit", self.session.flush())
        return _to_log_record(row)
