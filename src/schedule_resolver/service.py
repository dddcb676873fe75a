"""Schedule service facade.

Wires the layer store, the resolver and the pending workflow together for
the HTTP API and the CLI. Nothing here holds process-wide state: each
``ScheduleService`` owns its engine and store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from sqlalchemy import text

from schedule_resolver.config import Settings
from schedule_resolver.database import create_engine, create_schema, create_session_factory
from schedule_resolver.errors import StoreUnavailableError
from schedule_resolver.store.base import PendingFilter
from schedule_resolver.store.sql import SqlLayerStore
from schedule_resolver.timeline.clock import WallClock
from schedule_resolver.timeline.resolver import ScheduleResolver
from schedule_resolver.timeline.types import Decision, ResolvedTimeline
from schedule_resolver.workflow.audit import ApprovalAuditLog
from schedule_resolver.workflow.locking import KeyedLockRegistry
from schedule_resolver.workflow.pending_service import (
    BulkDecisionResult,
    IntervalRequest,
    PendingApprovalService,
    PendingRecord,
    ReconciliationReport,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from schedule_resolver.store.base import ApprovalLogRecord, LayerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveMismatch:
    """Staff whose active flag disagrees with contract presence."""

    staff_id: int
    name: str
    is_active: bool
    has_contract: bool

    @property
    def expected_active(self) -> bool:
        return self.has_contract


class ScheduleService:
    """Entry point for resolution and the approval workflow."""

    def __init__(
        self,
        store: LayerStore,
        settings: Settings | None = None,
        clock: WallClock | None = None,
        engine: AsyncEngine | None = None,
    ):
        self.settings = settings or Settings()
        self.clock = clock or WallClock(self.settings.utc_offset)
        self.store = store
        self.engine = engine
        self.resolver = ScheduleResolver(
            store, self.clock, concurrency=self.settings.resolve_concurrency
        )
        self.pending = PendingApprovalService(
            store,
            self.clock,
            locks=KeyedLockRegistry(timeout=self.settings.store_timeout_seconds),
            statuses=self.settings.status_codes,
            default_pending_type=self.settings.default_pending_type,
        )
        self.audit = ApprovalAuditLog(store)

    @classmethod
    def from_settings(cls, settings: Settings) -> ScheduleService:
        """Build a service with its own engine and SQL layer store."""
        clock = WallClock(settings.utc_offset)
        engine = create_engine(settings)
        store = SqlLayerStore(
            create_session_factory(engine),
            clock,
            timeout=settings.store_timeout_seconds,
        )
        return cls(store, settings=settings, clock=clock, engine=engine)

    async def create_schema(self) -> None:
        if self.engine is not None:
            await create_schema(self.engine)

    async def ping(self) -> bool:
        """True when the database answers a trivial query in time."""
        if self.engine is None:
            return True

        async def _select_one() -> None:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        timeout = self.settings.store_timeout_seconds
        try:
            await asyncio.wait_for(_select_one(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError("ping", f"timed out after {timeout}s") from e
        return True

    async def aclose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_schedule(self, staff_id: int, day: date | str) -> ResolvedTimeline:
        return await self.resolver.resolve_schedule(staff_id, day)

    async def resolve_range(
        self, staff_id: int, start_day: date | str, end_day: date | str
    ) -> list[ResolvedTimeline]:
        return await self.resolver.resolve_range(staff_id, start_day, end_day)

    async def resolve_month(
        self, staff_ids: Iterable[int] | None, year: int, month: int
    ) -> dict[tuple[int, date], ResolvedTimeline]:
        """Resolve a month; all active staff when ``staff_ids`` is None."""
        if staff_ids is None:
            staff_ids = await self.store.list_active_staff()
        return await self.resolver.resolve_month(staff_ids, year, month)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    async def submit_pending(
        self,
        staff_id: int,
        day: date | str,
        intervals: Iterable[IntervalRequest | Mapping[str, Any] | Sequence[Any]],
        memo: str | None = None,
        pending_type: str | None = None,
        actor: str | None = None,
    ) -> int:
        return await self.pending.submit(staff_id, day, intervals, memo, pending_type, actor)

    async def decide(
        self,
        pending_id: int,
        decision: Decision | str,
        actor: str,
        reason: str | None = None,
    ) -> PendingRecord:
        return await self.pending.decide(pending_id, decision, actor, reason)

    async def bulk_decide(
        self,
        pending_ids: Iterable[int],
        decision: Decision | str,
        actor: str,
        reason: str | None = None,
    ) -> BulkDecisionResult:
        return await self.pending.bulk_decide(pending_ids, decision, actor, reason)

    async def update_pending(self, pending_id: int, actor: str, **changes: Any) -> PendingRecord:
        return await self.pending.update(pending_id, actor, **changes)

    async def get_pending(self, pending_id: int) -> PendingRecord:
        return await self.pending.get(pending_id)

    async def list_pending(self, flt: PendingFilter | None = None) -> list[PendingRecord]:
        return await self.pending.list_pending(flt)

    async def monthly_pending(self, year: int, month: int) -> list[PendingRecord]:
        return await self.pending.monthly_view(year, month)

    async def reconcile(
        self,
        staff_id: int | None = None,
        day: date | str | None = None,
        dry_run: bool = False,
    ) -> ReconciliationReport:
        return await self.pending.reconcile_duplicates(staff_id, day, dry_run=dry_run)

    async def history(self, adjustment_id: int) -> list[ApprovalLogRecord]:
        return await self.audit.history(adjustment_id)

    # ------------------------------------------------------------------
    # Roster checks
    # ------------------------------------------------------------------

    async def check_active(self) -> list[ActiveMismatch]:
        """Staff whose ``is_active`` flag disagrees with having a contract.

        Reports only; roster data is owned elsewhere.
        """
        staff = await self.store.list_staff()
        holders = await self.store.contract_holders()
        mismatches = [
            ActiveMismatch(
                staff_id=s.id,
                name=s.name,
                is_active=s.is_active,
                has_contract=s.id in holders,
            )
            for s in staff
            if s.is_active != (s.id in holders)
        ]
        if mismatches:
            logger.warning("%d staff with inconsistent active status", len(mismatches))
        return mismatches
