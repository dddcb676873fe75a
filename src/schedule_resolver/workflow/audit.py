"""Read-only view of the approval audit log.

Entries are appended by the pending workflow inside the same store
transaction as the state change they describe; nothing here writes.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from schedule_resolver.errors import NotFoundError

if TYPE_CHECKING:
    from schedule_resolver.store.base import ApprovalLogRecord, LayerStore


class ApprovalAuditLog:
    """Query approval history."""

    def __init__(self, store: LayerStore):
        self.store = store

    async def history(self, adjustment_id: int) -> list[ApprovalLogRecord]:
        """All transitions of one adjustment, oldest first."""
        record = await self.store.get_adjustment(adjustment_id)
        if record is None:
            raise NotFoundError("Adjustment", adjustment_id)
        return await self.store.list_audit(adjustment_id=adjustment_id)

    async def entries(
        self,
        actor: str | None = None,
        since: datetime | None = None,
    ) -> list[ApprovalLogRecord]:
        return await self.store.list_audit(actor=actor, since=since)
