"""Layer store contract and SQL implementation."""

from schedule_resolver.store.base import (
    AdjustmentRecord,
    ApprovalLogRecord,
    LayerStore,
    NewAdjustment,
    NewAuditEntry,
    PendingFilter,
    StoreTransaction,
)

__all__ = [
    "AdjustmentRecord",
    "ApprovalLogRecord",
    "LayerStore",
    "NewAdjustment",
    "NewAuditEntry",
    "PendingFilter",
    "StoreTransaction",
]
