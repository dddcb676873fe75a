"""ORM models."""

from schedule_resolver.models.base import Base, TimestampMixin, UTCDateTime
from schedule_resolver.models.schedule import (
    Adjustment,
    ApprovalLogEntry,
    Contract,
    MonthlySchedule,
    Staff,
)

__all__ = [
    "Adjustment",
    "ApprovalLogEntry",
    "Base",
    "Contract",
    "MonthlySchedule",
    "Staff",
    "TimestampMixin",
    "UTCDateTime",
]
