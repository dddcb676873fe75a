"""Pending approval workflow."""

from schedule_resolver.workflow.locking import KeyedLockRegistry
from schedule_resolver.workflow.state_machine import (
    InvalidTransitionError,
    PendingStateMachine,
    PendingStatus,
)

__all__ = [
    "InvalidTransitionError",
    "KeyedLockRegistry",
    "PendingStateMachine",
    "PendingStatus",
]
