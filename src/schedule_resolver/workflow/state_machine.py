"""Pending request state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from schedule_resolver.errors import AlreadyDecidedError, ValidationError


class PendingStatus(str, Enum):
    """Pending request status values."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InvalidTransitionError(ValidationError):
    """Raised when a transition is not allowed from a non-terminal state."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, from_status=from_status, to_status=to_status)


class PendingStateMachine:
    """State machine for pending adjustment transitions.

    Allowed transitions:
    - draft → pending (submit)
    - pending → approved
    - pending → rejected

    Approved and rejected are terminal: the record is immutable afterwards
    except for audit appends.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PendingStatus.DRAFT: [PendingStatus.PENDING],
        PendingStatus.PENDING: [PendingStatus.APPROVED, PendingStatus.REJECTED],
        PendingStatus.APPROVED: [],
        PendingStatus.REJECTED: [],
    }

    TERMINAL = {
        PendingStatus.APPROVED,
        PendingStatus.REJECTED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def is_editable(cls, status: str) -> bool:
        """Only requests awaiting a decision may be edited."""
        return status == PendingStatus.PENDING

    @classmethod
    def validate_transition(
        cls, pending_id: int, from_status: str, to_status: str
    ) -> None:
        """Validate a transition.

        Raises AlreadyDecidedError when leaving a terminal state and
        InvalidTransitionError for any other disallowed move.
        """
        if cls.can_transition(from_status, to_status):
            return
        if cls.is_terminal(from_status):
            raise AlreadyDecidedError(pending_id, str(PendingStatus(from_status).value))
        raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
