"""Typed error taxonomy for schedule resolution and the approval workflow.

Every error carries a stable ``code`` so callers (the HTTP layer, the CLI)
can tell recoverable conditions from fatal ones without matching messages.
"""

from __future__ import annotations

from typing import Any


class ScheduleError(Exception):
    """Base class for all schedule resolver errors."""

    code = "SCHEDULE_ERROR"
    retryable = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["context"] = {k: str(v) for k, v in self.details.items()}
        return body


class ValidationError(ScheduleError):
    """Malformed interval, time or date input. Raised before any write."""

    code = "VALIDATION_ERROR"


class DuplicateRequestError(ScheduleError):
    """An active pending request already exists for the same key."""

    code = "DUPLICATE_REQUEST"

    def __init__(
        self,
        staff_id: int,
        day: Any,
        pending_type: str,
        existing_id: int | None = None,
    ):
        self.staff_id = staff_id
        self.day = day
        self.pending_type = pending_type
        self.existing_id = existing_id
        msg = (
            f"Active pending request already exists for staff {staff_id} "
            f"on {day} ({pending_type})"
        )
        if existing_id is not None:
            msg += f": pending id {existing_id}"
        super().__init__(msg, staff_id=staff_id, date=day, pending_type=pending_type)


class NotFoundError(ScheduleError):
    """The referenced record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class AlreadyDecidedError(ScheduleError):
    """Workflow transition attempted on a record in a terminal state."""

    code = "ALREADY_DECIDED"

    def __init__(self, pending_id: int, state: str):
        self.pending_id = pending_id
        self.state = state
        super().__init__(
            f"Pending request {pending_id} is already {state}",
            pending_id=pending_id,
            state=state,
        )


class StoreUnavailableError(ScheduleError):
    """The layer store failed or did not answer within the timeout."""

    code = "STORE_UNAVAILABLE"
    retryable = True

    def __init__(self, operation: str, reason: str | None = None):
        self.operation = operation
        self.reason = reason
        msg = f"Layer store unavailable during '{operation}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, operation=operation)


class OverlapWarning(UserWarning):
    """Two intervals in the same layer overlap; the newer one was kept."""

    def __init__(
        self,
        layer: str,
        staff_id: int,
        day: Any,
        kept: Any,
        dropped: Any,
    ):
        self.layer = layer
        self.staff_id = staff_id
        self.day = day
        self.kept = kept
        self.dropped = dropped
        super().__init__(
            f"Overlapping {layer} intervals for staff {staff_id} on {day}: "
            f"kept {kept}, overrode {dropped}"
        )
