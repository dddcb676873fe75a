"""Value types for wall-clock schedule intervals."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Iterable, Mapping

from schedule_resolver.errors import OverlapWarning, ValidationError

MINUTES_PER_DAY = 24 * 60

DEFAULT_STATUSES = (
    "online",
    "remote",
    "meeting",
    "training",
    "break",
    "off",
    "unplanned",
    "night duty",
)

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
_RANGE_PATTERN = re.compile(r"^\s*(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})\s*$")


class Weekday(IntEnum):
    """Day of week, numbered like ``date.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def of(cls, day: date) -> Weekday:
        """Weekday of a local calendar date."""
        return cls(day.weekday())


class Layer(IntEnum):
    """Schedule layers, ordered by precedence (higher overrides lower)."""

    CONTRACT = 1
    MONTHLY = 2
    ADJUSTMENT = 3
    PENDING = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class Decision(str, Enum):
    """Approver decision on a pending request."""

    APPROVE = "approve"
    REJECT = "reject"


def normalize_status(status: str, allowed: Iterable[str] | None = None) -> str:
    """Lower-case a status code and check it against the allowed vocabulary."""
    if not isinstance(status, str) or not status.strip():
        raise ValidationError("Status must be a non-empty string", status=status)
    normalized = " ".join(status.strip().lower().split())
    if allowed is not None and normalized not in set(allowed):
        raise ValidationError(f"Unknown status code '{status}'", status=status)
    return normalized


@dataclass(frozen=True, order=True)
class LocalTime:
    """Minutes since local midnight. ``24:00`` is valid as an end boundary."""

    minutes: int

    def __post_init__(self) -> None:
        if isinstance(self.minutes, bool) or not isinstance(self.minutes, int):
            raise ValidationError("Local time minutes must be an integer", minutes=self.minutes)
        if not 0 <= self.minutes <= MINUTES_PER_DAY:
            raise ValidationError(
                f"Local time {self.minutes} min is outside 00:00-24:00",
                minutes=self.minutes,
            )

    @classmethod
    def parse(cls, value: str) -> LocalTime:
        """Parse ``HH:MM`` (one-digit hours accepted)."""
        match = _TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise ValidationError(f"Malformed local time '{value}'", value=value)
        hours, minutes = int(match.group(1)), int(match.group(2))
        if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
            raise ValidationError(f"Local time '{value}' is outside 00:00-24:00", value=value)
        return cls(hours * 60 + minutes)

    @classmethod
    def from_hours(cls, hours: float) -> LocalTime:
        """Convert decimal hours (``9.5`` -> ``09:30``)."""
        if isinstance(hours, bool) or not isinstance(hours, (int, float)):
            raise ValidationError("Decimal hours must be a number", hours=hours)
        return cls(int(round(hours * 60)))

    @classmethod
    def coerce(cls, value: LocalTime | str | int | float) -> LocalTime:
        """Accept a LocalTime, an ``HH:MM`` string or decimal hours."""
        if isinstance(value, LocalTime):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        return cls.from_hours(value)

    @property
    def hours(self) -> float:
        return self.minutes / 60

    def __str__(self) -> str:
        return f"{self.minutes // 60:02d}:{self.minutes % 60:02d}"


MIDNIGHT = LocalTime(0)
END_OF_DAY = LocalTime(MINUTES_PER_DAY)


@dataclass(frozen=True)
class LocalTimeRange:
    """Half-open wall-clock range ``[start, end)`` within one day."""

    start: LocalTime
    end: LocalTime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(
                f"Range start {self.start} must be before end {self.end}",
                start=self.start,
                end=self.end,
            )

    @classmethod
    def parse(cls, value: str) -> LocalTimeRange:
        """Parse a contract hours string such as ``"9:00-18:00"``."""
        match = _RANGE_PATTERN.match(value) if isinstance(value, str) else None
        if not match:
            raise ValidationError(f"Malformed work hours '{value}'", value=value)
        return cls(LocalTime.parse(match.group(1)), LocalTime.parse(match.group(2)))

    def overlaps(self, other: LocalTimeRange) -> bool:
        return self.start < other.end and other.start < self.end

    @property
    def duration_minutes(self) -> int:
        return self.end.minutes - self.start.minutes

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class WeeklyHours:
    """Contract hours: seven optional ranges indexed by ``Weekday``."""

    slots: tuple[LocalTimeRange | None, ...] = (None,) * 7

    def __post_init__(self) -> None:
        if len(self.slots) != 7:
            raise ValidationError("Weekly hours need exactly seven slots", slots=len(self.slots))

    @classmethod
    def from_mapping(cls, hours: Mapping[Weekday, str | None]) -> WeeklyHours:
        """Build from ``{Weekday: "HH:MM-HH:MM" | None}``; blank strings mean no work."""
        slots: list[LocalTimeRange | None] = [None] * 7
        for weekday, value in hours.items():
            if value is None or not str(value).strip():
                continue
            slots[Weekday(weekday)] = LocalTimeRange.parse(value)
        return cls(tuple(slots))

    def for_weekday(self, weekday: Weekday) -> LocalTimeRange | None:
        return self.slots[weekday]

    def __getitem__(self, weekday: Weekday) -> LocalTimeRange | None:
        return self.slots[weekday]


@dataclass(frozen=True)
class StatusInterval:
    """A status over a half-open wall-clock range, attributed to a layer."""

    status: str
    start: LocalTime
    end: LocalTime
    layer: Layer
    source_id: int | None = None
    memo: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(
                f"Interval start {self.start} must be before end {self.end}",
                status=self.status,
            )

    def overlaps(self, other: StatusInterval) -> bool:
        return self.start < other.end and other.start < self.end

    def clipped(self, start: LocalTime, end: LocalTime) -> StatusInterval:
        return replace(self, start=start, end=end)

    def freshness(self) -> tuple[datetime, datetime, int]:
        """Sort key for same-layer tie-breaks: later update wins."""
        floor = datetime.min
        updated = _naive(self.updated_at) or _naive(self.created_at) or floor
        created = _naive(self.created_at) or floor
        return updated, created, self.source_id or 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "start": str(self.start),
            "end": str(self.end),
            "layer": self.layer.label,
            "source_id": self.source_id,
            "memo": self.memo,
        }

    def __str__(self) -> str:
        return f"{self.start}-{self.end} {self.status} ({self.layer.label})"


def _naive(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass
class ResolvedTimeline:
    """Authoritative timeline for one staff member and date."""

    staff_id: int
    day: date
    intervals: list[StatusInterval] = field(default_factory=list)
    proposed: list[StatusInterval] = field(default_factory=list)
    warnings: list[OverlapWarning] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.intervals

    @property
    def has_proposal(self) -> bool:
        return any(i.layer == Layer.PENDING for i in self.proposed)

    def covered_minutes(self) -> int:
        return sum(i.end.minutes - i.start.minutes for i in self.intervals)

    def to_dict(self) -> dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "date": self.day.isoformat(),
            "intervals": [i.to_dict() for i in self.intervals],
            "proposed": [i.to_dict() for i in self.proposed],
            "warnings": [str(w) for w in self.warnings],
        }


@dataclass(frozen=True)
class StaffRecord:
    """Read-only view of a roster entry."""

    id: int
    name: str
    is_active: bool
    department: str | None = None
