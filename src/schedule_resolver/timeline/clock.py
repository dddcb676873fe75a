"""Fixed-offset wall clock.

Storage holds absolute UTC instants while every business rule (weekday
lookup, contract hours, approval windows) is written in local wall-clock
terms. ``WallClock`` is the only place that converts between the two.

Rules:
    1. One fixed offset, no timezone database, no DST.
    2. Instants handed out are timezone-aware UTC datetimes.
    3. Wall-clock values have minute precision.
    4. ``from_instant(to_instant(d, t), d) == (d, t)`` for every valid d, t.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

from schedule_resolver.errors import ValidationError
from schedule_resolver.timeline.types import END_OF_DAY, MIDNIGHT, LocalTime

DEFAULT_OFFSET = timedelta(hours=9)

_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):?(\d{2})$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_offset(value: str) -> timedelta:
    """Parse ``+09:00`` / ``-0330`` into a timedelta."""
    match = _OFFSET_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Malformed UTC offset '{value}' (expected +HH:MM)")
    sign = -1 if match.group(1) == "-" else 1
    hours, minutes = int(match.group(2)), int(match.group(3))
    if hours > 23 or minutes > 59:
        raise ValueError(f"UTC offset '{value}' out of range")
    return sign * timedelta(hours=hours, minutes=minutes)


class WallClock:
    """Converts between local (date, time) pairs and UTC instants."""

    def __init__(self, offset: timedelta = DEFAULT_OFFSET):
        if abs(offset) >= timedelta(hours=24):
            raise ValueError("UTC offset must be less than 24 hours")
        self.offset = offset
        self.tz = timezone(offset)

    def __repr__(self) -> str:
        return f"WallClock({self.tz.tzname(None)})"

    def to_instant(self, day: date, local_time: LocalTime) -> datetime:
        """Absolute UTC instant of a local wall-clock time on ``day``."""
        if not isinstance(day, date) or isinstance(day, datetime):
            raise ValidationError(f"Expected a calendar date, got {day!r}", value=day)
        local = datetime.combine(day, time()) + timedelta(minutes=local_time.minutes)
        return (local - self.offset).replace(tzinfo=timezone.utc)

    def from_instant(
        self, instant: datetime, day: date | None = None
    ) -> tuple[date, LocalTime]:
        """Local (date, time) of an instant.

        When ``day`` is given and the instant is the midnight that closes it,
        the result is ``(day, 24:00)`` so end boundaries survive a round trip.
        """
        if instant.tzinfo is None or instant.utcoffset() is None:
            raise ValidationError(
                "Instant must be timezone-aware", instant=instant.isoformat()
            )
        local = instant.astimezone(timezone.utc).replace(tzinfo=None) + self.offset
        if local.second or local.microsecond:
            raise ValidationError(
                "Wall-clock times have minute precision", instant=instant.isoformat()
            )
        local_day = local.date()
        minutes = local.hour * 60 + local.minute
        if day is not None and minutes == 0 and local_day == day + timedelta(days=1):
            return day, END_OF_DAY
        return local_day, LocalTime(minutes)

    def parse_date(self, value: date | str) -> date:
        """Parse a strict ``YYYY-MM-DD`` string (dates pass through)."""
        if isinstance(value, datetime):
            raise ValidationError("Expected a calendar date, not a datetime", value=value)
        if isinstance(value, date):
            return value
        if not isinstance(value, str) or not _DATE_PATTERN.match(value.strip()):
            raise ValidationError(f"Malformed date '{value}' (expected YYYY-MM-DD)", value=value)
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationError(f"Invalid date '{value}': {e}", value=value) from e

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """UTC instants of local midnight opening and closing ``day``."""
        return self.to_instant(day, MIDNIGHT), self.to_instant(day, END_OF_DAY)

    def local_span(
        self, day: date, start_at: datetime, end_at: datetime
    ) -> tuple[LocalTime, LocalTime] | None:
        """Clip an instant range to ``day`` and express it in wall-clock time.

        Returns None when nothing of the range falls inside the day.
        """
        day_start, day_end = self.day_bounds(day)
        start_at = max(start_at, day_start)
        end_at = min(end_at, day_end)
        if start_at >= end_at:
            return None
        _, start = self.from_instant(start_at, day)
        _, end = self.from_instant(end_at, day)
        return start, end

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return (datetime.now(timezone.utc) + self.offset).date()
