"""Wall-clock interval model and layered schedule resolution."""

from schedule_resolver.timeline.clock import WallClock
from schedule_resolver.timeline.resolver import ScheduleResolver, flatten_layer, overlay
from schedule_resolver.timeline.types import (
    Decision,
    Layer,
    LocalTime,
    LocalTimeRange,
    ResolvedTimeline,
    StaffRecord,
    StatusInterval,
    Weekday,
    WeeklyHours,
)

__all__ = [
    "Decision",
    "Layer",
    "LocalTime",
    "LocalTimeRange",
    "ResolvedTimeline",
    "ScheduleResolver",
    "StaffRecord",
    "StatusInterval",
    "WallClock",
    "Weekday",
    "WeeklyHours",
    "flatten_layer",
    "overlay",
]
