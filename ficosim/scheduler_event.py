"""Events exchanged between the FlexRay scheduler and the modules it serves."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from ficosim.core import Gate, Message


class SchedulerEventKind(IntEnum):
    """Message kinds used by the FlexRay scheduler."""

    NEW_CYCLE = 0
    NIT_EVENT = 1
    STATIC_EVENT = 2
    DYNAMIC_EVENT = 3


@dataclass(eq=False)
class SchedulerEvent(Message):
    """A scheduler event that is delivered to a destination gate."""

    destination_gate: Gate | None = None

    def dup(self) -> SchedulerEvent:
        """Copy the event; the copy carries no destination gate."""
        clone = super().dup()
        clone.destination_gate = None
        return clone


@dataclass(eq=False)
class SchedulerActionTimeEvent(SchedulerEvent):
    """An event fired at the action point of a slot, counted in macroticks."""

    action_time: int = 0
    frame_id: int = 0
    cycle_nr: int = 0
    channel: int = 0