"""CAN and FlexRay frame types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from ficosim.core import Message, Packet


class Channel(IntEnum):
    """FlexRay channel; AB sends on both."""

    A = 0
    B = 1
    AB = 2


@dataclass(eq=False)
class CanDataFrame(Packet):
    """A CAN data frame, or a remote frame when ``rtr`` is set."""

    can_id: int = 0
    rtr: bool = False


@dataclass(eq=False)
class ErrorFrame(Message):
    """A CAN error frame raised at bit position ``pos`` of a frame."""

    can_id: int = 0
    pos: int = 0


@dataclass(eq=False)
class FRFrame(Packet):
    """A FlexRay frame."""

    frame_id: int = 0
    cycle_number: int = 0
    channel: Channel = Channel.A
    sync_frame_indicator: bool = False