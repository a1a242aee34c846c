"""Receiving side of a FlexRay node port."""

from __future__ import annotations

import logging
from typing import Any

from ficosim.core import Message, Module
from ficosim.frames import FRFrame
from ficosim.scheduler_event import SchedulerEventKind

logger = logging.getLogger(__name__)

RECEIVED_STATIC_FRAME_SIGNAL = "receivedCompleteSF"
RECEIVED_DYNAMIC_FRAME_SIGNAL = "receivedCompleteDF"


class FRPortInput(Module):
    """Holds a received frame until its transmission completes, then passes it on.

    On arrival the frame is reported to the node's ``frScheduler`` (dynamic
    frames) or, for sync frames in the right static slot, its deviation is
    stored in the node's ``frSync``.
    """

    def __init__(self, name: str = "frPortInput", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.add_gate("in")
        self.add_gate("out")
        self.bandwidth = 0.0
        self.wrong_slot_frames = 0

    def _node(self) -> Module:
        port = self.parent
        if port is None or port.parent is None:
            raise RuntimeError(f"port input {self.full_path!r} must sit inside a node port")
        return port.parent

    def _sibling(self, name: str) -> Any:
        module = self._node().submodule(name)
        if module is None:
            raise RuntimeError(f"node {self._node().full_path!r} has no {name} module")
        return module

    def initialize(self) -> None:
        self.bandwidth = float(self._node().par("bandwidth"))

    def handle_message(self, msg: Message) -> None:
        if msg.is_self_message:
            if isinstance(msg, FRFrame):
                if msg.kind == SchedulerEventKind.STATIC_EVENT:
                    self.emit(RECEIVED_STATIC_FRAME_SIGNAL, msg)
                elif msg.kind == SchedulerEventKind.DYNAMIC_EVENT:
                    self.emit(RECEIVED_DYNAMIC_FRAME_SIGNAL, msg)
            self.send(msg, "out")
        elif isinstance(msg, FRFrame):
            self._received_extern_message(msg)

    def _received_extern_message(self, frame: FRFrame) -> None:
        scheduler = self._sibling("frScheduler")
        if frame.kind == SchedulerEventKind.DYNAMIC_EVENT:
            scheduler.dynamic_frame_received(frame.byte_length, int(frame.channel))
        elif scheduler.slot_counter() == frame.frame_id:
            if frame.sync_frame_indicator:
                sync = self._sibling("frSync")
                sync.store_deviation_value(
                    frame.frame_id,
                    frame.cycle_number % 2,
                    int(frame.channel),
                    scheduler.calculate_deviation_value(),
                    True,
                )
        else:
            self.wrong_slot_frames += 1
            logger.warning("%s: received static frame in wrong slot", self.full_path)
        self.schedule_at(self.sim_time + self.calculate_schedule_timing(frame.bit_length), frame)

    def calculate_schedule_timing(self, length: int) -> float:
        """Seconds needed to transmit ``length`` bits."""
        return length / self.bandwidth