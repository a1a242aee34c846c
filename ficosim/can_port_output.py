"""Sending side of a CAN node port, with injected send errors."""

from __future__ import annotations

import logging
from typing import Any

from ficosim.core import Message, Module
from ficosim.frames import CanDataFrame, ErrorFrame

logger = logging.getLogger(__name__)

MAX_ERROR_FRAME_SIZE = 12

SENT_DATA_FRAME_SIGNAL = "txDF"
SENT_REMOTE_FRAME_SIGNAL = "txRF"
SEND_ERROR_SIGNAL = "txEF"
RECEIVE_ERROR_SIGNAL = "rxEF"

# Error frame kinds below this are send errors (bit, form); the rest are receive errors.
_FIRST_RECEIVE_ERROR_KIND = 2


def _paint_bus_link(node: Module, icon_color: str, line_color: str, width: str) -> None:
    node.display_string.set_tag_arg("i", 1, icon_color)
    gate = node.gate("gate$i")
    previous = gate.previous_gate
    if previous is None:
        raise RuntimeError(f"gate 'gate$i' of {node.full_path!r} is not connected")
    for each in (gate, previous):
        each.display_string.set_tag_arg("ls", 0, line_color)
        each.display_string.set_tag_arg("ls", 1, width)


class CanPortOutput(Module):
    """Puts frames on the bus and, with probability ``errorperc`` %, a send error."""

    def __init__(self, name: str = "canPortOutput", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        for gate_name in ("in", "directIn", "out"):
            self.add_gate(gate_name)
        self.bandwidth = 0.0
        self.errorperc = 0
        self.scheduled_error_frame: ErrorFrame | None = None
        self.error_received = False

    def _node(self) -> Module:
        port = self.parent
        if port is None or port.parent is None:
            raise RuntimeError(f"port output {self.full_path!r} must sit inside a node port")
        return port.parent

    def initialize(self) -> None:
        node = self._node()
        bus = node.gate("gate$o").path_end_gate().owner.parent
        if bus is None:
            raise RuntimeError(f"node {node.full_path!r} is not connected to a bus")
        self.bandwidth = float(bus.par("bandwidth"))
        self.errorperc = int(node.par("errorperc"))
        self.scheduled_error_frame = ErrorFrame()

    def handle_received_error_frame(self) -> None:
        """Note an error frame on the bus and drop the pending send error."""
        self.error_received = True
        frame = self.scheduled_error_frame
        if frame is not None and frame.is_scheduled:
            logger.debug("%s: error frame descheduled", self._node().full_path)
            self.cancel_event(frame)
            self.scheduled_error_frame = None

    def handle_message(self, msg: Message) -> None:
        if isinstance(msg, ErrorFrame):
            if not self.error_received:
                if msg.kind < _FIRST_RECEIVE_ERROR_KIND:
                    self.emit(SEND_ERROR_SIGNAL, msg)
                else:
                    self.emit(RECEIVE_ERROR_SIGNAL, msg)
                self.color_error()
                self.send(msg, "out")
                self.scheduled_error_frame = None
            return

        if not isinstance(msg, CanDataFrame):
            raise TypeError(f"{self.full_path!r} cannot send {type(msg).__name__}")
        self.color_busy()
        self.error_received = False
        if self.errorperc > 0 and self.intuniform(0, 99) < self.errorperc:
            self._schedule_send_error(msg)
        self.emit(SENT_REMOTE_FRAME_SIGNAL if msg.rtr else SENT_DATA_FRAME_SIGNAL, msg)
        self.send(msg, "out")

    def _schedule_send_error(self, frame: CanDataFrame) -> None:
        position = self.intuniform(0, frame.bit_length - MAX_ERROR_FRAME_SIZE)
        kind = self.intuniform(0, 1)  # 0: bit error, 1: form error
        if position > 0:
            position -= 1
        error = ErrorFrame("senderror", kind=kind, can_id=frame.can_id, pos=position)
        pending = self.scheduled_error_frame
        if pending is not None and pending.is_scheduled:
            self.cancel_event(pending)
        self.scheduled_error_frame = error
        self.schedule_at(self.sim_time + self.calculate_schedule_timing(position), error)

    def calculate_schedule_timing(self, length: int) -> float:
        """Seconds needed to transmit ``length`` bits."""
        return length / self.bandwidth

    def sending_completed(self) -> None:
        """Show the link as idle once a transmission is over."""
        self.color_idle()

    def color_busy(self) -> None:
        _paint_bus_link(self._node(), "yellow", "yellow", "3")

    def color_idle(self) -> None:
        _paint_bus_link(self._node(), "", "black", "1")

    def color_error(self) -> None:
        _paint_bus_link(self._node(), "red", "red", "3")