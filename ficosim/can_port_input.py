"""Receiving side of a CAN node port, with injected receive errors."""

from __future__ import annotations

from typing import Any

from ficosim.core import Gate, Message, Module
from ficosim.frames import CanDataFrame, ErrorFrame

MAX_ERROR_FRAME_SIZE = 12

RECEIVED_DATA_FRAME_SIGNAL = "rxDF"
RECEIVED_REMOTE_FRAME_SIGNAL = "rxRF"
RECEIVED_DATA_FRAME_PAYLOAD_SIGNAL = "rxDFPayload"
RECEIVED_REMOTE_FRAME_PAYLOAD_SIGNAL = "rxRFPayload"

# Error frame kinds above this (bit stuffing) make the sender abort its frame.
_LAST_CRC_ERROR_KIND = 2


class CanPortInput(Module):
    """Holds frames from the bus until their transmission completes.

    Only frames this node has registered an interest in are kept. With
    probability ``errorperc`` % a receive error is raised for a frame; the
    resulting error frame goes to the sibling ``canPortOutput``.
    """

    def __init__(self, name: str = "canPortInput", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.add_gate("in")
        self.bandwidth = 0.0
        self.errorperc = 0
        self.scheduled_data_frame: CanDataFrame | None = None
        self.scheduled_error_frame: ErrorFrame | None = None
        self.incoming_data_frames: dict[int, Gate] = {}
        self.outgoing_data_frames: dict[int, Gate] = {}
        self.outgoing_remote_frames: list[int] = []

    def _node(self) -> Module:
        port = self.parent
        if port is None or port.parent is None:
            raise RuntimeError(f"port input {self.full_path!r} must sit inside a node port")
        return port.parent

    def _port_output(self) -> Any:
        port = self.parent
        output = port.submodule("canPortOutput") if port is not None else None
        if output is None:
            raise RuntimeError(f"{self.full_path!r} has no sibling canPortOutput")
        return output

    def initialize(self) -> None:
        node = self._node()
        bus = node.gate("gate$o").path_end_gate().owner.parent
        if bus is None:
            raise RuntimeError(f"node {node.full_path!r} is not connected to a bus")
        self.bandwidth = float(bus.par("bandwidth"))
        self.errorperc = int(node.par("errorperc"))

    def handle_message(self, msg: Message) -> None:
        if msg.is_self_message:
            if isinstance(msg, ErrorFrame):
                self._forward_own_error_frame(msg)
                self.scheduled_error_frame = None
            elif isinstance(msg, CanDataFrame):
                self._forward_data_frame(msg)
                self.scheduled_data_frame = None
        elif isinstance(msg, CanDataFrame):
            if self.check_existence(msg) and not self.is_sending_node():
                if self.intuniform(0, 99) < self.errorperc:
                    self._generate_receive_error(msg)
                self._receive_message(msg)
            else:
                self.cancel_event(self.scheduled_data_frame)
                self.scheduled_data_frame = None
        elif isinstance(msg, ErrorFrame):
            self._handle_extern_error_frame(msg)

    def _receive_message(self, frame: CanDataFrame) -> None:
        self.cancel_event(self.scheduled_data_frame)
        self.scheduled_data_frame = frame.dup()
        self.schedule_at(
            self.sim_time + self.calculate_schedule_timing(frame.bit_length),
            self.scheduled_data_frame,
        )

    def _generate_receive_error(self, frame: CanDataFrame) -> None:
        position = self.intuniform(0, frame.bit_length - MAX_ERROR_FRAME_SIZE)
        kind = self.intuniform(2, 3)  # 2: CRC error, 3: bit-stuffing error
        if position > 0:
            position -= 1
        error = ErrorFrame("receiveError", kind=kind, can_id=frame.can_id, pos=position)
        self.cancel_event(self.scheduled_error_frame)
        self.scheduled_error_frame = error
        self.schedule_at(self.sim_time + self.calculate_schedule_timing(position), error)

    def check_existence(self, frame: CanDataFrame) -> bool:
        """Whether ``frame`` concerns this node."""
        if frame.rtr:
            # Remote frames for data this node only receives go to the sink.
            if (
                frame.can_id in self.incoming_data_frames
                and frame.can_id not in self.outgoing_remote_frames
            ):
                return True
            return frame.can_id in self.outgoing_data_frames
        return frame.can_id in self.incoming_data_frames

    def calculate_schedule_timing(self, length: int) -> float:
        """Seconds needed to transmit ``length`` bits."""
        return length / self.bandwidth

    def _emit_with_payload(self, frame: CanDataFrame, signal: str, payload_signal: str) -> None:
        self.emit(signal, frame)
        payload = frame.decapsulate()
        self.emit(payload_signal, payload)
        frame.encapsulate(payload)

    def _forward_data_frame(self, frame: CanDataFrame) -> None:
        gate = self.incoming_data_frames.get(frame.can_id)
        if gate is not None:
            self._emit_with_payload(
                frame, RECEIVED_DATA_FRAME_SIGNAL, RECEIVED_DATA_FRAME_PAYLOAD_SIGNAL
            )
            self.send_direct(frame, gate)
        if frame.rtr:
            source_gate = self.outgoing_data_frames.get(frame.can_id)
            if source_gate is not None:
                self._emit_with_payload(
                    frame, RECEIVED_REMOTE_FRAME_SIGNAL, RECEIVED_REMOTE_FRAME_PAYLOAD_SIGNAL
                )
                self.send_direct(frame, source_gate)

    def _forward_own_error_frame(self, error: ErrorFrame) -> None:
        self.send_direct(error, self._port_output().gate("directIn"))

    def _handle_extern_error_frame(self, error: ErrorFrame) -> None:
        output = self._port_output()
        output.sending_completed()
        sends_it = (
            error.can_id in self.outgoing_data_frames
            or error.can_id in self.outgoing_remote_frames
        )
        if sends_it and error.kind > _LAST_CRC_ERROR_KIND:
            output.handle_received_error_frame()

        data = self.scheduled_data_frame
        if data is not None and data.is_scheduled and data.can_id == error.can_id:
            self.cancel_event(data)
            self.scheduled_data_frame = None

        own_error = self.scheduled_error_frame
        if own_error is not None and own_error.is_scheduled and own_error.can_id == error.can_id:
            self.cancel_event(own_error)
            self.scheduled_error_frame = None

    def register_outgoing_data_frame(self, can_id: int, gate: Gate) -> None:
        """Route remote frames asking for ``can_id`` to the source application's gate."""
        self.outgoing_data_frames.setdefault(can_id, gate)

    def register_outgoing_remote_frame(self, can_id: int) -> None:
        """Note that this node sends remote frames with ``can_id``."""
        self.outgoing_remote_frames.insert(0, can_id)

    def register_incoming_data_frame(self, can_id: int, gate: Gate) -> None:
        """Route data frames with ``can_id`` to ``gate``."""
        self.incoming_data_frames.setdefault(can_id, gate)

    def is_sending_node(self) -> bool:
        """Whether this node's output buffer is currently transmitting a frame."""
        buffer = self._node().submodule("bufferOut")
        if buffer is None:
            raise RuntimeError(f"node {self._node().full_path!r} has no bufferOut module")
        current = getattr(buffer, "current_frame", None)
        if callable(current):
            current = current()
        return current is not None