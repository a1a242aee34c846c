"""Sending side of a FlexRay node port."""

from __future__ import annotations

from typing import Any

from ficosim.core import Message, Module
from ficosim.frames import Channel, FRFrame


def _paint_bus_link(node: Module, icon_color: str, line_color: str, width: str) -> None:
    node.display_string.set_tag_arg("i", 1, icon_color)
    gate = node.gate("gate$i")
    previous = gate.previous_gate
    if previous is None:
        raise RuntimeError(f"gate 'gate$i' of {node.full_path!r} is not connected")
    for each in (gate, previous):
        each.display_string.set_tag_arg("ls", 0, line_color)
        each.display_string.set_tag_arg("ls", 1, width)


class FRPortOutput(Module):
    """Sends frames on channel A, channel B or both."""

    def __init__(self, name: str = "frPortOutput", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        for gate_name in ("in", "outChA", "outChB"):
            self.add_gate(gate_name)
        self.bandwidth = 0

    def _node(self) -> Module:
        port = self.parent
        if port is None or port.parent is None:
            raise RuntimeError(f"port output {self.full_path!r} must sit inside a node port")
        return port.parent

    def initialize(self) -> None:
        self.bandwidth = int(float(self._node().par("bandwidth")))

    def handle_message(self, msg: Message) -> None:
        if not isinstance(msg, FRFrame):
            return
        if msg.channel == Channel.A:
            self.send(msg.dup(), "outChA")
        elif msg.channel == Channel.B:
            self.send(msg.dup(), "outChB")
        elif msg.channel == Channel.AB:
            msg.channel = Channel.A
            self.send(msg.dup(), "outChA")
            msg.channel = Channel.B
            self.send(msg.dup(), "outChB")

    def sending_completed(self) -> None:
        """Show the link as idle once a transmission is over."""
        self.color_idle()

    def color_busy(self) -> None:
        _paint_bus_link(self._node(), "yellow", "yellow", "3")

    def color_idle(self) -> None:
        _paint_bus_link(self._node(), "", "black", "1")