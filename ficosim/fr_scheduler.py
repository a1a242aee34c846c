"""FlexRay communication cycle scheduler with clock drift and clock correction."""

from __future__ import annotations

import math
from typing import Any

from ficosim.core import Gate, Message, Module
from ficosim.scheduler_event import (
    SchedulerActionTimeEvent,
    SchedulerEvent,
    SchedulerEventKind,
)

NEW_CYCLE_SIGNAL = "newCycle"

_UINT_MODULUS = 2**32
_SLOT_EVENTS = (SchedulerEventKind.STATIC_EVENT, SchedulerEventKind.DYNAMIC_EVENT)


def _unsigned(value: int) -> int:
    """Wrap an integer the way 32-bit unsigned slot arithmetic does."""
    return value % _UINT_MODULUS


def _round_half_away(value: float) -> int:
    return math.floor(value + 0.5) if value >= 0 else math.ceil(value - 0.5)


class FRScheduler(Module):
    """Drives the FlexRay cycle and fires slot events at their action points.

    Timing parameters are read from the enclosing node module. Times counted
    in macroticks are integers; the macrotick length follows the drifting
    microtick and the rate correction computed by the sibling ``frSync``.
    """

    def __init__(self, name: str = "frScheduler", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.last_cycle_start = 0.0
        self.last_cycle_ticks = 0
        self.registered_events: list[SchedulerEvent] = []
        self.app_gate: Gate | None = None
        self.new_cycle_msg: Message | None = None
        self.max_drift_change = 0.0
        self.max_drift = 0.0
        self.current_tick = 0.0
        self.cycles = 0
        self.cycle_count_max = 0
        self.cycle_counter = 0
        self.microtick = 0.0
        self.macrotick = 0.0
        self.static_slot = 0
        self.minislot = 0
        self.nit = 0
        self.symbol_window = 0
        self.number_of_minislots = 0
        self.number_of_static_slots = 0
        self.action_point_offset = 0
        self.minislot_action_point_offset = 0
        self.bandwidth = 0.0
        self.micro_per_cycle = 0
        self.offset_correction = 0
        self.rate_correction = 0
        self.additional_minislots_a = 0
        self.additional_minislots_b = 0

    def _node(self) -> Module:
        if self.parent is None:
            raise RuntimeError(f"scheduler {self.full_path!r} must sit inside a node module")
        return self.parent

    def initialize(self) -> None:
        node = self._node()
        self.cycle_count_max = int(node.par("gCycleCountMax"))
        self.cycle_counter = self.cycle_count_max
        self.max_drift_change = float(node.par("maxDriftChange"))
        self.max_drift = float(node.par("maxDrift"))
        self.microtick = float(node.par("pdMicrotick"))
        self.macrotick = float(node.par("gdMacrotick"))
        self.static_slot = int(node.par("gdStaticSlot"))
        self.minislot = int(node.par("gdMinislot"))
        self.nit = int(node.par("gdNIT"))
        self.symbol_window = int(node.par("gdSymbolWindow"))
        self.number_of_minislots = int(node.par("gNumberOfMinislots"))
        self.number_of_static_slots = int(node.par("gNumberOfStaticSlots"))
        self.action_point_offset = int(node.par("gdActionPointOffset"))
        self.minislot_action_point_offset = int(node.par("gdMinislotActionPointOffset"))
        self.bandwidth = float(node.par("bandwidth"))

        self.current_tick = self.microtick
        self.schedule_at(
            self.sim_time, SchedulerEvent("NEW_CYCLE", SchedulerEventKind.NEW_CYCLE)
        )
        self.last_cycle_start = self.sim_time
        self.micro_per_cycle = int((self.cycle_ticks() * self.macrotick) / self.microtick)

    def handle_message(self, msg: Message) -> None:
        if not msg.is_self_message:
            return
        if msg.kind == SchedulerEventKind.NEW_CYCLE:
            self._start_cycle(msg)
        elif msg.kind == SchedulerEventKind.NIT_EVENT:
            self._network_idle_time()
        elif msg.kind in _SLOT_EVENTS:
            if not isinstance(msg, SchedulerEvent):
                raise TypeError(f"slot event {msg.name!r} is not a scheduler event")
            self.registered_events = [e for e in self.registered_events if e is not msg]
            if msg.destination_gate is None:
                raise RuntimeError(f"scheduler event {msg.name!r} has no destination gate")
            self.send_direct(msg, msg.destination_gate)

    def _start_cycle(self, msg: Message) -> None:
        self.additional_minislots_a = 0
        self.additional_minislots_b = 0
        if self.cycle_counter == self.cycle_count_max:
            self.cycle_counter = 0
        else:
            self.cycle_counter += 1
        self.change_drift()
        self.adjust_macrotick()
        self.emit(NEW_CYCLE_SIGNAL, self.cycle_counter)
        self.cycles += 1
        self.last_cycle_start = self.sim_time
        self.last_cycle_ticks += self.cycle_ticks()
        self.correct_events()
        self.schedule_at(self.last_cycle_start + self.macrotick * self.cycle_ticks(), msg)
        self.schedule_at(
            self.last_cycle_start + (self.cycle_ticks() - self.nit) * self.macrotick,
            SchedulerEvent("NIT", SchedulerEventKind.NIT_EVENT),
        )
        self.new_cycle_msg = msg

    def _network_idle_time(self) -> None:
        sync = self._node().submodule("frSync")
        if sync is None:
            raise RuntimeError(f"node {self._node().full_path!r} has no frSync module")
        if self.cycle_counter % 2 == 0:
            sync.offset_correction_calculation(self.cycle_counter)
        else:
            self.offset_correction = sync.offset_correction_calculation(self.cycle_counter)
            self.rate_correction = sync.rate_correction_calculation()
            self.correct_new_cycle()
            sync.reset_tables()

    def micro_per_macro(self) -> float:
        """Microticks per macrotick, including the rate correction."""
        return (int(self.micro_per_cycle) + self.rate_correction) / self.cycle_ticks()

    def adjust_macrotick(self) -> None:
        """Recompute the macrotick length from the current microtick."""
        self.macrotick = self.micro_per_macro() * self.current_tick

    def ticks(self) -> int:
        """Macroticks since the start of the current cycle."""
        now = self.sim_time
        if now >= self.last_cycle_start:
            return _round_half_away((now - self.last_cycle_start) / self.macrotick)
        return self.cycle_ticks() - _round_half_away(
            (self.last_cycle_start - now) / self.macrotick
        )

    def total_ticks(self) -> int:
        """Macroticks since the start of the simulation."""
        return self.last_cycle_ticks + self.ticks()

    def register_event(self, event: SchedulerEvent) -> bool:
        """Register an event; slot events are scheduled at their action point."""
        if event.kind in _SLOT_EVENTS and not isinstance(event, SchedulerActionTimeEvent):
            raise TypeError(f"slot event {event.name!r} needs an action time")
        self.registered_events.append(event)
        if not isinstance(event, SchedulerActionTimeEvent) or event.kind not in _SLOT_EVENTS:
            return True

        if event.kind == SchedulerEventKind.DYNAMIC_EVENT:
            event.action_time = self.dynamic_slot_action_time(event.frame_id)
        else:
            event.action_time = self.static_slot_action_time(event.frame_id)

        if self.cycle_counter <= event.cycle_nr:
            cycles_ahead = event.cycle_nr - self.cycle_counter
        else:
            cycles_ahead = self.cycle_count_max - self.cycle_counter + event.cycle_nr
        event.action_time = _unsigned(event.action_time + cycles_ahead * self.cycle_ticks())

        if event.action_time > self.ticks():
            at = self.last_cycle_start + self.macrotick * event.action_time
        else:
            at = self.last_cycle_start + self.macrotick * (event.action_time + self.cycle_ticks())
        self.schedule_at(at, event)
        return True

    def change_drift(self) -> None:
        """Let the microtick drift, staying within ``maxDrift`` of its nominal length."""
        new_tick = self.current_tick + self.uniform(-self.max_drift_change, self.max_drift_change)
        if new_tick - self.microtick > self.max_drift:
            self.current_tick = self.microtick + self.max_drift
        elif new_tick - self.microtick < -self.max_drift:
            self.current_tick = self.microtick - self.max_drift
        else:
            self.current_tick = new_tick

    def correct_events(self) -> None:
        """Reschedule pending slot events after the macrotick length changed."""
        for event in self.registered_events:
            if event.kind not in _SLOT_EVENTS:
                continue
            self.cancel_event(event)
            ticks = self.ticks()
            if event.action_time > ticks:
                offset = _unsigned(event.action_time - self.cycle_counter * self.cycle_ticks())
                self.schedule_at(self.last_cycle_start + self.macrotick * offset, event)
            elif event.action_time == ticks:
                self.schedule_at(self.sim_time, event)

    def correct_new_cycle(self) -> None:
        """Shift the next cycle start by the offset correction."""
        if self.new_cycle_msg is None:
            raise RuntimeError("no cycle has been started yet")
        self.cancel_event(self.new_cycle_msg)
        self.schedule_at(
            self.last_cycle_start
            + self.macrotick * self.cycle_ticks()
            + self.offset_correction * self.current_tick,
            self.new_cycle_msg,
        )

    def set_app_gate(self, gate: Gate) -> None:
        self.app_gate = gate

    def static_slot_action_time(self, frame_id: int) -> int:
        """Macrotick of the action point of a static slot within a cycle."""
        if frame_id > 0:
            return _unsigned((frame_id - 1) * self.static_slot + self.action_point_offset)
        return _unsigned(self.action_point_offset)

    def dynamic_slot_action_time(self, frame_id: int) -> int:
        """Macrotick of the action point of a dynamic slot within a cycle."""
        return _unsigned(
            (frame_id - self.number_of_static_slots - 1) * self.minislot
            + self.number_of_static_slots * self.static_slot
            + self.minislot_action_point_offset
        )

    def cycle_ticks(self) -> int:
        """Macroticks in one cycle."""
        return (
            self.static_slot * self.number_of_static_slots
            + self.minislot * self.number_of_minislots
            + self.symbol_window
            + self.nit
        )

    def slot_counter(self) -> int:
        """The current static slot, counted from 1."""
        return int(
            (self.sim_time - self.last_cycle_start) / (self.static_slot * self.macrotick) + 1
        )

    def dynamic_slot(self, slot: int) -> int:
        return slot + self.number_of_static_slots

    def dynamic_frame_received(self, bit_length: int, channel: int) -> None:
        """Push back later dynamic events on ``channel`` by the minislots the frame used."""
        needed = int(
            math.ceil(math.ceil((bit_length / self.bandwidth) / self.macrotick) / self.minislot)
        )
        if channel == 0:
            self.additional_minislots_a += needed - 1
            additional = self.additional_minislots_a
        else:
            self.additional_minislots_b += needed - 1
            additional = self.additional_minislots_b
        if needed <= 1:
            return

        last_action_point = _unsigned(
            self.cycle_ticks()
            - self.symbol_window
            - self.nit
            - self.minislot
            + self.minislot_action_point_offset
            + 1
        )
        cycle_end = self.last_cycle_start + self.cycle_ticks() * self.macrotick
        dropped: list[SchedulerEvent] = []
        for event in self.registered_events:
            if event.kind != SchedulerEventKind.DYNAMIC_EVENT:
                continue
            pending = _unsigned(event.action_time - self.cycle_counter * self.cycle_ticks())
            arrival = event.arrival_time if event.arrival_time is not None else 0.0
            if not (pending > self.ticks() and event.channel == channel and arrival < cycle_end):
                continue
            self.cancel_event(event)
            event.action_time = _unsigned(
                self.dynamic_slot_action_time(event.frame_id) + additional * self.minislot
            )
            if event.action_time <= last_action_point:
                at = self.last_cycle_start + event.action_time * self.macrotick
                self.schedule_at(max(at, self.sim_time), event)
            else:
                # Not enough minislots remain in this cycle for the frame.
                dropped.append(event)
        if dropped:
            self.registered_events = [
                e for e in self.registered_events if all(e is not d for d in dropped)
            ]

    def calculate_deviation_value(self) -> int:
        """Microticks between now and the action point of the current static slot."""
        action_point = self.last_cycle_start + (
            (self.slot_counter() - 1) * self.static_slot + self.action_point_offset
        ) * self.macrotick
        return int((self.sim_time - action_point) / self.current_tick)