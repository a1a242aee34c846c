"""Discrete-event simulation kernel: messages, gates, modules and the event loop."""

from __future__ import annotations

import copy
import heapq
import itertools
import random
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

FICOSIM_VERSION = 0x0100

Listener = Callable[["Module", Any], None]


@dataclass(eq=False)
class Message:
    """A message travelling between modules or scheduled as a timer."""

    name: str = ""
    kind: int = 0
    timestamp: float = 0.0
    arrival_gate: str | None = field(default=None, init=False)
    arrival_time: float | None = field(default=None, init=False)
    is_self_message: bool = field(default=False, init=False)
    _event_id: int | None = field(default=None, init=False, repr=False)

    @property
    def is_scheduled(self) -> bool:
        """True while the message sits in the future event set."""
        return self._event_id is not None

    def dup(self) -> Message:
        """Return an unscheduled copy of the message."""
        clone = copy.copy(self)
        clone._event_id = None
        return clone

    def arrived_on(self, gate_name: str) -> bool:
        """Whether the message arrived through the named gate."""
        return self.arrival_gate == gate_name


@dataclass(eq=False)
class Packet(Message):
    """A message with a length that can carry another packet."""

    bit_length: int = 0
    encapsulated: Packet | None = field(default=None, init=False)

    @property
    def byte_length(self) -> int:
        return (self.bit_length + 7) // 8

    @byte_length.setter
    def byte_length(self, value: int) -> None:
        self.bit_length = value * 8

    def encapsulate(self, packet: Packet | None) -> None:
        """Carry ``packet`` inside this one, adding its length."""
        if packet is None:
            return
        if self.encapsulated is not None:
            raise ValueError(f"packet {self.name!r} already encapsulates a packet")
        if packet.is_scheduled:
            raise ValueError(f"packet {packet.name!r} is scheduled and cannot be encapsulated")
        self.encapsulated = packet
        self.bit_length += packet.bit_length

    def decapsulate(self) -> Packet | None:
        """Remove and return the carried packet, or None if there is none."""
        inner = self.encapsulated
        if inner is None:
            return None
        if self.bit_length < inner.bit_length:
            raise ValueError(f"packet {self.name!r} is shorter than its encapsulated packet")
        self.bit_length -= inner.bit_length
        self.encapsulated = None
        return inner

    def dup(self) -> Packet:
        clone = super().dup()
        if self.encapsulated is not None:
            clone.encapsulated = self.encapsulated.dup()
        return clone


class DisplayString:
    """Tagged display attributes such as ``i=block/x,yellow;ls=red,3``."""

    def __init__(self, text: str = "") -> None:
        self._tags: dict[str, list[str]] = {}
        for part in filter(None, text.split(";")):
            tag, _, args = part.partition("=")
            self._tags[tag] = args.split(",") if args else []

    def set_tag_arg(self, tag: str, index: int, value: str) -> None:
        args = self._tags.setdefault(tag, [])
        if len(args) <= index:
            args.extend([""] * (index + 1 - len(args)))
        args[index] = value

    def get_tag_arg(self, tag: str, index: int) -> str:
        args = self._tags.get(tag, [])
        return args[index] if index < len(args) else ""

    def __str__(self) -> str:
        return ";".join(f"{tag}={','.join(args)}" for tag, args in self._tags.items())


class Gate:
    """A named connection point of a module."""

    def __init__(self, name: str, owner: Module) -> None:
        self.name = name
        self.owner = owner
        self.next_gate: Gate | None = None
        self.previous_gate: Gate | None = None
        self.display_string = DisplayString()

    def connect(self, other: Gate) -> Gate:
        """Link this gate to ``other``; messages sent here travel on to it."""
        if self.next_gate is not None:
            raise ValueError(f"gate {self.name!r} is already connected")
        self.next_gate = other
        other.previous_gate = self
        return other

    def path_end_gate(self) -> Gate:
        """The last gate of the connection path starting here."""
        gate = self
        while gate.next_gate is not None:
            gate = gate.next_gate
        return gate

    def __repr__(self) -> str:
        return f"Gate({self.owner.full_path}.{self.name})"


class Module:
    """A simulation component with gates, parameters and submodules."""

    def __init__(
        self,
        name: str,
        params: dict[str, Any] | None = None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.parent: Module | None = None
        self.params = dict(params or {})
        self.properties = dict(properties or {})
        self.display_string = DisplayString()
        self._submodules: dict[str, Module] = {}
        self._gates: dict[str, Gate] = {}
        self._simulation: Simulation | None = None

    @property
    def full_name(self) -> str:
        return self.name

    @property
    def full_path(self) -> str:
        if self.parent is None:
            return self.full_name
        return f"{self.parent.full_path}.{self.full_name}"

    @property
    def submodules(self) -> list[Module]:
        return list(self._submodules.values())

    @property
    def simulation(self) -> Simulation:
        module: Module | None = self
        while module is not None:
            if module._simulation is not None:
                return module._simulation
            module = module.parent
        raise RuntimeError(f"module {self.full_path!r} is not part of a simulation")

    @property
    def sim_time(self) -> float:
        return self.simulation.now

    def add_submodule(self, module: Module) -> Module:
        if module.parent is not None:
            raise ValueError(f"module {module.name!r} already has a parent")
        if module.full_name in self._submodules:
            raise ValueError(f"module {self.full_path!r} already has a submodule {module.name!r}")
        module.parent = self
        self._submodules[module.full_name] = module
        return module

    def submodule(self, name: str) -> Module | None:
        return self._submodules.get(name)

    def add_gate(self, name: str) -> Gate:
        if name in self._gates:
            raise ValueError(f"module {self.full_path!r} already has a gate {name!r}")
        gate = Gate(name, self)
        self._gates[name] = gate
        return gate

    def gate(self, name: str) -> Gate:
        try:
            return self._gates[name]
        except KeyError:
            raise KeyError(f"module {self.full_path!r} has no gate {name!r}") from None

    def par(self, name: str) -> Any:
        try:
            return self.params[name]
        except KeyError:
            raise KeyError(f"module {self.full_path!r} has no parameter {name!r}") from None

    def initialize(self) -> None:
        """Called once when the network is set up."""

    def handle_message(self, msg: Message) -> None:
        raise RuntimeError(f"module {self.full_path!r} does not handle messages")

    def send(self, msg: Message, gate_name: str) -> None:
        gate = self.gate(gate_name)
        if gate.next_gate is None:
            raise RuntimeError(f"gate {gate_name!r} of {self.full_path!r} is not connected")
        self._deliver(msg, gate.path_end_gate())

    def send_direct(self, msg: Message, gate: Gate) -> None:
        self._deliver(msg, gate)

    def _deliver(self, msg: Message, gate: Gate) -> None:
        msg.is_self_message = False
        msg.arrival_gate = gate.name
        simulation = self.simulation
        simulation.schedule(simulation.now, msg, gate.owner)

    def schedule_at(self, time: float, msg: Message) -> None:
        msg.is_self_message = True
        msg.arrival_gate = None
        self.simulation.schedule(time, msg, self)

    def cancel_event(self, msg: Message | None) -> Message | None:
        if msg is None:
            return None
        return self.simulation.cancel(msg)

    def emit(self, signal: str, value: Any) -> None:
        self.simulation._emit(self, signal, value)

    def uniform(self, a: float, b: float) -> float:
        return self.simulation.rng.uniform(a, b)

    def intuniform(self, a: int, b: int) -> int:
        if a > b:
            raise ValueError(f"intuniform(): arguments must satisfy a <= b, got {a} and {b}")
        return self.simulation.rng.randint(a, b)

    def walk(self) -> Iterator[Module]:
        """This module followed by all its descendants, parents first."""
        yield self
        for sub in self._submodules.values():
            yield from sub.walk()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.full_path!r})"


class Simulation:
    """The future event set, the clock and the signal listeners."""

    def __init__(self, seed: int | None = None) -> None:
        self.now = 0.0
        self.network: Module | None = None
        self.rng = random.Random(seed)
        self.event_count = 0
        self._queue: list[tuple[float, int, Message, Module]] = []
        self._ids = itertools.count()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def set_network(self, module: Module) -> None:
        """Make ``module`` the root of the network and initialize every module."""
        if module.parent is not None:
            raise ValueError("the network module must not have a parent")
        self.network = module
        module._simulation = self
        for each in module.walk():
            each.initialize()

    def module_by_path(self, path: str) -> Module | None:
        if self.network is None:
            return None
        first, *rest = path.split(".")
        if first != self.network.full_name:
            return None
        module: Module | None = self.network
        for part in rest:
            module = module.submodule(part)
            if module is None:
                return None
        return module

    def subscribe(self, signal: str, listener: Listener) -> None:
        self._listeners[signal].append(listener)

    def _emit(self, source: Module, signal: str, value: Any) -> None:
        for listener in self._listeners.get(signal, ()):
            listener(source, value)

    def schedule(self, time: float, msg: Message, module: Module) -> None:
        if msg.is_scheduled:
            raise ValueError(f"message {msg.name!r} is already scheduled")
        if time < self.now:
            raise ValueError(f"cannot schedule {msg.name!r} at {time}, before now ({self.now})")
        event_id = next(self._ids)
        msg._event_id = event_id
        msg.arrival_time = time
        heapq.heappush(self._queue, (time, event_id, msg, module))

    def cancel(self, msg: Message) -> Message:
        msg._event_id = None
        return msg

    def _drop_cancelled(self) -> None:
        while self._queue and self._queue[0][2]._event_id != self._queue[0][1]:
            heapq.heappop(self._queue)

    def step(self) -> bool:
        """Deliver the next event; False when nothing is left."""
        self._drop_cancelled()
        if not self._queue:
            return False
        time, _, msg, module = heapq.heappop(self._queue)
        self.now = time
        msg._event_id = None
        self.event_count += 1
        module.handle_message(msg)
        return True

    def run(self, until: float | None = None) -> int:
        """Process events up to ``until`` (inclusive) and return how many ran."""
        processed = 0
        while True:
            self._drop_cancelled()
            if not self._queue:
                break
            if until is not None and self._queue[0][0] > until:
                break
            self.step()
            processed += 1
        if until is not None and self.now < until:
            self.now = until
        return processed


class NodePort(Module):
    """Joins a node to the bus: bus traffic goes up, everything else goes out."""

    def __init__(self, name: str = "nodePort", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        for gate_name in ("phygate$i", "phygate$o", "upperLayerOut"):
            self.add_gate(gate_name)

    def handle_message(self, msg: Message) -> None:
        if msg.arrived_on("phygate$i"):
            self.send(msg, "upperLayerOut")
        else:
            self.send(msg, "phygate$o")

    def send_msg_to_bus(self, msg: Message) -> None:
        self.send(msg, "phygate$o")


def gate_by_full_path(simulation: Simulation, path: str) -> Gate | None:
    """The gate named by ``network.module.gate``, or None if the module is missing."""
    module_path, dot, gate_name = path.rpartition(".")
    if not dot:
        return None
    module = simulation.module_by_path(module_path)
    return module.gate(gate_name) if module is not None else None


def gate_by_short_path(name_and_gate: str, start: Module) -> Gate | None:
    """The gate named by ``module.gate`` within the node containing ``start``."""
    module_name, dot, gate_name = name_and_gate.rpartition(".")
    if not dot:
        return None
    module = find_module_wherever_in_node(module_name, start)
    return module.gate(gate_name) if module is not None else None


def _find_submodule_recursive(module: Module, name: str) -> Module | None:
    for sub in module.submodules:
        if sub.full_name == name:
            return sub
        found = _find_submodule_recursive(sub, name)
        if found is not None:
            return found
    return None


def find_module_wherever_in_node(name: str, start: Module) -> Module | None:
    """Search upwards from ``start``, not beyond the enclosing network node."""
    current: Module | None = start
    while current is not None:
        found = _find_submodule_recursive(current, name)
        if found is not None or is_network_node(current):
            return found
        current = current.parent
    return None


def is_network_node(module: Module) -> bool:
    return bool(module.properties.get("node", False))