import pytest

from ficosim.core import (
    DisplayString,
    Gate,
    Message,
    Module,
    NodePort,
    Packet,
    Simulation,
    find_module_wherever_in_node,
    gate_by_full_path,
    gate_by_short_path,
    is_network_node,
)


class Recorder(Module):
    def __init__(self, name, **kwargs):
        super().__init__(name, **kwargs)
        self.received = []
        self.add_gate("in")

    def handle_message(self, msg):
        self.received.append((self.simulation.now, msg))


class InitLogger(Module):
    def __init__(self, name, log):
        super().__init__(name)
        self.log = log

    def initialize(self):
        self.log.append(self.name)


@pytest.fixture
def net():
    network = Module("net")
    node = network.add_submodule(Module("node", properties={"node": True}))
    port = node.add_submodule(NodePort("port"))
    app = node.add_submodule(Recorder("app"))
    bus = network.add_submodule(Recorder("bus"))
    port.gate("upperLayerOut").connect(app.gate("in"))
    port.gate("phygate$o").connect(bus.gate("in"))
    bus.add_gate("out").connect(port.gate("phygate$i"))
    sim = Simulation(seed=1)
    sim.set_network(network)
    return sim, network, node, port, app, bus


def test_node_port_forwards_bus_traffic_up(net):
    sim, _, _, _, app, bus = net
    msg = Message("frame")
    bus.send(msg, "out")
    sim.run()
    assert [m for _, m in app.received] == [msg]
    assert msg.arrived_on("in")
    assert bus.received == []


def test_node_port_forwards_upper_traffic_to_bus(net):
    sim, _, _, port, app, bus = net
    port.add_gate("upperLayerIn")
    app.add_gate("out").connect(port.gate("upperLayerIn"))
    msg = Message("frame")
    app.send(msg, "out")
    sim.run()
    assert [m for _, m in bus.received] == [msg]
    assert app.received == []


def test_send_msg_to_bus(net):
    sim, _, _, port, _, bus = net
    msg = Message("direct")
    port.send_msg_to_bus(msg)
    sim.run()
    assert bus.received[0][1] is msg
    assert not msg.is_self_message


def test_events_in_time_order(net):
    sim, _, _, _, app, _ = net
    late, early = Message("late"), Message("early")
    app.schedule_at(2.0, late)
    app.schedule_at(1.0, early)
    assert sim.run() == 2
    assert [m for _, m in app.received] == [early, late]
    assert [t for t, _ in app.received] == [1.0, 2.0]
    assert early.is_self_message


def test_equal_times_keep_insertion_order(net):
    sim, _, _, _, app, _ = net
    first, second = Message("a"), Message("b")
    app.schedule_at(1.0, first)
    app.schedule_at(1.0, second)
    sim.run()
    assert [m for _, m in app.received] == [first, second]


def test_cancel_event(net):
    sim, _, _, _, app, _ = net
    msg = Message("timer")
    app.schedule_at(1.0, msg)
    assert msg.is_scheduled
    assert app.cancel_event(msg) is msg
    assert not msg.is_scheduled
    assert sim.run() == 0
    assert app.received == []


def test_cancel_none_returns_none(net):
    _, _, _, _, app, _ = net
    assert app.cancel_event(None) is None


def test_double_schedule_raises(net):
    _, _, _, _, app, _ = net
    msg = Message("timer")
    app.schedule_at(1.0, msg)
    with pytest.raises(ValueError):
        app.schedule_at(2.0, msg)


def test_schedule_in_past_raises(net):
    sim, _, _, _, app, _ = net
    app.schedule_at(1.0, Message("x"))
    sim.run()
    with pytest.raises(ValueError):
        app.schedule_at(0.5, Message("y"))


def test_run_until_stops(net):
    sim, _, _, _, app, _ = net
    later = Message("later")
    app.schedule_at(1.0, Message("soon"))
    app.schedule_at(5.0, later)
    assert sim.run(until=3.0) == 1
    assert sim.now == 3.0
    assert later.is_scheduled


def test_step_on_empty_queue(net):
    sim = net[0]
    assert sim.step() is False


def test_emit_reaches_subscribers(net):
    sim, _, _, _, app, _ = net
    seen = []
    sim.subscribe("sig", lambda src, value: seen.append((src, value)))
    app.emit("sig", 7)
    app.emit("other", 8)
    assert seen == [(app, 7)]


def test_intuniform_in_range(net):
    _, _, _, _, app, _ = net
    values = {app.intuniform(2, 3) for _ in range(100)}
    assert values <= {2, 3}
    with pytest.raises(ValueError):
        app.intuniform(5, 1)


def test_uniform_in_range(net):
    _, _, _, _, app, _ = net
    assert all(-1.0 <= app.uniform(-1.0, 1.0) <= 1.0 for _ in range(100))


def test_same_seed_same_draws():
    first_module = Module("m")
    Simulation(seed=42).set_network(first_module)
    first = [first_module.intuniform(0, 99) for _ in range(20)]

    second_module = Module("m")
    Simulation(seed=42).set_network(second_module)
    second = [second_module.intuniform(0, 99) for _ in range(20)]

    assert first == second
    assert all(0 <= value <= 99 for value in first)
    assert len(set(first)) > 1


def test_par_and_missing_par():
    module = Module("m", params={"bandwidth": 500000.0})
    assert module.par("bandwidth") == 500000.0
    with pytest.raises(KeyError):
        module.par("errorperc")


def test_gate_errors():
    module = Module("m")
    module.add_gate("in")
    with pytest.raises(ValueError):
        module.add_gate("in")
    with pytest.raises(KeyError):
        module.gate("out")


def test_duplicate_submodule_raises():
    parent = Module("p")
    parent.add_submodule(Module("c"))
    with pytest.raises(ValueError):
        parent.add_submodule(Module("c"))


def test_unconnected_send_raises(net):
    _, _, _, _, app, _ = net
    app.add_gate("out")
    with pytest.raises(RuntimeError):
        app.send(Message("m"), "out")


def test_detached_module_has_no_simulation():
    with pytest.raises(RuntimeError):
        Module("alone").simulation


def test_default_handle_message_raises(net):
    sim, network, *_ = net
    network.schedule_at(0.0, Message("x"))
    with pytest.raises(RuntimeError):
        sim.run()


def test_initialize_parent_first():
    log = []
    root = InitLogger("root", log)
    child = root.add_submodule(InitLogger("child", log))
    child.add_submodule(InitLogger("grandchild", log))
    Simulation().set_network(root)
    assert log == ["root", "child", "grandchild"]


def test_module_by_path(net):
    sim, network, _, port, _, _ = net
    assert sim.module_by_path("net.node.port") is port
    assert sim.module_by_path("net") is network
    assert sim.module_by_path("net.missing") is None
    assert sim.module_by_path("other.node") is None
    assert port.full_path == "net.node.port"


def test_gate_by_full_path(net):
    sim, _, _, port, _, _ = net
    assert gate_by_full_path(sim, "net.node.port.phygate$o") is port.gate("phygate$o")
    assert gate_by_full_path(sim, "nodot") is None
    assert gate_by_full_path(sim, "net.nothing.in") is None


def test_gate_by_short_path(net):
    _, _, _, port, app, _ = net
    assert gate_by_short_path("app.in", port) is app.gate("in")
    assert gate_by_short_path("bus.in", port) is None
    assert gate_by_short_path("nodot", port) is None


def test_find_module_stops_at_node(net):
    _, _, _, port, app, bus = net
    assert find_module_wherever_in_node("app", port) is app
    assert find_module_wherever_in_node("bus", port) is None
    assert find_module_wherever_in_node("app", bus) is app


def test_is_network_node(net):
    _, network, node, *_ = net
    assert is_network_node(node) is True
    assert is_network_node(network) is False


def test_message_dup(net):
    _, _, _, _, app, _ = net
    msg = Message("m", kind=3)
    app.schedule_at(1.0, msg)
    clone = msg.dup()
    assert clone is not msg
    assert (clone.name, clone.kind) == ("m", 3)
    assert not clone.is_scheduled
    clone.kind = 4
    assert msg.kind == 3


def test_packet_encapsulation_round_trip():
    outer = Packet("outer", bit_length=64)
    inner = Packet("inner", bit_length=32)
    outer.encapsulate(inner)
    assert outer.bit_length == 64 + 32
    with pytest.raises(ValueError):
        outer.encapsulate(Packet("another", bit_length=8))
    assert outer.decapsulate() is inner
    assert outer.bit_length == 64
    assert outer.decapsulate() is None


def test_packet_encapsulate_none_is_noop():
    packet = Packet("p", bit_length=16)
    packet.encapsulate(None)
    assert packet.bit_length == 16
    assert packet.encapsulated is None


def test_packet_byte_length_round_trip():
    packet = Packet("p")
    packet.byte_length = 3
    assert packet.bit_length == 24
    assert packet.byte_length == 3


def test_packet_dup_copies_payload():
    outer = Packet("outer", bit_length=8)
    outer.encapsulate(Packet("inner", bit_length=8))
    clone = outer.dup()
    assert clone.encapsulated is not outer.encapsulated
    assert clone.encapsulated.name == "inner"
    assert clone.bit_length == outer.bit_length


def test_display_string():
    ds = DisplayString()
    ds.set_tag_arg("ls", 1, "3")
    assert ds.get_tag_arg("ls", 0) == ""
    assert ds.get_tag_arg("ls", 1) == "3"
    assert ds.get_tag_arg("i", 5) == ""
    assert str(ds) == "ls=,3"


def test_display_string_parse_round_trip():
    text = "i=block/x,yellow;ls=red,3"
    ds = DisplayString(text)
    assert ds.get_tag_arg("i", 1) == "yellow"
    assert str(ds) == text


def test_gate_chain():
    a, b, c = Module("a"), Module("b"), Module("c")
    start = a.add_gate("out")
    middle = b.add_gate("through")
    end = c.add_gate("in")
    start.connect(middle)
    middle.connect(end)
    assert start.path_end_gate() is end
    assert end.previous_gate is middle
    assert isinstance(end, Gate)
    with pytest.raises(ValueError):
        start.connect(end)