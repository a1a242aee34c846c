import logging

import pytest

from ficosim.core import Message, Module, Simulation
from ficosim.fr_port_input import FRPortInput
from ficosim.fr_scheduler import FRScheduler
from ficosim.fr_sync import FRSync, SyncError
from ficosim.frames import Channel, FRFrame
from ficosim.scheduler_event import SchedulerEventKind

NODE_PARAMS = {
    "gCycleCountMax": 63,
    "maxDriftChange": 0.0,
    "maxDrift": 0.0,
    "pdMicrotick": 2.5e-8,
    "gdMacrotick": 1e-6,
    "gdStaticSlot": 10,
    "gdMinislot": 5,
    "gdNIT": 2,
    "gdSymbolWindow": 0,
    "gNumberOfMinislots": 10,
    "gNumberOfStaticSlots": 4,
    "gdActionPointOffset": 1,
    "gdMinislotActionPointOffset": 1,
    "bandwidth": 10e6,
}

SYNC_PARAMS = {
    "pOffsetCorrectionOut": 100,
    "pRateCorrectionOut": 100,
    "pClusterDriftDamping": 1,
}


class Sink(Module):
    def __init__(self, name):
        super().__init__(name)
        self.add_gate("in")
        self.received = []

    def handle_message(self, msg):
        self.received.append((self.sim_time, msg))


@pytest.fixture
def setup():
    sim = Simulation(seed=1)
    node = Module("node", params=NODE_PARAMS)
    scheduler = node.add_submodule(FRScheduler())
    sync = node.add_submodule(FRSync(params=SYNC_PARAMS))
    port = node.add_submodule(Module("port"))
    port_input = port.add_submodule(FRPortInput())
    sink = node.add_submodule(Sink("sink"))
    port_input.gate("out").connect(sink.gate("in"))
    sim.set_network(node)
    return sim, scheduler, sync, port_input, sink


def test_bandwidth_read_from_node(setup):
    _, _, _, port_input, _ = setup
    assert port_input.bandwidth == 10e6


def test_schedule_timing(setup):
    _, _, _, port_input, _ = setup
    assert port_input.calculate_schedule_timing(100) == pytest.approx(100 / 10e6)


def test_static_frame_forwarded_after_transmission(setup):
    sim, _, _, port_input, sink = setup
    seen = []
    sim.subscribe("receivedCompleteSF", lambda src, value: seen.append(value))
    frame = FRFrame("f", kind=SchedulerEventKind.STATIC_EVENT, bit_length=100, frame_id=1)
    sim.schedule(0.0, frame, port_input)
    sim.run(until=2e-5)
    assert [msg for _, msg in sink.received] == [frame]
    assert sink.received[0][0] == pytest.approx(100 / 10e6)
    assert seen == [frame]
    assert port_input.wrong_slot_frames == 0


def test_sync_frame_stores_deviation(setup):
    sim, _, sync, port_input, _ = setup
    frame = FRFrame(
        "sync",
        kind=SchedulerEventKind.STATIC_EVENT,
        bit_length=100,
        frame_id=1,
        cycle_number=0,
        channel=Channel.A,
        sync_frame_indicator=True,
    )
    sim.schedule(0.0, frame, port_input)
    sim.run(until=2e-5)
    with pytest.raises(SyncError):
        sync.store_deviation_value(1, 0, Channel.A, 0, True)


def test_static_frame_in_wrong_slot(setup, caplog):
    sim, _, _, port_input, sink = setup
    frame = FRFrame(
        "late",
        kind=SchedulerEventKind.STATIC_EVENT,
        bit_length=100,
        frame_id=3,
        sync_frame_indicator=True,
    )
    sim.schedule(0.0, frame, port_input)
    with caplog.at_level(logging.WARNING, logger="ficosim.fr_port_input"):
        sim.run(until=2e-5)
    assert port_input.wrong_slot_frames == 1
    assert "wrong slot" in caplog.text
    assert [msg for _, msg in sink.received] == [frame]


def test_non_frame_self_message_forwarded(setup):
    sim, _, _, port_input, sink = setup
    timer = Message("timer")
    port_input.schedule_at(1e-6, timer)
    sim.run(until=2e-6)
    assert [msg for _, msg in sink.received] == [timer]


def test_requires_node_port_layout():
    sim = Simulation()
    orphan = FRPortInput()
    with pytest.raises(RuntimeError):
        sim.set_network(orphan)