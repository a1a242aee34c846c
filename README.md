# ficosim

A small discrete-event simulation kernel with models of the parts of CAN and
FlexRay fieldbus nodes: port modules that receive and transmit frames and
inject errors, a drifting CAN clock, the FlexRay cycle scheduler, and the
FlexRay clock synchronisation (fault-tolerant midpoint offset and rate
correction).

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `ficosim.core`: the kernel. `Simulation` holds the clock, the future event
  set, a seeded random generator and signal listeners (`subscribe`,
  `schedule`, `cancel`, `step`, `run`, `set_network`, `module_by_path`).
  `Module` has gates, parameters (`par`), submodules and the calls a model
  uses: `send`, `send_direct`, `schedule_at`, `cancel_event`, `emit`,
  `uniform`, `intuniform`. Also `Gate`, `Message`, `Packet` (with
  `encapsulate`/`decapsulate`), `DisplayString`, the pass-through `NodePort`,
  and the lookup helpers `gate_by_full_path`, `gate_by_short_path`,
  `find_module_wherever_in_node` and `is_network_node` (a module whose
  `properties` has `"node"` set).
- `ficosim.frames`: `CanDataFrame`, `ErrorFrame`, `FRFrame` and the FlexRay
  `Channel` (`A`, `B`, `AB`).
- `ficosim.scheduler_event`: `SchedulerEvent`, `SchedulerActionTimeEvent` and
  `SchedulerEventKind`.
- `ficosim.result_filters`: `ResultFilter`, `NumericResultFilter` and the
  filters `TimestampAgeFilter`, `IDFilter`, `LowHighRatioFilter` and
  `RmNaNFilter`; `FILTERS` maps their names (`"timestampAge"`, `"ID"`,
  `"lowHighRatio"`, `"rmNaN"`) to the classes.
- `ficosim.can_clock`: `CanClock`, whose drift stays within `maxDrift` and
  changes by at most `maxDriftChange` per second; `current_drift()` updates,
  emits (`"clockDrift"`) and returns it.
- `ficosim.fr_sync`: `FRSync`, `SyncError` and `ftm_algorithm`.
- `ficosim.fr_scheduler`: `FRScheduler`, cycle and slot timing, clock drift
  and clock correction; it reads its parameters from its parent node module
  and uses the sibling `frSync`.
- `ficosim.fr_port_input`, `ficosim.fr_port_output`: `FRPortInput` and
  `FRPortOutput`.
- `ficosim.can_port_input`, `ficosim.can_port_output`: `CanPortInput` and
  `CanPortOutput`, with send and receive errors injected with probability
  `errorperc` percent.

## Example

```python
from ficosim.fr_sync import ftm_algorithm

# Fault-tolerant midpoint: with 3..7 values the extremes are dropped,
# with more than 7 the two smallest and two largest.
print(ftm_algorithm([5, -3, 10, 2]))  # -> 3
```

Models are built from `Module` instances joined through `Gate` objects; a
`Simulation` is given the root module with `set_network`, which initializes
every module, and is then driven with `run(until)` or `step()`. Emitted
signals reach the callables registered with `Simulation.subscribe`.

## What the package does not do

It provides node components only. There is no bus module, no output or input
buffers and no sending or receiving applications: the CAN ports expect a bus
module reachable through the node's `gate$o` (with a `bandwidth` parameter)
and `CanPortInput.is_sending_node` expects a `bufferOut` submodule with a
`current_frame`, all of which you supply yourself. There is no command-line
runner, no network description or configuration file format, and no
recording of results to files.