"""Clock drift model of a CAN node."""

from __future__ import annotations

from typing import Any

from ficosim.core import Module

CLOCK_DRIFT_SIGNAL = "clockDrift"


class CanClock(Module):
    """Simulates the drift of a CAN node's clock.

    The drift never leaves ``[-maxDrift, maxDrift]`` and changes by at most
    ``maxDriftChange`` per second of simulation time since the last update.
    """

    def __init__(self, name: str = "canClock", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.drift = 0.0
        self.max_drift = 0.0
        self.max_drift_change = 0.0
        self.random_start_drift = True
        self.last_drift_update = 0.0

    def initialize(self) -> None:
        self.max_drift = float(self.par("maxDrift"))
        self.max_drift_change = float(self.par("maxDriftChange"))
        self.last_drift_update = self.sim_time
        self.random_start_drift = bool(self.par("randomStartDrift"))
        if self.random_start_drift:
            self.drift = self.uniform(-self.max_drift, self.max_drift)

    def _update_drift(self) -> None:
        now = self.sim_time
        elapsed = now - self.last_drift_update
        self.last_drift_update = now
        max_change = self.max_drift_change * elapsed
        new_drift = self.drift + self.uniform(-max_change, max_change)
        self.drift = max(-self.max_drift, min(self.max_drift, new_drift))
        self.emit(CLOCK_DRIFT_SIGNAL, self.drift)

    def current_drift(self) -> float:
        """Advance the drift to the current time, emit it and return it."""
        self._update_drift()
        return self.drift