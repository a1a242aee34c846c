"""FlexRay clock synchronisation: offset and rate correction."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from ficosim.core import Module

MAX_SYNC_NODES = 15


class SyncError(RuntimeError):
    """Raised when the sync tables are used inconsistently."""


class _EvenOdd(IntEnum):
    EVEN = 0
    ODD = 1


class _Channel(IntEnum):
    A = 0
    B = 1


@dataclass
class _Deviation:
    value: int = 0
    valid: bool = False


def _half(total: int) -> int:
    """Halve an integer, rounding toward zero."""
    return -((-total) // 2) if total < 0 else total // 2


def ftm_algorithm(values: Iterable[int]) -> int:
    """Fault-tolerant midpoint of the measured deviations."""
    ordered = sorted(values)
    if not ordered:
        return 0
    if len(ordered) > 7:
        ordered = ordered[2:-2]
    elif len(ordered) >= 3:
        ordered = ordered[1:-1]
    return _half(ordered[0] + ordered[-1])


class FRSync(Module):
    """Collects deviations of sync frames and computes clock corrections."""

    def __init__(self, name: str = "frSync", **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.offset_correction = 0
        self.rate_correction = 0
        self.offset_correction_out = 0
        self.rate_correction_out = 0
        self.cluster_drift_damping = 0
        self._positions: list[int] = []
        self._table = [
            [[_Deviation() for _ in range(MAX_SYNC_NODES)] for _ in _Channel]
            for _ in _EvenOdd
        ]

    def initialize(self) -> None:
        self.offset_correction_out = int(self.par("pOffsetCorrectionOut"))
        self.rate_correction_out = int(self.par("pRateCorrectionOut"))
        self.cluster_drift_damping = int(self.par("pClusterDriftDamping"))
        self.reset_tables()

    def offset_correction_calculation(self, cycle_counter: int) -> int:
        """Offset correction from the deviations of this cycle's parity."""
        rows = self._table[_EvenOdd(cycle_counter % 2)]
        measured = []
        for a, b in zip(rows[_Channel.A], rows[_Channel.B]):
            if a.valid and b.valid:
                measured.append(min(a.value, b.value))
            elif a.valid:
                measured.append(a.value)
            elif b.valid:
                measured.append(b.value)
        correction = ftm_algorithm(measured)
        limit = self.offset_correction_out
        self.offset_correction = max(-limit, min(limit, correction))
        return self.offset_correction

    def rate_correction_calculation(self) -> int:
        """Rate correction from the differences between odd and even cycles."""
        even, odd = self._table[_EvenOdd.EVEN], self._table[_EvenOdd.ODD]
        measured = []
        for even_a, even_b, odd_a, odd_b in zip(
            even[_Channel.A], even[_Channel.B], odd[_Channel.A], odd[_Channel.B]
        ):
            valid_a = even_a.valid and odd_a.valid
            valid_b = even_b.valid and odd_b.valid
            if valid_a and valid_b:
                measured.append(
                    _half(odd_a.value - even_a.value + odd_b.value - even_b.value)
                )
            elif valid_a:
                measured.append(odd_a.value - even_a.value)
            elif valid_b:
                measured.append(odd_b.value - even_b.value)

        if measured:
            self.rate_correction += ftm_algorithm(measured)
            damping = self.cluster_drift_damping
            if self.rate_correction >= damping:
                self.rate_correction -= damping
            elif self.rate_correction <= -damping:
                self.rate_correction += damping
            else:
                self.rate_correction = 0

        limit = self.rate_correction_out
        self.rate_correction = max(-limit, min(limit, self.rate_correction))
        return self.rate_correction

    def _line(self, frame_id: int) -> int:
        try:
            return self._positions.index(frame_id)
        except ValueError:
            pass
        if len(self._positions) >= MAX_SYNC_NODES:
            raise SyncError("too many sync nodes")
        self._positions.append(frame_id)
        return len(self._positions) - 1

    def store_deviation_value(
        self, frame_id: int, even_odd: int, channel: int, value: int, valid: bool
    ) -> None:
        """Record the deviation measured for a sync frame."""
        entry = self._table[even_odd][channel][self._line(frame_id)]
        if entry.valid:
            raise SyncError(f"multiple sync nodes in slot {frame_id}")
        entry.value = value
        entry.valid = valid

    def store_own_sync_frame(self, frame_id: int, even_odd: int) -> None:
        """Record this node's own sync frame as a zero deviation on both channels."""
        line = self._line(frame_id)
        rows = self._table[even_odd]
        entries = [rows[channel][line] for channel in _Channel]
        if all(entry.valid for entry in entries):
            raise SyncError(f"multiple sync nodes in slot {frame_id}")
        for entry in entries:
            entry.value = 0
            entry.valid = True

    def reset_tables(self) -> None:
        """Invalidate every stored deviation and forget the slot positions."""
        for parity in self._table:
            for column in parity:
                for entry in column:
                    entry.valid = False
        self._positions.clear()