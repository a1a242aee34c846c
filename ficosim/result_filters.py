"""Result filters that transform recorded signal values."""

from __future__ import annotations

from typing import Any, Protocol

from ficosim.core import Message
from ficosim.frames import CanDataFrame, ErrorFrame, FRFrame


class ResultListener(Protocol):
    def receive(self, t: float, value: Any, details: Any) -> None: ...

    def finish(self, now: float) -> None: ...


class ResultFilter:
    """Passes values on to its delegates; subclasses transform them."""

    def __init__(self) -> None:
        self._delegates: list[ResultListener] = []

    @property
    def delegates(self) -> tuple[ResultListener, ...]:
        return tuple(self._delegates)

    def add_delegate(self, listener: ResultListener) -> None:
        self._delegates.append(listener)

    def fire(self, t: float, value: Any, details: Any) -> None:
        for delegate in self._delegates:
            delegate.receive(t, value, details)

    def receive(self, t: float, value: Any, details: Any) -> None:
        self.fire(t, value, details)

    def finish(self, now: float) -> None:
        for delegate in self._delegates:
            delegate.finish(now)


class NumericResultFilter(ResultFilter):
    """A filter over numbers; ``process`` returns ``(t, value)`` or None to drop."""

    def receive(self, t: float, value: Any, details: Any) -> None:
        if not isinstance(value, (int, float)):
            raise TypeError(f"{type(self).__name__} expects a number, got {type(value).__name__}")
        result = self.process(t, float(value), details)
        if result is not None:
            self.fire(result[0], result[1], details)

    def process(self, t: float, value: float, details: Any) -> tuple[float, float] | None:
        return t, value


class TimestampAgeFilter(ResultFilter):
    """Turns a message into its age: time now minus its timestamp."""

    def receive(self, t: float, value: Any, details: Any) -> None:
        if isinstance(value, Message):
            self.fire(t, t - value.timestamp, details)
        else:
            self.fire(t, value, details)


class IDFilter(ResultFilter):
    """Turns a CAN or FlexRay frame into its identifier."""

    def receive(self, t: float, value: Any, details: Any) -> None:
        if isinstance(value, (CanDataFrame, ErrorFrame)):
            self.fire(t, value.can_id, details)
        elif isinstance(value, FRFrame):
            self.fire(t, value.frame_id, details)
        else:
            self.fire(t, value, details)


class LowHighRatioFilter(NumericResultFilter):
    """Share of time the signal has been positive since its first value."""

    def __init__(self) -> None:
        super().__init__()
        self.low = 0.0
        self.high = 0.0
        self.last = 0.0
        self.last_time = -1.0

    def process(self, t: float, value: float, details: Any) -> tuple[float, float]:
        # The first value only starts the measurement, so warm-up is not counted.
        if self.last_time < 0:
            self.last, self.last_time = value, t
            return t, 0.0
        if self.last > 0:
            self.high += t - self.last_time
        else:
            self.low += t - self.last_time
        self.last, self.last_time = value, t
        total = self.high + self.low
        return t, (self.high / total if total > 0 else 0.0)


class RmNaNFilter(NumericResultFilter):
    """Records a zero at the end when no value was ever seen."""

    def __init__(self) -> None:
        super().__init__()
        self.had_values = False

    def process(self, t: float, value: float, details: Any) -> tuple[float, float]:
        self.had_values = True
        return t, value

    def finish(self, now: float) -> None:
        if not self.had_values:
            self.fire(now, 0, None)
        super().finish(now)


FILTERS: dict[str, type[ResultFilter]] = {
    "timestampAge": TimestampAgeFilter,
    "ID": IDFilter,
    "lowHighRatio": LowHighRatioFilter,
    "rmNaN": RmNaNFilter,
}