"""
Shared windowing and streaming statistics helpers for rule strategies.

Statistics use Welford's online update so that long windows of nearly equal
values (flat ECG baselines) do not lose precision to cancellation.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from alert_engine.domain.models import MeasurementRecord

T = TypeVar("T")


class TrendDirection(str, Enum):
    """Direction of a monotonic run of readings."""

    INCREASING = "Increasing"
    DECREASING = "Decreasing"


@dataclass
class RunningStats:
    """Streaming count / mean / population variance."""

    count: int = 0
    mean: float = 0.0
    _m2: float = 0.0

    @classmethod
    def of(cls, values: Iterable[float]) -> "RunningStats":
        stats = cls()
        for value in values:
            stats.push(value)
        return stats

    def push(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)

    def merge(self, other: "RunningStats") -> "RunningStats":
        """Combine two partial aggregates (parallel form of the update)."""
        if other.count == 0:
            return RunningStats(self.count, self.mean, self._m2)
        if self.count == 0:
            return RunningStats(other.count, other.mean, other._m2)
        count = self.count + other.count
        delta = other.mean - self.mean
        mean = self.mean + delta * other.count / count
        m2 = self._m2 + other._m2 + delta * delta * self.count * other.count / count
        return RunningStats(count, mean, m2)

    @property
    def variance(self) -> float:
        """Population variance; 0.0 for an empty aggregate."""
        if self.count == 0:
            return 0.0
        return max(self._m2 / self.count, 0.0)

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)


def values_of(records: Iterable[MeasurementRecord]) -> list[float]:
    return [r.value for r in records]


def lookback_start(now_ms: int, window_ms: int) -> int:
    """First timestamp inside a window ending at now."""
    return now_ms - window_ms


def latest(records: Sequence[T]) -> T | None:
    return records[-1] if records else None


def tail(records: Sequence[T], count: int) -> list[T]:
    """Last ``count`` items in their original order."""
    if count <= 0:
        return []
    return list(records[-count:])


def consecutive_differences(values: Sequence[float]) -> list[float]:
    return [b - a for a, b in zip(values, values[1:], strict=False)]


def mean_absolute_step(values: Sequence[float]) -> float:
    diffs = consecutive_differences(values)
    if not diffs:
        return 0.0
    return RunningStats.of(abs(d) for d in diffs).mean


def trend_direction(values: Sequence[float], step: float) -> TrendDirection | None:
    """
    Direction when every consecutive difference exceeds ``step``.

    Needs at least two values; a single step that fails the magnitude test
    breaks the run.
    """
    diffs = consecutive_differences(values)
    if not diffs:
        return None
    if all(d > step for d in diffs):
        return TrendDirection.INCREASING
    if all(d < -step for d in diffs):
        return TrendDirection.DECREASING
    return None
