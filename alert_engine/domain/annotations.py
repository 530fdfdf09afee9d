"""
Composable alert annotations.

Each annotation wraps another alert (plain or annotated), exposes the same
read-only accessors and only changes the rendered condition. The wrapped
alert is never modified, so it stays valid on its own.
"""

import threading
from typing import Any, Protocol, runtime_checkable

from alert_engine.domain.models import Clock, Priority, system_clock


@runtime_checkable
class AlertLike(Protocol):
    """Read-only view shared by alerts and their annotations."""

    @property
    def patient_id(self) -> str: ...

    @property
    def condition(self) -> str: ...

    @property
    def timestamp(self) -> int: ...

    def as_payload(self) -> dict[str, Any]: ...


class AlertAnnotation:
    """Base wrapper delegating everything to the inner alert."""

    def __init__(self, inner: AlertLike) -> None:
        self._inner = inner

    @property
    def inner(self) -> AlertLike:
        return self._inner

    @property
    def patient_id(self) -> str:
        return self._inner.patient_id

    @property
    def condition(self) -> str:
        return self._inner.condition

    @property
    def timestamp(self) -> int:
        return self._inner.timestamp

    def as_payload(self) -> dict[str, Any]:
        return {
            "patientId": self.patient_id,
            "condition": self.condition,
            "timestamp": self.timestamp,
        }

    def __getattr__(self, name: str) -> Any:
        # Only reached for attributes this wrapper does not define itself
        if name.startswith("__") or name == "_inner":
            raise AttributeError(name)
        return getattr(self._inner, name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(condition={self.condition!r})"


class PriorityAlert(AlertAnnotation):
    """Prefixes the condition with a bracketed priority tag."""

    def __init__(self, inner: AlertLike, priority: Priority) -> None:
        super().__init__(inner)
        self._priority = Priority(priority)

    @property
    def priority(self) -> Priority:
        return self._priority

    @property
    def condition(self) -> str:
        return f"[{self._priority.value} PRIORITY] {self._inner.condition}"


class RepeatedAlert(AlertAnnotation):
    """
    Re-announces an alert at a fixed interval, a bounded number of times.

    The repeat counter and last trigger time belong to this wrapper only.
    A fresh wrapper has never triggered, so its first check succeeds as long
    as repeats remain.
    """

    def __init__(
        self,
        inner: AlertLike,
        repeat_interval_ms: int,
        max_repeats: int,
        clock: Clock = system_clock,
    ) -> None:
        if repeat_interval_ms <= 0:
            raise ValueError("repeat_interval_ms must be > 0")
        if max_repeats < 0:
            raise ValueError("max_repeats must be >= 0")
        super().__init__(inner)
        self.repeat_interval_ms = repeat_interval_ms
        self.max_repeats = max_repeats
        self._clock = clock
        self._repeat_count = 0
        self._last_trigger_ms: int | None = None
        self._lock = threading.Lock()

    @property
    def repeat_count(self) -> int:
        return self._repeat_count

    @property
    def last_trigger_ms(self) -> int | None:
        return self._last_trigger_ms

    @property
    def exhausted(self) -> bool:
        return self._repeat_count >= self.max_repeats

    def with_inner(self, inner: AlertLike) -> "RepeatedAlert":
        """Same schedule and repeat budget, wrapped around a newer alert."""
        with self._lock:
            successor = RepeatedAlert(
                inner, self.repeat_interval_ms, self.max_repeats, clock=self._clock
            )
            successor._repeat_count = self._repeat_count
            successor._last_trigger_ms = self._last_trigger_ms
        return successor

    def mark_announced(self) -> None:
        """Start the interval from now without using up a repeat."""
        with self._lock:
            self._last_trigger_ms = self._clock()

    def should_repeat(self) -> bool:
        """True (and advances the counter) when the interval elapsed and repeats remain."""
        with self._lock:
            if self._repeat_count >= self.max_repeats:
                return False
            now = self._clock()
            if (
                self._last_trigger_ms is not None
                and now - self._last_trigger_ms < self.repeat_interval_ms
            ):
                return False
            self._last_trigger_ms = now
            self._repeat_count += 1
            return True

    @property
    def condition(self) -> str:
        return f"{self._inner.condition} [REPEATED {self._repeat_count}x]"
