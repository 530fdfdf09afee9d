"""
Alert delivery to external sinks.

The engine talks to sinks only through ``deliver(alert)``. A sink that raises
is recorded as a failed delivery for that alert; delivery to other sinks and
of other alerts carries on. Nothing is retried here.
"""

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import structlog

from alert_engine.domain.annotations import AlertLike
from alert_engine.domain.models import AlertDeliveryError
from alert_engine.services.result import Result

logger = structlog.get_logger(__name__)


@runtime_checkable
class AlertSink(Protocol):
    """
    Anything that accepts alerts: console, log, file, socket.

    Why Protocol over ABC: structural typing, trivial test doubles.
    """

    def deliver(self, alert: AlertLike) -> None: ...


def sink_name(sink: AlertSink) -> str:
    return getattr(sink, "name", None) or type(sink).__name__


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of handing one alert to one sink."""

    sink: str
    alert: AlertLike
    result: Result[AlertLike, AlertDeliveryError]

    @property
    def delivered(self) -> bool:
        return self.result.is_ok()


@dataclass
class DispatchReport:
    """Every delivery attempt made by one dispatch call."""

    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.delivered)

    def failures(self) -> list[AlertDeliveryError]:
        return [o.result.unwrap_err() for o in self.outcomes if not o.delivered]

    def extend(self, other: "DispatchReport") -> None:
        self.outcomes.extend(other.outcomes)


class AlertDispatcher:
    """Delivers alerts to every registered sink and keeps a bounded history."""

    def __init__(self, sinks: Iterable[AlertSink] = (), history_size: int = 1000) -> None:
        self.sinks: list[AlertSink] = []
        self.history: deque[DeliveryOutcome] = deque(maxlen=history_size)
        self.logger = logger.bind(component="alert_dispatcher")
        for sink in sinks:
            self.add_sink(sink)

    def add_sink(self, sink: AlertSink) -> None:
        """Add a sink. Validates the sink implements the protocol."""
        if not callable(getattr(sink, "deliver", None)):
            raise TypeError(f"Sink {sink!r} must implement AlertSink protocol")
        self.sinks.append(sink)
        self.logger.info("sink_added", sink=sink_name(sink))

    def remove_sink(self, sink: AlertSink) -> None:
        self.sinks.remove(sink)
        self.logger.info("sink_removed", sink=sink_name(sink))

    def deliver_one(self, sink: AlertSink, alert: AlertLike) -> DeliveryOutcome:
        name = sink_name(sink)
        try:
            sink.deliver(alert)
            result: Result[AlertLike, AlertDeliveryError] = Result.ok(alert)
        except Exception as e:
            self.logger.error(
                "alert_delivery_failed",
                sink=name,
                patient_id=alert.patient_id,
                condition=alert.condition,
                error=str(e),
            )
            result = Result.err(AlertDeliveryError(name, alert.condition, e))

        outcome = DeliveryOutcome(sink=name, alert=alert, result=result)
        self.history.append(outcome)
        return outcome

    def dispatch(self, alerts: Sequence[AlertLike]) -> DispatchReport:
        """Deliver every alert to every sink; failures are reported, not raised."""
        report = DispatchReport()
        if not alerts:
            return report

        for alert in alerts:
            for sink in self.sinks:
                report.outcomes.append(self.deliver_one(sink, alert))

        if report.failed_count:
            self.logger.warning(
                "alert_dispatch_partially_failed",
                delivered=report.delivered_count,
                failed=report.failed_count,
            )
        return report
