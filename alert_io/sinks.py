"""
Alert sinks: the delivery side of the engine.

Every sink implements ``deliver(alert)`` and receives the plain
``{patientId, condition, timestamp}`` record through ``alert.as_payload()``.
"""

import threading
from datetime import UTC, datetime

import structlog
from rich.console import Console

from alert_engine.domain.annotations import AlertLike

logger = structlog.get_logger(__name__)

PRIORITY_STYLES = {
    "[CRITICAL PRIORITY]": "bold red",
    "[HIGH PRIORITY]": "red",
    "[MEDIUM PRIORITY]": "yellow",
    "[LOW PRIORITY]": "cyan",
}


def format_alert_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


class LoggingAlertSink:
    """Emits each alert as a structured log event."""

    name = "logging"

    def __init__(self) -> None:
        self.logger = logger.bind(component="logging_alert_sink")

    def deliver(self, alert: AlertLike) -> None:
        self.logger.info("alert_delivered", **alert.as_payload())


class ConsoleAlertSink:
    """Development sink that prints to the terminal."""

    name = "console"

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def deliver(self, alert: AlertLike) -> None:
        payload = alert.as_payload()
        style = next(
            (s for tag, s in PRIORITY_STYLES.items() if payload["condition"].startswith(tag)),
            "bold",
        )
        self.console.print(
            f"ALERT: {payload['condition']} for Patient {payload['patientId']} "
            f"at {format_alert_time(payload['timestamp'])}",
            style=style,
            markup=False,
            highlight=False,
        )


class CollectingAlertSink:
    """Keeps delivered payloads in memory, in delivery order."""

    name = "collecting"

    def __init__(self) -> None:
        self._payloads: list[dict[str, object]] = []
        self._lock = threading.Lock()

    def deliver(self, alert: AlertLike) -> None:
        with self._lock:
            self._payloads.append(alert.as_payload())

    @property
    def payloads(self) -> list[dict[str, object]]:
        with self._lock:
            return list(self._payloads)

    def conditions(self) -> list[str]:
        return [str(p["condition"]) for p in self.payloads]

    def clear(self) -> None:
        with self._lock:
            self._payloads.clear()
