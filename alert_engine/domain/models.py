"""
Domain models for patient vital sign monitoring.

These models represent the core clinical concepts and are framework-agnostic.
They use Pydantic for validation and immutability.
"""

import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Epoch milliseconds provider; injected wherever "now" matters
Clock = Callable[[], int]


def system_clock() -> int:
    """Wall clock in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class MeasurementType(str, Enum):
    """Signal types produced by bedside monitors."""

    SYSTOLIC_PRESSURE = "SystolicPressure"
    DIASTOLIC_PRESSURE = "DiastolicPressure"
    SATURATION = "Saturation"
    HEART_RATE = "HeartRate"
    ECG = "ECG"
    MANUAL_ALERT = "ManualAlert"


def signal_name(measurement_type: str) -> str:
    """Canonical text of a signal type given as enum member or plain string."""
    if isinstance(measurement_type, Enum):
        return str(measurement_type.value)
    return str(measurement_type)


class Priority(str, Enum):
    """Alert priority levels shown to clinical staff."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertCategory(str, Enum):
    """Alert families, each rendered with its own condition prefix."""

    BLOOD_PRESSURE = "Blood Pressure Alert"
    BLOOD_OXYGEN = "Blood Oxygen Alert"
    HEART_RATE = "Heart Rate Alert"
    ECG = "ECG Alert"
    GENERAL = "Alert"


class MeasurementRecord(BaseModel):
    """Single reading for one patient."""

    model_config = ConfigDict(frozen=True)

    patient_id: int
    # Plain string: unknown signal types are stored and simply never matched
    type: str
    value: float
    timestamp: int = Field(description="Epoch milliseconds")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: object) -> object:
        return signal_name(v) if isinstance(v, Enum) else v


class Alert(BaseModel):
    """Alert raised by a rule strategy."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    condition: str = Field(min_length=1)
    timestamp: int

    def as_payload(self) -> dict[str, Any]:
        """Record handed to alert sinks."""
        return {
            "patientId": self.patient_id,
            "condition": self.condition,
            "timestamp": self.timestamp,
        }


def create_alert(
    category: AlertCategory, patient_id: int | str, condition: str, timestamp: int
) -> Alert:
    """Build an alert whose condition carries the category prefix."""
    if category is AlertCategory.GENERAL:
        rendered = condition
    else:
        rendered = f"{category.value}: {condition}"
    return Alert(patient_id=str(patient_id), condition=rendered, timestamp=timestamp)


class AlertEngineError(Exception):
    """Base class for alert engine failures."""


class AlertDeliveryError(AlertEngineError):
    """An alert sink failed to accept an alert."""

    def __init__(self, sink_name: str, alert_condition: str, cause: BaseException) -> None:
        super().__init__(f"{sink_name} failed to deliver '{alert_condition}': {cause}")
        self.sink_name = sink_name
        self.alert_condition = alert_condition
        self.cause = cause


class MeasurementParseError(AlertEngineError):
    """A producer supplied a measurement that cannot be interpreted."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"Cannot parse measurement {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason
