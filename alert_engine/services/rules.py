"""
Clinical rule strategies.

Every rule is self-contained: it reads the patient's history through the
query view, applies its own window and thresholds, and returns at most one
alert per call. Rules hold no state between calls; "now" comes from an
injected clock so that windows are reproducible in tests.
"""

from abc import ABC, abstractmethod
from typing import Protocol

from alert_engine.config import (
    BloodPressureThresholds,
    ECGThresholds,
    HeartRateThresholds,
    HypoxemiaThresholds,
    ManualAlertThresholds,
    OxygenSaturationThresholds,
    RuleConfig,
)
from alert_engine.domain.models import (
    Alert,
    AlertCategory,
    Clock,
    MeasurementRecord,
    MeasurementType,
    Priority,
    create_alert,
    system_clock,
)
from alert_engine.services.patient_store import END_OF_TIME, PatientView
from alert_engine.services.windowing import (
    RunningStats,
    latest,
    lookback_start,
    mean_absolute_step,
    tail,
    trend_direction,
    values_of,
)

# Lower bound for count based windows that ignore time
BEGINNING_OF_TIME = -END_OF_TIME - 1
MINUTE_MS = 60_000


def _fmt(value: float | None) -> str:
    return "--" if value is None else f"{value:g}"


class RuleStrategy(Protocol):
    """
    Protocol every rule implements.

    Design: single method, no hidden state, evaluation bounded by the window.
    """

    rule_name: str
    priority: Priority

    def evaluate(self, patient: PatientView) -> Alert | None: ...


class WindowedRule(ABC):
    """Shared plumbing for rules that look back from the current instant."""

    rule_name: str = "rule"
    priority: Priority = Priority.MEDIUM

    def __init__(self, clock: Clock = system_clock) -> None:
        self._clock = clock

    def _recent(
        self, patient: PatientView, measurement_type: MeasurementType, window_ms: int, now: int
    ) -> list[MeasurementRecord]:
        # Open-ended upper bound: readings stamped slightly ahead of "now" still count
        return patient.query(
            measurement_type.value, lookback_start(now, window_ms), END_OF_TIME
        )

    @abstractmethod
    def evaluate(self, patient: PatientView) -> Alert | None: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rule_name={self.rule_name!r})"


class BloodPressureRule(WindowedRule):
    """
    Systolic / diastolic thresholds, then trend detection.

    A threshold alert pre-empts the trend check for the same evaluation.
    """

    rule_name = "blood_pressure"
    priority = Priority.HIGH

    def __init__(
        self, thresholds: BloodPressureThresholds | None = None, clock: Clock = system_clock
    ) -> None:
        super().__init__(clock)
        self.thresholds = thresholds or BloodPressureThresholds()

    def evaluate(self, patient: PatientView) -> Alert | None:
        now = self._clock()
        window = self.thresholds.window_ms
        systolic = self._recent(patient, MeasurementType.SYSTOLIC_PRESSURE, window, now)
        diastolic = self._recent(patient, MeasurementType.DIASTOLIC_PRESSURE, window, now)

        alert = self.check_thresholds(patient.patient_id, systolic, diastolic)
        if alert is not None:
            return alert
        return self.check_trends(patient.patient_id, systolic, diastolic)

    def check_thresholds(
        self,
        patient_id: int,
        systolic: list[MeasurementRecord],
        diastolic: list[MeasurementRecord],
    ) -> Alert | None:
        """Latest systolic and diastolic readings against the critical limits."""
        last_systolic = latest(systolic)
        last_diastolic = latest(diastolic)
        present = [r for r in (last_systolic, last_diastolic) if r is not None]
        if not present:
            return None

        t = self.thresholds
        sys_value = last_systolic.value if last_systolic else None
        dia_value = last_diastolic.value if last_diastolic else None
        timestamp = max(r.timestamp for r in present)
        reading = f"{_fmt(sys_value)}/{_fmt(dia_value)} mmHg"

        if (sys_value is not None and sys_value > t.systolic_high) or (
            dia_value is not None and dia_value > t.diastolic_high
        ):
            return create_alert(
                AlertCategory.BLOOD_PRESSURE,
                patient_id,
                f"Critical Blood Pressure: {reading}",
                timestamp,
            )
        if (sys_value is not None and sys_value < t.systolic_low) or (
            dia_value is not None and dia_value < t.diastolic_low
        ):
            return create_alert(
                AlertCategory.BLOOD_PRESSURE,
                patient_id,
                f"Low Blood Pressure: {reading}",
                timestamp,
            )
        return None

    def check_trends(
        self,
        patient_id: int,
        systolic: list[MeasurementRecord],
        diastolic: list[MeasurementRecord],
    ) -> Alert | None:
        """Monotonic run over the last few readings of either signal, systolic first."""
        for label, records in (("systolic", systolic), ("diastolic", diastolic)):
            window = tail(records, self.thresholds.trend_samples)
            if len(window) < self.thresholds.trend_samples:
                continue
            values = values_of(window)
            direction = trend_direction(values, self.thresholds.trend_step)
            if direction is None:
                continue
            return create_alert(
                AlertCategory.BLOOD_PRESSURE,
                patient_id,
                f"{direction.value} Trend in {label} pressure: "
                f"{_fmt(values[0])} -> {_fmt(values[-1])} mmHg",
                window[-1].timestamp,
            )
        return None


class HypotensiveHypoxemiaRule(WindowedRule):
    """Low systolic pressure together with low saturation, measured close in time."""

    rule_name = "hypotensive_hypoxemia"
    priority = Priority.CRITICAL

    def __init__(
        self, thresholds: HypoxemiaThresholds | None = None, clock: Clock = system_clock
    ) -> None:
        super().__init__(clock)
        self.thresholds = thresholds or HypoxemiaThresholds()

    def evaluate(self, patient: PatientView) -> Alert | None:
        now = self._clock()
        t = self.thresholds
        last_systolic = latest(
            self._recent(patient, MeasurementType.SYSTOLIC_PRESSURE, t.window_ms, now)
        )
        last_saturation = latest(
            self._recent(patient, MeasurementType.SATURATION, t.window_ms, now)
        )
        if last_systolic is None or last_saturation is None:
            return None
        if abs(last_systolic.timestamp - last_saturation.timestamp) > t.max_pairing_gap_ms:
            return None
        if last_systolic.value < t.systolic_below and last_saturation.value < t.saturation_below:
            return create_alert(
                AlertCategory.GENERAL,
                patient.patient_id,
                f"Hypotensive Hypoxemia: BP={_fmt(last_systolic.value)} mmHg, "
                f"O2={_fmt(last_saturation.value)}%",
                max(last_systolic.timestamp, last_saturation.timestamp),
            )
        return None


class OxygenSaturationRule(WindowedRule):
    """Critical low saturation, then absolute spread and drop rate over the window."""

    rule_name = "oxygen_saturation"
    priority = Priority.HIGH

    def __init__(
        self, thresholds: OxygenSaturationThresholds | None = None, clock: Clock = system_clock
    ) -> None:
        super().__init__(clock)
        self.thresholds = thresholds or OxygenSaturationThresholds()

    def evaluate(self, patient: PatientView) -> Alert | None:
        now = self._clock()
        t = self.thresholds
        records = self._recent(patient, MeasurementType.SATURATION, t.window_ms, now)
        newest = latest(records)
        if newest is None:
            return None

        if newest.value < t.critical_below:
            return create_alert(
                AlertCategory.BLOOD_OXYGEN,
                patient.patient_id,
                f"Critical Low Oxygen Saturation: {_fmt(newest.value)}%",
                newest.timestamp,
            )

        if len(records) < 2:
            return None

        if t.drop_checks in ("absolute", "both"):
            alert = self.check_rapid_drop(patient.patient_id, records)
            if alert is not None:
                return alert
        if t.drop_checks in ("rate", "both"):
            return self.check_drop_rate(patient.patient_id, records)
        return None

    def check_rapid_drop(
        self, patient_id: int, records: list[MeasurementRecord]
    ) -> Alert | None:
        values = values_of(records)
        spread = max(values) - min(values)
        if spread >= self.thresholds.rapid_drop_points:
            return create_alert(
                AlertCategory.BLOOD_OXYGEN,
                patient_id,
                f"Rapid Oxygen Drop: {spread:.1f}% within "
                f"{_fmt(self.thresholds.window_minutes)} minutes",
                records[-1].timestamp,
            )
        return None

    def check_drop_rate(
        self, patient_id: int, records: list[MeasurementRecord]
    ) -> Alert | None:
        oldest, newest = records[0], records[-1]
        # Whole minutes only: sub-minute spans are too noisy to rate
        elapsed_minutes = (newest.timestamp - oldest.timestamp) // MINUTE_MS
        if elapsed_minutes <= 0:
            return None
        rate = (oldest.value - newest.value) / elapsed_minutes
        if rate >= self.thresholds.drop_rate_per_minute:
            return create_alert(
                AlertCategory.BLOOD_OXYGEN,
                patient_id,
                f"Fast Oxygen Desaturation: {rate:.1f}%/minute",
                newest.timestamp,
            )
        return None


class HeartRateRule(WindowedRule):
    """Bradycardia / tachycardia on the latest reading, then rhythm irregularity."""

    rule_name = "heart_rate"
    priority = Priority.MEDIUM

    def __init__(
        self, thresholds: HeartRateThresholds | None = None, clock: Clock = system_clock
    ) -> None:
        super().__init__(clock)
        self.thresholds = thresholds or HeartRateThresholds()

    def evaluate(self, patient: PatientView) -> Alert | None:
        now = self._clock()
        t = self.thresholds
        records = self._recent(patient, MeasurementType.HEART_RATE, t.window_ms, now)
        newest = latest(records)
        if newest is None:
            return None

        if newest.value < t.bradycardia_below:
            return create_alert(
                AlertCategory.HEART_RATE,
                patient.patient_id,
                f"Bradycardia: {_fmt(newest.value)} bpm (< {_fmt(t.bradycardia_below)} bpm)",
                newest.timestamp,
            )
        if newest.value > t.tachycardia_above:
            return create_alert(
                AlertCategory.HEART_RATE,
                patient.patient_id,
                f"Tachycardia: {_fmt(newest.value)} bpm (> {_fmt(t.tachycardia_above)} bpm)",
                newest.timestamp,
            )

        if len(records) >= t.irregular_min_samples:
            values = values_of(records)
            variation = mean_absolute_step(values)
            mean_rate = RunningStats.of(values).mean
            if variation > mean_rate * t.irregular_variation_ratio:
                return create_alert(
                    AlertCategory.HEART_RATE,
                    patient.patient_id,
                    f"Irregular Heart Rate: mean step {variation:.1f} bpm "
                    f"around {mean_rate:.1f} bpm",
                    newest.timestamp,
                )
        return None


class ECGAnomalyRule(WindowedRule):
    """Latest ECG sample more than k standard deviations from the window mean."""

    rule_name = "ecg_anomaly"
    priority = Priority.HIGH

    def __init__(self, thresholds: ECGThresholds | None = None, clock: Clock = system_clock) -> None:
        super().__init__(clock)
        self.thresholds = thresholds or ECGThresholds()

    def evaluate(self, patient: PatientView) -> Alert | None:
        # Count based window: the clock is irrelevant here
        history = patient.query(MeasurementType.ECG.value, BEGINNING_OF_TIME, END_OF_TIME)
        window = tail(history, self.thresholds.window_size)
        if len(window) < self.thresholds.window_size:
            return None

        stats = RunningStats.of(values_of(window))
        newest = window[-1]
        deviation = abs(newest.value - stats.mean)
        if deviation > self.thresholds.sigma_multiplier * stats.stddev:
            return create_alert(
                AlertCategory.ECG,
                patient.patient_id,
                f"ECG Anomaly: {_fmt(newest.value)} deviates by {deviation:.3f} "
                f"(σ={stats.stddev:.3f})",
                newest.timestamp,
            )
        return None


class ManualAlertRule(WindowedRule):
    """Passes through a pressed call button as an unconditional alert."""

    rule_name = "manual_alert"
    priority = Priority.CRITICAL

    def __init__(
        self, thresholds: ManualAlertThresholds | None = None, clock: Clock = system_clock
    ) -> None:
        super().__init__(clock)
        self.thresholds = thresholds or ManualAlertThresholds()

    def evaluate(self, patient: PatientView) -> Alert | None:
        now = self._clock()
        records = self._recent(
            patient, MeasurementType.MANUAL_ALERT, self.thresholds.window_ms, now
        )
        triggered = [r for r in records if r.value == self.thresholds.triggered_value]
        newest = latest(triggered)
        if newest is None:
            return None
        return create_alert(
            AlertCategory.GENERAL, patient.patient_id, "Manual Alert Triggered", newest.timestamp
        )


def default_rules(config: RuleConfig | None = None, clock: Clock = system_clock) -> list[WindowedRule]:
    """The standard rule set in its fixed evaluation order."""
    config = config or RuleConfig()
    return [
        BloodPressureRule(config.blood_pressure, clock=clock),
        HypotensiveHypoxemiaRule(config.hypoxemia, clock=clock),
        OxygenSaturationRule(config.oxygen_saturation, clock=clock),
        HeartRateRule(config.heart_rate, clock=clock),
        ECGAnomalyRule(config.ecg, clock=clock),
        ManualAlertRule(config.manual, clock=clock),
    ]
