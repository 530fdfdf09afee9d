"""
Tests for the clinical rule strategies.

Every rule runs against a real PatientDirectory and a fixed clock, so the
windows are exact and no mocking is needed.
"""

import pytest

from alert_engine.config import (
    BloodPressureThresholds,
    ECGThresholds,
    HypoxemiaThresholds,
    OxygenSaturationThresholds,
)
from alert_engine.domain.models import MeasurementType
from alert_engine.services.patient_store import PatientDirectory
from alert_engine.services.rules import (
    BloodPressureRule,
    ECGAnomalyRule,
    HeartRateRule,
    HypotensiveHypoxemiaRule,
    ManualAlertRule,
    OxygenSaturationRule,
    default_rules,
)

MINUTE = 60_000
PID = 1


def ingest_series(
    directory: PatientDirectory, signal: MeasurementType, values: list[float], end: int, step: int
) -> None:
    """Readings evenly spaced by ``step`` ms, the last one stamped at ``end``."""
    start = end - step * (len(values) - 1)
    for i, value in enumerate(values):
        directory.ingest(PID, signal, value, start + i * step)


class TestBloodPressureRule:
    """Threshold and trend checks on systolic / diastolic pressure."""

    @pytest.fixture
    def rule(self, clock) -> BloodPressureRule:
        return BloodPressureRule(clock=clock)

    def test_critical_pressure(self, rule, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 185, clock.now - 1000)
        directory.ingest(PID, MeasurementType.DIASTOLIC_PRESSURE, 125, clock.now - 1000)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Pressure Alert: Critical Blood Pressure: 185/125 mmHg"
        assert alert.patient_id == "1"
        assert alert.timestamp == clock.now - 1000

    def test_low_pressure(self, rule, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 85, clock.now - 1000)
        directory.ingest(PID, MeasurementType.DIASTOLIC_PRESSURE, 55, clock.now - 500)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Pressure Alert: Low Blood Pressure: 85/55 mmHg"
        assert alert.timestamp == clock.now - 500

    def test_normal_pressure_raises_nothing(self, rule, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 120, clock.now - 1000)
        directory.ingest(PID, MeasurementType.DIASTOLIC_PRESSURE, 80, clock.now - 1000)

        assert rule.evaluate(directory.view(PID)) is None

    def test_single_signal_is_enough_for_thresholds(self, rule, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.DIASTOLIC_PRESSURE, 130, clock.now)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Pressure Alert: Critical Blood Pressure: --/130 mmHg"

    def test_increasing_systolic_trend(self, rule, clock, directory) -> None:
        ingest_series(directory, MeasurementType.SYSTOLIC_PRESSURE, [100, 115, 130], clock.now, MINUTE)
        directory.ingest(PID, MeasurementType.DIASTOLIC_PRESSURE, 80, clock.now)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == (
            "Blood Pressure Alert: Increasing Trend in systolic pressure: 100 -> 130 mmHg"
        )
        assert alert.timestamp == clock.now

    def test_decreasing_diastolic_trend(self, rule, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 120, clock.now)
        ingest_series(directory, MeasurementType.DIASTOLIC_PRESSURE, [90, 75, 60], clock.now, MINUTE)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == (
            "Blood Pressure Alert: Decreasing Trend in diastolic pressure: 90 -> 60 mmHg"
        )

    def test_two_readings_are_not_a_trend(self, rule, clock, directory) -> None:
        ingest_series(directory, MeasurementType.SYSTOLIC_PRESSURE, [100, 130], clock.now, MINUTE)

        assert rule.evaluate(directory.view(PID)) is None

    def test_threshold_preempts_trend(self, rule, clock, directory) -> None:
        ingest_series(directory, MeasurementType.SYSTOLIC_PRESSURE, [160, 175, 190], clock.now, MINUTE)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert "Critical Blood Pressure: 190/-- mmHg" in alert.condition

    def test_readings_outside_window_are_ignored(self, rule, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 200, clock.now - 11 * MINUTE)

        assert rule.evaluate(directory.view(PID)) is None

    def test_window_is_configurable(self, clock, directory) -> None:
        rule = BloodPressureRule(BloodPressureThresholds(window_minutes=30), clock=clock)
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 200, clock.now - 11 * MINUTE)

        assert rule.evaluate(directory.view(PID)) is not None


class TestHypotensiveHypoxemiaRule:
    """Low systolic paired with low saturation."""

    def test_close_readings_fire(self, clock, directory) -> None:
        rule = HypotensiveHypoxemiaRule(clock=clock)
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 85, clock.now - 2000)
        directory.ingest(PID, MeasurementType.SATURATION, 90, clock.now - 1000)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Hypotensive Hypoxemia: BP=85 mmHg, O2=90%"
        assert alert.timestamp == clock.now - 1000

    def test_readings_too_far_apart_do_not_pair(self, clock, directory) -> None:
        rule = HypotensiveHypoxemiaRule(HypoxemiaThresholds(window_minutes=30), clock=clock)
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 85, clock.now - 800_000)
        directory.ingest(PID, MeasurementType.SATURATION, 90, clock.now - 100_000)

        assert rule.evaluate(directory.view(PID)) is None

    @pytest.mark.parametrize("systolic,saturation", [(95, 90), (85, 94), (95, 95)])
    def test_needs_both_conditions(self, clock, directory, systolic, saturation) -> None:
        rule = HypotensiveHypoxemiaRule(clock=clock)
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, systolic, clock.now)
        directory.ingest(PID, MeasurementType.SATURATION, saturation, clock.now)

        assert rule.evaluate(directory.view(PID)) is None

    def test_fires_alongside_blood_pressure_rule(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SYSTOLIC_PRESSURE, 85, clock.now)
        directory.ingest(PID, MeasurementType.SATURATION, 90, clock.now)
        view = directory.view(PID)

        assert BloodPressureRule(clock=clock).evaluate(view) is not None
        assert HypotensiveHypoxemiaRule(clock=clock).evaluate(view) is not None


class TestOxygenSaturationRule:
    """Critical level, absolute drop and drop rate."""

    def test_critical_low_saturation(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 89, clock.now - 1000)

        alert = OxygenSaturationRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Oxygen Alert: Critical Low Oxygen Saturation: 89%"

    def test_fast_desaturation_per_minute(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 97, clock.now - MINUTE)
        directory.ingest(PID, MeasurementType.SATURATION, 96.4, clock.now)

        alert = OxygenSaturationRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Oxygen Alert: Fast Oxygen Desaturation: 0.6%/minute"
        assert alert.timestamp == clock.now

    def test_slow_drift_raises_nothing(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 96, clock.now - MINUTE)
        directory.ingest(PID, MeasurementType.SATURATION, 95.8, clock.now)

        assert OxygenSaturationRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_sub_minute_span_is_not_rated(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 97, clock.now - 30_000)
        directory.ingest(PID, MeasurementType.SATURATION, 96, clock.now)

        assert OxygenSaturationRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_rapid_absolute_drop(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 98, clock.now - 5 * MINUTE)
        directory.ingest(PID, MeasurementType.SATURATION, 93, clock.now)

        alert = OxygenSaturationRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Oxygen Alert: Rapid Oxygen Drop: 5.0% within 10 minutes"

    def test_rate_only_mode_skips_absolute_check(self, clock, directory) -> None:
        rule = OxygenSaturationRule(OxygenSaturationThresholds(drop_checks="rate"), clock=clock)
        directory.ingest(PID, MeasurementType.SATURATION, 98, clock.now - 5 * MINUTE)
        directory.ingest(PID, MeasurementType.SATURATION, 93, clock.now)

        alert = rule.evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Blood Oxygen Alert: Fast Oxygen Desaturation: 1.0%/minute"

    def test_critical_preempts_drop_checks(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 99, clock.now - 2 * MINUTE)
        directory.ingest(PID, MeasurementType.SATURATION, 88, clock.now)

        alert = OxygenSaturationRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert "Critical Low Oxygen Saturation: 88%" in alert.condition


class TestHeartRateRule:
    """Rate limits and rhythm irregularity."""

    def test_bradycardia(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.HEART_RATE, 45, clock.now)

        alert = HeartRateRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Heart Rate Alert: Bradycardia: 45 bpm (< 50 bpm)"

    def test_tachycardia(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.HEART_RATE, 120, clock.now)

        alert = HeartRateRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Heart Rate Alert: Tachycardia: 120 bpm (> 100 bpm)"

    def test_irregular_rhythm(self, clock, directory) -> None:
        ingest_series(directory, MeasurementType.HEART_RATE, [60, 80, 60, 80, 60], clock.now, MINUTE)

        alert = HeartRateRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition.startswith("Heart Rate Alert: Irregular Heart Rate")

    def test_steady_rhythm_raises_nothing(self, clock, directory) -> None:
        ingest_series(directory, MeasurementType.HEART_RATE, [70, 71, 70, 71, 70], clock.now, MINUTE)

        assert HeartRateRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_window_boundary_is_inclusive(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.HEART_RATE, 45, clock.now - 5 * MINUTE)

        assert HeartRateRule(clock=clock).evaluate(directory.view(PID)) is not None

        clock.advance(1)
        assert HeartRateRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_reading_stamped_after_now_still_counts(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.HEART_RATE, 130, clock.now + 1000)

        assert HeartRateRule(clock=clock).evaluate(directory.view(PID)) is not None


class TestECGAnomalyRule:
    """Count-based deviation from the recent mean."""

    def test_needs_a_full_window(self, clock, directory) -> None:
        ingest_series(directory, MeasurementType.ECG, [1.0] * 28 + [5.0], clock.now, 10)

        assert ECGAnomalyRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_spike_after_flat_baseline(self, clock, directory) -> None:
        ingest_series(directory, MeasurementType.ECG, [1.0] * 30 + [5.0], clock.now, 10)

        alert = ECGAnomalyRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition.startswith("ECG Alert: ECG Anomaly: 5 deviates by")
        assert alert.timestamp == clock.now

    def test_flat_signal_raises_nothing(self, clock, directory) -> None:
        ingest_series(directory, MeasurementType.ECG, [1.0] * 40, clock.now, 10)

        assert ECGAnomalyRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_old_samples_still_count(self, clock, directory) -> None:
        ingest_series(directory, MeasurementType.ECG, [1.0] * 19 + [5.0], clock.now - 60 * MINUTE, 10)

        rule = ECGAnomalyRule(ECGThresholds(window_size=20), clock=clock)

        assert rule.evaluate(directory.view(PID)) is not None


class TestManualAlertRule:
    def test_pressed_button_fires(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.MANUAL_ALERT, 1.0, clock.now - 1000)

        alert = ManualAlertRule(clock=clock).evaluate(directory.view(PID))

        assert alert is not None
        assert alert.condition == "Manual Alert Triggered"
        assert alert.timestamp == clock.now - 1000

    def test_resolved_button_is_ignored(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.MANUAL_ALERT, 0.0, clock.now)

        assert ManualAlertRule(clock=clock).evaluate(directory.view(PID)) is None

    def test_stale_press_is_ignored(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.MANUAL_ALERT, 1.0, clock.now - 11 * MINUTE)

        assert ManualAlertRule(clock=clock).evaluate(directory.view(PID)) is None


class TestDefaultRules:
    def test_fixed_order(self, clock) -> None:
        names = [rule.rule_name for rule in default_rules(clock=clock)]

        assert names == [
            "blood_pressure",
            "hypotensive_hypoxemia",
            "oxygen_saturation",
            "heart_rate",
            "ecg_anomaly",
            "manual_alert",
        ]

    def test_rules_are_stateless(self, clock, directory) -> None:
        directory.ingest(PID, MeasurementType.SATURATION, 89, clock.now)
        view = directory.view(PID)

        first = [rule.evaluate(view) for rule in default_rules(clock=clock)]
        second = [rule.evaluate(view) for rule in default_rules(clock=clock)]

        assert first == second

    def test_empty_history_raises_nothing(self, clock, directory) -> None:
        view = directory.view(PID)

        assert all(rule.evaluate(view) is None for rule in default_rules(clock=clock))
