"""
Core services for the application.

This package contains the main service implementations: the patient
measurement store, rule strategies, alert evaluation, delivery and the
periodic monitoring loop.
"""

from .dispatch import AlertDispatcher, AlertSink, DispatchReport
from .evaluator import AlertEvaluator, RaisedAlert
from .monitoring import CycleReport, MonitoringService
from .patient_store import PatientDirectory, PatientTimeline, PatientView
from .result import Result
from .rules import (
    BloodPressureRule,
    ECGAnomalyRule,
    HeartRateRule,
    HypotensiveHypoxemiaRule,
    ManualAlertRule,
    OxygenSaturationRule,
    RuleStrategy,
    default_rules,
)

__all__ = [
    "AlertDispatcher",
    "AlertEvaluator",
    "AlertSink",
    "BloodPressureRule",
    "CycleReport",
    "DispatchReport",
    "ECGAnomalyRule",
    "HeartRateRule",
    "HypotensiveHypoxemiaRule",
    "ManualAlertRule",
    "MonitoringService",
    "OxygenSaturationRule",
    "PatientDirectory",
    "PatientTimeline",
    "PatientView",
    "RaisedAlert",
    "Result",
    "RuleStrategy",
    "default_rules",
]
