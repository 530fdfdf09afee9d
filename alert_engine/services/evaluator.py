"""
Alert evaluation orchestration.

Runs every configured rule against one patient and returns all alerts, in
rule order. A failing rule is logged and contributes nothing; it never stops
the remaining rules.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from alert_engine.config import RuleConfig
from alert_engine.domain.models import Alert, Clock, Priority, system_clock
from alert_engine.services.patient_store import PatientDirectory
from alert_engine.services.rules import RuleStrategy, default_rules

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RaisedAlert:
    """An alert together with the rule that produced it."""

    rule_name: str
    priority: Priority
    alert: Alert


class AlertEvaluator:
    """Evaluates a fixed, ordered rule set for one patient at a time."""

    def __init__(self, directory: PatientDirectory, rules: Sequence[RuleStrategy]) -> None:
        if not rules:
            raise ValueError("AlertEvaluator needs at least one rule")
        self.directory = directory
        self.rules: tuple[RuleStrategy, ...] = tuple(rules)
        self.logger = logger.bind(component="alert_evaluator")

    @classmethod
    def with_default_rules(
        cls,
        directory: PatientDirectory,
        config: RuleConfig | None = None,
        clock: Clock = system_clock,
    ) -> "AlertEvaluator":
        return cls(directory, default_rules(config, clock=clock))

    def evaluate_detailed(self, patient_id: int) -> list[RaisedAlert]:
        view = self.directory.view(patient_id)
        raised: list[RaisedAlert] = []

        for rule in self.rules:
            try:
                alert = rule.evaluate(view)
            except Exception as e:
                self.logger.exception(
                    "rule_evaluation_failed",
                    rule=rule.rule_name,
                    patient_id=patient_id,
                    error=str(e),
                )
                continue

            if alert is None:
                continue

            raised.append(RaisedAlert(rule.rule_name, rule.priority, alert))
            self.logger.info(
                "alert_raised",
                rule=rule.rule_name,
                patient_id=patient_id,
                condition=alert.condition,
                alert_timestamp=alert.timestamp,
            )

        return raised

    def evaluate(self, patient_id: int) -> list[Alert]:
        """All alerts for the patient, in configured rule order."""
        return [r.alert for r in self.evaluate_detailed(patient_id)]
