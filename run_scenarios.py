"""
End-to-end scenarios exercising the full alert pipeline.

This script checks:
1. Configuration loading and validation
2. Ingestion from the line format used by bedside simulators
3. Rule evaluation for typical clinical situations
4. Priority tagging, repeat reminders and delivery to sinks
5. Error handling for broken sinks and malformed input

Run with: uv run python run_scenarios.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from alert_engine.config import (
    AppConfig,
    MonitoringConfig,
    RepetitionConfig,
    configure_logging,
    get_config,
)
from alert_engine.domain.models import system_clock
from alert_engine.services.dispatch import AlertDispatcher
from alert_engine.services.evaluator import AlertEvaluator
from alert_engine.services.monitoring import MonitoringService
from alert_engine.services.patient_store import PatientDirectory
from alert_io.readers import parse_measurement_line
from alert_io.sinks import CollectingAlertSink, ConsoleAlertSink

console = Console()

MINUTE_MS = 60_000


class OfflinePagerSink:
    """Sink standing in for a pager gateway that is down."""

    name = "pager"

    def deliver(self, alert) -> None:
        raise ConnectionError("pager gateway unreachable")


def simulator_lines(now: int) -> list[str]:
    """One patient per clinical situation, in the simulator's line format."""
    return [
        # Patient 1: hypertensive crisis
        f"1,{now - 2 * MINUTE_MS},SystolicPressure,185",
        f"1,{now - 2 * MINUTE_MS},DiastolicPressure,125",
        # Patient 2: shock picture, low pressure with low saturation
        f"2,{now - MINUTE_MS},SystolicPressure,85",
        f"2,{now - MINUTE_MS},DiastolicPressure,55",
        f"2,{now - 30_000},Saturation,90%",
        # Patient 3: desaturating quickly
        f"3,{now - 2 * MINUTE_MS},Saturation,98%",
        f"3,{now},Saturation,96.5%",
        # Patient 4: call button pressed
        f"4,{now - 10_000},Alert,triggered",
        # Patient 5: stable
        f"5,{now - MINUTE_MS},HeartRate,72",
        f"5,{now - MINUTE_MS},Saturation,98%",
    ]


def build_service(config: AppConfig, *sinks) -> tuple[PatientDirectory, MonitoringService]:
    directory = PatientDirectory()
    evaluator = AlertEvaluator.with_default_rules(directory, config.rules)
    dispatcher = AlertDispatcher(sinks, history_size=config.monitoring.dispatch_history_size)
    service = MonitoringService(directory, evaluator, dispatcher, config=config)
    return directory, service


async def check_configuration() -> bool:
    """Check configuration loading and validation."""

    console.print(Panel("Checking Configuration", style="blue"))

    try:
        config = get_config()
        configure_logging(config.logging)

        table = Table(title=f"Configuration ({config.environment})")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Log level", config.logging.level)
        table.add_row("BP window", f"{config.rules.blood_pressure.window_minutes:g} min")
        table.add_row("SpO2 window", f"{config.rules.oxygen_saturation.window_minutes:g} min")
        table.add_row("HR window", f"{config.rules.heart_rate.window_minutes:g} min")
        table.add_row("ECG window", f"{config.rules.ecg.window_size} samples")
        table.add_row("Cycle interval", f"{config.monitoring.evaluation_interval_seconds:g}s")
        table.add_row("Repeat reminders", str(config.repetition.enabled))
        console.print(table)
        return True

    except Exception as e:
        console.print(f"Configuration check failed: {e}", style="red")
        return False


async def check_ingestion() -> bool:
    """Check the line reader and the patient directory."""

    console.print(Panel("Checking Ingestion", style="blue"))

    directory = PatientDirectory()
    lines = simulator_lines(system_clock()) + ["9,not-a-time,HeartRate,70", "9,1,HeartRate"]
    rejected = 0
    for line in lines:
        result = parse_measurement_line(line)
        if result.is_err():
            rejected += 1
            console.print(f"Rejected: {result.unwrap_err()}", style="yellow")
            continue
        directory.ingest_record(result.unwrap())

    console.print(
        f"Ingested {len(lines) - rejected} readings for {len(directory)} patients, "
        f"rejected {rejected}",
        style="green",
    )
    return len(directory) == 5 and rejected == 2


async def check_clinical_scenarios() -> bool:
    """Check that each clinical situation raises the expected alerts."""

    console.print(Panel("Checking Clinical Scenarios", style="blue"))

    config = AppConfig()
    collector = CollectingAlertSink()
    directory, service = build_service(config, ConsoleAlertSink(console), collector)

    try:
        for line in simulator_lines(system_clock()):
            directory.ingest_record(parse_measurement_line(line).unwrap())

        report = await service.run_evaluation_cycle()
    finally:
        await service.stop()

    summary_table = Table(title="Alerts by Patient")
    summary_table.add_column("Patient", style="cyan")
    summary_table.add_column("Alerts", style="white")
    for pid in directory.patient_ids():
        conditions = [p["condition"] for p in collector.payloads if p["patientId"] == str(pid)]
        summary_table.add_row(str(pid), "\n".join(map(str, conditions)) or "-")
    console.print(summary_table)

    expected = {
        "1": "Critical Blood Pressure",
        "2": "Hypotensive Hypoxemia",
        "3": "Fast Oxygen Desaturation",
        "4": "Manual Alert Triggered",
    }
    raised_for = {str(p["patientId"]) for p in collector.payloads}
    found = all(
        any(marker in str(p["condition"]) for p in collector.payloads if p["patientId"] == pid)
        for pid, marker in expected.items()
    )
    return found and "5" not in raised_for and not report.degraded


async def check_repeat_reminders() -> bool:
    """Check repeat reminders across consecutive cycles."""

    console.print(Panel("Checking Repeat Reminders", style="blue"))

    config = AppConfig(
        monitoring=MonitoringConfig(evaluation_interval_seconds=0.2),
        repetition=RepetitionConfig(enabled=True, repeat_interval_ms=100, max_repeats=2),
    )
    collector = CollectingAlertSink()
    directory, service = build_service(config, collector)
    directory.ingest(4, "ManualAlert", 1.0, system_clock())

    cycles = 0
    async for _ in service.run_continuous_monitoring():
        cycles += 1
        if cycles == 4:
            await service.stop()

    for condition in collector.conditions():
        console.print(condition, style="yellow")
    # Initial announcement plus two reminders, then the reminder budget is spent
    return len(collector.conditions()) == 3


async def check_error_handling() -> bool:
    """Check that a broken sink does not block other sinks."""

    console.print(Panel("Checking Error Handling", style="blue"))

    collector = CollectingAlertSink()
    directory, service = build_service(AppConfig(), OfflinePagerSink(), collector)
    directory.ingest(4, "ManualAlert", 1.0, system_clock())

    try:
        report = await service.run_evaluation_cycle()
    finally:
        await service.stop()

    for failure in report.dispatch.failures():
        console.print(f"Delivery failed: {failure}", style="yellow")

    return report.dispatch.failed_count == 1 and len(collector.payloads) == 1


async def run_all_checks() -> None:
    """Run all scenario checks."""

    console.print(Panel("Patient Alert Engine - Scenario Checks", style="bold blue"))

    checks = [
        ("Configuration", check_configuration),
        ("Ingestion", check_ingestion),
        ("Clinical Scenarios", check_clinical_scenarios),
        ("Repeat Reminders", check_repeat_reminders),
        ("Error Handling", check_error_handling),
    ]

    results = []

    for check_name, check_func in checks:
        console.print(f"\n{'=' * 60}")
        try:
            result = await check_func()
            results.append((check_name, result))
        except KeyboardInterrupt:
            console.print("\nChecks interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"{check_name} failed with exception: {e}", style="red")
            results.append((check_name, False))

    # Summary
    console.print(f"\n{'=' * 60}")
    console.print(Panel("Scenario Results Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Check", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for check_name, result in results:
        if result:
            summary_table.add_row(check_name, "PASSED")
            passed += 1
        else:
            summary_table.add_row(check_name, "FAILED")

    console.print(summary_table)
    console.print(f"\nResults: {passed}/{len(results)} checks passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_checks())
    except KeyboardInterrupt:
        console.print("\nChecks stopped by user", style="yellow")
