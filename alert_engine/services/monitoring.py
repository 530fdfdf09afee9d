"""
Monitoring service that combines ingestion, evaluation and alert delivery.

Pipeline per cycle:
1. Snapshot the known patient ids
2. Evaluate every patient on a bounded worker-thread pool
3. Annotate alerts with priority (and repeat reminders when enabled)
4. Deliver to sinks, recording failures without retrying

Each patient evaluation is synchronous and bounded by its rule windows; a
slow patient only costs its own worker and times out on its own. A timed-out
evaluation keeps its worker thread until the rules return, so once every
worker is held by a stalled evaluation the remaining patients queue behind
them; this is logged as `evaluation_pool_saturated`.
"""

import asyncio
import threading
import time
from collections.abc import AsyncIterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from alert_engine.config import AppConfig, get_config
from alert_engine.domain.annotations import AlertLike, PriorityAlert, RepeatedAlert
from alert_engine.domain.models import Clock, system_clock
from alert_engine.services.dispatch import AlertDispatcher, DispatchReport
from alert_engine.services.evaluator import AlertEvaluator, RaisedAlert
from alert_engine.services.patient_store import PatientDirectory

logger = structlog.get_logger(__name__)


@dataclass
class PatientEvaluation:
    """Outcome of evaluating one patient in one cycle."""

    patient_id: int
    raised: list[RaisedAlert] = field(default_factory=list)
    timed_out: bool = False
    error: str | None = None


@dataclass
class CycleReport:
    """Summary of one evaluation cycle."""

    started_at: datetime
    patients_evaluated: int
    alerts: list[AlertLike]
    dispatch: DispatchReport
    timed_out_patients: list[int] = field(default_factory=list)
    failed_patients: list[int] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def degraded(self) -> bool:
        return bool(self.timed_out_patients or self.failed_patients or self.dispatch.failed_count)


class MonitoringService:
    """
    Orchestrates periodic evaluation for every patient in the directory.

    All collaborators are injected; the service only owns the worker pool and
    the repeat-reminder bookkeeping.
    """

    def __init__(
        self,
        directory: PatientDirectory,
        evaluator: AlertEvaluator,
        dispatcher: AlertDispatcher,
        config: AppConfig | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.config = config or get_config()
        self.directory = directory
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self._clock = clock
        self.logger = logger.bind(component="monitoring_service")

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.monitoring.max_concurrent_evaluations,
            thread_name_prefix="alert-eval",
        )
        # (patient_id, rule_name) -> reminder for an alert that is still firing
        self._reminders: dict[tuple[int, str], RepeatedAlert] = {}
        # Evaluations abandoned after a timeout that still occupy a worker
        self._stalled: set[Future[list[RaisedAlert]]] = set()
        self._stalled_lock = threading.Lock()
        self._is_running = False

    def ingest(self, patient_id: int, measurement_type: str, value: float, timestamp: int) -> None:
        """Producer entry point."""
        self.directory.ingest(patient_id, measurement_type, value, timestamp)

    async def evaluate_patient(self, patient_id: int) -> PatientEvaluation:
        """Run all rules for one patient on the worker pool, with a timeout."""
        timeout = self.config.monitoring.evaluation_timeout_seconds
        try:
            work = self._executor.submit(self.evaluator.evaluate_detailed, patient_id)
            raised = await asyncio.wait_for(asyncio.wrap_future(work), timeout=timeout)
            return PatientEvaluation(patient_id=patient_id, raised=raised)
        except TimeoutError:
            self.logger.warning(
                "patient_evaluation_timeout", patient_id=patient_id, timeout_seconds=timeout
            )
            self._track_stalled(work)
            return PatientEvaluation(patient_id=patient_id, timed_out=True)
        except Exception as e:
            self.logger.exception(
                "patient_evaluation_failed", patient_id=patient_id, error=str(e)
            )
            return PatientEvaluation(patient_id=patient_id, error=str(e))

    def _track_stalled(self, work: Future[list[RaisedAlert]]) -> None:
        if work.done():
            return
        with self._stalled_lock:
            self._stalled.add(work)
            stalled = len(self._stalled)
        work.add_done_callback(self._release_stalled)

        workers = self.config.monitoring.max_concurrent_evaluations
        if stalled >= workers:
            self.logger.warning(
                "evaluation_pool_saturated", stalled_evaluations=stalled, workers=workers
            )

    def _release_stalled(self, work: Future[list[RaisedAlert]]) -> None:
        with self._stalled_lock:
            self._stalled.discard(work)

    @property
    def stalled_evaluations(self) -> int:
        """Timed-out evaluations still holding a worker thread."""
        with self._stalled_lock:
            return len(self._stalled)

    def _annotate(self, patient_id: int, raised: list[RaisedAlert]) -> list[AlertLike]:
        """Priority tags, plus repeat reminders for alerts that keep firing."""
        repetition = self.config.repetition
        active_rules = {r.rule_name for r in raised}

        # Rules that stopped firing are resolved: forget their reminders
        for key in [k for k in self._reminders if k[0] == patient_id]:
            if key[1] not in active_rules:
                del self._reminders[key]

        annotated: list[AlertLike] = []
        for item in raised:
            if not repetition.enabled:
                annotated.append(PriorityAlert(item.alert, item.priority))
                continue

            key = (patient_id, item.rule_name)
            reminder = self._reminders.get(key)
            if reminder is not None and reminder.inner.condition == item.alert.condition:
                if reminder.inner.timestamp != item.alert.timestamp:
                    # Same condition from newer readings: keep the repeat budget
                    reminder = reminder.with_inner(item.alert)
                    self._reminders[key] = reminder
                if reminder.should_repeat():
                    annotated.append(PriorityAlert(reminder, item.priority))
            else:
                # New or changed condition: announce now, remind later
                reminder = RepeatedAlert(
                    item.alert,
                    repeat_interval_ms=repetition.repeat_interval_ms,
                    max_repeats=repetition.max_repeats,
                    clock=self._clock,
                )
                self._reminders[key] = reminder
                reminder.mark_announced()
                annotated.append(PriorityAlert(item.alert, item.priority))

        return annotated

    async def run_evaluation_cycle(self) -> CycleReport:
        """Evaluate every known patient concurrently and deliver the alerts."""
        started_at = datetime.now(UTC)
        start_time = time.perf_counter()
        patient_ids = self.directory.patient_ids()

        async with asyncio.TaskGroup() as task_group:
            tasks = [
                task_group.create_task(self.evaluate_patient(pid), name=f"patient-{pid}")
                for pid in patient_ids
            ]

        alerts: list[AlertLike] = []
        timed_out: list[int] = []
        failed: list[int] = []
        for task in tasks:
            evaluation = task.result()
            if evaluation.timed_out:
                timed_out.append(evaluation.patient_id)
                continue
            if evaluation.error is not None:
                failed.append(evaluation.patient_id)
                continue
            # Only a completed evaluation can resolve reminders
            alerts.extend(self._annotate(evaluation.patient_id, evaluation.raised))

        dispatch_report = self.dispatcher.dispatch(alerts)
        duration = time.perf_counter() - start_time

        self.logger.info(
            "evaluation_cycle_completed",
            patients_evaluated=len(patient_ids),
            alerts_generated=len(alerts),
            deliveries_failed=dispatch_report.failed_count,
            timed_out=len(timed_out),
            duration_seconds=round(duration, 3),
        )

        return CycleReport(
            started_at=started_at,
            patients_evaluated=len(patient_ids),
            alerts=alerts,
            dispatch=dispatch_report,
            timed_out_patients=timed_out,
            failed_patients=failed,
            duration_seconds=duration,
        )

    async def run_continuous_monitoring(self) -> AsyncIterator[CycleReport]:
        """
        Run evaluation cycles on the configured interval.

        Yields a report per cycle until stop() is called or the consumer
        stops iterating.
        """
        interval = self.config.monitoring.evaluation_interval_seconds
        self.logger.info("continuous_monitoring_starting", interval_seconds=interval)
        self._is_running = True

        try:
            while self._is_running:
                cycle_start = time.perf_counter()
                yield await self.run_evaluation_cycle()

                elapsed = time.perf_counter() - cycle_start
                sleep_time = max(0.0, interval - elapsed)
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                else:
                    self.logger.warning(
                        "evaluation_cycle_slower_than_interval",
                        elapsed_seconds=round(elapsed, 3),
                        interval_seconds=interval,
                    )
        except asyncio.CancelledError:
            self.logger.info("continuous_monitoring_cancelled")
            raise
        finally:
            self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def stop(self) -> None:
        """Stop the cycle loop and release the worker pool."""
        self.logger.info("stopping_monitoring_service")
        self._is_running = False
        self._executor.shutdown(wait=False, cancel_futures=True)
