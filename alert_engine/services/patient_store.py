"""
Per-patient measurement storage.

Key patterns:
- One timeline per patient, created lazily on first ingestion
- Per-patient locks: writers for different patients never contend
- Insertion-ordered storage, sorted (stably) at query time
- Queries work on a snapshot, so readers never see a half-written list
"""

import sys
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import structlog

from alert_engine.domain.models import MeasurementRecord, signal_name

logger = structlog.get_logger(__name__)

# Upper bound used for open-ended "from start until now and beyond" queries
END_OF_TIME = sys.maxsize


class PatientView(Protocol):
    """Query capability handed to rule strategies."""

    @property
    def patient_id(self) -> int: ...

    def query(self, measurement_type: str, start: int, end: int) -> list[MeasurementRecord]: ...


def _patient_key(patient_id: int | str) -> int | None:
    # Alerts carry the id as text; both forms address the same timeline
    try:
        return int(patient_id)
    except (TypeError, ValueError):
        return None


def _in_range(records: Iterable[MeasurementRecord], start: int, end: int) -> list[MeasurementRecord]:
    # sorted() is stable: equal timestamps keep insertion order
    return sorted(
        (r for r in records if start <= r.timestamp <= end),
        key=lambda r: r.timestamp,
    )


class PatientTimeline:
    """Append-only measurement history for one patient."""

    def __init__(self, patient_id: int) -> None:
        self._patient_id = patient_id
        self._records: list[MeasurementRecord] = []
        self._lock = threading.Lock()

    @property
    def patient_id(self) -> int:
        return self._patient_id

    def append(self, record: MeasurementRecord) -> None:
        if record.patient_id != self._patient_id:
            raise ValueError(
                f"record for patient {record.patient_id} appended to timeline {self._patient_id}"
            )
        with self._lock:
            self._records.append(record)

    def add(self, measurement_type: str, value: float, timestamp: int) -> MeasurementRecord:
        record = MeasurementRecord(
            patient_id=self._patient_id,
            type=signal_name(measurement_type),
            value=float(value),
            timestamp=int(timestamp),
        )
        self.append(record)
        return record

    def _snapshot(self) -> list[MeasurementRecord]:
        with self._lock:
            return list(self._records)

    def get_range(self, start: int, end: int) -> list[MeasurementRecord]:
        """All records with start <= timestamp <= end, oldest first."""
        if start > end:
            return []
        return _in_range(self._snapshot(), start, end)

    def query(self, measurement_type: str, start: int, end: int) -> list[MeasurementRecord]:
        """Records of one signal type inside [start, end], oldest first."""
        if start > end:
            return []
        wanted = signal_name(measurement_type)
        return _in_range((r for r in self._snapshot() if r.type == wanted), start, end)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __repr__(self) -> str:
        return f"PatientTimeline(patient_id={self._patient_id}, records={len(self)})"


@dataclass(frozen=True)
class DirectoryPatientView:
    """Read-only view of one patient, resolved against the directory on every query."""

    directory: "PatientDirectory"
    patient_id: int

    def query(self, measurement_type: str, start: int, end: int) -> list[MeasurementRecord]:
        return self.directory.query(self.patient_id, measurement_type, start, end)


class PatientDirectory:
    """
    Session-scoped mapping from patient id to timeline.

    Constructed explicitly and passed to whoever needs it. The directory lock
    guards only timeline creation; appends and reads go through the
    per-patient timeline lock.
    """

    def __init__(self) -> None:
        self._timelines: dict[int, PatientTimeline] = {}
        self._lock = threading.Lock()
        self.logger = logger.bind(component="patient_directory")

    def _timeline_for(self, patient_id: int) -> PatientTimeline:
        timeline = self._timelines.get(patient_id)
        if timeline is not None:
            return timeline
        with self._lock:
            timeline = self._timelines.get(patient_id)
            if timeline is None:
                timeline = PatientTimeline(patient_id)
                self._timelines[patient_id] = timeline
                self.logger.debug("patient_timeline_created", patient_id=patient_id)
            return timeline

    def ingest(
        self, patient_id: int, measurement_type: str, value: float, timestamp: int
    ) -> MeasurementRecord:
        """Store one measurement. Never rejects well-typed input."""
        return self._timeline_for(int(patient_id)).add(measurement_type, value, timestamp)

    def ingest_record(self, record: MeasurementRecord) -> None:
        self._timeline_for(record.patient_id).append(record)

    def query(
        self, patient_id: int | str, measurement_type: str, start: int, end: int
    ) -> list[MeasurementRecord]:
        """Matching records in ascending timestamp order; empty for unknown patients."""
        timeline = self.timeline(patient_id)
        if timeline is None:
            return []
        return timeline.query(measurement_type, start, end)

    def get_records(self, patient_id: int | str, start: int, end: int) -> list[MeasurementRecord]:
        """Records of every type inside [start, end]."""
        timeline = self.timeline(patient_id)
        if timeline is None:
            return []
        return timeline.get_range(start, end)

    def timeline(self, patient_id: int | str) -> PatientTimeline | None:
        key = _patient_key(patient_id)
        return None if key is None else self._timelines.get(key)

    def view(self, patient_id: int) -> DirectoryPatientView:
        return DirectoryPatientView(self, patient_id)

    def patient_ids(self) -> list[int]:
        """Snapshot of the known patient ids, ascending."""
        with self._lock:
            return sorted(self._timelines)

    def __contains__(self, patient_id: object) -> bool:
        return self.timeline(patient_id) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._timelines)
