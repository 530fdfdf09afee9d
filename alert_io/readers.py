"""
Measurement readers: the producer side of the engine.

Readers turn raw producer output into validated measurement records and hand
them to the patient directory. Malformed input is rejected here and never
reaches a timeline.

Formats:
- Line format used by the streaming simulator: ``patientId,timestamp,label,data``
- JSON files holding one object or an array of objects with
  ``patientId``, ``recordType``, ``measurementValue`` and ``timestamp``
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from alert_engine.domain.models import MeasurementParseError, MeasurementRecord, MeasurementType
from alert_engine.services.patient_store import PatientDirectory
from alert_engine.services.result import Result

logger = structlog.get_logger(__name__)

# Simulator labels that differ from the engine's signal names
LABEL_ALIASES: dict[str, str] = {"Alert": MeasurementType.MANUAL_ALERT.value}

# Call button states sent as text
ALERT_STATES: dict[str, float] = {"triggered": 1.0, "resolved": 0.0}


class MeasurementPayload(BaseModel):
    """Wire shape of a single measurement."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    patient_id: int = Field(alias="patientId")
    record_type: str = Field(alias="recordType", min_length=1)
    measurement_value: float = Field(alias="measurementValue")
    timestamp: int = Field(ge=0)

    def to_record(self) -> MeasurementRecord:
        return MeasurementRecord(
            patient_id=self.patient_id,
            type=LABEL_ALIASES.get(self.record_type, self.record_type),
            value=self.measurement_value,
            timestamp=self.timestamp,
        )


def _parse_data(data: str) -> float:
    text = data.strip()
    state = ALERT_STATES.get(text.lower())
    if state is not None:
        return state
    return float(text.rstrip("%"))


def parse_measurement_line(line: str) -> Result[MeasurementRecord, MeasurementParseError]:
    """Parse ``patientId,timestamp,label,data``."""
    parts = [p.strip() for p in line.strip().split(",")]
    if len(parts) != 4:
        return Result.err(MeasurementParseError(line, f"expected 4 fields, got {len(parts)}"))

    patient_id, timestamp, label, data = parts
    try:
        value = _parse_data(data)
    except ValueError:
        return Result.err(MeasurementParseError(line, f"unreadable value {data!r}"))

    try:
        payload = MeasurementPayload(
            patient_id=patient_id,
            record_type=label,
            measurement_value=value,
            timestamp=timestamp,
        )
    except ValidationError as e:
        return Result.err(MeasurementParseError(line, f"{e.error_count()} invalid field(s)"))

    return Result.ok(payload.to_record())


@dataclass
class ReadSummary:
    """What one pass over a directory achieved."""

    files_read: int = 0
    records_ingested: int = 0
    records_rejected: int = 0
    failed_files: list[str] = field(default_factory=list)


class JsonDirectoryReader:
    """Loads every ``*.json`` file in a directory into the patient directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.logger = logger.bind(component="json_directory_reader", directory=str(directory))

    def parse_file(self, path: Path) -> tuple[list[MeasurementRecord], int]:
        """Valid records of one file and the number of rejected entries."""
        try:
            document: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise MeasurementParseError(path.name, f"invalid JSON: {e}") from e

        if isinstance(document, dict):
            entries = [document]
        elif isinstance(document, list):
            entries = document
        else:
            raise MeasurementParseError(path.name, "expected a JSON object or array")

        records: list[MeasurementRecord] = []
        rejected = 0
        for entry in entries:
            if not isinstance(entry, dict):
                rejected += 1
                continue
            try:
                records.append(MeasurementPayload.model_validate(entry).to_record())
            except ValidationError as e:
                rejected += 1
                self.logger.warning(
                    "measurement_rejected", file=path.name, errors=e.error_count()
                )
        return records, rejected

    def read_into(self, patient_directory: PatientDirectory) -> ReadSummary:
        """Parse all files; a broken file is skipped, never fatal."""
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Directory not found: {self.directory}")

        summary = ReadSummary()
        for path in sorted(self.directory.glob("*.json")):
            if not path.is_file():
                continue
            try:
                records, rejected = self.parse_file(path)
            except MeasurementParseError as e:
                summary.failed_files.append(path.name)
                self.logger.error("measurement_file_failed", file=path.name, error=str(e))
                continue

            for record in records:
                patient_directory.ingest_record(record)
            summary.files_read += 1
            summary.records_ingested += len(records)
            summary.records_rejected += rejected

        self.logger.info(
            "measurement_files_read",
            files_read=summary.files_read,
            records_ingested=summary.records_ingested,
            records_rejected=summary.records_rejected,
            failed_files=len(summary.failed_files),
        )
        return summary
