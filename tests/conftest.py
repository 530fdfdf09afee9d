"""Shared fixtures: a controllable clock and a fresh patient directory."""

from __future__ import annotations

import pytest

from alert_engine.services.patient_store import PatientDirectory

MINUTE_MS = 60_000

# Fixed reference instant for deterministic windows (2025-01-01T00:00:00Z)
T0 = 1_735_689_600_000


class FakeClock:
    """Clock test double returning a settable epoch-millisecond instant."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def directory() -> PatientDirectory:
    return PatientDirectory()
