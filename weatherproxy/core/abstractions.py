"""Core abstractions for the weather proxy."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from weatherproxy.core.cancellation import CancellationSignal


@dataclass(frozen=True, slots=True)
class Snapshot:
    """One persisted upstream response."""

    id: int
    payload: str
    captured_at: datetime


class SnapshotRepository(Protocol):
    """Append-only store of fetched payloads."""

    def append(self, payload: str) -> Snapshot:
        """Persist ``payload`` and return the stored snapshot."""
        ...

    def latest(self) -> Optional[Snapshot]:
        """Return the most recently captured snapshot, if any."""
        ...


class WeatherClient(Protocol):
    """Performs a single upstream fetch and returns the raw body."""

    def fetch(self, cancellation: CancellationSignal) -> str:
        ...


class WeatherDataService(Protocol):
    """High level service that exposes weather data to the API layer."""

    def get_weather_data(self, cancellation: Optional[CancellationSignal] = None) -> Optional[str]:
        """Return fresh or cached weather JSON, or ``None`` when nothing is available."""
        ...
