"""Weather service that fetches from the upstream and falls back to the last snapshot."""
from __future__ import annotations

import logging
from typing import Optional

import requests

from weatherproxy.core.abstractions import SnapshotRepository, WeatherClient, WeatherDataService
from weatherproxy.core.cancellation import CallerCancelled, CancellationSignal
from weatherproxy.core.health import HealthRegistry
from weatherproxy.core.resilience import InvalidPayload, ResiliencePolicy, TimeoutRejected


logger = logging.getLogger(__name__)


def failure_category(error: Optional[BaseException]) -> str:
    """Bucket an upstream failure for the health registry."""
    if isinstance(error, requests.HTTPError):
        return "http_status"
    if isinstance(error, (requests.Timeout, TimeoutRejected)):
        return "timeout"
    if isinstance(error, requests.RequestException):
        return "transport"
    if isinstance(error, InvalidPayload):
        return "invalid_payload"
    return "unexpected"


class WeatherFetchService(WeatherDataService):
    """Fetch-or-fallback over a single upstream endpoint.

    A successful fetch is returned only after it has been appended to the
    snapshot store.  Every failure up to and including that append is
    absorbed and answered from the latest stored snapshot instead, so callers
    observe either a payload or ``None``.

    Two conditions still reach the caller: a failure while reading the
    fallback snapshot, which must not be mistaken for "nothing cached yet",
    and cancellation requested by the caller itself.
    """

    def __init__(
        self,
        client: WeatherClient,
        store: SnapshotRepository,
        policy: ResiliencePolicy,
        health: Optional[HealthRegistry] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._policy = policy
        self._health = health or HealthRegistry()

    @property
    def health(self) -> HealthRegistry:
        return self._health

    # Public API ---------------------------------------------------------
    def get_weather_data(self, cancellation: Optional[CancellationSignal] = None) -> Optional[str]:
        cancellation = cancellation or CancellationSignal()
        outcome = self._policy.run(self._client.fetch, cancellation)

        if outcome.succeeded:
            payload = outcome.value
            try:
                self._store.append(payload)
            except Exception as exc:  # noqa: BLE001 - persistence failures fall back like upstream ones
                self._health.record_persist_failure()
                logger.warning("Failed to persist weather data, falling back to cache", exc_info=exc)
            else:
                self._health.record_success()
                logger.info("Weather data fetched and persisted successfully")
                return payload
        elif isinstance(outcome.error, CallerCancelled):
            logger.info("Weather fetch cancelled by caller after %d attempt(s)", outcome.attempts)
            raise outcome.error
        else:
            self._health.record_upstream_failure(failure_category(outcome.error))
            logger.warning(
                "Failed to fetch weather data from upstream after %d attempt(s), falling back to cache",
                outcome.attempts,
                exc_info=outcome.error,
            )

        return self._fallback()

    # Helpers ------------------------------------------------------------
    def _fallback(self) -> Optional[str]:
        cached = self._store.latest()
        if cached is not None:
            self._health.record_fallback(served=True)
            logger.info("Returning cached weather data from %s", cached.captured_at.isoformat())
            return cached.payload

        self._health.record_fallback(served=False)
        logger.warning("No cached weather data available")
        return None


__all__ = ["WeatherFetchService", "failure_category"]
