"""Typed view over the ``WEATHER_SERVICE`` settings block."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from django.core.exceptions import ImproperlyConfigured

from weatherproxy.core.resilience import ResilienceConfig


@dataclass(frozen=True)
class WeatherServiceOptions:
    url: str = ""
    timeout_ms: int = 4000
    retry_count: int = 2
    retry_base_delay_ms: int = 200
    # Sent as "Authorization: <scheme> <token>" only when both are set.
    auth_scheme: str = ""
    auth_token: str = ""
    # Sent as "X-Api-Key" when set.
    api_key: str = ""

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "WeatherServiceOptions":
        try:
            options = cls(
                url=str(values.get("URL") or ""),
                timeout_ms=int(values.get("TIMEOUT_MS", cls.timeout_ms)),
                retry_count=int(values.get("RETRY_COUNT", cls.retry_count)),
                retry_base_delay_ms=int(values.get("RETRY_BASE_DELAY_MS", cls.retry_base_delay_ms)),
                auth_scheme=str(values.get("AUTH_SCHEME") or ""),
                auth_token=str(values.get("AUTH_TOKEN") or ""),
                api_key=str(values.get("API_KEY") or ""),
            )
        except (TypeError, ValueError) as exc:
            raise ImproperlyConfigured(f"Invalid WEATHER_SERVICE setting: {exc}") from exc
        options.validate()
        return options

    @classmethod
    def from_settings(cls, settings: Any) -> "WeatherServiceOptions":
        return cls.from_mapping(getattr(settings, "WEATHER_SERVICE", {}) or {})

    def validate(self) -> None:
        if self.timeout_ms <= 0:
            raise ImproperlyConfigured("WEATHER_SERVICE TIMEOUT_MS must be positive")
        if self.retry_count < 0:
            raise ImproperlyConfigured("WEATHER_SERVICE RETRY_COUNT must be non-negative")
        if self.retry_base_delay_ms < 0:
            raise ImproperlyConfigured("WEATHER_SERVICE RETRY_BASE_DELAY_MS must be non-negative")

    def resilience_config(self) -> ResilienceConfig:
        return ResilienceConfig(
            timeout=self.timeout_ms / 1000.0,
            max_retry_attempts=self.retry_count,
            base_delay=self.retry_base_delay_ms / 1000.0,
        )


__all__ = ["WeatherServiceOptions"]
