"""In-memory health registry for the admin endpoint.

The fetch service absorbs upstream, validation and persistence failures so
that API callers only ever see "data" or "no data".  The registry is where
those absorbed failures remain visible: counters per failure category, the
number of fallbacks that did or did not find a cached snapshot, and the time
of the last successful fetch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional


@dataclass(frozen=True)
class FallbackStats:
    """Simple container for fallback related counters."""

    served: int = 0
    empty: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"served": self.served, "empty": self.empty}


class HealthRegistry:
    """Stores upstream error counters, fallback stats and the last success."""

    def __init__(self) -> None:
        self._upstream_errors: Dict[str, int] = {}
        self._persist_failures = 0
        self._fallbacks = FallbackStats()
        self._last_success: Optional[str] = None
        self._lock = Lock()

    # -- Upstream errors ----------------------------------------------------
    def record_upstream_failure(self, category: str, increment: int = 1) -> None:
        if not category:
            raise ValueError("category must be provided")
        if increment <= 0:
            raise ValueError("increment must be positive")
        with self._lock:
            self._upstream_errors[category] = self._upstream_errors.get(category, 0) + increment

    # -- Persistence and fallbacks -------------------------------------------
    def record_persist_failure(self) -> None:
        with self._lock:
            self._persist_failures += 1

    def record_fallback(self, served: bool) -> None:
        with self._lock:
            if served:
                self._fallbacks = FallbackStats(self._fallbacks.served + 1, self._fallbacks.empty)
            else:
                self._fallbacks = FallbackStats(self._fallbacks.served, self._fallbacks.empty + 1)

    def record_success(self, when: Optional[datetime] = None) -> None:
        when = when or datetime.now(timezone.utc)
        iso_value = self._format_datetime(when)
        with self._lock:
            self._last_success = iso_value

    # -- Snapshot -----------------------------------------------------------
    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "upstream_errors": dict(self._upstream_errors),
                "persist_failures": self._persist_failures,
                "fallbacks": self._fallbacks.as_dict(),
                "last_success": self._last_success,
            }

    @staticmethod
    def _format_datetime(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()


__all__ = ["FallbackStats", "HealthRegistry"]
