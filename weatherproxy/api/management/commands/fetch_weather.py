"""Management command to run one fetch cycle using the same stack as the API."""
from __future__ import annotations

from typing import Any

from django.core.management.base import BaseCommand, CommandError

from weatherproxy.api.views import get_weather_service
from weatherproxy.core.cancellation import CallerCancelled, CancellationSignal
from weatherproxy.core.models import StoreError


class Command(BaseCommand):
    help = "Fetch the current weather document, falling back to the last stored snapshot"

    def add_arguments(self, parser) -> None:  # noqa: D401
        parser.add_argument(
            "--cancel-after",
            type=float,
            default=None,
            help="Give up on the whole fetch cycle after this many seconds",
        )

    def handle(self, *args: Any, **options: Any) -> None:  # noqa: D401
        cancel_after = options.get("cancel_after")
        if cancel_after is not None and cancel_after <= 0:
            raise CommandError("--cancel-after must be positive")

        cancellation = CancellationSignal(timeout=cancel_after)
        try:
            payload = get_weather_service().get_weather_data(cancellation)
        except CallerCancelled as exc:
            raise CommandError(f"Fetch cancelled after {cancel_after}s") from exc
        except StoreError as exc:
            raise CommandError("Snapshot store is unavailable") from exc

        if payload is None:
            raise CommandError("No weather data available")
        self.stdout.write(payload)
