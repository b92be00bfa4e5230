"""REST API views for weather information."""
from __future__ import annotations

from functools import lru_cache

from django.conf import settings
from django.http import HttpResponse
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from weatherproxy.core.config import WeatherServiceOptions
from weatherproxy.core.health import HealthRegistry
from weatherproxy.core.models import SnapshotStore, create_session_factory, run_migrations
from weatherproxy.core.providers.upstream import UpstreamWeatherClient
from weatherproxy.core.resilience import ResiliencePolicy
from weatherproxy.core.services.weather_service import WeatherFetchService


@lru_cache(maxsize=1)
def get_health_registry() -> HealthRegistry:
    return HealthRegistry()


@lru_cache(maxsize=1)
def get_weather_service() -> WeatherFetchService:
    options = WeatherServiceOptions.from_settings(settings)
    session_factory = create_session_factory(settings.WEATHER_DATABASE_URL)
    run_migrations(session_factory)
    return WeatherFetchService(
        client=UpstreamWeatherClient(options),
        store=SnapshotStore(session_factory),
        policy=ResiliencePolicy(options.resilience_config()),
        health=get_health_registry(),
    )


class WeatherView(APIView):
    """Serve the current weather document, fresh or from the last snapshot."""

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):  # noqa: D401
        """Return the upstream JSON verbatim, or 204 when nothing is available."""
        payload = get_weather_service().get_weather_data()
        if payload is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        # The body is passed through untouched, so bypass DRF rendering.
        return HttpResponse(payload, content_type="application/json", status=status.HTTP_200_OK)


class HealthView(APIView):
    """Expose the failures the weather service absorbed."""

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):  # noqa: D401
        return Response(get_health_registry().snapshot(), status=status.HTTP_200_OK)
