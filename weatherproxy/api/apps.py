from __future__ import annotations

import os

from django.apps import AppConfig


class WeatherApiConfig(AppConfig):
    name = "weatherproxy.api"
    label = "weather_api"
    # Namespace package: give Django the location instead of letting it guess.
    path = os.path.dirname(os.path.abspath(__file__))
