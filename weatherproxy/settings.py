"""Base Django settings for the weather proxy."""
from __future__ import annotations

from pathlib import Path
import os

from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent


def env(name: str, default: str | None = None) -> str:
    """Fetch environment variables while allowing explicit defaults."""

    value = os.environ.get(name, default)
    if value is None:
        raise ImproperlyConfigured(f"Environment variable {name} is required")
    return value


SECRET_KEY = env("DJANGO_SECRET_KEY")
DEBUG = os.environ.get("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "weatherproxy.api",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "weatherproxy.urls"

WSGI_APPLICATION = "weatherproxy.wsgi.application"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Snapshots are kept by weatherproxy.core.models, not by the Django ORM.
WEATHER_DATABASE_URL = env("WEATHER_DATABASE_URL", "sqlite:///./weather.db")

WEATHER_SERVICE = {
    "URL": env("WEATHER_SERVICE_URL", ""),
    "TIMEOUT_MS": env("WEATHER_SERVICE_TIMEOUT_MS", "4000"),
    "RETRY_COUNT": env("WEATHER_SERVICE_RETRY_COUNT", "2"),
    "RETRY_BASE_DELAY_MS": env("WEATHER_SERVICE_RETRY_BASE_DELAY_MS", "200"),
    "AUTH_SCHEME": env("WEATHER_SERVICE_AUTH_SCHEME", ""),
    "AUTH_TOKEN": env("WEATHER_SERVICE_AUTH_TOKEN", ""),
    "API_KEY": env("WEATHER_SERVICE_API_KEY", ""),
}

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {
        "handlers": ["console"],
        "level": os.environ.get("LOG_LEVEL", "INFO"),
    },
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True
