from __future__ import annotations

import socket
import threading
from typing import List

import pytest
import requests

from weatherproxy.core.cancellation import CancellationSignal
from weatherproxy.core.config import WeatherServiceOptions
from weatherproxy.core.health import HealthRegistry
from weatherproxy.core.models import SnapshotStore, create_session_factory, run_migrations
from weatherproxy.core.providers.upstream import UpstreamWeatherClient
from weatherproxy.core.resilience import ResiliencePolicy
from weatherproxy.core.services.weather_service import WeatherFetchService


UPSTREAM_URL = "https://weather.test/current"


class RecordingSleeper:
    """Stands in for the backoff wait and remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float, cancellation: CancellationSignal) -> None:
        self.delays.append(seconds)


@pytest.fixture
def upstream_url() -> str:
    return UPSTREAM_URL


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'weather.db'}"


@pytest.fixture
def store(database_url) -> SnapshotStore:
    factory = create_session_factory(database_url)
    run_migrations(factory)
    return SnapshotStore(factory)


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def options() -> WeatherServiceOptions:
    return WeatherServiceOptions(url=UPSTREAM_URL, timeout_ms=1000, retry_count=2, retry_base_delay_ms=100)


@pytest.fixture
def make_service(store, sleeper):
    def factory(options: WeatherServiceOptions, snapshot_store=None, health=None) -> WeatherFetchService:
        return WeatherFetchService(
            client=UpstreamWeatherClient(options),
            store=snapshot_store if snapshot_store is not None else store,
            policy=ResiliencePolicy(options.resilience_config(), sleep=sleeper),
            health=health or HealthRegistry(),
        )

    return factory


TRICKLE_BODY = b'{"temperature": 21.5}'


@pytest.fixture
def trickling_upstream():
    """Local HTTP server that sends a valid body one byte every 100 ms."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen(5)
    listener.settimeout(0.2)
    stop = threading.Event()

    def serve() -> None:
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with conn:
                conn.recv(4096)
                head = (
                    "HTTP/1.1 200 OK\r\n"
                    "Content-Type: application/json\r\n"
                    f"Content-Length: {len(TRICKLE_BODY)}\r\n"
                    "Connection: close\r\n\r\n"
                )
                try:
                    conn.sendall(head.encode("ascii"))
                    for byte in TRICKLE_BODY:
                        if stop.wait(0.1):
                            return
                        conn.sendall(bytes([byte]))
                except OSError:
                    continue

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{listener.getsockname()[1]}/current"
    stop.set()
    listener.close()
    thread.join(timeout=5.0)


@pytest.fixture
def direct_session():
    session = requests.Session()
    # Keep proxy settings from the environment away from the local server.
    session.trust_env = False
    yield session
    session.close()
