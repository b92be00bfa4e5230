"""HTTP client for the configured upstream weather endpoint."""
from __future__ import annotations

import contextlib
import json
import logging
import socket
import threading
from typing import Dict, Optional

import requests
from requests import Response

from weatherproxy.core.cancellation import CancellationSignal
from weatherproxy.core.config import WeatherServiceOptions
from weatherproxy.core.resilience import InvalidPayload


CHUNK_SIZE = 16 * 1024
WATCH_INTERVAL = 60.0

logger = logging.getLogger(__name__)


def _reject_constant(name: str) -> float:
    raise ValueError(f"{name} is not a valid JSON value")


class ConnectionWatchdog:
    """Shut the response socket down as soon as ``cancellation`` fires.

    The requests timeout only bounds each socket read, so an upstream that
    trickles bytes can keep a read alive long past the attempt deadline.
    Shutting the socket down wakes the blocked reader, which then reports
    the cancellation instead of the truncated body.
    """

    def __init__(self, response: Response, cancellation: CancellationSignal) -> None:
        self._response = response
        self._signal = cancellation.child()
        self._finished = threading.Event()
        self._thread = threading.Thread(target=self._watch, name="upstream-watchdog", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._finished.set()
        self._signal.cancel()
        self._thread.join()

    def _watch(self) -> None:
        while not self._signal.wait(WATCH_INTERVAL):
            pass
        if not self._finished.is_set():
            self._abort()

    def _abort(self) -> None:
        connection = getattr(self._response.raw, "connection", None)
        sock = getattr(connection, "sock", None)
        if sock is None:
            return
        logger.debug("Aborting upstream read for %s", self._response.url)
        # The reader may already have closed the socket.
        with contextlib.suppress(OSError):
            sock.shutdown(socket.SHUT_RDWR)


class UpstreamWeatherClient:
    """Fetch the raw upstream body for one attempt.

    The body is only parsed to prove it is well-formed JSON; the text handed
    back is exactly what the upstream sent.
    """

    def __init__(
        self,
        options: WeatherServiceOptions,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.options = options
        self.session = session or requests.Session()
        self._log = logging.getLogger(self.__class__.__name__)

    def build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.options.auth_scheme and self.options.auth_token:
            headers["Authorization"] = f"{self.options.auth_scheme} {self.options.auth_token}"
        if self.options.api_key:
            headers["X-Api-Key"] = self.options.api_key
        return headers

    def fetch(self, cancellation: CancellationSignal) -> str:
        cancellation.raise_if_cancelled()
        response = self.session.request(
            "GET",
            self.options.url,
            headers=self.build_headers(),
            timeout=self._timeout(cancellation),
            stream=True,
        )
        watchdog = ConnectionWatchdog(response, cancellation)
        try:
            self._handle_response(response)
            body = self._read_body(response, cancellation)
        finally:
            watchdog.stop()
            response.close()
        self._validate(body)
        return body

    # Helpers ------------------------------------------------------------
    def _timeout(self, cancellation: CancellationSignal) -> float:
        remaining = cancellation.remaining()
        if remaining is None:
            return self.options.timeout_ms / 1000.0
        # requests treats 0 as "no wait" and raises immediately; keep it positive.
        return max(remaining, 0.001)

    def _handle_response(self, response: Response) -> Response:
        if not 200 <= response.status_code < 300:
            self._log.error("Upstream returned %s", response.status_code)
            raise requests.HTTPError(f"HTTP {response.status_code}", response=response)
        return response

    def _read_body(self, response: Response, cancellation: CancellationSignal) -> str:
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                cancellation.raise_if_cancelled()
                chunks.append(chunk)
        except requests.RequestException:
            # A read cut short by the watchdog surfaces as a protocol error.
            cancellation.raise_if_cancelled()
            raise
        cancellation.raise_if_cancelled()
        try:
            return b"".join(chunks).decode(self._charset(response))
        except (LookupError, UnicodeDecodeError) as exc:
            raise InvalidPayload("upstream body could not be decoded") from exc

    def _charset(self, response: Response) -> str:
        # requests assumes ISO-8859-1 for text/* without a charset; JSON defaults to UTF-8.
        content_type = response.headers.get("Content-Type", "")
        if "charset" in content_type.lower() and response.encoding:
            return response.encoding
        return "utf-8"

    def _validate(self, body: str) -> None:
        try:
            json.loads(body, parse_constant=_reject_constant)
        except ValueError as exc:
            self._log.error("Upstream returned malformed JSON: %s", exc)
            raise InvalidPayload("upstream body is not valid JSON") from exc


__all__ = ["ConnectionWatchdog", "UpstreamWeatherClient"]
