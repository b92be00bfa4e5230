from __future__ import annotations

import threading
import time

import pytest
import requests

from weatherproxy.core.cancellation import AttemptTimedOut, CallerCancelled, CancellationSignal
from weatherproxy.core.config import WeatherServiceOptions
from weatherproxy.core.providers.upstream import UpstreamWeatherClient
from weatherproxy.core.resilience import (
    InvalidPayload,
    Outcome,
    OutcomeKind,
    ResilienceConfig,
    ResiliencePolicy,
    TimeoutRejected,
)


class FlakyOperation:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, errors, value: str = "ok") -> None:
        self._errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self, cancellation: CancellationSignal) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self.value


class AlwaysFailing:
    def __init__(self, error_factory) -> None:
        self._error_factory = error_factory
        self.calls = 0

    def __call__(self, cancellation: CancellationSignal) -> str:
        self.calls += 1
        raise self._error_factory()


def test_success_returns_after_one_attempt(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=3, base_delay=0.1), sleep=sleeper)
    operation = FlakyOperation([])

    outcome = policy.run(operation)

    assert outcome.kind is OutcomeKind.SUCCEEDED
    assert outcome.value == "ok"
    assert outcome.attempts == 1
    assert operation.calls == 1
    assert sleeper.delays == []


@pytest.mark.parametrize("retries", [0, 1, 3])
def test_retryable_failure_is_attempted_retries_plus_one_times(sleeper, retries: int) -> None:
    config = ResilienceConfig(max_retry_attempts=retries, base_delay=0.1)
    policy = ResiliencePolicy(config, sleep=sleeper)
    operation = AlwaysFailing(lambda: requests.ConnectionError("network down"))

    outcome = policy.run(operation)

    assert operation.calls == retries + 1
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert outcome.attempts == retries + 1
    assert isinstance(outcome.error, requests.ConnectionError)
    assert sleeper.delays == pytest.approx([config.backoff(k) for k in range(retries)])


def test_backoff_doubles_from_base_delay(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=4, base_delay=0.25), sleep=sleeper)

    policy.run(AlwaysFailing(lambda: requests.Timeout("slow")))

    assert sleeper.delays == pytest.approx([0.25, 0.5, 1.0, 2.0])


def test_non_retryable_failure_is_attempted_once(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=3), sleep=sleeper)
    operation = AlwaysFailing(lambda: KeyError("boom"))

    outcome = policy.run(operation)

    assert operation.calls == 1
    assert outcome.kind is OutcomeKind.TERMINAL
    assert isinstance(outcome.error, KeyError)
    assert sleeper.delays == []


def test_recovers_after_transient_failures(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=2, base_delay=0.1), sleep=sleeper)
    operation = FlakyOperation([requests.HTTPError("HTTP 503"), InvalidPayload("not json")], value="fresh")

    outcome = policy.run(operation)

    assert outcome.succeeded
    assert outcome.value == "fresh"
    assert outcome.attempts == 3
    assert sleeper.delays == pytest.approx([0.1, 0.2])


def test_attempt_timeout_is_rejected_and_retried(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=1, base_delay=0.0), sleep=sleeper)
    operation = AlwaysFailing(lambda: AttemptTimedOut("deadline"))

    outcome = policy.run(operation)

    assert operation.calls == 2
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert isinstance(outcome.error, TimeoutRejected)
    assert isinstance(outcome.error.__cause__, AttemptTimedOut)


def test_each_attempt_gets_its_own_deadline(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(timeout=0.05, max_retry_attempts=1, base_delay=0.0), sleep=sleeper)
    seen = []

    def slow(cancellation: CancellationSignal) -> str:
        seen.append(cancellation)
        while not cancellation.cancelled:
            cancellation.wait(5.0)
        cancellation.raise_if_cancelled()
        return "too late"

    started = time.monotonic()
    outcome = policy.run(slow)

    assert time.monotonic() - started < 4.0
    assert len(seen) == 2
    assert seen[0] is not seen[1]
    assert isinstance(outcome.error, TimeoutRejected)


def test_caller_cancellation_during_backoff_stops_retries() -> None:
    caller = CancellationSignal()
    operation = AlwaysFailing(lambda: requests.ConnectionError("network down"))

    def cancelling_sleep(seconds: float, cancellation: CancellationSignal) -> None:
        caller.cancel()

    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=3), sleep=cancelling_sleep)

    outcome = policy.run(operation, caller)

    assert operation.calls == 1
    assert outcome.kind is OutcomeKind.TERMINAL
    assert isinstance(outcome.error, CallerCancelled)
    assert outcome.attempts == 1


def test_default_backoff_wait_is_abortable() -> None:
    caller = CancellationSignal()
    operation = AlwaysFailing(lambda: requests.ConnectionError("network down"))
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=2, base_delay=30.0))
    timer = threading.Timer(0.2, caller.cancel)
    timer.start()
    try:
        started = time.monotonic()
        outcome = policy.run(operation, caller)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 10.0
    assert operation.calls == 1
    assert isinstance(outcome.error, CallerCancelled)


def test_cancelled_caller_never_starts_the_operation(sleeper) -> None:
    caller = CancellationSignal()
    caller.cancel()
    operation = FlakyOperation([])

    outcome = ResiliencePolicy(sleep=sleeper).run(operation, caller)

    assert operation.calls == 0
    assert outcome.attempts == 0
    assert isinstance(outcome.error, CallerCancelled)


def test_execute_unwraps_value_and_raises_last_error(sleeper) -> None:
    policy = ResiliencePolicy(ResilienceConfig(max_retry_attempts=1, base_delay=0.0), sleep=sleeper)

    assert policy.execute(FlakyOperation([requests.ConnectionError("once")])) == "ok"
    with pytest.raises(InvalidPayload):
        policy.execute(AlwaysFailing(lambda: InvalidPayload("still broken")))


def test_classify() -> None:
    policy = ResiliencePolicy()
    cancelled = CancellationSignal()
    cancelled.cancel()

    assert policy.classify(requests.ConnectionError()) is OutcomeKind.RETRYABLE
    assert policy.classify(requests.HTTPError()) is OutcomeKind.RETRYABLE
    assert policy.classify(AttemptTimedOut()) is OutcomeKind.RETRYABLE
    assert policy.classify(TimeoutRejected()) is OutcomeKind.RETRYABLE
    assert policy.classify(InvalidPayload()) is OutcomeKind.RETRYABLE
    assert policy.classify(ValueError()) is OutcomeKind.TERMINAL
    assert policy.classify(CallerCancelled()) is OutcomeKind.TERMINAL
    assert policy.classify(requests.ConnectionError(), cancelled) is OutcomeKind.TERMINAL


def test_custom_retryable_set() -> None:
    policy = ResiliencePolicy(ResilienceConfig(retry_on=(KeyError,)))

    assert policy.classify(KeyError()) is OutcomeKind.RETRYABLE
    assert policy.classify(requests.ConnectionError()) is OutcomeKind.TERMINAL


@pytest.mark.parametrize(
    "kwargs",
    [{"timeout": 0}, {"max_retry_attempts": -1}, {"base_delay": -0.1}],
)
def test_config_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        ResilienceConfig(**kwargs)


def test_failure_while_caller_cancels_is_reported_as_cancellation(sleeper) -> None:
    caller = CancellationSignal()

    def cancel_then_fail(cancellation: CancellationSignal) -> str:
        caller.cancel()
        raise requests.ConnectionError("connection reset")

    outcome = ResiliencePolicy(ResilienceConfig(max_retry_attempts=3), sleep=sleeper).run(cancel_then_fail, caller)

    assert outcome.kind is OutcomeKind.TERMINAL
    assert isinstance(outcome.error, CallerCancelled)
    assert isinstance(outcome.error.__cause__, requests.ConnectionError)
    assert outcome.attempts == 1
    assert sleeper.delays == []


def test_failed_outcome_without_error_cannot_be_unwrapped() -> None:
    with pytest.raises(RuntimeError):
        Outcome(OutcomeKind.TERMINAL).unwrap()


def test_trickling_upstream_is_rejected_at_the_attempt_timeout(trickling_upstream, direct_session) -> None:
    options = WeatherServiceOptions(url=trickling_upstream, timeout_ms=500, retry_count=0)
    client = UpstreamWeatherClient(options, session=direct_session)
    policy = ResiliencePolicy(options.resilience_config())

    started = time.monotonic()
    outcome = policy.run(client.fetch)

    assert time.monotonic() - started < 1.5
    assert outcome.kind is OutcomeKind.RETRYABLE
    assert isinstance(outcome.error, TimeoutRejected)
