"""Per-attempt timeout and exponential-backoff retry around one unit of work.

Every attempt produces an :class:`Outcome`.  The retry loop (driven by
Tenacity) only looks at the outcome kind, so the decision to try again is a
plain data check rather than an exception filter:

- ``SUCCEEDED``: the operation returned a value.
- ``RETRYABLE``: the failure belongs to ``ResilienceConfig.retry_on``.
- ``TERMINAL``: anything else, including cancellation requested by the caller.
"""
from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

import requests
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential

from weatherproxy.core.cancellation import AttemptTimedOut, CallerCancelled, CancellationSignal


logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[CancellationSignal], T]
Sleeper = Callable[[float, CancellationSignal], object]


class TimeoutRejected(RuntimeError):
    """Raised by the policy when an attempt ran past its per-attempt timeout."""


class InvalidPayload(ValueError):
    """The upstream answered, but the body does not have the expected shape."""


DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
    requests.RequestException,
    AttemptTimedOut,
    TimeoutRejected,
    InvalidPayload,
)


@dataclass(frozen=True)
class ResilienceConfig:
    timeout: float = 4.0
    max_retry_attempts: int = 2
    base_delay: float = 0.2
    retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_ON

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_retry_attempts < 0:
            raise ValueError("max_retry_attempts must be non-negative")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def backoff(self, attempt: int) -> float:
        """Delay after the zero-indexed ``attempt`` failed."""
        return self.base_delay * 2 ** attempt


class OutcomeKind(enum.Enum):
    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    kind: OutcomeKind
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCEEDED

    def unwrap(self) -> T:
        if self.succeeded:
            return self.value  # type: ignore[return-value]
        if self.error is None:
            raise RuntimeError("failed outcome carries no error")
        raise self.error


def _abortable_sleep(seconds: float, cancellation: CancellationSignal) -> None:
    cancellation.wait(seconds)


class ResiliencePolicy:
    """Run an operation with a per-attempt timeout and bounded retries."""

    def __init__(self, config: Optional[ResilienceConfig] = None, sleep: Optional[Sleeper] = None) -> None:
        self.config = config or ResilienceConfig()
        self._sleep = sleep or _abortable_sleep

    # Public API ---------------------------------------------------------
    def run(self, operation: Operation[T], cancellation: Optional[CancellationSignal] = None) -> Outcome[T]:
        cancellation = cancellation or CancellationSignal()
        counter = itertools.count(1)

        def attempt() -> Outcome[T]:
            return self._attempt(operation, cancellation, next(counter))

        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_retry_attempts + 1),
            wait=wait_exponential(multiplier=self.config.base_delay, exp_base=2, min=0),
            retry=retry_if_result(lambda outcome: outcome.kind is OutcomeKind.RETRYABLE),
            sleep=lambda seconds: self._sleep(seconds, cancellation),
            before_sleep=self._log_retry,
            retry_error_callback=lambda state: state.outcome.result(),
        )
        return retrying(attempt)

    def execute(self, operation: Operation[T], cancellation: Optional[CancellationSignal] = None) -> T:
        return self.run(operation, cancellation).unwrap()

    def classify(self, error: BaseException, cancellation: Optional[CancellationSignal] = None) -> OutcomeKind:
        if isinstance(error, CallerCancelled):
            return OutcomeKind.TERMINAL
        if cancellation is not None and cancellation.cancelled:
            return OutcomeKind.TERMINAL
        if isinstance(error, self.config.retry_on):
            return OutcomeKind.RETRYABLE
        return OutcomeKind.TERMINAL

    # Helpers ------------------------------------------------------------
    def _attempt(self, operation: Operation[T], cancellation: CancellationSignal, number: int) -> Outcome[T]:
        if cancellation.cancelled:
            # The caller gave up during the backoff wait; the operation is not started.
            return Outcome(
                OutcomeKind.TERMINAL,
                error=CallerCancelled("operation cancelled by caller"),
                attempts=number - 1,
            )

        attempt_signal = cancellation.child(self.config.timeout)
        error: Exception
        try:
            value = operation(attempt_signal)
        except AttemptTimedOut as exc:
            error = TimeoutRejected(f"attempt {number} exceeded {self.config.timeout:.3f}s")
            error.__cause__ = exc
        except Exception as exc:  # noqa: BLE001 - classified below
            error = exc
        else:
            return Outcome(OutcomeKind.SUCCEEDED, value=value, attempts=number)
        if cancellation.cancelled and not isinstance(error, CallerCancelled):
            # The caller gave up while the attempt was failing for another reason.
            cause, error = error, CallerCancelled("operation cancelled by caller")
            error.__cause__ = cause
        return Outcome(self.classify(error, cancellation), error=error, attempts=number)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome: Outcome = retry_state.outcome.result()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Attempt %d of %d failed: %r; retrying in %.3fs",
            outcome.attempts,
            self.config.max_retry_attempts + 1,
            outcome.error,
            delay,
        )


__all__ = [
    "DEFAULT_RETRY_ON",
    "InvalidPayload",
    "Outcome",
    "OutcomeKind",
    "ResilienceConfig",
    "ResiliencePolicy",
    "TimeoutRejected",
]
