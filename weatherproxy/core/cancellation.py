"""Cooperative cancellation shared by the fetch cycle and its attempts."""
from __future__ import annotations

import threading
import time
import weakref
from typing import Callable, Optional


class Cancelled(RuntimeError):
    """Base class for cancellation raised by :meth:`CancellationSignal.raise_if_cancelled`."""


class CallerCancelled(Cancelled):
    """The caller (or one of its ancestors) requested cancellation."""


class AttemptTimedOut(Cancelled):
    """The signal's own deadline elapsed while the caller was still waiting."""


class CancellationSignal:
    """A cancellation flag with an optional deadline and a parent.

    A derived signal fires when its parent fires or when its own deadline
    passes, whichever happens first.  Waiting on a signal is an abortable
    sleep: :meth:`cancel` wakes every waiter on the signal and on all of its
    descendants.
    """

    def __init__(
        self,
        parent: Optional["CancellationSignal"] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._parent = parent
        self._clock = clock
        self._event = threading.Event()
        self._children: "weakref.WeakSet[CancellationSignal]" = weakref.WeakSet()
        self._lock = threading.Lock()
        self._deadline = clock() + timeout if timeout is not None else None
        if parent is not None:
            parent._adopt(self)

    # -- state ----------------------------------------------------------------
    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out or self.caller_cancelled

    @property
    def caller_cancelled(self) -> bool:
        """True when the cancellation came from above this signal."""
        parent = self._parent
        return parent is not None and parent.cancelled

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the nearest deadline in the chain, if any."""
        candidates = []
        if self._deadline is not None:
            candidates.append(max(0.0, self._deadline - self._clock()))
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        return min(candidates) if candidates else None

    # -- control --------------------------------------------------------------
    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    def child(self, timeout: Optional[float] = None) -> "CancellationSignal":
        return CancellationSignal(parent=self, timeout=timeout, clock=self._clock)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True as soon as the signal fires."""
        if self.cancelled:
            return True
        limit = seconds
        remaining = self.remaining()
        if remaining is not None:
            limit = min(limit, remaining)
        self._event.wait(max(0.0, limit))
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        # A root signal always speaks for the caller, deadline or not.
        if self._parent is None:
            if self.cancelled:
                raise CallerCancelled("operation cancelled by caller")
            return
        if self.caller_cancelled:
            raise CallerCancelled("operation cancelled by caller")
        if self.timed_out:
            raise AttemptTimedOut("operation deadline elapsed")
        if self._event.is_set():
            raise CallerCancelled("operation cancelled")

    def _adopt(self, child: "CancellationSignal") -> None:
        with self._lock:
            self._children.add(child)
        if self.cancelled:
            child.cancel()


__all__ = ["AttemptTimedOut", "CallerCancelled", "Cancelled", "CancellationSignal"]
