"""Cancellation and rate-limiting primitives shared by workers and provider calls."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from questionnaire_analysis.errors import Cancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal threaded through one job's execution path."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "Cancelled by request.") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self._reason or "Cancelled.")

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to ``timeout`` seconds; return True if cancellation was signalled."""

        return self._event.wait(timeout)


class SlidingWindowRateLimiter:
    """Allow at most ``max_calls`` acquisitions per rolling ``window_seconds``.

    Callers over the limit wait instead of failing. A waiting caller holding a
    cancellation token is released with ``Cancelled`` when the token fires.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0:
            raise ValueError(f"max_calls must be positive, got {max_calls}.")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}.")
        self._max_calls = max_calls
        self._window_seconds = window_seconds
        self._name = name
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self._window_seconds:
            self._calls.popleft()

    def try_acquire(self) -> float:
        """Record a call and return 0.0, or return the seconds until a slot frees up."""

        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._calls) < self._max_calls:
                self._calls.append(now)
                return 0.0
            return max(0.0, self._calls[0] + self._window_seconds - now)

    def acquire(self, cancel_token: CancellationToken | None = None) -> float:
        """Block until a slot is available and return the total time spent waiting."""

        waited = 0.0
        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            delay = self.try_acquire()
            if delay <= 0.0:
                return waited
            logger.debug("Rate limiter %s full; waiting %.2fs.", self._name, delay)
            if cancel_token is not None:
                if cancel_token.wait(delay):
                    cancel_token.raise_if_cancelled()
            else:
                self._sleep(delay)
            waited += delay

    def calls_in_window(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._calls)
