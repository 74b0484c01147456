"""Tests for cancellation tokens and the sliding-window rate limiter."""

from __future__ import annotations

import threading

import pytest

from questionnaire_analysis.concurrency import CancellationToken, SlidingWindowRateLimiter
from questionnaire_analysis.errors import Cancelled


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class TestCancellationToken:
    def test_first_reason_wins(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

        token.cancel("user asked")
        token.cancel("second request")
        assert token.cancelled
        assert token.reason == "user asked"
        with pytest.raises(Cancelled, match="user asked"):
            token.raise_if_cancelled()

    def test_wait_returns_when_cancelled_from_another_thread(self):
        token = CancellationToken()
        timer = threading.Timer(0.01, token.cancel)
        timer.start()
        assert token.wait(5.0) is True
        timer.join()


class TestSlidingWindowRateLimiter:
    def test_allows_up_to_limit_then_reports_delay(self):
        clock = _FakeClock()
        limiter = SlidingWindowRateLimiter(2, 10.0, clock=clock, sleep=clock.sleep)

        assert limiter.try_acquire() == 0.0
        clock.now = 3.0
        assert limiter.try_acquire() == 0.0
        assert limiter.try_acquire() == pytest.approx(7.0)
        assert limiter.calls_in_window() == 2

        clock.now = 10.0
        assert limiter.try_acquire() == 0.0

    def test_acquire_waits_for_the_window_to_slide(self):
        clock = _FakeClock()
        limiter = SlidingWindowRateLimiter(1, 5.0, clock=clock, sleep=clock.sleep)

        assert limiter.acquire() == 0.0
        waited = limiter.acquire()
        assert waited == pytest.approx(5.0)
        assert clock.now == pytest.approx(5.0)

    def test_acquire_with_cancelled_token_raises(self):
        clock = _FakeClock()
        limiter = SlidingWindowRateLimiter(1, 60.0, clock=clock, sleep=clock.sleep)
        limiter.acquire()

        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            limiter.acquire(token)

    def test_cancel_releases_a_waiting_caller(self):
        limiter = SlidingWindowRateLimiter(1, 60.0)
        limiter.acquire()
        token = CancellationToken()
        timer = threading.Timer(0.01, token.cancel)
        timer.start()
        with pytest.raises(Cancelled):
            limiter.acquire(token)
        timer.join()

    @pytest.mark.parametrize(("calls", "window"), [(0, 1.0), (1, 0.0)])
    def test_rejects_non_positive_limits(self, calls, window):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(calls, window)
