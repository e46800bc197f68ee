"""
Unit tests for the fixed-window rate limiter.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from service_access.app.ratelimit.fixed_window import FixedWindowRateLimiter


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def rate_limiter(self, clock):
        return FixedWindowRateLimiter(max_requests=60, window_ms=60_000, clock=clock)

    def test_first_request_opens_window(self, rate_limiter, clock):
        decision = rate_limiter.check_rate("user1")

        assert decision.allowed is True
        assert decision.remaining == 59
        window = rate_limiter.get_window("user1")
        assert window.count == 1
        assert window.reset_time == int(clock.now + 60_000)

    def test_61st_request_denied(self, rate_limiter, clock):
        for i in range(60):
            decision = rate_limiter.check_rate("user1")
            assert decision.allowed is True
            assert decision.remaining == 59 - i

        denied = rate_limiter.check_rate("user1")

        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.reset_time == int(clock.now + 60_000)

    def test_new_window_after_reset_time(self, rate_limiter, clock):
        for _ in range(61):
            rate_limiter.check_rate("user1")

        clock.advance(60_001)
        decision = rate_limiter.check_rate("user1")

        assert decision.allowed is True
        assert decision.remaining == 59

    def test_window_boundary_is_inclusive(self, rate_limiter, clock):
        """Test requests exactly at reset_time still count against the old window."""
        for _ in range(60):
            rate_limiter.check_rate("user1")

        clock.advance(60_000)

        assert rate_limiter.check_rate("user1").allowed is False

    def test_principals_are_independent(self, rate_limiter):
        for _ in range(60):
            rate_limiter.check_rate("user1")

        assert rate_limiter.check_rate("user1").allowed is False
        assert rate_limiter.check_rate("user2").allowed is True

    def test_per_call_overrides(self, rate_limiter, clock):
        assert rate_limiter.check_rate("user1", max_requests=2, window_ms=1000).remaining == 1
        assert rate_limiter.check_rate("user1", max_requests=2, window_ms=1000).remaining == 0
        assert rate_limiter.check_rate("user1", max_requests=2, window_ms=1000).allowed is False

        clock.advance(1001)
        assert rate_limiter.check_rate("user1", max_requests=2, window_ms=1000).allowed is True

    @pytest.mark.parametrize("overrides", [{"max_requests": 0}, {"window_ms": 0}, {"max_requests": -1}])
    def test_explicit_non_positive_override_rejected(self, rate_limiter, overrides):
        """Test an explicit zero is not mistaken for "use the default"."""
        with pytest.raises(ValueError):
            rate_limiter.check_rate("user1", **overrides)

        assert rate_limiter.get_window("user1") is None

    def test_fractional_clock_rounds_reset_up(self):
        clock = FakeClock(1_000_000.5)
        limiter = FixedWindowRateLimiter(max_requests=1, window_ms=1000, clock=clock)
        limiter.check_rate("user1")

        assert limiter.get_window("user1").reset_time == 1_001_001

        # 1000.4 ms later, still inside the window
        clock.advance(1000.4)
        assert limiter.check_rate("user1").allowed is False

        clock.advance(0.2)
        assert limiter.check_rate("user1").allowed is True

    def test_reset(self, rate_limiter):
        for _ in range(60):
            rate_limiter.check_rate("user1")

        assert rate_limiter.reset("user1") is True
        assert rate_limiter.check_rate("user1").remaining == 59
        assert rate_limiter.reset("nobody") is False

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(max_requests=0)
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(window_ms=0)
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(max_entries=0)


class TestRateLimiterEviction:
    """Test cases for window eviction."""

    def test_sweep_drops_abandoned_windows(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(max_requests=5, window_ms=1000, clock=clock, eviction_windows=2)
        limiter.check_rate("abandoned")
        clock.advance(500)
        limiter.check_rate("active")

        # "abandoned" reset at +1000, horizon at now - 2000
        clock.advance(2600)
        evicted = limiter.sweep()

        assert evicted == 1
        assert limiter.get_window("abandoned") is None
        assert limiter.get_window("active") is not None

    def test_sweep_runs_opportunistically(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(
            max_requests=5, window_ms=1000, clock=clock, eviction_windows=1, sweep_interval_ms=1000
        )
        for i in range(10):
            limiter.check_rate(f"one-shot-{i}")

        clock.advance(5000)
        limiter.check_rate("late")

        assert len(limiter) == 1

    def test_max_entries_evicts_oldest(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(max_requests=5, window_ms=1000, clock=clock, max_entries=2)
        limiter.check_rate("first")
        clock.advance(10)
        limiter.check_rate("second")
        clock.advance(10)
        limiter.check_rate("third")

        assert len(limiter) == 2
        assert limiter.get_window("first") is None
        assert limiter.get_window("third") is not None

    def test_stats(self):
        limiter = FixedWindowRateLimiter(max_requests=5, window_ms=1000)
        limiter.check_rate("a")
        limiter.check_rate("b")

        assert limiter.stats() == {"tracked_principals": 2, "max_requests": 5, "window_ms": 1000}


class TestRateLimiterConcurrency:
    """Test cases for concurrent admission."""

    @pytest.mark.parametrize("max_requests,callers", [(60, 200), (1, 50), (10, 11)])
    def test_concurrent_checks_admit_exactly_max(self, max_requests, callers):
        limiter = FixedWindowRateLimiter(max_requests=max_requests, window_ms=60_000, clock=FakeClock())
        barrier = threading.Barrier(min(callers, 32))

        def hit(_):
            try:
                barrier.wait(timeout=1)
            except threading.BrokenBarrierError:
                pass
            return limiter.check_rate("shared-user").allowed

        with ThreadPoolExecutor(max_workers=32) as pool:
            results = list(pool.map(hit, range(callers)))

        assert sum(results) == max_requests
        assert limiter.get_window("shared-user").count == max_requests

    def test_concurrent_checks_with_sweeps(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(
            max_requests=25, window_ms=60_000, clock=clock, sweep_interval_ms=0
        )

        def hit(_):
            limiter.sweep()
            return limiter.check_rate("shared-user").allowed

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(hit, range(100)))

        assert sum(results) == 25
