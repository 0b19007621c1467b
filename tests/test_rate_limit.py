"""Tests for the fixed-window rate limiter."""

import threading

import pytest

from pixelist.service.rate_limit import RateLimiter


@pytest.fixture
def limiter(clock):
    return RateLimiter(10, 15 * 60, clock=clock)


class TestWindow:
    def test_first_attempt_opens_window(self, limiter):
        result = limiter.check("login:admin")

        assert result.allowed is True
        assert result.remaining == 9

    def test_first_ten_allowed_then_blocked(self, limiter):
        results = [limiter.check("login:admin") for _ in range(11)]

        assert all(r.allowed for r in results[:10])
        assert [r.remaining for r in results[:10]] == list(range(9, -1, -1))
        assert results[10].allowed is False
        assert results[10].remaining == 0

    def test_blocked_attempts_do_not_extend_window(self, limiter, clock):
        for _ in range(10):
            limiter.check("k")
        clock.advance(14 * 60)
        assert limiter.check("k").allowed is False

        clock.advance(60 + 1)
        result = limiter.check("k")
        assert result.allowed is True
        assert result.remaining == 9

    def test_window_boundary_is_inclusive(self, limiter, clock):
        """The window only resets once the reset time has strictly passed."""
        for _ in range(10):
            limiter.check("k")
        clock.advance(15 * 60)

        assert limiter.check("k").allowed is False
        clock.advance(0.001)
        assert limiter.check("k").allowed is True

    def test_keys_are_independent(self, limiter):
        for _ in range(10):
            limiter.check("login:admin")

        assert limiter.check("login:admin").allowed is False
        assert limiter.check("login:other").allowed is True
        assert limiter.check("2fa:admin").allowed is True

    def test_reset_clears_key(self, limiter):
        for _ in range(11):
            limiter.check("k")
        limiter.reset("k")

        assert limiter.check("k").allowed is True


class TestSweep:
    def test_sweep_runs_above_threshold(self, clock):
        limiter = RateLimiter(10, 60, sweep_threshold=5, clock=clock)
        for i in range(6):
            limiter.check(f"old:{i}")
        clock.advance(61)

        limiter.check("fresh")

        # Six stale keys swept, only the fresh one remains
        assert len(limiter) == 1

    def test_no_sweep_at_or_below_threshold(self, clock):
        limiter = RateLimiter(10, 60, sweep_threshold=5, clock=clock)
        for i in range(4):
            limiter.check(f"old:{i}")
        clock.advance(61)

        limiter.check("fresh")

        assert len(limiter) == 5

    def test_sweep_keeps_live_entries(self, clock):
        limiter = RateLimiter(10, 60, sweep_threshold=2, clock=clock)
        limiter.check("a")
        limiter.check("b")
        clock.advance(30)
        limiter.check("c")
        clock.advance(31)

        limiter.check("d")

        assert len(limiter) == 2  # "c" still live, "d" new


def test_concurrent_checks_never_exceed_ceiling(clock):
    limiter = RateLimiter(10, 60, clock=clock)
    allowed = []
    lock = threading.Lock()

    def worker():
        for _ in range(5):
            result = limiter.check("shared")
            with lock:
                allowed.append(result.allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert allowed.count(True) == 10


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"window_seconds": 0}])
def test_invalid_configuration_rejected(kwargs):
    params = {"max_attempts": 10, "window_seconds": 60, **kwargs}
    with pytest.raises(ValueError):
        RateLimiter(**params)
