"""Unit tests for rate_limit.py."""

import pytest

from toolguard.errors import RateLimitedError
from toolguard.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Tests for the sliding window limiter."""

    def test_allows_up_to_limit(self):
        limiter = RateLimiter({"run_command": (3, 60.0)}, clock=FakeClock())
        for _ in range(3):
            limiter.check("s1", "run_command")
        with pytest.raises(RateLimitedError) as exc_info:
            limiter.check("s1", "run_command")
        assert exc_info.value.code == "RateLimited"
        assert exc_info.value.tool == "run_command"
        assert exc_info.value.retry_after_s == pytest.approx(60.0)

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter({"run_command": (2, 10.0)}, clock=clock)
        limiter.check("s1", "run_command")
        clock.now += 5
        limiter.check("s1", "run_command")
        clock.now += 5
        # The first call has aged out.
        limiter.check("s1", "run_command")
        with pytest.raises(RateLimitedError) as exc_info:
            limiter.check("s1", "run_command")
        assert exc_info.value.retry_after_s == pytest.approx(5.0)

    def test_sessions_are_independent(self):
        limiter = RateLimiter({"git_command": (1, 60.0)}, clock=FakeClock())
        limiter.check("s1", "git_command")
        limiter.check("s2", "git_command")
        with pytest.raises(RateLimitedError):
            limiter.check("s1", "git_command")

    def test_unlimited_tools_pass(self):
        limiter = RateLimiter({"run_command": (1, 60.0)}, clock=FakeClock())
        for _ in range(100):
            limiter.check("s1", "read_file")

    def test_disabled(self):
        limiter = RateLimiter({"run_command": (1, 60.0)}, enabled=False, clock=FakeClock())
        for _ in range(10):
            limiter.check("s1", "run_command")

    def test_zero_limit_always_refuses(self):
        limiter = RateLimiter({"run_command": (0, 60.0)}, clock=FakeClock())
        with pytest.raises(RateLimitedError):
            limiter.check("s1", "run_command")

    def test_reset_session(self):
        limiter = RateLimiter({"run_command": (1, 60.0)}, clock=FakeClock())
        limiter.check("s1", "run_command")
        limiter.check("s2", "run_command")
        limiter.reset("s1")
        limiter.check("s1", "run_command")
        with pytest.raises(RateLimitedError):
            limiter.check("s2", "run_command")

    def test_reset_all(self):
        limiter = RateLimiter({"run_command": (1, 60.0)}, clock=FakeClock())
        limiter.check("s1", "run_command")
        limiter.reset()
        limiter.check("s1", "run_command")
