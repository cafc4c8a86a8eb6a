"""
Tests for in-memory rate limiter middleware.

Tests: RateLimiter sliding window, retry_after and the rate_limit dependency.
"""
import pytest

from domain.errors import RateLimitError
from middleware.rate_limit import RateLimiter, limiter, rate_limit


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Tests for the RateLimiter class."""

    @pytest.mark.unit
    def test_allows_requests_under_limit(self):
        limiter = RateLimiter()
        for _ in range(5):
            assert limiter.check("testkey", max_requests=5, window_seconds=60) is True

    @pytest.mark.unit
    def test_blocks_requests_over_limit(self):
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("testkey", max_requests=3, window_seconds=60)
        # 4th request should be blocked
        assert limiter.check("testkey", max_requests=3, window_seconds=60) is False

    @pytest.mark.unit
    def test_different_keys_independent(self):
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("10.0.0.1:/api/orders/mark-paid", max_requests=3, window_seconds=60)
        assert limiter.check("10.0.0.1:/api/orders/mark-paid", max_requests=3, window_seconds=60) is False
        assert limiter.check("10.0.0.2:/api/orders/mark-paid", max_requests=3, window_seconds=60) is True

    @pytest.mark.unit
    def test_window_expiry(self):
        """Requests are allowed again once the window has slid past them."""
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(2):
            limiter.check("testkey", max_requests=2, window_seconds=60)
        assert limiter.check("testkey", max_requests=2, window_seconds=60) is False

        clock.now += 60.5
        assert limiter.check("testkey", max_requests=2, window_seconds=60) is True

    @pytest.mark.unit
    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("k", max_requests=2, window_seconds=60)
        clock.now += 30
        limiter.check("k", max_requests=2, window_seconds=60)
        clock.now += 31
        # first hit has expired, second has not
        assert limiter.check("k", max_requests=2, window_seconds=60) is True
        assert limiter.check("k", max_requests=2, window_seconds=60) is False

    @pytest.mark.unit
    def test_retry_after_counts_down_to_oldest_hit(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        assert limiter.retry_after("k", window_seconds=60) == 0

        limiter.check("k", max_requests=2, window_seconds=60)
        clock.now += 20
        limiter.check("k", max_requests=2, window_seconds=60)
        clock.now += 15.5

        assert limiter.retry_after("k", window_seconds=60) == 25

    @pytest.mark.unit
    def test_retry_after_never_below_one_while_blocked(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("k", max_requests=1, window_seconds=60)
        clock.now += 59.99
        assert limiter.retry_after("k", window_seconds=60) == 1

    @pytest.mark.unit
    def test_single_request_limit(self):
        limiter = RateLimiter()
        assert limiter.check("once", max_requests=1, window_seconds=60) is True
        assert limiter.check("once", max_requests=1, window_seconds=60) is False

    @pytest.mark.unit
    def test_reset(self):
        limiter = RateLimiter()
        limiter.check("k", max_requests=1, window_seconds=60)
        limiter.reset()
        assert limiter.check("k", max_requests=1, window_seconds=60) is True


class _Client:
    host = "192.0.2.10"


class _URL:
    path = "/api/orders/mark-paid"


class _Request:
    client = _Client()
    url = _URL()


class TestRateLimitDependency:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_raises_after_limit(self):
        limiter.reset()
        check = rate_limit(max_requests=2, window_seconds=60)
        await check(_Request())
        await check(_Request())

        with pytest.raises(RateLimitError) as exc_info:
            await check(_Request())

        assert exc_info.value.status_code == 429
        assert exc_info.value.details["retry_after"] == 60
        limiter.reset()
