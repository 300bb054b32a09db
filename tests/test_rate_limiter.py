"""Tests for the fixed-window rate limiters."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from giftwise.errors import RateLimitError
from giftwise.ingest.rate_limiter import RateLimitConfig, RequestRateLimiter, ScrapingRateLimiter


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


class TestScrapingRateLimiter:
    """Window counting, rejection and hard blocking."""

    @pytest.fixture
    def limiter(self, fake_redis, clock):
        config = RateLimitConfig(max_requests=20, window_ms=60_000, block_duration_ms=300_000)
        return ScrapingRateLimiter(fake_redis, config, clock=clock)

    @pytest.mark.asyncio
    async def test_twenty_one_calls(self, limiter):
        """Calls 1-20 pass, call 21 is rejected without a block."""
        results = [await limiter.check("proxy:10.0.0.1") for _ in range(21)]

        assert all(r.success for r in results[:20])
        assert results[19].remaining == 0
        assert not results[20].success
        assert not results[20].blocked

    @pytest.mark.asyncio
    async def test_block_on_fortieth_call(self, limiter):
        """Rejected calls keep counting; the 40th writes the block."""
        results = [await limiter.check("proxy:10.0.0.1") for _ in range(40)]

        assert not any(r.blocked for r in results[:39])
        assert results[39].blocked
        assert not results[39].success

    @pytest.mark.asyncio
    async def test_block_outlives_window(self, limiter, clock):
        """A block holds after the base window would have rolled over."""
        for _ in range(40):
            await limiter.check("ip:1.2.3.4")

        clock.advance(61)
        assert await limiter.get_remaining_requests("ip:1.2.3.4") == 0
        assert await limiter.is_blocked("ip:1.2.3.4")
        assert not await limiter.is_allowed("ip:1.2.3.4")

        clock.advance(300 - 61)
        assert not await limiter.is_blocked("ip:1.2.3.4")
        assert await limiter.is_allowed("ip:1.2.3.4")

    @pytest.mark.asyncio
    async def test_window_rollover_resets_count(self, limiter, clock):
        for _ in range(21):
            await limiter.check("proxy:a")
        assert not await limiter.is_allowed("proxy:a")

        clock.advance(60)
        assert await limiter.is_allowed("proxy:a")
        assert await limiter.get_remaining_requests("proxy:a") == 19

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, limiter):
        for _ in range(25):
            await limiter.check("proxy:a")
        assert await limiter.get_remaining_requests("proxy:b") == 20
        assert await limiter.is_allowed("proxy:b")

    @pytest.mark.asyncio
    async def test_remaining_does_not_consume(self, limiter):
        await limiter.check("proxy:a")
        assert await limiter.get_remaining_requests("proxy:a") == 19
        assert await limiter.get_remaining_requests("proxy:a") == 19

    @pytest.mark.asyncio
    async def test_reset_limits(self, limiter):
        for _ in range(40):
            await limiter.check("proxy:a")
        await limiter.reset_limits("proxy:a")
        assert await limiter.get_remaining_requests("proxy:a") == 20


class TestRequestRateLimiter:
    """Inbound limiter: separate namespace, fails open."""

    @pytest.mark.asyncio
    async def test_enforce_raises_with_retry_after(self, fake_redis, clock):
        limiter = RequestRateLimiter(
            fake_redis, RateLimitConfig(max_requests=2, window_ms=60_000, block_duration_ms=300_000), clock=clock
        )
        await limiter.enforce("user:1")
        await limiter.enforce("user:1")

        with pytest.raises(RateLimitError) as exc_info:
            await limiter.enforce("user:1")

        assert exc_info.value.retry_after == 60
        assert not exc_info.value.blocked

    @pytest.mark.asyncio
    async def test_separate_namespace(self, fake_redis, clock):
        config = RateLimitConfig(max_requests=1, window_ms=60_000, block_duration_ms=300_000)
        scraping = ScrapingRateLimiter(fake_redis, config, clock=clock)
        inbound = RequestRateLimiter(fake_redis, config, clock=clock)

        await scraping.check("x")
        result = await inbound.limit("x")

        assert result.success

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_down(self, clock):
        limiter = RequestRateLimiter(
            BrokenRedis(), RateLimitConfig(max_requests=1, window_ms=60_000, block_duration_ms=1), clock=clock
        )

        result = await limiter.limit("user:1")

        assert result.success
        assert not result.blocked
