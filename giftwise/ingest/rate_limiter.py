"""Fixed-window rate limiting with an escalating block, backed by Redis."""

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from giftwise import metrics
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits for one rate limiter instance."""

    max_requests: int
    window_ms: int
    block_duration_ms: int


@dataclass
class RateLimitResult:
    """Outcome of a single rate limit check."""

    success: bool
    remaining: int
    reset: int  # epoch ms when the window (or block) ends
    blocked: bool = False


class ScrapingRateLimiter:
    """
    Fixed-window counter per identifier (proxy host, IP, category...).

    Every call inside a window counts, including rejected ones. Going past
    ``max_requests`` rejects for the rest of the window; reaching
    ``max_requests * 2`` writes a ``blocked`` marker that rejects every
    call for ``block_duration_ms`` regardless of window state.
    """

    key_prefix = "ratelimit:scraping"
    name = "scraping"

    def __init__(
        self,
        redis_client: redis.Redis,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.time,
        settings: Settings = default_settings,
    ):
        self._redis = redis_client
        self.config = config or RateLimitConfig(
            max_requests=settings.scrape_rate_limit_max_requests,
            window_ms=settings.scrape_rate_limit_window_ms,
            block_duration_ms=settings.scrape_rate_limit_block_ms,
        )
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock() * 1000)

    def _window_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"

    def _block_key(self, identifier: str) -> str:
        return f"{self.key_prefix}:blocked:{identifier}"

    async def _blocked_until(self, identifier: str, now: int) -> Optional[int]:
        raw = await self._redis.get(self._block_key(identifier))
        if raw is None:
            return None
        until = int(raw)
        return until if until > now else None

    async def _read_window(self, identifier: str, now: int) -> dict:
        raw = await self._redis.get(self._window_key(identifier))
        window = json.loads(raw) if raw else {"count": 0, "start": now}
        # Stale window is logically reset
        if now - window["start"] >= self.config.window_ms:
            window = {"count": 0, "start": now}
        return window

    async def check(self, identifier: str) -> RateLimitResult:
        """
        Count a request for ``identifier`` and decide whether it may proceed.

        Args:
            identifier: Key being limited (e.g. ``proxy:10.0.0.1``)

        Returns:
            RateLimitResult with ``blocked`` set once the hard lockout is active
        """
        now = self._now()

        blocked_until = await self._blocked_until(identifier, now)
        if blocked_until is not None:
            metrics.record_rate_limit_rejection(self.name, True)
            return RateLimitResult(success=False, remaining=0, reset=blocked_until, blocked=True)

        window = await self._read_window(identifier, now)
        window["count"] += 1
        await self._redis.set(
            self._window_key(identifier),
            json.dumps(window),
            ex=math.ceil(self.config.window_ms / 1000),
        )
        reset = window["start"] + self.config.window_ms

        if window["count"] <= self.config.max_requests:
            return RateLimitResult(
                success=True,
                remaining=self.config.max_requests - window["count"],
                reset=reset,
            )

        if window["count"] >= self.config.max_requests * 2:
            block_until = now + self.config.block_duration_ms
            await self._redis.set(
                self._block_key(identifier),
                str(block_until),
                ex=math.ceil(self.config.block_duration_ms / 1000),
            )
            logger.warning(
                f"Rate limit abuse for {identifier}: {window['count']} requests in window, "
                f"blocked for {self.config.block_duration_ms / 1000:.0f}s"
            )
            metrics.record_rate_limit_rejection(self.name, True)
            return RateLimitResult(success=False, remaining=0, reset=block_until, blocked=True)

        metrics.record_rate_limit_rejection(self.name, False)
        return RateLimitResult(success=False, remaining=0, reset=reset)

    async def is_allowed(self, identifier: str) -> bool:
        """Count a request and return whether it may proceed."""
        result = await self.check(identifier)
        return result.success

    async def get_remaining_requests(self, identifier: str) -> int:
        """Requests left in the current window without consuming one (0 while blocked)."""
        now = self._now()
        if await self._blocked_until(identifier, now) is not None:
            return 0
        window = await self._read_window(identifier, now)
        return max(0, self.config.max_requests - window["count"])

    async def is_blocked(self, identifier: str) -> bool:
        return await self._blocked_until(identifier, self._now()) is not None

    async def reset_limits(self, identifier: str) -> None:
        """Clear both the window and any block for ``identifier``."""
        await self._redis.delete(self._window_key(identifier), self._block_key(identifier))


class RequestRateLimiter(ScrapingRateLimiter):
    """
    Caller-level limiter guarding inbound API traffic.

    Same algorithm under its own key namespace, but fails open: when Redis
    is unreachable the request is allowed.
    """

    key_prefix = "ratelimit"
    name = "api"

    def __init__(
        self,
        redis_client: redis.Redis,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.time,
        settings: Settings = default_settings,
    ):
        super().__init__(
            redis_client,
            config or RateLimitConfig(
                max_requests=settings.api_rate_limit_max_requests,
                window_ms=settings.api_rate_limit_window_ms,
                block_duration_ms=settings.api_rate_limit_block_ms,
            ),
            clock=clock,
            settings=settings,
        )

    async def limit(self, identifier: str) -> RateLimitResult:
        """Check ``identifier``, allowing the request if Redis is down."""
        try:
            return await self.check(identifier)
        except (RedisError, OSError) as e:
            logger.error(f"Rate limit check failed for {identifier}, allowing request: {e}")
            return RateLimitResult(
                success=True,
                remaining=1,
                reset=self._now() + self.config.window_ms,
            )

    async def enforce(self, identifier: str) -> RateLimitResult:
        """
        Check ``identifier`` and raise when the request must be rejected.

        Raises:
            RateLimitError: carrying ``retry_after`` (seconds) and ``blocked``
        """
        result = await self.limit(identifier)
        if not result.success:
            retry_after = max(0, math.ceil((result.reset - self._now()) / 1000))
            raise RateLimitError("Too many requests", retry_after=retry_after, blocked=result.blocked)
        return result
