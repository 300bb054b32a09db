"""Proxy manager for rotating scraping proxies with health tracking."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx
import redis.asyncio as redis

from giftwise import metrics
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import NoAvailableProxiesError, ProxyPoolError
from giftwise.ingest.config_loader import FileLoader
from giftwise.ingest.pool_state import SharedPoolState
from giftwise.ingest.rate_limiter import ScrapingRateLimiter
from giftwise.logging_config import get_logger
from giftwise.models import Proxy

logger = logging.getLogger(__name__)

PROXY_KEY = "pool:proxies"
PROXY_STATS_KEY = "pool:proxy:stats"

HEALTH_CHECK_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; ProxyHealthCheck/1.0)"}


@dataclass(frozen=True)
class RotationConfig:
    """Proxy rotation tuning."""

    min_available: int = 10
    max_failures: int = 3
    rotation_interval: int = 60_000  # ms
    response_timeout: int = 10_000  # ms
    health_check_interval: int = 300_000  # ms
    retry_attempts: int = 3
    backoff_factor: float = 1.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "RotationConfig":
        return cls(
            min_available=settings.proxy_min_available,
            max_failures=settings.proxy_max_failures,
            rotation_interval=settings.proxy_rotation_interval_ms,
            response_timeout=settings.proxy_response_timeout_ms,
            health_check_interval=settings.proxy_health_check_interval_ms,
            retry_attempts=settings.proxy_retry_attempts,
            backoff_factor=settings.proxy_backoff_factor,
        )


class ProxyManager:
    """
    Manages the rotating proxy pool.

    Features:
    - Load-once pool from config/proxies.txt, shared through Redis
    - Score-based selection (idle time, latency, failures)
    - Per-proxy rate limiting
    - Periodic health checks that disable and re-enable proxies
    - Cumulative per-proxy stats in a Redis hash
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        rate_limiter: ScrapingRateLimiter,
        config: Optional[RotationConfig] = None,
        loader: Optional[FileLoader] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self._rate_limiter = rate_limiter
        self.config = config or RotationConfig.from_settings(settings)
        self.health_check_url = settings.proxy_health_check_url
        self._clock = clock
        self._loader = loader or FileLoader(settings)
        self._state: SharedPoolState[Proxy] = SharedPoolState(
            redis_client,
            PROXY_KEY,
            decode=Proxy.from_dict,
            seed=self._loader.load_proxies,
            staleness_seconds=settings.pool_sync_seconds,
            clock=clock,
        )
        self._running = False
        self._health_task: Optional[asyncio.Task] = None

    def _now(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _limit_key(proxy: Proxy) -> str:
        return f"proxy:{proxy.host}"

    def _stats_key(self, proxy: Proxy) -> str:
        return f"{PROXY_STATS_KEY}:{proxy.host}:{proxy.port}"

    async def initialize(self) -> None:
        """Load the pool from Redis (or static config) and validate its size."""
        proxies = await self._state.load()
        if len(proxies) < self.config.min_available:
            raise ProxyPoolError(
                f"Insufficient proxies loaded ({len(proxies)}). "
                f"Minimum required: {self.config.min_available}"
            )
        self._update_pool_metrics()
        logger.info(f"Loaded {len(proxies)} proxies")

    async def _proxies(self) -> List[Proxy]:
        if not self._state.loaded:
            await self.initialize()
        return await self._state.ensure_fresh()

    def _find(self, proxy: Proxy) -> Proxy:
        """Resolve a caller's proxy to the working copy entry."""
        for candidate in self._state.items:
            if candidate.key == proxy.key:
                return candidate
        return proxy

    def _is_usable(self, proxy: Proxy) -> bool:
        return proxy.enabled and proxy.fail_count < self.config.max_failures

    def calculate_score(self, proxy: Proxy, now: Optional[int] = None) -> float:
        """Higher is better: rewards idle time and low latency, penalizes failures."""
        now = self._now() if now is None else now
        idle = now - (proxy.last_used or 0)
        latency_score = 1000 / proxy.response_time if proxy.response_time else 0.0
        return idle / self.config.rotation_interval + latency_score - proxy.fail_count * 0.2

    async def get_next(self) -> Proxy:
        """
        Select the best available proxy and mark it used.

        Returns:
            Proxy from the pool

        Raises:
            NoAvailableProxiesError: If no proxy passes the failure,
                rotation-interval, and rate-limit filters
        """
        proxies = await self._proxies()
        now = self._now()

        remaining = await asyncio.gather(
            *(self._rate_limiter.get_remaining_requests(self._limit_key(p)) for p in proxies)
        )
        candidates = [
            p for p, left in zip(proxies, remaining)
            if self._is_usable(p)
            and now - (p.last_used or 0) >= self.config.rotation_interval
            and left > 0
        ]

        if not candidates:
            logger.warning(
                f"No proxies available ({len(proxies)} total, "
                f"{sum(1 for p in proxies if not self._is_usable(p))} over failure limit)"
            )
            raise NoAvailableProxiesError()

        # Stable sort keeps the first of equally scored proxies in front
        ranked = sorted(candidates, key=lambda p: self.calculate_score(p, now), reverse=True)
        for selected in ranked:
            # Another caller may have spent this proxy's window since the pre-check
            if not await self._rate_limiter.is_allowed(self._limit_key(selected)):
                continue
            selected.last_used = now
            await self._state.save()
            return selected

        logger.warning(f"All {len(ranked)} candidate proxies hit their rate limit")
        raise NoAvailableProxiesError()

    async def report_success(self, proxy: Proxy, response_time: int) -> None:
        """Report a successful request through ``proxy`` (response time in ms)."""
        target = self._find(proxy)
        self._mark_success(target, response_time)
        await self._update_stats(target, True, response_time)
        await self._state.save()
        self._update_pool_metrics()

    async def report_failure(self, proxy: Proxy) -> None:
        """Report a failed request through ``proxy``."""
        target = self._find(proxy)
        self._mark_failure(target)
        await self._update_stats(target, False)
        await self._state.save()
        self._update_pool_metrics()

    def _mark_success(self, proxy: Proxy, response_time: int) -> None:
        if proxy.fail_count >= self.config.max_failures:
            logger.info(f"Proxy {proxy.key} recovered, returning to rotation")
        proxy.fail_count = 0
        proxy.response_time = max(1, int(response_time))
        proxy.success_count += 1

    def _mark_failure(self, proxy: Proxy) -> None:
        proxy.fail_count += 1
        proxy.last_used = self._now()
        if proxy.fail_count == self.config.max_failures:
            logger.warning(
                f"Proxy {proxy.key} disabled after {proxy.fail_count} failures. "
                f"Will be excluded from rotation."
            )

    async def _update_stats(self, proxy: Proxy, success: bool, response_time: Optional[int] = None) -> None:
        """Track cumulative successes/failures/timing in a Redis hash."""
        key = self._stats_key(proxy)
        try:
            current = await self._redis.hgetall(key)
            await self._redis.hincrby(key, "successes" if success else "failures", 1)
            await self._redis.hincrby(key, "requests", 1)
            if response_time:
                total_time = int(current.get("totalTime", 0)) + int(response_time)
                requests = int(current.get("requests", 0)) + 1
                await self._redis.hincrby(key, "totalTime", int(response_time))
                await self._redis.hset(key, "averageTime", str(round(total_time / requests)))
        except Exception as e:
            logger.error(f"Failed to update proxy stats for {proxy.key}: {e}")

    async def _probe(self, proxy: Proxy) -> bool:
        """Fetch the health check URL through ``proxy``."""
        timeout = self.config.response_timeout / 1000
        async with httpx.AsyncClient(
            proxy=proxy.url,
            timeout=httpx.Timeout(timeout, connect=timeout),
            follow_redirects=True,
        ) as client:
            response = await client.get(self.health_check_url, headers=HEALTH_CHECK_HEADERS)
            return response.is_success

    async def check_proxy_health(self, proxy: Proxy) -> bool:
        """
        Health check a single proxy and record the outcome.

        Success resets the failure count (re-enabling a disabled proxy);
        any failure or timeout increments it. The outcome is applied to the
        current working copy and written to Redis before returning.
        """
        log = get_logger(__name__, proxy=proxy.key)
        start = time.monotonic()
        try:
            healthy = await self._probe(proxy)
        except Exception as e:
            log.debug(f"Proxy {proxy.key} health check failed: {e}")
            healthy = False

        # The pool may have been re-read from Redis while the probe was in flight
        await self._state.ensure_fresh()
        target = self._find(proxy)
        if healthy:
            latency_ms = int((time.monotonic() - start) * 1000)
            self._mark_success(target, latency_ms)
            await self._update_stats(target, True, latency_ms)
            log.debug(f"Proxy {proxy.key} healthy (latency: {latency_ms}ms)")
        else:
            self._mark_failure(target)
            await self._update_stats(target, False)
        await self._state.save()

        metrics.record_health_check(healthy)
        return healthy

    async def check_all(self) -> Dict[str, int]:
        """
        Run one health check pass over every enabled proxy.

        Proxies over the failure limit are checked too; a success is their
        only way back into rotation.

        Returns:
            Dict with check results
        """
        proxies = await self._proxies()
        results = {"total": len(proxies), "healthy": 0, "unhealthy": 0, "skipped": 0}

        semaphore = asyncio.Semaphore(10)

        async def check(proxy: Proxy) -> Optional[bool]:
            if not proxy.enabled:
                return None
            if not await self._rate_limiter.is_allowed(self._limit_key(proxy)):
                return None
            async with semaphore:
                return await self.check_proxy_health(proxy)

        for outcome in await asyncio.gather(*(check(p) for p in proxies)):
            if outcome is None:
                results["skipped"] += 1
            elif outcome:
                results["healthy"] += 1
            else:
                results["unhealthy"] += 1

        self._update_pool_metrics()

        logger.info(
            f"Proxy health check complete: {results['healthy']} healthy, "
            f"{results['unhealthy']} unhealthy, {results['skipped']} skipped"
        )
        return results

    async def start(self) -> None:
        """Start periodic health checks."""
        if self._running:
            return
        self._running = True
        self._health_task = asyncio.create_task(self._health_loop())
        logger.info("Proxy health checks started")

    async def _health_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.health_check_interval / 1000)
                await self.check_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in proxy health check loop: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        proxies = await self._proxies()
        available = sum(1 for p in proxies if self._is_usable(p))
        response_times = [p.response_time for p in proxies if p.response_time]

        requests = failures = 0
        for proxy in proxies:
            stats = await self._redis.hgetall(self._stats_key(proxy))
            requests += int(stats.get("requests", 0))
            failures += int(stats.get("failures", 0))

        return {
            "total": len(proxies),
            "available": available,
            "average_response_time": (
                sum(response_times) / len(response_times) if response_times else 0.0
            ),
            "failure_rate": (failures / requests * 100) if requests else 0.0,
        }

    async def get_proxy_stats(self, proxy: Proxy) -> Dict[str, int]:
        """Cumulative stats hash for one proxy."""
        raw = await self._redis.hgetall(self._stats_key(proxy))
        return {k: int(v) for k, v in raw.items()}

    async def refresh(self) -> None:
        """Re-read the pool from Redis and restart health checks if running."""
        was_running = self._running
        await self.destroy()
        self._state.invalidate()
        await self.initialize()
        if was_running:
            await self.start()

    async def destroy(self) -> None:
        """Stop health checks."""
        self._running = False
        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None
        logger.info("Proxy health checks stopped")

    def _update_pool_metrics(self) -> None:
        proxies = self._state.items
        metrics.update_proxy_pool(len(proxies), sum(1 for p in proxies if self._is_usable(p)))
