"""Scrape client: rotated proxy + user agent, per-host limits, classified errors."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import httpx

from giftwise import metrics
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import (
    BLOCKED,
    NETWORK_ERROR,
    PROXY_ERROR,
    RATE_LIMITED,
    TIMEOUT,
    VALIDATION_ERROR,
    ScrapingError,
)
from giftwise.ingest.proxy_manager import ProxyManager
from giftwise.ingest.rate_limiter import ScrapingRateLimiter
from giftwise.ingest.user_agent_pool import UserAgentManager
from giftwise.models import Proxy

logger = logging.getLogger(__name__)

TIMEOUT_EXC = (httpx.ConnectTimeout, httpx.ReadTimeout, httpx.WriteTimeout, httpx.PoolTimeout)
PROXY_EXC = (httpx.ProxyError,)
NETWORK_EXC = (httpx.ConnectError, httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)

# Markup served instead of content when the target challenges the client
BOT_CHALLENGE_MARKERS = (
    "/errors/validatecaptcha",
    "enter the characters you see below",
    "api-services-support@amazon.com",
)

# Failures that say nothing about the proxy itself
NOT_PROXY_FAULTS = (VALIDATION_ERROR,)

ClientFactory = Callable[[Proxy, httpx.Timeout], httpx.AsyncClient]


def default_headers(user_agent: str) -> dict[str, str]:
    """Browser-like headers for ``user_agent``."""
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }


def default_client_factory(proxy: Proxy, timeout: httpx.Timeout) -> httpx.AsyncClient:
    return httpx.AsyncClient(proxy=proxy.url, timeout=timeout, follow_redirects=True)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule for retryable scrape failures."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    retryable_status_codes: tuple[int, ...] = (408, 429, 500, 502, 503, 504)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.scrape_max_retries,
            initial_delay=settings.scrape_retry_initial_delay,
            max_delay=settings.scrape_retry_max_delay,
            backoff_factor=settings.scrape_retry_backoff_factor,
            jitter=settings.scrape_retry_jitter,
            retryable_status_codes=tuple(settings.scrape_retryable_status_codes),
        )

    def delay(self, attempt: int) -> float:
        delay = min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += random.random()
        return delay


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def classify_response(response: httpx.Response, policy: RetryPolicy) -> Optional[ScrapingError]:
    """
    Map an HTTP response to a ScrapingError, or None if it is usable.

    401/403, ``/blocked`` redirects and bot-challenge pages are BLOCKED
    (retryable with a fresh identity); 404 is terminal.
    """
    sc = response.status_code
    url = str(response.url)

    if "/blocked" in url.lower():
        return ScrapingError(BLOCKED, f"Blocked redirect: {url}", status=403)

    if sc in (401, 403):
        return ScrapingError(BLOCKED, f"{sc} for {url}", status=sc)

    if sc == 404:
        return ScrapingError(VALIDATION_ERROR, f"404 for {url}", status=404, retryable=False)

    if sc == 429:
        return ScrapingError(
            RATE_LIMITED,
            f"Rate limited by target: {url}",
            status=429,
            context={"retry_after": _retry_after(response)},
        )

    if sc == 408 or 500 <= sc < 600:
        return ScrapingError(NETWORK_ERROR, f"Server error {sc} for {url}", status=sc)

    if not 200 <= sc < 300:
        return ScrapingError(
            NETWORK_ERROR if sc in policy.retryable_status_codes else VALIDATION_ERROR,
            f"Unexpected status {sc} for {url}",
            status=sc,
            retryable=sc in policy.retryable_status_codes,
        )

    body = response.text.lower()
    if any(marker in body for marker in BOT_CHALLENGE_MARKERS):
        return ScrapingError(BLOCKED, f"Bot challenge served for {url}", status=sc)

    return None


def classify_exception(exc: Exception, url: str) -> ScrapingError:
    """Map a transport exception to a retryable ScrapingError."""
    if isinstance(exc, TIMEOUT_EXC):
        return ScrapingError(TIMEOUT, f"Timeout fetching {url}", status=504)
    if isinstance(exc, PROXY_EXC):
        return ScrapingError(PROXY_ERROR, f"Proxy error fetching {url}: {exc}", status=502)
    return ScrapingError(NETWORK_ERROR, f"Transport error fetching {url}: {type(exc).__name__}", status=502)


class ScrapeClient:
    """
    Fetches pages through the rotating proxy and user-agent pools.

    Each attempt takes a fresh proxy and user agent. Outcomes are reported
    back to the proxy manager so health state follows real traffic.
    """

    def __init__(
        self,
        proxy_manager: ProxyManager,
        user_agents: UserAgentManager,
        rate_limiter: ScrapingRateLimiter,
        settings: Settings = default_settings,
        policy: Optional[RetryPolicy] = None,
        client_factory: ClientFactory = default_client_factory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.proxy_manager = proxy_manager
        self.user_agents = user_agents
        self.rate_limiter = rate_limiter
        self.policy = policy or RetryPolicy.from_settings(settings)
        self.timeout = httpx.Timeout(
            connect=settings.scrape_connect_timeout,
            read=settings.scrape_read_timeout,
            write=settings.scrape_write_timeout,
            pool=settings.scrape_connect_timeout,
        )
        self._client_factory = client_factory
        self._sleep = sleep

    async def _attempt(self, url: str, headers: Optional[dict[str, str]]) -> str:
        host = urlparse(url).netloc
        limit = await self.rate_limiter.check(f"host:{host}")
        if not limit.success:
            raise ScrapingError(
                RATE_LIMITED,
                f"Host rate limit reached for {host}",
                status=429,
                retryable=False,
                context={"reset": limit.reset, "blocked": limit.blocked},
            )

        proxy = await self.proxy_manager.get_next()
        user_agent = await self.user_agents.get_next()
        hdrs = default_headers(user_agent)
        if headers:
            hdrs.update(headers)

        start = time.monotonic()
        try:
            async with self._client_factory(proxy, self.timeout) as client:
                response = await client.get(url, headers=hdrs)
            error = classify_response(response, self.policy)
        except httpx.HTTPError as e:
            error = classify_exception(e, url)

        elapsed = time.monotonic() - start
        if error is None:
            await self.proxy_manager.report_success(proxy, int(elapsed * 1000))
            metrics.record_scrape_success(elapsed)
            return response.text

        error.proxy = proxy.key
        error.user_agent = user_agent
        if error.code not in NOT_PROXY_FAULTS:
            await self.proxy_manager.report_failure(proxy)
        metrics.record_scrape_error(error.code, elapsed)
        raise error

    async def fetch(self, url: str, headers: Optional[dict[str, str]] = None) -> str:
        """
        Fetch ``url`` and return the response body.

        Raises:
            ScrapingError: classified failure after retries are exhausted,
                or immediately for terminal errors
            NoAvailableProxiesError: if the proxy pool is exhausted
        """
        last_error: Optional[ScrapingError] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return await self._attempt(url, headers)
            except ScrapingError as e:
                last_error = e
                if not e.retryable or attempt >= self.policy.max_attempts:
                    raise

                retry_after = e.context.get("retry_after")
                sleep_s = float(retry_after) if retry_after is not None else self.policy.delay(attempt)
                logger.warning(
                    f"{e.code} fetching {url}, retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{self.policy.max_attempts})"
                )
                await self._sleep(sleep_s)

        raise ScrapingError(
            NETWORK_ERROR, f"Failed after {self.policy.max_attempts} attempts: {url}"
        ) from last_error
