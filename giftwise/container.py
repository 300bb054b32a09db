"""Builds the pipeline's services once and owns their startup/shutdown."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from giftwise.ai.llm_service import LLMService
from giftwise.analysis.category_quality import CategoryQualityAnalyzer
from giftwise.analysis.price_analyzer import CategoryPriceAnalyzer
from giftwise.analysis.price_tracker import PriceTracker
from giftwise.analysis.product_analyzer import ProductAnalyzer
from giftwise.analysis.quality_indicators import QualityAnalyzer
from giftwise.analysis.sentiment_analyzer import SentimentAnalyzer
from giftwise.config import Settings, settings as default_settings
from giftwise.gifts.enricher import GiftEnrichmentService
from giftwise.gifts.price_analyzer import GiftPriceAnalyzer
from giftwise.ingest.backup_products import BackupProductService
from giftwise.ingest.cache_manager import CacheManager
from giftwise.ingest.config_loader import FileLoader
from giftwise.ingest.http_client import ScrapeClient
from giftwise.ingest.proxy_manager import ProxyManager
from giftwise.ingest.rate_limiter import RequestRateLimiter, ScrapingRateLimiter
from giftwise.ingest.search import ProductSearchService
from giftwise.ingest.user_agent_pool import UserAgentManager

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Every service wired against one Redis connection and one Settings.

    Nothing here is a module-level singleton; build one container per
    process and pass services down from it.
    """

    def __init__(self, settings: Settings = default_settings, redis_client: Optional[redis.Redis] = None):
        self.settings = settings
        self.redis = redis_client or redis.from_url(settings.redis_url, decode_responses=True)

        # Ingest
        self.rate_limiter = ScrapingRateLimiter(self.redis, settings=settings)
        self.request_limiter = RequestRateLimiter(self.redis, settings=settings)
        loader = FileLoader(settings)
        self.proxy_manager = ProxyManager(self.redis, self.rate_limiter, loader=loader, settings=settings)
        self.user_agents = UserAgentManager(self.redis, loader=loader, settings=settings)
        self.cache = CacheManager(self.redis, settings=settings)
        self.scrape_client = ScrapeClient(self.proxy_manager, self.user_agents, self.rate_limiter, settings=settings)

        # AI + fallbacks
        self.llm = LLMService(self.redis, settings=settings)
        self.backup_products = BackupProductService(self.llm, settings=settings)
        self.search = ProductSearchService(self.cache, self.scrape_client, self.backup_products, settings=settings)

        # Analysis
        self.price_tracker = PriceTracker(self.redis, settings=settings)
        self.category_prices = CategoryPriceAnalyzer(self.redis, settings=settings)
        self.sentiment = SentimentAnalyzer(self.redis, self.llm, self.scrape_client, settings=settings)
        self.quality = QualityAnalyzer(self.price_tracker, self.sentiment)
        self.category_quality = CategoryQualityAnalyzer(self.redis, self.llm, self.category_prices, settings=settings)
        self.product_analyzer = ProductAnalyzer(self.category_quality, self.price_tracker, self.quality, self.sentiment)

        # Gifts
        self.gift_prices = GiftPriceAnalyzer(self.redis, self.llm, settings=settings)
        self.enricher = GiftEnrichmentService(
            self.redis,
            self.llm,
            self.backup_products,
            self.category_quality,
            self.price_tracker,
            price_analyzer=self.gift_prices,
            settings=settings,
        )

    async def start(self, health_checks: bool = True) -> None:
        """Load the rotation pools and start background proxy health checks."""
        logger.info("Starting gift intelligence services...")
        await self.redis.ping()
        await self.user_agents.initialize()
        await self.proxy_manager.initialize()
        if health_checks:
            await self.proxy_manager.start()
        logger.info("Services started")

    async def stop(self) -> None:
        logger.info("Shutting down...")
        await self.proxy_manager.destroy()
        await self.llm.close()
        await self.redis.aclose()
        logger.info("Shutdown complete")


@asynccontextmanager
async def lifespan(settings: Settings = default_settings, health_checks: bool = True) -> AsyncIterator[ServiceContainer]:
    container = ServiceContainer(settings)
    await container.start(health_checks=health_checks)
    try:
        yield container
    finally:
        await container.stop()
