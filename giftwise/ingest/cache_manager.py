"""Namespaced Redis cache for scraped products, search results and prices."""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as redis

from giftwise import metrics
from giftwise.config import Settings, settings as default_settings
from giftwise.models import ProductSearchResult, ScrapedProduct

logger = logging.getLogger(__name__)

CACHE_PREFIX = "scraper"
STATS_HITS_KEY = f"{CACHE_PREFIX}:stats:hits"
STATS_MISSES_KEY = f"{CACHE_PREFIX}:stats:misses"


@dataclass(frozen=True)
class CacheConfig:
    """TTLs (seconds) per cache namespace."""

    product_ttl: int = 3600
    search_ttl: int = 1800
    price_ttl: int = 7200
    # Eviction is left to Redis (maxmemory-policy); recorded for reporting only
    strategy: str = "lru"

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        return cls(
            product_ttl=settings.cache_product_ttl,
            search_ttl=settings.cache_search_ttl,
            price_ttl=settings.cache_price_ttl,
            strategy=settings.cache_strategy,
        )


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


class CacheManager:
    """
    TTL cache with one key namespace per data type.

    Keys follow ``scraper:{type}:{identifier}``. Expiry is the only
    eviction performed here.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        config: Optional[CacheConfig] = None,
        settings: Settings = default_settings,
    ):
        self._redis = redis_client
        self.config = config or CacheConfig.from_settings(settings)

    @staticmethod
    def _key(kind: str, identifier: str) -> str:
        return f"{CACHE_PREFIX}:{kind}:{identifier}"

    async def _get_json(self, kind: str, identifier: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(self._key(kind, identifier))
        except Exception as e:
            logger.error(f"Cache read failed for {kind}:{identifier}: {e}")
            return None
        hit = raw is not None
        metrics.record_cache_lookup(kind, hit)
        return json.loads(raw) if hit else None

    async def _set_json(self, kind: str, identifier: str, value: Any, ttl: int) -> None:
        try:
            await self._redis.set(self._key(kind, identifier), json.dumps(value), ex=ttl)
        except Exception as e:
            logger.error(f"Cache write failed for {kind}:{identifier}: {e}")

    async def get_search_results(self, query: str) -> Optional[ProductSearchResult]:
        data = await self._get_json("search", normalize_query(query))
        return ProductSearchResult.from_dict(data) if data else None

    async def set_search_results(self, query: str, result: ProductSearchResult) -> None:
        await self._set_json("search", normalize_query(query), result.to_dict(), self.config.search_ttl)

    async def get_product(self, url: str) -> Optional[ScrapedProduct]:
        data = await self._get_json("product", url)
        return ScrapedProduct.from_dict(data) if data else None

    async def set_product(self, url: str, product: ScrapedProduct) -> None:
        await self._set_json("product", url, product.to_dict(), self.config.product_ttl)

    async def get_price_data(self, identifier: str) -> Optional[Dict[str, Any]]:
        return await self._get_json("price", identifier)

    async def set_price_data(self, identifier: str, data: Dict[str, Any]) -> None:
        await self._set_json("price", identifier, data, self.config.price_ttl)

    async def clear_cache(self) -> int:
        """Delete every ``scraper:*`` key, stats included."""
        keys = await self._redis.keys(f"{CACHE_PREFIX}:*")
        if keys:
            await self._redis.delete(*keys)
        logger.info(f"Cleared {len(keys)} cache keys")
        return len(keys)

    async def increment_stats(self, hit: bool) -> None:
        await self._redis.incr(STATS_HITS_KEY if hit else STATS_MISSES_KEY)

    async def get_stats(self) -> Dict[str, Any]:
        hits = int(await self._redis.get(STATS_HITS_KEY) or 0)
        misses = int(await self._redis.get(STATS_MISSES_KEY) or 0)
        keys = await self._redis.keys(f"{CACHE_PREFIX}:*")
        cache_size = sum(1 for k in keys if not k.startswith(f"{CACHE_PREFIX}:stats:"))
        total = hits + misses
        return {
            "hits": hits,
            "misses": misses,
            "hit_rate": hits / total if total else 0.0,
            "cache_size": cache_size,
            "strategy": self.config.strategy,
        }
