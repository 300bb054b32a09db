"""Tests for the namespaced scraper cache."""

import pytest

from giftwise.ingest.cache_manager import CacheConfig, CacheManager
from giftwise.models import SOURCE_AMAZON, PriceSummary, ProductReview, ProductSearchResult, ScrapedProduct


@pytest.fixture
def cache(fake_redis):
    return CacheManager(fake_redis, CacheConfig(product_ttl=3600, search_ttl=1800, price_ttl=7200))


def sample_product():
    return ScrapedProduct(
        title="Kids Telescope",
        url="https://www.amazon.com/dp/B000TELE01",
        price=49.99,
        rating=4.6,
        review_count=812,
        prime=True,
        features=("70mm aperture", "tripod"),
        reviews=(ProductReview(text="Great first scope", rating=5, verified=True, helpful=3),),
    )


class TestCacheManager:
    """Get/set per namespace, expiry and stats."""

    @pytest.mark.asyncio
    async def test_product_roundtrip(self, cache):
        product = sample_product()
        await cache.set_product(product.url, product)
        assert await cache.get_product(product.url) == product

    @pytest.mark.asyncio
    async def test_search_results_keyed_by_normalized_query(self, cache):
        result = ProductSearchResult(
            products=[sample_product()],
            price_analysis=PriceSummary.from_prices([49.99]),
            timestamp=1,
            source=SOURCE_AMAZON,
        )
        await cache.set_search_results("  Kids  TELESCOPE ", result)

        cached = await cache.get_search_results("kids telescope")

        assert cached is not None
        assert cached.products[0].title == "Kids Telescope"
        assert cached.price_analysis.median == 49.99

    @pytest.mark.asyncio
    async def test_entries_expire(self, cache, clock):
        await cache.set_price_data("B000TELE01", {"price": 49.99})
        clock.advance(7199)
        assert await cache.get_price_data("B000TELE01") == {"price": 49.99}
        clock.advance(1)
        assert await cache.get_price_data("B000TELE01") is None

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.set_product("u1", sample_product())
        await cache.increment_stats(hit=True)
        await cache.increment_stats(hit=True)
        await cache.increment_stats(hit=False)

        stats = await cache.get_stats()

        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)
        assert stats["cache_size"] == 1
        assert stats["strategy"] == "lru"

    @pytest.mark.asyncio
    async def test_clear_cache(self, cache, fake_redis):
        await fake_redis.set("unrelated", "keep")
        await cache.set_product("u1", sample_product())
        await cache.increment_stats(hit=True)

        assert await cache.clear_cache() == 2
        assert await cache.get_product("u1") is None
        assert await fake_redis.get("unrelated") == "keep"
