"""Tests for search page parsing and the product search flow."""

from unittest.mock import AsyncMock

import pytest

from giftwise.errors import BLOCKED, PARSER_ERROR, ScrapingError
from giftwise.ingest.cache_manager import CacheManager
from giftwise.ingest.search import ProductSearchService, parse_price, parse_search_results
from giftwise.models import SOURCE_AMAZON, SOURCE_BACKUP, SOURCE_CACHE, ProductSearchResult, ScrapedProduct


def listing(asin, title, price, rating="4.7", reviews="1,234", prime=True, sponsored=False, badge=None):
    return f"""
    <div data-component-type="s-search-result" data-asin="{asin}">
      <img class="s-image" src="https://m.media-amazon.com/{asin}.jpg">
      {f'<span class="a-badge-text">{badge}</span>' if badge else ''}
      {'<span class="puis-sponsored-label-text">Sponsored</span>' if sponsored else ''}
      <h2><a class="a-link-normal" href="/dp/{asin}?ref=sr_1"><span>{title}</span></a></h2>
      <span class="a-icon-alt">{rating} out of 5 stars</span>
      <span class="a-size-base s-underline-text">{reviews}</span>
      <span class="a-price"><span class="a-offscreen">${price}</span></span>
      {'<i class="a-icon a-icon-prime"></i>' if prime else ''}
    </div>
    """


def page(*listings):
    return f"<html><body><div class='s-main-slot'>{''.join(listings)}</div></body></html>"


SEARCH_PAGE = page(
    listing("B000TELE01", "Kids Telescope 70mm", "49.99", badge="Best Seller"),
    listing("B000TELE02", "Starter Telescope", "89.00", rating="4.6", reviews="532"),
    listing("B000TELE03", "Sponsored Scope", "29.99", sponsored=True),
    listing("B000TELE04", "Cheap Scope", "9.99", rating="3.1", reviews="12", prime=False),
)


class TestParsing:
    """selectolax parsing of result containers."""

    def test_parse_price(self):
        assert parse_price("$1,234.56") == 1234.56
        assert parse_price("") is None
        assert parse_price("Currently unavailable") is None

    def test_parses_listings(self):
        products = parse_search_results(SEARCH_PAGE)

        assert len(products) == 4
        first = products[0]
        assert first.title == "Kids Telescope 70mm"
        assert first.url == "https://www.amazon.com/dp/B000TELE01?ref=sr_1"
        assert first.price == 49.99
        assert first.rating == 4.7
        assert first.review_count == 1234
        assert first.prime
        assert first.best_seller
        assert not first.sponsored
        assert first.image_url == "https://m.media-amazon.com/B000TELE01.jpg"
        assert products[2].sponsored
        assert not products[3].prime

    def test_no_containers_is_parser_error(self):
        with pytest.raises(ScrapingError) as exc_info:
            parse_search_results("<html><body>Nothing here</body></html>")
        assert exc_info.value.code == PARSER_ERROR
        assert not exc_info.value.retryable

    def test_unpriced_listings_skipped(self):
        html = page(listing("B000TELE01", "Priced", "19.99"), listing("B000TELE02", "Unpriced", ""))
        assert [p.title for p in parse_search_results(html)] == ["Priced"]


class TestProductSearchService:
    """Cache, live scrape, quality filter and backup fallback."""

    def setup_method(self):
        self.scrape_client = AsyncMock()
        self.backup = AsyncMock()
        self.backup_result = ProductSearchResult(
            products=[ScrapedProduct(title="Backup Scope", url="https://example.com", price=39.99)],
            price_analysis=None,
            timestamp=0,
            source=SOURCE_BACKUP,
            provider="openai",
        )
        self.backup.get_backup_products.return_value = self.backup_result

    def make_service(self, fake_redis, clock):
        cache = CacheManager(fake_redis)
        return ProductSearchService(cache, self.scrape_client, self.backup, clock=clock), cache

    @pytest.mark.asyncio
    async def test_live_results_filtered_and_cached(self, fake_redis, clock):
        self.scrape_client.fetch.return_value = SEARCH_PAGE
        service, cache = self.make_service(fake_redis, clock)

        result = await service.search("telescope")

        assert result.source == SOURCE_AMAZON
        assert [p.title for p in result.products] == ["Kids Telescope 70mm", "Starter Telescope"]
        assert result.price_analysis.min == 49.99
        assert result.price_analysis.max == 89.0
        self.scrape_client.fetch.assert_awaited_once_with("https://www.amazon.com/s?k=telescope")
        assert await cache.get_product("https://www.amazon.com/dp/B000TELE01?ref=sr_1") is not None

        again = await service.search("Telescope")
        assert again.source == SOURCE_CACHE
        assert self.scrape_client.fetch.await_count == 1

        stats = await cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_scrape_failure_uses_backup(self, fake_redis, clock):
        self.scrape_client.fetch.side_effect = ScrapingError(BLOCKED, "captcha")
        service, cache = self.make_service(fake_redis, clock)

        result = await service.search("telescope")

        assert result is self.backup_result
        self.backup.get_backup_products.assert_awaited_once_with("telescope")
        assert await cache.get_search_results("telescope") is None

    @pytest.mark.asyncio
    async def test_relaxed_thresholds_before_backup(self, fake_redis, clock):
        self.scrape_client.fetch.return_value = page(
            listing("B000TELE05", "Decent Scope", "59.00", rating="4.4", reviews="80"),
        )
        service, _ = self.make_service(fake_redis, clock)

        result = await service.search("telescope")

        assert result.source == SOURCE_AMAZON
        assert [p.title for p in result.products] == ["Decent Scope"]
        self.backup.get_backup_products.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_passes_filters_uses_backup(self, fake_redis, clock):
        self.scrape_client.fetch.return_value = page(
            listing("B000TELE04", "Cheap Scope", "9.99", rating="3.1", reviews="12", prime=False),
        )
        service, _ = self.make_service(fake_redis, clock)

        result = await service.search("telescope")

        assert result.source == SOURCE_BACKUP

    @pytest.mark.asyncio
    async def test_cache_bypass(self, fake_redis, clock):
        self.scrape_client.fetch.return_value = SEARCH_PAGE
        service, _ = self.make_service(fake_redis, clock)

        await service.search("telescope")
        await service.search("telescope", use_cache=False)

        assert self.scrape_client.fetch.await_count == 2
