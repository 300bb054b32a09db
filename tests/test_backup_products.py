"""Tests for the backup product fallback chain and SerpAPI parsing."""

from unittest.mock import AsyncMock

import httpx
import pytest

from giftwise.ingest.backup_products import BackupProductService, BackupSource
from giftwise.ingest.serpapi import SerpAPIClient, parse_shopping_results, parse_walmart_results
from giftwise.models import SOURCE_BACKUP, SOURCE_PLACEHOLDER, ScrapedProduct


def shopping_product(title="Scope", price=59.0):
    return ScrapedProduct(title=title, url="https://shop.example/scope", price=price, rating=4.4, review_count=90)


class TestBackupProductService:
    """Ordered sources with placeholder fallback."""

    def setup_method(self):
        self.serpapi = AsyncMock()
        self.serpapi.google_shopping.return_value = []
        self.serpapi.walmart.return_value = []

    @pytest.mark.asyncio
    async def test_all_sources_fail_yields_three_placeholders(self, make_llm, test_settings, clock):
        self.serpapi.google_shopping.side_effect = httpx.ConnectError("down")
        self.serpapi.walmart.side_effect = httpx.ConnectError("down")
        service = BackupProductService(make_llm(), settings=test_settings, serpapi=self.serpapi, clock=clock)

        result = await service.get_backup_products("telescope")

        assert result.source == SOURCE_PLACEHOLDER
        assert len(result.products) == 3
        assert [p.price for p in result.products] == [19.99, 49.99, 99.99]
        assert result.products[0].title == "Telescope (Budget Pick)"
        assert result.price_analysis is not None
        assert result.price_analysis.median == 49.99

    @pytest.mark.asyncio
    async def test_ai_source_wins_first(self, make_llm, test_settings, clock):
        llm = make_llm(structured={"products": {"products": [
            {"title": "Celestron FirstScope", "price": 49.95, "rating": 4.6, "reviewCount": 3000},
            {"title": "No price", "price": None},
        ]}})
        service = BackupProductService(llm, settings=test_settings, serpapi=self.serpapi, clock=clock)

        result = await service.get_backup_products("telescope")

        assert result.source == SOURCE_BACKUP
        assert result.provider == "openai"
        assert [p.title for p in result.products] == ["Celestron FirstScope"]
        assert result.products[0].review_count == 3000
        self.serpapi.google_shopping.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_through_to_next_source(self, make_llm, test_settings, clock):
        self.serpapi.walmart.return_value = [shopping_product("Walmart Scope")]
        llm = make_llm(structured={"products": {"products": []}})
        service = BackupProductService(llm, settings=test_settings, serpapi=self.serpapi, clock=clock)

        result = await service.get_backup_products("telescope")

        assert result.provider == "walmart"
        assert [p.title for p in result.products] == ["Walmart Scope"]
        self.serpapi.google_shopping.assert_awaited_once_with("telescope")

    @pytest.mark.asyncio
    async def test_no_api_sources_without_key(self, make_llm, test_settings, clock):
        service = BackupProductService(make_llm(), settings=test_settings, clock=clock)
        assert [s.name for s in service.sources] == ["openai"]

    @pytest.mark.asyncio
    async def test_registered_source_ordered_by_priority(self, make_llm, test_settings, clock):
        service = BackupProductService(make_llm(), settings=test_settings, clock=clock)

        async def catalog(query):
            return [shopping_product("Catalog Scope")]

        service.register_source(BackupSource("catalog", "api", 0, catalog))

        result = await service.get_backup_products("telescope")

        assert [s.name for s in service.sources] == ["catalog", "openai"]
        assert result.provider == "catalog"

    @pytest.mark.asyncio
    async def test_placeholders_top_up_generated_items(self, make_llm, test_settings, clock):
        calls = []

        def products(prompt):
            calls.append(prompt)
            if len(calls) == 1:
                return {"products": []}
            return {"products": [{"title": "Generated Scope", "price": 35.0}]}

        service = BackupProductService(make_llm(structured={"products": products}), settings=test_settings, clock=clock)

        result = await service.get_backup_products("telescope")

        assert result.source == SOURCE_PLACEHOLDER
        assert [p.title for p in result.products] == [
            "Generated Scope",
            "Telescope (Popular Pick)",
            "Telescope (Premium Pick)",
        ]


class TestSerpAPIParsing:
    def test_shopping_results(self):
        response = {"shopping_results": [
            {"title": "Scope A", "extracted_price": 42.5, "product_link": "https://g.co/a", "rating": 4.5, "reviews": 120, "source": "Target"},
            {"title": "Scope B", "price": "$1,099.00", "link": "https://g.co/b"},
            {"title": "Unpriced"},
        ]}

        products = parse_shopping_results(response)

        assert [p.price for p in products] == [42.5, 1099.0]
        assert products[0].brand == "Target"
        assert products[1].url == "https://g.co/b"

    def test_walmart_results(self):
        response = {"organic_results": [
            {"title": "Scope W", "primary_offer": {"offer_price": 64.0}, "product_page_url": "https://walmart.com/w"},
            {"title": "No offer"},
        ]}
        products = parse_walmart_results(response)
        assert [(p.title, p.price) for p in products] == [("Scope W", 64.0)]

    def test_requires_key(self):
        with pytest.raises(ValueError):
            SerpAPIClient("")

    @pytest.mark.asyncio
    async def test_request_sends_engine_and_key(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"shopping_results": []})

        client = SerpAPIClient(
            "k-123",
            client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert await client.google_shopping("telescope") == []
        assert seen["engine"] == "google_shopping"
        assert seen["api_key"] == "k-123"
        assert seen["q"] == "telescope"
