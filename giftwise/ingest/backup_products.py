"""Fallback product data for when live scraping yields nothing."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote_plus

from giftwise import metrics
from giftwise.ai.llm_service import LLMService
from giftwise.ai.prompts import PRODUCT_LIST_SCHEMA, ProductSuggestionPrompt
from giftwise.config import Settings, settings as default_settings
from giftwise.ingest.serpapi import SerpAPIClient
from giftwise.models import (
    SOURCE_BACKUP,
    SOURCE_PLACEHOLDER,
    PriceSummary,
    ProductSearchResult,
    ScrapedProduct,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_COUNT = 3

# Price points for locally synthesized placeholders
PLACEHOLDER_TIERS = (
    ("Budget", 19.99),
    ("Popular", 49.99),
    ("Premium", 99.99),
)


@dataclass
class SourceResult:
    """Uniform outcome of one backup source attempt."""

    source: str
    products: List[ScrapedProduct]
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.products)


@dataclass(frozen=True)
class BackupSource:
    """A product source tried in ascending ``priority`` order."""

    name: str
    kind: str  # "ai" or "api"
    priority: int
    handler: Callable[[str], Awaitable[List[ScrapedProduct]]]

    async def run(self, query: str) -> SourceResult:
        try:
            products = await self.handler(query)
        except Exception as e:
            logger.error(f"Error with backup source {self.name}: {e}")
            metrics.record_backup_source(self.name, "error")
            return SourceResult(self.name, [], error=e)

        metrics.record_backup_source(self.name, "hit" if products else "empty")
        return SourceResult(self.name, list(products))


class BackupProductService:
    """
    Ordered fallback chain of product sources.

    The first source returning at least one product wins. When every
    source is empty or fails, three placeholder products are produced
    and tagged with the ``placeholder`` source.
    """

    def __init__(
        self,
        llm: LLMService,
        settings: Settings = default_settings,
        serpapi: Optional[SerpAPIClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.llm = llm
        self.settings = settings
        self._clock = clock
        self.sources: List[BackupSource] = []

        self.register_source(BackupSource("openai", "ai", 1, self._ai_product_suggestions))

        if serpapi is None and settings.serpapi_api_key:
            serpapi = SerpAPIClient(settings.serpapi_api_key)
        if serpapi is not None:
            self.register_source(BackupSource("googleShopping", "api", 2, serpapi.google_shopping))
            self.register_source(BackupSource("walmart", "api", 3, serpapi.walmart))

    def register_source(self, source: BackupSource) -> None:
        self.sources.append(source)
        self.sources.sort(key=lambda s: s.priority)

    def _search_url(self, title: str) -> str:
        return self.settings.scrape_search_url.format(query=quote_plus(title))

    def _from_suggestion(self, item: Dict[str, Any], rating: Optional[float] = None) -> ScrapedProduct:
        price = float(item["price"])
        return ScrapedProduct(
            title=item["title"],
            url=self._search_url(item["title"]),
            price=price,
            rating=float(rating if rating is not None else item.get("rating") or 4.5),
            review_count=int(item.get("reviewCount") or 100),
            prime=True,
            features=tuple(item.get("features") or ()),
        )

    async def _ai_product_suggestions(self, query: str) -> List[ScrapedProduct]:
        prompt = ProductSuggestionPrompt(query=query)
        data = await self.llm.call_llm_structured(
            prompt.to_prompt(), PRODUCT_LIST_SCHEMA, system_prompt=prompt.system_prompt()
        )
        return [
            self._from_suggestion(item)
            for item in data.get("products", [])
            if item.get("title") and item.get("price")
        ]

    async def get_backup_products(self, query: str) -> ProductSearchResult:
        """
        Products for ``query`` from the first source that has any.

        Never raises; the worst case is three placeholder products.
        """
        for source in self.sources:
            result = await source.run(query)
            if result.ok:
                return self._result(result.products, SOURCE_BACKUP, provider=source.name)

        products = await self.generate_placeholder_products(query)
        return self._result(products, SOURCE_PLACEHOLDER, provider=None)

    async def generate_placeholder_products(self, query: str) -> List[ScrapedProduct]:
        """Exactly three placeholders at varied price points."""
        products: List[ScrapedProduct] = []
        try:
            prompt = ProductSuggestionPrompt(query=query, placeholder=True)
            data = await self.llm.call_llm_structured(
                prompt.to_prompt(), PRODUCT_LIST_SCHEMA, system_prompt=prompt.system_prompt()
            )
            products = [
                self._from_suggestion(item, rating=4.5)
                for item in data.get("products", [])
                if item.get("title") and item.get("price")
            ]
        except Exception as e:
            logger.warning(f"Placeholder generation failed for {query!r}, using local placeholders: {e}")

        for label, price in PLACEHOLDER_TIERS[len(products):]:
            products.append(
                ScrapedProduct(
                    title=f"{query.strip().title()} ({label} Pick)",
                    url=self._search_url(query),
                    price=price,
                    rating=4.5,
                    review_count=100,
                    prime=True,
                )
            )

        return products[:PLACEHOLDER_COUNT]

    def _result(self, products: List[ScrapedProduct], source: str, provider: Optional[str]) -> ProductSearchResult:
        return ProductSearchResult(
            products=products,
            price_analysis=PriceSummary.from_prices([p.price for p in products]),
            timestamp=int(self._clock() * 1000),
            source=source,
            provider=provider,
        )
