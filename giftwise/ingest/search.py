"""Product search: cache, live scrape, quality filter, backup fallback."""

import logging
import re
import time
from dataclasses import replace
from typing import Callable, List, Optional
from urllib.parse import quote_plus, urljoin

from selectolax.parser import HTMLParser, Node

from giftwise.config import Settings, settings as default_settings
from giftwise.errors import PARSER_ERROR, ScrapingError
from giftwise.ingest.backup_products import BackupProductService
from giftwise.ingest.cache_manager import CacheManager
from giftwise.ingest.http_client import ScrapeClient
from giftwise.ingest.quality_filters import (
    DEFAULT_THRESHOLDS,
    QualityThresholds,
    filter_products,
    threshold_presets,
    validate_product,
)
from giftwise.logging_config import get_logger
from giftwise.models import (
    SOURCE_AMAZON,
    SOURCE_CACHE,
    PriceSummary,
    ProductSearchResult,
    ScrapedProduct,
)

logger = logging.getLogger(__name__)

RESULT_SELECTOR = 'div[data-component-type="s-search-result"]'
BASE_URL = "https://www.amazon.com"

_PRICE_RE = re.compile(r"[\d,]+(?:\.\d+)?")
_RATING_RE = re.compile(r"(\d+(?:\.\d+)?) out of 5")


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse ``$1,234.56`` style text."""
    if not text:
        return None
    match = _PRICE_RE.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def _text(node: Node, selector: str) -> Optional[str]:
    elem = node.css_first(selector)
    return elem.text(strip=True) if elem else None


def _parse_item(item: Node, base_url: str) -> Optional[ScrapedProduct]:
    title = _text(item, "h2")
    link = item.css_first("h2 a") or item.css_first("a.a-link-normal.s-no-outline")
    price = parse_price(_text(item, ".a-price .a-offscreen"))
    if not title or not link or not price:
        return None

    rating = 0.0
    rating_text = _text(item, ".a-icon-alt")
    if rating_text:
        match = _RATING_RE.search(rating_text)
        if match:
            rating = float(match.group(1))

    review_text = _text(item, "span.a-size-base.s-underline-text")
    review_count = int(parse_price(review_text) or 0)

    badge = _text(item, ".a-badge-text") or ""
    sponsored_label = _text(item, ".puis-sponsored-label-text") or _text(item, ".s-label-popover-default") or ""
    image = item.css_first("img.s-image")

    return ScrapedProduct(
        title=title,
        url=urljoin(base_url, link.attributes.get("href") or ""),
        price=price,
        rating=rating,
        review_count=review_count,
        prime=item.css_first("i.a-icon-prime") is not None,
        sponsored="sponsored" in sponsored_label.lower(),
        best_seller="best seller" in badge.lower(),
        image_url=image.attributes.get("src") if image else None,
    )


def parse_search_results(html: str, base_url: str = BASE_URL) -> List[ScrapedProduct]:
    """
    Extract listings from a search results page.

    Raises:
        ScrapingError: PARSER_ERROR when the page has no result containers
    """
    parser = HTMLParser(html)
    items = parser.css(RESULT_SELECTOR)
    if not items:
        raise ScrapingError(PARSER_ERROR, "No search result containers found", retryable=False)

    products = []
    for item in items:
        product = _parse_item(item, base_url)
        if product and validate_product(product):
            products.append(product)
    return products


class ProductSearchService:
    """
    Search entry point used by gift enrichment and callers.

    Flow: cache lookup, live scrape, quality filter. Any scraping failure
    or an empty filtered page falls back to the backup service. Backup
    results are not cached so live data is retried on the next search.
    """

    def __init__(
        self,
        cache: CacheManager,
        scrape_client: ScrapeClient,
        backup: BackupProductService,
        settings: Settings = default_settings,
        thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.scrape_client = scrape_client
        self.backup = backup
        self.settings = settings
        self.thresholds = thresholds
        self._clock = clock

    def search_url(self, query: str) -> str:
        return self.settings.scrape_search_url.format(query=quote_plus(query.strip()))

    async def search(self, query: str, use_cache: bool = True) -> ProductSearchResult:
        log = get_logger(__name__, query=query)

        if use_cache:
            cached = await self.cache.get_search_results(query)
            await self.cache.increment_stats(cached is not None)
            if cached:
                return replace(cached, source=SOURCE_CACHE)

        try:
            html = await self.scrape_client.fetch(self.search_url(query))
            scraped = parse_search_results(html)
        except ScrapingError as e:
            log.warning(f"Live search failed ({e.code}), using backup products: {e}")
            return await self.backup.get_backup_products(query)

        products: List[ScrapedProduct] = []
        for preset in threshold_presets(self.thresholds):
            products = filter_products(scraped, preset)
            if products:
                break

        if not products:
            log.info(f"No listings passed quality filters ({len(scraped)} scraped), using backup products")
            return await self.backup.get_backup_products(query)

        result = ProductSearchResult(
            products=products,
            price_analysis=PriceSummary.from_prices([p.price for p in products]),
            timestamp=int(self._clock() * 1000),
            source=SOURCE_AMAZON,
        )
        await self.cache.set_search_results(query, result)
        for product in products:
            await self.cache.set_product(product.url, product)

        return result
