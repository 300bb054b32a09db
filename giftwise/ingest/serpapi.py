"""
SerpAPI client for the Google Shopping and Walmart backup sources.

Responses are parsed straight into ScrapedProduct listings so they can stand
in for a live search page.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from giftwise.models import ScrapedProduct

logger = logging.getLogger(__name__)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(30.0))


class SerpAPIClient:
    """
    Async wrapper for the SerpAPI search endpoint.

    Usage:
        client = SerpAPIClient(api_key)
        products = await client.google_shopping("telescope")
    """

    BASE_URL = "https://serpapi.com/search"

    def __init__(
        self,
        api_key: str,
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
    ):
        if not api_key:
            raise ValueError("SerpAPI key not configured")
        self.api_key = api_key
        self._client_factory = client_factory

    async def _make_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make HTTP request to SerpAPI.

        Raises:
            httpx.HTTPError: On network or API errors
        """
        try:
            async with self._client_factory() as client:
                response = await client.get(self.BASE_URL, params={**params, "api_key": self.api_key})
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error(f"SerpAPI request failed: {e}")
            raise

    async def google_shopping(self, query: str, num_results: int = 20) -> List[ScrapedProduct]:
        """Google Shopping listings for ``query``."""
        data = await self._make_request(
            {"engine": "google_shopping", "q": query, "num": num_results}
        )
        return parse_shopping_results(data)

    async def walmart(self, query: str) -> List[ScrapedProduct]:
        """Walmart search listings for ``query``."""
        data = await self._make_request({"engine": "walmart", "query": query})
        return parse_walmart_results(data)


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace("$", "").replace(",", "").strip())
    except ValueError:
        return None


def parse_shopping_results(response: Dict[str, Any]) -> List[ScrapedProduct]:
    """Map ``shopping_results`` entries to products, skipping unpriced ones."""
    products = []
    for item in response.get("shopping_results", []):
        price = _to_float(item.get("extracted_price") or item.get("price"))
        title = item.get("title")
        if not title or not price:
            continue
        products.append(
            ScrapedProduct(
                title=title,
                url=item.get("product_link") or item.get("link") or "",
                price=price,
                rating=float(item.get("rating") or 0),
                review_count=int(item.get("reviews") or 0),
                features=tuple(item.get("extensions") or ()),
                brand=item.get("source"),
                image_url=item.get("thumbnail"),
            )
        )
    return products


def parse_walmart_results(response: Dict[str, Any]) -> List[ScrapedProduct]:
    """Map Walmart ``organic_results`` entries to products, skipping unpriced ones."""
    products = []
    for item in response.get("organic_results", []):
        offer = item.get("primary_offer") or {}
        price = _to_float(offer.get("offer_price"))
        title = item.get("title")
        if not title or not price:
            continue
        products.append(
            ScrapedProduct(
                title=title,
                url=item.get("product_page_url") or "",
                price=price,
                rating=float(item.get("rating") or 0),
                review_count=int(item.get("reviews") or 0),
                brand=item.get("seller_name"),
                image_url=item.get("thumbnail"),
            )
        )
    return products
