"""Keepa price history as a third-party source for the price tracker."""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import httpx

from giftwise.models import extract_asin

logger = logging.getLogger(__name__)

SOURCE_KEEPA = "keepa"

# Keepa timestamps are minutes since 2011-01-01
KEEPA_EPOCH_MINUTES = 21_564_000
AMAZON_PRICE_SERIES = 0


@dataclass(frozen=True)
class PricePoint:
    """One price observation for a calendar day."""

    price: float
    date: str  # YYYY-MM-DD
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricePoint":
        return cls(price=float(data["price"]), date=data["date"], source=data["source"])


def keepa_minutes_to_ms(minutes: int) -> int:
    return (minutes + KEEPA_EPOCH_MINUTES) * 60_000


def day_of(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def parse_keepa_series(series: List[int], since_ms: int = 0) -> List[PricePoint]:
    """
    Convert a Keepa ``[time, cents, time, cents, ...]`` series to daily points.

    ``-1`` marks no offer and is skipped; the last price of each day wins.
    """
    by_day: Dict[str, PricePoint] = {}
    for i in range(0, len(series) - 1, 2):
        minutes, cents = series[i], series[i + 1]
        if cents is None or cents < 0:
            continue
        ms = keepa_minutes_to_ms(minutes)
        if ms < since_ms:
            continue
        date = day_of(ms)
        by_day[date] = PricePoint(price=cents / 100, date=date, source=SOURCE_KEEPA)
    return sorted(by_day.values(), key=lambda p: p.date)


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(20.0))


class KeepaPriceSource:
    """Fetches Amazon price history for a product URL from the Keepa API."""

    name = SOURCE_KEEPA
    BASE_URL = "https://api.keepa.com/product"

    def __init__(
        self,
        api_key: str,
        domain: int = 1,
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
    ):
        if not api_key:
            raise ValueError("Keepa API key not configured")
        self.api_key = api_key
        self.domain = domain
        self._client_factory = client_factory

    async def fetch(self, url: str, since_ms: int = 0) -> List[PricePoint]:
        """
        Daily price points for the product behind ``url``.

        Returns an empty list when the URL has no ASIN or Keepa has no data.

        Raises:
            httpx.HTTPError: On network or API errors
        """
        asin = extract_asin(url)
        if not asin:
            return []

        params = {"key": self.api_key, "domain": self.domain, "asin": asin}
        async with self._client_factory() as client:
            response = await client.get(self.BASE_URL, params=params)
            response.raise_for_status()
            data = response.json()

        products = data.get("products") or []
        if not products:
            return []
        csv = products[0].get("csv") or []
        if len(csv) <= AMAZON_PRICE_SERIES or not csv[AMAZON_PRICE_SERIES]:
            return []

        points = parse_keepa_series(csv[AMAZON_PRICE_SERIES], since_ms)
        logger.debug(f"Keepa returned {len(points)} daily points for {asin}")
        return points
