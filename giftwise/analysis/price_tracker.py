"""Per-product price history and price-status classification."""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis.asyncio as redis

from giftwise.analysis.keepa import KeepaPriceSource, PricePoint, day_of
from giftwise.config import Settings, settings as default_settings
from giftwise.models import ScrapedProduct, normalize_url

logger = logging.getLogger(__name__)

PRICE_HISTORY_KEY = "price_history"
SOURCE_AMAZON = "amazon"

# Known price sources; confidence rewards coverage across them
EXPECTED_SOURCES = 3

LOWEST_PRICE = "LOWEST_PRICE"
GOOD_PRICE = "GOOD_PRICE"
REGULAR_PRICE = "REGULAR_PRICE"
INFLATED_PRICE = "INFLATED_PRICE"
HIGHLY_INFLATED = "HIGHLY_INFLATED"

PRICE_STATUSES = (LOWEST_PRICE, GOOD_PRICE, REGULAR_PRICE, INFLATED_PRICE, HIGHLY_INFLATED)


@dataclass
class PriceAnalysis:
    """Where the current price sits within the product's history."""

    current_price: float
    lowest_price: float
    highest_price: float
    average_price: float
    price_status: str
    price_history: List[PricePoint] = field(default_factory=list)
    volatility: float = 0.0
    confidence: float = 0.0
    last_updated: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_price": self.current_price,
            "lowest_price": self.lowest_price,
            "highest_price": self.highest_price,
            "average_price": self.average_price,
            "price_status": self.price_status,
            "price_history": [p.to_dict() for p in self.price_history],
            "volatility": self.volatility,
            "confidence": self.confidence,
            "last_updated": self.last_updated,
        }


def classify_price_status(current: float, lowest: float, average: float) -> str:
    """
    Classify ``current`` against the historical lowest and average price.

    Thresholds are checked in a fixed order and the first match wins, so
    the status never moves backward as ``current`` increases.
    """
    if current <= lowest * 1.02:
        return LOWEST_PRICE
    if current <= lowest * 1.10:
        return GOOD_PRICE
    if current <= average * 1.05:
        return REGULAR_PRICE
    if current <= average * 1.20:
        return INFLATED_PRICE
    return HIGHLY_INFLATED


def merge_price_data(*sources: Sequence[PricePoint]) -> List[PricePoint]:
    """
    One point per calendar day across sources.

    A third-party point replaces a first-party one for the same day; among
    third-party points the first one seen is kept.
    """
    by_date: Dict[str, PricePoint] = {}
    for source in sources:
        for point in source:
            existing = by_date.get(point.date)
            if existing is None or existing.source == SOURCE_AMAZON:
                by_date[point.date] = point
    return sorted(by_date.values(), key=lambda p: p.date)


def price_volatility(history: Sequence[PricePoint]) -> float:
    """Mean absolute relative change between consecutive points."""
    prices = [p.price for p in history if p.price > 0]
    if len(prices) < 2:
        return 0.0
    changes = [abs(b - a) / a for a, b in zip(prices, prices[1:])]
    return sum(changes) / len(changes)


class PriceTracker:
    """
    Stores first-party price points in a Redis sorted set per product and
    merges them with third-party history.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        settings: Settings = default_settings,
        keepa: Optional[KeepaPriceSource] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.history_days = settings.price_tracker_history_days
        self._clock = clock
        if keepa is None and settings.keepa_api_key:
            keepa = KeepaPriceSource(settings.keepa_api_key)
        self.keepa = keepa

    def _key(self, url: str) -> str:
        return f"{PRICE_HISTORY_KEY}:{normalize_url(url)}"

    def _cutoff_ms(self, now_ms: int) -> int:
        return now_ms - self.history_days * 24 * 60 * 60 * 1000

    async def track_price(self, product: ScrapedProduct) -> PriceAnalysis:
        """Record today's price (when known) and analyze the merged history."""
        key = self._key(product.url)
        now_ms = int(self._clock() * 1000)

        if product.price > 0:
            await self._store_price_point(
                key, PricePoint(price=product.price, date=day_of(now_ms), source=SOURCE_AMAZON), now_ms
            )

        third_party = await self._fetch_third_party(product.url, now_ms)
        history = await self.get_price_history(product.url)
        merged = merge_price_data(history, third_party)

        return self._analyze(product.price, merged, now_ms)

    async def _store_price_point(self, key: str, point: PricePoint, now_ms: int) -> None:
        await self._redis.zadd(key, {json.dumps(point.to_dict()): now_ms})
        await self._redis.zremrangebyscore(key, 0, self._cutoff_ms(now_ms))

    async def _fetch_third_party(self, url: str, now_ms: int) -> List[PricePoint]:
        if self.keepa is None:
            return []
        try:
            return await self.keepa.fetch(url, since_ms=self._cutoff_ms(now_ms))
        except Exception as e:
            logger.warning(f"Keepa price history unavailable for {url}: {e}")
            return []

    async def get_price_history(self, url: str) -> List[PricePoint]:
        """First-party points, oldest first."""
        raw = await self._redis.zrange(self._key(url), 0, -1)
        return [PricePoint.from_dict(json.loads(item)) for item in raw]

    def _analyze(self, current: float, history: List[PricePoint], now_ms: int) -> PriceAnalysis:
        updated = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).isoformat()
        prices = [p.price for p in history if p.price > 0]

        if not prices:
            return PriceAnalysis(
                current_price=current,
                lowest_price=current,
                highest_price=current,
                average_price=current,
                price_status=REGULAR_PRICE,
                last_updated=updated,
            )

        lowest = min(prices)
        average = sum(prices) / len(prices)

        return PriceAnalysis(
            current_price=current,
            lowest_price=lowest,
            highest_price=max(prices),
            average_price=average,
            price_status=classify_price_status(current, lowest, average),
            price_history=history,
            volatility=price_volatility(history),
            confidence=self._confidence(history),
            last_updated=updated,
        )

    def _confidence(self, history: List[PricePoint]) -> float:
        confidence = 0.5
        confidence += min(len(history) / self.history_days, 1) * 0.3
        sources = len({p.source for p in history})
        confidence += (sources / EXPECTED_SOURCES) * 0.2
        return min(confidence, 1.0)
