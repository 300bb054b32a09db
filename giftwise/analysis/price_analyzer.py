"""Fixed per-category price tiers for product listings."""

import json
import logging
import math
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis.asyncio as redis

from giftwise.config import Settings, settings as default_settings
from giftwise.models import ScrapedProduct

logger = logging.getLogger(__name__)

BUDGET = "budget"
MID_RANGE = "midRange"
PREMIUM = "premium"

# (min, max) per tier
CATEGORY_THRESHOLDS: Dict[str, Dict[str, tuple]] = {
    "Electronics": {BUDGET: (1, 200), MID_RANGE: (200, 500), PREMIUM: (500, 1500)},
    "Toys": {BUDGET: (1, 20), MID_RANGE: (20, 50), PREMIUM: (50, 150)},
    "Books": {BUDGET: (1, 15), MID_RANGE: (15, 30), PREMIUM: (30, 100)},
    "default": {BUDGET: (1, 30), MID_RANGE: (30, 80), PREMIUM: (80, 250)},
}


@dataclass
class PriceRange:
    min: float
    max: float
    average: float
    median: float
    standard_deviation: float
    prices_by_tier: Dict[str, List[float]] = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def standard_deviation(prices: Sequence[float]) -> float:
    mean = sum(prices) / len(prices)
    return math.sqrt(sum((p - mean) ** 2 for p in prices) / len(prices))


class CategoryPriceAnalyzer:
    """Buckets listing prices into the category's budget/midRange/premium bands."""

    def __init__(
        self,
        redis_client: redis.Redis,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.stats_ttl = settings.cache_price_ttl
        self._clock = clock

    @staticmethod
    def thresholds_for(category: Optional[str]) -> Dict[str, tuple]:
        return CATEGORY_THRESHOLDS.get(category or "default", CATEGORY_THRESHOLDS["default"])

    async def analyze_prices(self, products: Sequence[ScrapedProduct], category: str) -> PriceRange:
        """Range, spread and tier buckets; all zeros when nothing is priced."""
        now = int(self._clock() * 1000)
        prices = [p.price for p in products if p.price > 0]
        if not prices:
            return PriceRange(0, 0, 0, 0, 0, {BUDGET: [], MID_RANGE: [], PREMIUM: []}, now)

        ordered = sorted(prices)
        t = self.thresholds_for(category)

        result = PriceRange(
            min=ordered[0],
            max=ordered[-1],
            average=sum(prices) / len(prices),
            median=ordered[len(ordered) // 2],
            standard_deviation=standard_deviation(prices),
            prices_by_tier={
                BUDGET: [p for p in prices if t[BUDGET][0] <= p <= t[BUDGET][1]],
                MID_RANGE: [p for p in prices if t[MID_RANGE][0] < p <= t[MID_RANGE][1]],
                PREMIUM: [p for p in prices if t[PREMIUM][0] < p <= t[PREMIUM][1]],
            },
            timestamp=now,
        )
        await self._redis.set(self._stats_key(category), json.dumps(result.to_dict()), ex=self.stats_ttl)
        return result

    def get_price_tier(self, price: float, category: Optional[str]) -> str:
        t = self.thresholds_for(category)
        if price <= t[BUDGET][1]:
            return BUDGET
        if price <= t[MID_RANGE][1]:
            return MID_RANGE
        return PREMIUM

    @staticmethod
    def _stats_key(category: str) -> str:
        return f"price:stats:{category}"

    async def get_category_price_stats(self, category: str) -> Optional[PriceRange]:
        cached = await self._redis.get(self._stats_key(category))
        return PriceRange(**json.loads(cached)) if cached else None
