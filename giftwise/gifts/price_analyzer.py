"""Category-adjusted gift price tiers with a baseline/LLM/default fallback chain."""

import json
import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import redis.asyncio as redis

from giftwise.ai.llm_service import LLMService
from giftwise.ai.prompts import PRICE_ESTIMATE_SCHEMA, PriceEstimatePrompt
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import ErrorPayload
from giftwise.models import ScrapedProduct

logger = logging.getLogger(__name__)

PRICE_ANALYSIS_FAILED = "PRICE_ANALYSIS_FAILED"

TIERS = ("budget", "midRange", "premium")


@dataclass(frozen=True)
class CategoryAdjustment:
    budget: float
    mid_range: float
    premium: float
    confidence: float

    def for_tier(self, tier: str) -> float:
        return {"budget": self.budget, "midRange": self.mid_range, "premium": self.premium}[tier]


CATEGORY_ADJUSTMENTS: Dict[str, CategoryAdjustment] = {
    "electronics": CategoryAdjustment(1.2, 1.1, 1.3, 0.9),
    "toys": CategoryAdjustment(0.9, 1.0, 1.1, 0.85),
    "books": CategoryAdjustment(0.8, 0.9, 1.0, 0.95),
    "clothing": CategoryAdjustment(0.9, 1.0, 1.2, 0.8),
    "default": CategoryAdjustment(1.0, 1.0, 1.0, 0.7),
}

# Confidence scale applied to each fallback source
LLM_CONFIDENCE_FACTOR = 0.7
DEFAULT_CONFIDENCE_FACTOR = 0.5

# Hardcoded tiers used when nothing better is available: (min, max, typical)
DEFAULT_TIERS = {
    "budget": (10, 30, 20),
    "midRange": (30, 70, 50),
    "premium": (70, 100, 85),
}


def get_category_adjustments(category: str) -> CategoryAdjustment:
    return CATEGORY_ADJUSTMENTS.get(category.lower(), CATEGORY_ADJUSTMENTS["default"])


@dataclass(frozen=True)
class GiftPriceConfig:
    history_days: int = 30
    min_sample_size: int = 5
    confidence_threshold: float = 0.7
    volatility_threshold: float = 0.2
    cache_expiry: int = 7 * 24 * 60 * 60
    outlier_iqr_multiplier: float = 1.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "GiftPriceConfig":
        return cls(
            history_days=settings.price_history_days,
            min_sample_size=settings.price_min_sample_size,
            confidence_threshold=settings.price_confidence_threshold,
            volatility_threshold=settings.price_volatility_threshold,
            cache_expiry=settings.price_cache_expiry,
            outlier_iqr_multiplier=settings.price_outlier_iqr_multiplier,
        )


@dataclass
class PriceRange:
    min: float
    max: float
    mean: float
    median: float


@dataclass
class TierPriceRange:
    min: float
    max: float
    typical: float


@dataclass
class GiftPriceDistribution:
    percentile10: float
    percentile25: float
    percentile50: float
    percentile75: float
    percentile90: float


@dataclass
class GiftPriceAnalysis:
    range: PriceRange
    tiers: Dict[str, TierPriceRange]
    distribution: GiftPriceDistribution
    volatility: float
    confidence: float
    last_updated: int
    sample_size: int
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GiftPriceAnalysis":
        return cls(
            range=PriceRange(**data["range"]),
            tiers={name: TierPriceRange(**tier) for name, tier in data["tiers"].items()},
            distribution=GiftPriceDistribution(**data["distribution"]),
            volatility=data["volatility"],
            confidence=data["confidence"],
            last_updated=data["last_updated"],
            sample_size=data["sample_size"],
            category=data["category"],
        )


@dataclass
class GiftPriceResult:
    """``success`` plus either the analysis or a structured error."""

    success: bool
    analysis: Optional[GiftPriceAnalysis] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[ErrorPayload] = None


def calculate_price_range(prices: Sequence[float]) -> PriceRange:
    ordered = sorted(prices)
    return PriceRange(
        min=ordered[0],
        max=ordered[-1],
        mean=sum(prices) / len(prices),
        median=ordered[len(ordered) // 2],
    )


def calculate_price_tiers(
    prices: Sequence[float],
    adjustments: CategoryAdjustment,
    iqr_multiplier: float = 1.5,
) -> Dict[str, TierPriceRange]:
    """Tiers around the median of the sample after dropping IQR outliers."""
    ordered = sorted(prices)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    valid = [p for p in ordered if q1 - iqr_multiplier * iqr <= p <= q3 + iqr_multiplier * iqr]

    median = valid[len(valid) // 2]
    low, high = valid[0], valid[-1]

    return {
        "budget": TierPriceRange(
            min=low * adjustments.budget,
            max=median * 0.8 * adjustments.budget,
            typical=(low + median * 0.8) / 2 * adjustments.budget,
        ),
        "midRange": TierPriceRange(
            min=median * 0.8 * adjustments.mid_range,
            max=median * 1.2 * adjustments.mid_range,
            typical=median * adjustments.mid_range,
        ),
        "premium": TierPriceRange(
            min=median * 1.2 * adjustments.premium,
            max=high * adjustments.premium,
            typical=(median * 1.2 + high) / 2 * adjustments.premium,
        ),
    }


def calculate_price_distribution(prices: Sequence[float]) -> GiftPriceDistribution:
    ordered = sorted(prices)

    def percentile(p: float) -> float:
        return ordered[int(len(ordered) * p)]

    return GiftPriceDistribution(
        percentile10=percentile(0.1),
        percentile25=percentile(0.25),
        percentile50=percentile(0.5),
        percentile75=percentile(0.75),
        percentile90=percentile(0.9),
    )


def calculate_volatility(history: Sequence[float]) -> float:
    """Mean absolute relative change between consecutive points."""
    if len(history) < 2:
        return 0.0
    changes = [
        abs(current - previous) / previous
        for previous, current in zip(history, history[1:])
        if previous
    ]
    return sum(changes) / len(changes) if changes else 0.0


def calculate_confidence(sample_size: int, category: str) -> float:
    confidence = get_category_adjustments(category).confidence
    confidence += min(sample_size / 50, 1) * 0.3
    return min(confidence, 1.0)


def analysis_from_tiers(
    category: str,
    tiers: Dict[str, Tuple[float, float, float]],
    confidence: float,
    now_ms: int,
) -> GiftPriceAnalysis:
    """Build an estimate-only analysis from unadjusted (min, max, typical) tiers."""
    adj = get_category_adjustments(category)
    scaled = {
        name: TierPriceRange(*(value * adj.for_tier(name) for value in tiers[name]))
        for name in TIERS
    }
    mid_min, mid_max, _ = tiers["midRange"]
    return GiftPriceAnalysis(
        range=PriceRange(
            min=scaled["budget"].min,
            max=scaled["premium"].max,
            mean=(mid_min + mid_max) / 2 * adj.mid_range,
            median=scaled["midRange"].typical,
        ),
        tiers=scaled,
        distribution=GiftPriceDistribution(
            percentile10=scaled["budget"].min,
            percentile25=scaled["budget"].typical,
            percentile50=scaled["midRange"].typical,
            percentile75=scaled["premium"].typical,
            percentile90=scaled["premium"].max,
        ),
        volatility=0.0,
        confidence=confidence,
        last_updated=now_ms,
        sample_size=0,
        category=category,
    )


def default_analysis(category: str, now_ms: int) -> GiftPriceAnalysis:
    adj = get_category_adjustments(category)
    analysis = analysis_from_tiers(category, DEFAULT_TIERS, adj.confidence * DEFAULT_CONFIDENCE_FACTOR, now_ms)
    # The hardcoded default carries its own summary figures.
    analysis.range = PriceRange(min=10 * adj.budget, max=100 * adj.premium, mean=55 * adj.mid_range, median=50 * adj.mid_range)
    analysis.distribution = GiftPriceDistribution(
        percentile10=15 * adj.budget,
        percentile25=25 * adj.budget,
        percentile50=50 * adj.mid_range,
        percentile75=75 * adj.premium,
        percentile90=85 * adj.premium,
    )
    return analysis


FallbackStrategy = Callable[[str], Awaitable[Optional[GiftPriceAnalysis]]]


class GiftPriceAnalyzer:
    """
    Category price analysis for gift suggestions.

    Samples smaller than ``min_sample_size`` never produce statistics; the
    analyzer walks its fallback strategies instead (cached category
    baseline, LLM estimate, hardcoded default) and reports sample size 0.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        llm: Optional[LLMService] = None,
        config: Optional[GiftPriceConfig] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.llm = llm
        self.config = config or GiftPriceConfig.from_settings(settings)
        self._clock = clock
        self.fallbacks: List[Tuple[str, FallbackStrategy]] = [
            ("baseline", self.get_category_baseline),
            ("llm", self._llm_estimate),
        ]

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def analyze_prices(self, products: Sequence[ScrapedProduct], category: str) -> GiftPriceResult:
        start = self._clock()
        try:
            valid = [p for p in products if p.price > 0]

            if len(valid) < self.config.min_sample_size:
                analysis, source = await self.get_fallback_analysis(category)
                return GiftPriceResult(
                    success=True,
                    analysis=analysis,
                    metadata=self._metadata(start, cache_hit=source == "baseline", sample_size=0),
                )

            adjustments = get_category_adjustments(category)
            prices = [p.price * adjustments.mid_range for p in valid]
            history = await self.get_price_history(category)

            analysis = GiftPriceAnalysis(
                range=calculate_price_range(prices),
                tiers=calculate_price_tiers(prices, adjustments, self.config.outlier_iqr_multiplier),
                distribution=calculate_price_distribution(prices),
                volatility=calculate_volatility([h["price"] for h in history]),
                confidence=calculate_confidence(len(valid), category),
                last_updated=self._now_ms(),
                sample_size=len(valid),
                category=category,
            )

            await self._store_price_history(category, prices)
            await self._update_category_baseline(category, analysis)

            return GiftPriceResult(
                success=True,
                analysis=analysis,
                metadata=self._metadata(start, cache_hit=False, sample_size=len(valid)),
            )
        except Exception as e:
            logger.error(f"Price analysis failed for {category}: {e}")
            return GiftPriceResult(success=False, error=ErrorPayload.from_exception(e, PRICE_ANALYSIS_FAILED))

    def _metadata(self, start: float, cache_hit: bool, sample_size: int) -> Dict[str, Any]:
        return {
            "processing_time": int((self._clock() - start) * 1000),
            "cache_hit": cache_hit,
            "sample_size": sample_size,
        }

    async def get_fallback_analysis(self, category: str) -> Tuple[GiftPriceAnalysis, str]:
        """First strategy that yields an analysis wins; the default always does."""
        for name, strategy in self.fallbacks:
            try:
                analysis = await strategy(category)
            except Exception as e:
                logger.warning(f"Price fallback {name} failed for {category}: {e}")
                continue
            if analysis is not None:
                return replace(analysis, sample_size=0), name
        return default_analysis(category, self._now_ms()), "default"

    async def _llm_estimate(self, category: str) -> Optional[GiftPriceAnalysis]:
        if self.llm is None:
            return None
        prompt = PriceEstimatePrompt(category=category)
        estimate = await self.llm.call_llm_structured(
            prompt.to_prompt(), PRICE_ESTIMATE_SCHEMA, system_prompt=prompt.system_prompt()
        )
        tiers = {
            name: (float(estimate[name]["min"]), float(estimate[name]["max"]), float(estimate[name]["typical"]))
            for name in TIERS
        }
        confidence = get_category_adjustments(category).confidence * LLM_CONFIDENCE_FACTOR
        return analysis_from_tiers(category, tiers, confidence, self._now_ms())

    @staticmethod
    def _history_key(category: str) -> str:
        return f"gift:price:history:{category}"

    @staticmethod
    def _baseline_key(category: str) -> str:
        return f"gift:price:baseline:{category}"

    async def get_price_history(self, category: str) -> List[Dict[str, Any]]:
        """Stored sample means, newest first."""
        entries = await self._redis.lrange(self._history_key(category), 0, -1)
        return [json.loads(e) for e in entries]

    async def _store_price_history(self, category: str, prices: Sequence[float]) -> None:
        key = self._history_key(category)
        entry = {"timestamp": self._now_ms(), "price": sum(prices) / len(prices)}
        await self._redis.lpush(key, json.dumps(entry))
        await self._redis.ltrim(key, 0, self.config.history_days - 1)

    async def get_category_baseline(self, category: str) -> Optional[GiftPriceAnalysis]:
        cached = await self._redis.get(self._baseline_key(category))
        return GiftPriceAnalysis.from_dict(json.loads(cached)) if cached else None

    async def _update_category_baseline(self, category: str, analysis: GiftPriceAnalysis) -> None:
        await self._redis.set(
            self._baseline_key(category),
            json.dumps(analysis.to_dict()),
            ex=self.config.cache_expiry,
        )
