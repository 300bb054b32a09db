"""
Category-level quality benchmarking for products.

Category metrics (key features, concerns, benchmarks) come from the LLM and
are cached per category. Each product is scored against them using its own
listing data and the phrases that recur in its reviews.
"""

import json
import logging
import math
import re
import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis.asyncio as redis

from giftwise.ai.llm_service import LLMService
from giftwise.ai.prompts import CATEGORY_METRICS_SCHEMA, CategoryMetricsPrompt
from giftwise.analysis.price_analyzer import CategoryPriceAnalyzer
from giftwise.config import Settings, settings as default_settings
from giftwise.models import ProductReview, ScrapedProduct, normalize_url

logger = logging.getLogger(__name__)

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"

# Phrase category keyed by trigger words, checked in order
PHRASE_CATEGORIES = (
    ("durability", ("durable", "sturdy", "lasted", "lasts", "broke", "broken", "flimsy")),
    ("value", ("price", "value", "worth", "money", "cheap", "expensive")),
    ("issue", ("issue", "problem", "defect", "stopped", "return", "returned")),
    ("comparison", ("better", "worse", "compared", "than")),
    ("usage", ("use", "using", "used", "easy", "setup")),
    ("quality", ("quality", "made", "build", "material")),
)

STOPWORDS = frozenset(
    "a an and are as at be but by for from has have i in is it its my of on or so "
    "that the this to was were with very just they them we you our your".split()
)

MAX_PHRASES = 10
MIN_PHRASE_COUNT = 2

_WORD_RE = re.compile(r"[a-z']+")


def _strings(values: Any) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        return [values]
    return [str(v) for v in values]


@dataclass
class CategoryBenchmarks:
    expected_price: Dict[str, float] = field(default_factory=dict)
    minimum_rating: float = 4.0
    minimum_reviews: int = 50
    expected_features: List[str] = field(default_factory=list)


@dataclass
class CategoryMetrics:
    key_features: List[str]
    important_specs: List[str]
    quality_indicators: List[str]
    common_concerns: List[str]
    price_factors: List[str]
    benchmarks: CategoryBenchmarks
    generated: bool = True  # False for the built-in default

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryMetrics":
        """Build from cached or LLM JSON.

        Values are coerced to their field types; a reply that cannot be
        coerced raises ValueError or TypeError.
        """
        bench = data.get("benchmarks") or data.get("categoryBenchmarks") or {}
        prices = bench.get("expected_price") or bench.get("expectedPrice") or {}
        return cls(
            key_features=_strings(data.get("key_features") or data.get("keyFeatures")),
            important_specs=_strings(data.get("important_specs") or data.get("importantSpecs")),
            quality_indicators=_strings(data.get("quality_indicators") or data.get("qualityIndicators")),
            common_concerns=_strings(data.get("common_concerns") or data.get("commonConcerns")),
            price_factors=_strings(data.get("price_factors") or data.get("priceFactors")),
            benchmarks=CategoryBenchmarks(
                expected_price={str(k): float(v) for k, v in prices.items() if v is not None},
                minimum_rating=float(bench.get("minimum_rating") or bench.get("minimumRating") or 4.0),
                minimum_reviews=int(bench.get("minimum_reviews") or bench.get("minimumReviews") or 50),
                expected_features=_strings(bench.get("expected_features") or bench.get("expectedFeatures")),
            ),
            generated=data.get("generated", True),
        )


def default_category_metrics() -> CategoryMetrics:
    return CategoryMetrics(
        key_features=["Build quality", "Ease of use", "Value for money"],
        important_specs=["Dimensions", "Materials", "Warranty"],
        quality_indicators=["High ratings", "Verified reviews", "Low return rate"],
        common_concerns=["Durability", "Accuracy of description"],
        price_factors=["Brand", "Materials", "Features"],
        benchmarks=CategoryBenchmarks(
            expected_price={"min": 10.0, "max": 100.0, "average": 50.0, "median": 45.0},
            minimum_rating=4.0,
            minimum_reviews=50,
        ),
        generated=False,
    )


@dataclass
class FrequentPhrase:
    text: str
    count: int
    sentiment: str
    category: str
    confidence: float


@dataclass
class MarketPosition:
    price_segment: str  # budget / midRange / premium
    relative_pricing: str  # below / at / above / significantly_above
    competitiveness: float


@dataclass
class CategoryAnalysis:
    category: str
    strengths: List[str]
    weaknesses: List[str]
    key_specs: Dict[str, str]
    competitive_advantages: List[str]
    frequent_phrases: List[FrequentPhrase]
    category_score: float
    recommendations: List[str]
    market_position: MarketPosition
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryAnalysis":
        values = dict(data)
        values["frequent_phrases"] = [FrequentPhrase(**p) for p in data.get("frequent_phrases", [])]
        values["market_position"] = MarketPosition(**data["market_position"])
        return cls(**values)


def _phrase_category(text: str) -> str:
    words = set(text.split())
    for name, triggers in PHRASE_CATEGORIES:
        if words.intersection(triggers):
            return name
    return "feature"


def extract_frequent_phrases(reviews: Sequence[ProductReview]) -> List[FrequentPhrase]:
    """
    Recurring two and three word phrases across reviews.

    A phrase counts once per review. Its sentiment follows the average
    rating of the reviews that use it.
    """
    counts: Counter = Counter()
    ratings: Dict[str, List[float]] = {}

    for review in reviews:
        words = [w for w in _WORD_RE.findall(review.text.lower()) if w not in STOPWORDS]
        seen = set()
        for n in (2, 3):
            for i in range(len(words) - n + 1):
                seen.add(" ".join(words[i:i + n]))
        for phrase in seen:
            counts[phrase] += 1
            ratings.setdefault(phrase, []).append(review.rating)

    phrases = []
    for text, count in counts.most_common():
        if count < MIN_PHRASE_COUNT:
            break
        rated = [r for r in ratings[text] if r > 0]
        average = sum(rated) / len(rated) if rated else 3.0
        sentiment = POSITIVE if average >= 4 else NEGATIVE if average <= 2 else NEUTRAL
        phrases.append(
            FrequentPhrase(
                text=text,
                count=count,
                sentiment=sentiment,
                category=_phrase_category(text),
                confidence=min(count / 5, 1.0),
            )
        )
        if len(phrases) >= MAX_PHRASES:
            break
    return phrases


def _feature_matches(product: ScrapedProduct, expected: Sequence[str]) -> List[str]:
    haystack = " ".join((product.title,) + tuple(product.features)).lower()
    return [f for f in expected if f.lower() in haystack]


def relative_pricing(price: float, expected_average: Optional[float]) -> str:
    if price <= 0 or not expected_average:
        return "at"
    ratio = price / expected_average
    if ratio < 0.9:
        return "below"
    if ratio <= 1.1:
        return "at"
    if ratio <= 1.5:
        return "above"
    return "significantly_above"


PRICING_COMPETITIVENESS = {"below": 1.1, "at": 1.0, "above": 0.9, "significantly_above": 0.75}


class CategoryQualityAnalyzer:
    """Benchmarks a product against what its category is expected to deliver."""

    def __init__(
        self,
        redis_client: redis.Redis,
        llm: LLMService,
        price_analyzer: CategoryPriceAnalyzer,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.llm = llm
        self.price_analyzer = price_analyzer
        self.metrics_ttl = settings.category_metrics_ttl
        self.analysis_ttl = settings.category_analysis_ttl
        self._clock = clock

    async def get_category_metrics(self, category: str) -> CategoryMetrics:
        """Cached LLM benchmarks for ``category``; the generic default on failure."""
        key = f"category:metrics:{category}"
        cached = await self._redis.get(key)
        if cached:
            return CategoryMetrics.from_dict(json.loads(cached))

        prompt = CategoryMetricsPrompt(category=category)
        try:
            data = await self.llm.call_llm_structured(
                prompt.to_prompt(), CATEGORY_METRICS_SCHEMA, system_prompt=prompt.system_prompt()
            )
            metrics = CategoryMetrics.from_dict(data)
        except Exception as e:
            logger.warning(f"Category metrics unavailable for {category}, using defaults: {e}")
            return default_category_metrics()

        await self._redis.set(key, json.dumps(metrics.to_dict()), ex=self.metrics_ttl)
        return metrics

    async def analyze_product_category(
        self,
        product: ScrapedProduct,
        category: str,
        force_refresh: bool = False,
    ) -> CategoryAnalysis:
        key = f"analysis:{normalize_url(product.url)}:{category}"
        if not force_refresh:
            cached = await self._redis.get(key)
            if cached:
                await self._track(category, cache_hit=True)
                return CategoryAnalysis.from_dict(json.loads(cached))

        metrics = await self.get_category_metrics(category)
        phrases = extract_frequent_phrases(product.reviews)
        strengths, weaknesses = self._strengths_and_weaknesses(product, metrics, phrases)
        score = self.category_score(product, metrics, phrases)
        position = self.market_position(product, category, metrics, score)

        analysis = CategoryAnalysis(
            category=category,
            strengths=strengths,
            weaknesses=weaknesses,
            key_specs=self._key_specs(product, metrics),
            competitive_advantages=[s for s in strengths if not s.startswith("Customers praise")],
            frequent_phrases=phrases,
            category_score=score,
            recommendations=self._recommendations(category, metrics, weaknesses, position, score),
            market_position=position,
            confidence=self._confidence(product, metrics),
        )

        await self._redis.set(key, json.dumps(analysis.to_dict()), ex=self.analysis_ttl)
        await self._track(category, cache_hit=False, confidence=analysis.confidence)
        return analysis

    def _strengths_and_weaknesses(
        self,
        product: ScrapedProduct,
        metrics: CategoryMetrics,
        phrases: Sequence[FrequentPhrase],
    ) -> tuple[List[str], List[str]]:
        bench = metrics.benchmarks
        strengths: List[str] = []
        weaknesses: List[str] = []

        if product.rating >= bench.minimum_rating:
            strengths.append("Rating above category benchmark")
        elif product.rating > 0:
            weaknesses.append("Rating below category benchmark")

        if product.review_count >= bench.minimum_reviews:
            strengths.append("Strong review volume")
        else:
            weaknesses.append("Few reviews for this category")

        matched = _feature_matches(product, bench.expected_features)
        strengths += [f"Includes {f}" for f in matched]
        weaknesses += [f"Missing {f}" for f in bench.expected_features if f not in matched]

        low, high = bench.expected_price.get("min"), bench.expected_price.get("max")
        if product.price > 0 and low is not None and high is not None:
            if low <= product.price <= high:
                strengths.append("Priced within category norms")
            elif product.price > high:
                weaknesses.append("Priced above the category range")

        strengths += [f"Customers praise \"{p.text}\"" for p in phrases if p.sentiment == POSITIVE][:3]
        weaknesses += [f"Customers mention \"{p.text}\"" for p in phrases if p.sentiment == NEGATIVE][:3]

        return strengths, weaknesses

    @staticmethod
    def category_score(
        product: ScrapedProduct,
        metrics: CategoryMetrics,
        phrases: Sequence[FrequentPhrase],
    ) -> float:
        """0-100 from rating, review volume, expected feature coverage and phrase sentiment."""
        score = product.rating / 5 * 40
        score += min(math.log10(max(product.review_count, 1)) / 4, 1) * 20

        expected = metrics.benchmarks.expected_features
        coverage = len(_feature_matches(product, expected)) / len(expected) if expected else 0.5
        score += coverage * 20

        positive = sum(1 for p in phrases if p.sentiment == POSITIVE)
        negative = sum(1 for p in phrases if p.sentiment == NEGATIVE)
        score += (positive / (positive + negative) if positive + negative else 0.5) * 20

        return round(min(max(score, 0.0), 100.0), 1)

    def market_position(
        self,
        product: ScrapedProduct,
        category: str,
        metrics: CategoryMetrics,
        score: float,
    ) -> MarketPosition:
        pricing = relative_pricing(product.price, metrics.benchmarks.expected_price.get("average"))
        return MarketPosition(
            price_segment=self.price_analyzer.get_price_tier(product.price, category),
            relative_pricing=pricing,
            competitiveness=round(min(1.0, score / 100 * PRICING_COMPETITIVENESS[pricing]), 2),
        )

    @staticmethod
    def _key_specs(product: ScrapedProduct, metrics: CategoryMetrics) -> Dict[str, str]:
        specs = {"price": product.price_string, "rating": f"{product.rating:.1f}"}
        if product.brand:
            specs["brand"] = product.brand
        for spec in metrics.important_specs:
            for feature in product.features:
                if spec.lower() in feature.lower():
                    specs[spec] = feature
                    break
        return specs

    @staticmethod
    def _recommendations(
        category: str,
        metrics: CategoryMetrics,
        weaknesses: Sequence[str],
        position: MarketPosition,
        score: float,
    ) -> List[str]:
        recs = []
        if score >= 80:
            recs.append(f"Strong pick in {category}")
        if position.relative_pricing == "significantly_above":
            recs.append(f"Compare prices with similar {category} products")
        if any(w.startswith("Missing") for w in weaknesses):
            recs.append("Confirm the listing covers the features you need")
        recs += [f"Check reviews for {c.lower()}" for c in metrics.common_concerns[:2]]
        return recs

    @staticmethod
    def _confidence(product: ScrapedProduct, metrics: CategoryMetrics) -> float:
        confidence = 0.4
        confidence += min(len(product.reviews) / 50, 1) * 0.3
        if metrics.generated:
            confidence += 0.2
        if product.review_count >= metrics.benchmarks.minimum_reviews:
            confidence += 0.1
        return round(min(confidence, 1.0), 3)

    async def _track(self, category: str, cache_hit: bool, confidence: Optional[float] = None) -> None:
        key = f"analytics:{category}"
        try:
            await self._redis.hincrby(key, "cacheHits" if cache_hit else "cacheMisses", 1)
            if confidence is None:
                return
            current = await self._redis.hgetall(key)
            count = int(current.get("analysisCount", 0))
            average = float(current.get("averageConfidence", 0))
            await self._redis.hset(
                key,
                mapping={
                    "analysisCount": count + 1,
                    "averageConfidence": (average * count + confidence) / (count + 1),
                    "lastUpdated": int(self._clock() * 1000),
                },
            )
        except Exception as e:
            logger.error(f"Failed to update category analytics for {category}: {e}")

    async def get_analytics(self, category: str) -> Dict[str, Any]:
        raw = await self._redis.hgetall(f"analytics:{category}")
        hits = int(raw.get("cacheHits", 0))
        misses = int(raw.get("cacheMisses", 0))
        return {
            "analysis_count": int(raw.get("analysisCount", 0)),
            "average_confidence": float(raw.get("averageConfidence", 0)),
            "cache_hits": hits,
            "cache_misses": misses,
            "cache_efficiency": hits / (hits + misses) if hits + misses else 0.0,
        }
