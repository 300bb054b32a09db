"""Gift enrichment: description, product suggestions, category and a light analysis."""

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote_plus

import redis.asyncio as redis

from giftwise import metrics
from giftwise.ai.llm_service import LLMService
from giftwise.ai.prompts import (
    GIFT_CATEGORY_SCHEMA,
    GIFT_SUGGESTIONS_SCHEMA,
    GiftCategoryPrompt,
    GiftDetailsPrompt,
    GiftSuggestionsPrompt,
)
from giftwise.analysis.category_quality import CategoryQualityAnalyzer
from giftwise.analysis.price_tracker import PriceTracker
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import ErrorPayload, GiftProcessingError
from giftwise.gifts.price_analyzer import GiftPriceAnalysis, GiftPriceAnalyzer
from giftwise.ingest.backup_products import BackupProductService
from giftwise.models import PriceSummary, ScrapedProduct

logger = logging.getLogger(__name__)

ENRICHMENT_FAILED = "ENRICHMENT_FAILED"
INVALID_GIFT = "INVALID_GIFT"
CACHE_PREFIX = "gift:enrichment:"
DEFAULT_CATEGORY = "General"
DEFAULT_SUGGESTION_CONFIDENCE = 0.7

ENTHUSIASM_MARKERS = (
    "love",
    "really want",
    "favorite",
    "dream",
    "please",
    "excited",
    "amazing",
)

# Months counted as holiday season
HOLIDAY_MONTHS = (10, 11, 12)


@dataclass
class Gift:
    id: str
    name: str
    category: Optional[str] = None
    confidence: float = 0.0


@dataclass
class GiftSuggestion:
    name: str
    price_range: str
    search_url: str
    description: str
    tier: str
    confidence: float
    price_analysis: Optional[PriceSummary] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GiftSuggestion":
        summary = data.get("price_analysis")
        return cls(
            name=data["name"],
            price_range=data.get("price_range", ""),
            search_url=data.get("search_url", ""),
            description=data.get("description", ""),
            tier=data.get("tier", "midRange"),
            confidence=data.get("confidence", DEFAULT_SUGGESTION_CONFIDENCE),
            price_analysis=PriceSummary(**summary) if summary else None,
        )


@dataclass
class GiftAnalysis:
    sentiment: float
    popularity: float
    seasonality: float
    availability: float
    price_volatility: float
    recommendation_strength: float
    price_analysis: Optional[GiftPriceAnalysis] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GiftAnalysis":
        values = dict(data)
        if values.get("price_analysis"):
            values["price_analysis"] = GiftPriceAnalysis.from_dict(values["price_analysis"])
        return cls(**values)


@dataclass
class EnrichedGift:
    id: str
    name: str
    category: str
    confidence: float
    details: str
    suggestions: List[GiftSuggestion] = field(default_factory=list)
    age_range: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    analysis: Optional[GiftAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichedGift":
        values = dict(data)
        values["suggestions"] = [GiftSuggestion.from_dict(s) for s in data.get("suggestions", [])]
        if values.get("analysis"):
            values["analysis"] = GiftAnalysis.from_dict(values["analysis"])
        return cls(**values)


@dataclass
class EnrichmentResult:
    """``success`` plus either the enriched gift or a structured error."""

    success: bool
    gift: Optional[EnrichedGift] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorPayload] = None


def context_sentiment(context: str) -> float:
    """Share of enthusiasm markers present in the conversation text."""
    lowered = context.lower()
    hits = sum(1 for marker in ENTHUSIASM_MARKERS if marker in lowered)
    return min(hits / len(ENTHUSIASM_MARKERS), 1.0)


def seasonality(moment: datetime) -> float:
    return 1.0 if moment.month in HOLIDAY_MONTHS else 0.7


class GiftEnrichmentService:
    """
    Turns a bare gift mention into a described, categorized and priced gift.

    The detail, suggestion, category and analysis steps run concurrently.
    Results are cached per gift id; a cached entry is served only when the
    caller does not ask for fresh suggestions. Failures never raise, they
    come back as ``EnrichmentResult(success=False)`` with ENRICHMENT_FAILED.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        llm: LLMService,
        backup_products: BackupProductService,
        category_analyzer: CategoryQualityAnalyzer,
        price_tracker: PriceTracker,
        price_analyzer: Optional[GiftPriceAnalyzer] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.llm = llm
        self.backup_products = backup_products
        self.category_analyzer = category_analyzer
        self.price_tracker = price_tracker
        self.price_analyzer = price_analyzer
        self.settings = settings
        self.cache_ttl = settings.enrichment_cache_ttl
        self._clock = clock

    @staticmethod
    def _cache_key(gift_id: str) -> str:
        return f"{CACHE_PREFIX}{gift_id}"

    def _search_url(self, query: str) -> str:
        return self.settings.scrape_search_url.format(query=quote_plus(query.strip()))

    async def enrich_gift(
        self,
        gift: Gift,
        conversation_context: str,
        include_suggestions: bool = True,
        include_analysis: bool = True,
        max_suggestions: int = 3,
        skip_cache: bool = False,
    ) -> EnrichmentResult:
        start = self._clock()
        try:
            if not gift.name.strip():
                raise GiftProcessingError(f"Gift {gift.id} has no name", INVALID_GIFT, recoverable=False)

            key = self._cache_key(gift.id)
            if not skip_cache and not include_suggestions:
                cached = await self._redis.get(key)
                if cached:
                    metrics.record_cache_lookup("enrichment", True)
                    return EnrichmentResult(
                        success=True,
                        gift=EnrichedGift.from_dict(json.loads(cached)),
                        metadata={"cached": True},
                    )
                metrics.record_cache_lookup("enrichment", False)

            details, (suggestions, products), category, analysis = await asyncio.gather(
                self.generate_gift_details(gift, conversation_context),
                self._suggestions(gift.name, max_suggestions, include_suggestions),
                self.categorize_gift(gift.name),
                self._analysis(gift, conversation_context, include_analysis),
            )

            if analysis is not None and self.price_analyzer is not None:
                price_result = await self.price_analyzer.analyze_prices(
                    products, category.get("name") or gift.category or DEFAULT_CATEGORY
                )
                if price_result.success:
                    analysis.price_analysis = price_result.analysis

            age_ranges = category.get("ageRanges") or []
            enriched = EnrichedGift(
                id=gift.id,
                name=gift.name,
                category=category.get("name") or gift.category or DEFAULT_CATEGORY,
                confidence=gift.confidence,
                details=details,
                suggestions=suggestions,
                age_range=age_ranges[0] if age_ranges else None,
                keywords=list(category.get("keywords") or []),
                analysis=analysis,
            )

            await self._redis.set(key, json.dumps(enriched.to_dict()), ex=self.cache_ttl)
            metrics.record_enrichment(True)

            return EnrichmentResult(
                success=True,
                gift=enriched,
                metadata={
                    "cached": False,
                    "processing_time": int((self._clock() - start) * 1000),
                    "suggestion_count": len(suggestions),
                },
            )
        except GiftProcessingError as e:
            logger.warning(f"Gift enrichment rejected: {e}")
            metrics.record_enrichment(False)
            return EnrichmentResult(success=False, error=e.to_payload())
        except Exception as e:
            logger.error(f"Gift enrichment failed for {gift.name!r}: {e}")
            metrics.record_enrichment(False)
            return EnrichmentResult(success=False, error=ErrorPayload.from_exception(e, ENRICHMENT_FAILED))

    async def generate_gift_details(self, gift: Gift, context: str) -> str:
        prompt = GiftDetailsPrompt(gift_name=gift.name, context=context)
        return await self.llm.call_llm(prompt.to_prompt(), system_prompt=prompt.system_prompt())

    async def _suggestions(
        self, gift_name: str, count: int, include: bool
    ) -> Tuple[List[GiftSuggestion], List[ScrapedProduct]]:
        if not include:
            return [], []
        return await self.generate_suggestions(gift_name, count)

    async def generate_suggestions(
        self, gift_name: str, count: int
    ) -> Tuple[List[GiftSuggestion], List[ScrapedProduct]]:
        """LLM suggestions, each priced against backup product data."""
        prompt = GiftSuggestionsPrompt(gift_name=gift_name, count=count)
        data = await self.llm.call_llm_structured(
            prompt.to_prompt(), GIFT_SUGGESTIONS_SCHEMA, system_prompt=prompt.system_prompt()
        )
        raw = [s for s in data.get("suggestions", []) if s.get("name")][:count]

        searches = await asyncio.gather(*(self.backup_products.get_backup_products(s["name"]) for s in raw))

        suggestions = []
        products: List[ScrapedProduct] = []
        for item, search in zip(raw, searches):
            products.extend(search.products)
            suggestions.append(
                GiftSuggestion(
                    name=item["name"],
                    price_range=item.get("priceRange", ""),
                    search_url=self._search_url(item["name"]),
                    description=item.get("description", ""),
                    tier=item.get("tier", "midRange"),
                    confidence=item.get("confidence") or DEFAULT_SUGGESTION_CONFIDENCE,
                    price_analysis=search.price_analysis,
                )
            )
        return suggestions, products

    async def categorize_gift(self, gift_name: str) -> Dict[str, Any]:
        prompt = GiftCategoryPrompt(gift_name=gift_name)
        return await self.llm.call_llm_structured(
            prompt.to_prompt(), GIFT_CATEGORY_SCHEMA, system_prompt=prompt.system_prompt(), temperature=0.3
        )

    async def _analysis(self, gift: Gift, context: str, include: bool) -> Optional[GiftAnalysis]:
        if not include:
            return None
        return await self.analyze_gift(gift, context)

    async def analyze_gift(self, gift: Gift, context: str) -> GiftAnalysis:
        # Unpriced stand-in so category and price tracking can run on a bare gift name
        product = ScrapedProduct(
            title=gift.name,
            url=self._search_url(gift.name),
            price=0.0,
            rating=0.0,
            review_count=0,
        )

        category_analysis, tracking = await asyncio.gather(
            self.category_analyzer.analyze_product_category(product, gift.category or DEFAULT_CATEGORY),
            self.price_tracker.track_price(product),
        )

        volatility = 0.5
        if tracking.average_price and tracking.current_price:
            volatility = tracking.current_price / tracking.average_price

        return GiftAnalysis(
            sentiment=context_sentiment(context),
            popularity=category_analysis.category_score / 100,
            seasonality=seasonality(datetime.fromtimestamp(self._clock(), tz=timezone.utc)),
            availability=tracking.confidence,
            price_volatility=volatility,
            recommendation_strength=gift.confidence,
        )

    async def refresh_cache(self, gift_id: str) -> None:
        await self._redis.delete(self._cache_key(gift_id))

    async def clear_all_cache(self) -> int:
        keys = await self._redis.keys(f"{CACHE_PREFIX}*")
        if keys:
            await self._redis.delete(*keys)
        return len(keys)
