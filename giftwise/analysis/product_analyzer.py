"""Product analysis orchestrator: category, price, quality and sentiment in one pass."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from giftwise import metrics
from giftwise.analysis.category_quality import CategoryAnalysis, CategoryQualityAnalyzer
from giftwise.analysis.price_tracker import PriceAnalysis, PriceTracker
from giftwise.analysis.quality_indicators import SEVERITY_LOW, QualityAnalyzer, QualityIndicators
from giftwise.analysis.sentiment_analyzer import ReviewSentiment, SentimentAnalyzer, parse_review_date
from giftwise.errors import ErrorPayload
from giftwise.models import ProductReview, ScrapedProduct

logger = logging.getLogger(__name__)

ANALYSIS_FAILED = "ANALYSIS_FAILED"
DEFAULT_CATEGORY = "General"

# Per-signal weights. Skipped signals contribute 0 and the remaining
# weights are not rescaled, so skipping an analysis lowers confidence.
CONFIDENCE_WEIGHTS = {
    "category": 0.4,
    "price": 0.2,
    "quality": 0.2,
    "sentiment": 0.2,
}

DEPTH_MULTIPLIERS = {
    "basic": 0.7,
    "standard": 0.85,
    "deep": 0.95,
    "comprehensive": 1.0,
}

AI_CONFIDENCE = 0.85


@dataclass
class ConfidenceMetrics:
    data_points: int
    timespan: int  # ms between oldest and newest review
    verified_purchases: int
    review_quality: float
    overall_confidence: float
    ai_confidence: float
    data_reliability: float


@dataclass
class QualityAssessment:
    overall_score: float
    strength_factors: List[str]
    weakness_factors: List[str]
    reliability_score: float
    longevity_prediction: str


@dataclass
class CustomerSentiment:
    overall: float
    breakdown: Dict[str, Any] = field(default_factory=dict)
    key_phrases: List[str] = field(default_factory=list)
    emerging_issues: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)


@dataclass
class ProductAnalysis:
    category_analysis: CategoryAnalysis
    price_analysis: Optional[PriceAnalysis]
    confidence_metrics: ConfidenceMetrics
    quality_assessment: QualityAssessment
    customer_sentiment: CustomerSentiment
    badges: List[str]
    flags: List[str]


@dataclass
class AnalysisResult:
    """``success`` plus either the analysis or a structured error."""

    success: bool
    analysis: Optional[ProductAnalysis] = None
    error: Optional[ErrorPayload] = None


def combined_confidence(scores: Dict[str, float]) -> float:
    return sum(score * CONFIDENCE_WEIGHTS[name] for name, score in scores.items())


def review_timespan(reviews: Sequence[ProductReview]) -> int:
    dates = [d for d in (parse_review_date(r.date) for r in reviews) if d]
    if not dates:
        return 0
    return int((max(dates) - min(dates)).total_seconds() * 1000)


def review_quality(reviews: Sequence[ProductReview]) -> float:
    """Average helpful votes, verified reviews weighted 1.5x."""
    if not reviews:
        return 0.0
    return sum(r.helpful * (1.5 if r.verified else 1) for r in reviews) / len(reviews)


def data_reliability(reviews: Sequence[ProductReview], depth: str) -> float:
    if not reviews:
        return 0.0
    volume = min(len(reviews) / 100, 1)
    verified_ratio = sum(1 for r in reviews if r.verified) / len(reviews)
    depth_factor = 1.0 if depth == "comprehensive" else 0.8
    return volume * verified_ratio * depth_factor


def default_customer_sentiment() -> CustomerSentiment:
    return CustomerSentiment(overall=0.5)


class ProductAnalyzer:
    """
    Runs the category, price, quality and sentiment analyses concurrently
    and folds them into one confidence-weighted result.

    Never raises: failures come back as ``AnalysisResult(success=False)``.
    """

    def __init__(
        self,
        category_analyzer: CategoryQualityAnalyzer,
        price_tracker: PriceTracker,
        quality_analyzer: QualityAnalyzer,
        sentiment_analyzer: SentimentAnalyzer,
    ):
        self.category_analyzer = category_analyzer
        self.price_tracker = price_tracker
        self.quality_analyzer = quality_analyzer
        self.sentiment_analyzer = sentiment_analyzer

    async def _optional(self, enabled: bool, coro_factory):
        if not enabled:
            return None
        return await coro_factory()

    async def analyze_product(
        self,
        product: ScrapedProduct,
        depth: str = "standard",
        include_price: bool = False,
        include_sentiment: bool = False,
        force_refresh: bool = False,
    ) -> AnalysisResult:
        if depth not in DEPTH_MULTIPLIERS:
            return AnalysisResult(
                success=False,
                error=ErrorPayload(ANALYSIS_FAILED, f"Unknown analysis depth: {depth}", recoverable=False),
            )

        try:
            category, price, quality, sentiment = await asyncio.gather(
                self.category_analyzer.analyze_product_category(
                    product, product.category or DEFAULT_CATEGORY, force_refresh=force_refresh
                ),
                self._optional(include_price, lambda: self.price_tracker.track_price(product)),
                self.quality_analyzer.analyze_product(product, include_sentiment=include_sentiment),
                self._optional(
                    include_sentiment,
                    lambda: self.sentiment_analyzer.analyze_product_sentiment(product.url),
                ),
            )
        except Exception as e:
            logger.error(f"Product analysis failed for {product.url}: {e}")
            return AnalysisResult(success=False, error=ErrorPayload.from_exception(e, ANALYSIS_FAILED))

        confidence = combined_confidence({
            "category": category.confidence,
            "price": price.confidence if price else 0.0,
            "quality": quality.overall_score / 100,
            "sentiment": sentiment.confidence if sentiment else 0.0,
        })
        confidence_metrics = self.confidence_metrics(product, confidence, depth)
        metrics.analysis_confidence.observe(confidence_metrics.overall_confidence)

        return AnalysisResult(
            success=True,
            analysis=ProductAnalysis(
                category_analysis=category,
                price_analysis=price,
                confidence_metrics=confidence_metrics,
                quality_assessment=self._quality_assessment(quality),
                customer_sentiment=self._customer_sentiment(sentiment),
                badges=quality.badges,
                flags=quality.flags,
            ),
        )

    @staticmethod
    def confidence_metrics(product: ScrapedProduct, overall: float, depth: str) -> ConfidenceMetrics:
        reviews = product.reviews
        return ConfidenceMetrics(
            data_points=len(reviews),
            timespan=review_timespan(reviews),
            verified_purchases=sum(1 for r in reviews if r.verified),
            review_quality=review_quality(reviews),
            overall_confidence=overall * DEPTH_MULTIPLIERS[depth],
            ai_confidence=AI_CONFIDENCE,
            data_reliability=data_reliability(reviews, depth),
        )

    @staticmethod
    def _quality_assessment(quality: QualityIndicators) -> QualityAssessment:
        return QualityAssessment(
            overall_score=quality.overall_score,
            strength_factors=quality.reliability_factors,
            weakness_factors=[i.issue for i in quality.quality_issues if i.severity != SEVERITY_LOW],
            reliability_score=quality.reliability_score,
            longevity_prediction=f"Expected to last {quality.durability_prediction:.1f} years under normal use",
        )

    @staticmethod
    def _customer_sentiment(sentiment: Optional[ReviewSentiment]) -> CustomerSentiment:
        if sentiment is None:
            return default_customer_sentiment()
        return CustomerSentiment(
            overall=sentiment.overall,
            breakdown={
                name: {"score": a.score, "mentions": a.mentions, "examples": a.examples}
                for name, a in sentiment.aspects.items()
            },
            key_phrases=sentiment.positive_keywords,
            emerging_issues=sentiment.negative_keywords,
            improvements=sentiment.summary_points,
        )
