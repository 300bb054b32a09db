"""Product quality scoring: reliability, badges, flags and a text report."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from giftwise.analysis.price_tracker import (
    GOOD_PRICE,
    HIGHLY_INFLATED,
    INFLATED_PRICE,
    LOWEST_PRICE,
    REGULAR_PRICE,
    PriceAnalysis,
    PriceTracker,
)
from giftwise.analysis.sentiment_analyzer import ReviewSentiment, SentimentAnalyzer, neutral_sentiment
from giftwise.models import ScrapedProduct

logger = logging.getLogger(__name__)

PRICE_STATUS_POINTS = {
    LOWEST_PRICE: 20,
    GOOD_PRICE: 15,
    REGULAR_PRICE: 10,
    INFLATED_PRICE: 5,
    HIGHLY_INFLATED: 0,
}

PRICE_STATUS_TAGS = {
    LOWEST_PRICE: "🏷️ Lowest Price Ever",
    GOOD_PRICE: "👍 Good Deal",
    REGULAR_PRICE: "💲 Regular Price",
    INFLATED_PRICE: "📈 Price Inflated",
    HIGHLY_INFLATED: "⚠️ Highly Inflated",
}

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"


@dataclass(frozen=True)
class QualityConfig:
    min_review_count: int = 100
    min_rating: float = 4.5
    min_sentiment_score: float = 0.7
    prefer_verified: bool = True


@dataclass
class QualityIssue:
    issue: str
    severity: str
    frequency: int = 1
    impact: float = 0.0


@dataclass
class QualityIndicators:
    """Everything the quality pass knows about one product."""

    overall_score: float
    price_status: str
    price_confidence: float
    savings: Optional[float]
    reliability_score: float
    reliability_factors: List[str]
    sentiment_score: float
    highlights: List[str]
    concerns: List[str]
    badges: List[str]
    flags: List[str]
    quality_issues: List[QualityIssue] = field(default_factory=list)
    durability_prediction: float = 0.0  # years

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "price_value": {
                "status": self.price_status,
                "confidence": self.price_confidence,
                "savings": self.savings,
            },
            "reliability": {"score": self.reliability_score, "factors": self.reliability_factors},
            "sentiment": {
                "score": self.sentiment_score,
                "highlights": self.highlights,
                "concerns": self.concerns,
            },
            "badges": self.badges,
            "flags": self.flags,
            "quality_issues": [vars(i) for i in self.quality_issues],
            "durability_prediction": self.durability_prediction,
        }


def calculate_reliability(product: ScrapedProduct) -> tuple[float, List[str]]:
    factors: List[str] = []
    score = 0.5

    score += min(product.review_count / 1000, 1) * 0.2
    if product.review_count > 500:
        factors.append("High review count")

    if product.rating >= 4.8:
        score += 0.1
        factors.append("Consistently high ratings")
    elif product.rating >= 4.5:
        score += 0.05
        factors.append("Very good ratings")

    if product.review_count > 1000:
        score += 0.1
        factors.append("Well-established product")

    if product.brand:
        score += 0.1
        factors.append("Known brand")

    if product.prime:
        score += 0.05
        factors.append("Prime eligible")

    return min(score, 1.0), factors


def calculate_overall_score(
    product: ScrapedProduct,
    price: PriceAnalysis,
    sentiment: ReviewSentiment,
    reliability: float,
) -> float:
    """0-100: rating, price value, sentiment and reliability plus listing adjustments."""
    score = (product.rating - 4) * 10
    score += PRICE_STATUS_POINTS.get(price.price_status, 0) * price.confidence
    score += (sentiment.overall + 1) * 10
    score += reliability * 20

    if product.prime:
        score += 5
    if product.best_seller:
        score += 5
    if product.review_count > 1000:
        score += 5
    if product.sponsored:
        score -= 5

    return round(min(max(score, 0.0), 100.0), 1)


def determine_badges(product: ScrapedProduct, price: PriceAnalysis, sentiment: ReviewSentiment) -> List[str]:
    badges = []

    if price.price_status == LOWEST_PRICE:
        badges.append("🏷️ All-Time Low Price")
    elif price.price_status == GOOD_PRICE:
        badges.append("👍 Great Value")

    if product.rating >= 4.8 and product.review_count > 1000:
        badges.append("⭐ Top Rated")
    if product.best_seller:
        badges.append("🏆 Bestseller")
    if product.prime:
        badges.append("🚚 Prime Shipping")

    if sentiment.overall > 0.8:
        badges.append("❤️ Highly Recommended")
    if (sentiment.aspect_score("durability") or 0) > 0.8:
        badges.append("🛡️ Proven Durability")
    if (sentiment.aspect_score("value") or 0) > 0.8:
        badges.append("💰 Great Value for Money")

    return badges


def determine_flags(product: ScrapedProduct, price: PriceAnalysis, sentiment: ReviewSentiment) -> List[str]:
    flags = []

    if price.price_status == HIGHLY_INFLATED:
        flags.append("⚠️ Price Currently Inflated")
    if price.volatility > 0.3:
        flags.append("📊 Frequent Price Changes")

    if sentiment.overall < 0:
        flags.append("⚠️ Mixed Reviews")
    if product.sponsored:
        flags.append("🔍 Sponsored Listing")

    reliability_aspect = sentiment.aspect_score("reliability")
    if reliability_aspect is not None and reliability_aspect < 0:
        flags.append("⚠️ Recent Quality Concerns")

    return flags


class QualityAnalyzer:
    """Combines price history and review sentiment into quality indicators."""

    def __init__(
        self,
        price_tracker: PriceTracker,
        sentiment_analyzer: SentimentAnalyzer,
        config: Optional[QualityConfig] = None,
    ):
        self.price_tracker = price_tracker
        self.sentiment_analyzer = sentiment_analyzer
        self.config = config or QualityConfig()

    async def _sentiment(self, product: ScrapedProduct, include: bool) -> ReviewSentiment:
        if not include:
            return neutral_sentiment()
        return await self.sentiment_analyzer.analyze_product_sentiment(product.url)

    async def analyze_product(self, product: ScrapedProduct, include_sentiment: bool = True) -> QualityIndicators:
        price, sentiment = await asyncio.gather(
            self.price_tracker.track_price(product),
            self._sentiment(product, include_sentiment),
        )

        reliability, factors = calculate_reliability(product)

        return QualityIndicators(
            overall_score=calculate_overall_score(product, price, sentiment, reliability),
            price_status=price.price_status,
            price_confidence=price.confidence,
            savings=price.highest_price - product.price if price.highest_price else None,
            reliability_score=reliability,
            reliability_factors=factors,
            sentiment_score=sentiment.overall,
            highlights=[p for p in sentiment.summary_points if "+" in p],
            concerns=[p for p in sentiment.summary_points if "-" in p],
            badges=determine_badges(product, price, sentiment),
            flags=determine_flags(product, price, sentiment),
            quality_issues=self.find_quality_issues(product, price, sentiment),
            durability_prediction=self.predict_durability(reliability, sentiment),
        )

    def find_quality_issues(
        self,
        product: ScrapedProduct,
        price: PriceAnalysis,
        sentiment: ReviewSentiment,
    ) -> List[QualityIssue]:
        issues = []

        if product.rating < self.config.min_rating:
            severity = SEVERITY_MEDIUM if product.rating >= 4.0 else SEVERITY_HIGH
            issues.append(QualityIssue("Below-average rating", severity, impact=self.config.min_rating - product.rating))

        if product.review_count < self.config.min_review_count:
            issues.append(QualityIssue("Limited review history", SEVERITY_LOW, frequency=product.review_count))

        if sentiment.overall < 0:
            issues.append(QualityIssue("Mixed customer sentiment", SEVERITY_HIGH, impact=abs(sentiment.overall)))

        for name, aspect in sentiment.aspects.items():
            if aspect.score < 0:
                severity = SEVERITY_HIGH if aspect.score <= -0.5 else SEVERITY_MEDIUM
                issues.append(
                    QualityIssue(f"Complaints about {name}", severity, frequency=aspect.mentions, impact=abs(aspect.score))
                )

        if price.price_status == HIGHLY_INFLATED:
            issues.append(QualityIssue("Price currently inflated", SEVERITY_MEDIUM))
        elif price.price_status == INFLATED_PRICE:
            issues.append(QualityIssue("Price above average", SEVERITY_LOW))

        if product.sponsored:
            issues.append(QualityIssue("Sponsored listing", SEVERITY_LOW))

        return issues

    @staticmethod
    def predict_durability(reliability: float, sentiment: ReviewSentiment) -> float:
        """Expected years of normal use: reliability scaled, nudged by the durability aspect."""
        years = 1.0 + reliability * 4
        durability = sentiment.aspect_score("durability")
        if durability is not None:
            years += durability
        return round(max(years, 0.5), 1)

    def get_display_tags(self, product: ScrapedProduct, analysis: QualityIndicators) -> List[str]:
        tags = [PRICE_STATUS_TAGS[analysis.price_status]]

        if product.rating >= 4.8 and product.review_count > 1000:
            tags.append("⭐ Top Rated Product")

        if analysis.sentiment_score > 0.8:
            tags.append("💎 High Value")

        if analysis.savings and analysis.savings > 20 and product.price > 0:
            tags.append(f"💰 Save {round(analysis.savings / product.price * 100)}%")

        return tags

    async def get_detailed_quality_report(self, product: ScrapedProduct) -> str:
        analysis = await self.analyze_product(product)

        lines = [
            f"Product Quality Report for {product.title}",
            "",
            f"Overall Score: {analysis.overall_score}/100",
            "",
            "Price Analysis:",
            f"- Status: {analysis.price_status}",
            f"- Confidence: {round(analysis.price_confidence * 100)}%",
        ]
        if analysis.savings:
            lines.append(f"- Potential Savings: ${analysis.savings:.2f}")

        lines += ["", "Reliability:"] + [f"- {f}" for f in analysis.reliability_factors]
        lines += ["", "Sentiment Highlights:"] + [f"✓ {h}" for h in analysis.highlights]
        if analysis.concerns:
            lines += ["", "Concerns:"] + [f"! {c}" for c in analysis.concerns]
        lines += ["", "Badges:"] + analysis.badges
        if analysis.flags:
            lines += ["", "Flags:"] + analysis.flags

        return "\n".join(lines).strip()
