"""Tests for product quality indicators."""

from unittest.mock import AsyncMock

import pytest

from giftwise.analysis.price_tracker import HIGHLY_INFLATED, LOWEST_PRICE, REGULAR_PRICE, PriceAnalysis
from giftwise.analysis.quality_indicators import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    QualityAnalyzer,
    calculate_overall_score,
    calculate_reliability,
    determine_flags,
)
from giftwise.analysis.sentiment_analyzer import AspectSentiment, ReviewSentiment, neutral_sentiment
from giftwise.models import ScrapedProduct


def make_product(**kwargs):
    values = dict(
        title="Celestron Kids Telescope",
        url="https://www.amazon.com/dp/B000TELE01",
        price=40.0,
        rating=4.9,
        review_count=2000,
        prime=True,
        best_seller=True,
        brand="Celestron",
    )
    values.update(kwargs)
    return ScrapedProduct(**values)


def make_price(status=LOWEST_PRICE, **kwargs):
    values = dict(
        current_price=40.0,
        lowest_price=40.0,
        highest_price=55.0,
        average_price=48.0,
        price_status=status,
        confidence=0.8,
    )
    values.update(kwargs)
    return PriceAnalysis(**values)


def make_sentiment():
    return ReviewSentiment(
        overall=0.6,
        aspects={
            "durability": AspectSentiment(score=0.9, mentions=3),
            "reliability": AspectSentiment(score=-0.6, mentions=2),
        },
        summary_points=["+ Sharp optics", "- Tripod wobbles"],
        confidence=0.7,
        review_count=40,
    )


class TestScoring:
    """Pure scoring helpers."""

    def test_reliability_capped(self):
        score, factors = calculate_reliability(make_product())
        assert score == 1.0
        assert factors == [
            "High review count",
            "Consistently high ratings",
            "Well-established product",
            "Known brand",
            "Prime eligible",
        ]

    def test_reliability_sparse_listing(self):
        score, factors = calculate_reliability(make_product(rating=4.2, review_count=0, brand=None, prime=False))
        assert score == 0.5
        assert factors == []

    def test_overall_score(self):
        score = calculate_overall_score(make_product(), make_price(), make_sentiment(), 1.0)
        assert score == pytest.approx(76.0)

    def test_overall_score_clamped(self):
        product = make_product(rating=1.0, review_count=3, prime=False, best_seller=False, sponsored=True)
        price = make_price(HIGHLY_INFLATED)
        sentiment = ReviewSentiment(overall=-1.0)
        assert calculate_overall_score(product, price, sentiment, 0.0) == 0.0

    def test_flags(self):
        product = make_product(sponsored=True)
        price = make_price(HIGHLY_INFLATED, volatility=0.35)
        flags = determine_flags(product, price, ReviewSentiment(overall=-0.2))
        assert flags == [
            "⚠️ Price Currently Inflated",
            "📊 Frequent Price Changes",
            "⚠️ Mixed Reviews",
            "🔍 Sponsored Listing",
        ]


class TestQualityAnalyzer:
    """Combining price history and sentiment."""

    def setup_method(self):
        self.price_tracker = AsyncMock()
        self.price_tracker.track_price.return_value = make_price()
        self.sentiment_analyzer = AsyncMock()
        self.sentiment_analyzer.analyze_product_sentiment.return_value = make_sentiment()
        self.analyzer = QualityAnalyzer(self.price_tracker, self.sentiment_analyzer)

    @pytest.mark.asyncio
    async def test_analyze_product(self):
        analysis = await self.analyzer.analyze_product(make_product())

        assert analysis.overall_score == pytest.approx(76.0)
        assert analysis.savings == 15.0
        assert analysis.highlights == ["+ Sharp optics"]
        assert analysis.concerns == ["- Tripod wobbles"]
        assert "🏷️ All-Time Low Price" in analysis.badges
        assert "⭐ Top Rated" in analysis.badges
        assert "🛡️ Proven Durability" in analysis.badges
        assert "❤️ Highly Recommended" not in analysis.badges
        assert analysis.flags == ["⚠️ Recent Quality Concerns"]
        assert analysis.durability_prediction == 5.9

        complaint = analysis.quality_issues[0]
        assert complaint.issue == "Complaints about reliability"
        assert complaint.severity == SEVERITY_HIGH
        assert complaint.frequency == 2

    @pytest.mark.asyncio
    async def test_sentiment_skipped(self):
        analysis = await self.analyzer.analyze_product(make_product(), include_sentiment=False)

        self.sentiment_analyzer.analyze_product_sentiment.assert_not_awaited()
        assert analysis.sentiment_score == neutral_sentiment().overall
        assert analysis.flags == []

    @pytest.mark.asyncio
    async def test_quality_issues_for_weak_listing(self):
        self.price_tracker.track_price.return_value = make_price(REGULAR_PRICE)
        self.sentiment_analyzer.analyze_product_sentiment.return_value = neutral_sentiment()

        analysis = await self.analyzer.analyze_product(make_product(rating=4.3, review_count=30, sponsored=True))

        issues = {i.issue: i for i in analysis.quality_issues}
        assert issues["Below-average rating"].impact == pytest.approx(0.2)
        assert issues["Limited review history"].severity == SEVERITY_LOW
        assert issues["Limited review history"].frequency == 30
        assert "Sponsored listing" in issues

    @pytest.mark.asyncio
    async def test_display_tags_and_report(self):
        self.price_tracker.track_price.return_value = make_price(highest_price=80.0)
        product = make_product()

        analysis = await self.analyzer.analyze_product(product)
        tags = self.analyzer.get_display_tags(product, analysis)
        report = await self.analyzer.get_detailed_quality_report(product)

        assert tags == ["🏷️ Lowest Price Ever", "⭐ Top Rated Product", "💰 Save 100%"]
        assert report.startswith("Product Quality Report for Celestron Kids Telescope")
        assert "Potential Savings: $40.00" in report
        assert "✓ + Sharp optics" in report
