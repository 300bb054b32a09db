"""Tests for price history tracking and per-category price tiers."""

from unittest.mock import AsyncMock

import httpx
import pytest

from giftwise.analysis.keepa import SOURCE_KEEPA, PricePoint, parse_keepa_series
from giftwise.analysis.price_analyzer import BUDGET, MID_RANGE, PREMIUM, CategoryPriceAnalyzer
from giftwise.analysis.price_tracker import (
    GOOD_PRICE,
    HIGHLY_INFLATED,
    INFLATED_PRICE,
    LOWEST_PRICE,
    PRICE_STATUSES,
    REGULAR_PRICE,
    SOURCE_AMAZON,
    PriceTracker,
    classify_price_status,
    merge_price_data,
    price_volatility,
)
from giftwise.models import ScrapedProduct

DAY = 24 * 60 * 60
URL = "https://www.amazon.com/dp/B000TELE01?ref=sr_1"


def product(price, url=URL):
    return ScrapedProduct(title="Kids Telescope", url=url, price=price)


class TestClassifyPriceStatus:
    """Ordered thresholds against lowest and average."""

    def test_bands(self):
        assert classify_price_status(40.5, 40, 50) == LOWEST_PRICE
        assert classify_price_status(43, 40, 50) == GOOD_PRICE
        assert classify_price_status(52, 40, 50) == REGULAR_PRICE
        assert classify_price_status(59, 40, 50) == INFLATED_PRICE
        assert classify_price_status(61, 40, 50) == HIGHLY_INFLATED

    def test_monotonic_in_current_price(self):
        ranks = [
            PRICE_STATUSES.index(classify_price_status(price / 2, 40, 50))
            for price in range(60, 160)
        ]
        assert ranks == sorted(ranks)


class TestMergeAndVolatility:
    def test_third_party_supersedes_first_party_for_a_day(self):
        amazon = [PricePoint(50, "2024-01-01", SOURCE_AMAZON), PricePoint(52, "2024-01-02", SOURCE_AMAZON)]
        keepa = [PricePoint(48, "2024-01-01", SOURCE_KEEPA)]

        merged = merge_price_data(amazon, keepa)

        assert [(p.date, p.price, p.source) for p in merged] == [
            ("2024-01-01", 48, SOURCE_KEEPA),
            ("2024-01-02", 52, SOURCE_AMAZON),
        ]

    def test_first_party_does_not_replace_third_party(self):
        keepa = [PricePoint(48, "2024-01-01", SOURCE_KEEPA)]
        amazon = [PricePoint(50, "2024-01-01", SOURCE_AMAZON)]
        assert merge_price_data(keepa, amazon)[0].source == SOURCE_KEEPA

    def test_volatility(self):
        history = [PricePoint(p, f"2024-01-0{i}", SOURCE_AMAZON) for i, p in enumerate([100, 110, 99], 1)]
        assert price_volatility(history) == pytest.approx((0.1 + 0.1) / 2)
        assert price_volatility(history[:1]) == 0.0


class TestKeepaSeries:
    def test_parses_minutes_and_cents(self):
        points = parse_keepa_series([0, 1999, 1440, -1, 2880, 2499])
        assert [(p.date, p.price) for p in points] == [("2011-01-01", 19.99), ("2011-01-03", 24.99)]

    def test_since_filter(self):
        since_ms = (21_564_000 + 1440) * 60_000
        points = parse_keepa_series([0, 1999, 2880, 2499], since_ms=since_ms)
        assert [p.date for p in points] == ["2011-01-03"]


class TestPriceTracker:
    """Redis-backed first-party history merged with Keepa."""

    @pytest.mark.asyncio
    async def test_empty_history(self, fake_redis, clock, test_settings):
        tracker = PriceTracker(fake_redis, settings=test_settings, clock=clock)

        analysis = await tracker.track_price(product(0))

        assert analysis.price_status == REGULAR_PRICE
        assert analysis.confidence == 0
        assert analysis.lowest_price == analysis.highest_price == analysis.average_price == 0
        assert await tracker.get_price_history(URL) == []

    @pytest.mark.asyncio
    async def test_history_accumulates(self, fake_redis, clock, test_settings):
        tracker = PriceTracker(fake_redis, settings=test_settings, clock=clock)

        for price in (50, 40, 45):
            analysis = await tracker.track_price(product(price))
            clock.advance(DAY)

        assert analysis.lowest_price == 40
        assert analysis.highest_price == 50
        assert analysis.average_price == 45
        assert analysis.price_status == REGULAR_PRICE
        assert analysis.confidence == pytest.approx(0.5 + 3 / 90 * 0.3 + 0.2 / 3)
        assert len(await tracker.get_price_history("https://www.amazon.com/dp/B000TELE01")) == 3

    @pytest.mark.asyncio
    async def test_old_points_pruned(self, fake_redis, clock, test_settings):
        tracker = PriceTracker(fake_redis, settings=test_settings, clock=clock)

        await tracker.track_price(product(50))
        clock.advance(91 * DAY)
        await tracker.track_price(product(45))

        history = await tracker.get_price_history(URL)
        assert [p.price for p in history] == [45]

    @pytest.mark.asyncio
    async def test_third_party_history_merged(self, fake_redis, clock, test_settings):
        keepa = AsyncMock()
        keepa.fetch.return_value = [
            PricePoint(39.0, "2023-11-01", SOURCE_KEEPA),
            PricePoint(41.0, "2023-11-02", SOURCE_KEEPA),
        ]
        tracker = PriceTracker(fake_redis, settings=test_settings, keepa=keepa, clock=clock)

        analysis = await tracker.track_price(product(60))

        assert analysis.lowest_price == 39.0
        assert len(analysis.price_history) == 3
        assert analysis.price_status == HIGHLY_INFLATED

    @pytest.mark.asyncio
    async def test_third_party_failure_ignored(self, fake_redis, clock, test_settings):
        keepa = AsyncMock()
        keepa.fetch.side_effect = httpx.ConnectError("keepa down")
        tracker = PriceTracker(fake_redis, settings=test_settings, keepa=keepa, clock=clock)

        analysis = await tracker.track_price(product(30))

        assert analysis.lowest_price == 30
        assert analysis.price_status == LOWEST_PRICE


class TestCategoryPriceAnalyzer:
    """Fixed budget/midRange/premium bands per category."""

    @pytest.mark.asyncio
    async def test_buckets_and_caches(self, fake_redis, clock, test_settings):
        analyzer = CategoryPriceAnalyzer(fake_redis, settings=test_settings, clock=clock)
        products = [product(p, url=f"https://www.amazon.com/dp/B00000000{i}") for i, p in enumerate([10, 25, 60, 0])]

        result = await analyzer.analyze_prices(products, "Toys")

        assert (result.min, result.max, result.median) == (10, 60, 25)
        assert result.prices_by_tier == {BUDGET: [10], MID_RANGE: [25], PREMIUM: [60]}
        cached = await analyzer.get_category_price_stats("Toys")
        assert cached.median == 25

    @pytest.mark.asyncio
    async def test_nothing_priced(self, fake_redis, clock, test_settings):
        analyzer = CategoryPriceAnalyzer(fake_redis, settings=test_settings, clock=clock)

        result = await analyzer.analyze_prices([product(0)], "Toys")

        assert result.max == 0
        assert result.prices_by_tier[BUDGET] == []
        assert await analyzer.get_category_price_stats("Toys") is None

    def test_price_tier(self, fake_redis):
        analyzer = CategoryPriceAnalyzer(fake_redis)
        assert analyzer.get_price_tier(35, "Toys") == MID_RANGE
        assert analyzer.get_price_tier(35, "Unknown") == MID_RANGE
        assert analyzer.get_price_tier(600, "Electronics") == PREMIUM
        assert analyzer.get_price_tier(12, None) == BUDGET
