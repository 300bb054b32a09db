"""Review sentiment analysis backed by the LLM, cached per product URL."""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis.asyncio as redis
from selectolax.parser import HTMLParser

from giftwise.ai.llm_service import LLMService
from giftwise.ai.prompts import SENTIMENT_SCHEMA, SentimentPrompt
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import ScrapingError
from giftwise.ingest.http_client import ScrapeClient
from giftwise.models import ProductReview, extract_asin, normalize_url

logger = logging.getLogger(__name__)

REVIEW_URL = "https://www.amazon.com/product-reviews/{asin}"
REVIEW_SELECTOR = '.review, [data-hook="review"]'
RECENT_DAYS = 90

_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")
_DATE_SUFFIX_RE = re.compile(r"\bon (.+)$")


@dataclass
class AspectSentiment:
    score: float
    mentions: int = 0
    examples: List[str] = field(default_factory=list)


@dataclass
class ReviewSentiment:
    """Aggregated review sentiment for one product."""

    overall: float  # -1 to 1
    aspects: Dict[str, AspectSentiment] = field(default_factory=dict)
    positive_keywords: List[str] = field(default_factory=list)
    negative_keywords: List[str] = field(default_factory=list)
    summary_points: List[str] = field(default_factory=list)
    confidence: float = 0.0
    review_count: int = 0

    def aspect_score(self, name: str) -> Optional[float]:
        aspect = self.aspects.get(name)
        return aspect.score if aspect else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "aspects": {
                k: {"score": a.score, "mentions": a.mentions, "examples": a.examples}
                for k, a in self.aspects.items()
            },
            "keywords": {"positive": self.positive_keywords, "negative": self.negative_keywords},
            "summaryPoints": self.summary_points,
            "confidence": self.confidence,
            "reviewCount": self.review_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewSentiment":
        keywords = data.get("keywords") or {}
        aspects = {}
        for name, value in (data.get("aspects") or {}).items():
            if not isinstance(value, dict):
                continue
            aspects[name] = AspectSentiment(
                score=_clamp(float(value.get("score", 0))),
                mentions=int(value.get("mentions", 0)),
                examples=list(value.get("examples") or []),
            )
        return cls(
            overall=_clamp(float(data.get("overall", 0))),
            aspects=aspects,
            positive_keywords=list(keywords.get("positive") or []),
            negative_keywords=list(keywords.get("negative") or []),
            summary_points=list(data.get("summaryPoints") or []),
            confidence=float(data.get("confidence", 0)),
            review_count=int(data.get("reviewCount", 0)),
        )


def _clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def neutral_sentiment() -> ReviewSentiment:
    return ReviewSentiment(overall=0.0, confidence=0.0)


def parse_review_date(text: str) -> Optional[datetime]:
    """Parse ``Reviewed in ... on March 3, 2024`` or an ISO date."""
    text = text.strip()
    if not text:
        return None
    match = _DATE_SUFFIX_RE.search(text)
    candidate = match.group(1).strip() if match else text
    for fmt in ("%B %d, %Y", "%d %B %Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(candidate, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _first_number(text: Optional[str]) -> float:
    if not text:
        return 0.0
    match = _NUMBER_RE.search(text)
    return float(match.group(0).replace(",", "")) if match else 0.0


def parse_reviews(html: str) -> List[ProductReview]:
    """Extract reviews from a product reviews page."""
    reviews = []
    for node in HTMLParser(html).css(REVIEW_SELECTOR):
        text_elem = node.css_first(".review-text") or node.css_first('[data-hook="review-body"]')
        text = text_elem.text(strip=True) if text_elem else ""
        if not text:
            continue
        rating_elem = node.css_first(".review-rating") or node.css_first('[data-hook="review-star-rating"]')
        helpful_elem = node.css_first(".helpful-votes") or node.css_first('[data-hook="helpful-vote-statement"]')
        date_elem = node.css_first(".review-date") or node.css_first('[data-hook="review-date"]')
        verified = (
            node.css_first(".verified-purchase") is not None
            or node.css_first('[data-hook="avp-badge"]') is not None
        )
        reviews.append(
            ProductReview(
                text=text,
                rating=_first_number(rating_elem.text() if rating_elem else None),
                date=date_elem.text(strip=True) if date_elem else "",
                verified=verified,
                helpful=int(_first_number(helpful_elem.text() if helpful_elem else None)),
            )
        )
    return reviews


def review_confidence(reviews: Sequence[ProductReview], now: datetime) -> float:
    """
    0.5 base, up to 0.3 for volume (100 reviews), 0.1 for verified share
    and 0.1 for the share posted in the last three months.
    """
    if not reviews:
        return 0.0
    total = len(reviews)
    confidence = 0.5
    confidence += min(total / 100, 1) * 0.3
    confidence += sum(1 for r in reviews if r.verified) / total * 0.1

    recent = 0
    for review in reviews:
        posted = parse_review_date(review.date)
        if posted and (now - posted).days <= RECENT_DAYS:
            recent += 1
    confidence += recent / total * 0.1

    return min(confidence, 1.0)


class SentimentAnalyzer:
    """
    Scrapes a product's reviews and asks the LLM for an aspect breakdown.

    Results are cached for a week per normalized URL. Concurrent requests
    for the same URL share one computation. LLM failures yield a neutral
    result with zero confidence that is not cached.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        llm: LLMService,
        scrape_client: Optional[ScrapeClient] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.llm = llm
        self.scrape_client = scrape_client
        self.cache_ttl = settings.sentiment_cache_ttl
        self._clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}

    @staticmethod
    def _cache_key(url: str) -> str:
        return f"sentiment:{normalize_url(url)}"

    async def analyze_product_sentiment(self, url: str) -> ReviewSentiment:
        key = self._cache_key(url)
        cached = await self._redis.get(key)
        if cached:
            return ReviewSentiment.from_dict(json.loads(cached))

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(url, key))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _compute(self, url: str, key: str) -> ReviewSentiment:
        reviews = await self.fetch_product_reviews(url)
        if not reviews:
            return neutral_sentiment()

        sentiment = await self.analyze_reviews(reviews)
        if sentiment.confidence > 0:
            await self._redis.set(key, json.dumps(sentiment.to_dict()), ex=self.cache_ttl)
        return sentiment

    async def fetch_product_reviews(self, url: str) -> List[ProductReview]:
        asin = extract_asin(url)
        if not asin or self.scrape_client is None:
            return []
        try:
            html = await self.scrape_client.fetch(REVIEW_URL.format(asin=asin))
        except ScrapingError as e:
            logger.error(f"Error fetching reviews for {asin}: {e}")
            return []
        return parse_reviews(html)

    async def analyze_reviews(self, reviews: Sequence[ProductReview]) -> ReviewSentiment:
        """LLM aspect analysis plus locally computed confidence."""
        prompt = SentimentPrompt(
            reviews=[
                {
                    "text": r.text,
                    "rating": r.rating,
                    "verified": r.verified,
                    "helpful": r.helpful,
                    "date": r.date,
                }
                for r in reviews
            ]
        )
        try:
            data = await self.llm.call_llm_structured(
                prompt.to_prompt(), SENTIMENT_SCHEMA, system_prompt=prompt.system_prompt()
            )
            sentiment = ReviewSentiment.from_dict(data)
        except Exception as e:
            logger.warning(f"Sentiment analysis failed, using neutral sentiment: {e}")
            return neutral_sentiment()

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        sentiment.confidence = review_confidence(reviews, now)
        sentiment.review_count = len(reviews)
        return sentiment
