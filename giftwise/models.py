"""Core data types shared across the scraping and analysis layers."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Optional


def _known_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def now_ms(clock=time.time) -> int:
    """Current time in epoch milliseconds."""
    return int(clock() * 1000)


@dataclass
class Proxy:
    """Outbound proxy endpoint with rotation state."""

    host: str
    port: int
    protocol: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None
    last_used: int = 0  # epoch ms
    fail_count: int = 0
    response_time: int = 0  # ms, 0 = unknown
    success_count: int = 0
    enabled: bool = True

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        """Get proxy URL for httpx."""
        if self.username and self.password:
            return f"{self.protocol}://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"{self.protocol}://{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Proxy":
        return cls(**_known_fields(cls, data))


@dataclass
class UserAgent:
    """User agent string with its last use timestamp."""

    string: str
    last_used: int = 0  # epoch ms

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserAgent":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class ProductReview:
    """A single customer review."""

    text: str
    rating: float = 0.0
    date: str = ""
    verified: bool = False
    helpful: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductReview":
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class ScrapedProduct:
    """Immutable snapshot of a product listing."""

    title: str
    url: str
    price: float
    rating: float = 0.0
    review_count: int = 0
    prime: bool = False
    sponsored: bool = False
    best_seller: bool = False
    features: tuple[str, ...] = ()
    category: Optional[str] = None
    brand: Optional[str] = None
    reviews: tuple[ProductReview, ...] = ()
    availability: bool = True
    image_url: Optional[str] = None

    @property
    def price_string(self) -> str:
        return f"${self.price:.2f}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScrapedProduct":
        values = _known_fields(cls, data)
        values["features"] = tuple(values.get("features") or ())
        values["reviews"] = tuple(
            r if isinstance(r, ProductReview) else ProductReview.from_dict(r)
            for r in values.get("reviews") or ()
        )
        return cls(**values)


@dataclass
class PriceSummary:
    """Simple price statistics over a product set."""

    min: float
    max: float
    average: float
    median: float

    @classmethod
    def from_prices(cls, prices: list[float]) -> Optional["PriceSummary"]:
        if not prices:
            return None
        ordered = sorted(prices)
        return cls(
            min=ordered[0],
            max=ordered[-1],
            average=sum(ordered) / len(ordered),
            median=ordered[len(ordered) // 2],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Where a ProductSearchResult's products came from
SOURCE_AMAZON = "amazon"
SOURCE_CACHE = "cache"
SOURCE_BACKUP = "backup"
SOURCE_PLACEHOLDER = "placeholder"


@dataclass
class ProductSearchResult:
    """Products for a query plus a price summary."""

    products: list[ScrapedProduct]
    price_analysis: Optional[PriceSummary]
    timestamp: int
    source: str
    provider: Optional[str] = None  # Backup source name that produced the products
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.products)

    def to_dict(self) -> dict[str, Any]:
        return {
            "products": [p.to_dict() for p in self.products],
            "price_analysis": self.price_analysis.to_dict() if self.price_analysis else None,
            "timestamp": self.timestamp,
            "source": self.source,
            "provider": self.provider,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductSearchResult":
        summary = data.get("price_analysis")
        return cls(
            products=[ScrapedProduct.from_dict(p) for p in data.get("products", [])],
            price_analysis=PriceSummary(**summary) if summary else None,
            timestamp=data.get("timestamp", 0),
            source=data.get("source", SOURCE_CACHE),
            provider=data.get("provider"),
            meta=data.get("meta") or {},
        )


_ASIN_RE = re.compile(r"/([A-Z0-9]{10})(?=[/?#]|$)")


def normalize_url(url: str) -> str:
    """Strip query string and fragment."""
    return url.split("?")[0].split("#")[0]


def extract_asin(url: str) -> Optional[str]:
    """Amazon product identifier from a product or review URL."""
    match = _ASIN_RE.search(normalize_url(url))
    return match.group(1) if match else None
