"""Quality filtering and ranking of scraped product listings."""

import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from giftwise.models import ScrapedProduct


@dataclass(frozen=True)
class QualityThresholds:
    """Minimum bar a listing must clear to be recommended."""

    min_rating: float = 4.5
    min_reviews: int = 100
    require_prime: bool = True
    # Verified-purchase review filtering needs review bodies; kept for callers
    # that pass scraped reviews, ignored for search-page listings
    require_verified_reviews: bool = True
    exclude_sponsored: bool = True


DEFAULT_THRESHOLDS = QualityThresholds()

# Tried in order until enough products survive
RELAXED_OVERRIDES = {"min_rating": 4.3, "min_reviews": 50}

TOP_N = 3


def quality_score(product: ScrapedProduct) -> float:
    """rating*2 + log10(reviews)/2 + prime/bestseller bonuses - sponsored penalty."""
    score = product.rating * 2
    score += math.log10(max(product.review_count, 1)) / 2
    if product.prime:
        score += 0.5
    if product.best_seller:
        score += 1
    if product.sponsored:
        score -= 1
    return score


def passes(product: ScrapedProduct, thresholds: QualityThresholds) -> bool:
    if product.rating < thresholds.min_rating:
        return False
    if product.review_count < thresholds.min_reviews:
        return False
    if thresholds.require_prime and not product.prime:
        return False
    if thresholds.exclude_sponsored and product.sponsored:
        return False
    return True


def filter_products(
    products: Sequence[ScrapedProduct],
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> List[ScrapedProduct]:
    """
    Keep products clearing ``thresholds``, best quality score first.

    The sort is stable, so re-filtering the output returns it unchanged.
    """
    kept = [p for p in products if passes(p, thresholds)]
    return sorted(kept, key=quality_score, reverse=True)


def threshold_presets(thresholds: QualityThresholds) -> List[QualityThresholds]:
    """Strict thresholds followed by the relaxed fallback."""
    return [thresholds, replace(thresholds, **RELAXED_OVERRIDES)]


def find_best_products_in_price_tier(
    products: Sequence[ScrapedProduct],
    min_price: float,
    max_price: float,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
    presets: Optional[List[QualityThresholds]] = None,
) -> List[ScrapedProduct]:
    """
    Top products within ``[min_price, max_price]``.

    Each preset is tried in order; the first one leaving at least three
    products wins. Otherwise the last preset's survivors are returned.
    """
    in_range = [p for p in products if min_price <= p.price <= max_price]

    filtered: List[ScrapedProduct] = []
    for preset in presets or threshold_presets(thresholds):
        filtered = filter_products(in_range, preset)
        if len(filtered) >= TOP_N:
            break

    return filtered[:TOP_N]


def validate_product(product: ScrapedProduct) -> bool:
    """Basic sanity check on a scraped listing."""
    return bool(product.title and product.url) and product.price > 0 and 0 <= product.rating <= 5
