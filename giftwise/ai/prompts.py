"""Centralized prompt templates for LLM interactions."""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ProductSuggestionPrompt(BaseModel):
    """Prompt schema for product suggestions used as backup search results."""

    query: str
    count: int = 3
    placeholder: bool = False

    def system_prompt(self) -> str:
        kind = "placeholder products" if self.placeholder else "product suggestions"
        return (
            f"Generate {self.count} realistic {kind} for the query.\n"
            "Include title, price, rating, review count and features.\n"
            "Make suggestions at different price points."
        )

    def to_prompt(self) -> str:
        return self.query


class SentimentPrompt(BaseModel):
    """Prompt schema for review sentiment analysis."""

    reviews: List[Dict[str, Any]]

    def system_prompt(self) -> str:
        return (
            "Analyze product reviews and provide a detailed sentiment analysis.\n"
            "Consider verified purchases more heavily.\n"
            "Identify key aspects mentioned (durability, value, reliability, ...) "
            "and their sentiment from -1 to 1."
        )

    def to_prompt(self) -> str:
        return json.dumps(self.reviews)


class CategoryMetricsPrompt(BaseModel):
    """Prompt schema for category benchmarks."""

    category: str

    def system_prompt(self) -> str:
        return (
            "You are a retail category analyst. Describe what buyers value in a product "
            "category and the benchmarks a good product meets."
        )

    def to_prompt(self) -> str:
        return f"Category: {self.category}"


class GiftDetailsPrompt(BaseModel):
    """Prompt schema for a short gift description."""

    gift_name: str
    context: str

    def system_prompt(self) -> str:
        return (
            "Analyze the gift and conversation context to generate a brief, "
            "insightful description of why this gift is meaningful.\n"
            "Consider age appropriateness, educational value, and safety."
        )

    def to_prompt(self) -> str:
        return f"Gift: {self.gift_name}\nContext: {self.context}"


class GiftSuggestionsPrompt(BaseModel):
    """Prompt schema for concrete product suggestions for a gift."""

    gift_name: str
    count: int = 3

    def system_prompt(self) -> str:
        return (
            f"Generate {self.count} specific product suggestions for this gift at different price points.\n"
            "Consider age appropriateness, safety, and educational value."
        )

    def to_prompt(self) -> str:
        return self.gift_name


class GiftCategoryPrompt(BaseModel):
    """Prompt schema for gift categorization."""

    gift_name: str

    def system_prompt(self) -> str:
        return "Analyze the gift to determine category, appropriate age ranges, and keywords."

    def to_prompt(self) -> str:
        return self.gift_name


class PriceEstimatePrompt(BaseModel):
    """Prompt schema for category price estimates."""

    category: str
    note: Optional[str] = None

    def system_prompt(self) -> str:
        return (
            f"Estimate price ranges for {self.category} gifts.\n"
            "Consider typical market prices and seasonal variations.\n"
            "Give min, max, and typical prices for each tier."
        )

    def to_prompt(self) -> str:
        return self.category if not self.note else f"{self.category}\n{self.note}"


# Response schemas for structured output
PRODUCT_LIST_SCHEMA = {
    "type": "object",
    "properties": {
        "products": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "price": {"type": "number"},
                    "rating": {"type": "number"},
                    "reviewCount": {"type": "integer"},
                    "features": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["title", "price"],
            },
        },
    },
    "required": ["products"],
}

SENTIMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "overall": {"type": "number"},
        "aspects": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "score": {"type": "number"},
                    "mentions": {"type": "integer"},
                    "examples": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "keywords": {
            "type": "object",
            "properties": {
                "positive": {"type": "array", "items": {"type": "string"}},
                "negative": {"type": "array", "items": {"type": "string"}},
            },
        },
        "summaryPoints": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["overall", "aspects", "keywords"],
}

_TIER_SCHEMA = {
    "type": "object",
    "properties": {
        "min": {"type": "number"},
        "max": {"type": "number"},
        "typical": {"type": "number"},
    },
    "required": ["min", "max", "typical"],
}

PRICE_ESTIMATE_SCHEMA = {
    "type": "object",
    "properties": {
        "budget": _TIER_SCHEMA,
        "midRange": _TIER_SCHEMA,
        "premium": _TIER_SCHEMA,
    },
    "required": ["budget", "midRange", "premium"],
}

CATEGORY_METRICS_SCHEMA = {
    "type": "object",
    "properties": {
        "keyFeatures": {"type": "array", "items": {"type": "string"}},
        "importantSpecs": {"type": "array", "items": {"type": "string"}},
        "qualityIndicators": {"type": "array", "items": {"type": "string"}},
        "commonConcerns": {"type": "array", "items": {"type": "string"}},
        "priceFactors": {"type": "array", "items": {"type": "string"}},
        "categoryBenchmarks": {
            "type": "object",
            "properties": {
                "expectedPrice": {
                    "type": "object",
                    "properties": {
                        "min": {"type": "number"},
                        "max": {"type": "number"},
                        "average": {"type": "number"},
                        "median": {"type": "number"},
                    },
                },
                "minimumRating": {"type": "number"},
                "minimumReviews": {"type": "integer"},
                "expectedFeatures": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
    "required": ["keyFeatures", "categoryBenchmarks"],
}

GIFT_SUGGESTIONS_SCHEMA = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "priceRange": {"type": "string"},
                    "description": {"type": "string"},
                    "tier": {"type": "string", "enum": ["budget", "midRange", "premium"]},
                    "confidence": {"type": "number"},
                },
                "required": ["name", "tier"],
            },
        },
    },
    "required": ["suggestions"],
}

GIFT_CATEGORY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "ageRanges": {"type": "array", "items": {"type": "string"}},
        "keywords": {"type": "array", "items": {"type": "string"}},
        "safetyConsiderations": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["name", "ageRanges"],
}
