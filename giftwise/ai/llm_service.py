"""OpenAI chat completions for the analysis layers, with caching and a daily spend cap."""

import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from openai import AsyncOpenAI

from giftwise import metrics
from giftwise.config import Settings, settings as default_settings
from giftwise.errors import LLMServiceError

logger = logging.getLogger(__name__)

CACHE_PREFIX = "llm_cache:"

# USD per 1K tokens (input, output), matched by model-name prefix
MODEL_PRICING: Tuple[Tuple[str, float, float], ...] = (
    ("gpt-4o-mini", 0.00015, 0.0006),
    ("gpt-4o", 0.0025, 0.01),
    ("gpt-4", 0.01, 0.03),
)
FALLBACK_PRICING = (0.0015, 0.002)

JSON_INSTRUCTIONS = (
    "Respond with valid JSON matching this schema: {schema}\n"
    "Return only the JSON object, no additional text."
)


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Approximate USD cost of one completion."""
    input_rate, output_rate = FALLBACK_PRICING
    for prefix, model_input, model_output in MODEL_PRICING:
        if model.lower().startswith(prefix):
            input_rate, output_rate = model_input, model_output
            break
    return prompt_tokens / 1000 * input_rate + completion_tokens / 1000 * output_rate


class LLMService:
    """
    Chat completion client shared by sentiment, category and gift services.

    Responses are cached in Redis by a hash of (system prompt, prompt, model,
    json mode). Spend is estimated from token usage and capped per UTC day;
    once the cap is reached every call fails with LLMServiceError until the
    day rolls over or ``reset_daily_stats`` is called.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        settings: Settings = default_settings,
        client: Optional[AsyncOpenAI] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self._redis = redis_client
        self._client = client
        self._clock = clock
        self._daily_cost = 0.0
        self._call_count = 0
        self._cost_day = self._today()

    def _today(self) -> str:
        return datetime.fromtimestamp(self._clock(), timezone.utc).date().isoformat()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise LLMServiceError("OpenAI API key not configured")
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.llm_timeout_seconds,
            )
        return self._client

    @property
    def caching(self) -> bool:
        return self._redis is not None and self.settings.llm_cache_enabled

    @staticmethod
    def cache_key(prompt: str, system_prompt: str, model: str, json_mode: bool) -> str:
        digest = hashlib.sha256(f"{system_prompt}\x00{prompt}\x00{model}\x00{json_mode}".encode("utf-8"))
        return CACHE_PREFIX + digest.hexdigest()

    def _ensure_budget(self) -> None:
        today = self._today()
        if today != self._cost_day:
            logger.info(f"New cost day {today}; LLM spend was ${self._daily_cost:.2f}")
            self.reset_daily_stats()
            self._cost_day = today

        if self.settings.track_llm_costs and self._daily_cost >= self.settings.llm_cost_limit_per_day:
            logger.warning(
                f"Daily LLM cost limit reached: ${self._daily_cost:.2f} of "
                f"${self.settings.llm_cost_limit_per_day:.2f}"
            )
            raise LLMServiceError("Daily LLM cost limit exceeded")

    async def _complete(self, messages: List[Dict[str, str]], model: str, temperature: float, json_mode: bool) -> str:
        extra: Dict[str, Any] = {"response_format": {"type": "json_object"}} if json_mode else {}
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=self.settings.llm_max_tokens,
                **extra,
            )
        except LLMServiceError:
            metrics.record_llm_call(False)
            raise
        except Exception as e:
            metrics.record_llm_call(False)
            logger.error(f"LLM request to {model} failed: {e}")
            raise LLMServiceError(f"LLM API call failed: {e}") from e

        metrics.record_llm_call(True)
        usage = response.usage
        if self.settings.track_llm_costs and usage:
            cost = estimate_cost(model, usage.prompt_tokens, usage.completion_tokens)
            self._daily_cost += cost
            logger.debug(
                f"LLM call ${cost:.4f} ({usage.prompt_tokens}+{usage.completion_tokens} tokens), "
                f"day total ${self._daily_cost:.2f}"
            )
        return response.choices[0].message.content or ""

    async def call_llm(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        use_cache: bool = True,
        json_mode: bool = False,
    ) -> str:
        """
        Send one prompt and return the reply text.

        Raises:
            LLMServiceError: missing key, provider failure, or spend cap reached
        """
        model = model or self.settings.llm_model
        if temperature is None:
            temperature = self.settings.llm_temperature
        self._ensure_budget()

        key = self.cache_key(prompt, system_prompt, model, json_mode)
        cacheable = use_cache and self.caching
        if cacheable:
            cached = await self._redis.get(key)
            if cached:
                self._call_count += 1
                return cached

        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": prompt})
        reply = await self._complete(messages, model, temperature, json_mode)
        self._call_count += 1

        if cacheable and reply:
            await self._redis.setex(key, self.settings.llm_cache_ttl_seconds, reply)
        return reply

    async def call_llm_structured(
        self,
        prompt: str,
        response_schema: Dict[str, Any],
        system_prompt: str = "",
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """Ask for a JSON object shaped by ``response_schema`` and return it parsed.

        Top-level ``required`` keys in the schema are checked; anything deeper is
        left to the caller.
        """
        instructions = JSON_INSTRUCTIONS.format(schema=json.dumps(response_schema, indent=2))
        system = f"{system_prompt}\n\n{instructions}" if system_prompt else instructions

        data = parse_json_response(
            await self.call_llm(
                prompt,
                system_prompt=system,
                temperature=temperature,
                model=model,
                use_cache=use_cache,
                json_mode=True,
            )
        )
        missing = [k for k in response_schema.get("required", []) if k not in data]
        if missing:
            raise LLMServiceError(f"LLM JSON response missing keys: {', '.join(missing)}")
        return data

    def get_stats(self) -> Dict[str, Any]:
        return {
            "call_count": self._call_count,
            "daily_cost": self._daily_cost,
            "cost_limit": self.settings.llm_cost_limit_per_day,
            "cost_day": self._cost_day,
            "cache_enabled": self.caching,
        }

    def reset_daily_stats(self):
        self._daily_cost = 0.0
        self._call_count = 0

    async def close(self):
        """Close the OpenAI client; the Redis connection belongs to the caller."""
        if self._client is not None:
            await self._client.close()
            self._client = None


def parse_json_response(response_text: str) -> Dict[str, Any]:
    """Parse a JSON object out of model output, tolerating markdown code fences."""
    text = response_text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Unparseable LLM JSON ({e}): {text[:200]}")
        raise LLMServiceError(f"Invalid JSON response from LLM: {e}") from e

    if not isinstance(data, dict):
        raise LLMServiceError("LLM JSON response is not an object")
    return data
