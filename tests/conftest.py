"""
Shared fixtures: a controllable clock, an in-memory async Redis double and
a scripted generative text client.
"""

import fnmatch
import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from giftwise.config import Settings
from giftwise.errors import LLMServiceError


class Clock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for the services."""

    def __init__(self, clock: Clock):
        self._clock = clock
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and self._clock() >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def _expire_in(self, key: str, ex: Optional[float] = None, px: Optional[float] = None) -> None:
        if ex is not None:
            self.expiry[key] = self._clock() + ex
        elif px is not None:
            self.expiry[key] = self._clock() + px / 1000
        else:
            self.expiry.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass

    # strings

    async def get(self, key: str) -> Optional[str]:
        return self.data[key] if self._alive(key) else None

    async def set(self, key: str, value: Any, ex: Optional[float] = None, px: Optional[float] = None) -> bool:
        self.data[key] = str(value)
        self._expire_in(key, ex, px)
        return True

    async def setex(self, key: str, seconds: float, value: Any) -> bool:
        return await self.set(key, value, ex=seconds)

    async def incr(self, key: str) -> int:
        value = int(await self.get(key) or 0) + 1
        self.data[key] = str(value)
        return value

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def keys(self, pattern: str = "*") -> List[str]:
        return [k for k in list(self.data) if self._alive(k) and fnmatch.fnmatchcase(k, pattern)]

    async def expire(self, key: str, seconds: float) -> bool:
        if not self._alive(key):
            return False
        self._expire_in(key, ex=seconds)
        return True

    # hashes

    def _hash(self, key: str) -> Dict[str, str]:
        if not self._alive(key):
            self.data[key] = {}
        return self.data[key]

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.data[key]) if self._alive(key) else {}

    async def hset(self, key: str, field: Optional[str] = None, value: Any = None, mapping: Optional[dict] = None) -> int:
        h = self._hash(key)
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        added = sum(1 for f in items if f not in h)
        h.update({f: str(v) for f, v in items.items()})
        return added

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        h = self._hash(key)
        h[field] = str(int(h.get(field, 0)) + amount)
        return int(h[field])

    # lists

    def _list(self, key: str) -> List[str]:
        if not self._alive(key):
            self.data[key] = []
        return self.data[key]

    async def lpush(self, key: str, *values: Any) -> int:
        lst = self._list(key)
        for value in values:
            lst.insert(0, str(value))
        return len(lst)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        lst = self._list(key)
        stop = None if end == -1 else end + 1
        self.data[key] = lst[start:stop]
        return True

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        if not self._alive(key):
            return []
        stop = None if end == -1 else end + 1
        return list(self.data[key][start:stop])

    # sorted sets

    def _zset(self, key: str) -> Dict[str, float]:
        if not self._alive(key):
            self.data[key] = {}
        return self.data[key]

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        z = self._zset(key)
        added = sum(1 for m in mapping if m not in z)
        z.update({m: float(s) for m, s in mapping.items()})
        return added

    async def zrange(self, key: str, start: int, end: int) -> List[str]:
        if not self._alive(key):
            return []
        ordered = [m for m, _ in sorted(self.data[key].items(), key=lambda item: (item[1], item[0]))]
        stop = None if end == -1 else end + 1
        return ordered[start:stop]

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        z = self._zset(key)
        doomed = [m for m, s in z.items() if min_score <= s <= max_score]
        for member in doomed:
            del z[member]
        return len(doomed)


Responder = Union[Dict[str, Any], Callable[..., Dict[str, Any]], Exception]


class FakeLLM:
    """
    Stands in for LLMService.

    ``structured`` maps a JSON schema key (its first required property) to
    a dict, a callable returning one, or an exception to raise.
    """

    def __init__(self, structured: Optional[Dict[str, Responder]] = None, text: str = "A thoughtful gift."):
        self.structured = structured or {}
        self.text = text
        self.calls: List[Dict[str, Any]] = []

    @staticmethod
    def schema_key(schema: Dict[str, Any]) -> str:
        return schema.get("required", ["?"])[0]

    async def call_llm(self, prompt: str, system_prompt: str = "", temperature=None, model=None, use_cache=True, json_mode=False) -> str:
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt})
        if isinstance(self.text, Exception):
            raise self.text
        return self.text

    async def call_llm_structured(self, prompt: str, response_schema: Dict[str, Any], system_prompt: str = "", temperature=None, model=None, use_cache=True) -> Dict[str, Any]:
        key = self.schema_key(response_schema)
        self.calls.append({"prompt": prompt, "schema": key, "system_prompt": system_prompt})
        responder = self.structured.get(key)
        if responder is None:
            raise LLMServiceError(f"No scripted response for {key}")
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            return responder(prompt)
        return json.loads(json.dumps(responder))

    def count(self, key: str) -> int:
        return sum(1 for c in self.calls if c.get("schema") == key)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        scraper_config_dir=str(tmp_path),
        openai_api_key="",
        serpapi_api_key="",
        keepa_api_key="",
    )


@pytest.fixture
def make_llm():
    """Build a FakeLLM with scripted structured responses."""
    return FakeLLM
