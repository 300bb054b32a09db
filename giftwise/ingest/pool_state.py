"""Working copy of a rotation pool shared through Redis.

Redis holds the pool as one JSON list. Each process keeps a working copy
that is re-read once it is older than the staleness window and written back
whole on every mutation. Last writer wins; there is no locking.
"""

import json
import logging
import time
from typing import Callable, Generic, List, Optional, Protocol, TypeVar

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class _PoolItem(Protocol):
    def to_dict(self) -> dict: ...


T = TypeVar("T", bound=_PoolItem)


class SharedPoolState(Generic[T]):
    """Staleness-bounded cache of a pool stored under a single Redis key."""

    def __init__(
        self,
        redis_client: redis.Redis,
        key: str,
        decode: Callable[[dict], T],
        seed: Callable[[], List[T]],
        staleness_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            redis_client: Shared Redis connection
            key: Redis key holding the JSON list
            decode: Builds an item from its dict form
            seed: Loads the initial pool when Redis has none (static config)
            staleness_seconds: Max age of the working copy before re-reading
            clock: Time source (seconds)
        """
        self._redis = redis_client
        self.key = key
        self._decode = decode
        self._seed = seed
        self.staleness_seconds = staleness_seconds
        self._clock = clock
        self._items: List[T] = []
        self._synced_at: Optional[float] = None

    @property
    def items(self) -> List[T]:
        return self._items

    @property
    def loaded(self) -> bool:
        return self._synced_at is not None

    async def load(self) -> List[T]:
        """Read the pool from Redis, seeding it from static config if absent."""
        cached = await self._redis.get(self.key)
        if cached:
            self._items = [self._decode(d) for d in json.loads(cached)]
        else:
            self._items = self._seed()
            if self._items:
                await self.save()
        self._synced_at = self._clock()
        return self._items

    async def ensure_fresh(self) -> List[T]:
        """Return the working copy, re-reading Redis if it is stale."""
        if self._synced_at is None or self._clock() - self._synced_at >= self.staleness_seconds:
            await self.load()
        return self._items

    async def save(self) -> None:
        """Write the whole working copy back to Redis."""
        await self._redis.set(self.key, json.dumps([item.to_dict() for item in self._items]))
        self._synced_at = self._clock()

    def invalidate(self) -> None:
        """Force the next access to re-read Redis."""
        self._synced_at = None
