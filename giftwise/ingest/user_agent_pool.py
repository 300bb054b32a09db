"""User agent rotation with least-recently-used selection.

The pool is loaded once from static config into Redis and shared by every
process; selection is purely recency based with no failure tracking.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from giftwise.config import Settings, settings as default_settings
from giftwise.ingest.config_loader import FileLoader
from giftwise.ingest.pool_state import SharedPoolState
from giftwise.models import UserAgent

logger = logging.getLogger(__name__)

USER_AGENT_KEY = "pool:user-agents"


class UserAgentManager:
    """
    Rotates user agents stored in Redis.

    Features:
    - Load-once pool from config/user-agents.txt
    - Least-recently-used selection
    - Shared state re-synced from Redis after the staleness window
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        loader: Optional[FileLoader] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self._loader = loader or FileLoader(settings)
        self._clock = clock
        self._state: SharedPoolState[UserAgent] = SharedPoolState(
            redis_client,
            USER_AGENT_KEY,
            decode=UserAgent.from_dict,
            seed=self._loader.load_user_agents,
            staleness_seconds=settings.pool_sync_seconds,
            clock=clock,
        )

    async def initialize(self) -> None:
        """Load the pool, failing if no user agents are configured."""
        agents = await self._state.load()
        if not agents:
            raise RuntimeError("No user agents loaded")
        logger.info(f"User agent pool ready with {len(agents)} agents")

    async def get_next(self) -> str:
        """
        Get the least recently used user agent and stamp it as used.

        Returns:
            User agent string
        """
        agents = await self._state.ensure_fresh()
        if not agents:
            raise RuntimeError("No user agents loaded")

        selected = min(agents, key=lambda ua: ua.last_used)
        selected.last_used = int(self._clock() * 1000)
        await self._state.save()

        return selected.string

    async def refresh(self) -> None:
        """Re-read the pool from Redis."""
        self._state.invalidate()
        await self._state.ensure_fresh()

    async def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        agents = await self._state.ensure_fresh()
        if not agents:
            return {"total": 0, "last_used": None, "average_rotation": 0.0}

        last_used = max(ua.last_used for ua in agents)
        rotated = sum(1 for ua in agents if ua.last_used > 0)

        return {
            "total": len(agents),
            "last_used": (
                datetime.fromtimestamp(last_used / 1000, tz=timezone.utc) if last_used else None
            ),
            "average_rotation": rotated / len(agents),
        }
