#!/usr/bin/env python3
"""
Run one proxy health-check pass and print pool statistics.
"""

import asyncio
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from giftwise.container import lifespan
from giftwise.logging_config import setup_logging


async def check() -> None:
    async with lifespan(health_checks=False) as services:
        results = await services.proxy_manager.check_all()
        stats = await services.proxy_manager.get_stats()
        agents = await services.user_agents.get_stats()

    print("Proxy Health Check")
    print("==================")
    print(f"Checked: {results['total']}")
    print(f"  healthy: {results['healthy']}")
    print(f"  unhealthy: {results['unhealthy']}")
    print(f"  skipped (rate limited): {results['skipped']}")
    print("")
    print("Pool")
    print("----")
    print(f"Total proxies: {stats['total']}")
    print(f"Available: {stats['available']}")
    print(f"Average response time (ms): {stats['average_response_time']:.0f}")
    print(f"Failure rate: {stats['failure_rate']:.1f}%")
    print(f"User agents: {agents.get('total', 0)}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(check())
