"""Tests for service wiring and startup."""

import pytest

from giftwise.container import ServiceContainer
from giftwise.errors import ProxyPoolError


def write_pools(tmp_path, proxies=10):
    (tmp_path / "proxies.txt").write_text("".join(f"10.0.1.{i}:3128\n" for i in range(1, proxies + 1)))
    (tmp_path / "user-agents.txt").write_text("UA-1\nUA-2\n")


class TestServiceContainer:
    """One Redis connection shared by every service."""

    def test_services_share_dependencies(self, fake_redis, test_settings):
        container = ServiceContainer(test_settings, fake_redis)

        assert container.search.backup is container.backup_products
        assert container.search.cache is container.cache
        assert container.scrape_client.proxy_manager is container.proxy_manager
        assert container.enricher.price_analyzer is container.gift_prices
        assert container.product_analyzer.category_analyzer is container.category_quality
        assert container.quality.sentiment_analyzer is container.sentiment

    @pytest.mark.asyncio
    async def test_start_and_stop(self, fake_redis, test_settings, tmp_path):
        write_pools(tmp_path)
        container = ServiceContainer(test_settings, fake_redis)

        await container.start(health_checks=False)
        assert await container.user_agents.get_next() == "UA-1"
        assert (await container.proxy_manager.get_stats())["total"] == 10

        await container.stop()

    @pytest.mark.asyncio
    async def test_start_fails_on_small_pool(self, fake_redis, test_settings, tmp_path):
        write_pools(tmp_path, proxies=3)
        container = ServiceContainer(test_settings, fake_redis)

        with pytest.raises(ProxyPoolError):
            await container.start(health_checks=False)
