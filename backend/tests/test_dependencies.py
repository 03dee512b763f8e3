"""Tests for core/dependencies.py - FastAPI dependency injection."""
from unittest.mock import patch

import redis


class TestGetSettings:
    """Test the get_settings dependency."""

    def test_get_settings_is_cached(self):
        """get_settings should return the same Settings instance."""
        from deep_research.core.config import Settings
        from deep_research.core.dependencies import get_settings

        assert isinstance(get_settings(), Settings)
        assert get_settings() is get_settings()


class TestGetOrchestrator:
    """Test the cache and orchestrator dependencies."""

    def test_shared_instances(self):
        """Cache, run cache and orchestrator should be built once and shared."""
        from deep_research.core import dependencies
        from deep_research.services.cache import BaseCache, RunCache
        from deep_research.services.research import ResearchOrchestrator

        for getter in (dependencies.get_cache, dependencies.get_run_cache, dependencies.get_orchestrator):
            getter.cache_clear()

        with patch("deep_research.services.cache.redis.Redis") as mock_redis:
            mock_redis.return_value.ping.side_effect = redis.ConnectionError("down")
            orchestrator = dependencies.get_orchestrator()

        assert isinstance(orchestrator, ResearchOrchestrator)
        assert orchestrator is dependencies.get_orchestrator()
        assert isinstance(dependencies.get_cache(), BaseCache)
        assert isinstance(dependencies.get_run_cache(), RunCache)
        assert dependencies.get_run_cache() is dependencies.get_run_cache()

        for getter in (dependencies.get_cache, dependencies.get_run_cache, dependencies.get_orchestrator):
            getter.cache_clear()
