"""
FastAPI Dependencies

Dependency injection for settings, the cache and the research
orchestrator. Each is built once; tests override them through
app.dependency_overrides.
"""
from functools import lru_cache

from deep_research.core.config import Settings
from deep_research.services.cache import BaseCache, RedisCache, RunCache
from deep_research.services.embeddings import EmbeddingService
from deep_research.services.reasoning import ReasoningService
from deep_research.services.research import ResearchOrchestrator


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Example test override:
        app.dependency_overrides[get_settings] = lambda: Settings(openai_api_key=SecretStr("test-key"))
    """
    return Settings()


@lru_cache()
def get_cache() -> BaseCache:
    """Shared cache for embeddings, document metadata and run snapshots."""
    return RedisCache()


@lru_cache()
def get_run_cache() -> RunCache:
    return RunCache(get_cache())


@lru_cache()
def get_orchestrator() -> ResearchOrchestrator:
    """
    The process-wide orchestrator.

    Example test override:
        app.dependency_overrides[get_orchestrator] = lambda: ResearchOrchestrator(fake_reasoning, fake_embeddings)
    """
    cache = get_cache()
    return ResearchOrchestrator(
        reasoning=ReasoningService(),
        embeddings=EmbeddingService(cache),
        cache=cache,
        run_cache=get_run_cache(),
    )
