"""
Embedding service.

Wraps LangChain's OpenAIEmbeddings with an injected cache keyed by
`task_type:text`. Failures never raise: a text that cannot be embedded
gets an empty vector, which ranking treats as zero similarity.
"""
import json
from datetime import timedelta
from typing import List, Optional

from langchain_openai import OpenAIEmbeddings

from deep_research.core.logging import get_logger
from deep_research.services.cache import BaseCache
from deep_research.services.llm import get_embeddings
from deep_research.services.pool import run_pool

logger = get_logger(__name__)

QUERY_TASK = "query"
DOCUMENT_TASK = "document"

BATCH_SIZE = 50
BATCH_CONCURRENCY = 3
CACHE_TTL = timedelta(days=7)


class EmbeddingService:

    def __init__(self, cache: BaseCache, embeddings: Optional[OpenAIEmbeddings] = None):
        self._cache = cache
        self._embeddings = embeddings

    @property
    def embeddings(self) -> OpenAIEmbeddings:
        if self._embeddings is None:
            self._embeddings = get_embeddings()
        return self._embeddings

    @staticmethod
    def _key(text: str, task_type: str) -> str:
        return f"embedding:{task_type}:{text}"

    def _cached(self, text: str, task_type: str) -> Optional[List[float]]:
        data = self._cache.get(self._key(text, task_type))
        if not data:
            return None
        try:
            return json.loads(data)
        except ValueError:
            return None

    def _store(self, text: str, task_type: str, vector: List[float]) -> None:
        if vector:
            self._cache.set(self._key(text, task_type), json.dumps(vector), CACHE_TTL)

    async def embed(self, text: str, task_type: str = QUERY_TASK) -> List[float]:
        """Embed one text, returning [] on failure."""
        cached = self._cached(text, task_type)
        if cached is not None:
            return cached
        try:
            if task_type == QUERY_TASK:
                vector = await self.embeddings.aembed_query(text)
            else:
                vector = (await self.embeddings.aembed_documents([text]))[0]
        except Exception as e:
            logger.warning(f"Embedding failed ({task_type}): {e}")
            return []
        self._store(text, task_type, vector)
        return vector

    async def embed_batch(self, texts: List[str], task_type: str = DOCUMENT_TASK) -> List[List[float]]:
        """
        Embed many texts; output is aligned with input.

        Cached texts are served from the cache; the rest go out in batches
        of BATCH_SIZE with BATCH_CONCURRENCY requests in flight.
        """
        vectors: List[List[float]] = [[] for _ in texts]
        missing: List[int] = []
        for i, text in enumerate(texts):
            cached = self._cached(text, task_type)
            if cached is not None:
                vectors[i] = cached
            else:
                missing.append(i)

        if not missing:
            return vectors

        batches = [missing[i:i + BATCH_SIZE] for i in range(0, len(missing), BATCH_SIZE)]

        async def embed_indices(indices: List[int]) -> List[List[float]]:
            return await self.embeddings.aembed_documents([texts[i] for i in indices])

        results = await run_pool(batches, embed_indices, BATCH_CONCURRENCY, label="embeddings")

        for indices, batch_vectors in zip(batches, results):
            if batch_vectors is None:
                continue
            for i, vector in zip(indices, batch_vectors):
                vectors[i] = vector
                self._store(texts[i], task_type, vector)

        logger.debug(f"Embedded {len(missing)} texts ({len(texts) - len(missing)} cached)")
        return vectors
