"""
Base types and interfaces for search providers.

Every provider turns structured search terms into provider-specific
queries, runs them through the worker pool, and normalizes raw records
into Candidates. Records without a downloadable document are dropped.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from deep_research.core.config import settings
from deep_research.core.exceptions import (
    SourceError,
    SourceHTTPError,
    SourceParseError,
    SourceRateLimitError,
    SourceTimeoutError,
)
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate, SourceProvider, StructuredTerms
from deep_research.schemas.retrieval import SourceConfig
from deep_research.services.cancellation import CancellationToken
from deep_research.services.pool import run_pool

logger = get_logger(__name__)

REQUEST_TIMEOUT = 15.0


class BaseSource(ABC):
    """
    Abstract base class for all search providers.

    To add a new provider:
    1. Create a class that inherits from BaseSource
    2. Implement provider, build_queries, search and normalize
    3. Register it in the sources __init__.py and build_sources()

    `transport` lets tests swap the network for httpx.MockTransport.
    """

    provider: SourceProvider

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        concurrency: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or SourceConfig()
        self.concurrency = concurrency
        self._transport = transport

    @property
    def name(self) -> str:
        """Human-readable name of the provider."""
        return self.provider.value

    @property
    def is_configured(self) -> bool:
        """False when required credentials are missing."""
        return True

    @property
    def headers(self) -> Dict[str, str]:
        return {"User-Agent": f"DeepResearch/1.0 (mailto:{settings.API_CONTACT_EMAIL})"}

    def client(self, timeout: float = REQUEST_TIMEOUT) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            headers=self.headers,
            follow_redirects=True,
            transport=self._transport,
        )

    @abstractmethod
    def build_queries(self, terms: StructuredTerms, topics: List[str], questions: List[str]) -> List[str]:
        """Provider-specific query strings, most precise first."""
        pass

    @abstractmethod
    async def search(self, query: str, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        """
        Run one query and return raw provider records.

        Providers that fan out over result pages stop starting pages once
        the token is cancelled.

        Raises:
            SourceError subclasses on HTTP, timeout or parse failures
        """
        pass

    @abstractmethod
    def normalize(self, raw: Dict[str, Any]) -> Optional[Candidate]:
        """Convert a raw record, or None when it has no document URI."""
        pass

    def fallback_queries(self, topics: List[str], tried: List[str]) -> List[str]:
        """Extra queries to run when the main ones found too little."""
        return []

    async def collect(
        self,
        terms: StructuredTerms,
        topics: List[str],
        questions: List[str],
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Build queries, run them through the pool, normalize the union."""
        queries = self.build_queries(terms, topics, questions)
        if not queries:
            logger.info(f"{self.name}: no queries to run")
            return []

        async def search(query: str) -> List[Dict[str, Any]]:
            return await self.search(query, token)

        raw_batches = await run_pool(queries, search, self.concurrency, token, label=self.name)
        candidates = self._normalize_all(raw_batches)

        if len(candidates) < 3 and not (token and token.cancelled):
            extra = self.fallback_queries(topics, queries)
            if extra:
                logger.info(f"{self.name}: {len(candidates)} results, running {len(extra)} fallback queries")
                raw_batches = await run_pool(extra, search, self.concurrency, token, label=self.name)
                candidates.extend(self._normalize_all(raw_batches))

        logger.info(f"{self.name}: {len(candidates)} candidates from {len(queries)} queries")
        return candidates

    def _normalize_all(self, raw_batches: List[Optional[List[Dict[str, Any]]]]) -> List[Candidate]:
        candidates = []
        for batch in raw_batches:
            for raw in batch or []:
                try:
                    candidate = self.normalize(raw)
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.debug(f"{self.name}: skipping malformed record: {e}")
                    continue
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    async def _request(self, method: str, url: str, timeout: float = REQUEST_TIMEOUT, **kwargs) -> httpx.Response:
        """Send a request, mapping transport and status failures to SourceError."""
        try:
            async with self.client(timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise SourceTimeoutError(self.name, timeout)
        except httpx.HTTPError as e:
            raise SourceError(self.name, f"Network error: {e}")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise SourceRateLimitError(self.name, int(retry_after) if retry_after and retry_after.isdigit() else None)
        if response.status_code >= 400:
            raise SourceHTTPError(self.name, response.status_code, response.text[:200])
        return response

    async def _request_json(self, method: str, url: str, timeout: float = REQUEST_TIMEOUT, **kwargs) -> Any:
        response = await self._request(method, url, timeout, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise SourceParseError(self.name, str(e))
