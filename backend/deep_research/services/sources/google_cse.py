"""
Google Custom Search data source.

Restricted to PDF results. Results come 10 per page; pages are fetched
through the worker pool and a failed page never discards the others.
Skipped when GOOGLE_SEARCH_KEY / GOOGLE_SEARCH_CX are not set.
"""
from typing import Any, Dict, List, Optional
import hashlib

from deep_research.core.config import settings
from deep_research.core.exceptions import SourceNotConfiguredError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate, SourceProvider, StructuredTerms
from deep_research.services.cancellation import CancellationToken
from deep_research.services.pool import run_pool
from .base import BaseSource

logger = get_logger(__name__)

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
PAGE_SIZE = 10
PAGE_STARTS = [1, 11, 21, 31, 41]


class GoogleCSESource(BaseSource):
    provider = SourceProvider.GOOGLE_CSE

    def __init__(self, *args, api_key: Optional[str] = None, cx: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key if api_key is not None else settings.GOOGLE_SEARCH_KEY
        self.cx = cx if cx is not None else settings.GOOGLE_SEARCH_CX

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.cx)

    def build_queries(self, terms: StructuredTerms, topics: List[str], questions: List[str]) -> List[str]:
        parts = [f'"{p}"' for p in terms.exact_phrases[:1]] + terms.title_terms[:2] + terms.general_terms[:1]
        if parts:
            return [" ".join(parts)]
        return [" ".join(topics)] if topics else []

    async def search(self, query: str, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        if not self.is_configured:
            raise SourceNotConfiguredError(self.name, "GOOGLE_SEARCH_KEY/GOOGLE_SEARCH_CX")

        starts = [s for s in PAGE_STARTS if s <= self.config.max_results]

        async def fetch_page(start: int) -> List[Dict[str, Any]]:
            params = {
                "key": self.api_key,
                "cx": self.cx,
                "q": query,
                "num": PAGE_SIZE,
                "start": start,
                "fileType": "pdf",
            }
            data = await self._request_json("GET", GOOGLE_CSE_URL, timeout=10.0, params=params)
            return data.get("items", []) if isinstance(data, dict) else []

        pages = await run_pool(starts, fetch_page, self.concurrency, token, label=f"{self.name} pages")
        return [item for page in pages for item in (page or [])]

    async def collect(self, terms, topics, questions, token=None) -> List[Candidate]:
        if not self.is_configured:
            raise SourceNotConfiguredError(self.name, "GOOGLE_SEARCH_KEY/GOOGLE_SEARCH_CX")
        return await super().collect(terms, topics, questions, token)

    def normalize(self, raw: Dict[str, Any]) -> Optional[Candidate]:
        link = raw.get("link") or ""
        if not link.startswith(("http://", "https://")):
            return None
        digest = hashlib.sha1(link.encode("utf-8")).hexdigest()[:12]
        return Candidate(
            id=f"google_cse:{digest}",
            title=raw.get("title") or link,
            abstract=raw.get("snippet") or "",
            source=self.provider,
            document_uri=link,
        )
