"""
PDFVector academic search data source.

Over-fetches up to 40 results per query; the relevance filter does
the re-ranking. Requires PDFVECTOR_API_KEY.
"""
from typing import Any, Dict, List, Optional

from deep_research.core.config import settings
from deep_research.core.exceptions import SourceNotConfiguredError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate, SourceProvider, StructuredTerms
from deep_research.services.cancellation import CancellationToken
from .base import BaseSource

logger = get_logger(__name__)

PDFVECTOR_URL = "https://www.pdfvector.com/v1/api/academic-search"
PDFVECTOR_TIMEOUT = 65.0
FIELDS = [
    "doi", "title", "url", "providerURL", "authors", "date", "year",
    "abstract", "pdfURL", "provider",
]


class PDFVectorSource(BaseSource):
    provider = SourceProvider.PDFVECTOR

    def __init__(self, *args, api_key: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key if api_key is not None else settings.PDFVECTOR_API_KEY

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def build_queries(self, terms: StructuredTerms, topics: List[str], questions: List[str]) -> List[str]:
        parts = terms.exact_phrases[:2] + terms.title_terms[:2] + terms.abstract_terms[:2]
        if parts:
            return [" ".join(parts)]
        return [" ".join(topics)] if topics else []

    async def collect(self, terms, topics, questions, token=None) -> List[Candidate]:
        if not self.is_configured:
            raise SourceNotConfiguredError(self.name, "PDFVECTOR_API_KEY")
        return await super().collect(terms, topics, questions, token)

    async def search(self, query: str, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        payload = {
            "query": query,
            "limit": min(self.config.max_results, 40),
            "offset": 0,
            "fields": FIELDS,
        }
        data = await self._request_json(
            "POST",
            PDFVECTOR_URL,
            timeout=PDFVECTOR_TIMEOUT,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if isinstance(data, dict):
            return data.get("results") or data.get("data") or []
        return data if isinstance(data, list) else []

    def normalize(self, raw: Dict[str, Any]) -> Optional[Candidate]:
        pdf_url = raw.get("pdfURL") or ""
        if not pdf_url:
            return None

        authors = []
        for author in raw.get("authors") or []:
            name = author.get("name") if isinstance(author, dict) else author
            if name:
                authors.append(str(name))

        doi = raw.get("doi") or None
        return Candidate(
            id=f"pdfvector:{doi or raw.get('id') or pdf_url}",
            title=raw.get("title") or "",
            abstract=raw.get("abstract") or "",
            authors=authors,
            source=self.provider,
            document_uri=pdf_url,
            published_date=str(raw.get("date") or raw.get("year") or "") or None,
            doi=doi,
        )
