"""
OpenAlex data source.

OpenAlex provides access to 250M+ scholarly works.
- 100,000 calls per day
- No API key required (mailto puts us in the polite pool)

Only works that advertise full text are requested, and only those with
a PDF link survive normalization.
"""
from typing import Any, Dict, List, Optional

from deep_research.core.config import settings
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate, SourceProvider, StructuredTerms
from deep_research.services.cancellation import CancellationToken
from .base import BaseSource

logger = get_logger(__name__)

OPENALEX_URL = "https://api.openalex.org/works"


class OpenAlexSource(BaseSource):
    provider = SourceProvider.OPENALEX

    def build_queries(self, terms: StructuredTerms, topics: List[str], questions: List[str]) -> List[str]:
        queries = []
        if terms.exact_phrases or terms.title_terms:
            queries.append(" ".join(terms.exact_phrases[:2] + terms.title_terms[:2]))
        if terms.abstract_terms or terms.general_terms:
            queries.append(" ".join(terms.abstract_terms[:3] + terms.general_terms[:2]))
        if not queries:
            queries = [topic for topic in topics if topic]
        return list(dict.fromkeys(q.strip() for q in queries if q.strip()))

    async def search(self, query: str, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        logger.info(f"Searching OpenAlex: {query[:50]}...")
        params = {
            "search": query,
            "filter": "has_fulltext:true",
            "per_page": min(self.config.max_results, 100),
            "mailto": settings.API_CONTACT_EMAIL,
        }
        data = await self._request_json("GET", OPENALEX_URL, params=params)
        return data.get("results", []) if isinstance(data, dict) else []

    def normalize(self, raw: Dict[str, Any]) -> Optional[Candidate]:
        pdf_url = _pdf_url(raw)
        work_id = (raw.get("id") or "").rsplit("/", 1)[-1]
        if not pdf_url or not work_id:
            return None

        authors = []
        for authorship in raw.get("authorships") or []:
            name = (authorship.get("author") or {}).get("display_name")
            if name:
                authors.append(name)

        doi = (raw.get("doi") or "").replace("https://doi.org/", "") or None

        return Candidate(
            id=f"openalex:{work_id}",
            title=raw.get("title") or raw.get("display_name") or "",
            abstract=_reconstruct_abstract(raw.get("abstract_inverted_index")),
            authors=authors,
            source=self.provider,
            document_uri=pdf_url,
            published_date=raw.get("publication_date") or None,
            doi=doi,
        )


def _pdf_url(work: Dict[str, Any]) -> str:
    for key in ("best_oa_location", "primary_location"):
        location = work.get(key) or {}
        if location.get("pdf_url"):
            return location["pdf_url"]
    for location in work.get("locations") or []:
        if location.get("pdf_url"):
            return location["pdf_url"]
    return ""


def _reconstruct_abstract(inverted_index: Optional[Dict[str, List[int]]]) -> str:
    """Reconstruct abstract text from OpenAlex inverted index format."""
    if not inverted_index:
        return ""

    words_with_positions = []
    for word, positions in inverted_index.items():
        for pos in positions or []:
            words_with_positions.append((pos, word))

    words_with_positions.sort(key=lambda x: x[0])
    return " ".join(word for _, word in words_with_positions)
