"""
arXiv data source.

Uses the public Atom export API (no key required). Queries use arXiv's
field prefixes: abs: for abstracts, ti: for titles, all: for anything.
arXiv asks clients to keep request rates low, so sub-queries go through
the worker pool with a small concurrency.
"""
from typing import Any, Dict, List, Optional
import re
import xml.etree.ElementTree as ET

from deep_research.core.exceptions import SourceParseError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate, SourceProvider, StructuredTerms
from deep_research.services.cancellation import CancellationToken
from .base import BaseSource

logger = get_logger(__name__)

ARXIV_API_URL = "https://export.arxiv.org/api/query"
ATOM_NS = {"atom": "http://www.w3.org/2005/Atom", "arxiv": "http://arxiv.org/schemas/atom"}

MAX_QUERIES = 12
_UNSAFE_CHARS = re.compile(r'["\\()]')


def _clean(term: str) -> str:
    return " ".join(_UNSAFE_CHARS.sub(" ", term).split())


def _field(prefix: str, term: str) -> str:
    """abs:word for one word, abs:(a AND b) for several."""
    words = _clean(term).split()
    if not words:
        return ""
    if len(words) == 1:
        return f"{prefix}:{words[0]}"
    return f"{prefix}:({' AND '.join(words)})"


class ArxivSource(BaseSource):
    provider = SourceProvider.ARXIV

    def build_queries(self, terms: StructuredTerms, topics: List[str], questions: List[str]) -> List[str]:
        queries: List[str] = []

        # Exact phrases must appear verbatim in the abstract
        for phrase in terms.exact_phrases:
            cleaned = _clean(phrase)
            if cleaned:
                queries.append(f'abs:"{cleaned}"' if " " in cleaned else f"abs:{cleaned}")

        # Title term combined with each abstract term
        for title_term in terms.title_terms[:3]:
            ti = _field("ti", title_term)
            if not ti:
                continue
            for abstract_term in terms.abstract_terms[:3]:
                ab = _field("abs", abstract_term)
                if ab:
                    queries.append(f"{ti} AND {ab}")
            queries.append(ti)

        for abstract_term in terms.abstract_terms:
            ab = _field("abs", abstract_term)
            if ab:
                queries.append(ab)

        general = [g for g in (_clean(t) for t in terms.general_terms[:4]) if g]
        if len(general) >= 2:
            queries.append(_field("all", " ".join(general[:2])))

        if not queries:
            queries = [q for q in (_field("all", topic) for topic in topics) if q]

        # dedupe, keep order
        return list(dict.fromkeys(queries))[:MAX_QUERIES]

    def fallback_queries(self, topics: List[str], tried: List[str]) -> List[str]:
        fallback = [f"all:{_clean(topic)}" for topic in topics if _clean(topic)]
        return [q for q in dict.fromkeys(fallback) if q not in tried]

    async def search(self, query: str, token: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        params = {
            "search_query": query,
            "start": 0,
            "max_results": self.config.max_results,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        response = await self._request("GET", ARXIV_API_URL, params=params)
        return parse_atom_feed(response.text)

    def normalize(self, raw: Dict[str, Any]) -> Optional[Candidate]:
        arxiv_id = raw.get("arxiv_id")
        pdf_url = raw.get("pdf_url")
        if not arxiv_id or not pdf_url:
            return None
        return Candidate(
            id=f"arxiv:{arxiv_id}",
            title=raw.get("title", ""),
            abstract=raw.get("abstract", ""),
            authors=raw.get("authors", []),
            source=self.provider,
            document_uri=pdf_url,
            published_date=raw.get("published") or None,
            doi=raw.get("doi") or None,
        )


def parse_atom_feed(xml_text: str) -> List[Dict[str, Any]]:
    """Parse an arXiv Atom feed into plain dicts."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise SourceParseError("arxiv", str(e))

    entries = []
    for entry in root.findall("atom:entry", ATOM_NS):
        id_url = _read_text(entry, "atom:id")
        title = _read_text(entry, "atom:title")
        if not id_url or not title:
            continue

        # http://arxiv.org/abs/2401.01234v2 -> 2401.01234
        arxiv_id = re.sub(r"v\d+$", "", id_url.rstrip("/").split("/abs/")[-1])

        authors = [
            name for name in (_read_text(a, "atom:name") for a in entry.findall("atom:author", ATOM_NS))
            if name
        ]
        entries.append({
            "arxiv_id": arxiv_id,
            "title": title,
            "abstract": _read_text(entry, "atom:summary"),
            "authors": authors,
            "published": _read_text(entry, "atom:published")[:10],
            "doi": _read_text(entry, "arxiv:doi"),
            "pdf_url": _extract_pdf_link(entry) or f"https://arxiv.org/pdf/{arxiv_id}",
        })
    return entries


def _read_text(node: ET.Element, path: str) -> str:
    found = node.find(path, ATOM_NS)
    if found is None or found.text is None:
        return ""
    return " ".join(found.text.split())


def _extract_pdf_link(entry: ET.Element) -> str:
    for link in entry.findall("atom:link", ATOM_NS):
        if link.attrib.get("title") == "pdf" or link.attrib.get("type") == "application/pdf":
            return link.attrib.get("href", "")
    return ""
