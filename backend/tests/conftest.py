"""
Pytest fixtures and configuration for backend tests.

Provides fake reasoning/embedding/search/document services so the
pipeline can be exercised end to end without network access.
"""
import asyncio
import os
import sys
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Settings are read at import time, so these must be set first
os.environ.setdefault("OPENAI_API_KEY", "test-key-not-real")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deep_research.core.exceptions import DocumentError  # noqa: E402
from deep_research.schemas.research import (  # noqa: E402
    Candidate,
    DocumentFailureReason,
    MaterializedDocument,
    SourceProvider,
    StructuredTerms,
)
from deep_research.schemas.retrieval import (  # noqa: E402
    BatchPaperScores,
    DocumentMetadataOutput,
    ExtractedNote,
    NoteBatchOutput,
    PaperScore,
    RelevantPagesOutput,
    SearchTermsOutput,
)
from deep_research.services.cache import MemoryCache  # noqa: E402
from deep_research.services.embeddings import EmbeddingService  # noqa: E402
from deep_research.services.sources.base import BaseSource  # noqa: E402


# === PDF builder ===

def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: List[str], title: str = "", author: str = "") -> bytes:
    """
    A minimal, valid PDF with one Helvetica text block per page.

    Each line of a page string becomes one text line.
    """
    objects: List[bytes] = []

    def add(body: bytes) -> int:
        objects.append(body)
        return len(objects)

    catalog = add(b"")  # filled below
    pages_obj = add(b"")
    font = add(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    kids = []
    for text in pages:
        lines = text.split("\n") if text else []
        ops = ["BT", "/F1 11 Tf", "14 TL", "72 740 Td"]
        for line in lines:
            ops.append(f"({_escape(line)}) Tj T*")
        ops.append("ET")
        data = "\n".join(ops).encode("latin-1")
        content = add(b"<< /Length %d >>\nstream\n" % len(data) + data + b"\nendstream")
        page = add(
            b"<< /Type /Page /Parent %d 0 R /MediaBox [0 0 612 792] "
            b"/Resources << /Font << /F1 %d 0 R >> >> /Contents %d 0 R >>" % (pages_obj, font, content)
        )
        kids.append(page)

    objects[catalog - 1] = b"<< /Type /Catalog /Pages %d 0 R >>" % pages_obj
    objects[pages_obj - 1] = b"<< /Type /Pages /Kids [%s] /Count %d >>" % (
        b" ".join(b"%d 0 R" % k for k in kids), len(kids)
    )

    info = None
    if title or author:
        info = add(b"<< /Title (%s) /Author (%s) >>" % (
            _escape(title).encode("latin-1"), _escape(author).encode("latin-1")
        ))

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    trailer = b"<< /Size %d /Root %d 0 R" % (len(objects) + 1, catalog)
    if info:
        trailer += b" /Info %d 0 R" % info
    trailer += b" >>"
    out += b"trailer\n" + trailer + b"\nstartxref\n%d\n%%%%EOF\n" % xref_at
    return bytes(out)


def page_text(topic: str, number: int) -> str:
    """Page text long enough to pass the localization length filter."""
    return (
        f"Page {number} discusses {topic} in detail. "
        f"The measured effect of {topic} was significant across all trials."
    )


# === Fakes ===

class FakeReasoning:
    """
    Deterministic stand-in for ReasoningService.

    - expand: topics become title terms
    - rerank: scores come from `scores` (by candidate id), default 0.8
    - localize_pages: `pages` when given, otherwise every page offered
    - extract_notes: first sentence of each page becomes a quote
    """

    def __init__(
        self,
        scores: Optional[Dict[str, float]] = None,
        pages: Optional[List[int]] = None,
        fail: tuple = (),
        extract_delay: float = 0.0,
        terms: Optional[SearchTermsOutput] = None,
        metadata: Optional[DocumentMetadataOutput] = None,
    ):
        self.scores = scores or {}
        self.pages = pages
        self.fail = fail
        self.extract_delay = extract_delay
        self.terms = terms
        self.metadata = metadata
        self.calls: Dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    async def expand(self, topics, questions):
        self._count("expand")
        if self.terms is not None:
            return self.terms
        return SearchTermsOutput(title_terms=list(topics), general_terms=list(questions))

    async def rerank(self, candidates, questions, keywords):
        self._count("rerank")
        return BatchPaperScores(scores=[
            PaperScore(paper_number=i + 1, score=self.scores.get(c.id, 0.8), reason="fake")
            for i, c in enumerate(candidates)
        ])

    async def localize_pages(self, pages, page_numbers, questions, keywords):
        self._count("localize_pages")
        return RelevantPagesOutput(pages=list(self.pages) if self.pages is not None else list(page_numbers))

    async def extract_notes(self, pages, page_numbers, questions, bibliography, title=None):
        self._count("extract_notes")
        if self.extract_delay:
            await asyncio.sleep(self.extract_delay)
        return NoteBatchOutput(notes=[
            ExtractedNote(
                quote=text.split(". ")[0],
                justification="answers the question",
                related_question=questions[0] if questions else "",
                page_number=number,
                relevance_score=0.9,
            )
            for text, number in zip(pages, page_numbers)
        ])

    async def describe_document(self, text, title="", author=""):
        self._count("describe_document")
        return self.metadata if self.metadata is not None else DocumentMetadataOutput()


class FakeEmbeddings:
    """
    Two-dimensional embeddings: texts mentioning "relevant" point one way,
    everything else the other. Queries always point the "relevant" way.
    """

    def __init__(self, fail: bool = False, fail_documents: bool = False):
        self.fail = fail
        self.fail_documents = fail_documents
        self.document_calls = 0

    async def aembed_query(self, text):
        if self.fail:
            raise RuntimeError("embeddings unavailable")
        return [1.0, 0.0]

    async def aembed_documents(self, texts):
        if self.fail or self.fail_documents:
            raise RuntimeError("embeddings unavailable")
        self.document_calls += 1
        return [[1.0, 0.0] if "relevant" in t.lower() else [0.0, 1.0] for t in texts]


class FakeSource(BaseSource):
    """Search provider that returns canned candidates (or fails)."""

    provider = SourceProvider.ARXIV

    def __init__(
        self,
        candidates: Optional[List[Candidate]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        provider: SourceProvider = SourceProvider.ARXIV,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.candidates = candidates or []
        self.error = error
        self.delay = delay
        self.provider = provider
        self.queries: List[str] = []

    def build_queries(self, terms, topics, questions):
        return [" ".join(terms.keywords() or topics)]

    async def search(self, query, token=None):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [c.model_dump() for c in self.candidates]

    def normalize(self, raw):
        return Candidate.model_validate(raw)


class FakeMaterializer:
    """
    Document materializer backed by a dict of uri -> pages.

    A uri mapped to a DocumentFailureReason raises DocumentError with
    that reason.
    """

    def __init__(self, documents: Dict[str, object], delay: float = 0.0):
        self.documents = documents
        self.delay = delay
        self.fetched: List[str] = []

    async def fetch(self, uri, token=None):
        self.fetched.append(uri)
        if self.delay:
            await asyncio.sleep(self.delay)
        entry = self.documents.get(uri)
        if entry is None:
            raise DocumentError(uri, DocumentFailureReason.NETWORK_ERROR.value, "HTTP 404", 404)
        if isinstance(entry, DocumentFailureReason):
            raise DocumentError(uri, entry.value)
        return b"%PDF-fake"

    async def parse(self, data, document_id, uri):
        return MaterializedDocument(document_id=document_id, uri=uri, pages=list(self.documents[uri]))

    async def enhance_metadata(self, document):
        return document


def make_candidate(
    cid: str,
    title: str = "",
    uri: Optional[str] = None,
    source: SourceProvider = SourceProvider.ARXIV,
    **kwargs,
) -> Candidate:
    return Candidate(
        id=cid,
        title=title or f"Paper {cid}",
        abstract=kwargs.pop("abstract", f"Abstract of {title or cid}"),
        source=source,
        document_uri=uri or f"https://example.org/{cid.replace(':', '_')}.pdf",
        **kwargs,
    )


# === Fixtures ===

@pytest.fixture
def memory_cache():
    return MemoryCache()


@pytest.fixture
def fake_reasoning():
    return FakeReasoning()


@pytest.fixture
def fake_embeddings(memory_cache):
    return EmbeddingService(memory_cache, FakeEmbeddings())


@pytest.fixture
def terms():
    return StructuredTerms(
        exact_phrases=["sparse attention"],
        title_terms=["transformer"],
        abstract_terms=["long context"],
        general_terms=["efficiency", "memory"],
    )


@pytest.fixture
def sample_pdf():
    """Three-page PDF with a numbered reference list on the last page."""
    return build_pdf(
        [
            "Sparse Attention for Long Documents\nAda Lovelace and Alan Turing\n"
            + page_text("sparse attention", 1),
            page_text("sparse attention", 2) + "\nPrior work [1] and [2] used dense attention.",
            "References\n[1] Vaswani A. Attention is all you need. 2017.\n"
            "[2] Beltagy I. Longformer: the long-document transformer. 2020.",
        ],
        title="Sparse Attention for Long Documents",
        author="Ada Lovelace, Alan Turing",
    )


@pytest.fixture
def test_client():
    """Create a test client for API testing."""
    # Import here to avoid circular imports
    from deep_research.core.rate_limit import limiter
    from deep_research.main import app

    limiter.enabled = False
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
