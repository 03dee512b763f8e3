"""
Document materialization.

Fetches a document over HTTP, validates that it really is a PDF within
the size limit, and parses it into per-page text, metadata and a
best-effort bibliography. Failures are classified so the orchestrator
can report a short reason per document.
"""
import asyncio
import hashlib
import io
import json
import re
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from deep_research.core.exceptions import DocumentError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import DocumentFailureReason, MaterializedDocument
from deep_research.schemas.retrieval import DocumentMetadataOutput, ResearchConfig
from deep_research.services.cache import BaseCache
from deep_research.services.cancellation import CancellationToken
from deep_research.services.reasoning import ReasoningService
from .types import METADATA_CACHE_TTL, METADATA_PAGES

logger = get_logger(__name__)

PDF_SIGNATURE = b"%PDF-"
CHUNK_SIZE = 64 * 1024

ACCEPT_HEADER = "application/pdf,application/octet-stream;q=0.9,*/*;q=0.8"
USER_AGENT = "Mozilla/5.0 (compatible; DeepResearch/1.0)"

BLOCKED_STATUSES = {401, 403, 429}

_REF_HEADER = re.compile(
    r"(?:^|\n)\s*(?:#+\s*)?(?:references|bibliography|works cited|reference list|endnotes)\s*(?:\n|$)",
    re.IGNORECASE,
)
_NUMBERED_START = re.compile(r"^(?:\[\d+\]|\d+\.|\d+\))\s")
_BRACKET_MARKER = re.compile(r"(\[\d+\])")


def _is_pdf_content_type(content_type: str) -> bool:
    content_type = content_type.lower()
    return "pdf" in content_type or "application/octet-stream" in content_type


def validate_url(uri: str) -> str:
    parsed = urlparse(uri.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise DocumentError(uri, DocumentFailureReason.INVALID_URL.value)
    return parsed.geturl()


def extract_bibliography(pages: List[str]) -> List[str]:
    """
    Best-effort reference list.

    Scans backwards for a References/Bibliography header, takes the text
    from there to the end, and splits it into entries on blank lines,
    numbered line starts, or inline [n] markers.
    """
    start_page, start_offset = -1, 0
    for i in range(len(pages) - 1, -1, -1):
        matches = list(_REF_HEADER.finditer(pages[i]))
        if matches:
            start_page, start_offset = i, matches[-1].end()
            break
    if start_page == -1:
        return []

    raw = "\n".join([pages[start_page][start_offset:]] + pages[start_page + 1:])

    blocks = [b for b in re.split(r"\n\s*\n", raw) if b.strip()]
    if len(blocks) <= 1:
        # pypdf rarely emits blank lines; fall back to numbered line starts
        blocks, current = [], []
        for line in raw.splitlines():
            if _NUMBERED_START.match(line.strip()) and current:
                blocks.append("\n".join(current))
                current = []
            current.append(line)
        if current:
            blocks.append("\n".join(current))

    references = []
    for block in blocks:
        clean = " ".join(block.split())
        if len(clean) < 10:
            continue
        parts = [p for p in _BRACKET_MARKER.split(clean) if p.strip()]
        if len(parts) > 2 and _BRACKET_MARKER.fullmatch(parts[0]):
            current = ""
            for part in parts:
                if _BRACKET_MARKER.fullmatch(part):
                    if current:
                        references.append(current.strip())
                    current = part
                else:
                    current += part
            if current:
                references.append(current.strip())
        else:
            references.append(clean)
    return references


def _parse_pdf(data: bytes) -> Tuple[List[str], str, str, str]:
    reader = PdfReader(io.BytesIO(data))
    pages = []
    for page in reader.pages:
        try:
            pages.append(page.extract_text() or "")
        except Exception as e:
            # one broken content stream should not lose the rest of the document
            logger.debug(f"Page text extraction failed: {e}")
            pages.append("")
    info = reader.metadata
    title = (info.title or "") if info else ""
    author = (info.author or "") if info else ""
    subject = (info.subject or "") if info else ""
    return pages, str(title).strip(), str(author).strip(), str(subject).strip()


def _split_authors(author: str) -> List[str]:
    return [a.strip() for a in re.split(r",|;|\band\b", author) if a.strip()]


class DocumentMaterializer:
    """
    Fetch and parse documents.

    `transport` lets tests replace the network with httpx.MockTransport.
    """

    def __init__(
        self,
        config: Optional[ResearchConfig] = None,
        reasoning: Optional[ReasoningService] = None,
        cache: Optional[BaseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ResearchConfig()
        self.reasoning = reasoning
        self.cache = cache
        self._transport = transport

    async def fetch(self, uri: str, token: Optional[CancellationToken] = None) -> bytes:
        """
        Download a PDF.

        Raises:
            DocumentError: with a DocumentFailureReason value as `reason`
        """
        url = validate_url(uri)
        limit = self.config.max_document_bytes
        timeout = self.config.fetch_timeout_seconds

        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                headers={"Accept": ACCEPT_HEADER, "User-Agent": USER_AGENT},
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code in BLOCKED_STATUSES:
                        raise DocumentError(uri, DocumentFailureReason.BLOCKED_BY_SOURCE.value, f"HTTP {response.status_code}", response.status_code)
                    if response.status_code >= 400:
                        raise DocumentError(uri, DocumentFailureReason.NETWORK_ERROR.value, f"HTTP {response.status_code}", response.status_code)

                    content_type = response.headers.get("Content-Type", "")
                    if not _is_pdf_content_type(content_type):
                        raise DocumentError(uri, DocumentFailureReason.NOT_A_DOCUMENT.value, content_type or "no content type")

                    length = response.headers.get("Content-Length", "")
                    if length.isdigit() and int(length) > limit:
                        raise DocumentError(uri, DocumentFailureReason.TOO_LARGE.value, f"{length} bytes")

                    chunks, total = [], 0
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        total += len(chunk)
                        if total > limit:
                            raise DocumentError(uri, DocumentFailureReason.TOO_LARGE.value, f"over {limit} bytes")
                        chunks.append(chunk)
                        if token is not None:
                            token.raise_if_cancelled()
        except httpx.TimeoutException:
            raise DocumentError(uri, DocumentFailureReason.TIMED_OUT.value, f"after {timeout}s")
        except httpx.HTTPError as e:
            raise DocumentError(uri, DocumentFailureReason.NETWORK_ERROR.value, type(e).__name__)

        data = b"".join(chunks)
        if not data.lstrip().startswith(PDF_SIGNATURE):
            raise DocumentError(uri, DocumentFailureReason.NOT_A_DOCUMENT.value, "missing PDF signature")

        logger.info(f"Fetched {uri} ({len(data) / 1024:.1f}KB)")
        return data

    async def parse(self, data: bytes, document_id: str, uri: str) -> MaterializedDocument:
        """Parse PDF bytes into pages, metadata and bibliography."""
        try:
            pages, title, author, subject = await asyncio.to_thread(_parse_pdf, data)
        except (PyPdfError, ValueError, TypeError, KeyError, OSError) as e:
            raise DocumentError(uri, DocumentFailureReason.UNPARSEABLE.value, str(e)[:200])

        if not any(p.strip() for p in pages):
            raise DocumentError(uri, DocumentFailureReason.UNPARSEABLE.value, "no extractable text")

        return MaterializedDocument(
            document_id=document_id,
            uri=uri,
            pages=pages,
            bibliography=extract_bibliography(pages),
            title=title,
            authors=_split_authors(author),
            subject=subject,
        )

    async def enhance_metadata(self, document: MaterializedDocument) -> MaterializedDocument:
        """
        Prefer reasoned title/author/subject over the PDF info header.

        Uses the first METADATA_PAGES pages; results are cached by a hash
        of that text. Any failure keeps the parsed metadata.
        """
        if self.reasoning is None:
            return document
        opening = "\n\n".join(document.pages[:METADATA_PAGES])
        if len(opening.strip()) <= 100:
            return document

        key = f"metadata:{hashlib.sha256(opening.encode('utf-8')).hexdigest()}"
        meta = None
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached:
                try:
                    meta = DocumentMetadataOutput.model_validate(json.loads(cached))
                except ValueError:
                    meta = None

        if meta is None:
            try:
                meta = await self.reasoning.describe_document(
                    opening, document.title, ", ".join(document.authors)
                )
            except Exception as e:
                logger.warning(f"Metadata enhancement failed for {document.document_id}: {e}")
                return document
            if self.cache is not None and (meta.title or meta.author):
                self.cache.set(key, meta.model_dump_json(), METADATA_CACHE_TTL)

        return document.model_copy(update={
            "title": meta.title or document.title,
            "authors": _split_authors(meta.author) or document.authors,
            "subject": meta.subject or document.subject,
        })
