"""
Two-pass note extraction.

Pass 1 asks which pages of a document are worth reading for the
research questions. Pass 2 reads only those pages, in ascending order
and in small batches, and streams the notes of each batch as soon as
they are decoded.

Notes are kept only when the quote can be found on a page of its batch;
citations are kept only when they can be tied to the document's
reference list (when it has one).
"""
import re
import unicodedata
from typing import AsyncIterator, List, Optional

from deep_research.core.exceptions import ExtractionError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Citation, MaterializedDocument, Note
from deep_research.schemas.retrieval import CitationOutput, ExtractedNote
from deep_research.services.cancellation import CancellationToken
from deep_research.services.reasoning import ReasoningService
from .types import MIN_PAGE_CHARS

logger = get_logger(__name__)

DEFAULT_NOTE_SCORE = 0.75
QUOTE_PREFIX_CHARS = 60

_NUMBER_MARKER = re.compile(r"\d+")
_YEAR = re.compile(r"(?:19|20)\d{2}[a-z]?")
_WORD = re.compile(r"[A-Za-z][A-Za-z\-']+")
_BIB_NUMBER = re.compile(r"^\s*(?:\[(\d+)\]|(\d+)[.)])")


# curly quotes and typographic dashes as extracted PDF text carries them
_PUNCTUATION = str.maketrans({
    "\u2018": "'", "\u2019": "'", "\u201c": '"', "\u201d": '"',
    "\u2010": "-", "\u2011": "-", "\u2013": "-", "\u2014": "-",
})


def _squash(text: str) -> str:
    """Fold ligatures and typographic punctuation, lower-case and collapse whitespace."""
    text = unicodedata.normalize("NFKC", text).translate(_PUNCTUATION)
    text = re.sub(r"-\s*\n\s*", "", text)
    return " ".join(text.lower().split())


def quote_on_page(quote: str, page_text: str) -> bool:
    """True when the quote (or its opening) appears on the page."""
    q = _squash(quote)
    if not q:
        return False
    page = _squash(page_text)
    if q in page:
        return True
    # models often trim or re-punctuate the tail of long quotes
    return len(q) > QUOTE_PREFIX_CHARS and q[:QUOTE_PREFIX_CHARS] in page


def link_citation(citation: CitationOutput, bibliography: List[str]) -> Optional[Citation]:
    """
    Tie a citation to a reference entry.

    Numeric markers ([12], 12.) match the numbered entry (or the 12th
    entry when the list is unnumbered). Author-year markers match the
    entry that contains both the surname and the year. Without a
    bibliography the citation is kept as given.
    """
    inline = citation.inline.strip()
    if not inline:
        return None
    if not bibliography:
        return Citation(inline=inline, full=citation.full)

    numbers = _NUMBER_MARKER.findall(inline)
    years = _YEAR.findall(inline)

    if numbers and not years:
        number = int(numbers[0])
        for entry in bibliography:
            match = _BIB_NUMBER.match(entry)
            if match and int(match.group(1) or match.group(2)) == number:
                return Citation(inline=inline, full=entry)
        if not any(_BIB_NUMBER.match(e) for e in bibliography) and 1 <= number <= len(bibliography):
            return Citation(inline=inline, full=bibliography[number - 1])
        return None

    if years:
        surnames = [w.lower() for w in _WORD.findall(inline) if w.lower() not in ("et", "al", "and")]
        for entry in bibliography:
            lower = entry.lower()
            if years[0][:4] in lower and any(s in lower for s in surnames):
                return Citation(inline=inline, full=entry)
        return None

    full = citation.full.strip()
    if full:
        head = _squash(full)[:40]
        for entry in bibliography:
            if head and head in _squash(entry):
                return Citation(inline=inline, full=entry)
    return None


class TwoPassExtractor:

    def __init__(self, reasoning: ReasoningService, page_batch_size: int = 4):
        if page_batch_size < 1:
            raise ValueError("page_batch_size must be >= 1")
        self.reasoning = reasoning
        self.page_batch_size = page_batch_size

    async def localize_pages(
        self,
        document: MaterializedDocument,
        questions: List[str],
        keywords: List[str],
        token: Optional[CancellationToken] = None,
    ) -> List[int]:
        """
        Pass 1: choose relevant pages.

        Returns:
            Sorted, de-duplicated 0-based page indices within the document
        """
        candidates = [i for i, text in enumerate(document.pages) if len(text.strip()) >= MIN_PAGE_CHARS]
        if not candidates:
            logger.info(f"{document.document_id}: no pages with text")
            return []

        result = await self.reasoning.localize_pages(
            [document.pages[i] for i in candidates],
            [i + 1 for i in candidates],
            questions,
            keywords,
        )
        if token is not None:
            token.raise_if_cancelled()

        allowed = set(candidates)
        indices = sorted({n - 1 for n in result.pages if (n - 1) in allowed})
        dropped = len(result.pages) - len(indices)
        if dropped > 0:
            logger.debug(f"{document.document_id}: ignored {dropped} invalid or repeated page numbers")
        logger.info(f"{document.document_id}: {len(indices)}/{document.page_count} pages selected")
        return indices

    async def extract_notes(
        self,
        document: MaterializedDocument,
        page_indices: List[int],
        questions: List[str],
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[List[Note]]:
        """
        Pass 2: stream notes batch by batch, in page order.

        A batch whose reasoning call fails is skipped. If every batch
        fails, ExtractionError is raised after the last one.
        """
        pages = sorted({i for i in page_indices if 0 <= i < document.page_count})
        if not pages:
            return

        size = self.page_batch_size
        batches = [pages[i:i + size] for i in range(0, len(pages), size)]
        failures = 0

        for batch in batches:
            if token is not None:
                token.raise_if_cancelled()
            try:
                output = await self.reasoning.extract_notes(
                    [document.pages[i] for i in batch],
                    [i + 1 for i in batch],
                    questions,
                    document.bibliography,
                    document.title,
                )
            except Exception as e:
                failures += 1
                logger.warning(
                    f"{document.document_id}: extraction failed for pages "
                    f"{[i + 1 for i in batch]}: {type(e).__name__}: {e}"
                )
                continue
            if token is not None:
                token.raise_if_cancelled()

            notes = [
                note for note in (self._to_note(raw, document, batch, questions) for raw in output.notes)
                if note is not None
            ]
            if notes:
                yield notes

        if failures == len(batches):
            raise ExtractionError(document.document_id, f"all {failures} page batches failed")

    def _to_note(
        self,
        raw: ExtractedNote,
        document: MaterializedDocument,
        batch: List[int],
        questions: List[str],
    ) -> Optional[Note]:
        if not raw.quote:
            return None

        # stated page first, then any page of the batch
        stated = raw.page_number - 1
        order = ([stated] if stated in batch else []) + [i for i in batch if i != stated]
        page_index = next((i for i in order if quote_on_page(raw.quote, document.pages[i])), None)
        if page_index is None:
            logger.debug(f"{document.document_id}: dropped untraceable quote {raw.quote[:40]!r}")
            return None

        citations = []
        for citation in raw.citations:
            linked = link_citation(citation, document.bibliography)
            if linked is not None and linked not in citations:
                citations.append(linked)

        question = raw.related_question or (questions[0] if len(questions) == 1 else "")
        return Note(
            quote=raw.quote,
            justification=raw.justification,
            question=question,
            page_number=page_index + 1,
            document_id=document.document_id,
            document_uri=document.uri,
            relevance_score=raw.relevance_score if raw.relevance_score is not None else DEFAULT_NOTE_SCORE,
            citations=tuple(citations),
        )
