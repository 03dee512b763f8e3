"""
Reasoning service.

Every LLM call the pipeline makes lives here. Each method builds a
prompt and asks the chat model for a typed reply through LangChain's
with_structured_output; decode_llm_output substitutes defaults when
the reply cannot be parsed. Transport and API errors surface as
LLMError and the caller decides whether they are fatal.
"""
from typing import List, Optional, Type

from deep_research.core.exceptions import LLMError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate
from deep_research.schemas.retrieval import (
    BatchPaperScores,
    DocumentMetadataOutput,
    NoteBatchOutput,
    RelevantPagesOutput,
    SearchTermsOutput,
)
from deep_research.services.llm import SchemaT, decode_llm_output, get_llm

logger = get_logger(__name__)

# Per-page character budgets keep prompts inside the context window
LOCALIZE_PAGE_CHARS = 1500
EXTRACT_PAGE_CHARS = 6000
METADATA_CHARS = 6000


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "- (none)"


class ReasoningService:

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    async def _ask(self, schema: Type[SchemaT], prompt: str) -> SchemaT:
        structured = self.llm.with_structured_output(schema, method="function_calling", include_raw=True)
        try:
            result = await structured.ainvoke(prompt)
        except Exception as e:
            raise LLMError(f"{type(e).__name__}: {e}") from e
        return decode_llm_output(schema, result)

    async def expand(self, topics: List[str], questions: List[str]) -> SearchTermsOutput:
        """Turn loose topics and questions into structured search terms."""
        prompt = f"""You help a researcher search arXiv and other academic indexes.

TOPICS:
{_bullets(topics)}

QUESTIONS:
{_bullets(questions)}

Fill in four lists of short search terms:
- "exact_phrases": multi-word phrases that should match verbatim
- "title_terms": words or phrases expected in paper titles
- "abstract_terms": words or phrases expected in abstracts
- "general_terms": broader related terms and synonyms

Use at most 8 terms per list. Do not repeat a term across lists."""
        return await self._ask(SearchTermsOutput, prompt)

    async def rerank(
        self,
        candidates: List[Candidate],
        questions: List[str],
        keywords: List[str],
    ) -> BatchPaperScores:
        """Score a batch of candidates for relevance (0..1)."""
        papers_text = ""
        for i, candidate in enumerate(candidates):
            papers_text += f"""
PAPER {i+1}:
Title: {candidate.title}
Abstract: {candidate.abstract[:800]}
---
"""
        prompt = f"""Score each paper's relevance to the research questions.

QUESTIONS:
{_bullets(questions)}

KEYWORDS: {", ".join(keywords)}
{papers_text}
Return "scores": one {{paper_number, score (0.0-1.0), reason}} entry
for EACH paper. Keep reasons under 30 words."""
        return await self._ask(BatchPaperScores, prompt)

    async def localize_pages(
        self,
        pages: List[str],
        page_numbers: List[int],
        questions: List[str],
        keywords: List[str],
    ) -> RelevantPagesOutput:
        """Pick the pages (1-based) worth reading closely."""
        context = "\n\n".join(
            f"==Page {number}==\n{text[:LOCALIZE_PAGE_CHARS]}"
            for number, text in zip(page_numbers, pages)
        )
        prompt = f"""Below are pages from one academic document.

QUESTIONS:
{_bullets(questions)}

KEYWORDS: {", ".join(keywords)}

{context}

Return "pages": the page numbers of only those pages that likely
contain passages answering the questions. Return an empty list if none do."""
        return await self._ask(RelevantPagesOutput, prompt)

    async def extract_notes(
        self,
        pages: List[str],
        page_numbers: List[int],
        questions: List[str],
        bibliography: List[str],
        title: Optional[str] = None,
    ) -> NoteBatchOutput:
        """Extract verbatim quotes answering the questions from a page batch."""
        context = "\n\n".join(
            f"==Page {number}==\n{text[:EXTRACT_PAGE_CHARS]}"
            for number, text in zip(page_numbers, pages)
        )
        references = "\n".join(bibliography[:80]) if bibliography else "(no reference list found)"
        prompt = f"""Extract quotations from the document "{title or 'Untitled'}".

QUESTIONS:
{_bullets(questions)}

{context}

REFERENCE LIST:
{references}

Return "notes": for each quote, the quote, a short justification, the
related question, its page_number, a relevance_score (0.0-1.0) and its
citations as {{inline marker such as "[12]", full matching reference entry}}.

Rules:
- Quotes must be copied verbatim from the page text.
- page_number is the page the quote appears on.
- Only cite references that appear in the quote."""
        return await self._ask(NoteBatchOutput, prompt)

    async def describe_document(self, text: str, title: str = "", author: str = "") -> DocumentMetadataOutput:
        """Infer title, author and subject from the opening pages."""
        prompt = f"""From the opening pages of an academic document, identify its metadata.

Known title: {title or "unknown"}
Known author: {author or "unknown"}

TEXT:
{text[:METADATA_CHARS]}

Return the title, the authors (comma-separated) and a one-line subject."""
        return await self._ask(DocumentMetadataOutput, prompt)
