"""
Retrieval Schemas

Pydantic models for reasoning-service outputs and the per-run research config.

Reasoning outputs are lenient: every field has a default and
scalar/None values are coerced, and list items are validated one by one
so a malformed item is dropped without losing its siblings.
"""
from typing import Annotated, Any, Callable, List, Optional, Type
from pydantic import BaseModel, BeforeValidator, Field, ValidationError


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [value]


def _as_str_list(value: Any) -> List[str]:
    return [str(v).strip() for v in _as_list(value) if v is not None and str(v).strip()]


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_int_list(value: Any) -> List[int]:
    numbers = []
    for v in _as_list(value):
        try:
            numbers.append(int(v))
        except (TypeError, ValueError):
            continue
    return numbers


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_score(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return min(max(score, 0.0), 1.0)


StrList = Annotated[List[str], BeforeValidator(_as_str_list)]
IntList = Annotated[List[int], BeforeValidator(_as_int_list)]
LenientStr = Annotated[str, BeforeValidator(_as_str)]
LenientInt = Annotated[int, BeforeValidator(_as_int)]
Score = Annotated[Optional[float], BeforeValidator(_as_score)]


def _valid_items(model: Type[BaseModel], text_field: Optional[str] = None) -> Callable[[Any], list]:
    """Validate list items one at a time, dropping the ones that fail."""
    def coerce(value: Any) -> list:
        items = []
        for item in _as_list(value):
            if isinstance(item, model):
                items.append(item)
                continue
            if text_field and isinstance(item, str):
                item = {text_field: item}
            try:
                items.append(model.model_validate(item))
            except ValidationError:
                continue
        return items
    return coerce


class SearchTermsOutput(BaseModel):
    """Structured output for search term expansion"""
    exact_phrases: StrList = Field(default_factory=list, description="Multi-word phrases that must match verbatim")
    title_terms: StrList = Field(default_factory=list, description="Terms expected in paper titles")
    abstract_terms: StrList = Field(default_factory=list, description="Terms expected in abstracts")
    general_terms: StrList = Field(default_factory=list, description="Broader related terms")


class PaperScore(BaseModel):
    """Relevance score for a single paper in a batch"""
    paper_number: LenientInt = Field(default=0, description="The paper number (1-indexed) being scored")
    score: Score = Field(default=None, description="Relevance from 0.0 to 1.0")
    reason: LenientStr = Field(default="", description="Brief reason for the score")


class BatchPaperScores(BaseModel):
    """Batch relevance scores for multiple papers"""
    scores: Annotated[List[PaperScore], BeforeValidator(_valid_items(PaperScore))] = Field(default_factory=list)


class RelevantPagesOutput(BaseModel):
    """Pages (1-based) that likely answer the research questions"""
    pages: IntList = Field(default_factory=list)


class CitationOutput(BaseModel):
    inline: LenientStr = ""
    full: LenientStr = ""


class ExtractedNote(BaseModel):
    """One quote extracted from a page batch"""
    quote: LenientStr = ""
    justification: LenientStr = ""
    related_question: LenientStr = ""
    page_number: LenientInt = 0
    relevance_score: Score = None
    # a bare string is taken as the inline marker
    citations: Annotated[List[CitationOutput], BeforeValidator(_valid_items(CitationOutput, "inline"))] = Field(default_factory=list)


class NoteBatchOutput(BaseModel):
    notes: Annotated[List[ExtractedNote], BeforeValidator(_valid_items(ExtractedNote))] = Field(default_factory=list)


class DocumentMetadataOutput(BaseModel):
    title: LenientStr = ""
    author: LenientStr = ""
    subject: LenientStr = ""


class SourceConfig(BaseModel):
    """Configuration for a specific search provider"""
    enabled: bool = Field(default=True, description="Whether this provider is queried")
    max_results: int = Field(default=50, ge=0, le=200, description="Maximum results to fetch per query")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300, description="Budget for the whole provider call")


class ResearchConfig(BaseModel):
    """
    Configuration for one research run.
    Controls provider usage, concurrency limits, thresholds and timeouts.
    """
    # Providers
    arxiv: SourceConfig = Field(default_factory=lambda: SourceConfig(max_results=50))
    openalex: SourceConfig = Field(default_factory=lambda: SourceConfig(max_results=50))
    google_cse: SourceConfig = Field(default_factory=lambda: SourceConfig(max_results=50))
    pdfvector: SourceConfig = Field(default_factory=lambda: SourceConfig(max_results=40))
    provider_concurrency: int = Field(default=2, ge=1, le=10, description="Parallel sub-queries within one provider")

    # Term expansion
    max_terms_per_list: int = Field(default=8, ge=1, le=20)

    # Relevance filter
    min_similarity: float = Field(default=0.30, ge=0.0, le=1.0)
    rerank_pool_size: int = Field(default=40, ge=1, le=200)
    rerank_batch_size: int = Field(default=10, ge=1, le=50)
    rerank_concurrency: int = Field(default=2, ge=1, le=10)
    rerank_timeout_seconds: float = Field(default=90.0, gt=0)
    min_rerank_score: float = Field(default=0.2, ge=0.0, le=1.0)
    max_shortlist: int = Field(default=20, ge=1, le=100)

    # Documents
    document_concurrency: int = Field(default=3, ge=1, le=10)
    document_timeout_seconds: float = Field(default=300.0, gt=0)
    max_analysis_attempts: int = Field(default=2, ge=1, le=5)
    max_document_bytes: int = Field(default=25 * 1024 * 1024, gt=0)
    fetch_timeout_seconds: float = Field(default=15.0, gt=0)
    page_batch_size: int = Field(default=4, ge=1, le=20)

    @classmethod
    def default(cls) -> "ResearchConfig":
        """Return the default configuration"""
        return cls()
