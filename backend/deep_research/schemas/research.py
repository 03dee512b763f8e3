"""
Research Schemas

Core data model for a research run: the query, candidate documents,
materialized documents, extracted notes and run snapshots.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import hashlib


class AnalysisStatus(str, Enum):
    """Per-document progress. Moves forward only."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        return _STATUS_ORDER[self]


TERMINAL_STATUSES = frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.FAILED, AnalysisStatus.STOPPED})

_STATUS_ORDER = {
    AnalysisStatus.PENDING: 0,
    AnalysisStatus.DOWNLOADING: 1,
    AnalysisStatus.PROCESSING: 2,
    AnalysisStatus.EXTRACTING: 3,
    AnalysisStatus.COMPLETED: 4,
    AnalysisStatus.FAILED: 4,
    AnalysisStatus.STOPPED: 4,
}


class ResearchPhase(str, Enum):
    """Run-level phase."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    SEARCHING = "searching"
    FILTERING = "filtering"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (ResearchPhase.COMPLETED, ResearchPhase.FAILED, ResearchPhase.STOPPED)

    @property
    def rank(self) -> int:
        return _PHASE_ORDER[self]


_PHASE_ORDER = {
    ResearchPhase.IDLE: 0,
    ResearchPhase.INITIALIZING: 1,
    ResearchPhase.SEARCHING: 2,
    ResearchPhase.FILTERING: 3,
    ResearchPhase.EXTRACTING: 4,
    ResearchPhase.COMPLETED: 5,
    ResearchPhase.FAILED: 5,
    ResearchPhase.STOPPED: 5,
}


class SourceProvider(str, Enum):
    ARXIV = "arxiv"
    OPENALEX = "openalex"
    GOOGLE_CSE = "google_cse"
    PDFVECTOR = "pdfvector"
    USER = "user"


class DocumentFailureReason(str, Enum):
    """Why a document could not be materialized."""
    NOT_A_DOCUMENT = "not_a_document"
    TOO_LARGE = "too_large"
    TIMED_OUT = "timed_out"
    BLOCKED_BY_SOURCE = "blocked_by_source"
    NETWORK_ERROR = "network_error"
    INVALID_URL = "invalid_url"
    UNPARSEABLE = "unparseable"


def _clean_strings(values: List[str]) -> List[str]:
    cleaned = []
    for value in values or []:
        value = (value or "").strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class RunQuery(BaseModel):
    """
    Immutable input for one research run.

    At least one of topics or urls must be given. When no questions are
    given the topics double as the research questions.
    """
    model_config = ConfigDict(frozen=True)

    topics: Tuple[str, ...] = Field(default_factory=tuple, description="Loose research topics")
    questions: Tuple[str, ...] = Field(default_factory=tuple, description="Questions the notes should answer")
    urls: Tuple[str, ...] = Field(default_factory=tuple, description="Documents supplied directly by the user")

    @field_validator("topics", "questions", "urls", mode="before")
    @classmethod
    def _strip_blanks(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(_clean_strings(value))

    @model_validator(mode="after")
    def _require_topics_or_urls(self):
        if not self.topics and not self.urls:
            raise ValueError("A research run needs at least one topic or one document URL")
        return self

    @property
    def effective_questions(self) -> List[str]:
        return list(self.questions) if self.questions else list(self.topics)


class StructuredTerms(BaseModel):
    """Search terms split by where they should match."""
    exact_phrases: List[str] = Field(default_factory=list)
    title_terms: List[str] = Field(default_factory=list)
    abstract_terms: List[str] = Field(default_factory=list)
    general_terms: List[str] = Field(default_factory=list)

    def keywords(self) -> List[str]:
        return self.exact_phrases + self.title_terms + self.abstract_terms + self.general_terms

    @property
    def is_empty(self) -> bool:
        return not self.keywords()


class Candidate(BaseModel):
    """A document found by a search provider or supplied by the user."""
    id: str
    title: str = ""
    abstract: str = ""
    authors: List[str] = Field(default_factory=list)
    source: SourceProvider
    document_uri: str
    published_date: Optional[str] = None
    doi: Optional[str] = None

    # Populated by the relevance filter
    similarity: Optional[float] = None
    relevance_score: Optional[float] = None
    relevance_reason: Optional[str] = None

    @classmethod
    def from_user_uri(cls, uri: str) -> "Candidate":
        digest = hashlib.sha1(uri.encode("utf-8")).hexdigest()[:12]
        return cls(id=f"user:{digest}", title=uri, source=SourceProvider.USER, document_uri=uri)


class Citation(BaseModel):
    model_config = ConfigDict(frozen=True)

    inline: str = ""
    full: str = ""


class Note(BaseModel):
    """A quotation that answers one research question, tied to its page."""
    model_config = ConfigDict(frozen=True)

    quote: str
    justification: str = ""
    question: str = ""
    page_number: int = Field(ge=1, description="1-based page the quote was found on")
    document_id: str
    document_uri: str
    relevance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    citations: Tuple[Citation, ...] = ()

    @property
    def key(self) -> Tuple[str, int, str]:
        return (self.document_id, self.page_number, self.quote[:20])


class MaterializedDocument(BaseModel):
    """A fetched and parsed document. Pages are in document order."""
    document_id: str
    uri: str
    pages: List[str] = Field(default_factory=list)
    bibliography: List[str] = Field(default_factory=list)
    title: str = ""
    authors: List[str] = Field(default_factory=list)
    subject: str = ""

    @property
    def page_count(self) -> int:
        return len(self.pages)


class ItemState(BaseModel):
    """Progress of one document inside a run."""
    document_id: str
    title: str = ""
    uri: str = ""
    source: SourceProvider = SourceProvider.USER
    status: AnalysisStatus = AnalysisStatus.PENDING
    failure_reason: Optional[str] = None
    note_count: int = 0


class RunSnapshot(BaseModel):
    """Frozen view of a run for API consumers and the run cache."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    query: RunQuery
    phase: ResearchPhase
    message: Optional[str] = None
    error: Optional[str] = None
    terms: Optional[StructuredTerms] = None
    candidate_count: int = 0
    shortlist: List[Candidate] = Field(default_factory=list)
    items: List[ItemState] = Field(default_factory=list)
    notes: List[Note] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def status_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.items:
            counts[item.status.value] = counts.get(item.status.value, 0) + 1
        return counts


class RunRequest(BaseModel):
    """Request body for starting a research run."""
    topics: List[str] = Field(default_factory=list, max_length=20)
    questions: List[str] = Field(default_factory=list, max_length=20)
    urls: List[str] = Field(default_factory=list, max_length=20)

    def to_query(self) -> RunQuery:
        return RunQuery(topics=self.topics, questions=self.questions, urls=self.urls)


class DocumentFetchRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
