"""
Schemas Module

Contains all Pydantic models (DTOs) for:
- Research run data (queries, candidates, documents, notes)
- Reasoning-service structured outputs
- SSE streaming events
"""
from .research import (
    AnalysisStatus,
    ResearchPhase,
    SourceProvider,
    DocumentFailureReason,
    RunQuery,
    StructuredTerms,
    Candidate,
    Citation,
    Note,
    MaterializedDocument,
    ItemState,
    RunSnapshot,
    RunRequest,
    DocumentFetchRequest,
)
from .retrieval import (
    SearchTermsOutput,
    PaperScore,
    BatchPaperScores,
    RelevantPagesOutput,
    ExtractedNote,
    NoteBatchOutput,
    DocumentMetadataOutput,
    SourceConfig,
    ResearchConfig,
)
from .events import (
    PhaseEvent,
    StatusEvent,
    NoteEvent,
    ErrorEvent,
    CompleteEvent,
    RunEvent,
    PHASE_CONFIG,
)

__all__ = [
    "AnalysisStatus",
    "ResearchPhase",
    "SourceProvider",
    "DocumentFailureReason",
    "RunQuery",
    "StructuredTerms",
    "Candidate",
    "Citation",
    "Note",
    "MaterializedDocument",
    "ItemState",
    "RunSnapshot",
    "RunRequest",
    "DocumentFetchRequest",
    "SearchTermsOutput",
    "PaperScore",
    "BatchPaperScores",
    "RelevantPagesOutput",
    "ExtractedNote",
    "NoteBatchOutput",
    "DocumentMetadataOutput",
    "SourceConfig",
    "ResearchConfig",
    "PhaseEvent",
    "StatusEvent",
    "NoteEvent",
    "ErrorEvent",
    "CompleteEvent",
    "RunEvent",
    "PHASE_CONFIG",
]
