"""
SSE Event Schemas

Pydantic models for events published by a research run.
These define the structure of progress updates sent to the frontend.
"""
from pydantic import BaseModel, Field
from typing import List, Literal, Optional, Union

from .research import AnalysisStatus, Note, ResearchPhase


class PhaseEvent(BaseModel):
    """The run moved to a new phase."""
    type: Literal["phase"] = "phase"
    run_id: str
    phase: ResearchPhase
    message: str = Field(description="Human-readable status message")
    detail: Optional[str] = Field(default=None, description="Additional detail like 'Found 25 papers'")
    progress_percent: int = Field(ge=0, le=100, description="Overall progress percentage")


class StatusEvent(BaseModel):
    """One document changed status."""
    type: Literal["status"] = "status"
    run_id: str
    document_id: str
    status: AnalysisStatus
    reason: Optional[str] = None


class NoteEvent(BaseModel):
    """A batch of notes was extracted from one document."""
    type: Literal["notes"] = "notes"
    run_id: str
    document_id: str
    notes: List[Note]


class ErrorEvent(BaseModel):
    """The run failed."""
    type: Literal["error"] = "error"
    run_id: str
    message: str
    phase: Optional[ResearchPhase] = None


class CompleteEvent(BaseModel):
    """The run reached a terminal phase (completed or stopped)."""
    type: Literal["complete"] = "complete"
    run_id: str
    phase: ResearchPhase
    note_count: int = 0
    message: Optional[str] = None


RunEvent = Union[PhaseEvent, StatusEvent, NoteEvent, ErrorEvent, CompleteEvent]


PHASE_CONFIG = {
    ResearchPhase.IDLE: {"label": "Waiting", "progress": 0},
    ResearchPhase.INITIALIZING: {"label": "Expanding search terms", "progress": 5},
    ResearchPhase.SEARCHING: {"label": "Searching providers", "progress": 20},
    ResearchPhase.FILTERING: {"label": "Filtering by relevance", "progress": 40},
    ResearchPhase.EXTRACTING: {"label": "Reading documents", "progress": 60},
    ResearchPhase.COMPLETED: {"label": "Complete", "progress": 100},
    ResearchPhase.FAILED: {"label": "Failed", "progress": 100},
    ResearchPhase.STOPPED: {"label": "Stopped", "progress": 100},
}


def is_terminal_event(event: RunEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))
