"""
Run state.

All mutable state of one research run lives here and changes only
through these methods, which enforce forward-only phase and status
transitions and publish an event for every change.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from deep_research.core.logging import get_logger
from deep_research.schemas.events import (
    PHASE_CONFIG,
    CompleteEvent,
    ErrorEvent,
    NoteEvent,
    PhaseEvent,
    StatusEvent,
)
from deep_research.schemas.research import (
    AnalysisStatus,
    Candidate,
    ItemState,
    MaterializedDocument,
    Note,
    ResearchPhase,
    RunQuery,
    RunSnapshot,
    StructuredTerms,
)
from deep_research.services.cancellation import CancellationToken
from .types import EventListener, _noop_listener

logger = get_logger(__name__)


def status_allowed(current: AnalysisStatus, new: AnalysisStatus) -> bool:
    """Forward moves only; stopped/failed reachable from any non-terminal state."""
    if current.is_terminal:
        return False
    if new in (AnalysisStatus.STOPPED, AnalysisStatus.FAILED):
        return True
    return new.rank > current.rank


def phase_allowed(current: ResearchPhase, new: ResearchPhase) -> bool:
    if current.is_terminal:
        return False
    if new in (ResearchPhase.STOPPED, ResearchPhase.FAILED):
        return True
    return new.rank > current.rank


class RunState:

    def __init__(
        self,
        run_id: str,
        query: RunQuery,
        token: Optional[CancellationToken] = None,
        listener: EventListener = _noop_listener,
    ):
        self.run_id = run_id
        self.query = query
        self.token = token or CancellationToken()
        self.listener = listener

        self.phase = ResearchPhase.IDLE
        self.message: Optional[str] = None
        self.error: Optional[str] = None
        self.terms: Optional[StructuredTerms] = None
        self.candidates: List[Candidate] = []
        self.shortlist: List[Candidate] = []
        self.items: Dict[str, ItemState] = {}
        self.notes: List[Note] = []
        self.documents: Dict[str, MaterializedDocument] = {}
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None

        self._note_keys = set()

    def _emit(self, event) -> None:
        try:
            self.listener(event)
        except Exception as e:
            logger.error(f"Run {self.run_id}: event listener failed: {e}")

    @property
    def is_finished(self) -> bool:
        return self.phase.is_terminal

    def set_phase(self, phase: ResearchPhase, detail: Optional[str] = None) -> bool:
        if not phase_allowed(self.phase, phase):
            logger.debug(f"Run {self.run_id}: ignored phase {self.phase.value} -> {phase.value}")
            return False
        self.phase = phase
        config = PHASE_CONFIG[phase]
        logger.info(f"Run {self.run_id}: {config['label']}" + (f" ({detail})" if detail else ""))
        self._emit(PhaseEvent(
            run_id=self.run_id,
            phase=phase,
            message=config["label"],
            detail=detail,
            progress_percent=config["progress"],
        ))
        return True

    def add_item(self, candidate: Candidate) -> ItemState:
        item = self.items.get(candidate.id)
        if item is None:
            item = ItemState(
                document_id=candidate.id,
                title=candidate.title,
                uri=candidate.document_uri,
                source=candidate.source,
            )
            self.items[candidate.id] = item
        return item

    def set_status(self, document_id: str, status: AnalysisStatus, reason: Optional[str] = None) -> bool:
        """
        Move a document to a new status.

        Returns False (and changes nothing) for unknown documents, backward
        moves, moves out of a terminal state, and any move other than to
        stopped once the run has been cancelled.
        """
        item = self.items.get(document_id)
        if item is None:
            return False
        if self.token.cancelled and status != AnalysisStatus.STOPPED:
            return False
        if not status_allowed(item.status, status):
            return False
        item.status = status
        if reason:
            item.failure_reason = reason
        self._emit(StatusEvent(run_id=self.run_id, document_id=document_id, status=status, reason=reason))
        return True

    def fail_item(self, document_id: str, reason: str) -> bool:
        return self.set_status(document_id, AnalysisStatus.FAILED, reason)

    def store_document(self, document: MaterializedDocument) -> None:
        self.documents[document.document_id] = document
        item = self.items.get(document.document_id)
        if item is not None and document.title:
            item.title = document.title

    def add_notes(self, document_id: str, notes: List[Note]) -> List[Note]:
        """
        Append notes for a document, dropping duplicates by note key.

        Rejected once the run is cancelled or finished, so late results
        never reach consumers.
        """
        if self.token.cancelled or self.is_finished:
            return []
        added = []
        for note in notes:
            if note.key in self._note_keys:
                continue
            self._note_keys.add(note.key)
            self.notes.append(note)
            added.append(note)
        item = self.items.get(document_id)
        if item is not None:
            item.note_count += len(added)
        if added:
            self._emit(NoteEvent(run_id=self.run_id, document_id=document_id, notes=added))
        return added

    def stop(self) -> bool:
        """Cancel the run; non-terminal items become stopped, notes are kept."""
        if self.is_finished:
            return False
        self.token.cancel()
        for item in self.items.values():
            if not item.status.is_terminal:
                self.set_status(item.document_id, AnalysisStatus.STOPPED)
        self.set_phase(ResearchPhase.STOPPED)
        self.message = "Research stopped."
        self._finish()
        self._emit(CompleteEvent(
            run_id=self.run_id,
            phase=ResearchPhase.STOPPED,
            note_count=len(self.notes),
            message=self.message,
        ))
        return True

    def complete(self, message: Optional[str] = None) -> bool:
        if not self.set_phase(ResearchPhase.COMPLETED):
            return False
        self.message = message
        self._finish()
        self._emit(CompleteEvent(
            run_id=self.run_id,
            phase=ResearchPhase.COMPLETED,
            note_count=len(self.notes),
            message=message,
        ))
        return True

    def fail(self, message: str) -> bool:
        failed_during = self.phase
        if not self.set_phase(ResearchPhase.FAILED):
            return False
        self.error = message
        for item in self.items.values():
            if not item.status.is_terminal:
                self.set_status(item.document_id, AnalysisStatus.STOPPED)
        self._finish()
        self._emit(ErrorEvent(run_id=self.run_id, message=message, phase=failed_during))
        return True

    def _finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self.run_id,
            query=self.query,
            phase=self.phase,
            message=self.message,
            error=self.error,
            terms=self.terms,
            candidate_count=len(self.candidates),
            shortlist=list(self.shortlist),
            items=[item.model_copy() for item in self.items.values()],
            notes=list(self.notes),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )
