"""
Research run orchestration.

A ResearchRun drives one run through its phases:

1. initializing - expand topics into structured search terms
2. searching    - query every provider in parallel and merge
3. filtering    - similarity pre-filter, then LLM re-rank
4. extracting   - download, localize and extract each document
                  through the worker pool, streaming notes

Runs with only user-supplied URLs skip straight to extracting.
ResearchOrchestrator owns the runs of the process; starting a new run
stops the one in progress.
"""
import asyncio
import uuid
from collections import OrderedDict
from typing import AsyncIterator, Callable, Dict, List, Optional

import httpx

from deep_research.core.exceptions import (
    DocumentError,
    ExtractionError,
    RunCancelledError,
    RunFailedError,
    RunNotFoundError,
    TermExpansionError,
)
from deep_research.core.logging import get_logger
from deep_research.schemas.events import RunEvent, is_terminal_event
from deep_research.schemas.research import (
    AnalysisStatus,
    Candidate,
    DocumentFailureReason,
    MaterializedDocument,
    ResearchPhase,
    RunQuery,
    RunSnapshot,
)
from deep_research.schemas.retrieval import ResearchConfig
from deep_research.services.cache import BaseCache, RunCache
from deep_research.services.cancellation import CancellationToken
from deep_research.services.embeddings import EmbeddingService
from deep_research.services.pool import run_pool
from deep_research.services.reasoning import ReasoningService
from deep_research.services.sources import build_sources
from deep_research.services.sources.base import BaseSource
from .extractor import TwoPassExtractor
from .gatherer import gather_candidates, merge_candidates
from .llm_filter import filter_candidates
from .materializer import DocumentMaterializer
from .state import RunState
from .term_expander import expand_terms
from .types import NO_MATCHES_MESSAGE

logger = get_logger(__name__)

MAX_LIVE_RUNS = 20

DOCUMENT_FAILURE_MESSAGES = {
    DocumentFailureReason.NOT_A_DOCUMENT.value: "Not a PDF document",
    DocumentFailureReason.TOO_LARGE.value: "Document too large",
    DocumentFailureReason.TIMED_OUT.value: "Download timed out",
    DocumentFailureReason.BLOCKED_BY_SOURCE.value: "Blocked by source",
    DocumentFailureReason.NETWORK_ERROR.value: "Network error",
    DocumentFailureReason.INVALID_URL.value: "Invalid URL",
    DocumentFailureReason.UNPARSEABLE.value: "Could not read document",
}


class ResearchRun:
    """One research run: its state, its event stream and its execution."""

    def __init__(
        self,
        query: RunQuery,
        config: ResearchConfig,
        reasoning: ReasoningService,
        embeddings: EmbeddingService,
        sources: List[BaseSource],
        materializer: DocumentMaterializer,
        run_id: Optional[str] = None,
        on_finish: Optional[Callable[[RunSnapshot], None]] = None,
    ):
        self.run_id = run_id or uuid.uuid4().hex
        self.config = config
        self.reasoning = reasoning
        self.embeddings = embeddings
        self.sources = sources
        self.materializer = materializer
        self.extractor = TwoPassExtractor(reasoning, config.page_batch_size)
        self.token = CancellationToken()
        self.on_finish = on_finish

        self._history: List[RunEvent] = []
        self._subscribers: List[asyncio.Queue] = []
        self._done = asyncio.Event()
        self.task: Optional[asyncio.Task] = None

        self.state = RunState(self.run_id, query, self.token, self._publish)

    # === Events ===

    def _publish(self, event: RunEvent) -> None:
        self._history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

    async def events(self) -> AsyncIterator[RunEvent]:
        """
        Every event of the run: history first, then live events.

        Ends after the terminal event (complete or error).
        """
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._history:
            queue.put_nowait(event)
        self._subscribers.append(queue)
        try:
            while True:
                event = await queue.get()
                yield event
                if is_terminal_event(event):
                    return
        finally:
            self._subscribers.remove(queue)

    # === Control ===

    def cancel(self) -> bool:
        """Stop the run. Notes gathered so far are kept."""
        stopped = self.state.stop()
        if stopped:
            logger.info(f"Run {self.run_id}: stop requested")
        return stopped

    def snapshot(self) -> RunSnapshot:
        return self.state.snapshot()

    async def wait(self) -> RunSnapshot:
        if self.task is not None:
            await asyncio.shield(self.task)
        else:
            await self._done.wait()
        return self.snapshot()

    # === Execution ===

    async def execute(self) -> RunSnapshot:
        state = self.state
        query = state.query
        questions = query.effective_questions
        try:
            state.set_phase(ResearchPhase.INITIALIZING)

            if query.topics:
                state.terms = await expand_terms(
                    list(query.topics), list(query.questions), self.reasoning, self.config.max_terms_per_list
                )
                self.token.raise_if_cancelled()

                state.set_phase(ResearchPhase.SEARCHING, f"{len(self.sources)} providers")
                state.candidates = await gather_candidates(
                    self.sources, state.terms, list(query.topics), questions, self.token
                )
                self.token.raise_if_cancelled()

                state.set_phase(ResearchPhase.FILTERING, f"{len(state.candidates)} candidates")
                state.shortlist = await filter_candidates(
                    state.candidates,
                    questions,
                    state.terms.keywords(),
                    self.embeddings,
                    self.reasoning,
                    self.config,
                    self.token,
                )
                self.token.raise_if_cancelled()

            items = merge_candidates(
                list(state.shortlist) + [Candidate.from_user_uri(uri) for uri in query.urls]
            )
            if not items:
                state.complete(NO_MATCHES_MESSAGE)
                return self.snapshot()

            for candidate in items:
                state.add_item(candidate)
            state.set_phase(ResearchPhase.EXTRACTING, f"{len(items)} documents")

            await run_pool(items, self._process_item, self.config.document_concurrency, self.token, label="documents")
            self.token.raise_if_cancelled()

            counts = state.snapshot().status_counts()
            state.complete(
                f"Extracted {len(state.notes)} notes from "
                f"{counts.get(AnalysisStatus.COMPLETED.value, 0)} of {len(items)} documents."
            )
        except RunCancelledError:
            state.stop()
        except TermExpansionError as e:
            state.fail(f"Could not prepare search terms: {e.message[:200]}")
        except Exception as e:
            error = RunFailedError(state.phase.value, f"{type(e).__name__}: {e}")
            logger.exception(str(error))
            state.fail(f"Research failed during {error.phase}.")
        finally:
            self._done.set()
            if self.on_finish is not None:
                try:
                    self.on_finish(self.snapshot())
                except Exception as e:
                    logger.error(f"Run {self.run_id}: on_finish callback failed: {e}")
        return self.snapshot()

    async def _process_item(self, candidate: Candidate) -> None:
        document_id = candidate.id
        try:
            await asyncio.wait_for(self._analyze(candidate), timeout=self.config.document_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{document_id}: timed out after {self.config.document_timeout_seconds}s")
            self.state.fail_item(document_id, "Analysis timed out")
        except DocumentError as e:
            logger.warning(f"{document_id}: {e}")
            self.state.fail_item(document_id, DOCUMENT_FAILURE_MESSAGES.get(e.reason, "Could not load document"))
        except ExtractionError as e:
            logger.warning(str(e))
            self.state.fail_item(document_id, "Could not extract notes")
        except RunCancelledError:
            raise
        except Exception as e:
            logger.warning(f"{document_id}: analysis failed: {type(e).__name__}: {e}")
            self.state.fail_item(document_id, "Analysis failed")

    async def _analyze(self, candidate: Candidate) -> None:
        state = self.state
        document_id = candidate.id
        questions = state.query.effective_questions
        keywords = state.terms.keywords() if state.terms else []

        state.set_status(document_id, AnalysisStatus.DOWNLOADING)
        data = await self.materializer.fetch(candidate.document_uri, self.token)
        self.token.raise_if_cancelled()

        state.set_status(document_id, AnalysisStatus.PROCESSING)
        document = await self.materializer.parse(data, document_id, candidate.document_uri)
        document = await self.materializer.enhance_metadata(document)
        self.token.raise_if_cancelled()
        state.store_document(document)

        pages = await self._localize(document, questions, keywords)
        if not pages:
            logger.info(f"{document_id}: no relevant pages")
            state.set_status(document_id, AnalysisStatus.COMPLETED)
            return

        state.set_status(document_id, AnalysisStatus.EXTRACTING)
        async for notes in self.extractor.extract_notes(document, pages, questions, self.token):
            state.add_notes(document_id, notes)
        self.token.raise_if_cancelled()
        state.set_status(document_id, AnalysisStatus.COMPLETED)

    async def _localize(self, document: MaterializedDocument, questions: List[str], keywords: List[str]) -> List[int]:
        """Pass 1 with retries; the materialized document is reused."""
        attempts = self.config.max_analysis_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self.extractor.localize_pages(document, questions, keywords, self.token)
            except RunCancelledError:
                raise
            except Exception as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    f"{document.document_id}: page localization attempt {attempt}/{attempts} failed: {e}"
                )
                self.token.raise_if_cancelled()
        return []


class ResearchOrchestrator:
    """
    Creates, tracks and stops research runs.

    Only one run is active at a time. Finished runs are written to the
    run cache when one is configured.
    """

    def __init__(
        self,
        reasoning: ReasoningService,
        embeddings: EmbeddingService,
        cache: Optional[BaseCache] = None,
        run_cache: Optional[RunCache] = None,
        sources: Optional[List[BaseSource]] = None,
        materializer: Optional[DocumentMaterializer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.reasoning = reasoning
        self.embeddings = embeddings
        self.cache = cache
        self.run_cache = run_cache
        self._sources = sources
        self._materializer = materializer
        self._transport = transport
        self._runs: "OrderedDict[str, ResearchRun]" = OrderedDict()
        self._active: Optional[ResearchRun] = None

    @property
    def active_run(self) -> Optional[ResearchRun]:
        if self._active is not None and self._active.state.is_finished:
            return None
        return self._active

    def document_materializer(self, config: Optional[ResearchConfig] = None) -> DocumentMaterializer:
        if self._materializer is not None:
            return self._materializer
        return DocumentMaterializer(config or ResearchConfig(), self.reasoning, self.cache, self._transport)

    def create(self, query: RunQuery, config: Optional[ResearchConfig] = None) -> ResearchRun:
        config = config or ResearchConfig()
        sources = self._sources if self._sources is not None else build_sources(config, self._transport)
        materializer = self._materializer or self.document_materializer(config)
        return ResearchRun(
            query,
            config,
            self.reasoning,
            self.embeddings,
            sources,
            materializer,
            on_finish=self._persist,
        )

    def start(self, query: RunQuery, config: Optional[ResearchConfig] = None) -> ResearchRun:
        """Stop any active run and schedule a new one on the running loop."""
        if self.active_run is not None:
            logger.info(f"Superseding run {self.active_run.run_id}")
            self.active_run.cancel()

        run = self.create(query, config)
        run.task = asyncio.create_task(run.execute())
        self._runs[run.run_id] = run
        self._active = run

        while len(self._runs) > MAX_LIVE_RUNS:
            oldest_id, oldest = next(iter(self._runs.items()))
            if not oldest.state.is_finished:
                break
            del self._runs[oldest_id]

        logger.info(f"Started run {run.run_id}")
        return run

    async def run(self, query: RunQuery, config: Optional[ResearchConfig] = None) -> RunSnapshot:
        """Start a run and wait for its final snapshot."""
        return await self.start(query, config).wait()

    def stop(self, run_id: Optional[str] = None) -> bool:
        """Stop the given run, or the active one when no id is given."""
        run = self._runs.get(run_id) if run_id else self.active_run
        if run is None:
            if run_id:
                raise RunNotFoundError(run_id)
            return False
        return run.cancel()

    def get_run(self, run_id: str) -> ResearchRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def get(self, run_id: str) -> RunSnapshot:
        """Snapshot of a live run, or of a finished one from the run cache."""
        run = self._runs.get(run_id)
        if run is not None:
            return run.snapshot()
        if self.run_cache is not None:
            snapshot = self.run_cache.get(run_id)
            if snapshot is not None:
                return snapshot
        raise RunNotFoundError(run_id)

    def list_runs(self) -> List[Dict]:
        summaries = {}
        if self.run_cache is not None:
            for run_id in self.run_cache.list_runs():
                snapshot = self.run_cache.get(run_id)
                if snapshot is not None:
                    summaries[run_id] = snapshot
        for run_id, run in self._runs.items():
            summaries[run_id] = run.snapshot()
        return [
            {
                "run_id": s.run_id,
                "topics": list(s.query.topics),
                "phase": s.phase.value,
                "note_count": len(s.notes),
                "started_at": s.started_at.isoformat(),
            }
            for s in sorted(summaries.values(), key=lambda s: s.started_at, reverse=True)
        ]

    def _persist(self, snapshot: RunSnapshot) -> None:
        if self.run_cache is None:
            return
        if not self.run_cache.set(snapshot):
            logger.warning(f"Run {snapshot.run_id}: snapshot not cached")
