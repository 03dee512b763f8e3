"""
Research API Routes

FastAPI routes for starting, following and stopping research runs,
plus a server-side PDF fetch proxy.
"""
import json
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response, StreamingResponse

from deep_research.core.dependencies import get_orchestrator
from deep_research.core.exceptions import DocumentError, RunNotFoundError
from deep_research.core.logging import get_logger
from deep_research.core.rate_limit import DOCUMENT_FETCH_LIMIT, RUN_GET_LIMIT, RUN_START_LIMIT, limiter
from deep_research.schemas.research import DocumentFailureReason, DocumentFetchRequest, RunRequest, RunSnapshot
from deep_research.services.research import ResearchOrchestrator, ResearchRun

logger = get_logger(__name__)

router = APIRouter(prefix="/api/research", tags=["research"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DOCUMENT_ERROR_STATUS = {
    DocumentFailureReason.INVALID_URL.value: 400,
    DocumentFailureReason.BLOCKED_BY_SOURCE.value: 403,
    DocumentFailureReason.TOO_LARGE.value: 413,
    DocumentFailureReason.NOT_A_DOCUMENT.value: 415,
    DocumentFailureReason.UNPARSEABLE.value: 422,
    DocumentFailureReason.NETWORK_ERROR.value: 502,
    DocumentFailureReason.TIMED_OUT.value: 504,
}


def document_error_status(error: DocumentError) -> int:
    """HTTP status for a failed document fetch; upstream 403/404 pass through."""
    if error.status_code in (403, 404):
        return error.status_code
    return DOCUMENT_ERROR_STATUS.get(error.reason, 502)


def _to_query(request: RunRequest):
    try:
        return request.to_query()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _event_stream(run: ResearchRun):
    async def event_generator():
        async for event in run.events():
            yield f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/runs")
@limiter.limit(RUN_START_LIMIT)
async def start_run(
    request: Request,
    body: RunRequest,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
) -> Dict:
    """
    Start a research run in the background.
    Any run already in progress is stopped first.
    """
    run = orchestrator.start(_to_query(body))
    return {"run_id": run.run_id, "phase": run.state.phase.value}


@router.post("/runs/stream")
@limiter.limit(RUN_START_LIMIT)
async def start_run_stream(
    request: Request,
    body: RunRequest,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """
    Start a run and stream its events as Server-Sent Events.

    Event types:
    - phase: run moved to a new phase, with progress percentage
    - status: one document changed status
    - notes: notes extracted from a document
    - complete: run completed or was stopped
    - error: run failed
    """
    run = orchestrator.start(_to_query(body))
    return _event_stream(run)


@router.get("/runs")
async def list_runs(orchestrator: ResearchOrchestrator = Depends(get_orchestrator)):
    """List live and cached runs (summary only)."""
    return orchestrator.list_runs()


@router.get("/runs/{run_id}", response_model=RunSnapshot)
@limiter.limit(RUN_GET_LIMIT)
async def get_run(
    request: Request,
    run_id: str,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """Current snapshot of a run."""
    try:
        return orchestrator.get(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")


@router.get("/runs/{run_id}/events")
async def run_events(run_id: str, orchestrator: ResearchOrchestrator = Depends(get_orchestrator)):
    """Replay and follow the events of a live run."""
    try:
        run = orchestrator.get_run(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    return _event_stream(run)


@router.post("/runs/{run_id}/stop")
async def stop_run(run_id: str, orchestrator: ResearchOrchestrator = Depends(get_orchestrator)):
    """Stop a run. Notes extracted so far are kept."""
    try:
        stopped = orchestrator.stop(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    return {"run_id": run_id, "stopped": stopped}


@router.post("/documents/fetch")
@limiter.limit(DOCUMENT_FETCH_LIMIT)
async def fetch_document(
    request: Request,
    body: DocumentFetchRequest,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
):
    """
    Fetch a PDF server-side and return its bytes.
    Failures come back with a classified status and reason.
    """
    materializer = orchestrator.document_materializer()
    try:
        data = await materializer.fetch(body.url)
    except DocumentError as e:
        status = document_error_status(e)
        logger.warning(f"Document fetch failed ({status}): {e}")
        return Response(
            content=json.dumps({"error": e.reason, "detail": e.detail, "url": body.url}),
            status_code=status,
            media_type="application/json",
        )

    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Length": str(len(data))},
    )
