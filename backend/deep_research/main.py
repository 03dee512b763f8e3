"""
FastAPI Application Entry Point

Deep Research API
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from deep_research.core.config import settings
from deep_research.core.dependencies import get_cache
from deep_research.core.logging import setup_logging
from deep_research.core.rate_limit import limiter, rate_limit_exceeded_handler
from deep_research.api.research import router as research_router

setup_logging(settings.LOG_LEVEL)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Automated literature search and citation-backed note extraction",
    version="1.0.0"
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(research_router)

origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.get("/")
async def health_check():
    """Root endpoint to verify the server is running."""
    cache = get_cache()
    return {
        "status": "active",
        "project": settings.PROJECT_NAME,
        "version": "1.0.0",
        "cache": {
            "type": "redis" if cache.is_connected else "in-memory",
            "connected": cache.is_connected
        },
        "providers": {
            "arxiv": True,
            "openalex": True,
            "google_cse": bool(settings.GOOGLE_SEARCH_KEY and settings.GOOGLE_SEARCH_CX),
            "pdfvector": bool(settings.PDFVECTOR_API_KEY),
        },
        "endpoints": {
            "start_run": "/api/research/runs",
            "stream_run": "/api/research/runs/stream",
            "get_run": "/api/research/runs/{run_id}",
            "run_events": "/api/research/runs/{run_id}/events",
            "stop_run": "/api/research/runs/{run_id}/stop",
            "fetch_document": "/api/research/documents/fetch"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
