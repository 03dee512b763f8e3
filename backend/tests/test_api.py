"""Tests for API endpoints."""
import json

import httpx
import pytest


PDF_URL = "https://example.org/relevant-one.pdf"


def make_orchestrator(transport=None):
    from deep_research.services.cache import MemoryCache, RunCache
    from deep_research.services.embeddings import EmbeddingService
    from deep_research.services.research import ResearchOrchestrator
    from conftest import FakeEmbeddings, FakeMaterializer, FakeReasoning, FakeSource, make_candidate, page_text

    cache = MemoryCache()
    kwargs = {}
    if transport is None:
        kwargs["materializer"] = FakeMaterializer({PDF_URL: [page_text("sparse attention", 1)]})
    else:
        kwargs["transport"] = transport
    return ResearchOrchestrator(
        reasoning=FakeReasoning(),
        embeddings=EmbeddingService(cache, FakeEmbeddings()),
        cache=cache,
        run_cache=RunCache(cache),
        sources=[FakeSource([make_candidate("arxiv:1", title="Relevant sparse attention", uri=PDF_URL)])],
        **kwargs,
    )


def parse_sse(text):
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def orchestrator():
    return make_orchestrator()


@pytest.fixture
def client(test_client, orchestrator):
    """Test client whose routes use an orchestrator with fake services."""
    from deep_research.core.dependencies import get_orchestrator
    from deep_research.main import app

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return test_client


class TestHealthCheck:
    """Test the health check endpoint."""

    def test_health_check_returns_status(self, test_client):
        """Health check should return status information."""
        response = test_client.get("/")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "active"
        assert data["project"] == "Deep Research"

    def test_health_check_returns_cache_info(self, test_client):
        """Health check should return cache information."""
        data = test_client.get("/").json()

        assert data["cache"]["type"] in ("redis", "in-memory")
        assert "connected" in data["cache"]

    def test_health_check_returns_endpoints_and_providers(self, test_client):
        """Health check should list endpoints and provider availability."""
        data = test_client.get("/").json()

        assert "start_run" in data["endpoints"]
        assert "fetch_document" in data["endpoints"]
        assert data["providers"]["arxiv"] is True
        assert set(data["providers"]) == {"arxiv", "openalex", "google_cse", "pdfvector"}


class TestRunEndpoints:
    """Test starting, reading and stopping runs."""

    def test_empty_request_returns_422(self, client):
        """A run needs topics or URLs."""
        response = client.post("/api/research/runs", json={})

        assert response.status_code == 422

    def test_unknown_run_returns_404(self, client):
        """Unknown run ids should return 404."""
        assert client.get("/api/research/runs/nonexistent-id").status_code == 404
        assert client.get("/api/research/runs/nonexistent-id/events").status_code == 404
        assert client.post("/api/research/runs/nonexistent-id/stop").status_code == 404

    def test_stream_ends_with_complete_event(self, client):
        """The SSE stream should carry phases, notes and a final complete event."""
        response = client.post("/api/research/runs/stream", json={"topics": ["sparse attention"]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = parse_sse(response.text)
        types = [event_type for event_type, _ in events]
        assert types[0] == "phase"
        assert "notes" in types
        assert types[-1] == "complete"
        assert events[-1][1]["phase"] == "completed"

        run_id = events[-1][1]["run_id"]
        snapshot = client.get(f"/api/research/runs/{run_id}")
        assert snapshot.status_code == 200
        assert snapshot.json()["phase"] == "completed"
        assert snapshot.json()["notes"]

    def test_start_returns_run_id_and_is_listed(self, client, orchestrator):
        """Starting a run should return its id; the run shows up in the list."""
        response = client.post("/api/research/runs", json={"topics": ["sparse attention"]})

        assert response.status_code == 200
        run_id = response.json()["run_id"]

        # Replaying the events waits for the run to finish
        events = parse_sse(client.get(f"/api/research/runs/{run_id}/events").text)
        assert events[-1][0] == "complete"

        runs = client.get("/api/research/runs").json()
        assert [r["run_id"] for r in runs] == [run_id]
        assert runs[0]["topics"] == ["sparse attention"]

    def test_stop_finished_run(self, client):
        """Stopping a finished run reports that nothing was stopped."""
        events = parse_sse(client.post("/api/research/runs/stream", json={"topics": ["x"]}).text)
        run_id = events[-1][1]["run_id"]

        response = client.post(f"/api/research/runs/{run_id}/stop")

        assert response.status_code == 200
        assert response.json() == {"run_id": run_id, "stopped": False}


class TestDocumentFetch:
    """Test the PDF fetch proxy."""

    def _client(self, test_client, handler):
        from deep_research.core.dependencies import get_orchestrator
        from deep_research.main import app

        orchestrator = make_orchestrator(transport=httpx.MockTransport(handler))
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        return test_client

    def test_pdf_is_returned(self, test_client, sample_pdf):
        """A PDF response should be passed through with its bytes."""
        client = self._client(
            test_client,
            lambda request: httpx.Response(200, headers={"Content-Type": "application/pdf"}, content=sample_pdf),
        )

        response = client.post("/api/research/documents/fetch", json={"url": PDF_URL})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == sample_pdf

    @pytest.mark.parametrize(
        "upstream,expected_status,expected_error",
        [
            (httpx.Response(404), 404, "network_error"),
            (httpx.Response(403), 403, "blocked_by_source"),
            (httpx.Response(500), 502, "network_error"),
            (httpx.Response(200, headers={"Content-Type": "text/html"}, text="<html/>"), 415, "not_a_document"),
        ],
    )
    def test_failures_are_classified(self, test_client, upstream, expected_status, expected_error):
        """Upstream failures should map to a status and a reason."""
        client = self._client(test_client, lambda request: upstream)

        response = client.post("/api/research/documents/fetch", json={"url": PDF_URL})

        assert response.status_code == expected_status
        assert response.json()["error"] == expected_error
        assert response.json()["url"] == PDF_URL

    def test_invalid_url_returns_400(self, test_client):
        """Non-http URLs should be rejected before any request."""
        client = self._client(test_client, lambda request: httpx.Response(200))

        response = client.post("/api/research/documents/fetch", json={"url": "ftp://example.org/a.pdf"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_url"


class TestDocumentErrorStatus:
    """Test the failure-reason to HTTP status mapping."""

    def test_mapping(self):
        """Reasons map to statuses; upstream 403/404 pass through."""
        from deep_research.api.research import document_error_status
        from deep_research.core.exceptions import DocumentError

        assert document_error_status(DocumentError("u", "too_large")) == 413
        assert document_error_status(DocumentError("u", "timed_out")) == 504
        assert document_error_status(DocumentError("u", "unparseable")) == 422
        assert document_error_status(DocumentError("u", "blocked_by_source", status_code=429)) == 403
        assert document_error_status(DocumentError("u", "network_error", status_code=404)) == 404
        assert document_error_status(DocumentError("u", "something_new")) == 502
