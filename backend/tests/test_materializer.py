"""Tests for services/research/materializer.py - PDF fetch and parsing."""
import httpx
import pytest


def pdf_transport(content: bytes, status_code: int = 200, content_type: str = "application/pdf"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, headers={"Content-Type": content_type}, content=content)
    return httpx.MockTransport(handler)


class TestValidateUrl:
    """Test URL validation before any request is made."""

    def test_http_urls_pass(self):
        """http and https URLs should be accepted."""
        from deep_research.services.research.materializer import validate_url

        assert validate_url(" https://example.org/a.pdf ") == "https://example.org/a.pdf"

    def test_other_schemes_are_invalid(self):
        """Non-http schemes and bare paths should raise invalid_url."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import validate_url

        for uri in ("ftp://example.org/a.pdf", "/etc/passwd", "not a url"):
            with pytest.raises(DocumentError) as exc_info:
                validate_url(uri)
            assert exc_info.value.reason == "invalid_url"


class TestFetch:
    """Test DocumentMaterializer.fetch failure classification."""

    @pytest.mark.asyncio
    async def test_fetch_returns_pdf_bytes(self, sample_pdf):
        """A PDF response should come back byte for byte."""
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(transport=pdf_transport(sample_pdf))

        assert await materializer.fetch("https://example.org/a.pdf") == sample_pdf

    @pytest.mark.asyncio
    async def test_octet_stream_is_accepted(self, sample_pdf):
        """Servers that send application/octet-stream should still work."""
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(
            transport=pdf_transport(sample_pdf, content_type="application/octet-stream")
        )

        assert await materializer.fetch("https://example.org/a.pdf") == sample_pdf

    @pytest.mark.asyncio
    async def test_forbidden_is_blocked_by_source(self):
        """401/403/429 should be reported as blocked, with the status code."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(transport=pdf_transport(b"", status_code=403))

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "blocked_by_source"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self):
        """Other HTTP errors should be network errors."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(transport=pdf_transport(b"", status_code=404))

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "network_error"
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_html_is_not_a_document(self):
        """An HTML landing page should be rejected by content type."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(
            transport=pdf_transport(b"<html></html>", content_type="text/html; charset=utf-8")
        )

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a")
        assert exc_info.value.reason == "not_a_document"

    @pytest.mark.asyncio
    async def test_missing_signature_is_not_a_document(self):
        """A PDF content type without a PDF body should be rejected."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(transport=pdf_transport(b"<html>login required</html>"))

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "not_a_document"

    @pytest.mark.asyncio
    async def test_declared_length_over_limit_is_too_large(self):
        """A Content-Length over the limit should be rejected before reading."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.schemas.retrieval import ResearchConfig
        from deep_research.services.research.materializer import DocumentMaterializer

        materializer = DocumentMaterializer(
            ResearchConfig(max_document_bytes=100),
            transport=pdf_transport(b"%PDF-" + b"x" * 500),
        )

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "too_large"

    @pytest.mark.asyncio
    async def test_streamed_body_over_limit_is_too_large(self):
        """A body without Content-Length should be cut off once over the limit."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.schemas.retrieval import ResearchConfig
        from deep_research.services.research.materializer import DocumentMaterializer

        async def chunks():
            yield b"%PDF-" + b"x" * 80
            yield b"x" * 80

        def handler(request):
            return httpx.Response(200, headers={"Content-Type": "application/pdf"}, content=chunks())

        materializer = DocumentMaterializer(
            ResearchConfig(max_document_bytes=100),
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "too_large"

    @pytest.mark.asyncio
    async def test_timeout_is_timed_out(self):
        """A transport timeout should be reported as timed_out."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer

        def handler(request):
            raise httpx.ReadTimeout("slow server", request=request)

        materializer = DocumentMaterializer(transport=httpx.MockTransport(handler))

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "timed_out"

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        """A connection failure should be reported as network_error."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        materializer = DocumentMaterializer(transport=httpx.MockTransport(handler))

        with pytest.raises(DocumentError) as exc_info:
            await materializer.fetch("https://example.org/a.pdf")
        assert exc_info.value.reason == "network_error"

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_download(self, sample_pdf):
        """A cancelled run should stop reading the body."""
        from deep_research.core.exceptions import RunCancelledError
        from deep_research.services.cancellation import CancellationToken
        from deep_research.services.research.materializer import DocumentMaterializer

        token = CancellationToken()
        token.cancel()
        materializer = DocumentMaterializer(transport=pdf_transport(sample_pdf))

        with pytest.raises(RunCancelledError):
            await materializer.fetch("https://example.org/a.pdf", token)


class TestParse:
    """Test DocumentMaterializer.parse."""

    @pytest.mark.asyncio
    async def test_pages_metadata_and_bibliography(self, sample_pdf):
        """Parsing should give per-page text, info metadata and references."""
        from deep_research.services.research.materializer import DocumentMaterializer

        document = await DocumentMaterializer().parse(sample_pdf, "arxiv:1", "https://example.org/a.pdf")

        assert document.page_count == 3
        assert "Sparse Attention" in document.pages[0]
        assert document.title == "Sparse Attention for Long Documents"
        assert document.authors == ["Ada Lovelace", "Alan Turing"]
        assert any("Vaswani" in entry for entry in document.bibliography)

    @pytest.mark.asyncio
    async def test_pdf_without_text_is_unparseable(self):
        """A scanned PDF with no extractable text cannot be analyzed."""
        from deep_research.core.exceptions import DocumentError
        from deep_research.services.research.materializer import DocumentMaterializer
        from conftest import build_pdf

        with pytest.raises(DocumentError) as exc_info:
            await DocumentMaterializer().parse(build_pdf(["", ""]), "x:1", "https://example.org/a.pdf")
        assert exc_info.value.reason == "unparseable"


class TestExtractBibliography:
    """Test reference list detection."""

    def test_numbered_lines_after_header(self):
        """Numbered entries after a References header become one entry each."""
        from deep_research.services.research.materializer import extract_bibliography

        pages = [
            "Body text mentioning references in passing.",
            "References\n1. Smith J. A study of things. 2019.\n2. Doe A. Another study. 2021.",
        ]

        assert extract_bibliography(pages) == [
            "1. Smith J. A study of things. 2019.",
            "2. Doe A. Another study. 2021.",
        ]

    def test_inline_bracket_markers_are_split(self):
        """A run-on reference block with [n] markers should be split."""
        from deep_research.services.research.materializer import extract_bibliography

        pages = ["Bibliography\n[1] Smith J. Things. 2019. [2] Doe A. Stuff. 2021. [3] Roe B. More. 2022."]

        assert extract_bibliography(pages) == [
            "[1] Smith J. Things. 2019.",
            "[2] Doe A. Stuff. 2021.",
            "[3] Roe B. More. 2022.",
        ]

    def test_no_header_means_no_bibliography(self):
        """Documents without a reference header have no bibliography."""
        from deep_research.services.research.materializer import extract_bibliography

        assert extract_bibliography(["Just some text.", "More text."]) == []


class TestEnhanceMetadata:
    """Test reasoned metadata enhancement."""

    def _document(self):
        from deep_research.schemas.research import MaterializedDocument

        return MaterializedDocument(
            document_id="x:1",
            uri="https://example.org/a.pdf",
            pages=["An opening page with plenty of text about the study design and its authors. " * 3],
            title="untitled.dvi",
            authors=[],
        )

    @pytest.mark.asyncio
    async def test_reasoned_values_are_preferred(self, memory_cache):
        """Reasoned title and authors should replace the PDF info header."""
        from deep_research.schemas.retrieval import DocumentMetadataOutput
        from deep_research.services.research.materializer import DocumentMaterializer
        from conftest import FakeReasoning

        reasoning = FakeReasoning(metadata=DocumentMetadataOutput(title="Real Title", author="A. One, B. Two"))
        materializer = DocumentMaterializer(reasoning=reasoning, cache=memory_cache)

        document = await materializer.enhance_metadata(self._document())

        assert document.title == "Real Title"
        assert document.authors == ["A. One", "B. Two"]

    @pytest.mark.asyncio
    async def test_results_are_cached_by_text(self, memory_cache):
        """The same opening text should be described only once."""
        from deep_research.schemas.retrieval import DocumentMetadataOutput
        from deep_research.services.research.materializer import DocumentMaterializer
        from conftest import FakeReasoning

        reasoning = FakeReasoning(metadata=DocumentMetadataOutput(title="Real Title"))
        materializer = DocumentMaterializer(reasoning=reasoning, cache=memory_cache)

        await materializer.enhance_metadata(self._document())
        document = await materializer.enhance_metadata(self._document())

        assert reasoning.calls["describe_document"] == 1
        assert document.title == "Real Title"

    @pytest.mark.asyncio
    async def test_failure_keeps_parsed_metadata(self):
        """A failed reasoning call should keep the original metadata."""
        from deep_research.services.research.materializer import DocumentMaterializer
        from conftest import FakeReasoning

        materializer = DocumentMaterializer(reasoning=FakeReasoning(fail=("describe_document",)))

        document = await materializer.enhance_metadata(self._document())

        assert document.title == "untitled.dvi"

    @pytest.mark.asyncio
    async def test_short_text_is_skipped(self):
        """Too little opening text should not trigger a reasoning call."""
        from deep_research.schemas.research import MaterializedDocument
        from deep_research.services.research.materializer import DocumentMaterializer
        from conftest import FakeReasoning

        reasoning = FakeReasoning()
        materializer = DocumentMaterializer(reasoning=reasoning)
        document = MaterializedDocument(document_id="x:1", uri="https://example.org/a.pdf", pages=["Short."])

        await materializer.enhance_metadata(document)

        assert "describe_document" not in reasoning.calls
