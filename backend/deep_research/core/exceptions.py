"""
Custom Exceptions

Error taxonomy for research runs. Source and document errors stay local
to one provider or one document; run errors end the whole run.
"""
from typing import Optional


class DeepResearchError(Exception):
    """Base exception for all application errors."""
    pass


# === Search Provider Errors ===

class SourceError(DeepResearchError):
    """Base exception for search provider errors."""
    def __init__(self, source_name: str, message: str):
        self.source_name = source_name
        self.message = message
        super().__init__(f"{source_name}: {message}")


class SourceTimeoutError(SourceError):
    """Provider did not answer in time."""
    def __init__(self, source_name: str, timeout_seconds: float):
        super().__init__(source_name, f"Request timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class SourceRateLimitError(SourceError):
    """Provider rate limit exceeded."""
    def __init__(self, source_name: str, retry_after: Optional[int] = None):
        msg = "Rate limit exceeded"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(source_name, msg)
        self.retry_after = retry_after


class SourceHTTPError(SourceError):
    """Provider returned an HTTP error status."""
    def __init__(self, source_name: str, status_code: int, detail: Optional[str] = None):
        msg = f"HTTP {status_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(source_name, msg)
        self.status_code = status_code


class SourceParseError(SourceError):
    """Failed to parse the provider response."""
    def __init__(self, source_name: str, detail: Optional[str] = None):
        msg = "Failed to parse response"
        if detail:
            msg += f": {detail}"
        super().__init__(source_name, msg)


class SourceNotConfiguredError(SourceError):
    """Provider needs credentials that are not set."""
    def __init__(self, source_name: str, missing: str):
        super().__init__(source_name, f"Not configured (missing {missing})")
        self.missing = missing


# === Document Errors ===

class DocumentError(DeepResearchError):
    """
    A document could not be fetched or parsed.

    `reason` is a DocumentFailureReason value so callers can map it
    to a status code or a short user-facing message.
    """
    def __init__(self, uri: str, reason: str, detail: Optional[str] = None, status_code: Optional[int] = None):
        self.uri = uri
        self.reason = reason
        self.detail = detail
        self.status_code = status_code
        msg = f"{reason}: {uri}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class ExtractionError(DeepResearchError):
    """Every extraction batch for a document failed."""
    def __init__(self, document_id: str, message: str):
        self.document_id = document_id
        self.message = message
        super().__init__(f"Extraction failed for {document_id}: {message}")


# === Run Errors ===

class RunError(DeepResearchError):
    """Base exception for research run errors."""
    pass


class TermExpansionError(RunError):
    """The reasoning service failed while expanding search terms."""
    def __init__(self, message: str):
        self.phase = "initializing"
        self.message = message
        super().__init__(f"Search term expansion failed: {message}")


class RunFailedError(RunError):
    """A run failed during a phase."""
    def __init__(self, phase: str, message: str):
        self.phase = phase
        self.message = message
        super().__init__(f"Research run failed during {phase}: {message}")


class RunNotFoundError(RunError):
    """Run with given ID was not found."""
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class RunCancelledError(DeepResearchError):
    """Raised at a cancellation checkpoint after the run was stopped."""
    def __init__(self, message: str = "Research run was stopped"):
        super().__init__(message)


# === LLM/AI Errors ===

class LLMError(DeepResearchError):
    """A reasoning or embedding call failed at the transport or API level."""
    pass
