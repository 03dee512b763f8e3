"""
Search providers for academic document retrieval.

Each provider is implemented in its own module for maintainability.
All network calls are async so providers run in parallel.

To add a new provider:
1. Create a new file (e.g., new_source.py) with a BaseSource subclass
2. Export it here
3. Add it to build_sources()
"""
from typing import List, Optional

import httpx

from deep_research.schemas.retrieval import ResearchConfig
from .base import BaseSource
from .arxiv import ArxivSource
from .openalex import OpenAlexSource
from .google_cse import GoogleCSESource
from .pdfvector import PDFVectorSource

__all__ = [
    "BaseSource",
    "ArxivSource",
    "OpenAlexSource",
    "GoogleCSESource",
    "PDFVectorSource",
    "build_sources",
]


def build_sources(
    config: ResearchConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[BaseSource]:
    """Instantiate every provider enabled in the config."""
    sources: List[BaseSource] = []
    for source_cls, source_config in (
        (ArxivSource, config.arxiv),
        (OpenAlexSource, config.openalex),
        (GoogleCSESource, config.google_cse),
        (PDFVectorSource, config.pdfvector),
    ):
        if source_config.enabled:
            sources.append(source_cls(source_config, config.provider_concurrency, transport))
    return sources
