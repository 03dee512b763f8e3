"""
Deep Research Pipeline

This package turns a research query into citation-backed notes by:
1. Expanding topics into structured search terms
2. Gathering candidates from several providers in parallel
3. Filtering by embedding similarity, then LLM re-ranking
4. Downloading and parsing full-text PDFs
5. Two-pass extraction: page localization, then quote extraction

Package Structure:
- orchestrator.py: ResearchRun / ResearchOrchestrator
- state.py: RunState with forward-only transitions and events
- term_expander.py: Search term expansion with the LLM
- gatherer.py: Provider fan-out and candidate merging
- ranking.py: Semantic similarity ranking
- llm_filter.py: Batched LLM re-ranking and shortlist cut
- materializer.py: PDF fetch, validation and parsing
- extractor.py: Two-pass note extraction
- types.py: Common types and constants
"""

# Main entry points
from .orchestrator import ResearchOrchestrator, ResearchRun

# Individual stages for advanced usage
from .term_expander import expand_terms
from .gatherer import gather_candidates, merge_candidates
from .ranking import rank_by_similarity
from .llm_filter import filter_candidates, rerank_candidates
from .materializer import DocumentMaterializer
from .extractor import TwoPassExtractor
from .state import RunState

# Types for callers
from .types import EventListener, NO_MATCHES_MESSAGE

__all__ = [
    # Orchestration
    "ResearchOrchestrator",
    "ResearchRun",
    "RunState",

    # Stages
    "expand_terms",
    "gather_candidates",
    "merge_candidates",
    "rank_by_similarity",
    "filter_candidates",
    "rerank_candidates",
    "DocumentMaterializer",
    "TwoPassExtractor",

    # Types
    "EventListener",
    "NO_MATCHES_MESSAGE",
]
