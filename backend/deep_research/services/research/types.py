"""
Common types and constants for the research pipeline.
"""
from datetime import timedelta
from typing import Callable

from deep_research.schemas.events import RunEvent

# Type alias for run event listeners
EventListener = Callable[[RunEvent], None]

# Pages shorter than this are skipped during page localization
MIN_PAGE_CHARS = 50

# Metadata enhancement reads the opening pages and caches by their hash
METADATA_PAGES = 4
METADATA_CACHE_TTL = timedelta(days=14)

NO_MATCHES_MESSAGE = "No matches found."


def _noop_listener(event: RunEvent) -> None:
    """Default no-op listener when none provided."""
    pass
