"""
Search term expansion.

Turns the user's topics and questions into StructuredTerms with one
reasoning call. A failed call is fatal for the run; a malformed reply
simply yields empty lists.
"""
from typing import List

from deep_research.core.exceptions import TermExpansionError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import StructuredTerms
from deep_research.services.reasoning import ReasoningService

logger = get_logger(__name__)

TERM_LISTS = ("exact_phrases", "title_terms", "abstract_terms", "general_terms")


async def expand_terms(
    topics: List[str],
    questions: List[str],
    reasoning: ReasoningService,
    max_per_list: int = 8,
) -> StructuredTerms:
    """
    Expand topics and questions into structured search terms.

    Terms are trimmed and made disjoint across the four lists
    (case-insensitive, earlier list wins), then capped per list.

    Raises:
        ValueError: both topics and questions are empty
        TermExpansionError: the reasoning call failed
    """
    if not topics and not questions:
        raise ValueError("Term expansion needs at least one topic or question")

    try:
        output = await reasoning.expand(topics, questions)
    except Exception as e:
        logger.error(f"Term expansion failed: {type(e).__name__}: {e}")
        raise TermExpansionError(str(e)) from e

    seen = set()
    lists = {}
    for name in TERM_LISTS:
        kept = []
        for term in getattr(output, name):
            term = " ".join(term.split())
            key = term.lower()
            if not term or key in seen:
                continue
            seen.add(key)
            kept.append(term)
            if len(kept) >= max_per_list:
                break
        lists[name] = kept

    terms = StructuredTerms(**lists)
    logger.info("SEARCH TERM EXPANSION")
    logger.debug(f"Phrases: {terms.exact_phrases}")
    logger.debug(f"Title: {terms.title_terms}")
    logger.debug(f"Abstract: {terms.abstract_terms}")
    logger.debug(f"General: {terms.general_terms}")
    return terms
