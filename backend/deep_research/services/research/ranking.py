"""
Candidate ranking by semantic similarity.

Stage A of the relevance filter: cosine similarity between the research
intent and each candidate's title and abstract.
"""
from typing import List

import numpy as np

from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate
from deep_research.schemas.retrieval import ResearchConfig
from deep_research.services.embeddings import DOCUMENT_TASK, QUERY_TASK, EmbeddingService

logger = get_logger(__name__)


def intent_text(questions: List[str], keywords: List[str]) -> str:
    return f"Questions: {' '.join(questions)}\nKeywords: {', '.join(keywords)}"


def candidate_text(candidate: Candidate) -> str:
    return f"Title: {candidate.title}\nAbstract: {candidate.abstract[:1500]}"


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    denom = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if denom == 0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / denom)


async def rank_by_similarity(
    candidates: List[Candidate],
    questions: List[str],
    keywords: List[str],
    embeddings: EmbeddingService,
    config: ResearchConfig,
) -> List[Candidate]:
    """
    Score candidates by similarity to the research intent.

    Candidates below config.min_similarity are dropped and the rest are
    cut to config.rerank_pool_size, best first. If the intent cannot be
    embedded every candidate scores 0 and input order is kept, so the
    run degrades instead of failing. Candidates whose own text could not
    be embedded score 0, skip the threshold and follow the scored ones
    in input order.

    Returns:
        New Candidate objects with `similarity` populated
    """
    if not candidates:
        return []

    logger.info(f"RANKING {len(candidates)} CANDIDATES BY SIMILARITY")

    query_vector = await embeddings.embed(intent_text(questions, keywords), QUERY_TASK)
    if not query_vector:
        logger.warning("Intent embedding unavailable, keeping provider order")
        return [c.model_copy(update={"similarity": 0.0}) for c in candidates[:config.rerank_pool_size]]

    vectors = await embeddings.embed_batch([candidate_text(c) for c in candidates], DOCUMENT_TASK)

    scored, unscored = [], []
    for c, v in zip(candidates, vectors):
        if v:
            scored.append(c.model_copy(update={"similarity": cosine_similarity(query_vector, v)}))
        else:
            unscored.append(c.model_copy(update={"similarity": 0.0}))
    if unscored:
        logger.warning(f"{len(unscored)} candidates without an embedding, kept after the scored ones")

    kept = [c for c in scored if c.similarity >= config.min_similarity]
    # sorted() is stable, so equal scores keep provider order
    ranked = (sorted(kept, key=lambda c: c.similarity, reverse=True) + unscored)[:config.rerank_pool_size]

    logger.debug(f"{len(kept)}/{len(scored)} above similarity {config.min_similarity}")
    for c in ranked[:10]:
        logger.debug(f"  [{c.similarity:.3f}] {c.title[:55]}...")
    return ranked
