"""
LLM-based relevance re-ranking.

Stage B of the relevance filter: candidates from stage A are scored by
the reasoning service in batches, with a bounded number of batches in
flight and a timeout per batch.

Ordering policy:
- a re-rank score, when present, is the candidate's relevance score;
  candidates scored below min_rerank_score are dropped
- a candidate whose batch timed out or failed keeps its embedding
  similarity as its relevance score
- ties break on embedding similarity, then on stage-A order
"""
import asyncio
from typing import List, Optional, Tuple

from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate
from deep_research.schemas.retrieval import BatchPaperScores, ResearchConfig
from deep_research.services.cancellation import CancellationToken
from deep_research.services.embeddings import EmbeddingService
from deep_research.services.pool import run_pool
from deep_research.services.reasoning import ReasoningService
from .ranking import rank_by_similarity

logger = get_logger(__name__)

DEGRADED_REASON = "Ranked by embedding similarity only"


def _apply_scores(batch: List[Candidate], result: BatchPaperScores) -> List[Candidate]:
    """Attach re-rank scores; unscored candidates fall back to similarity."""
    by_number = {
        s.paper_number: s for s in result.scores
        if s.score is not None and 1 <= s.paper_number <= len(batch)
    }
    if not by_number and len(result.scores) == len(batch):
        # some models omit paper_number and answer positionally
        by_number = {i + 1: s for i, s in enumerate(result.scores) if s.score is not None}

    scored = []
    for i, candidate in enumerate(batch):
        evaluation = by_number.get(i + 1)
        if evaluation is None:
            scored.append(_degraded(candidate))
        else:
            scored.append(candidate.model_copy(update={
                "relevance_score": evaluation.score,
                "relevance_reason": evaluation.reason or None,
            }))
    return scored


def _degraded(candidate: Candidate) -> Candidate:
    return candidate.model_copy(update={
        "relevance_score": None,
        "relevance_reason": DEGRADED_REASON,
    })


async def rerank_candidates(
    candidates: List[Candidate],
    questions: List[str],
    keywords: List[str],
    reasoning: ReasoningService,
    config: ResearchConfig,
    token: Optional[CancellationToken] = None,
) -> List[Candidate]:
    """
    Re-rank candidates with the reasoning service and cut the shortlist.

    Returns:
        At most config.max_shortlist candidates, best first
    """
    if not candidates:
        return []

    size = config.rerank_batch_size
    batches = [candidates[i:i + size] for i in range(0, len(candidates), size)]
    logger.info(
        f"RE-RANKING {len(candidates)} CANDIDATES "
        f"(batch_size={size}, concurrency={config.rerank_concurrency})"
    )

    async def score_batch(batch: List[Candidate]) -> List[Candidate]:
        try:
            result = await asyncio.wait_for(
                reasoning.rerank(batch, questions, keywords),
                timeout=config.rerank_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Re-rank batch timed out after {config.rerank_timeout_seconds}s, using similarity")
            return [_degraded(c) for c in batch]
        except Exception as e:
            logger.warning(f"Re-rank batch failed ({type(e).__name__}: {e}), using similarity")
            return [_degraded(c) for c in batch]
        return _apply_scores(batch, result)

    results = await run_pool(batches, score_batch, config.rerank_concurrency, token, label="rerank")

    scored: List[Tuple[int, Candidate]] = []
    position = 0
    for batch, batch_result in zip(batches, results):
        for candidate in batch_result or [_degraded(c) for c in batch]:
            scored.append((position, candidate))
            position += 1

    kept = []
    for position, candidate in scored:
        if candidate.relevance_score is not None:
            if candidate.relevance_score < config.min_rerank_score:
                continue
            kept.append((position, candidate))
        else:
            kept.append((position, candidate.model_copy(update={"relevance_score": candidate.similarity or 0.0})))

    kept.sort(key=lambda item: (-item[1].relevance_score, -(item[1].similarity or 0.0), item[0]))
    shortlist = [candidate for _, candidate in kept[:config.max_shortlist]]

    logger.info(f"{len(kept)} candidates kept after re-rank, shortlist of {len(shortlist)}")
    return shortlist


async def filter_candidates(
    candidates: List[Candidate],
    questions: List[str],
    keywords: List[str],
    embeddings: EmbeddingService,
    reasoning: ReasoningService,
    config: ResearchConfig,
    token: Optional[CancellationToken] = None,
) -> List[Candidate]:
    """Both relevance stages: similarity pre-filter, then LLM re-rank."""
    pool = await rank_by_similarity(candidates, questions, keywords, embeddings, config)
    if token is not None:
        token.raise_if_cancelled()
    return await rerank_candidates(pool, questions, keywords, reasoning, config, token)
