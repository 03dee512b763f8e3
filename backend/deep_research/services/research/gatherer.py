"""
Candidate gathering.

Queries every enabled provider in parallel, isolates provider failures,
and merges the results into a list of unique candidates. No ranking
happens here.
"""
import asyncio
import re
from typing import Dict, List, Optional

from deep_research.core.exceptions import SourceError
from deep_research.core.logging import get_logger
from deep_research.schemas.research import Candidate, StructuredTerms
from deep_research.services.cancellation import CancellationToken
from deep_research.services.sources.base import BaseSource

logger = get_logger(__name__)

_ARXIV_URI = re.compile(r"^(?:export\.)?arxiv\.org/(?:abs|pdf)/(.+?)(?:v\d+)?$")
_ARXIV_DOI = re.compile(r"^10\.48550/arxiv\.(.+)$")
_DOI_PREFIX = re.compile(r"^(?:https?://)?(?:dx\.)?(?:doi\.org/)|^doi:")


def normalize_doi(doi: str) -> str:
    return _DOI_PREFIX.sub("", doi.strip().lower()).strip()


def normalize_uri(uri: str) -> str:
    """
    Canonical form of a document URI for duplicate detection.

    Lower-cases, drops scheme, www., fragment, trailing slash and .pdf,
    and maps arXiv pdf/abs links (any version) to one form.
    """
    value = uri.strip().lower().split("#", 1)[0]
    value = re.sub(r"^[a-z]+://", "", value)
    value = re.sub(r"^www\.", "", value)
    value = value.rstrip("/")
    if value.endswith(".pdf"):
        value = value[:-4]
    match = _ARXIV_URI.match(value)
    if match:
        return f"arxiv.org/abs/{match.group(1)}"
    return value


def candidate_keys(candidate: Candidate) -> List[str]:
    """Every identifier under which two candidates count as the same document."""
    keys = [f"id:{candidate.id}"]
    if candidate.document_uri:
        keys.append(f"uri:{normalize_uri(candidate.document_uri)}")
    if candidate.doi:
        doi = normalize_doi(candidate.doi)
        if doi:
            keys.append(f"doi:{doi}")
            arxiv = _ARXIV_DOI.match(doi)
            if arxiv:
                keys.append(f"uri:arxiv.org/abs/{arxiv.group(1)}")
    return keys


def _richness(candidate: Candidate):
    return (len(candidate.abstract.strip()), len(candidate.authors), bool(candidate.doi))


def _merge_pair(current: Candidate, incoming: Candidate) -> Candidate:
    """Keep the richer record and back-fill its empty fields from the other."""
    winner, loser = (incoming, current) if _richness(incoming) > _richness(current) else (current, incoming)
    updates = {}
    for field in ("title", "abstract", "published_date", "doi"):
        if not getattr(winner, field) and getattr(loser, field):
            updates[field] = getattr(loser, field)
    if not winner.authors and loser.authors:
        updates["authors"] = list(loser.authors)
    return winner.model_copy(update=updates) if updates else winner


def merge_candidates(candidates: List[Candidate]) -> List[Candidate]:
    """
    Deduplicate candidates from all providers.

    Two candidates are the same document when they share an id, a
    normalized URI or a normalized DOI. Output keeps first-seen order
    and ids are unique.
    """
    groups: List[Optional[Candidate]] = []
    key_to_group: Dict[str, int] = {}

    for candidate in candidates:
        keys = candidate_keys(candidate)
        matches = sorted({key_to_group[k] for k in keys if k in key_to_group})

        if not matches:
            index = len(groups)
            groups.append(candidate)
        else:
            index = matches[0]
            groups[index] = _merge_pair(groups[index], candidate)
            # the new record can bridge two groups that were separate so far
            for other in matches[1:]:
                if groups[other] is not None:
                    groups[index] = _merge_pair(groups[index], groups[other])
                    for k, g in list(key_to_group.items()):
                        if g == other:
                            key_to_group[k] = index
                    groups[other] = None

        for k in candidate_keys(groups[index]) + keys:
            key_to_group[k] = index

    merged = [g for g in groups if g is not None]
    if len(merged) < len(candidates):
        logger.info(f"Merged {len(candidates)} candidates into {len(merged)} unique documents")
    return merged


async def _collect_from(
    source: BaseSource,
    terms: StructuredTerms,
    topics: List[str],
    questions: List[str],
    token: Optional[CancellationToken],
) -> List[Candidate]:
    timeout = source.config.timeout_seconds
    try:
        return await asyncio.wait_for(source.collect(terms, topics, questions, token), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{source.name}: timed out after {timeout}s, contributing no results")
    except SourceError as e:
        logger.warning(f"{source.name}: {e.message}, contributing no results")
    except Exception as e:
        logger.warning(f"{source.name}: unexpected {type(e).__name__}: {e}, contributing no results")
    return []


async def gather_candidates(
    sources: List[BaseSource],
    terms: StructuredTerms,
    topics: List[str],
    questions: List[str],
    token: Optional[CancellationToken] = None,
) -> List[Candidate]:
    """
    Query all providers concurrently and merge their results.

    A provider that fails or times out contributes nothing; the gather
    itself never fails because of a provider.
    """
    if not sources:
        return []

    logger.info(f"GATHERING FROM {len(sources)} PROVIDERS")
    results = await asyncio.gather(*(
        _collect_from(source, terms, topics, questions, token) for source in sources
    ))

    for source, found in zip(sources, results):
        logger.info(f"  {source.name}: {len(found)} candidates")

    return merge_candidates([c for found in results for c in found])
