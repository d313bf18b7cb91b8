"""Context retrieval and ranking for layout orchestration.

This module implements retrieve_context, which turns a query into a bounded, diverse
evidence set:
1) Intent detection, unioned with explicit filters ("enhanced" filters).
2) Filtered and unfiltered hybrid searches (match_count = max_chunks * 2), visual asset
   search and taxonomy listings, all concurrently.
3) Merge by chunk id preferring the filtered copy; filtered hits get a score boost.
4) Relevance threshold with a top-N fallback so candidates never vanish entirely.
5) Best chunk per document, partitioned by document type.
6) Case studies forced back in when scoring removed all of them.
7) Type caps, an optional "detail" chunk per case study, max_chunks cap, metrics fetch.

Search results from the cache are shared objects; rescoring uses model_copy.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from concierge.config import settings
from concierge.embedding import embed_query
from concierge.errors import ConciergeError
from concierge.intent import QueryIntent, detect_intent
from concierge.performance import track
from concierge.schemas import HybridSearchResult, RetrievedContext
from concierge.search import (
    get_document_metrics,
    hybrid_search,
    list_capabilities,
    list_industries,
    list_topics,
    search_visual_assets,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _or_empty(awaitable: Awaitable[List[T]], what: str) -> List[T]:
    """Await an optional lookup, degrading to [] on a pipeline error."""
    try:
        return await awaitable
    except ConciergeError as e:
        logger.warning("%s failed, continuing without it: %s", what, e)
        return []


def _union(explicit: Optional[Sequence[str]], inferred: Iterable[str]) -> List[str]:
    return sorted(set(explicit or []) | set(inferred))


def merge_results(
    filtered: List[HybridSearchResult],
    unfiltered: List[HybridSearchResult],
    boost: float,
) -> List[HybridSearchResult]:
    """Deduplicate by chunk id (filtered copy wins, boosted) and sort by combined_score desc."""
    merged: Dict[str, HybridSearchResult] = {r.chunk_id: r for r in unfiltered}
    for r in filtered:
        merged[r.chunk_id] = r.model_copy(update={"combined_score": r.combined_score * (1 + boost)})
    return sorted(merged.values(), key=lambda r: r.combined_score, reverse=True)


def apply_relevance_threshold(
    candidates: List[HybridSearchResult], min_score: float, fallback_count: int
) -> List[HybridSearchResult]:
    """Keep candidates scoring >= min_score; if none do, keep the top fallback_count."""
    relevant = [c for c in candidates if c.combined_score >= min_score]
    if not relevant and candidates:
        logger.info(
            "No candidate reached relevance %.2f; falling back to top %d of %d",
            min_score,
            fallback_count,
            len(candidates),
        )
        return candidates[:fallback_count]
    return relevant


def best_per_document(results: Iterable[HybridSearchResult]) -> List[HybridSearchResult]:
    """Keep the first (highest-scoring) chunk of each document; input must be sorted."""
    seen = set()
    out: List[HybridSearchResult] = []
    for r in results:
        if r.document_id not in seen:
            seen.add(r.document_id)
            out.append(r)
    return out


def _add_detail_chunks(
    selected: List[HybridSearchResult],
    pool: List[HybridSearchResult],
    max_chunks: int,
) -> List[HybridSearchResult]:
    """Append the next-best chunk of each selected case study while room remains."""
    if settings.DETAIL_CHUNKS_PER_CASE_STUDY <= 0:
        return selected
    chosen_ids = {r.chunk_id for r in selected}
    out = list(selected)
    for primary in [r for r in selected if r.document_type == "case_study"]:
        if len(out) >= max_chunks:
            break
        detail = next(
            (c for c in pool if c.document_id == primary.document_id and c.chunk_id not in chosen_ids),
            None,
        )
        if detail is not None:
            out.append(detail.model_copy(update={"is_detail": True}))
            chosen_ids.add(detail.chunk_id)
    return out


def _cap_chunks(chunks: List[HybridSearchResult], max_chunks: int) -> List[HybridSearchResult]:
    """Truncate to max_chunks by score, keeping a case study if the input had one."""
    ordered = sorted(chunks, key=lambda r: r.combined_score, reverse=True)
    capped = ordered[:max_chunks]
    if not capped:
        return capped
    if not any(c.document_type == "case_study" for c in capped):
        case_study = next((c for c in ordered if c.document_type == "case_study"), None)
        if case_study is not None:
            capped[-1] = case_study
            capped.sort(key=lambda r: r.combined_score, reverse=True)
    return capped


def select_chunks(
    candidates: List[HybridSearchResult],
    max_chunks: int,
    min_relevance_score: float,
) -> List[HybridSearchResult]:
    """Rank merged candidates into the final evidence chunks (steps 4-7)."""
    relevant = apply_relevance_threshold(candidates, min_relevance_score, settings.RELEVANCE_FALLBACK_COUNT)

    case_studies = best_per_document(r for r in relevant if r.document_type == "case_study")
    articles = best_per_document(r for r in relevant if r.document_type == "article")

    if not case_studies:
        raw_case_studies = best_per_document(r for r in candidates if r.document_type == "case_study")
        if raw_case_studies:
            case_studies = raw_case_studies[: settings.FORCED_CASE_STUDIES]
            logger.info("Forced %d case studies back into context", len(case_studies))

    selected = case_studies[: settings.MAX_CASE_STUDIES] + articles[: settings.MAX_ARTICLES]
    selected = _cap_chunks(selected, max_chunks)
    # Details come from the relevant pool only; forced case studies get none
    selected = _add_detail_chunks(selected, relevant, max_chunks)
    return sorted(selected, key=lambda r: r.combined_score, reverse=True)


async def retrieve_context(
    query: str,
    capability_slugs: Optional[Sequence[str]] = None,
    industry_slugs: Optional[Sequence[str]] = None,
    max_chunks: Optional[int] = None,
    max_assets: Optional[int] = None,
    min_relevance_score: Optional[float] = None,
    detect: Callable[[str], QueryIntent] = detect_intent,
) -> RetrievedContext:
    """Build the evidence bundle for a query.

    Args:
        query: User query text.
        capability_slugs: Explicit capability filters from the caller.
        industry_slugs: Explicit industry filters from the caller.
        max_chunks: Upper bound on returned chunks (defaults to MAX_CHUNKS).
        max_assets: Upper bound on visual assets (defaults to MAX_ASSETS).
        min_relevance_score: Relevance threshold (defaults to MIN_RELEVANCE_SCORE).
        detect: Intent detector used to infer extra filters.

    Returns:
        RetrievedContext: Chunks (sorted by combined_score desc), visual assets, metrics of
            the selected documents, and taxonomy listings.

    Raises:
        EmbeddingError / SearchError / UpstreamTimeoutError: If embedding or the unfiltered
            search fails. Filtered search, visual asset and taxonomy failures degrade to
            empty lists.
    """
    max_chunks = settings.MAX_CHUNKS if max_chunks is None else max_chunks
    max_assets = settings.MAX_ASSETS if max_assets is None else max_assets
    min_score = settings.MIN_RELEVANCE_SCORE if min_relevance_score is None else min_relevance_score

    intent = detect(query)
    capabilities = _union(capability_slugs, intent.capabilities)
    industries = _union(industry_slugs, intent.industries)
    match_count = max_chunks * 2

    with track("rag_retrieval_time"):
        # Embed once up front; the concurrent searches then hit the embedding cache
        await embed_query(query)

        filtered_search: Awaitable[List[HybridSearchResult]]
        if capabilities or industries:
            filtered_search = _or_empty(
                hybrid_search(
                    query,
                    capability_slugs=capabilities or None,
                    industry_slugs=industries or None,
                    match_count=match_count,
                ),
                "Filtered search",
            )
        else:
            filtered_search = asyncio.sleep(0, result=[])

        filtered, unfiltered, assets, caps, inds, topics = await asyncio.gather(
            filtered_search,
            hybrid_search(query, match_count=match_count),
            _or_empty(search_visual_assets(query, match_count=max_assets), "Visual asset search"),
            _or_empty(list_capabilities(), "Capability listing"),
            _or_empty(list_industries(), "Industry listing"),
            _or_empty(list_topics(), "Topic listing"),
        )

        candidates = merge_results(filtered, unfiltered, settings.FILTERED_MATCH_BOOST)
        chunks = select_chunks(candidates, max_chunks, min_score)

        document_ids = list(dict.fromkeys(c.document_id for c in chunks))
        metrics = await _or_empty(get_document_metrics(document_ids), "Metrics lookup")

    logger.info(
        "Retrieved context: candidates=%d chunks=%d assets=%d metrics=%d filters=%s/%s",
        len(candidates),
        len(chunks),
        len(assets),
        len(metrics),
        capabilities,
        industries,
    )
    return RetrievedContext(
        chunks=chunks,
        visual_assets=assets[:max_assets],
        related_metrics=metrics,
        capabilities=caps,
        industries=inds,
        topics=topics,
    )
