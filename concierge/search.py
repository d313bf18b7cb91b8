"""Database-backed search primitives used by the context retriever.

This module implements:
- hybrid_search: one SQL statement filtering by document type and taxonomy first, then
  blending pgvector cosine similarity with pg_trgm text similarity.
- search_visual_assets: description-embedding search over visual assets, each result
  signed concurrently; assets whose signing fails are dropped.
- get_document_metrics: labeled statistics for a set of documents.
- list_capabilities / list_industries / list_topics: taxonomy listings.

Every call consults the result cache first. Vector similarity is 1 - cosine distance;
combined = semantic_weight * similarity + (1 - semantic_weight) * keyword.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from concierge import db
from concierge.cache import CachePrefix, cache, ttl_for
from concierge.config import settings
from concierge.embedding import embed_query
from concierge.errors import SearchError, UpstreamTimeoutError
from concierge.performance import track
from concierge.schemas import DocumentMetric, HybridSearchResult, TaxonomyTerm, VisualAssetSearchResult
from concierge.storage import create_signed_url

logger = logging.getLogger(__name__)

HYBRID_SEARCH_SQL = """
WITH filtered_chunks AS (
    SELECT
        cc.id AS chunk_id,
        cc.document_id,
        cc.content,
        cc.chunk_type,
        cc.metadata,
        cc.embedding,
        d.title AS document_title,
        d.doc_type AS document_type,
        d.slug,
        d.client_name,
        d.author,
        d.vimeo_url,
        d.thumbnail_url
    FROM content_chunks cc
    JOIN documents d ON d.id = cc.document_id
    WHERE cc.embedding IS NOT NULL
      AND (CAST(:doc_types AS text[]) IS NULL OR d.doc_type = ANY(CAST(:doc_types AS text[])))
      AND (CAST(:capability_slugs AS text[]) IS NULL OR EXISTS (
            SELECT 1 FROM document_capabilities dc
            JOIN capabilities c ON c.id = dc.capability_id
            WHERE dc.document_id = d.id AND c.slug = ANY(CAST(:capability_slugs AS text[]))))
      AND (CAST(:industry_slugs AS text[]) IS NULL OR EXISTS (
            SELECT 1 FROM document_industries di
            JOIN industries i ON i.id = di.industry_id
            WHERE di.document_id = d.id AND i.slug = ANY(CAST(:industry_slugs AS text[]))))
      AND (CAST(:topic_slugs AS text[]) IS NULL OR EXISTS (
            SELECT 1 FROM document_topics dt
            JOIN topics t ON t.id = dt.topic_id
            WHERE dt.document_id = d.id AND t.slug = ANY(CAST(:topic_slugs AS text[]))))
)
SELECT
    chunk_id, document_id, content, chunk_type, metadata,
    document_title, document_type, slug, client_name, author, vimeo_url, thumbnail_url,
    (1 - (embedding <=> CAST(:qvec AS vector))) AS similarity_score,
    similarity(content, :query_text) AS keyword_score,
    (CAST(:semantic_weight AS float) * (1 - (embedding <=> CAST(:qvec AS vector)))
     + (1 - CAST(:semantic_weight AS float)) * similarity(content, :query_text)) AS combined_score
FROM filtered_chunks
ORDER BY combined_score DESC
LIMIT :match_count
"""

VISUAL_ASSET_SQL = """
SELECT
    va.id AS asset_id,
    va.document_id,
    va.storage_path,
    va.bucket_name,
    va.asset_type,
    va.alt_text,
    va.caption,
    va.description,
    (1 - (va.description_embedding <=> CAST(:qvec AS vector))) AS similarity_score
FROM visual_assets va
WHERE va.description_embedding IS NOT NULL
  AND (CAST(:document_ids AS uuid[]) IS NULL OR va.document_id = ANY(CAST(:document_ids AS uuid[])))
  AND (CAST(:asset_types AS text[]) IS NULL OR va.asset_type = ANY(CAST(:asset_types AS text[])))
ORDER BY va.description_embedding <=> CAST(:qvec AS vector)
LIMIT :match_count
"""

DOCUMENT_METRICS_SQL = """
SELECT id, document_id, label, value, context, display_order
FROM document_metrics
WHERE document_id = ANY(CAST(:document_ids AS uuid[]))
ORDER BY document_id, display_order
"""

TAXONOMY_TABLES = ("capabilities", "industries", "topics")


def _vector_literal(vec: Sequence[float]) -> str:
    return "[" + ",".join(f"{x:.6f}" for x in vec) + "]"


def _array_or_none(values: Optional[Sequence[str]]) -> Optional[List[str]]:
    """Empty filters mean "no filter" in SQL (NULL), not "match nothing"."""
    if not values:
        return None
    return sorted({str(v) for v in values})


async def _run(sql: str, params: Dict[str, Any], what: str) -> List[Dict[str, Any]]:
    try:
        return await asyncio.wait_for(db.fetch_all(sql, params), timeout=settings.SEARCH_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutError(f"{what} timed out after {settings.SEARCH_TIMEOUT_SECONDS}s") from e
    except SQLAlchemyError as e:
        raise SearchError(f"{what} failed: {e}") from e


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        value = json.loads(value or "{}")
    return dict(value or {})


def _to_hybrid_result(row: Dict[str, Any]) -> HybridSearchResult:
    return HybridSearchResult(
        chunk_id=str(row["chunk_id"]),
        document_id=str(row["document_id"]),
        content=row["content"],
        chunk_type=row.get("chunk_type") or "text",
        metadata=_as_dict(row.get("metadata")),
        document_title=row["document_title"],
        document_type=row.get("document_type") or "case_study",
        slug=row["slug"],
        client_name=row.get("client_name"),
        author=row.get("author"),
        vimeo_url=row.get("vimeo_url"),
        thumbnail_url=row.get("thumbnail_url"),
        similarity_score=float(row.get("similarity_score") or 0.0),
        keyword_score=float(row.get("keyword_score") or 0.0),
        combined_score=float(row.get("combined_score") or 0.0),
    )


async def hybrid_search(
    query: str,
    doc_types: Optional[Sequence[str]] = None,
    capability_slugs: Optional[Sequence[str]] = None,
    industry_slugs: Optional[Sequence[str]] = None,
    topic_slugs: Optional[Sequence[str]] = None,
    match_count: int = 10,
    semantic_weight: Optional[float] = None,
) -> List[HybridSearchResult]:
    """Rank chunks by blended vector + trigram relevance.

    Args:
        query: User query text (embedded and used for trigram similarity).
        doc_types: Restrict to these document types.
        capability_slugs: Restrict to documents tagged with any of these capabilities.
        industry_slugs: Restrict to documents tagged with any of these industries.
        topic_slugs: Restrict to documents tagged with any of these topics.
        match_count: Maximum rows to return.
        semantic_weight: Interpolation factor in [0, 1]; defaults to SEMANTIC_WEIGHT.

    Returns:
        List[HybridSearchResult]: At most match_count results, combined_score non-increasing.
            Zero results is a valid outcome.

    Raises:
        EmbeddingError: If the query cannot be embedded.
        SearchError / UpstreamTimeoutError: If the database call fails or times out.
    """
    weight = settings.SEMANTIC_WEIGHT if semantic_weight is None else float(semantic_weight)
    params = {
        "doc_types": _array_or_none(doc_types),
        "capability_slugs": _array_or_none(capability_slugs),
        "industry_slugs": _array_or_none(industry_slugs),
        "topic_slugs": _array_or_none(topic_slugs),
        "match_count": int(match_count),
        "semantic_weight": weight,
    }
    key = {"query": query, **params}
    cached = cache.get(CachePrefix.RAG_SEARCH, key)
    if cached is not None:
        return cached

    qvec = await embed_query(query)
    with track("hybrid_search"):
        rows = await _run(
            HYBRID_SEARCH_SQL,
            {**params, "qvec": _vector_literal(qvec), "query_text": query},
            "Hybrid search",
        )
    results = sorted((_to_hybrid_result(r) for r in rows), key=lambda r: r.combined_score, reverse=True)
    results = results[: int(match_count)]
    logger.debug("Hybrid search returned %d rows (filters=%s)", len(results), {k: v for k, v in params.items() if v})
    cache.set(CachePrefix.RAG_SEARCH, key, results, ttl_for(CachePrefix.RAG_SEARCH))
    return results


async def _sign(asset: VisualAssetSearchResult) -> VisualAssetSearchResult:
    url = await create_signed_url(asset.bucket_name, asset.storage_path)
    return asset.model_copy(update={"signed_url": url})


async def search_visual_assets(
    query: str,
    document_ids: Optional[Sequence[str]] = None,
    asset_types: Optional[Sequence[str]] = None,
    match_count: int = 5,
) -> List[VisualAssetSearchResult]:
    """Find visual assets whose descriptions match the query, with signed URLs.

    Args:
        query: User query text.
        document_ids: Restrict to assets of these documents.
        asset_types: Restrict to these asset types (chart, diagram, photo, ...).
        match_count: Maximum assets to return.

    Returns:
        List[VisualAssetSearchResult]: Assets ordered by similarity; assets whose URL
            could not be signed are omitted.
    """
    params = {
        "document_ids": _array_or_none(document_ids),
        "asset_types": _array_or_none(asset_types),
        "match_count": int(match_count),
    }
    key = {"query": query, **params}
    cached = cache.get(CachePrefix.VISUAL_ASSETS, key)
    if cached is not None:
        return cached

    qvec = await embed_query(query)
    with track("visual_asset_search"):
        rows = await _run(VISUAL_ASSET_SQL, {**params, "qvec": _vector_literal(qvec)}, "Visual asset search")
        assets = [
            VisualAssetSearchResult(
                asset_id=str(r["asset_id"]),
                document_id=str(r["document_id"]),
                storage_path=r["storage_path"],
                bucket_name=r["bucket_name"],
                asset_type=r["asset_type"],
                alt_text=r.get("alt_text"),
                caption=r.get("caption"),
                description=r.get("description"),
                similarity_score=float(r.get("similarity_score") or 0.0),
            )
            for r in rows
        ]
        signed = await asyncio.gather(*(_sign(a) for a in assets), return_exceptions=True)

    results: List[VisualAssetSearchResult] = []
    for asset, outcome in zip(assets, signed):
        if isinstance(outcome, BaseException):
            logger.warning("Dropping visual asset %s: signing failed: %s", asset.asset_id, outcome)
            continue
        results.append(outcome)
    cache.set(CachePrefix.VISUAL_ASSETS, key, results, ttl_for(CachePrefix.VISUAL_ASSETS))
    return results


async def get_document_metrics(document_ids: Sequence[str]) -> List[DocumentMetric]:
    """Fetch metrics for the given documents, ordered by document then display order."""
    ids = _array_or_none(document_ids)
    if not ids:
        return []
    cached = cache.get(CachePrefix.METRICS, ids)
    if cached is not None:
        return cached
    rows = await _run(DOCUMENT_METRICS_SQL, {"document_ids": ids}, "Metrics lookup")
    metrics = [
        DocumentMetric(
            id=str(r["id"]),
            document_id=str(r["document_id"]),
            label=r["label"],
            value=r["value"],
            context=r.get("context"),
            display_order=int(r.get("display_order") or 0),
        )
        for r in rows
    ]
    cache.set(CachePrefix.METRICS, ids, metrics, ttl_for(CachePrefix.METRICS))
    return metrics


async def _list_taxonomy(table: str) -> List[TaxonomyTerm]:
    if table not in TAXONOMY_TABLES:
        raise ValueError(f"Unknown taxonomy table: {table}")
    cached = cache.get(CachePrefix.TAXONOMY, table)
    if cached is not None:
        return cached
    rows = await _run(f"SELECT id, name, slug, description FROM {table} ORDER BY name", {}, f"{table} lookup")
    terms = [
        TaxonomyTerm(id=str(r["id"]), name=r["name"], slug=r["slug"], description=r.get("description"))
        for r in rows
    ]
    cache.set(CachePrefix.TAXONOMY, table, terms, ttl_for(CachePrefix.TAXONOMY))
    return terms


async def list_capabilities() -> List[TaxonomyTerm]:
    return await _list_taxonomy("capabilities")


async def list_industries() -> List[TaxonomyTerm]:
    return await _list_taxonomy("industries")


async def list_topics() -> List[TaxonomyTerm]:
    return await _list_taxonomy("topics")
