import asyncio
from collections import Counter

import pytest

from concierge import retrieval
from concierge.config import settings
from concierge.errors import SearchError, StorageError
from concierge.intent import QueryIntent
from concierge.schemas import DocumentMetric, TaxonomyTerm

from conftest import make_asset, make_chunk


@pytest.fixture
def fake_pipeline(monkeypatch, fake_embedding):
    """Install fake searches; tests fill in what each one returns."""
    state = {
        "filtered": [],
        "unfiltered": [],
        "assets": [],
        "filtered_calls": [],
        "unfiltered_calls": 0,
        "metrics_for": None,
        "fail": set(),
    }

    async def hybrid_search(query, capability_slugs=None, industry_slugs=None, match_count=10, **kw):
        if capability_slugs or industry_slugs:
            state["filtered_calls"].append((capability_slugs, industry_slugs, match_count))
            if "filtered" in state["fail"]:
                raise SearchError("filtered search down")
            return state["filtered"]
        state["unfiltered_calls"] += 1
        state["unfiltered_match_count"] = match_count
        if "unfiltered" in state["fail"]:
            raise SearchError("search down")
        return state["unfiltered"]

    async def search_visual_assets(query, match_count=5, **kw):
        if "assets" in state["fail"]:
            raise StorageError("storage down")
        return state["assets"]

    async def list_capabilities():
        if "taxonomy" in state["fail"]:
            raise SearchError("taxonomy down")
        return [TaxonomyTerm(id="c1", name="Brand Strategy", slug="brand-strategy")]

    async def list_industries():
        return [TaxonomyTerm(id="i1", name="Finance", slug="finance")]

    async def list_topics():
        return []

    async def get_document_metrics(document_ids):
        state["metrics_for"] = list(document_ids)
        return [
            DocumentMetric(id=f"m-{d}", document_id=d, label="Growth", value="+10%") for d in document_ids
        ]

    monkeypatch.setattr(retrieval, "hybrid_search", hybrid_search)
    monkeypatch.setattr(retrieval, "search_visual_assets", search_visual_assets)
    monkeypatch.setattr(retrieval, "list_capabilities", list_capabilities)
    monkeypatch.setattr(retrieval, "list_industries", list_industries)
    monkeypatch.setattr(retrieval, "list_topics", list_topics)
    monkeypatch.setattr(retrieval, "get_document_metrics", get_document_metrics)
    return state


def no_intent(query):
    return QueryIntent()


def test_fintech_rebrand_keeps_relevant_case_study_and_drops_weak_article(fake_pipeline):
    case_study = make_chunk("c1", "neobank", 0.42)
    article = make_chunk("a1", "unrelated", 0.05, document_type="article")
    fake_pipeline["filtered"] = [case_study]
    fake_pipeline["unfiltered"] = [case_study, article]

    ctx = asyncio.run(retrieval.retrieve_context("fintech rebrand", min_relevance_score=0.15))

    ids = [c.chunk_id for c in ctx.chunks]
    assert "c1" in ids
    assert "a1" not in ids
    # Filtered copy wins and is boosted
    assert ctx.chunks[0].combined_score == pytest.approx(0.42 * (1 + settings.FILTERED_MATCH_BOOST))
    caps, inds, match_count = fake_pipeline["filtered_calls"][0]
    assert caps == ["brand-strategy"]
    assert "finance" in inds
    assert match_count == settings.MAX_CHUNKS * 2


def test_zero_results_is_an_empty_context_not_an_error(fake_pipeline):
    ctx = asyncio.run(retrieval.retrieve_context("something obscure", detect=no_intent))

    assert ctx.chunks == []
    assert ctx.is_empty
    assert fake_pipeline["filtered_calls"] == []
    assert fake_pipeline["metrics_for"] == []


def test_explicit_filters_are_unioned_with_detected_intent(fake_pipeline):
    def detect(query):
        return QueryIntent(capabilities=["brand-strategy"], industries=[])

    asyncio.run(
        retrieval.retrieve_context("q", capability_slugs=["video-production"], industry_slugs=["retail"], detect=detect)
    )

    caps, inds, _ = fake_pipeline["filtered_calls"][0]
    assert caps == ["brand-strategy", "video-production"]
    assert inds == ["retail"]


def test_relevance_fallback_keeps_top_candidates_when_all_are_weak(fake_pipeline):
    fake_pipeline["unfiltered"] = [make_chunk(f"c{i}", f"d{i}", 0.1 - i * 0.01) for i in range(8)]

    ctx = asyncio.run(retrieval.retrieve_context("q", min_relevance_score=0.5, detect=no_intent))

    assert ctx.chunks
    assert {c.chunk_id for c in ctx.chunks} <= {f"c{i}" for i in range(settings.RELEVANCE_FALLBACK_COUNT)}


def test_case_studies_are_forced_back_when_only_articles_pass(fake_pipeline):
    fake_pipeline["unfiltered"] = [
        make_chunk("a1", "art1", 0.8, document_type="article"),
        make_chunk("a2", "art2", 0.7, document_type="article"),
        make_chunk("c1", "cs1", 0.10),
        make_chunk("c2", "cs2", 0.09),
        make_chunk("c3", "cs3", 0.08),
    ]

    ctx = asyncio.run(retrieval.retrieve_context("q", min_relevance_score=0.5, detect=no_intent))

    case_ids = [c.chunk_id for c in ctx.chunks if c.document_type == "case_study"]
    assert case_ids == ["c1", "c2"]
    assert len(case_ids) == settings.FORCED_CASE_STUDIES


def test_type_caps_and_one_best_chunk_per_document(fake_pipeline, monkeypatch):
    monkeypatch.setattr(settings, "DETAIL_CHUNKS_PER_CASE_STUDY", 0)
    chunks = []
    for i in range(6):
        chunks.append(make_chunk(f"c{i}a", f"cs{i}", 0.9 - i * 0.05))
        chunks.append(make_chunk(f"c{i}b", f"cs{i}", 0.85 - i * 0.05))
    for i in range(4):
        chunks.append(make_chunk(f"a{i}", f"art{i}", 0.6 - i * 0.05, document_type="article"))
    fake_pipeline["unfiltered"] = chunks

    ctx = asyncio.run(retrieval.retrieve_context("q", detect=no_intent))

    types = Counter(c.document_type for c in ctx.chunks)
    assert types["case_study"] == settings.MAX_CASE_STUDIES
    assert types["article"] == settings.MAX_ARTICLES
    assert len({c.document_id for c in ctx.chunks}) == len(ctx.chunks)
    scores = [c.combined_score for c in ctx.chunks]
    assert scores == sorted(scores, reverse=True)
    assert fake_pipeline["metrics_for"] == list(dict.fromkeys(c.document_id for c in ctx.chunks))
    assert len(ctx.related_metrics) == len(ctx.chunks)


def test_detail_chunk_is_the_only_same_document_companion(fake_pipeline):
    fake_pipeline["unfiltered"] = [
        make_chunk("c1a", "cs1", 0.9),
        make_chunk("c1b", "cs1", 0.8),
        make_chunk("c1c", "cs1", 0.7),
        make_chunk("a1", "art1", 0.6, document_type="article"),
    ]

    ctx = asyncio.run(retrieval.retrieve_context("q", detect=no_intent))

    per_doc = Counter(c.document_id for c in ctx.chunks)
    assert per_doc["cs1"] == 2
    details = [c for c in ctx.chunks if c.is_detail]
    assert [d.chunk_id for d in details] == ["c1b"]
    # Cached search results are never mutated in place
    assert not any(c.is_detail for c in fake_pipeline["unfiltered"])


def test_chunk_count_never_exceeds_max_chunks(fake_pipeline):
    fake_pipeline["unfiltered"] = [make_chunk(f"c{i}", f"cs{i}", 0.9 - i * 0.01) for i in range(10)] + [
        make_chunk(f"c{i}x", f"cs{i}", 0.5) for i in range(10)
    ]

    ctx = asyncio.run(retrieval.retrieve_context("q", max_chunks=3, detect=no_intent))

    assert len(ctx.chunks) <= 3
    assert any(c.document_type == "case_study" for c in ctx.chunks)


def test_case_study_survives_a_tight_chunk_cap(fake_pipeline):
    fake_pipeline["unfiltered"] = [
        make_chunk("a1", "art1", 0.9, document_type="article"),
        make_chunk("c1", "cs1", 0.3),
    ]

    ctx = asyncio.run(retrieval.retrieve_context("q", max_chunks=1, detect=no_intent))

    assert [c.chunk_id for c in ctx.chunks] == ["c1"]


def test_optional_lookups_degrade_to_empty(fake_pipeline, caplog):
    fake_pipeline["unfiltered"] = [make_chunk("c1", "cs1", 0.5)]
    fake_pipeline["fail"].update({"filtered", "assets", "taxonomy"})

    def detect(query):
        return QueryIntent(capabilities=["brand-strategy"])

    with caplog.at_level("WARNING"):
        ctx = asyncio.run(retrieval.retrieve_context("q", detect=detect))

    assert [c.chunk_id for c in ctx.chunks] == ["c1"]
    assert ctx.visual_assets == []
    assert ctx.capabilities == []
    assert any("continuing without it" in r.message for r in caplog.records)


def test_unfiltered_search_failure_propagates(fake_pipeline):
    fake_pipeline["fail"].add("unfiltered")

    with pytest.raises(SearchError):
        asyncio.run(retrieval.retrieve_context("q", detect=no_intent))


def test_assets_are_capped(fake_pipeline):
    fake_pipeline["assets"] = [make_asset(f"v{i}", signed_url="https://x/y") for i in range(8)]

    ctx = asyncio.run(retrieval.retrieve_context("q", max_assets=3, detect=no_intent))

    assert len(ctx.visual_assets) == 3
