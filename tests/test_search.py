import asyncio
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from concierge import db, search
from concierge.config import settings
from concierge.errors import SearchError, StorageError, UpstreamTimeoutError


def _row(chunk_id, document_id, combined, document_type="case_study"):
    return {
        "chunk_id": uuid.UUID(int=chunk_id),
        "document_id": uuid.UUID(int=document_id),
        "content": f"chunk {chunk_id}",
        "chunk_type": "text",
        "metadata": '{"page": 1}',
        "document_title": f"Doc {document_id}",
        "document_type": document_type,
        "slug": f"doc-{document_id}",
        "client_name": "Acme",
        "author": None,
        "vimeo_url": None,
        "thumbnail_url": None,
        "similarity_score": combined,
        "keyword_score": 0.0,
        "combined_score": combined,
    }


@pytest.fixture
def fake_db(monkeypatch):
    calls = []
    responses = {}

    async def fetch_all(sql, params):
        calls.append((sql, dict(params)))
        for marker, rows in responses.items():
            if marker in sql:
                if isinstance(rows, Exception):
                    raise rows
                return rows
        return []

    monkeypatch.setattr(db, "fetch_all", fetch_all)
    return calls, responses


def test_hybrid_search_orders_by_combined_score(fake_db, fake_embedding):
    calls, responses = fake_db
    responses["filtered_chunks"] = [_row(1, 1, 0.2), _row(2, 2, 0.9), _row(3, 3, 0.5)]

    results = asyncio.run(search.hybrid_search("brand", match_count=3))

    scores = [r.combined_score for r in results]
    assert scores == sorted(scores, reverse=True) == [0.9, 0.5, 0.2]
    assert results[0].chunk_id == str(uuid.UUID(int=2))
    assert results[0].metadata == {"page": 1}


def test_hybrid_search_sends_null_for_empty_filters(fake_db, fake_embedding):
    calls, _ = fake_db

    asyncio.run(search.hybrid_search("brand", capability_slugs=[], industry_slugs=["finance"], match_count=4))

    params = calls[0][1]
    assert params["capability_slugs"] is None
    assert params["industry_slugs"] == ["finance"]
    assert params["match_count"] == 4
    assert params["semantic_weight"] == settings.SEMANTIC_WEIGHT
    assert params["qvec"].startswith("[0.010000,")


def test_zero_rows_is_a_valid_result(fake_db, fake_embedding):
    assert asyncio.run(search.hybrid_search("nothing matches")) == []


def test_hybrid_search_results_are_cached(fake_db, fake_embedding):
    calls, responses = fake_db
    responses["filtered_chunks"] = [_row(1, 1, 0.4)]

    asyncio.run(search.hybrid_search("brand", match_count=2))
    asyncio.run(search.hybrid_search("brand", match_count=2))

    assert len(calls) == 1
    assert len(fake_embedding) == 1


def test_database_errors_raise_search_error(fake_db, fake_embedding):
    _, responses = fake_db
    responses["filtered_chunks"] = OperationalError("SELECT", {}, Exception("connection refused"))

    with pytest.raises(SearchError):
        asyncio.run(search.hybrid_search("brand"))


def test_slow_search_times_out(monkeypatch, fake_embedding):
    async def slow_fetch(sql, params):
        await asyncio.sleep(1)
        return []

    monkeypatch.setattr(db, "fetch_all", slow_fetch)
    monkeypatch.setattr(settings, "SEARCH_TIMEOUT_SECONDS", 0.01)

    with pytest.raises(UpstreamTimeoutError):
        asyncio.run(search.hybrid_search("brand"))


def _asset_row(n):
    return {
        "asset_id": uuid.UUID(int=n),
        "document_id": uuid.UUID(int=100),
        "storage_path": f"doc/{n}.png",
        "bucket_name": "document-assets",
        "asset_type": "chart",
        "alt_text": "alt",
        "caption": "caption",
        "description": "description",
        "similarity_score": 1 - n / 10,
    }


def test_failed_signing_drops_only_that_asset(fake_db, fake_embedding, monkeypatch, caplog):
    _, responses = fake_db
    responses["visual_assets"] = [_asset_row(1), _asset_row(2), _asset_row(3)]

    async def sign(bucket, path, expires_in=None):
        if path == "doc/2.png":
            raise StorageError("boom")
        return f"https://storage.example/signed/{path}?token=t"

    monkeypatch.setattr(search, "create_signed_url", sign)

    with caplog.at_level("WARNING"):
        assets = asyncio.run(search.search_visual_assets("charts", match_count=3))

    assert [a.storage_path for a in assets] == ["doc/1.png", "doc/3.png"]
    assert all(a.signed_url.startswith("https://storage.example/signed/") for a in assets)
    assert any("signing failed" in r.message for r in caplog.records)


def test_document_metrics_empty_ids_skip_database(fake_db):
    calls, _ = fake_db
    assert asyncio.run(search.get_document_metrics([])) == []
    assert calls == []


def test_document_metrics_are_mapped(fake_db):
    _, responses = fake_db
    doc = uuid.UUID(int=7)
    responses["document_metrics"] = [
        {"id": uuid.UUID(int=1), "document_id": doc, "label": "Brand Awareness", "value": "+340%",
         "context": "6 months", "display_order": 0},
    ]

    metrics = asyncio.run(search.get_document_metrics([str(doc)]))
    assert metrics[0].label == "Brand Awareness"
    assert metrics[0].document_id == str(doc)


def test_taxonomy_listing_is_cached(fake_db):
    calls, responses = fake_db
    responses["FROM capabilities"] = [
        {"id": uuid.UUID(int=1), "name": "Brand Strategy", "slug": "brand-strategy", "description": None},
    ]

    first = asyncio.run(search.list_capabilities())
    second = asyncio.run(search.list_capabilities())

    assert [t.slug for t in first] == ["brand-strategy"]
    assert first == second
    assert len(calls) == 1
