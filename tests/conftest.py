import pytest

from concierge import embedding, rate_limit
from concierge.analytics import analytics
from concierge.cache import cache
from concierge.config import settings
from concierge.performance import performance
from concierge.schemas import HybridSearchResult, VisualAssetSearchResult


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Process-wide state must not leak between tests."""
    cache.clear()
    analytics.clear()
    performance.clear()
    rate_limit.set_rate_limiter(None)
    yield
    cache.clear()
    analytics.clear()
    performance.clear()
    rate_limit.set_rate_limiter(None)
    embedding._client = None


@pytest.fixture
def fake_embedding(monkeypatch):
    """Replace query embedding everywhere it is imported with a constant vector."""
    calls = []

    async def _embed(text):
        calls.append(text)
        return [0.01] * settings.EMBEDDING_DIM

    from concierge import retrieval, search

    monkeypatch.setattr(search, "embed_query", _embed)
    monkeypatch.setattr(retrieval, "embed_query", _embed)
    return calls


def make_chunk(chunk_id, document_id, score, document_type="case_study", **extra):
    fields = dict(
        chunk_id=chunk_id,
        document_id=document_id,
        content=f"content of {chunk_id}",
        document_title=f"Document {document_id}",
        document_type=document_type,
        slug=f"doc-{document_id}",
        similarity_score=score,
        keyword_score=score,
        combined_score=score,
    )
    fields.update(extra)
    return HybridSearchResult(**fields)


def make_asset(asset_id, document_id="d1", score=0.5, signed_url=None):
    return VisualAssetSearchResult(
        asset_id=asset_id,
        document_id=document_id,
        storage_path=f"{document_id}/{asset_id}.png",
        bucket_name="document-assets",
        asset_type="chart",
        alt_text=f"alt {asset_id}",
        caption=f"caption {asset_id}",
        description=f"description {asset_id}",
        similarity_score=score,
        signed_url=signed_url,
    )
