import asyncio
from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError, BadRequestError

from concierge import embedding
from concierge.config import settings
from concierge.errors import ConfigurationError, EmbeddingError, InvalidQueryError


class FakeEmbeddings:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, model, input):
        self.calls.append((model, input))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(data=[SimpleNamespace(embedding=outcome)])


@pytest.fixture
def fake_client(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(settings, "EMBEDDING_RETRY_BACKOFF_SECONDS", 0)

    def install(*outcomes):
        fake = SimpleNamespace(embeddings=FakeEmbeddings(outcomes))
        monkeypatch.setattr(embedding, "_client", fake)
        return fake.embeddings

    return install


def _vector():
    return [0.5] * settings.EMBEDDING_DIM


def _timeout():
    return APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))


def test_blank_query_is_rejected():
    with pytest.raises(InvalidQueryError):
        asyncio.run(embedding.embed_query("   "))


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    with pytest.raises(ConfigurationError):
        asyncio.run(embedding.embed_query("brand strategy"))


def test_embedding_is_cached_by_text(fake_client):
    calls = fake_client(_vector())

    first = asyncio.run(embedding.embed_query("brand strategy"))
    second = asyncio.run(embedding.embed_query("brand strategy"))

    assert first == second == _vector()
    assert len(calls.calls) == 1
    assert calls.calls[0] == (settings.OPENAI_EMBEDDING_MODEL, ["brand strategy"])


def test_transient_errors_are_retried(fake_client):
    calls = fake_client(_timeout(), _vector())

    assert asyncio.run(embedding.embed_query("retry me")) == _vector()
    assert len(calls.calls) == 2


def test_exhausted_retries_raise_embedding_error(fake_client):
    fake_client(*[_timeout() for _ in range(settings.EMBEDDING_MAX_ATTEMPTS)])

    with pytest.raises(EmbeddingError):
        asyncio.run(embedding.embed_query("never works"))


def test_non_transient_errors_are_not_retried(fake_client):
    response = httpx.Response(400, request=httpx.Request("POST", "https://api.openai.com/v1/embeddings"))
    calls = fake_client(BadRequestError("bad input", response=response, body=None))

    with pytest.raises(EmbeddingError):
        asyncio.run(embedding.embed_query("bad"))
    assert len(calls.calls) == 1


def test_wrong_dimension_is_rejected(fake_client):
    fake_client([0.1, 0.2, 0.3])

    with pytest.raises(EmbeddingError, match="dimensions"):
        asyncio.run(embedding.embed_query("short vector"))


def test_long_input_is_truncated(fake_client, monkeypatch):
    monkeypatch.setattr(settings, "EMBEDDING_MAX_CHARS", 10)
    calls = fake_client(_vector())

    asyncio.run(embedding.embed_query("x" * 50))
    assert calls.calls[0][1] == ["x" * 10]
