"""Query embedding via OpenAI's embeddings API.

Provides:
- get_client: Cached AsyncOpenAI client using the configured API key.
- truncate_for_embedding: Clamp input to EMBEDDING_MAX_CHARS.
- embed_query: Embed one query string with caching, retries and a dimension check.

Models and dimensions are configured via concierge.config.settings.
"""
import asyncio
import logging
from typing import List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from concierge.cache import CachePrefix, cache, ttl_for
from concierge.config import settings
from concierge.errors import ConfigurationError, EmbeddingError, InvalidQueryError
from concierge.performance import track

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    APITimeoutError,
    APIConnectionError,
    RateLimitError,
    InternalServerError,
    asyncio.TimeoutError,
)

_client: Optional[AsyncOpenAI] = None


def get_client() -> AsyncOpenAI:
    """Return a cached AsyncOpenAI client initialized with the configured API key.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set.
    """
    global _client
    if not settings.OPENAI_API_KEY:
        raise ConfigurationError("OPENAI_API_KEY is not configured")
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def truncate_for_embedding(text: str, max_chars: Optional[int] = None) -> str:
    limit = max_chars if max_chars is not None else settings.EMBEDDING_MAX_CHARS
    return text[:limit]


async def _create_embedding(client: AsyncOpenAI, text: str) -> List[float]:
    resp = await asyncio.wait_for(
        client.embeddings.create(model=settings.OPENAI_EMBEDDING_MODEL, input=[text]),
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
    )
    return list(resp.data[0].embedding)


async def embed_query(text: str) -> List[float]:
    """Embed a single query string.

    Args:
        text: The query to embed; truncated to EMBEDDING_MAX_CHARS.

    Returns:
        List[float]: A vector of length settings.EMBEDDING_DIM.

    Raises:
        InvalidQueryError: If text is blank.
        ConfigurationError: If the API key is missing.
        EmbeddingError: On API failure after retries or a wrong-length vector.
    """
    if not text or not text.strip():
        raise InvalidQueryError("Cannot embed an empty query")
    text = truncate_for_embedding(text)
    key = {"model": settings.OPENAI_EMBEDDING_MODEL, "text": text}
    cached = cache.get(CachePrefix.EMBEDDING, key)
    if cached is not None:
        return cached

    client = get_client()
    with track("embedding"):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(settings.EMBEDDING_MAX_ATTEMPTS),
                wait=wait_exponential(multiplier=settings.EMBEDDING_RETRY_BACKOFF_SECONDS, max=8),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                reraise=True,
                before_sleep=lambda retry_state: logger.warning(
                    "Embedding API retry %d after error: %s",
                    retry_state.attempt_number,
                    retry_state.outcome.exception() if retry_state.outcome else "unknown",
                ),
            ):
                with attempt:
                    vector = await _create_embedding(client, text)
        except asyncio.TimeoutError as e:
            raise EmbeddingError("Embedding request timed out") from e
        except APIError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if len(vector) != settings.EMBEDDING_DIM:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {settings.EMBEDDING_DIM}"
            )

    cache.set(CachePrefix.EMBEDDING, key, vector, ttl_for(CachePrefix.EMBEDDING))
    return vector
