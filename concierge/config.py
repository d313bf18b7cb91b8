"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- API keys and model names (embeddings, layout orchestration)
- Data stores (PostgreSQL, storage service, optional Redis)
- Retrieval/ranking knobs (thresholds, type caps, score boost)
- Cache TTLs and capacity
- Rate limiting presets
- Performance alert thresholds
- Optional observability (Langfuse, OpenTelemetry console export)

A light-weight local warning is logged if OPENAI_API_KEY is not set when not running in Docker.
"""
import logging
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    Retrieval constants are product tuning choices, not derived values; they are
    exposed here so they can be adjusted and tested independently.
    """
    # Required
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")

    # Models
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    EMBEDDING_MAX_CHARS: int = 8000
    EMBEDDING_MAX_ATTEMPTS: int = 3
    EMBEDDING_RETRY_BACKOFF_SECONDS: float = 0.5
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0

    # Data stores
    DATABASE_URL: str = "postgresql+asyncpg://concierge:concierge@db:5432/concierge"
    STORAGE_URL: str = ""
    STORAGE_SERVICE_KEY: str = ""
    SIGNED_URL_TTL_SECONDS: int = 3600
    REDIS_URL: str = "redis://redis:6379/0"

    # Retrieval
    MAX_CHUNKS: int = 10
    MAX_ASSETS: int = 5
    SEMANTIC_WEIGHT: float = 0.7
    MIN_RELEVANCE_SCORE: float = 0.15
    FILTERED_MATCH_BOOST: float = 0.10
    RELEVANCE_FALLBACK_COUNT: int = 5
    FORCED_CASE_STUDIES: int = 2
    MAX_CASE_STUDIES: int = 4
    MAX_ARTICLES: int = 2
    DETAIL_CHUNKS_PER_CASE_STUDY: int = 1
    SEARCH_TIMEOUT_SECONDS: float = 10.0

    # Orchestration
    MAX_OUTPUT_TOKENS: int = 4096
    LLM_TEMPERATURE: float = 0.4
    LLM_TIMEOUT_SECONDS: float = 45.0
    MAX_HISTORY_MESSAGES: int = 10
    QUERY_MIN_LENGTH: int = 3
    QUERY_MAX_LENGTH: int = 2000

    # Cache
    CACHE_MAX_ENTRIES: int = 1000
    CACHE_SWEEP_INTERVAL_SECONDS: int = 300
    CACHE_TTL_EMBEDDING_SECONDS: int = 24 * 60 * 60
    CACHE_TTL_SEARCH_SECONDS: int = 60 * 60
    CACHE_TTL_ORCHESTRATOR_SECONDS: int = 30 * 60
    CACHE_TTL_VISUAL_ASSETS_SECONDS: int = 30 * 60  # below SIGNED_URL_TTL_SECONDS
    CACHE_TTL_METRICS_SECONDS: int = 24 * 60 * 60
    CACHE_TTL_TAXONOMY_SECONDS: int = 24 * 60 * 60

    # Rate limiting
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_CHAT_PER_MINUTE: int = 20
    RATE_LIMIT_API_PER_MINUTE: int = 60
    RATE_LIMIT_STRICT_PER_MINUTE: int = 5
    RATE_LIMIT_WINDOW_MS: int = 60 * 1000
    TRUST_X_FORWARDED_FOR: bool = True

    # Performance / analytics
    ANALYTICS_MAX_EVENTS: int = 1000
    PERF_API_RESPONSE_MS: float = 5000
    PERF_RAG_RETRIEVAL_MS: float = 2000
    PERF_ORCHESTRATOR_MS: float = 10000
    PERF_MIN_CACHE_HIT_RATE: float = 30  # percent
    PERF_MAX_ERROR_RATE: float = 5  # percent

    # Observability (optional)
    LOG_LEVEL: str = "INFO"
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    OTEL_CONSOLE_EXPORT: bool = False

    # Derived
    @property
    def EMBEDDING_DIM(self) -> int:
        """Embedding dimension for the configured embedding model.

        Returns:
            int: The vector dimension inferred from OPENAI_EMBEDDING_MODEL.
        """
        model = self.OPENAI_EMBEDDING_MODEL.lower()
        if "text-embedding-3-small" in model:
            return 1536
        if "text-embedding-3-large" in model:
            return 3072
        # Fallback
        return 1536

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()

# Safety check for local dev (inside the API container this must be set)
if os.environ.get("RUNNING_IN_DOCKER", "0") == "0":
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Set it in .env before serving /api/chat.")
