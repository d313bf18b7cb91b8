"""Portfolio concierge package: retrieval, ranking and layout orchestration behind a FastAPI API.

Submodules overview:
- main: FastAPI application bootstrap, lifespan housekeeping and routes.
- config: Application settings and environment variable loading.
- errors: Typed exception hierarchy mapped to HTTP statuses.
- db: Async database engine/session management helpers and schema init.
- models: ORM models for documents, chunks, visual assets, metrics and taxonomies.
- schemas: Pydantic models for API contracts and in-pipeline data.
- embedding: Query embedding via OpenAI with truncation, retry and caching.
- search: Hybrid (vector + trigram) chunk search, visual asset search, metrics and taxonomy lookups.
- storage: Signed URL generation against the storage service.
- intent: Keyword-based query intent detection (capability/industry slugs).
- retrieval: Context retriever/ranker building the bounded evidence set.
- prompts: System prompt and user message templates for the layout orchestrator.
- orchestrator: LLM layout orchestration and response parsing.
- components: Closed component registry with prop schemas.
- layout: Pure LayoutPlan -> render instruction assembly (grouping, spacing).
- cache: In-memory TTL result cache.
- rate_limit: Fixed-window per-client rate limiting (memory or Redis).
- analytics: Query, component and performance event accounting.
- performance: Latency thresholds, alerts and health status.
- obs: Observability utilities (Langfuse traces, OpenTelemetry spans).
"""
