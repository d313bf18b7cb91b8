"""FastAPI application entrypoint and routes.

Exposes:
- GET  /health         liveness probe
- POST /api/chat       query -> retrieval -> layout orchestration -> render plan
- GET  /api/health     health verdict, latency metrics and recent alerts
- GET  /api/analytics  usage dashboard, cache and rate limiter stats

The lifespan initializes the database schema and runs a housekeeping task that sweeps
the cache, the rate limiter and the performance monitor.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from concierge.analytics import analytics
from concierge.cache import CachePrefix, cache, ttl_for
from concierge.config import settings
from concierge.db import init_db
from concierge.errors import ConciergeError, InvalidQueryError, UpstreamError
from concierge.layout import assemble_layout, has_renderable_components
from concierge.obs import Trace, span
from concierge.orchestrator import ERROR_EXPLANATION, fallback_output, orchestrate
from concierge.performance import performance
from concierge.rate_limit import RateLimitDecision, RateLimitExceeded, get_rate_limiter, rate_limited
from concierge.retrieval import retrieve_context
from concierge.schemas import ChatFilters, ChatRequest, ChatResponse, OrchestratorOutput, RenderInstruction
from concierge.storage import close_http_client

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _housekeeping() -> None:
    while True:
        await asyncio.sleep(settings.CACHE_SWEEP_INTERVAL_SECONDS)
        removed = cache.sweep()
        expired = get_rate_limiter().cleanup()
        performance.sweep()
        logger.debug("Housekeeping: cache_removed=%d rate_windows_removed=%d", removed, expired)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Ensure schema/indexes exist, then run housekeeping until shutdown."""
    await init_db()
    task = asyncio.create_task(_housekeeping())
    try:
        yield
    finally:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        await close_http_client()


app = FastAPI(title="Portfolio Concierge API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": exc.message, "retryAfter": exc.decision.retry_after},
        headers=exc.decision.headers(),
    )


@app.exception_handler(ConciergeError)
async def concierge_error_handler(request: Request, exc: ConciergeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Missing or invalid query"})


def validate_query(query: Optional[Any]) -> str:
    """Trim and bound-check the query.

    Raises:
        InvalidQueryError: If missing, not a string, or outside the length bounds.
    """
    if not isinstance(query, str) or not query.strip():
        raise InvalidQueryError("Missing or invalid query")
    query = query.strip()
    if len(query) < settings.QUERY_MIN_LENGTH:
        raise InvalidQueryError("Query too short")
    if len(query) > settings.QUERY_MAX_LENGTH:
        raise InvalidQueryError(f"Query too long (max {settings.QUERY_MAX_LENGTH} characters)")
    return query


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fallback_body(message: str) -> Dict[str, Any]:
    body = fallback_output(ERROR_EXPLANATION).model_dump(by_alias=True, exclude_none=True)
    body["renderPlan"] = [
        inst.model_dump(by_alias=True, exclude_none=True)
        for inst in assemble_layout(fallback_output().layout_plan)
    ]
    body["error"] = message
    return body


def _component_names(render_plan: List[RenderInstruction]) -> List[str]:
    names: List[str] = []
    for inst in render_plan:
        if inst.kind == "component" and inst.component:
            names.append(inst.component)
        elif inst.kind == "group":
            names.extend(i.component for i in inst.items if i.component)
    return names


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@app.post(
    "/api/chat",
    response_model=ChatResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def chat(req: ChatRequest, _: RateLimitDecision = Depends(rate_limited("chat"))):
    """Assemble a pitch-deck layout for a portfolio query.

    Workflow:
    - Rate limit (chat preset) via dependency, before anything else runs
    - Validate the query (3-2000 characters after trimming)
    - Retrieve context (intent detection, hybrid searches, assets, metrics)
    - Reuse a cached orchestration for the same query/history/evidence, or call the model
    - Validate and assemble the layout into render instructions
    - Record analytics, latency and the Langfuse trace

    Returns:
        ChatResponse on success; 400 {"error"} for bad input; the fallback layout with
        contactCTA=true and an "error" field (503/500) when an upstream call fails.
    """
    t0 = time.perf_counter()
    query = validate_query(req.query)
    filters = req.filters or ChatFilters()
    history = req.conversation_history or []
    trace = Trace("chat", input={"query": query, "filters": filters.model_dump(exclude_none=True)})

    try:
        with span("retrieve", {"capabilities": filters.capabilities, "industries": filters.industries}):
            context = await retrieve_context(
                query,
                capability_slugs=filters.capabilities,
                industry_slugs=filters.industries,
                max_chunks=settings.MAX_CHUNKS,
                max_assets=settings.MAX_ASSETS,
            )
        trace.event(
            "retrieval_result",
            {
                "chunks": len(context.chunks),
                "assets": len(context.visual_assets),
                "metrics": len(context.related_metrics),
            },
        )

        orch_key = {
            "query": query,
            "history": [m.model_dump() for m in history],
            "chunks": [c.chunk_id for c in context.chunks],
            "assets": [a.asset_id for a in context.visual_assets],
        }
        output: Optional[OrchestratorOutput] = cache.get(CachePrefix.ORCHESTRATOR, orch_key)
        used_cache = output is not None
        if output is None:
            with span("orchestrate", {"chunks": len(context.chunks)}):
                output = await orchestrate(query, context, history)
            if output.layout_plan.layout:
                cache.set(CachePrefix.ORCHESTRATOR, orch_key, output, ttl_for(CachePrefix.ORCHESTRATOR))

        render_plan = assemble_layout(output.layout_plan)
        contact_cta = output.contact_cta or not has_renderable_components(render_plan)
        components = _component_names(render_plan)
        analytics.track_component_usage(components)

        latency_ms = int((time.perf_counter() - t0) * 1000)
        analytics.track_query(query, latency_ms, cache_hit=used_cache, component_count=len(components))
        performance.record("api_response_time", latency_ms)

        trace.generation(
            "layout",
            prompt=query,
            output=output.explanation,
            metadata={"components": components, "used_cache": used_cache},
        )
        trace.end(output={"used_cache": used_cache, "latency_ms": latency_ms, "contact_cta": contact_cta})

        return ChatResponse(
            layout_plan=output.layout_plan,
            explanation=output.explanation,
            suggested_follow_ups=output.suggested_follow_ups,
            contact_cta=contact_cta,
            render_plan=render_plan,
            latency_ms=latency_ms,
            used_cache=used_cache,
        )
    except UpstreamError as e:
        status_code, message = e.status_code, str(e)
        logger.error("Chat request failed upstream: %s", e)
    except ConciergeError:
        raise
    except Exception as e:
        status_code, message = 500, "Internal server error"
        logger.exception("Chat request failed: %s", e)

    latency_ms = int((time.perf_counter() - t0) * 1000)
    analytics.track_query(query, latency_ms, error=message)
    performance.record("api_response_time", latency_ms, success=False)
    trace.end(output={"error": message, "latency_ms": latency_ms})
    return JSONResponse(status_code=status_code, content=_fallback_body(message))


@app.get("/api/health")
async def api_health():
    """Health verdict with latency metrics and the most recent alerts."""
    verdict = performance.get_health()
    return {
        "status": verdict["status"],
        "issues": verdict["issues"],
        "metrics": performance.get_metrics(),
        "alerts": performance.get_alerts(limit=5),
        "timestamp": _timestamp(),
    }


@app.get("/api/analytics")
async def api_analytics(_: RateLimitDecision = Depends(rate_limited("api"))):
    """Usage dashboard plus cache and rate limiter statistics."""
    return {
        "analytics": analytics.get_dashboard(),
        "cache": cache.stats(),
        "rateLimiter": get_rate_limiter().stats(),
        "timestamp": _timestamp(),
    }
