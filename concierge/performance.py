"""Latency tracking, threshold alerts and health status.

Provides:
- PerformanceMonitor: per-metric rolling windows (last 1000 values), alerts when a value
  crosses its threshold (critical above 2x), percentile summaries and a health verdict.
- track(): context manager timing a block, recording the outcome in the monitor and
  in analytics.
- performance: process-wide singleton.

Metric names map to thresholds by substring:
- api_response     -> PERF_API_RESPONSE_MS
- rag_retrieval    -> PERF_RAG_RETRIEVAL_MS
- orchestrator     -> PERF_ORCHESTRATOR_MS
"""
import logging
import math
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, Iterator, List, Literal, Optional

from concierge.analytics import analytics
from concierge.config import settings

logger = logging.getLogger(__name__)

HealthStatus = Literal["healthy", "degraded", "critical"]

MAX_VALUES_PER_METRIC = 1000
MAX_ALERTS = 100
SWEEP_KEEP_VALUES = 360
ALERT_RETENTION_SECONDS = 3600


@dataclass
class Thresholds:
    api_response_time: float = 5000
    rag_retrieval_time: float = 2000
    orchestrator_time: float = 10000
    cache_hit_rate: float = 30
    error_rate: float = 5


@dataclass
class Alert:
    type: Literal["warning", "critical"]
    metric: str
    value: float
    threshold: float
    message: str
    timestamp: float


def percentile(values: List[float], p: float) -> float:
    """Nearest-rank percentile (index ceil(p/100 * n) - 1 of the sorted values)."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = max(0, math.ceil(p / 100 * len(ordered)) - 1)
    return ordered[min(index, len(ordered) - 1)]


def _avg(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PerformanceMonitor:
    """Rolling latency windows with alerting.

    Args:
        thresholds: Alert thresholds; defaults come from settings.
        clock: Epoch-seconds time source (injectable for tests).
    """

    def __init__(self, thresholds: Optional[Thresholds] = None, clock: Callable[[], float] = time.time):
        self.thresholds = thresholds or Thresholds(
            api_response_time=settings.PERF_API_RESPONSE_MS,
            rag_retrieval_time=settings.PERF_RAG_RETRIEVAL_MS,
            orchestrator_time=settings.PERF_ORCHESTRATOR_MS,
            cache_hit_rate=settings.PERF_MIN_CACHE_HIT_RATE,
            error_rate=settings.PERF_MAX_ERROR_RATE,
        )
        self._clock = clock
        self._metrics: Dict[str, Deque[float]] = {}
        self._alerts: Deque[Alert] = deque(maxlen=MAX_ALERTS)

    def _threshold_for(self, metric: str) -> Optional[float]:
        if "api_response" in metric:
            return self.thresholds.api_response_time
        if "rag_retrieval" in metric:
            return self.thresholds.rag_retrieval_time
        if "orchestrator" in metric:
            return self.thresholds.orchestrator_time
        return None

    def record(self, metric: str, value_ms: float, success: bool = True) -> None:
        """Record one measurement, forward it to analytics and check its threshold."""
        values = self._metrics.setdefault(metric, deque(maxlen=MAX_VALUES_PER_METRIC))
        values.append(value_ms)
        analytics.track_performance(metric, value_ms, success=success)

        threshold = self._threshold_for(metric)
        if threshold is None or value_ms <= threshold:
            return
        level = "critical" if value_ms > threshold * 2 else "warning"
        alert = Alert(
            type=level,
            metric=metric,
            value=round(value_ms, 1),
            threshold=threshold,
            message=f"{metric} took {value_ms:.0f}ms (threshold {threshold:.0f}ms)",
            timestamp=self._clock(),
        )
        self._alerts.append(alert)
        logger.warning("Performance %s: %s", level, alert.message)

    def get_metrics(self) -> Dict[str, Any]:
        api = list(self._metrics.get("api_response_time", []))
        rag = list(self._metrics.get("rag_retrieval_time", []))
        orch = list(self._metrics.get("orchestrator_time", []))
        query_stats = analytics.get_query_stats()
        return {
            "apiResponseTime": {
                "avg": round(_avg(api), 1),
                "p50": round(percentile(api, 50), 1),
                "p95": round(percentile(api, 95), 1),
                "p99": round(percentile(api, 99), 1),
            },
            "ragRetrievalTime": {"avg": round(_avg(rag), 1), "p95": round(percentile(rag, 95), 1)},
            "orchestratorTime": {"avg": round(_avg(orch), 1), "p95": round(percentile(orch, 95), 1)},
            "cacheHitRate": query_stats["cacheHitRate"],
            "errorRate": query_stats["errorRate"],
            "requestsPerMinute": round(query_stats["queriesLastHour"] / 60, 2),
        }

    def get_alerts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        alerts = [asdict(a) for a in self._alerts]
        return alerts[-limit:] if limit else alerts

    def get_health(self) -> Dict[str, Any]:
        """Summarize health from API latency, error rate and cache hit rate.

        Returns:
            Dict with "status" ("healthy" | "degraded" | "critical") and "issues".
        """
        metrics = self.get_metrics()
        issues: List[str] = []
        status: HealthStatus = "healthy"

        p95 = metrics["apiResponseTime"]["p95"]
        if p95 > self.thresholds.api_response_time * 2:
            status = "critical"
            issues.append(f"API p95 latency critical: {p95:.0f}ms")
        elif p95 > self.thresholds.api_response_time:
            status = "degraded"
            issues.append(f"API p95 latency high: {p95:.0f}ms")

        error_rate = metrics["errorRate"]
        if error_rate > self.thresholds.error_rate * 2:
            status = "critical"
            issues.append(f"Error rate critical: {error_rate}%")
        elif error_rate > self.thresholds.error_rate:
            if status == "healthy":
                status = "degraded"
            issues.append(f"Error rate high: {error_rate}%")

        has_queries = analytics.get_query_stats()["totalQueries"] > 0
        if has_queries and metrics["cacheHitRate"] < self.thresholds.cache_hit_rate:
            if status == "healthy":
                status = "degraded"
            issues.append(f"Cache hit rate low: {metrics['cacheHitRate']}%")

        return {"status": status, "issues": issues}

    def sweep(self) -> None:
        """Trim metric windows to recent values and drop alerts older than an hour."""
        for name, values in self._metrics.items():
            if len(values) > SWEEP_KEEP_VALUES:
                self._metrics[name] = deque(list(values)[-SWEEP_KEEP_VALUES:], maxlen=MAX_VALUES_PER_METRIC)
        cutoff = self._clock() - ALERT_RETENTION_SECONDS
        kept = [a for a in self._alerts if a.timestamp >= cutoff]
        self._alerts = deque(kept, maxlen=MAX_ALERTS)

    def set_thresholds(self, **overrides: float) -> None:
        for name, value in overrides.items():
            if not hasattr(self.thresholds, name):
                raise ValueError(f"Unknown threshold: {name}")
            setattr(self.thresholds, name, value)

    def clear(self) -> None:
        self._metrics.clear()
        self._alerts.clear()


performance = PerformanceMonitor()


@contextmanager
def track(operation: str, monitor: Optional[PerformanceMonitor] = None) -> Iterator[None]:
    """Time a block and record its latency and outcome.

    Args:
        operation: Metric name, e.g. "rag_retrieval_time" or "embedding".
        monitor: Monitor to record into (defaults to the process singleton).

    Exceptions propagate after the failure is recorded.
    """
    target = monitor or performance
    started = time.perf_counter()
    try:
        yield
    except Exception:
        target.record(operation, (time.perf_counter() - started) * 1000, success=False)
        raise
    target.record(operation, (time.perf_counter() - started) * 1000, success=True)
