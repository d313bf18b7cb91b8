"""In-process usage analytics.

Tracks, with bounded histories (ANALYTICS_MAX_EVENTS):
- query events: latency, cache usage, success/failure
- component usage counts from produced layouts
- performance events per operation
- cache lookups per prefix

Aggregations back the /api/analytics dashboard. State is process-local and lost on restart.
"""
import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from concierge.config import settings

logger = logging.getLogger(__name__)


@dataclass
class QueryEvent:
    query: str
    timestamp: float
    response_time_ms: float
    cache_hit: bool
    error: Optional[str] = None
    component_count: int = 0


@dataclass
class PerformanceEvent:
    operation: str
    duration_ms: float
    timestamp: float
    success: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


def _avg(values: List[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


class Analytics:
    """Bounded event store with dashboard aggregations.

    Args:
        max_events: History length for query and performance events.
        clock: Epoch-seconds time source (injectable for tests).
    """

    def __init__(self, max_events: int = 1000, clock: Callable[[], float] = time.time):
        self.max_events = max_events
        self._clock = clock
        self._queries: Deque[QueryEvent] = deque(maxlen=max_events)
        self._performance: Deque[PerformanceEvent] = deque(maxlen=max_events)
        self._components: Counter = Counter()
        self._cache_lookups: Dict[str, Counter] = {}

    def track_query(
        self,
        query: str,
        response_time_ms: float,
        cache_hit: bool = False,
        error: Optional[str] = None,
        component_count: int = 0,
    ) -> None:
        self._queries.append(
            QueryEvent(
                query=query[:200],
                timestamp=self._clock(),
                response_time_ms=response_time_ms,
                cache_hit=cache_hit,
                error=error,
                component_count=component_count,
            )
        )

    def track_component_usage(self, components: Iterable[str]) -> None:
        self._components.update(components)

    def track_performance(
        self, operation: str, duration_ms: float, success: bool = True, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        self._performance.append(
            PerformanceEvent(
                operation=operation,
                duration_ms=duration_ms,
                timestamp=self._clock(),
                success=success,
                metadata=metadata or {},
            )
        )

    def track_cache_lookup(self, prefix: str, hit: bool) -> None:
        counts = self._cache_lookups.setdefault(prefix, Counter())
        counts["hits" if hit else "misses"] += 1

    def start_timer(self, operation: str) -> Callable[..., float]:
        """Start timing an operation; call the returned function to record it.

        Returns:
            Callable: stop(success=True, **metadata) -> elapsed milliseconds.
        """
        started = time.perf_counter()

        def stop(success: bool = True, **metadata: Any) -> float:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.track_performance(operation, elapsed_ms, success=success, metadata=metadata)
            return elapsed_ms

        return stop

    def get_query_stats(self) -> Dict[str, Any]:
        now = self._clock()
        events = list(self._queries)
        total = len(events)
        return {
            "totalQueries": total,
            "queriesLastHour": sum(1 for e in events if now - e.timestamp <= 3600),
            "queriesLast24Hours": sum(1 for e in events if now - e.timestamp <= 86400),
            "avgResponseTime": _avg([e.response_time_ms for e in events]),
            "cacheHitRate": _pct(sum(1 for e in events if e.cache_hit), total),
            "errorRate": _pct(sum(1 for e in events if e.error), total),
        }

    def get_component_stats(self) -> Dict[str, Any]:
        return {
            "totalComponents": sum(self._components.values()),
            "uniqueComponents": len(self._components),
            "topComponents": [{"component": c, "count": n} for c, n in self._components.most_common(10)],
            "breakdown": dict(self._components),
        }

    def get_performance_stats(self) -> Dict[str, Any]:
        by_operation: Dict[str, List[float]] = {}
        failures: Counter = Counter()
        for e in self._performance:
            by_operation.setdefault(e.operation, []).append(e.duration_ms)
            if not e.success:
                failures[e.operation] += 1
        operations = {
            op: {
                "count": len(durations),
                "avg": _avg(durations),
                "max": round(max(durations), 1),
                "min": round(min(durations), 1),
                "failures": failures[op],
            }
            for op, durations in by_operation.items()
        }
        return {
            "operations": operations,
            "avgDuration": _avg([e.duration_ms for e in self._performance]),
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            prefix: {
                "hits": c["hits"],
                "misses": c["misses"],
                "hitRate": _pct(c["hits"], c["hits"] + c["misses"]),
            }
            for prefix, c in sorted(self._cache_lookups.items())
        }

    def get_dashboard(self) -> Dict[str, Any]:
        return {
            "queries": self.get_query_stats(),
            "components": self.get_component_stats(),
            "performance": self.get_performance_stats(),
            "cacheLookups": self.get_cache_stats(),
        }

    def clear(self) -> None:
        self._queries.clear()
        self._performance.clear()
        self._components.clear()
        self._cache_lookups.clear()


analytics = Analytics(max_events=settings.ANALYTICS_MAX_EVENTS)
