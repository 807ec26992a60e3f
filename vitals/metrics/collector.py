"""Performance metrics collector: HTTP, database, cache and external API calls.

Request-handling code calls the ``record_*`` methods synchronously on every
request / query / cache operation. All bookkeeping for one call happens
without yielding to the event loop, so readers never see a half-updated
entry. Recording never raises into the caller: failures are logged and the
sample is dropped.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vitals.config import settings
from vitals.events import EventBus, MonitorEvent
from vitals.health.models import utcnow_iso

from .percentiles import SlidingWindow, percentiles

logger = logging.getLogger(__name__)

SLOW_QUERY_TEXT_LIMIT = 200


class CacheOperation(str, Enum):
    HIT = "HIT"
    MISS = "MISS"
    SET = "SET"
    DELETE = "DELETE"


# ── Metric records ───────────────────────────────────────────────────────────


@dataclass
class EndpointMetrics:
    path: str
    method: str
    durations: SlidingWindow
    count: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    min_duration: float = 0.0
    max_duration: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    error_count: int = 0
    error_rate: float = 0.0
    last_access_time: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": f"{self.method} {self.path}",
            "path": self.path,
            "method": self.method,
            "count": self.count,
            "totalDuration": self.total_duration,
            "averageDuration": self.average_duration,
            "minDuration": self.min_duration,
            "maxDuration": self.max_duration,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
            "errorCount": self.error_count,
            "errorRate": self.error_rate,
            "lastAccessTime": self.last_access_time,
        }


@dataclass
class SlowQuery:
    query: str
    duration: float
    timestamp: str


@dataclass
class DatabaseMetrics:
    query_count: int = 0
    slow_query_count: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    error_count: int = 0
    connection_count: int = 0
    active_connections: int = 0
    pool_utilization: float = 0.0
    slow_queries: deque[SlowQuery] = field(default_factory=deque)

    @property
    def error_rate(self) -> float:
        return self.error_count / self.query_count if self.query_count else 0.0

    def to_dict(self, recent: int | None = None) -> dict[str, Any]:
        slow = list(self.slow_queries)
        if recent is not None:
            slow = slow[-recent:][::-1]
        return {
            "queryCount": self.query_count,
            "slowQueryCount": self.slow_query_count,
            "totalDuration": self.total_duration,
            "averageDuration": self.average_duration,
            "errorCount": self.error_count,
            "errorRate": self.error_rate,
            "connectionCount": self.connection_count,
            "activeConnections": self.active_connections,
            "poolUtilization": self.pool_utilization,
            "slowQueries": [
                {"query": q.query, "duration": q.duration, "timestamp": q.timestamp} for q in slow
            ],
        }


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    hit_rate: float = 0.0
    total_duration: float = 0.0
    average_duration: float = 0.0
    error_count: int = 0

    @property
    def total_operations(self) -> int:
        return self.hits + self.misses + self.sets + self.deletes

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "hitRate": self.hit_rate,
            "totalOperations": self.total_operations,
            "totalDuration": self.total_duration,
            "averageDuration": self.average_duration,
            "errorCount": self.error_count,
        }


@dataclass
class ExternalEndpointMetrics:
    count: int = 0
    duration: float = 0.0
    errors: int = 0


@dataclass
class ExternalApiMetrics:
    """Counters for one external service."""

    call_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    success_rate: float = 0.0
    last_call: str = ""
    endpoints: dict[str, ExternalEndpointMetrics] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "callCount": self.call_count,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "totalDuration": self.total_duration,
            "averageDuration": self.average_duration,
            "successRate": self.success_rate,
            "lastCall": self.last_call,
            "endpoints": {
                name: {"count": e.count, "duration": e.duration, "errors": e.errors}
                for name, e in self.endpoints.items()
            },
        }


# ── Collector ────────────────────────────────────────────────────────────────


class MetricsCollector:
    """Owns every request-path metric and the per-endpoint sliding windows."""

    def __init__(
        self,
        events: EventBus | None = None,
        window_capacity: int | None = None,
        slow_query_retention: int | None = None,
        slow_request_threshold_ms: float | None = None,
        slow_query_threshold_ms: float | None = None,
    ) -> None:
        self.events = events or EventBus()
        self.window_capacity = window_capacity or settings.endpoint_metrics_retention
        self.slow_request_threshold_ms = (
            settings.slow_request_threshold_ms
            if slow_request_threshold_ms is None else slow_request_threshold_ms
        )
        self.slow_query_threshold_ms = (
            settings.slow_query_threshold_ms
            if slow_query_threshold_ms is None else slow_query_threshold_ms
        )
        self.total_requests = 0
        self.active_connections = 0
        self.endpoints: dict[str, EndpointMetrics] = {}
        self.database = DatabaseMetrics(
            slow_queries=deque(maxlen=slow_query_retention or settings.slow_query_retention),
        )
        self.cache = CacheMetrics()
        self.external_apis: dict[str, ExternalApiMetrics] = {}

    # -- HTTP --------------------------------------------------------------------

    def record_http_request(
        self, method: str, path: str, duration: float, status_code: int,
    ) -> None:
        try:
            self._record_http(method, path, duration, status_code)
        except Exception:
            logger.exception("Failed to record HTTP metrics for %s %s", method, path)

    def _record_http(self, method: str, path: str, duration: float, status_code: int) -> None:
        # Coerce inputs before touching any counter so a bad sample leaves no trace
        duration = float(duration)
        status_code = int(status_code)
        key = f"{method} {path}"
        self.total_requests += 1

        m = self.endpoints.get(key)
        if m is None:
            m = EndpointMetrics(
                path=path, method=method,
                durations=SlidingWindow(self.window_capacity),
                min_duration=duration, max_duration=duration,
            )
            self.endpoints[key] = m

        m.count += 1
        m.total_duration += duration
        m.average_duration = m.total_duration / m.count
        m.min_duration = min(m.min_duration, duration)
        m.max_duration = max(m.max_duration, duration)
        m.last_access_time = utcnow_iso()

        if status_code >= 400:
            m.error_count += 1
        m.error_rate = m.error_count / m.count

        m.durations.append(duration)
        ranks = percentiles(m.durations.values(), (50, 95, 99))
        m.p50, m.p95, m.p99 = ranks[50], ranks[95], ranks[99]

        if duration > self.slow_request_threshold_ms:
            logger.warning(
                "Slow request detected: %s %s took %.0fms (status=%d, threshold=%sms)",
                method, path, duration, status_code, self.slow_request_threshold_ms,
            )
            self.events.emit(MonitorEvent.SLOW_REQUEST, {
                "method": method, "path": path, "duration": duration,
                "statusCode": status_code, "threshold": self.slow_request_threshold_ms,
            })

    # -- Database -----------------------------------------------------------------

    def record_database_query(self, query: str, duration: float, success: bool = True) -> None:
        try:
            duration = float(duration)
            db = self.database
            db.query_count += 1
            db.total_duration += duration
            db.average_duration = db.total_duration / db.query_count
            if not success:
                db.error_count += 1

            if duration > self.slow_query_threshold_ms:
                db.slow_query_count += 1
                text = query
                if len(text) > SLOW_QUERY_TEXT_LIMIT:
                    text = text[: SLOW_QUERY_TEXT_LIMIT - 3] + "..."
                db.slow_queries.append(SlowQuery(query=text, duration=duration, timestamp=utcnow_iso()))

                logger.warning(
                    "Slow database query detected (%.0fms, threshold=%sms): %s",
                    duration, self.slow_query_threshold_ms, query[:100],
                )
                self.events.emit(MonitorEvent.SLOW_QUERY, {
                    "query": text, "duration": duration,
                    "threshold": self.slow_query_threshold_ms,
                })
        except Exception:
            logger.exception("Failed to record database metrics")

    def update_connection_count(self, active: int, total: int) -> None:
        self.active_connections = active
        self.database.active_connections = active
        self.database.connection_count = total
        self.database.pool_utilization = active / total if total > 0 else 0.0

    # -- Cache ---------------------------------------------------------------------

    def record_cache_operation(
        self, operation: CacheOperation | str, duration: float, success: bool = True,
    ) -> None:
        try:
            op = CacheOperation(operation)
            duration = float(duration)
            cache = self.cache
            if op is CacheOperation.HIT:
                cache.hits += 1
            elif op is CacheOperation.MISS:
                cache.misses += 1
            elif op is CacheOperation.SET:
                cache.sets += 1
            else:
                cache.deletes += 1

            cache.total_duration += duration
            total_ops = cache.total_operations
            cache.average_duration = cache.total_duration / total_ops if total_ops else 0.0
            lookups = cache.hits + cache.misses
            cache.hit_rate = cache.hits / lookups if lookups else 0.0
            if not success:
                cache.error_count += 1
        except Exception:
            logger.exception("Failed to record cache metrics (%s)", operation)

    # -- External APIs ---------------------------------------------------------------

    def record_external_api_call(
        self, service: str, endpoint: str, duration: float, success: bool = True,
    ) -> None:
        try:
            duration = float(duration)
            svc = self.external_apis.setdefault(service, ExternalApiMetrics())
            svc.call_count += 1
            svc.total_duration += duration
            svc.average_duration = svc.total_duration / svc.call_count
            svc.last_call = utcnow_iso()
            if success:
                svc.success_count += 1
            else:
                svc.error_count += 1
            svc.success_rate = svc.success_count / svc.call_count

            ep = svc.endpoints.setdefault(endpoint, ExternalEndpointMetrics())
            ep.count += 1
            ep.duration += duration
            if not success:
                ep.errors += 1
        except Exception:
            logger.exception("Failed to record external API metrics for %s", service)

    # -- Readers ----------------------------------------------------------------------

    def endpoint_metrics(
        self, method: str | None = None, path: str | None = None,
    ) -> list[EndpointMetrics]:
        """Copies of matching endpoints, busiest first. ``path`` is a substring."""
        matches = [
            m for m in self.endpoints.values()
            if (not method or m.method == method) and (not path or path in m.path)
        ]
        return sorted((copy.deepcopy(m) for m in matches), key=lambda m: m.count, reverse=True)

    def snapshot(self) -> dict[str, Any]:
        """Deep copies of every section; safe to hand to external readers."""
        return {
            "totalRequests": self.total_requests,
            "activeConnections": self.active_connections,
            "endpoints": {k: copy.deepcopy(m) for k, m in self.endpoints.items()},
            "database": copy.deepcopy(self.database),
            "cache": copy.deepcopy(self.cache),
            "externalApis": {k: copy.deepcopy(v) for k, v in self.external_apis.items()},
        }
