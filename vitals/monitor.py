"""Monitor facade: one object that owns the health and metrics engines.

Built once (``build_monitor``), started and stopped by the API lifespan or
the CLI, and stored on ``app.state.monitor``. Every read hands out copies, so
callers can keep or mutate what they get without touching live state.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import httpx

from vitals.config import Settings, settings as default_settings
from vitals.events import EventBus
from vitals.health import (
    CheckResult,
    DependencyDescriptor,
    DependencyRegistry,
    DependencyType,
    HealthScheduler,
    HealthSnapshot,
    ProbeRunner,
    Status,
    StatusAggregator,
)
from vitals.health.models import utcnow_iso
from vitals.health.probes import (
    CacheBackend,
    application_probe,
    cache_probe,
    database_probe,
    file_system_probe,
)
from vitals.metrics import MetricsCollector, ResourceSampler, SystemHealth
from vitals.metrics.exposition import render_prometheus

logger = logging.getLogger(__name__)

TOP_ENDPOINTS = 20
TOP_SLOW_ENDPOINTS = 10
RECENT_SLOW_QUERIES = 10
SLOW_ENDPOINT_MS = 1000
ERROR_PRONE_RATE = 0.05
DB_ERROR_RATE_LIMIT = 0.05

RESOURCE_BANDS = {
    "memory": {"warning": 80, "critical": 90},
    "cpu": {"warning": 70, "critical": 85},
    "eventLoop": {"warning": 50, "critical": 100},
}


class Monitor:
    """Health orchestration plus performance metrics behind one API."""

    def __init__(
        self,
        registry: DependencyRegistry,
        runner: ProbeRunner,
        aggregator: StatusAggregator,
        scheduler: HealthScheduler,
        collector: MetricsCollector,
        sampler: ResourceSampler,
        events: EventBus,
        config: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.aggregator = aggregator
        self.scheduler = scheduler
        self.collector = collector
        self.sampler = sampler
        self.events = events
        self.config = config or default_settings
        self._started = False

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self.sampler.start()
        await self.scheduler.start()
        logger.info(
            "Monitor started: %d dependencies, env=%s, version=%s",
            len(self.registry), self.config.app_env, self.config.app_version,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.scheduler.stop()
        await self.sampler.stop()
        logger.info("Monitor stopped")

    # ── Health ──────────────────────────────────────────────────────────────

    def get_health_status(self) -> HealthSnapshot:
        """Deep copy of the current aggregate."""
        return HealthSnapshot(
            status=self.aggregator.status,
            timestamp=self.aggregator.timestamp,
            uptime=self.aggregator.uptime,
            version=self.config.app_version,
            environment=self.config.app_env,
            checks=copy.deepcopy(self.registry.results),
            summary=copy.deepcopy(self.aggregator.summary),
        )

    def is_healthy(self) -> bool:
        return self.aggregator.status != Status.UNHEALTHY

    async def perform_manual_check(self) -> HealthSnapshot:
        await self.scheduler.run_sweep("manual")
        return self.get_health_status()

    async def check_dependency(self, name: str) -> CheckResult | None:
        """Probe one dependency now; None if the name is unknown."""
        result = await self.scheduler.check_one(name)
        return copy.deepcopy(result) if result is not None else None

    def get_check(self, name: str) -> CheckResult | None:
        result = self.registry.results.get(name)
        return copy.deepcopy(result) if result is not None else None

    def readiness(self) -> dict[str, Any]:
        """Ready unless an enabled critical dependency is unhealthy."""
        checks = {}
        for dep in self.registry.critical():
            result = self.registry.results.get(dep.name)
            if result is None:
                continue
            checks[dep.name] = {
                "status": result.status.value,
                "responseTime": result.response_time,
                "message": result.message,
            }
        ready = all(c["status"] != Status.UNHEALTHY.value for c in checks.values())
        return {
            "ready": ready,
            "status": "ready" if ready else "not_ready",
            "timestamp": utcnow_iso(),
            "criticalChecks": checks,
        }

    def liveness(self) -> dict[str, Any]:
        return {
            "alive": True,
            "status": "alive",
            "timestamp": utcnow_iso(),
            "processId": os.getpid(),
            "uptime": round(self.aggregator.uptime),
            "memoryUsage": self.sampler.latest.memory.rss,
        }

    def health_history(self) -> dict[str, Any]:
        history = list(copy.deepcopy(self.aggregator.history))
        return {
            "history": history,
            "summary": {
                "totalChecks": len(history),
                "healthyCount": sum(1 for h in history if h["status"] == Status.HEALTHY.value),
                "degradedCount": sum(1 for h in history if h["status"] == Status.DEGRADED.value),
                "unhealthyCount": sum(1 for h in history if h["status"] == Status.UNHEALTHY.value),
            },
        }

    def critical_issues(self) -> list[str]:
        issues = []
        for dep in self.registry.critical():
            result = self.registry.results.get(dep.name)
            if result is not None and result.status == Status.UNHEALTHY:
                issues.append(f"{dep.name}: {result.message}")
        return issues

    def flapping(self) -> list[str]:
        """Dependencies failing at least ``max_consecutive_failures`` times in a row."""
        limit = self.config.max_consecutive_failures
        return [
            name for name, r in self.registry.results.items()
            if r.metadata.consecutive_failures >= limit
        ]

    def detailed_health(self) -> dict[str, Any]:
        snapshot = self.get_health_status()
        system = self.get_system_health()
        latest = self.sampler.latest
        db = self.collector.database
        cache = self.collector.cache
        return {
            **snapshot.to_dict(),
            "criticalIssues": self.critical_issues(),
            "flapping": self.flapping(),
            "system": {
                "healthy": system.healthy,
                "issues": system.issues,
                "memory": latest.to_dict()["memory"],
                "cpu": latest.to_dict()["cpu"],
                "gc": latest.to_dict()["gc"],
                "eventLoopDelay": self._event_loop_delay(),
            },
            "performance": {
                "totalRequests": self.collector.total_requests,
                "activeConnections": self.collector.active_connections,
                "database": {
                    "queryCount": db.query_count,
                    "averageDuration": db.average_duration,
                    "slowQueryCount": db.slow_query_count,
                    "errorRate": db.error_rate,
                },
                "cache": {
                    "hitRate": cache.hit_rate,
                    "totalOperations": cache.total_operations,
                    "averageDuration": cache.average_duration,
                },
            },
        }

    # ── Metrics ─────────────────────────────────────────────────────────────

    def _event_loop_delay(self) -> float:
        monitor = self.sampler.loop_monitor
        return monitor.delay if monitor else self.sampler.latest.event_loop_delay

    def get_system_health(self) -> SystemHealth:
        latest = self.sampler.latest
        issues = []
        if latest.memory.percentage > self.sampler.high_memory_threshold:
            issues.append(f"High memory usage: {latest.memory.percentage:.1f}%")
        if latest.cpu.percentage > self.sampler.high_cpu_threshold:
            issues.append(f"High CPU usage: {latest.cpu.percentage:.1f}%")

        delay = self._event_loop_delay()
        if delay > self.config.event_loop_delay_threshold_ms:
            issues.append(f"High event loop delay: {delay:.1f}ms")

        db_error_rate = self.collector.database.error_rate
        if db_error_rate > DB_ERROR_RATE_LIMIT:
            issues.append(f"High database error rate: {db_error_rate * 100:.1f}%")

        return SystemHealth(healthy=not issues, issues=issues)

    def get_metrics(self) -> dict[str, Any]:
        snap = self.collector.snapshot()
        endpoints = [m.to_dict() for m in snap["endpoints"].values()]
        by_volume = sorted(endpoints, key=lambda e: e["count"], reverse=True)
        by_latency = sorted(endpoints, key=lambda e: e["averageDuration"], reverse=True)
        system = self.get_system_health()
        health = self.get_health_status()

        return {
            "timestamp": utcnow_iso(),
            "http": {
                "totalRequests": snap["totalRequests"],
                "activeConnections": snap["activeConnections"],
                "endpoints": by_volume[:TOP_ENDPOINTS],
                "topSlowEndpoints": by_latency[:TOP_SLOW_ENDPOINTS],
            },
            "database": snap["database"].to_dict(recent=RECENT_SLOW_QUERIES),
            "cache": snap["cache"].to_dict(),
            "external": {name: svc.to_dict() for name, svc in snap["externalApis"].items()},
            "system": {
                **self.sampler.latest.to_dict(),
                "eventLoopDelay": self._event_loop_delay(),
                "healthy": system.healthy,
                "issues": system.issues,
            },
            "health": {
                "overall": health.status.value,
                "summary": health.summary.to_dict(),
                "dependencies": {n: c.to_dict() for n, c in health.checks.items()},
            },
        }

    def performance_report(self) -> dict[str, Any]:
        endpoints = [m.to_dict() for m in self.collector.endpoint_metrics()]
        uptime = self.aggregator.uptime
        db = self.collector.database
        cache = self.collector.cache
        n = len(endpoints)

        slow = sorted(
            (e for e in endpoints if e["averageDuration"] > SLOW_ENDPOINT_MS),
            key=lambda e: e["averageDuration"], reverse=True,
        )
        error_prone = sorted(
            (e for e in endpoints if e["errorRate"] > ERROR_PRONE_RATE),
            key=lambda e: e["errorRate"], reverse=True,
        )

        return {
            "timestamp": utcnow_iso(),
            "overview": {
                "totalRequests": self.collector.total_requests,
                "averageResponseTime": sum(e["averageDuration"] for e in endpoints) / n if n else 0.0,
                "requestsPerSecond": self.collector.total_requests / uptime if uptime > 0 else 0.0,
                "overallErrorRate": sum(e["errorRate"] for e in endpoints) / n if n else 0.0,
            },
            "endpoints": {
                "total": n,
                "topByVolume": endpoints[:TOP_SLOW_ENDPOINTS],
                "slowest": slow[:TOP_SLOW_ENDPOINTS],
                "errorProne": error_prone[:TOP_SLOW_ENDPOINTS],
            },
            "database": {
                "queryCount": db.query_count,
                "averageDuration": db.average_duration,
                "slowQueryCount": db.slow_query_count,
                "slowQueryRate": db.slow_query_count / db.query_count if db.query_count else 0.0,
                "connections": {
                    "active": db.active_connections,
                    "total": db.connection_count,
                    "utilization": db.pool_utilization,
                },
            },
            "cache": cache.to_dict(),
            "system": {
                "memory": self.sampler.latest.to_dict()["memory"],
                "cpu": self.sampler.latest.to_dict()["cpu"],
                "eventLoopDelay": self._event_loop_delay(),
            },
        }

    def resource_report(self) -> dict[str, Any]:
        latest = self.sampler.latest.to_dict()
        system = self.get_system_health()
        delay = self._event_loop_delay()
        gc_stats = latest["gc"]
        db = self.collector.database
        current = {
            "memory": latest["memory"]["percentage"],
            "cpu": latest["cpu"]["percentage"],
            "eventLoop": delay,
        }
        return {
            "timestamp": utcnow_iso(),
            "overall": {"healthy": system.healthy, "issues": system.issues},
            "memory": latest["memory"],
            "cpu": latest["cpu"],
            "eventLoop": {
                "delay": delay,
                "status": "degraded" if delay > self.config.event_loop_delay_threshold_ms else "healthy",
            },
            "gc": {
                **gc_stats,
                "averageDuration": (
                    gc_stats["duration"] / gc_stats["collections"] if gc_stats["collections"] else 0.0
                ),
            },
            "connections": {
                "active": self.collector.active_connections,
                "database": {
                    "active": db.active_connections,
                    "total": db.connection_count,
                    "utilization": db.pool_utilization,
                },
            },
            "thresholds": {
                name: {**bands, "current": current[name]} for name, bands in RESOURCE_BANDS.items()
            },
        }

    def prometheus_text(self) -> str:
        return render_prometheus(
            self.collector,
            self.sampler.latest,
            self.registry.results,
            version=self.config.app_version,
            environment=self.config.app_env,
            uptime=self.aggregator.uptime,
        )


# ── Wiring ───────────────────────────────────────────────────────────────────


def register_core_dependencies(
    registry: DependencyRegistry,
    monitor: Monitor,
    config: Settings,
    cache: CacheBackend | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Database, optional cache, YAML-declared external APIs, file system, self."""
    registry.register(DependencyDescriptor(
        name="database",
        type=DependencyType.DATABASE,
        probe=database_probe(Path(config.database_path)),
        timeout_ms=config.db_health_check_timeout_ms,
        retries=2,
        interval_seconds=config.health_check_interval,
        critical=True,
    ))

    if cache is not None:
        registry.register(DependencyDescriptor(
            name="cache",
            type=DependencyType.CACHE,
            probe=cache_probe(cache),
            timeout_ms=config.health_check_timeout_ms,
            retries=1,
            interval_seconds=config.health_check_interval,
            critical=False,
        ))

    if config.enable_external_health_checks:
        registry.load_external(
            Path(config.dependencies_file),
            default_timeout_ms=config.external_api_timeout_ms,
            transport=transport,
        )

    registry.register(DependencyDescriptor(
        name="file_system",
        type=DependencyType.FILE_SYSTEM,
        probe=file_system_probe(Path(config.file_system_check_dir)),
        timeout_ms=config.health_check_timeout_ms,
        retries=1,
        interval_seconds=config.health_check_interval,
        critical=True,
    ))

    registry.register(DependencyDescriptor(
        name="application",
        type=DependencyType.SERVICE,
        probe=application_probe(
            monitor.get_system_health,
            details=lambda: {
                "uptime": monitor.aggregator.uptime,
                "pid": os.getpid(),
                "environment": config.app_env,
                "version": config.app_version,
            },
        ),
        timeout_ms=config.health_check_timeout_ms,
        retries=1,
        interval_seconds=config.critical_check_interval,
        critical=True,
    ))


def build_monitor(
    config: Settings | None = None,
    cache: CacheBackend | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    events: EventBus | None = None,
) -> Monitor:
    """Assemble a Monitor with the built-in dependencies registered."""
    config = config or default_settings
    events = events or EventBus()

    registry = DependencyRegistry()
    runner = ProbeRunner(
        registry,
        degraded_threshold_ms=config.degraded_threshold_ms,
        unhealthy_threshold_ms=config.unhealthy_threshold_ms,
        retry_backoff_ms=config.retry_backoff_ms,
    )
    aggregator = StatusAggregator(history_size=config.health_history_size)
    scheduler = HealthScheduler(
        registry, runner, aggregator, events,
        regular_interval=config.health_check_interval,
        critical_interval=config.critical_check_interval,
        periodic=config.enable_periodic_health_checks,
    )
    collector = MetricsCollector(
        events,
        window_capacity=config.endpoint_metrics_retention,
        slow_query_retention=config.slow_query_retention,
        slow_request_threshold_ms=config.slow_request_threshold_ms,
        slow_query_threshold_ms=config.slow_query_threshold_ms,
    )
    sampler = ResourceSampler(
        events,
        interval=config.system_metrics_interval,
        high_memory_threshold=config.high_memory_threshold,
        high_cpu_threshold=config.high_cpu_threshold,
        gc_monitoring=config.enable_gc_monitoring,
        event_loop_monitoring=config.enable_event_loop_monitoring,
    )

    monitor = Monitor(
        registry, runner, aggregator, scheduler, collector, sampler, events, config=config,
    )
    register_core_dependencies(registry, monitor, config, cache=cache, transport=transport)
    return monitor
