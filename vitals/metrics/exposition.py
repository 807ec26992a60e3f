"""Prometheus text exposition (simplified, version 0.0.4)."""

from __future__ import annotations

from collections.abc import Mapping

from vitals.health.models import CheckResult, Status

from .collector import EndpointMetrics, MetricsCollector
from .resources import SystemMetrics

CONTENT_TYPE = "text/plain; version=0.0.4"

# (label, upper bound in ms)
DURATION_BUCKETS = (("0.1", 100), ("0.5", 500), ("1", 1000), ("5", 5000))

STATUS_GAUGE = {Status.HEALTHY: 1, Status.DEGRADED: 0.5, Status.UNHEALTHY: 0}


def _fmt(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _gauge(name: str, help_text: str, value: float, kind: str = "gauge") -> list[str]:
    return ["", f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", f"{name} {_fmt(value)}"]


def _histogram_lines(m: EndpointMetrics) -> list[str]:
    labels = f'method="{_escape(m.method)}",path="{_escape(m.path)}"'
    lines = [
        f'http_request_duration_seconds_bucket{{{labels},le="{le}"}} {m.durations.count_at_most(bound)}'
        for le, bound in DURATION_BUCKETS
    ]
    lines.append(f'http_request_duration_seconds_bucket{{{labels},le="+Inf"}} {len(m.durations)}')
    lines.append(f"http_request_duration_seconds_sum{{{labels}}} {_fmt(m.total_duration / 1000)}")
    lines.append(f"http_request_duration_seconds_count{{{labels}}} {m.count}")
    return lines


def render_prometheus(
    collector: MetricsCollector,
    system: SystemMetrics,
    checks: Mapping[str, CheckResult],
    version: str,
    environment: str,
    uptime: float,
) -> str:
    """Build the exposition body. Bucket counts cover the sliding window only."""
    snap = collector.snapshot()

    lines = [
        "# HELP app_info Application information",
        "# TYPE app_info gauge",
        f'app_info{{version="{_escape(version)}",environment="{_escape(environment)}"}} 1',
    ]
    lines += _gauge("app_uptime_seconds", "Application uptime in seconds", uptime)
    lines += _gauge(
        "http_requests_total", "Total number of HTTP requests", snap["totalRequests"], "counter",
    )

    lines += [
        "",
        "# HELP http_request_duration_seconds HTTP request duration in seconds",
        "# TYPE http_request_duration_seconds histogram",
    ]
    for m in snap["endpoints"].values():
        lines += _histogram_lines(m)

    db = snap["database"]
    lines += _gauge(
        "system_memory_usage_percentage", "System memory usage percentage", system.memory.percentage,
    )
    lines += _gauge(
        "system_cpu_usage_percentage", "System CPU usage percentage", system.cpu.percentage,
    )
    lines += _gauge(
        "database_connections_active", "Active database connections", db.active_connections,
    )
    lines += _gauge(
        "database_query_duration_seconds", "Database query duration in seconds",
        db.average_duration / 1000,
    )

    lines += [
        "",
        "# HELP health_status Dependency health (1 healthy, 0.5 degraded, 0 unhealthy)",
        "# TYPE health_status gauge",
    ]
    for name, check in checks.items():
        lines.append(
            f'health_status{{dependency="{_escape(name)}"}} {_fmt(STATUS_GAUGE[check.status])}'
        )

    return "\n".join(lines) + "\n"
