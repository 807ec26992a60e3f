"""Built-in probes: database, cache, external API, file system, self.

Each factory returns an async callable that either returns a healthy
CheckResult or raises; retries, timeouts and latency verdicts are applied by
the ProbeRunner, not here.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import httpx

from .models import CheckResult, Probe, Status
from .probe import ProbeError


class CacheBackend(Protocol):
    async def set(self, key: str, value: str, ttl: int) -> Any: ...

    async def get(self, key: str) -> Any: ...

    async def delete(self, key: str) -> Any: ...


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


# ── Database ─────────────────────────────────────────────────────────────────


def _sqlite_ping(db_path: str) -> bool:
    conn = sqlite3.connect(db_path, timeout=5)
    try:
        row = conn.execute("SELECT 1 AS health_check").fetchone()
        return row is not None and row[0] == 1
    finally:
        conn.close()


def database_probe(db_path: Path, name: str = "database") -> Probe:
    """SQLite reachability ping (``SELECT 1``) run off the event loop."""

    async def probe() -> CheckResult:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        t0 = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            ok = await loop.run_in_executor(None, _sqlite_ping, str(db_path))
        except sqlite3.Error as e:
            raise ProbeError(f"Database health check failed: {e}") from e
        latency = _elapsed_ms(t0)
        return CheckResult(
            name=name,
            status=Status.HEALTHY,
            response_time=latency,
            message="Database connection successful",
            details={"result": ok, "latency": latency},
        )

    return probe


# ── Cache ────────────────────────────────────────────────────────────────────


def cache_probe(cache: CacheBackend, name: str = "cache") -> Probe:
    """set / get / delete round trip against a cache backend."""

    async def probe() -> CheckResult:
        key = f"health_check_{time.time_ns()}"
        value = "health_check_value"
        t0 = time.perf_counter()
        try:
            await cache.set(key, value, 60)
            retrieved = await cache.get(key)
            await cache.delete(key)
        except Exception as e:
            raise ProbeError(f"Cache health check failed: {e}") from e
        latency = _elapsed_ms(t0)

        if retrieved != value:
            raise ProbeError("Cache health check failed: value mismatch")

        return CheckResult(
            name=name,
            status=Status.HEALTHY,
            response_time=latency,
            message="Cache operations successful",
            details={"operations": ["set", "get", "delete"], "latency": latency},
        )

    return probe


# ── External API ─────────────────────────────────────────────────────────────


def http_probe(
    name: str,
    url: str,
    method: str = "GET",
    expected_status: int | None = None,
    headers: dict[str, str] | None = None,
    timeout_ms: int = 10_000,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Probe:
    """External API reachability: any 2xx (or ``expected_status``) passes."""

    async def probe() -> CheckResult:
        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000, follow_redirects=True, transport=transport,
            ) as client:
                resp = await client.request(method, url, headers=headers or {})
        except httpx.HTTPError as e:
            raise ProbeError(f"{name} health check failed: {type(e).__name__}: {e}") from e
        latency = _elapsed_ms(t0)

        ok = resp.status_code == expected_status if expected_status else resp.is_success
        if not ok:
            raise ProbeError(
                f"{name} health check failed: HTTP {resp.status_code} {resp.reason_phrase}"
            )

        return CheckResult(
            name=name,
            status=Status.HEALTHY,
            response_time=latency,
            message=f"{name} API accessible",
            details={"statusCode": resp.status_code, "latency": latency},
        )

    return probe


# ── File system ──────────────────────────────────────────────────────────────

_FS_PAYLOAD = "health check test"


def _fs_cycle(directory: Path) -> str:
    directory.mkdir(parents=True, exist_ok=True)
    test_file = directory / f"health_check_{time.time_ns()}.tmp"
    try:
        test_file.write_text(_FS_PAYLOAD, encoding="utf-8")
        return test_file.read_text(encoding="utf-8")
    finally:
        test_file.unlink(missing_ok=True)


def file_system_probe(directory: Path, name: str = "file_system") -> Probe:
    """mkdir / write / read / unlink cycle in ``directory``."""

    async def probe() -> CheckResult:
        t0 = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            content = await loop.run_in_executor(None, _fs_cycle, directory)
        except OSError as e:
            raise ProbeError(f"File system health check failed: {e}") from e
        latency = _elapsed_ms(t0)

        if content != _FS_PAYLOAD:
            raise ProbeError("File system health check failed: content mismatch")

        return CheckResult(
            name=name,
            status=Status.HEALTHY,
            response_time=latency,
            message="File system operations successful",
            details={"operations": ["mkdir", "write", "read", "unlink"], "latency": latency},
        )

    return probe


# ── Application (self) ───────────────────────────────────────────────────────

RESOURCE_ISSUE_PREFIXES = ("High memory", "High CPU")


def application_probe(
    system_health: Callable[[], Any],
    details: Callable[[], dict[str, Any]] | None = None,
    name: str = "application",
) -> Probe:
    """Judge the process's own health from its current metrics.

    ``system_health`` returns an object with ``healthy`` and ``issues``.
    Resource pressure (memory / CPU) degrades; any other issue is unhealthy.
    """

    async def probe() -> CheckResult:
        t0 = time.perf_counter()
        health = system_health()
        extra = details() if details else {}
        latency = _elapsed_ms(t0)

        status = Status.HEALTHY
        message = "Application running normally"
        if not health.healthy:
            if any(i.startswith(RESOURCE_ISSUE_PREFIXES) for i in health.issues):
                status = Status.DEGRADED
                message = f"Performance issues detected: {', '.join(health.issues)}"
            else:
                status = Status.UNHEALTHY
                message = f"Critical issues detected: {', '.join(health.issues)}"

        return CheckResult(
            name=name,
            status=status,
            response_time=latency,
            message=message,
            details={**extra, "systemHealthy": health.healthy, "issues": list(health.issues)},
        )

    return probe
