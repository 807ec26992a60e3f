"""Tests for the built-in probes."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from vitals.health import ProbeError, Status
from vitals.health.probes import (
    application_probe,
    cache_probe,
    database_probe,
    file_system_probe,
    http_probe,
)
from vitals.metrics import SystemHealth


class MemoryCache:
    def __init__(self, corrupt: bool = False, broken: bool = False) -> None:
        self.data: dict[str, str] = {}
        self.corrupt = corrupt
        self.broken = broken

    async def set(self, key: str, value: str, ttl: int) -> None:
        if self.broken:
            raise ConnectionError("cache offline")
        self.data[key] = value

    async def get(self, key: str) -> str | None:
        return "garbage" if self.corrupt else self.data.get(key)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


# ── Database ─────────────────────────────────────────────────────────────────


class TestDatabaseProbe:
    def test_sqlite_ping(self, tmp_path: Path) -> None:
        probe = database_probe(tmp_path / "data" / "app.db")
        result = asyncio.run(probe())
        assert result.status == Status.HEALTHY
        assert result.details["result"] is True
        assert (tmp_path / "data" / "app.db").exists()

    def test_unopenable_database(self, tmp_path: Path) -> None:
        # a directory cannot be opened as a database file
        target = tmp_path / "dir.db"
        target.mkdir()
        with pytest.raises(ProbeError):
            asyncio.run(database_probe(target)())


# ── Cache ────────────────────────────────────────────────────────────────────


class TestCacheProbe:
    def test_round_trip(self) -> None:
        cache = MemoryCache()
        result = asyncio.run(cache_probe(cache)())
        assert result.status == Status.HEALTHY
        assert result.details["operations"] == ["set", "get", "delete"]
        assert cache.data == {}

    def test_value_mismatch(self) -> None:
        with pytest.raises(ProbeError, match="value mismatch"):
            asyncio.run(cache_probe(MemoryCache(corrupt=True))())

    def test_backend_error(self) -> None:
        with pytest.raises(ProbeError, match="cache offline"):
            asyncio.run(cache_probe(MemoryCache(broken=True))())


# ── External API ─────────────────────────────────────────────────────────────


class TestHttpProbe:
    def _probe(self, status_code: int, **kwargs):
        transport = httpx.MockTransport(lambda request: httpx.Response(status_code))
        return http_probe("maps", "https://maps.example.com/status", transport=transport, **kwargs)

    def test_2xx_passes(self) -> None:
        result = asyncio.run(self._probe(200)())
        assert result.status == Status.HEALTHY
        assert result.details["statusCode"] == 200
        assert result.message == "maps API accessible"

    def test_non_2xx_raises(self) -> None:
        with pytest.raises(ProbeError, match="HTTP 503"):
            asyncio.run(self._probe(503)())

    def test_expected_status(self) -> None:
        assert asyncio.run(self._probe(401, expected_status=401)()).status == Status.HEALTHY
        with pytest.raises(ProbeError):
            asyncio.run(self._probe(200, expected_status=401)())

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        probe = http_probe("maps", "https://maps.example.com", transport=httpx.MockTransport(handler))
        with pytest.raises(ProbeError, match="ConnectError"):
            asyncio.run(probe())


# ── File system ──────────────────────────────────────────────────────────────


class TestFileSystemProbe:
    def test_cycle_leaves_no_files(self, tmp_path: Path) -> None:
        directory = tmp_path / "check"
        result = asyncio.run(file_system_probe(directory)())
        assert result.status == Status.HEALTHY
        assert directory.is_dir()
        assert list(directory.iterdir()) == []

    def test_unwritable_target(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        # mkdir below a regular file fails
        with pytest.raises(ProbeError):
            asyncio.run(file_system_probe(blocker / "sub")())


# ── Application ──────────────────────────────────────────────────────────────


class TestApplicationProbe:
    def test_healthy(self) -> None:
        probe = application_probe(lambda: SystemHealth(healthy=True), details=lambda: {"pid": 1})
        result = asyncio.run(probe())
        assert result.status == Status.HEALTHY
        assert result.details["pid"] == 1

    def test_resource_issues_degrade(self) -> None:
        health = SystemHealth(healthy=False, issues=["High memory usage: 91.0%"])
        result = asyncio.run(application_probe(lambda: health)())
        assert result.status == Status.DEGRADED
        assert result.message == "Performance issues detected: High memory usage: 91.0%"

    def test_other_issues_are_unhealthy(self) -> None:
        health = SystemHealth(healthy=False, issues=["High database error rate: 12.0%"])
        result = asyncio.run(application_probe(lambda: health)())
        assert result.status == Status.UNHEALTHY
        assert result.message.startswith("Critical issues detected")
