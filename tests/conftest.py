"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from vitals.config import Settings
from vitals.health import (
    CheckResult,
    DependencyDescriptor,
    DependencyRegistry,
    DependencyType,
    ProbeError,
    Status,
)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested from the fake sleep, in seconds."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable[[float], Any]:
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def registry() -> DependencyRegistry:
    return DependencyRegistry()


@pytest.fixture
def make_probe():
    """Build a probe returning ``status``; ``calls`` counts invocations."""

    def _make(name: str, status: Status = Status.HEALTHY, message: str = "ok",
              fail: str | None = None, calls: list[int] | None = None,
              on_call: Callable[[], None] | None = None):
        async def probe() -> CheckResult:
            if calls is not None:
                calls.append(1)
            if on_call is not None:
                on_call()
            if fail is not None:
                raise ProbeError(fail)
            return CheckResult(name=name, status=status, message=message)

        return probe

    return _make


@pytest.fixture
def make_dep(make_probe):
    """Build a DependencyDescriptor around a probe (default: healthy static probe)."""

    def _make(name: str, critical: bool = False, retries: int = 0, timeout_ms: int = 10_000,
              enabled: bool = True, probe=None, **probe_kwargs) -> DependencyDescriptor:
        return DependencyDescriptor(
            name=name,
            type=DependencyType.SERVICE,
            probe=probe or make_probe(name, **probe_kwargs),
            enabled=enabled,
            timeout_ms=timeout_ms,
            retries=retries,
            critical=critical,
        )

    return _make


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing every built-in dependency into ``tmp_path``."""
    return Settings(
        database_path=str(tmp_path / "data" / "vitals.db"),
        file_system_check_dir=str(tmp_path / "fs-check"),
        dependencies_file=str(tmp_path / "dependencies.yaml"),
        enable_periodic_health_checks=False,
        enable_gc_monitoring=False,
        enable_event_loop_monitoring=False,
        retry_backoff_ms=0,
    )
