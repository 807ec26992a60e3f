"""Health check scheduler: regular and critical sweeps on independent timers.

A sweep launches every applicable probe concurrently and waits for all of
them to settle; one failing probe never aborts the others. After each sweep
the aggregate is recomputed and a ``health_check`` event is emitted, plus a
``status_change`` event when the overall verdict moved.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Literal

from vitals.config import settings
from vitals.events import EventBus, MonitorEvent
from vitals.timers import RepeatingTask

from .aggregator import StatusAggregator
from .models import CheckResult, DependencyDescriptor
from .probe import ProbeRunner
from .registry import DependencyRegistry

logger = logging.getLogger(__name__)

SweepKind = Literal["initial", "regular", "critical", "manual"]


class HealthScheduler:
    """Drives the sweeps and keeps the aggregate up to date.

    Lifecycle:
        scheduler = HealthScheduler(registry, runner, aggregator, events)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        registry: DependencyRegistry,
        runner: ProbeRunner,
        aggregator: StatusAggregator,
        events: EventBus,
        regular_interval: float | None = None,
        critical_interval: float | None = None,
        periodic: bool | None = None,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.aggregator = aggregator
        self.events = events
        self.regular_interval = regular_interval or settings.health_check_interval
        self.critical_interval = critical_interval or settings.critical_check_interval
        self.periodic = settings.enable_periodic_health_checks if periodic is None else periodic
        self.sweeps = 0
        self._first_sweep = True
        self._timers: list[RepeatingTask] = []

    async def start(self) -> None:
        """Start both sweep timers; the regular one fires immediately."""
        if self._timers:
            return
        if not self.periodic:
            logger.info("Periodic health checks disabled")
            return

        self._timers = [
            RepeatingTask(
                "health-regular", self.regular_interval,
                lambda: self.run_sweep("initial" if self._first_sweep else "regular"),
                run_immediately=True,
            ),
            RepeatingTask(
                "health-critical", self.critical_interval,
                lambda: self.run_sweep("critical"),
            ),
        ]
        for timer in self._timers:
            await timer.start()

        logger.info(
            "Health scheduler started: %d dependencies (regular=%ss, critical=%ss)",
            len(self.registry), self.regular_interval, self.critical_interval,
        )

    async def stop(self) -> None:
        for timer in self._timers:
            await timer.stop()
        self._timers.clear()
        logger.info("Health scheduler stopped")

    @property
    def running(self) -> bool:
        return any(t.running for t in self._timers)

    def _select(self, kind: SweepKind) -> list[DependencyDescriptor]:
        if kind == "critical":
            return self.registry.critical()
        return self.registry.enabled()

    async def run_sweep(self, kind: SweepKind = "manual") -> None:
        """Probe the dependencies that belong to ``kind`` and re-aggregate."""
        if kind == "initial":
            self._first_sweep = False
        t0 = time.perf_counter()
        try:
            deps = self._select(kind)
            logger.debug("Performing %s health checks: %s", kind, [d.name for d in deps])

            outcomes = await asyncio.gather(
                *(self.runner.run(d) for d in deps), return_exceptions=True,
            )
            for dep, outcome in zip(deps, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Probe runner error for %s: %r", dep.name, outcome)

            self._finish(kind, (time.perf_counter() - t0) * 1000)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during %s health checks", kind)

    async def check_one(self, name: str) -> CheckResult | None:
        """Probe a single dependency on demand; None if it is not registered."""
        dep = self.registry.get(name)
        if dep is None:
            return None
        result = await self.runner.run(dep)
        self._finish("manual", 0.0)
        return result

    def _finish(self, kind: SweepKind, duration_ms: float) -> None:
        change = self.aggregator.recompute(self.registry.results, self.registry.critical())
        self.sweeps += 1

        logger.debug(
            "Health checks completed: %s in %.0fms: %s %s",
            kind, duration_ms, self.aggregator.status.value, self.aggregator.summary.to_dict(),
        )

        self.events.emit(MonitorEvent.HEALTH_CHECK, {
            "kind": kind,
            "status": self.aggregator.status.value,
            "timestamp": self.aggregator.timestamp,
            "summary": self.aggregator.summary.to_dict(),
            "checks": {n: c.to_dict() for n, c in self.registry.results.items()},
        })
        if change is not None:
            self.events.emit(MonitorEvent.STATUS_CHANGE, change.to_dict())
