"""Process resource sampling: memory, CPU, garbage collector, event-loop lag.

psutil supplies memory and CPU readings. The GC and event-loop monitors are
optional; whether they run is decided once, when the sampler is built.
"""

from __future__ import annotations

import asyncio
import gc
import logging
import os
import platform
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

import psutil

from vitals.config import settings
from vitals.events import EventBus, MonitorEvent
from vitals.health.models import utcnow_iso
from vitals.timers import RepeatingTask

logger = logging.getLogger(__name__)


# ── Readings ─────────────────────────────────────────────────────────────────


@dataclass
class MemoryUsage:
    rss: int = 0
    vms: int = 0
    shared: int = 0
    data: int = 0
    system_total: int = 0
    system_used: int = 0
    system_free: int = 0
    percentage: float = 0.0


@dataclass
class CpuUsage:
    user: float = 0.0      # ms of CPU time since the previous sample
    system: float = 0.0
    percentage: float = 0.0


@dataclass
class GcMetrics:
    collections: int = 0
    duration: float = 0.0  # total pause, ms
    freed: int = 0
    last_collection: str | None = None


@dataclass
class SystemMetrics:
    memory: MemoryUsage = field(default_factory=MemoryUsage)
    cpu: CpuUsage = field(default_factory=CpuUsage)
    gc: GcMetrics = field(default_factory=GcMetrics)
    event_loop_delay: float = 0.0
    uptime: float = 0.0
    pid: int = field(default_factory=os.getpid)
    python_version: str = field(default_factory=platform.python_version)
    timestamp: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory": {
                "rss": self.memory.rss,
                "vms": self.memory.vms,
                "shared": self.memory.shared,
                "data": self.memory.data,
                "systemTotal": self.memory.system_total,
                "systemUsed": self.memory.system_used,
                "systemFree": self.memory.system_free,
                "percentage": self.memory.percentage,
            },
            "cpu": asdict(self.cpu),
            "gc": {
                "collections": self.gc.collections,
                "duration": self.gc.duration,
                "freed": self.gc.freed,
                "lastCollection": self.gc.last_collection,
            },
            "eventLoopDelay": self.event_loop_delay,
            "uptime": self.uptime,
            "pid": self.pid,
            "pythonVersion": self.python_version,
            "timestamp": self.timestamp,
        }


@dataclass
class SystemHealth:
    healthy: bool
    issues: list[str] = field(default_factory=list)


# ── Garbage collector ────────────────────────────────────────────────────────


class GcMonitor:
    """Times collector pauses through ``gc.callbacks``."""

    def __init__(self, warning_ms: float | None = None, clock=time.perf_counter) -> None:
        self.warning_ms = settings.gc_pause_warning_ms if warning_ms is None else warning_ms
        self.metrics = GcMetrics()
        self._clock = clock
        self._started_at: float | None = None
        self._installed = False

    @staticmethod
    def available() -> bool:
        return isinstance(getattr(gc, "callbacks", None), list)

    def start(self) -> None:
        if self._installed or not self.available():
            return
        gc.callbacks.append(self._on_gc)
        self._installed = True
        logger.info("GC monitoring enabled")

    def stop(self) -> None:
        if self._installed and self._on_gc in gc.callbacks:
            gc.callbacks.remove(self._on_gc)
        self._installed = False

    def _on_gc(self, phase: str, info: dict[str, Any]) -> None:
        if phase == "start":
            self._started_at = self._clock()
            return
        if phase != "stop" or self._started_at is None:
            return

        pause_ms = (self._clock() - self._started_at) * 1000
        self._started_at = None
        self.metrics.collections += 1
        self.metrics.duration += pause_ms
        self.metrics.freed += int(info.get("collected", 0))
        self.metrics.last_collection = utcnow_iso()

        if pause_ms > self.warning_ms:
            logger.warning(
                "Long GC pause: %.1fms (generation %s)", pause_ms, info.get("generation"),
            )


# ── Event-loop lag ───────────────────────────────────────────────────────────


class LagHistogram:
    """Accumulates lag samples between resets."""

    def __init__(self) -> None:
        self.reset()

    def record(self, value_ms: float) -> None:
        self.count += 1
        self.total += value_ms
        self.max = max(self.max, value_ms)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def reset(self) -> None:
        self.count = 0
        self.total = 0.0
        self.max = 0.0


class EventLoopMonitor:
    """Measures how late ``asyncio.sleep(resolution)`` wakes up.

    Every ``sample_interval`` seconds the mean lag is published to ``delay``
    and the histogram starts over.
    """

    def __init__(
        self,
        resolution_ms: float | None = None,
        sample_interval: float | None = None,
        threshold_ms: float | None = None,
        clock=time.perf_counter,
    ) -> None:
        self.resolution_ms = resolution_ms or settings.event_loop_resolution_ms
        self.sample_interval = sample_interval or settings.event_loop_sample_interval
        self.threshold_ms = (
            settings.event_loop_delay_threshold_ms if threshold_ms is None else threshold_ms
        )
        self.histogram = LagHistogram()
        self.delay = 0.0
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="event-loop-lag")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def publish(self) -> float:
        """Move the current mean into ``delay`` and reset the histogram."""
        self.delay = round(self.histogram.mean, 3)
        self.histogram.reset()
        if self.delay > self.threshold_ms:
            logger.warning(
                "High event loop delay: %.1fms (threshold=%sms)", self.delay, self.threshold_ms,
            )
        return self.delay

    async def _loop(self) -> None:
        resolution = self.resolution_ms / 1000
        window_start = self._clock()
        while True:
            t0 = self._clock()
            await asyncio.sleep(resolution)
            lag_ms = (self._clock() - t0 - resolution) * 1000
            self.histogram.record(max(0.0, lag_ms))

            if self._clock() - window_start >= self.sample_interval:
                self.publish()
                window_start = self._clock()


# ── Sampler ──────────────────────────────────────────────────────────────────


class ResourceSampler:
    """Periodic process/OS resource snapshot with threshold alerts.

    Lifecycle:
        sampler = ResourceSampler(events)
        await sampler.start()
        ...
        await sampler.stop()
    """

    def __init__(
        self,
        events: EventBus | None = None,
        interval: float | None = None,
        high_memory_threshold: float | None = None,
        high_cpu_threshold: float | None = None,
        gc_monitoring: bool | None = None,
        event_loop_monitoring: bool | None = None,
        process: psutil.Process | None = None,
        virtual_memory: Callable[[], Any] = psutil.virtual_memory,
        clock=time.monotonic,
    ) -> None:
        self.events = events or EventBus()
        self.interval = interval or settings.system_metrics_interval
        self.high_memory_threshold = (
            settings.high_memory_threshold if high_memory_threshold is None else high_memory_threshold
        )
        self.high_cpu_threshold = (
            settings.high_cpu_threshold if high_cpu_threshold is None else high_cpu_threshold
        )
        self._process = process or psutil.Process()
        self._virtual_memory = virtual_memory
        self._clock = clock
        self._started = clock()

        if gc_monitoring is None:
            gc_monitoring = settings.enable_gc_monitoring
        self.gc_monitor = GcMonitor() if gc_monitoring and GcMonitor.available() else None

        if event_loop_monitoring is None:
            event_loop_monitoring = settings.enable_event_loop_monitoring
        self.loop_monitor = EventLoopMonitor() if event_loop_monitoring else None

        times = self._process.cpu_times()
        self._last_cpu = (times.user, times.system)
        self._last_sample_at = clock()

        self.latest = SystemMetrics()
        self._timer: RepeatingTask | None = None

    # -- Lifecycle -----------------------------------------------------------------

    async def start(self) -> None:
        if self._timer:
            return
        if self.gc_monitor:
            self.gc_monitor.start()
        if self.loop_monitor:
            await self.loop_monitor.start()
        self._timer = RepeatingTask(
            "resource-sampler", self.interval, self.sample, run_immediately=True,
        )
        await self._timer.start()
        logger.info("Resource sampler started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        if self._timer:
            await self._timer.stop()
            self._timer = None
        if self.loop_monitor:
            await self.loop_monitor.stop()
        if self.gc_monitor:
            self.gc_monitor.stop()
        logger.info("Resource sampler stopped")

    @property
    def uptime(self) -> float:
        return round(self._clock() - self._started, 3)

    # -- Sampling ------------------------------------------------------------------

    async def sample(self) -> SystemMetrics:
        """Take one reading; failures are logged and the last reading kept."""
        try:
            metrics = self.collect()
        except Exception:
            logger.exception("Failed to collect system metrics")
            return self.latest

        self.latest = metrics
        self._check_thresholds(metrics)
        self.events.emit(MonitorEvent.SYSTEM_METRICS, metrics.to_dict())
        return metrics

    def collect(self) -> SystemMetrics:
        now = self._clock()
        mem = self._process.memory_info()
        vm = self._virtual_memory()
        used = vm.total - vm.available

        memory = MemoryUsage(
            rss=mem.rss,
            vms=mem.vms,
            shared=getattr(mem, "shared", 0),
            data=getattr(mem, "data", 0),
            system_total=vm.total,
            system_used=used,
            system_free=vm.available,
            percentage=round(used / vm.total * 100, 2) if vm.total else 0.0,
        )

        times = self._process.cpu_times()
        user_s = times.user - self._last_cpu[0]
        system_s = times.system - self._last_cpu[1]
        elapsed = now - self._last_sample_at
        pct = (user_s + system_s) / elapsed * 100 if elapsed > 0 else 0.0
        cpu = CpuUsage(
            user=round(user_s * 1000, 3),
            system=round(system_s * 1000, 3),
            percentage=round(min(100.0, max(0.0, pct)), 2),
        )
        self._last_cpu = (times.user, times.system)
        self._last_sample_at = now

        return SystemMetrics(
            memory=memory,
            cpu=cpu,
            gc=GcMetrics(**asdict(self.gc_monitor.metrics)) if self.gc_monitor else GcMetrics(),
            event_loop_delay=self.loop_monitor.delay if self.loop_monitor else 0.0,
            uptime=self.uptime,
            pid=self._process.pid,
        )

    def _check_thresholds(self, metrics: SystemMetrics) -> None:
        if metrics.memory.percentage > self.high_memory_threshold:
            logger.warning(
                "High memory usage: %.1f%% (threshold=%s%%)",
                metrics.memory.percentage, self.high_memory_threshold,
            )
            self.events.emit(MonitorEvent.HIGH_MEMORY_USAGE, {
                "percentage": metrics.memory.percentage,
                "threshold": self.high_memory_threshold,
                "memory": metrics.to_dict()["memory"],
            })

        if metrics.cpu.percentage > self.high_cpu_threshold:
            logger.warning(
                "High CPU usage: %.1f%% (threshold=%s%%)",
                metrics.cpu.percentage, self.high_cpu_threshold,
            )
            self.events.emit(MonitorEvent.HIGH_CPU_USAGE, {
                "percentage": metrics.cpu.percentage,
                "threshold": self.high_cpu_threshold,
                "cpu": asdict(metrics.cpu),
            })
