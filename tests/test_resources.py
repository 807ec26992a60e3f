"""Tests for resource sampling and runtime instrumentation."""

from __future__ import annotations

import asyncio
import gc
from types import SimpleNamespace

import pytest

from vitals.events import EventBus, MonitorEvent
from vitals.metrics.resources import EventLoopMonitor, GcMonitor, LagHistogram, ResourceSampler


class FakeProcess:
    pid = 4242

    def __init__(self) -> None:
        self.user = 1.0
        self.system = 0.5
        self.rss = 50_000_000

    def memory_info(self):
        return SimpleNamespace(rss=self.rss, vms=200_000_000, shared=5_000, data=40_000_000)

    def cpu_times(self):
        return SimpleNamespace(user=self.user, system=self.system)


def _virtual_memory(total=1000, available=400):
    return lambda: SimpleNamespace(total=total, available=available)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def process() -> FakeProcess:
    return FakeProcess()


def _sampler(events, process, clock, **kwargs) -> ResourceSampler:
    kwargs.setdefault("virtual_memory", _virtual_memory())
    return ResourceSampler(
        events,
        interval=60,
        high_memory_threshold=85,
        high_cpu_threshold=80,
        gc_monitoring=False,
        event_loop_monitoring=False,
        process=process,
        clock=clock,
        **kwargs,
    )


class TestSampling:
    def test_memory_reading(self, events, process, clock) -> None:
        sampler = _sampler(events, process, clock)
        clock.advance(10)
        m = asyncio.run(sampler.sample())

        assert m.memory.system_used == 600
        assert m.memory.percentage == 60.0
        assert m.memory.rss == 50_000_000
        assert m.memory.data == 40_000_000
        assert m.pid == 4242
        assert sampler.latest is m

    def test_cpu_delta_over_wall_time(self, events, process, clock) -> None:
        sampler = _sampler(events, process, clock)
        clock.advance(10)
        process.user += 1.5
        process.system += 0.5

        m = asyncio.run(sampler.sample())
        assert m.cpu.percentage == 20.0
        assert m.cpu.user == 1500
        assert m.cpu.system == 500

    def test_cpu_capped_at_100(self, events, process, clock) -> None:
        sampler = _sampler(events, process, clock)
        clock.advance(1)
        process.user += 8  # several cores busy

        assert asyncio.run(sampler.sample()).cpu.percentage == 100.0

    def test_threshold_events(self, events, process, clock) -> None:
        seen = []
        events.subscribe_all(lambda e, p: seen.append(e))

        sampler = _sampler(events, process, clock, virtual_memory=_virtual_memory(1000, 100))
        clock.advance(1)
        process.user += 0.9

        asyncio.run(sampler.sample())
        assert seen == [
            MonitorEvent.HIGH_MEMORY_USAGE,
            MonitorEvent.HIGH_CPU_USAGE,
            MonitorEvent.SYSTEM_METRICS,
        ]

    def test_below_thresholds_only_system_metrics(self, events, process, clock) -> None:
        seen = []
        events.subscribe_all(lambda e, p: seen.append(e))
        sampler = _sampler(events, process, clock)
        clock.advance(10)
        asyncio.run(sampler.sample())
        assert seen == [MonitorEvent.SYSTEM_METRICS]

    def test_sampling_failure_keeps_last_reading(self, events, process, clock) -> None:
        sampler = _sampler(events, process, clock)
        clock.advance(10)
        first = asyncio.run(sampler.sample())

        def broken():
            raise OSError("no /proc")

        sampler._virtual_memory = broken
        assert asyncio.run(sampler.sample()) is first

    def test_optional_monitors_off(self, events, process, clock) -> None:
        sampler = _sampler(events, process, clock)
        assert sampler.gc_monitor is None
        assert sampler.loop_monitor is None

    def test_start_and_stop(self, events, process, clock) -> None:
        sampler = _sampler(events, process, clock)

        async def scenario():
            await sampler.start()
            for _ in range(5):
                await asyncio.sleep(0)
            await sampler.stop()

        asyncio.run(scenario())
        # the first sample is taken immediately
        assert sampler.latest.memory.percentage == 60.0


# ── GC ───────────────────────────────────────────────────────────────────────


class TestGcMonitor:
    def test_pause_accounting(self, clock) -> None:
        monitor = GcMonitor(warning_ms=100, clock=clock)
        monitor._on_gc("start", {"generation": 0})
        clock.advance(0.004)
        monitor._on_gc("stop", {"generation": 0, "collected": 12})

        assert monitor.metrics.collections == 1
        assert monitor.metrics.duration == pytest.approx(4.0)
        assert monitor.metrics.freed == 12
        assert monitor.metrics.last_collection

    def test_long_pause_warns(self, clock, caplog) -> None:
        monitor = GcMonitor(warning_ms=100, clock=clock)
        monitor._on_gc("start", {"generation": 2})
        clock.advance(0.25)
        with caplog.at_level("WARNING"):
            monitor._on_gc("stop", {"generation": 2, "collected": 0})
        assert "Long GC pause" in caplog.text

    def test_install_and_remove_callback(self) -> None:
        monitor = GcMonitor()
        monitor.start()
        assert monitor._on_gc in gc.callbacks
        monitor.stop()
        assert monitor._on_gc not in gc.callbacks


# ── Event loop lag ───────────────────────────────────────────────────────────


class TestEventLoopMonitor:
    def test_histogram(self) -> None:
        h = LagHistogram()
        for v in (10, 20, 30):
            h.record(v)
        assert h.mean == 20
        assert h.max == 30
        h.reset()
        assert (h.count, h.mean) == (0, 0.0)

    def test_publish_resets_and_warns(self, caplog) -> None:
        monitor = EventLoopMonitor(resolution_ms=20, sample_interval=5, threshold_ms=50)
        for v in (40, 80, 120):
            monitor.histogram.record(v)
        with caplog.at_level("WARNING"):
            assert monitor.publish() == 80
        assert monitor.histogram.count == 0
        assert "High event loop delay" in caplog.text

    def test_loop_start_stop(self) -> None:
        monitor = EventLoopMonitor(resolution_ms=1, sample_interval=60, threshold_ms=50)

        async def scenario():
            await monitor.start()
            await asyncio.sleep(0.02)
            running = monitor.running
            await monitor.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert not monitor.running
        assert monitor.histogram.count > 0
