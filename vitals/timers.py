"""Cancellable repeating task: the periodic timer used by every monitor loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Runs an async callback every ``interval`` seconds until stopped.

    Lifecycle:
        task = RepeatingTask("sweep", 60, callback, run_immediately=True)
        await task.start()
        ...
        await task.stop()

    Ticks keep a fixed rate: the callback's own run time does not stretch
    the period. A failing callback is logged and the loop keeps its schedule.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval = interval
        self.callback = callback
        self.run_immediately = run_immediately
        self.runs = 0
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.debug("Repeating task %s started (interval=%ss)", self.name, self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Repeating task %s stopped", self.name)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        if self.run_immediately:
            await self._tick()

        # Fixed rate: each tick is due `interval` after the previous one was due.
        # An overrunning callback delays the next tick but never queues a burst.
        while self._running:
            next_at = max(next_at + self.interval, loop.time())
            await asyncio.sleep(next_at - loop.time())
            if not self._running:
                break
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Repeating task %s failed", self.name)
        finally:
            self.runs += 1
