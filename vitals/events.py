"""In-process event bus: publish/subscribe between monitors and consumers.

Monitors emit events (sweep finished, status changed, resource alerts);
loggers, the alert notifier and SSE streams subscribe to them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class MonitorEvent(str, Enum):
    HEALTH_CHECK = "health_check"
    STATUS_CHANGE = "status_change"
    SYSTEM_METRICS = "system_metrics"
    HIGH_MEMORY_USAGE = "high_memory_usage"
    HIGH_CPU_USAGE = "high_cpu_usage"
    SLOW_REQUEST = "slow_request"
    SLOW_QUERY = "slow_query"


Subscriber = Callable[[MonitorEvent, dict[str, Any]], Any]


class EventBus:
    """Observer registry keyed by event name.

    Subscribers are called synchronously, in subscription order. A subscriber
    that returns a coroutine gets it scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._subscribers: dict[MonitorEvent, list[Subscriber]] = {}
        self._pending: set[asyncio.Future[Any]] = set()

    def subscribe(self, event: MonitorEvent, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        self._subscribers.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        removers = [self.subscribe(event, callback) for event in MonitorEvent]

        def unsubscribe() -> None:
            for remove in removers:
                remove()

        return unsubscribe

    def subscriber_count(self, event: MonitorEvent) -> int:
        return len(self._subscribers.get(event, []))

    def emit(self, event: MonitorEvent, payload: dict[str, Any]) -> None:
        for callback in list(self._subscribers.get(event, [])):
            try:
                result = callback(event, payload)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception:
                logger.exception("Event subscriber error (%s)", event.value)

    def _schedule(self, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: nothing can drive the coroutine
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("Dropped async subscriber result: no running event loop")
            return
        future = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Async event subscriber failed: %s", future.exception())
