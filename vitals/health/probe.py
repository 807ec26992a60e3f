"""Probe runner: one dependency probe under timeout and retry policy.

The probe call races a timer of ``descriptor.timeout_ms``. A probe that
loses the race is abandoned, not cancelled: the underlying call may keep
running in the background until it finishes on its own. Failures are retried
with linear backoff (``attempt * retry_backoff_ms``) and, once retries are
exhausted, recorded as ``unhealthy``. Nothing raised by a probe escapes
``run()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from vitals.config import settings

from .models import CheckMetadata, CheckResult, DependencyDescriptor, Status, utcnow_iso

if TYPE_CHECKING:
    from .registry import DependencyRegistry

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """A probe reported its dependency as failing."""


class ProbeTimeoutError(ProbeError):
    """A probe did not settle before its timeout."""


class ProbeRunner:
    """Executes probes and folds their outcome into the registry's results."""

    def __init__(
        self,
        registry: DependencyRegistry,
        degraded_threshold_ms: float | None = None,
        unhealthy_threshold_ms: float | None = None,
        retry_backoff_ms: float | None = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.degraded_threshold_ms = (
            settings.degraded_threshold_ms if degraded_threshold_ms is None else degraded_threshold_ms
        )
        self.unhealthy_threshold_ms = (
            settings.unhealthy_threshold_ms if unhealthy_threshold_ms is None else unhealthy_threshold_ms
        )
        self.retry_backoff_ms = settings.retry_backoff_ms if retry_backoff_ms is None else retry_backoff_ms
        self._clock = clock
        self._sleep = sleep
        self._abandoned: set[asyncio.Future[Any]] = set()

    @property
    def abandoned(self) -> int:
        """Timed-out probe calls that are still running in the background."""
        return len(self._abandoned)

    async def run(self, descriptor: DependencyDescriptor) -> CheckResult:
        attempt = 0
        last_error: BaseException | None = None

        while attempt <= descriptor.retries:
            t0 = self._clock()
            try:
                outcome = await self._race(descriptor)
            except Exception as e:
                last_error = e
                attempt += 1
                if attempt <= descriptor.retries:
                    logger.warning(
                        "Health check failed, retrying: %s (attempt %d/%d): %s",
                        descriptor.name, attempt, descriptor.retries, e,
                    )
                    await self._sleep(attempt * self.retry_backoff_ms / 1000)
                continue

            elapsed_ms = (self._clock() - t0) * 1000
            return self._record_success(descriptor, outcome, elapsed_ms)

        return self._record_failure(descriptor, last_error)

    # -- internals -------------------------------------------------------------

    async def _race(self, descriptor: DependencyDescriptor) -> CheckResult:
        task = asyncio.ensure_future(descriptor.probe())
        try:
            done, _ = await asyncio.wait({task}, timeout=descriptor.timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            self._abandon(descriptor.name, task)
            raise ProbeTimeoutError("Health check timeout")

        outcome = task.result()
        if not isinstance(outcome, CheckResult):
            raise ProbeError(f"Probe returned {type(outcome).__name__}, expected CheckResult")
        return outcome

    def _abandon(self, name: str, task: asyncio.Future[Any]) -> None:
        self._abandoned.add(task)

        def _settled(t: asyncio.Future[Any]) -> None:
            self._abandoned.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            logger.debug(
                "Abandoned probe %s settled after timeout: %s",
                name, f"{type(exc).__name__}: {exc}" if exc else "ok",
            )

        task.add_done_callback(_settled)

    def _record_success(
        self, descriptor: DependencyDescriptor, outcome: CheckResult, elapsed_ms: float,
    ) -> CheckResult:
        status = outcome.status
        message = outcome.message

        latency_status: Status | None = None
        if elapsed_ms > self.unhealthy_threshold_ms:
            latency_status = Status.UNHEALTHY
            latency_message = f"Response time too high: {elapsed_ms:.0f}ms"
        elif elapsed_ms > self.degraded_threshold_ms:
            latency_status = Status.DEGRADED
            latency_message = f"Slow response: {elapsed_ms:.0f}ms"

        # Latency can only make the verdict worse
        if latency_status is not None and latency_status.severity > status.severity:
            status = latency_status
            message = latency_message

        previous, result = self._store(
            descriptor.name,
            status=status,
            response_time=round(elapsed_ms, 1),
            message=message,
            details=outcome.details,
        )
        result.metadata.consecutive_failures = 0

        if previous != status or status != Status.HEALTHY:
            logger.info(
                "Health check %s: %s (%.0fms)%s%s",
                descriptor.name, status.value, elapsed_ms,
                f": {message}" if message else "",
                " [changed]" if previous != status else "",
            )
        return result

    def _record_failure(
        self, descriptor: DependencyDescriptor, error: BaseException | None,
    ) -> CheckResult:
        error_text = str(error) if error is not None else "Health check failed"
        _, result = self._store(
            descriptor.name,
            status=Status.UNHEALTHY,
            response_time=float(descriptor.timeout_ms),
            message=error_text,
            details={},
        )
        result.metadata.consecutive_failures += 1
        result.metadata.last_error = error_text

        logger.error(
            "Health check failed: %s after %d attempt(s) (timeout=%dms, consecutive_failures=%d): %s",
            descriptor.name, descriptor.retries + 1, descriptor.timeout_ms,
            result.metadata.consecutive_failures, error_text,
        )
        return result

    def _store(
        self,
        name: str,
        status: Status,
        response_time: float,
        message: str,
        details: dict[str, Any],
    ) -> tuple[Status | None, CheckResult]:
        """Create the result on first probe, otherwise update it in place."""
        result = self.registry.results.get(name)
        if result is None:
            result = CheckResult(name=name, status=status, metadata=CheckMetadata())
            self.registry.results[name] = result
            previous = None
        else:
            previous = result.status

        result.status = status
        result.response_time = response_time
        result.message = message
        result.details = dict(details)
        result.last_check = utcnow_iso()
        result.metadata.check_count += 1
        return previous, result
