"""Status aggregation: per-sweep summary counts and the overall verdict."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from .models import (
    CheckResult,
    DependencyDescriptor,
    HealthSummary,
    Status,
    StatusChange,
    utcnow_iso,
)

logger = logging.getLogger(__name__)


def summarize(checks: Mapping[str, CheckResult]) -> HealthSummary:
    """Count results by status, from scratch."""
    summary = HealthSummary(total=len(checks))
    for check in checks.values():
        if check.status == Status.HEALTHY:
            summary.healthy += 1
        elif check.status == Status.DEGRADED:
            summary.degraded += 1
        else:
            summary.unhealthy += 1
    return summary


def overall_status(
    checks: Mapping[str, CheckResult],
    critical: Iterable[DependencyDescriptor],
    summary: HealthSummary,
) -> Status:
    """Overall verdict. Order matters:

    1. default healthy;
    2. walk enabled critical dependencies: the first unhealthy one makes the
       whole system unhealthy and ends the walk, a degraded one makes it
       degraded but the walk goes on;
    3. still healthy and more degraded than healthy checks overall → degraded.

    Step 3 compares against the healthy count only, not the total.
    """
    status = Status.HEALTHY

    for dep in critical:
        if not (dep.critical and dep.enabled):
            continue
        check = checks.get(dep.name)
        if check is None:
            continue
        if check.status == Status.UNHEALTHY:
            status = Status.UNHEALTHY
            break
        if check.status == Status.DEGRADED and status == Status.HEALTHY:
            status = Status.DEGRADED

    if status == Status.HEALTHY and summary.degraded > summary.healthy:
        status = Status.DEGRADED

    return status


class StatusAggregator:
    """Holds the current aggregate and a bounded history of recomputes."""

    def __init__(self, history_size: int = 100, clock=time.monotonic) -> None:
        self.status = Status.HEALTHY
        self.summary = HealthSummary()
        self.timestamp = utcnow_iso()
        self._clock = clock
        self._started = clock()
        self.history: deque[dict[str, Any]] = deque(maxlen=history_size)

    @property
    def uptime(self) -> float:
        """Seconds since the aggregator was created."""
        return round(self._clock() - self._started, 3)

    def recompute(
        self,
        checks: Mapping[str, CheckResult],
        critical: Iterable[DependencyDescriptor],
    ) -> StatusChange | None:
        """Refresh summary and overall status; return the change, if any."""
        self.summary = summarize(checks)
        previous = self.status
        self.status = overall_status(checks, critical, self.summary)
        self.timestamp = utcnow_iso()

        self.history.append({
            "timestamp": self.timestamp,
            "status": self.status.value,
            "summary": self.summary.to_dict(),
        })

        if previous == self.status:
            return None

        logger.warning(
            "Application health status changed: %s → %s (%s)",
            previous.value, self.status.value, self.summary.to_dict(),
        )
        return StatusChange(previous=previous, current=self.status, timestamp=self.timestamp)
