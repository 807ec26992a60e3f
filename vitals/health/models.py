"""Health data model: dependency descriptors, check results, snapshots."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Status(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {Status.HEALTHY: 0, Status.DEGRADED: 1, Status.UNHEALTHY: 2}


class DependencyType(str, Enum):
    DATABASE = "database"
    CACHE = "cache"
    EXTERNAL_API = "external_api"
    FILE_SYSTEM = "file_system"
    SERVICE = "service"


@dataclass
class CheckMetadata:
    check_count: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None


@dataclass
class CheckResult:
    """Latest outcome of probing one dependency.

    Probes return a fresh instance; the runner then folds it into the stored
    result for that dependency, which lives for the whole process.
    """

    name: str
    status: Status
    response_time: float = 0.0  # ms
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    last_check: str = ""
    metadata: CheckMetadata = field(default_factory=CheckMetadata)

    def __post_init__(self) -> None:
        if not self.last_check:
            self.last_check = utcnow_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "lastCheck": self.last_check,
            "responseTime": self.response_time,
            "message": self.message,
            "details": dict(self.details),
            "metadata": {
                "checkCount": self.metadata.check_count,
                "consecutiveFailures": self.metadata.consecutive_failures,
                "lastError": self.metadata.last_error,
            },
        }


Probe = Callable[[], Awaitable[CheckResult]]


@dataclass
class DependencyDescriptor:
    """A registered dependency and the policy used to probe it."""

    name: str
    type: DependencyType
    probe: Probe
    enabled: bool = True
    timeout_ms: int = 5_000
    retries: int = 1
    interval_seconds: int = 60
    critical: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "enabled": self.enabled,
            "timeout_ms": self.timeout_ms,
            "retries": self.retries,
            "interval_seconds": self.interval_seconds,
            "critical": self.critical,
        }


@dataclass
class HealthSummary:
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "healthy": self.healthy,
            "degraded": self.degraded,
            "unhealthy": self.unhealthy,
        }


@dataclass
class HealthSnapshot:
    """Point-in-time copy of the aggregate health served to readers."""

    status: Status
    timestamp: str
    uptime: float  # seconds
    version: str
    environment: str
    checks: dict[str, CheckResult]
    summary: HealthSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "uptime": self.uptime,
            "version": self.version,
            "environment": self.environment,
            "checks": {name: c.to_dict() for name, c in self.checks.items()},
            "summary": self.summary.to_dict(),
        }


@dataclass
class StatusChange:
    previous: Status
    current: Status
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.previous.value,
            "to": self.current.value,
            "timestamp": self.timestamp,
        }
