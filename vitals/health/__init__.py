"""Health subsystem: registry, probe runner, aggregation, scheduler."""

from .aggregator import StatusAggregator
from .models import (
    CheckResult,
    DependencyDescriptor,
    DependencyType,
    HealthSnapshot,
    HealthSummary,
    Status,
)
from .probe import ProbeError, ProbeRunner, ProbeTimeoutError
from .registry import DependencyRegistry, DuplicateDependencyError
from .scheduler import HealthScheduler
