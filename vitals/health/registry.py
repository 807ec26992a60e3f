"""Dependency registry: descriptors plus the live result map.

Core dependencies are registered in code at startup. Optional external APIs
come from a YAML file:

    dependencies:
      - name: maps_api
        url: https://maps.example.com/status
        timeout_ms: 10000
        retries: 1
        interval_seconds: 120
        critical: false
        headers:
          apikey: "..."
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import BaseModel, Field

from .models import CheckResult, DependencyDescriptor, DependencyType
from .probes import http_probe

logger = logging.getLogger(__name__)


class DuplicateDependencyError(ValueError):
    """Raised when a dependency name is registered twice."""


class DependencyRegistry:
    """Registered dependencies (in registration order) and their results."""

    def __init__(self) -> None:
        self._descriptors: dict[str, DependencyDescriptor] = {}
        self.results: dict[str, CheckResult] = {}

    def register(self, descriptor: DependencyDescriptor) -> None:
        if descriptor.name in self._descriptors:
            raise DuplicateDependencyError(
                f"Dependency '{descriptor.name}' is already registered"
            )
        self._descriptors[descriptor.name] = descriptor
        logger.info(
            "Registered health dependency: %s (type=%s, critical=%s, enabled=%s)",
            descriptor.name, descriptor.type.value, descriptor.critical, descriptor.enabled,
        )

    def get(self, name: str) -> DependencyDescriptor | None:
        return self._descriptors.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def all(self) -> list[DependencyDescriptor]:
        return list(self._descriptors.values())

    def enabled(self) -> list[DependencyDescriptor]:
        return [d for d in self._descriptors.values() if d.enabled]

    def critical(self) -> list[DependencyDescriptor]:
        """Enabled critical dependencies, in registration order."""
        return [d for d in self._descriptors.values() if d.enabled and d.critical]

    def to_dict(self) -> list[dict[str, Any]]:
        return [d.to_dict() for d in self._descriptors.values()]

    # -- YAML-declared external APIs -----------------------------------------

    def load_external(
        self, path: Path, default_timeout_ms: int = 10_000, transport: httpx.AsyncBaseTransport | None = None,
    ) -> int:
        """Register external API dependencies listed in ``path``.

        Returns the number registered. A missing file is not an error;
        malformed entries are skipped with a warning.
        """
        if not path.exists():
            logger.debug("Dependencies file not found: %s", path)
            return 0

        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except Exception as e:
            logger.error("Failed to parse %s: %s", path, e)
            return 0

        if not isinstance(raw, dict):
            logger.error("Ignoring %s: expected a mapping with a 'dependencies' list", path)
            return 0
        entries = raw.get("dependencies") or []
        if not isinstance(entries, list):
            logger.error("Ignoring %s: 'dependencies' must be a list", path)
            return 0

        count = 0
        for entry in entries:
            try:
                self.register(_parse_external(entry, default_timeout_ms, transport))
                count += 1
            except Exception as e:
                logger.warning("Skipping malformed dependency entry: %s", e)

        logger.info("Loaded %d external dependencies from %s", count, path)
        return count


class ExternalDependency(BaseModel):
    """One entry of the dependencies file."""

    name: str
    url: str
    type: DependencyType = DependencyType.EXTERNAL_API
    method: str = "GET"
    expected_status: int | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int | None = None
    retries: int = 1
    interval_seconds: int = 120
    critical: bool = False
    enabled: bool = True


def _parse_external(
    raw: dict[str, Any],
    default_timeout_ms: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DependencyDescriptor:
    entry = ExternalDependency.model_validate(raw)
    timeout_ms = entry.timeout_ms or default_timeout_ms
    return DependencyDescriptor(
        name=entry.name,
        type=entry.type,
        probe=http_probe(
            entry.name,
            entry.url,
            method=entry.method,
            expected_status=entry.expected_status,
            headers=entry.headers,
            timeout_ms=timeout_ms,
            transport=transport,
        ),
        enabled=entry.enabled,
        timeout_ms=timeout_ms,
        retries=entry.retries,
        interval_seconds=entry.interval_seconds,
        critical=entry.critical,
    )
