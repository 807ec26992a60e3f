"""Tests for the dependency registry and the YAML dependencies file."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from vitals.health import DependencyType, DuplicateDependencyError, Status


class TestRegistration:
    def test_duplicate_name_rejected(self, registry, make_dep) -> None:
        registry.register(make_dep("db"))
        with pytest.raises(DuplicateDependencyError):
            registry.register(make_dep("db"))
        assert len(registry) == 1

    def test_registration_order_kept(self, registry, make_dep) -> None:
        for name in ("c", "a", "b"):
            registry.register(make_dep(name, critical=True))
        assert [d.name for d in registry.all()] == ["c", "a", "b"]
        assert [d.name for d in registry.critical()] == ["c", "a", "b"]

    def test_enabled_and_critical_filters(self, registry, make_dep) -> None:
        registry.register(make_dep("db", critical=True))
        registry.register(make_dep("cache"))
        registry.register(make_dep("old", critical=True, enabled=False))

        assert [d.name for d in registry.enabled()] == ["db", "cache"]
        assert [d.name for d in registry.critical()] == ["db"]
        assert "old" in registry
        assert registry.get("nope") is None

    def test_to_dict_has_no_probe(self, registry, make_dep) -> None:
        registry.register(make_dep("db", critical=True))
        entry = registry.to_dict()[0]
        assert entry["name"] == "db"
        assert entry["critical"] is True
        assert "probe" not in entry


# ── YAML file ────────────────────────────────────────────────────────────────


DEPENDENCIES_YAML = """\
dependencies:
  - name: maps
    url: https://maps.example.com/status
    retries: 2
    critical: true
    headers:
      apikey: secret
  - name: storage
    url: https://storage.example.com/health
    expected_status: 204
    enabled: false
  - url: https://missing-name.example.com
"""


class TestLoadExternal:
    def test_missing_file_is_not_an_error(self, registry, tmp_path) -> None:
        assert registry.load_external(tmp_path / "nope.yaml") == 0

    def test_loads_entries_and_skips_malformed(self, registry, tmp_path) -> None:
        path = tmp_path / "dependencies.yaml"
        path.write_text(DEPENDENCIES_YAML)

        assert registry.load_external(path, default_timeout_ms=7000) == 2

        maps = registry.get("maps")
        assert maps.type == DependencyType.EXTERNAL_API
        assert maps.retries == 2
        assert maps.critical is True
        assert maps.timeout_ms == 7000
        assert maps.interval_seconds == 120

        storage = registry.get("storage")
        assert storage.enabled is False
        assert storage.critical is False

    def test_invalid_yaml(self, registry, tmp_path) -> None:
        path = tmp_path / "dependencies.yaml"
        path.write_text("dependencies: [unclosed")
        assert registry.load_external(path) == 0

    @pytest.mark.parametrize(
        "content",
        [
            "- name: x\n  url: http://x\n",
            "just a string\n",
            "dependencies: {name: x, url: http://x}\n",
            "dependencies: 42\n",
        ],
    )
    def test_wrong_shape_is_ignored(self, registry, tmp_path, caplog, content) -> None:
        path = tmp_path / "dependencies.yaml"
        path.write_text(content)
        with caplog.at_level("ERROR"):
            assert registry.load_external(path) == 0
        assert len(registry) == 0
        assert "Ignoring" in caplog.text

    def test_non_mapping_entries_are_skipped(self, registry, tmp_path) -> None:
        path = tmp_path / "dependencies.yaml"
        path.write_text("dependencies:\n  - just-a-name\n  - name: ok\n    url: http://ok\n")
        assert registry.load_external(path) == 1
        assert "ok" in registry

    def test_loaded_probe_uses_transport(self, registry, tmp_path) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, str(request.url), request.headers.get("apikey")))
            return httpx.Response(200)

        path = tmp_path / "dependencies.yaml"
        path.write_text(DEPENDENCIES_YAML)
        registry.load_external(path, transport=httpx.MockTransport(handler))

        result = asyncio.run(registry.get("maps").probe())
        assert result.status == Status.HEALTHY
        assert seen == [("GET", "https://maps.example.com/status", "secret")]
