"""
Tests for aperium.core.persistence.registry.
"""

from __future__ import annotations

import json
import logging
import stat
from pathlib import Path

import pytest

from aperium.core.errors import ExecutionError
from aperium.core.persistence.registry import InstallRegistry


@pytest.fixture
def registry(tmp_path: Path) -> InstallRegistry:
    return InstallRegistry(tmp_path / "installed_packages")


class TestRegister:
    def test_writes_record(self, registry: InstallRegistry) -> None:
        record = registry.register("htop", "abc123", "0.1.0")

        path = registry.record_path("htop")
        data = json.loads(path.read_text())
        assert data["name"] == "htop"
        assert data["hash"] == "abc123"
        assert data["version"] == "0.1.0"
        assert data["installedAt"] == record.installed_at

    def test_record_permissions(self, registry: InstallRegistry) -> None:
        registry.register("htop", "abc", "0.1.0")
        mode = stat.S_IMODE(registry.record_path("htop").stat().st_mode)
        assert mode == 0o644

    def test_overwrites_and_leaves_no_temp(self, registry: InstallRegistry) -> None:
        registry.register("htop", "old", "0.1.0")
        registry.register("htop", "new", "0.1.0")

        assert registry.get("htop").hash == "new"
        assert [p.name for p in registry.directory.iterdir()] == ["htop.json"]

    def test_unwritable_without_elevation(self, tmp_path: Path, monkeypatch) -> None:
        registry = InstallRegistry(tmp_path / "reg")

        def deny(*_a, **_kw):
            raise PermissionError("read-only")

        monkeypatch.setattr(registry, "_write_atomic", deny)

        with pytest.raises(ExecutionError, match="install record"):
            registry.register("htop", "abc", "0.1.0")

    def test_unwritable_with_non_elevating_runner(self, tmp_path: Path, monkeypatch, runner) -> None:
        registry = InstallRegistry(tmp_path / "reg", runner)

        def deny(*_a, **_kw):
            raise PermissionError("read-only")

        monkeypatch.setattr(registry, "_write_atomic", deny)

        with pytest.raises(ExecutionError, match="install record"):
            registry.register("htop", "abc", "0.1.0")

    def test_elevated_write_failure_is_typed(self, tmp_path: Path, monkeypatch, runner) -> None:
        runner.elevate = True
        runner._granted = True
        monkeypatch.setattr(
            runner,
            "run",
            lambda cmd, **_kw: {"ok": False, "error": "denied", "returncode": 1, "stderr": "nope"},
        )
        registry = InstallRegistry(tmp_path / "reg", runner)

        def deny(*_a, **_kw):
            raise PermissionError("read-only")

        monkeypatch.setattr(registry, "_write_atomic", deny)

        with pytest.raises(ExecutionError, match="nope") as exc:
            registry.register("htop", "abc", "0.1.0")

        assert exc.value.exit_code == 1
        assert registry.get("htop") is None

    def test_unwritable_falls_back_to_runner(self, tmp_path: Path, monkeypatch, runner) -> None:
        runner.elevate = True
        runner._granted = True
        monkeypatch.setattr(runner, "wrap", lambda cmd: list(cmd))
        registry = InstallRegistry(tmp_path / "reg", runner)

        def deny(*_a, **_kw):
            raise PermissionError("read-only")

        monkeypatch.setattr(registry, "_write_atomic", deny)

        registry.register("htop", "abc", "0.1.0")

        assert registry.get("htop").hash == "abc"


class TestLookup:
    def test_exact_match(self, registry: InstallRegistry) -> None:
        registry.register("htop", "abc", "0.1.0")
        assert registry.is_installed("htop", "abc") is True

    def test_missing(self, registry: InstallRegistry) -> None:
        assert registry.is_installed("htop", "abc") is False
        assert registry.get("htop") is None

    def test_different_hash_warns(self, registry: InstallRegistry, caplog) -> None:
        registry.register("htop", "abc", "0.1.0")

        with caplog.at_level(logging.WARNING):
            assert registry.is_installed("htop", "def") is False

        assert "different version" in caplog.text

    def test_corrupt_record_is_ignored(self, registry: InstallRegistry, caplog) -> None:
        registry.directory.mkdir(parents=True)
        registry.record_path("htop").write_text("{ not json")

        with caplog.at_level(logging.WARNING):
            assert registry.get("htop") is None

        assert "Corrupt" in caplog.text
        assert registry.is_installed("htop", "abc") is False


class TestListInstalled:
    def test_empty_when_directory_missing(self, registry: InstallRegistry) -> None:
        assert registry.list_installed() == []

    def test_sorted_and_skips_corrupt(self, registry: InstallRegistry) -> None:
        registry.register("zsh", "1", "0.1.0")
        registry.register("htop", "2", "0.1.0")
        registry.record_path("broken").write_text("[]")

        assert [r.name for r in registry.list_installed()] == ["htop", "zsh"]
