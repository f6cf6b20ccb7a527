"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from aperium.core.config.loader import AperiumSettings
from aperium.core.services.privileged import PrivilegedRunner


@pytest.fixture
def key() -> bytes:
    """A fixed 32-byte host key."""
    return bytes(range(32))


@pytest.fixture
def other_key() -> bytes:
    return bytes(reversed(range(32)))


@pytest.fixture
def runner() -> PrivilegedRunner:
    """Runner that never elevates — commands run as the test user."""
    return PrivilegedRunner(elevate=False)


@pytest.fixture
def os_release(tmp_path: Path):
    """Factory writing an os-release file and returning its path."""

    def _make(content: str) -> Path:
        path = tmp_path / "os-release"
        path.write_text(content, encoding="utf-8")
        return path

    return _make


@pytest.fixture
def nixos_root(tmp_path: Path) -> Path:
    """A fake /etc/nixos with a typical configuration.nix."""
    root = tmp_path / "etc-nixos"
    root.mkdir()
    (root / "hardware-configuration.nix").write_text("{ ... }: { }\n")
    (root / "configuration.nix").write_text(
        "{ config, pkgs, ... }:\n"
        "\n"
        "{\n"
        "  imports = [\n"
        "    ./hardware-configuration.nix\n"
        "  ];\n"
        "\n"
        "  networking.hostName = \"box\";\n"
        "}\n"
    )
    return root


@pytest.fixture
def settings(tmp_path: Path, nixos_root: Path) -> AperiumSettings:
    """Settings with every path inside tmp_path."""
    return AperiumSettings(
        home=tmp_path / "home",
        os_release=tmp_path / "os-release",
        nixos_config=nixos_root / "configuration.nix",
        nixos_modules_dir=nixos_root / "aperium-modules",
        rebuild_command=["true"],
        validate_nix=False,
        use_sudo=False,
    )
