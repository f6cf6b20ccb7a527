"""
Settings loader — reads ~/.aperium/config.yml into ``AperiumSettings``.

The settings file is optional.  Every path the installer touches has a
default; the file (or ``APERIUM_HOME``) only moves them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator

from aperium.core.errors import ConfigError

logger = logging.getLogger(__name__)

SETTINGS_FILE = "config.yml"
HOME_ENV = "APERIUM_HOME"


def default_home() -> Path:
    """Base directory for the key, the registry and the settings file."""
    env = os.environ.get(HOME_ENV)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".aperium"


class AperiumSettings(BaseModel):
    """Resolved installer settings."""

    home: Path = Field(default_factory=default_home)
    key_file: Path | None = None
    registry_dir: Path | None = None

    os_release: Path = Path("/etc/os-release")

    # ── NixOS ────────────────────────────────────────────────────
    nixos_config: Path = Path("/etc/nixos/configuration.nix")
    nixos_modules_dir: Path = Path("/etc/nixos/aperium-modules")
    rebuild_command: list[str] = Field(default_factory=lambda: ["nixos-rebuild", "switch"])
    validate_nix: bool = True

    # None = decide at runtime (root and Termux never elevate)
    use_sudo: bool | None = None

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _fill_home_paths(self) -> AperiumSettings:
        self.home = self.home.expanduser()
        if self.key_file is None:
            self.key_file = self.home / "key.enc"
        if self.registry_dir is None:
            self.registry_dir = self.home / "installed_packages"
        return self


def load_settings(path: Path | None = None) -> AperiumSettings:
    """Load installer settings.

    Args:
        path: Explicit settings file.  If None, ``<home>/config.yml`` is
            used when it exists, otherwise defaults apply.

    Raises:
        ConfigError: Explicit file missing, unreadable, invalid YAML,
            or values that fail validation.
    """
    explicit = path is not None
    if path is None:
        path = default_home() / SETTINGS_FILE

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Settings file not found: {path}")
        logger.debug("No settings file at %s — using defaults", path)
        return AperiumSettings()

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = AperiumSettings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings
