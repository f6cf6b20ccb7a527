"""
Install use case — from an .apm file to a registered installation.

    load_package → registry check → detect platform → select payload
    → decrypt + verify → ScriptExecutor | NixosPatcher → register

Every collaborator is passed in, the key included; nothing here reads
global state.  Integrity is checked before any subprocess is spawned.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from aperium import __version__
from aperium.core.models.record import InstalledRecord
from aperium.core.persistence.registry import InstallRegistry
from aperium.core.services.nixos_patcher import NixosPatcher, NixPatchResult
from aperium.core.services.package_container import load_package, select_payload, verify_payload
from aperium.core.services.platform_detect import detect
from aperium.core.services.script_executor import ScriptExecutor

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Outcome of one install attempt."""

    name: str = ""
    version: str = ""
    status: str = ""  # installed, already_installed, no_payload
    platform: str = ""
    payload: str = ""
    combined_hash: str = ""
    record: InstalledRecord | None = None
    nixos: NixPatchResult | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result: dict = {
            "name": self.name,
            "version": self.version,
            "status": self.status,
            "platform": self.platform,
            "payload": self.payload,
            "hash": self.combined_hash,
        }
        if self.record:
            result["record"] = self.record.to_json_dict()
        if self.nixos:
            result["nixos"] = self.nixos.to_dict()
        if self.warnings:
            result["warnings"] = self.warnings
        return result


def install_package(
    archive: Path,
    *,
    key: bytes,
    registry: InstallRegistry,
    executor: ScriptExecutor,
    patcher: NixosPatcher,
    detect_platform: Callable[[], str] = detect,
    force: bool = False,
    tool_version: str = __version__,
) -> InstallResult:
    """Install the package at *archive* on this host.

    Raises:
        InvalidPackage / CryptoError: Bad archive or undecryptable payload.
        IntegrityError: Payload hash mismatch; nothing was executed.
        ExecutionError: Script or rebuild failed; nothing is registered.
        PatchError: NixOS configuration step failed.
    """
    descriptor = load_package(archive)
    result = InstallResult(
        name=descriptor.name,
        version=descriptor.version,
        combined_hash=descriptor.combined_hash(),
    )

    if not force and registry.is_installed(descriptor.name, result.combined_hash):
        logger.info('"%s" is already installed with identical content; skipping.', descriptor.name)
        result.status = "already_installed"
        result.record = registry.get(descriptor.name)
        return result

    previous = registry.get(descriptor.name)
    if previous is not None and previous.hash != result.combined_hash:
        result.warnings.append(f'A different version of "{descriptor.name}" was already installed.')

    result.platform = detect_platform()
    payload = select_payload(descriptor, result.platform)
    if payload is None:
        msg = (
            f'No suitable or generic installation payload in "{descriptor.name}" '
            f"for detected system ({result.platform})."
        )
        logger.warning(msg)
        result.warnings.append(msg)
        result.status = "no_payload"
        return result

    result.payload = payload.platform
    plaintext = verify_payload(payload, key)

    if payload.platform == "nixos":
        result.nixos = patcher.apply(plaintext, descriptor.name)
    else:
        executor.run(plaintext, descriptor.name)

    result.record = registry.register(descriptor.name, result.combined_hash, tool_version)
    result.status = "installed"
    return result
