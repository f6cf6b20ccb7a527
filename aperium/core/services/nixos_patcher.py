"""
NixOS Configuration Patcher — install a package list declaratively.

On NixOS a package's payload is a comma-separated list of attribute
names.  Instead of running a script we:

    1. ensure /etc/nixos/aperium-modules exists        (privileged)
    2. back up configuration.nix → .bak_aper_<ts>      (privileged, fail-closed)
    3. write <name>-packages.nix with the package list (privileged)
    4. add ./aperium-modules/<name>-packages.nix to the
       ``imports = [ ... ];`` list, or synthesize one  (privileged)
    5. ask before ``nixos-rebuild switch``

Step 4 is textual.  ``patch_imports`` only edits an ``imports`` list it
can match; every other shape goes through an explicit synthesize
branch.  When ``nix-instantiate`` is available the result is parsed
before it replaces the live file.

Steps 1-4 raise ``PatchError``.  A failed rebuild raises
``ExecutionError`` and leaves the edited configuration in place.
Nothing is rolled back automatically; the backup is the way back.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from aperium.core.errors import ExecutionError, PatchError
from aperium.core.services.privileged import PrivilegedRunner

logger = logging.getLogger(__name__)

MODULES_SUBDIR = "aperium-modules"
HARDWARE_CONFIG = "hardware-configuration.nix"

_IMPORTS_RE = re.compile(r"(imports\s*=\s*\[)(.*?)(\]\s*;)", re.S)
# `{ config, pkgs, ... }:` header followed by the body's opening brace
_FUNCTION_BODY_RE = re.compile(r"\{[^{}]*\}\s*:\s*\{")


# ═══════════════════════════════════════════════════════════════════════
#  Pure text operations
# ═══════════════════════════════════════════════════════════════════════


def module_file_name(name: str) -> str:
    return f"{name}-packages.nix"


def module_reference(name: str) -> str:
    """Relative path used inside ``imports``."""
    return f"./{MODULES_SUBDIR}/{module_file_name(name)}"


def parse_package_list(packages: str) -> list[str]:
    return [p.strip() for p in packages.split(",") if p.strip()]


def render_module(packages: list[str]) -> str:
    """Nix module declaring *packages* as system packages."""
    body = "\n    ".join(packages)
    return (
        "{ config, pkgs, ... }:\n"
        "\n"
        "{\n"
        "  environment.systemPackages = with pkgs; [\n"
        f"    {body}\n"
        "  ];\n"
        "}\n"
    )


def references_module(text: str, ref: str) -> bool:
    return re.search(re.escape(ref) + r"(?![\w.+-])", text) is not None


def patch_imports(text: str, ref: str, *, include_hardware: bool = True) -> tuple[str, str]:
    """Add *ref* to the configuration's ``imports`` list.

    Returns:
        ``(new_text, action)`` where action is one of:

        - ``"unchanged"``   — *ref* is already referenced
        - ``"appended"``    — added to an existing ``imports = [ ... ];``
        - ``"synthesized"`` — no imports list; one was inserted at the
          top of the configuration body
        - ``"wrapped"``     — no attribute set at all; the text was
          wrapped in a new module
    """
    if references_module(text, ref):
        return text, "unchanged"

    match = _IMPORTS_RE.search(text)
    if match:
        head, body, tail = match.groups()
        new_block = f"{head}{body.rstrip()}\n    {ref}\n  {tail}"
        return text[: match.start()] + new_block + text[match.end():], "appended"

    entries = [f"./{HARDWARE_CONFIG}"] if include_hardware else []
    entries.append(ref)
    block = "\n  imports = [\n" + "".join(f"    {e}\n" for e in entries) + "  ];\n"

    header = _FUNCTION_BODY_RE.search(text)
    if header:
        at = header.end()
    elif "{" in text:
        at = text.index("{") + 1
    else:
        wrapped = "{ config, pkgs, ... }:\n\n{" + block + "\n" + text + "\n}\n"
        return wrapped, "wrapped"
    return text[:at] + block + text[at:], "synthesized"


# ═══════════════════════════════════════════════════════════════════════
#  Stateful apply
# ═══════════════════════════════════════════════════════════════════════


@dataclass
class NixPatchResult:
    """What ``NixosPatcher.apply`` did."""

    module_path: str = ""
    backup_path: str = ""
    import_action: str = ""
    rebuild: str = ""  # succeeded, skipped, not_needed

    def to_dict(self) -> dict:
        return asdict(self)


class NixosPatcher:
    """Apply package-list payloads to a NixOS configuration.

    Args:
        runner: Shared privilege capability.
        confirm: Yes/no prompt; called once before rebuilding.
        config_path: Main ``configuration.nix``.
        modules_dir: Directory for generated modules.  Must be the
            ``aperium-modules`` sibling of the configuration for the
            relative import to resolve.
        rebuild_command: Command run (elevated) to apply the change.
        validate: Parse the patched file with ``nix-instantiate`` first.
    """

    def __init__(
        self,
        runner: PrivilegedRunner,
        confirm: Callable[[str], bool],
        *,
        config_path: Path = Path("/etc/nixos/configuration.nix"),
        modules_dir: Path = Path("/etc/nixos") / MODULES_SUBDIR,
        rebuild_command: list[str] | None = None,
        validate: bool = True,
    ) -> None:
        self.runner = runner
        self.confirm = confirm
        self.config_path = config_path
        self.modules_dir = modules_dir
        self.rebuild_command = rebuild_command or ["nixos-rebuild", "switch"]
        self.validate = validate

    def apply(self, packages: str, name: str) -> NixPatchResult:
        """Install the comma-separated *packages* for package *name*.

        Raises:
            PatchError: Any of steps 1-4 failed.
            ExecutionError: The rebuild ran and failed.
        """
        result = NixPatchResult()
        package_list = parse_package_list(packages)
        if not package_list:
            logger.info('NixOS package list for "%s" is empty.', name)
            result.rebuild = "not_needed"
            return result

        self._privileged(
            ["mkdir", "-p", str(self.modules_dir)],
            f"Ensuring module directory exists: {self.modules_dir}",
            "Failed to create module directory",
        )

        backup = self.backup_path()
        if backup.exists():
            raise PatchError(f"Backup {backup} already exists; refusing to overwrite it")
        self._privileged(
            ["cp", "-p", str(self.config_path), str(backup)],
            f"Backing up {self.config_path} to {backup}",
            f"Failed to back up {self.config_path}",
        )
        result.backup_path = str(backup)

        module_path = self.modules_dir / module_file_name(name)
        self._install_text(render_module(package_list), module_path, "Failed to create NixOS module")
        result.module_path = str(module_path)
        logger.info('Created NixOS module for "%s" at %s', name, module_path)

        result.import_action = self._patch_config(name)

        if not self.confirm("Do you want to rebuild your system now?"):
            logger.warning(
                "NixOS rebuild skipped. Remember to run `sudo %s`.",
                " ".join(self.rebuild_command),
            )
            result.rebuild = "skipped"
            return result

        outcome = self.runner.run(
            self.rebuild_command,
            message="Rebuilding NixOS system... This may take a while.",
            stream=True,
        )
        if not outcome["ok"]:
            raise ExecutionError(
                f"NixOS rebuild failed: {outcome['error']}. "
                f"{self.config_path} stays edited; fix it and rebuild manually.",
                exit_code=outcome.get("returncode"),
                spawn_failed=outcome.get("spawn_failed", False),
            )
        result.rebuild = "succeeded"
        return result

    # ── Steps ────────────────────────────────────────────────────

    def backup_path(self) -> Path:
        """Timestamped sibling of the configuration, unique to the microsecond."""
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return self.config_path.with_name(f"{self.config_path.name}.bak_aper_{stamp}")

    def _patch_config(self, name: str) -> str:
        try:
            current = self.config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise PatchError(f"Cannot read {self.config_path}: {e}") from e

        include_hw = (self.config_path.parent / HARDWARE_CONFIG).exists()
        patched, action = patch_imports(current, module_reference(name), include_hardware=include_hw)

        if action == "unchanged":
            logger.info("Import for %s already exists in %s", module_file_name(name), self.config_path)
            return action
        if action != "appended":
            logger.warning(
                "No existing 'imports' block found in %s; adding a new one.", self.config_path
            )

        self._install_text(patched, self.config_path, f"Failed to update {self.config_path}")
        logger.info("Added import for %s to %s", module_file_name(name), self.config_path)
        return action

    def _install_text(self, content: str, dest: Path, failure: str) -> None:
        """Stage *content* in a temp file and install it at *dest* (privileged)."""
        fd, tmp_name = tempfile.mkstemp(prefix="aperium_", suffix=".nix")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if dest == self.config_path:
                self._check_syntax(tmp)
            self._privileged(
                ["install", "-m", "0644", str(tmp), str(dest)],
                f"Writing {dest}",
                failure,
            )
        finally:
            tmp.unlink(missing_ok=True)

    def _check_syntax(self, path: Path) -> None:
        if not self.validate:
            return
        tool = shutil.which("nix-instantiate")
        if tool is None:
            logger.debug("nix-instantiate not found; skipping syntax check")
            return
        proc = subprocess.run([tool, "--parse", str(path)], capture_output=True, text=True)
        if proc.returncode != 0:
            raise PatchError(
                f"Patched configuration does not parse; {self.config_path} left untouched:\n"
                f"{proc.stderr.strip()}"
            )

    def _privileged(self, cmd: list[str], message: str, failure: str) -> None:
        outcome = self.runner.run(cmd, message=message)
        if not outcome["ok"]:
            detail = outcome.get("stderr") or outcome["error"]
            raise PatchError(f"{failure}: {detail}")
