"""
Privileged execution — the one place that decides about ``sudo``.

A single ``PrivilegedRunner`` is built at the top of the call tree and
handed to every component that needs root (script executor, NixOS
patcher, registry).  It probes ``sudo -v`` once per process and reuses
the cached grant for every later command.

Elevation is skipped when already root or under Termux
(``TERMUX_VERSION`` set), where there is no sudo.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Any

from aperium.core.errors import ExecutionError

logger = logging.getLogger(__name__)

SUDO = "sudo"


def is_termux() -> bool:
    return "TERMUX_VERSION" in os.environ


def needs_elevation() -> bool:
    """True when commands must be prefixed with sudo."""
    if is_termux():
        return False
    return os.geteuid() != 0


class PrivilegedRunner:
    """Run commands with root rights when the host needs them.

    Args:
        elevate: Force elevation on/off.  None = :func:`needs_elevation`.
    """

    def __init__(self, elevate: bool | None = None) -> None:
        self.elevate = needs_elevation() if elevate is None else elevate
        self._granted = False

    def ensure(self) -> None:
        """Ask for sudo once (interactive); later calls are no-ops.

        Raises:
            ExecutionError: sudo missing or access denied.
        """
        if not self.elevate or self._granted:
            return
        logger.warning("Aperium needs administrator (sudo) privileges for this operation.")
        try:
            result = subprocess.run([SUDO, "-v"])
        except OSError as e:
            raise ExecutionError(f"Cannot run {SUDO}: {e}", spawn_failed=True) from e
        if result.returncode != 0:
            raise ExecutionError("Sudo access denied.", exit_code=result.returncode)
        self._granted = True

    def wrap(self, cmd: list[str]) -> list[str]:
        """Prefix *cmd* with sudo when elevating."""
        return [SUDO, *cmd] if self.elevate else list(cmd)

    def run(
        self,
        cmd: list[str],
        *,
        message: str = "",
        stream: bool = False,
    ) -> dict[str, Any]:
        """Run *cmd* (elevated if needed) and wait for it.

        No timeout: privileged steps (a rebuild in particular) may take
        as long as they take.

        Args:
            cmd: Command list, without the sudo prefix.
            message: Logged before running.
            stream: Inherit stdio instead of capturing output.

        Returns:
            ``{"ok": True, "stdout": ..., "elapsed_ms": N}`` on success,
            ``{"ok": False, "error": ..., "returncode": N, "stderr": ...}``
            on failure.  Spawn failures carry ``"spawn_failed": True``.
        """
        if message:
            logger.info(message)
        try:
            self.ensure()
        except ExecutionError as e:
            return {"ok": False, "error": str(e), "spawn_failed": e.spawn_failed}

        full = self.wrap(cmd)
        logger.debug("Running: %s", " ".join(full))
        start = time.monotonic()
        try:
            result = subprocess.run(
                full,
                capture_output=not stream,
                text=True,
            )
        except OSError as e:
            return {"ok": False, "spawn_failed": True, "error": f"Cannot run {full[0]}: {e}"}
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if result.returncode == 0:
            return {"ok": True, "stdout": result.stdout or "", "elapsed_ms": elapsed_ms}

        return {
            "ok": False,
            "error": f"Command failed (exit {result.returncode}): {' '.join(full)}",
            "returncode": result.returncode,
            "stderr": (result.stderr or "").strip(),
            "elapsed_ms": elapsed_ms,
        }
