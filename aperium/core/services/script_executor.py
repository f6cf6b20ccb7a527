"""
Script Executor — run a verified shell payload as root.

The script is rewritten so common package-manager calls do not stop
for confirmation, written to a private 0700 temp file, and run through
``bash`` via the ``PrivilegedRunner``.  A ticker calls ``progress``
every half second while the child runs.  The temp file is removed on
every path.

The rewrite is a textual heuristic, not a sandbox.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from aperium.core.errors import ExecutionError
from aperium.core.services.privileged import PrivilegedRunner

logger = logging.getLogger(__name__)

STDERR_LIMIT = 1024
TICK_SECONDS = 0.5
SHELL = "bash"

# (pattern, replacement); lookaheads keep an existing flag from being doubled
_NON_INTERACTIVE: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(apt(?:-get)?\s+install)\b(?!\s+(?:-y|--yes|--assume-yes)(?![\w-]))"), r"\1 -y"),
    (re.compile(r"\b(pacman\s+-S[a-z]*)(?![\w-])(?!.*--noconfirm)"), r"\1 --noconfirm"),
    (re.compile(r"\b((?:dnf|yum)\s+install)\b(?!\s+(?:-y|--assumeyes)(?![\w-]))"), r"\1 -y"),
    (re.compile(r"\b(zypper\s+install)\b(?!\s+(?:-y|--no-confirm)(?![\w-]))"), r"\1 -y"),
]


def make_non_interactive(script: str) -> str:
    """Insert assume-yes flags into known package-manager invocations.

    >>> make_non_interactive("apt install htop")
    'apt install -y htop'
    """
    for pattern, replacement in _NON_INTERACTIVE:
        script = pattern.sub(replacement, script)
    return script


def truncate_stderr(stderr: str, limit: int = STDERR_LIMIT) -> str:
    if len(stderr) <= limit:
        return stderr
    return stderr[:limit] + "..."


class ScriptExecutor:
    """Runs plaintext install scripts.

    Args:
        runner: Shared privilege capability.
        progress: Called every ``TICK_SECONDS`` while a script runs.
    """

    def __init__(
        self,
        runner: PrivilegedRunner,
        progress: Callable[[], None] | None = None,
    ) -> None:
        self.runner = runner
        self.progress = progress

    def run(self, script: str, label: str) -> None:
        """Execute *script* for package *label*.

        Raises:
            ExecutionError: Spawn failure (``spawn_failed=True``) or a
                non-zero exit (``exit_code`` + first 1KB of stderr).
        """
        if not script.strip():
            logger.info('Script content to run for "%s" is empty.', label)
            return

        script = make_non_interactive(script)
        self.runner.ensure()

        fd, tmp_name = tempfile.mkstemp(prefix="aper_script_", suffix=".sh")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(script)
            os.chmod(tmp_path, 0o700)

            cmd = self.runner.wrap([SHELL, str(tmp_path)])
            logger.info('Running installation script for "%s"...', label)
            returncode, stderr = self._spawn(cmd, label)
        finally:
            tmp_path.unlink(missing_ok=True)

        if returncode != 0:
            logger.error('"%s" installation exited with code %d.', label, returncode)
            raise ExecutionError(
                f'Installation "{label}" failed (exit {returncode}).',
                exit_code=returncode,
                stderr=truncate_stderr(stderr),
            )
        logger.info('Installation script for "%s" completed successfully.', label)

    def _spawn(self, cmd: list[str], label: str) -> tuple[int, str]:
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise ExecutionError(
                f'Could not run "{label}" installation script: {e}',
                spawn_failed=True,
            ) from e

        stop = threading.Event()
        ticker = None
        if self.progress is not None:
            ticker = threading.Thread(target=self._tick, args=(stop,), daemon=True)
            ticker.start()
        try:
            stdout, stderr = proc.communicate()
        finally:
            stop.set()
            if ticker is not None:
                ticker.join()

        if stdout:
            logger.debug("%s stdout:\n%s", label, stdout[-2000:])
        return proc.returncode, stderr or ""

    def _tick(self, stop: threading.Event) -> None:
        while not stop.wait(TICK_SECONDS):
            self.progress()
