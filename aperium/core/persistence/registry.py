"""
Installation Registry — what has been installed, and which build.

One JSON record per package name (``<registry_dir>/<name>.json``)
holding the package's combined ciphertext hash.  Re-installing the
same build is skipped; a different hash under the same name is allowed
through with a warning.

Writes are atomic (temp file in the same directory, then rename).  When
the registry directory is not writable by the current user (a system
path), the record is staged in a temp file and moved into place through
the ``PrivilegedRunner``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from aperium.core.errors import ExecutionError
from aperium.core.models.record import InstalledRecord
from aperium.core.services.privileged import PrivilegedRunner

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class InstallRegistry:
    """Per-name install records under *directory*."""

    def __init__(self, directory: Path, runner: PrivilegedRunner | None = None) -> None:
        self.directory = directory
        self.runner = runner

    def record_path(self, name: str) -> Path:
        return self.directory / f"{name}{RECORD_SUFFIX}"

    # ── Read ─────────────────────────────────────────────────────

    def get(self, name: str) -> InstalledRecord | None:
        """Return the record for *name*, or None if absent/unreadable."""
        path = self.record_path(name)
        if not path.is_file():
            return None
        try:
            return InstalledRecord.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except Exception as e:
            logger.warning("Corrupt install record %s: %s — ignoring", path, e)
            return None

    def is_installed(self, name: str, combined_hash: str) -> bool:
        """True only when *name* was registered with exactly *combined_hash*."""
        record = self.get(name)
        if record is None:
            return False
        if record.hash == combined_hash:
            return True
        logger.warning(
            'A different version of "%s" is already installed (installed %s); reinstalling.',
            name,
            record.installed_at,
        )
        return False

    def list_installed(self) -> list[InstalledRecord]:
        if not self.directory.is_dir():
            return []
        records = []
        for path in sorted(self.directory.glob(f"*{RECORD_SUFFIX}")):
            record = self.get(path.stem)
            if record is not None:
                records.append(record)
        return records

    # ── Write ────────────────────────────────────────────────────

    def register(self, name: str, combined_hash: str, tool_version: str) -> InstalledRecord:
        """Write (or overwrite) the record for *name*.

        Raises:
            ExecutionError: The record could not be written, even with
                elevation.
        """
        record = InstalledRecord(name=name, hash=combined_hash, version=tool_version)
        content = json.dumps(record.to_json_dict(), indent=2) + "\n"
        path = self.record_path(name)

        try:
            self._write_atomic(path, content)
        except PermissionError as e:
            if self.runner is None or not self.runner.elevate:
                raise ExecutionError(f"Cannot write install record {path}: {e}") from e
            logger.debug("Registry %s not writable (%s); using elevation", self.directory, e)
            self._write_privileged(self.runner, path, content)

        logger.info('Package "%s" installation recorded.', name)
        return record

    def _write_atomic(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".record_", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp, 0o644)
            tmp.replace(path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _write_privileged(self, runner: PrivilegedRunner, path: Path, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f"{path.stem}_", suffix=".json.tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            for cmd, message in (
                (["mkdir", "-p", str(path.parent)], f"Ensuring record directory exists: {path.parent}"),
                (["install", "-m", "0644", str(tmp), str(path)], f"Writing package record {path}"),
            ):
                outcome = runner.run(cmd, message=message)
                if not outcome["ok"]:
                    raise ExecutionError(
                        f"Cannot write install record {path}: "
                        f"{outcome.get('stderr') or outcome['error']}",
                        exit_code=outcome.get("returncode"),
                    )
        finally:
            tmp.unlink(missing_ok=True)
