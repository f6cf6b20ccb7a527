"""
Logging setup for the ``aper`` entrypoint.

Services only ever do ``logger = logging.getLogger(__name__)``; this
module decides where those records go.  User-facing output is the
click layer's job, so the console handler stays quiet (WARNING) unless
asked otherwise.

Level precedence:
    --debug  >  --verbose  >  --quiet  >  APERIUM_LOG_LEVEL  >  WARNING

An optional log file receives full detail, configured through
APERIUM_LOG_FILE and APERIUM_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import os
import sys

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}
_FMT_PLAIN = "%(message)s"
_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Pick the console level name from CLI flags and the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get("APERIUM_LOG_LEVEL", "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name.
        log_file: Optional path of a log file.
        log_file_level: Level for the file handler; defaults to ``level``.
    """
    console_level = parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def parse_level(level: str | None) -> int:
    """Level name → numeric level, WARNING for anything unrecognised."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _FMT_PLAIN, None
