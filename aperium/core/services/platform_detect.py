"""
Platform Detector — which payload family fits this host.

Reads ``/etc/os-release`` and maps ``ID`` / ``ID_LIKE`` onto the
package platform keys (``debian``, ``arch``, ``nixos``).  Anything else
comes back as the raw ``ID``; no os-release at all falls back to the
kernel name, then ``unknown``.  Never raises.
"""

from __future__ import annotations

import logging
import platform
from pathlib import Path

logger = logging.getLogger(__name__)

OS_RELEASE = Path("/etc/os-release")
UNKNOWN = "unknown"

# Checked in order, substring match on ID or ID_LIKE
_FAMILIES = ("debian", "arch", "nixos")


def parse_os_release(text: str) -> dict[str, str]:
    """Parse os-release ``KEY=value`` lines, stripping quotes."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        fields[key.strip()] = value.strip().strip("\"'")
    return fields


def detect(os_release: Path = OS_RELEASE) -> str:
    """Return the platform id of the running host.

    Returns:
        ``"debian"``, ``"arch"``, ``"nixos"``, a free-form os-release
        ID, a lower-cased kernel name (``"linux"``, ``"darwin"``), or
        ``"unknown"``.
    """
    try:
        fields = parse_os_release(os_release.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Cannot read %s: %s — falling back to kernel name", os_release, e)
        return _kernel_name()

    os_id = fields.get("ID", "").lower()
    id_like = fields.get("ID_LIKE", "").lower()

    for family in _FAMILIES:
        if family in os_id or family in id_like:
            logger.info("System detected as %s-based (ID=%s)", family, os_id or "?")
            return family

    if os_id:
        logger.warning(
            'Specific scripts for ID "%s" are not available. Attempting generic approach.',
            os_id,
        )
        return os_id
    return UNKNOWN


def _kernel_name() -> str:
    try:
        name = platform.system().strip().lower()
    except OSError:
        return UNKNOWN
    if not name:
        return UNKNOWN
    return "linux" if "linux" in name else name
