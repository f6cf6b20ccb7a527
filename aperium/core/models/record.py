"""
InstalledRecord — one file per installed package in the registry.

Serialized as ``{"name", "hash", "installedAt", "version"}`` where
``hash`` is the package's combined ciphertext hash and ``version`` is
the version of *this tool* that performed the install.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class InstalledRecord(BaseModel):
    """Registry entry for an installed package."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    hash: str
    installed_at: str = Field(default_factory=_now_iso, alias="installedAt")
    version: str = ""

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)
