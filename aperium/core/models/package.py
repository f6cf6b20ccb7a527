"""
PackageDescriptor — the ``package.json`` entry of an .apm archive.

Each platform payload is an ``(enc, hash)`` pair stored as two flat
camelCase keys (``debianScriptEnc`` / ``debianScriptHash``).  ``enc`` is
an ``iv:ciphertext`` token from the vault; ``hash`` is the SHA-256 of
the *plaintext*.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PLATFORMS = ("generic", "arch", "debian", "nixos")

# platform → (enc attribute, hash attribute)
_PAYLOAD_FIELDS: dict[str, tuple[str, str]] = {
    "generic": ("generic_script_enc", "generic_script_hash"),
    "arch": ("arch_script_enc", "arch_script_hash"),
    "debian": ("debian_script_enc", "debian_script_hash"),
    "nixos": ("nixos_packages_enc", "nixos_packages_hash"),
}

# Order in which ciphertexts are concatenated for the combined hash.
_COMBINED_ORDER = ("arch", "debian", "nixos", "generic")

PAYLOAD_LABELS = {
    "generic": "Generic Bash installation script",
    "arch": "Arch installation script",
    "debian": "Debian installation script",
    "nixos": "NixOS package list",
}

# Names end up as file names (registry record, Nix module).
_NAME_RE = re.compile(r"^[A-Za-z0-9_+-][A-Za-z0-9._+-]*$")


def is_valid_name(name: str) -> bool:
    return bool(_NAME_RE.match(name))


@dataclass(frozen=True)
class Payload:
    """One encrypted platform payload."""

    platform: str
    ciphertext: str
    digest: str

    @property
    def label(self) -> str:
        return PAYLOAD_LABELS[self.platform]


class PackageDescriptor(BaseModel):
    """Metadata plus per-platform encrypted payloads."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    version: str = "1.0.0"
    description: str = ""

    generic_script_enc: str | None = Field(default=None, alias="genericScriptEnc")
    generic_script_hash: str | None = Field(default=None, alias="genericScriptHash")
    arch_script_enc: str | None = Field(default=None, alias="archScriptEnc")
    arch_script_hash: str | None = Field(default=None, alias="archScriptHash")
    debian_script_enc: str | None = Field(default=None, alias="debianScriptEnc")
    debian_script_hash: str | None = Field(default=None, alias="debianScriptHash")
    nixos_packages_enc: str | None = Field(default=None, alias="nixosPackagesEnc")
    nixos_packages_hash: str | None = Field(default=None, alias="nixosPackagesHash")

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not is_valid_name(value):
            raise ValueError(f"invalid package name: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_pairs(self) -> PackageDescriptor:
        for platform, (enc_attr, hash_attr) in _PAYLOAD_FIELDS.items():
            if getattr(self, enc_attr) and not getattr(self, hash_attr):
                raise ValueError(f"{platform} payload has no content hash")
        return self

    # ── Payload access ───────────────────────────────────────────

    def payload(self, platform: str) -> Payload | None:
        """Return the payload for *platform*, or None when absent/empty."""
        enc_attr, hash_attr = _PAYLOAD_FIELDS[platform]
        ciphertext = getattr(self, enc_attr)
        if not ciphertext:
            return None
        return Payload(platform=platform, ciphertext=ciphertext, digest=getattr(self, hash_attr))

    def set_payload(self, platform: str, ciphertext: str, digest: str) -> None:
        enc_attr, hash_attr = _PAYLOAD_FIELDS[platform]
        setattr(self, enc_attr, ciphertext)
        setattr(self, hash_attr, digest)

    def payloads(self) -> list[Payload]:
        """All present payloads, in ``PLATFORMS`` order."""
        return [p for p in (self.payload(name) for name in PLATFORMS) if p is not None]

    def combined_hash(self) -> str:
        """SHA-256 over the concatenated ciphertexts of every present payload.

        Identifies one exact build of a package in the registry.
        """
        joined = "".join(getattr(self, _PAYLOAD_FIELDS[p][0]) or "" for p in _COMBINED_ORDER)
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()

    def to_json_dict(self) -> dict:
        """Serialized form written to ``package.json``."""
        return self.model_dump(by_alias=True, exclude_none=True)
