"""
Package Container — .apm archives.

An .apm file is a zip whose root holds ``package.json`` (the
``PackageDescriptor``).  ``.apr`` is the legacy extension and is still
accepted on load.  Archives are written once and never modified.

    create_package()  → write a new archive from per-platform scripts
    load_package()    → validate + parse an archive
    view_package()    → best-effort decrypt of every payload for display
    select_payload()  → pick what to run on a given platform
    verify_payload()  → decrypt + hash check before anything executes
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
import zipfile
from dataclasses import asdict, dataclass
from pathlib import Path

from pydantic import ValidationError

from aperium.core.errors import (
    CryptoError,
    DestinationExists,
    IntegrityError,
    InvalidPackage,
)
from aperium.core.models.package import (
    PAYLOAD_LABELS,
    PLATFORMS,
    PackageDescriptor,
    Payload,
    is_valid_name,
)
from aperium.core.services.vault import content_hash, decrypt, encrypt

logger = logging.getLogger(__name__)

DESCRIPTOR_NAME = "package.json"
PACKAGE_SUFFIX = ".apm"
LEGACY_SUFFIX = ".apr"
ACCEPTED_SUFFIXES = (PACKAGE_SUFFIX, LEGACY_SUFFIX)

DEFAULT_VERSION = "1.0.0"
DEFAULT_DESCRIPTION = "Aperium Package"


# ═══════════════════════════════════════════════════════════════════════
#  Create
# ═══════════════════════════════════════════════════════════════════════


def create_package(
    name: str,
    scripts: dict[str, str],
    key: bytes,
    output_dir: Path,
    *,
    version: str = DEFAULT_VERSION,
    description: str = DEFAULT_DESCRIPTION,
) -> Path:
    """Encrypt *scripts* and write ``<output_dir>/<name>.apm``.

    Args:
        name: Package name (also the registry key).
        scripts: Platform → plaintext.  Empty / whitespace-only entries
            are skipped.  For ``nixos`` the value is a comma-separated
            package list.
        key: Host encryption key.
        output_dir: Where to write the archive.

    Returns:
        Path of the new archive.

    Raises:
        InvalidPackage: Bad name or unknown platform key.
        DestinationExists: The archive already exists.
    """
    if not is_valid_name(name):
        raise InvalidPackage(f"Invalid package name: {name!r}")
    unknown = set(scripts) - set(PLATFORMS)
    if unknown:
        raise InvalidPackage(f"Unknown platform(s): {', '.join(sorted(unknown))}")

    output = output_dir / f"{name}{PACKAGE_SUFFIX}"
    if output.exists():
        raise DestinationExists(f"A file named {output.name!r} already exists: {output}")

    descriptor = PackageDescriptor(name=name, version=version, description=description)
    for platform in PLATFORMS:
        plaintext = scripts.get(platform, "")
        if not plaintext.strip():
            continue
        descriptor.set_payload(platform, encrypt(plaintext, key), content_hash(plaintext))
        logger.debug("Encrypted %s payload for %s", platform, name)

    content = json.dumps(descriptor.to_json_dict(), indent=2)
    output_dir.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output, "x", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(DESCRIPTOR_NAME, content)

    logger.info("Created package %s (%d payloads)", output, len(descriptor.payloads()))
    return output


# ═══════════════════════════════════════════════════════════════════════
#  Load
# ═══════════════════════════════════════════════════════════════════════


def load_package(archive: Path) -> PackageDescriptor:
    """Extract *archive* to a scratch directory and parse its descriptor.

    The scratch directory is removed whether or not parsing succeeds.

    Raises:
        InvalidPackage: Wrong extension, missing file, not a zip, an
            archive that cannot be read or extracted, no ``package.json``,
            or a descriptor that does not validate.
    """
    if archive.suffix.lower() not in ACCEPTED_SUFFIXES:
        raise InvalidPackage(
            f"Invalid package extension {archive.suffix or '(none)'!r}: "
            f"expected one of {', '.join(ACCEPTED_SUFFIXES)}"
        )
    if not archive.is_file():
        raise InvalidPackage(f"Package file not found: {archive}")

    scratch = Path(tempfile.mkdtemp(prefix="aperium_extract_"))
    try:
        try:
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(scratch)
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise InvalidPackage(f"{archive.name} is not a valid package archive: {e}") from e
        except (NotImplementedError, RuntimeError) as e:
            # unsupported compression method, encrypted entry
            raise InvalidPackage(f"Cannot extract {archive.name}: {e}") from e
        except OSError as e:
            raise InvalidPackage(f"Cannot read {archive.name}: {e}") from e

        descriptor_path = scratch / DESCRIPTOR_NAME
        if not descriptor_path.is_file():
            raise InvalidPackage(f"'{DESCRIPTOR_NAME}' not found in {archive.name}. Invalid package.")

        try:
            data = json.loads(descriptor_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidPackage(f"Unparsable {DESCRIPTOR_NAME} in {archive.name}: {e}") from e

        if not isinstance(data, dict):
            raise InvalidPackage(f"{DESCRIPTOR_NAME} in {archive.name} is not a JSON object")

        try:
            descriptor = PackageDescriptor.model_validate(data)
        except ValidationError as e:
            raise InvalidPackage(f"Invalid {DESCRIPTOR_NAME} in {archive.name}: {e}") from e
    finally:
        shutil.rmtree(scratch, ignore_errors=True)

    logger.info("Loaded package %s %s from %s", descriptor.name, descriptor.version, archive)
    return descriptor


# ═══════════════════════════════════════════════════════════════════════
#  Select / verify
# ═══════════════════════════════════════════════════════════════════════


def select_payload(descriptor: PackageDescriptor, platform: str) -> Payload | None:
    """Pick the payload to run on *platform*.

    A generic script wins on every platform; otherwise the payload for
    the detected platform; otherwise None.
    """
    generic = descriptor.payload("generic")
    if generic is not None:
        return generic
    if platform in PLATFORMS:
        return descriptor.payload(platform)
    return None


def verify_payload(payload: Payload, key: bytes) -> str:
    """Decrypt *payload* and check its plaintext hash.

    Raises:
        CryptoError: Token malformed or undecryptable.
        IntegrityError: Plaintext hash differs from the recorded one.
    """
    plaintext = decrypt(payload.ciphertext, key)
    if content_hash(plaintext) != payload.digest:
        raise IntegrityError(f"{payload.label} could not be verified! Hash mismatch.")
    logger.info("%s successfully verified.", payload.label)
    return plaintext


# ═══════════════════════════════════════════════════════════════════════
#  View
# ═══════════════════════════════════════════════════════════════════════


@dataclass
class PayloadView:
    """Display result for one platform slot."""

    platform: str
    label: str
    present: bool = False
    verified: bool = False
    plaintext: str | None = None
    warning: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def view_package(descriptor: PackageDescriptor, key: bytes) -> list[PayloadView]:
    """Decrypt every payload for inspection.

    Failures are per-payload warnings, never exceptions: viewing is
    diagnostic.  Plaintext is only returned for payloads that verify.
    """
    views: list[PayloadView] = []
    for platform in PLATFORMS:
        payload = descriptor.payload(platform)
        if payload is None:
            views.append(PayloadView(platform=platform, label=PAYLOAD_LABELS[platform]))
            continue

        view = PayloadView(platform=platform, label=payload.label, present=True)
        try:
            view.plaintext = verify_payload(payload, key)
            view.verified = True
        except IntegrityError:
            view.warning = f"{payload.label} hash verification failed. It may have been tampered with."
        except CryptoError as e:
            view.warning = f"Failed to decrypt {payload.label}: {e}"
        if view.warning:
            logger.warning(view.warning)
        views.append(view)
    return views
