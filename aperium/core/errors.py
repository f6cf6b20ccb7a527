"""
Error taxonomy for the installer.

Every failure the core can raise derives from ``AperiumError`` so the
CLI can catch one type, print the message and exit non-zero.  Advisory
conditions (a payload that fails to verify while *viewing*, a different
version already installed) are logged, never raised.
"""

from __future__ import annotations


class AperiumError(Exception):
    """Base class for all installer failures."""


class ConfigError(AperiumError):
    """Missing or invalid settings, key, or package descriptor."""


class InvalidPackage(ConfigError):
    """The archive is not a usable package (bad extension, no descriptor, bad JSON)."""


class CryptoError(ConfigError):
    """A payload token could not be turned back into plaintext."""


class MalformedToken(CryptoError):
    """Token lacks the ``iv:ciphertext`` shape or is not valid hex."""


class DecryptionFailure(CryptoError):
    """Cipher or padding failure — usually a different key."""


class DestinationExists(AperiumError):
    """Refusing to overwrite an existing package file."""


class IntegrityError(AperiumError):
    """Decrypted payload does not match its recorded SHA-256."""


class ExecutionError(AperiumError):
    """A privileged subprocess could not be spawned or exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        spawn_failed: bool = False,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.spawn_failed = spawn_failed


class PatchError(AperiumError):
    """A NixOS configuration step failed before the rebuild."""
