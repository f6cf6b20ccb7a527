"""
Crypto Vault — host key, payload encryption and content hashing.

Payloads are encrypted with AES-256-CBC under a single 32-byte host
key kept (hex-encoded, mode 0600) in ``~/.aperium/key.enc``.  A token
is ``hex(iv) + ":" + hex(ciphertext)`` with a fresh 16-byte IV per call.

The SHA-256 of the plaintext travels next to each token and is the only
integrity check.  Anyone holding the key can re-encrypt *and* re-hash,
so this catches corruption and naive edits, not a hostile author.

The key is never module state: load it once with
``load_or_create_key()`` and pass it to every call.
"""

from __future__ import annotations

import hashlib
import logging
import os
import secrets
from pathlib import Path

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from aperium.core.errors import ConfigError, DecryptionFailure, MalformedToken

logger = logging.getLogger(__name__)

# ── Crypto constants ─────────────────────────────────────────────────
KEY_BYTES = 32
IV_BYTES = 16
BLOCK_BITS = 128
TOKEN_SEP = ":"


# ═══════════════════════════════════════════════════════════════════════
#  Key management
# ═══════════════════════════════════════════════════════════════════════


def load_or_create_key(key_file: Path) -> bytes:
    """Return the host key, creating it on first use.

    A key file that cannot be read or does not decode to exactly 32
    bytes is *replaced* with a new key.  Packages encrypted under the
    old key can no longer be decrypted after that.

    Raises:
        ConfigError: The new key cannot be written.
    """
    if not key_file.exists():
        return _write_new_key(key_file)

    try:
        key = bytes.fromhex(key_file.read_text(encoding="utf-8").strip())
        if len(key) != KEY_BYTES:
            raise ValueError(f"key is {len(key)} bytes, expected {KEY_BYTES}")
        return key
    except (OSError, ValueError) as e:
        logger.warning("Encryption key file %s is unreadable or corrupt: %s", key_file, e)
        logger.warning("Generating a new key. Packages made with the old key will not decrypt.")
        return _write_new_key(key_file)


def _write_new_key(key_file: Path) -> bytes:
    key = secrets.token_bytes(KEY_BYTES)
    try:
        key_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(key.hex())
        # O_CREAT mode is ignored for an existing file
        os.chmod(key_file, 0o600)
    except OSError as e:
        raise ConfigError(f"Cannot write encryption key {key_file}: {e}") from e
    logger.info("New encryption key created: %s", key_file)
    return key


def _check_key(key: bytes) -> None:
    if len(key) != KEY_BYTES:
        raise ConfigError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")


# ═══════════════════════════════════════════════════════════════════════
#  Encrypt / decrypt
# ═══════════════════════════════════════════════════════════════════════


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt *plaintext* into an ``iv:ciphertext`` hex token."""
    _check_key(key)
    iv = secrets.token_bytes(IV_BYTES)

    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return iv.hex() + TOKEN_SEP + ciphertext.hex()


def decrypt(token: str, key: bytes) -> str:
    """Decrypt a token produced by :func:`encrypt`.

    Raises:
        MalformedToken: No separator, bad hex, or wrong IV length.
        DecryptionFailure: Bad padding or non-UTF-8 plaintext.
    """
    _check_key(key)
    iv_hex, sep, body_hex = token.partition(TOKEN_SEP)
    if not sep:
        raise MalformedToken("Encrypted payload has no IV separator")
    try:
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(body_hex)
    except ValueError as e:
        raise MalformedToken(f"Encrypted payload is not valid hex: {e}") from e
    if len(iv) != IV_BYTES:
        raise MalformedToken(f"IV must be {IV_BYTES} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % (BLOCK_BITS // 8):
        raise MalformedToken("Ciphertext length is not a multiple of the block size")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    try:
        unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
        raw = unpadder.update(padded) + unpadder.finalize()
        return raw.decode("utf-8")
    except ValueError as e:
        # UnicodeDecodeError is a ValueError too
        raise DecryptionFailure(f"Decryption failed (wrong key?): {e}") from e


def content_hash(content: str) -> str:
    """SHA-256 hex digest of *content* (UTF-8)."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
