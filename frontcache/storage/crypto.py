"""
Key handling and the two encryption formats understood by the store.

Current format: AES-256-GCM with a random 12-byte IV, serialized as
``ivHex:authTagHex:ciphertextHex``. Legacy format: AES-256-CBC with a fixed
all-zero IV, serialized as bare hex. Legacy values are only ever decrypted
(during migration), never written.
"""

import logging
import os
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from frontcache.exceptions import DecryptionError

log = logging.getLogger(__name__)

MIN_KEY_LENGTH = 16
KEY_LEN = 32
IV_LEN = 12
TAG_LEN = 16
ENVELOPE_SEPARATOR = ":"

_LEGACY_IV = bytes(16)


def resolve_key_material(key_path: Path, override: str | None = None) -> str:
    """
    Resolves the raw key material.

    Priority: an explicit override of at least 16 characters, then an existing
    key file, then a freshly generated 32-byte key written to ``key_path``.
    """
    if override and len(override) >= MIN_KEY_LENGTH:
        return override

    try:
        if key_path.is_file():
            stored = key_path.read_text(encoding="utf-8").strip()
            if len(stored) >= MIN_KEY_LENGTH:
                return stored
    except OSError as e:
        log.warning(f"Could not read encryption key file: {e}")

    new_key = secrets.token_bytes(KEY_LEN).hex()
    try:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_text(new_key, encoding="utf-8")
        log.info("Generated new encryption key.")
    except OSError as e:
        log.error(f"Could not save encryption key: {e}")
    return new_key


def derive_key(material: str) -> bytes:
    """Derives the 32-byte AES key with scrypt, salted by the first 16 characters."""
    raw = material.encode("utf-8")
    kdf = Scrypt(
        salt=material[:MIN_KEY_LENGTH].encode("utf-8"),
        length=KEY_LEN,
        n=2**14,
        r=8,
        p=1,
    )
    return kdf.derive(raw)


def is_envelope(value: str) -> bool:
    """True for ``iv:tag:ct`` shaped values. Anything else goes to the legacy path."""
    return value.count(ENVELOPE_SEPARATOR) == 2


def encrypt(key: bytes, plaintext: str) -> str:
    """Encrypts ``plaintext`` into a new envelope. A fresh IV is drawn every call."""
    iv = os.urandom(IV_LEN)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]
    return ENVELOPE_SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))


def decrypt(key: bytes, envelope: str) -> str:
    """
    Opens an envelope produced by :func:`encrypt`.

    Raises:
        DecryptionError: On a malformed envelope, a wrong key or tampered data.
    """
    parts = envelope.split(ENVELOPE_SEPARATOR)
    if len(parts) != 3:
        raise DecryptionError(f"Envelope has {len(parts)} segments, expected 3.")

    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        if len(iv) != IV_LEN or len(tag) != TAG_LEN:
            raise DecryptionError("Envelope IV or auth tag has the wrong length.")
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except InvalidTag as e:
        raise DecryptionError("Authentication tag mismatch.") from e
    except (ValueError, UnicodeDecodeError) as e:
        raise DecryptionError(f"Envelope could not be decoded: {e}") from e


def decrypt_legacy(key: bytes, value: str) -> str | None:
    """Decrypts a legacy zero-IV CBC value. Returns None when it is not one."""
    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(_LEGACY_IV)).decryptor()
        padded = decryptor.update(bytes.fromhex(value)) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None


def encrypt_legacy(key: bytes, plaintext: str) -> str:
    """Produces a value in the legacy format. Used to build migration fixtures."""
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(_LEGACY_IV)).encryptor()
    return (encryptor.update(padded) + encryptor.finalize()).hex()
