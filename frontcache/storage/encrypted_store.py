"""
A JSON-file backed key-value store whose values are encrypted at rest.

The whole map lives in memory and is rewritten to disk on every mutation
through a temp file and ``os.replace``, so a crash never leaves a
half-written store behind.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from frontcache.exceptions import DecryptionError, MigrationError, StoreError
from frontcache.utils.structured_logger import StoreEventLogger

from . import crypto

log = logging.getLogger(__name__)

# str values are envelopes (or legacy ciphertext awaiting migration); any other
# JSON value is a plain document stored as-is.
StoredValue = Any


class EncryptedStore:
    """
    Durable encrypted map with an on-disk format migration.

    Open it once at startup and hand the instance to every collaborator; call
    :meth:`close` (or use it as a context manager) at shutdown.
    """

    FORMAT_VERSION = 2
    VERSION_KEY = "_encryptionVersion"
    STORE_FILENAME = "app-storage.json"
    KEY_FILENAME = "encryption.key"

    def __init__(
        self,
        data_dir: Path,
        encryption_key: str | None = None,
        events: StoreEventLogger | None = None,
    ):
        """
        Loads the store file, resolves the key and migrates legacy values.

        Args:
            data_dir: Directory holding the store file and the key file.
            encryption_key: Optional externally supplied secret (>= 16 chars).
            events: Optional structured event logger.
        """
        self.data_dir = data_dir
        self.storage_path = data_dir / self.STORE_FILENAME
        self.key_path = data_dir / self.KEY_FILENAME
        self._events = events
        self._lock = threading.RLock()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._data: dict[str, StoredValue] = self._load()
        self._key = crypto.derive_key(
            crypto.resolve_key_material(self.key_path, encryption_key)
        )
        self.migrate()

    def __enter__(self) -> "EncryptedStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    @property
    def format_version(self) -> Any:
        """The version marker currently held by the store."""
        with self._lock:
            return self._data.get(self.VERSION_KEY)

    def _load(self) -> dict[str, StoredValue]:
        """Reads the store file; anything unreadable counts as an empty store."""
        try:
            with open(self.storage_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            if self.storage_path.exists():
                log.warning(f"Store file unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            log.warning("Store file does not hold a JSON object, starting empty.")
            return {}
        return data

    def _persist(self) -> None:
        """Writes the live map to disk. Caller must hold the lock."""
        tmp_path = self.storage_path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(json.dumps(self._data))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            raise StoreError(f"Failed to write store file: {e}") from e

    def migrate(self) -> int:
        """
        Upgrades legacy zero-IV CBC values to GCM envelopes.

        A no-op when the version marker is already current. On an unexpected
        failure the store is reset to an empty map at the current version.

        Returns:
            The number of re-encrypted entries.
        """
        with self._lock:
            previous = self._data.get(self.VERSION_KEY)
            if previous == self.FORMAT_VERSION:
                return 0

            try:
                migrated_data, migrated = self._migrate_entries()
                self._data = migrated_data
                self._persist()
            except Exception as e:
                log.warning(f"Store migration failed, starting fresh: {e}")
                if self._events:
                    self._events.migration_failed(str(e))
                self._data = {self.VERSION_KEY: self.FORMAT_VERSION}
                self._persist()
                return 0

            if migrated:
                log.info(f"Migrated {migrated} store entries to the new format.")
            if self._events:
                self._events.migrated(previous, self.FORMAT_VERSION, migrated)
            return migrated

    def _migrate_entries(self) -> tuple[dict[str, StoredValue], int]:
        if not isinstance(self._data, dict):
            raise MigrationError("In-memory store is not a mapping.")

        new_data: dict[str, StoredValue] = {self.VERSION_KEY: self.FORMAT_VERSION}
        migrated = 0
        for key, value in self._data.items():
            if key == self.VERSION_KEY:
                continue
            if isinstance(value, str) and not crypto.is_envelope(value):
                plaintext = crypto.decrypt_legacy(self._key, value)
                if plaintext is not None:
                    new_data[key] = crypto.encrypt(self._key, plaintext)
                    migrated += 1
                    continue
            new_data[key] = value
        return new_data, migrated

    def get(self, key: str) -> Any | None:
        """
        Returns the decrypted value for ``key``, or None when missing.

        A value that fails authenticated decryption wipes the entire store and
        yields None.
        """
        with self._lock:
            value = self._data.get(key)
            if value is None:
                return None
            if not isinstance(value, str):
                return value

            try:
                if crypto.is_envelope(value):
                    plaintext = crypto.decrypt(self._key, value)
                else:
                    plaintext = crypto.decrypt_legacy(self._key, value)
                    if plaintext is None:
                        return None
                return json.loads(plaintext)
            except (DecryptionError, json.JSONDecodeError) as e:
                log.error(f"Failed to decrypt store entry '{key}': {e}")
                self.wipe(reason=f"decryption failure on '{key}'")
                return None

    def set(self, key: str, value: Any) -> None:
        """Encrypts ``value`` under a fresh IV and rewrites the store file."""
        serialized = json.dumps(value)
        with self._lock:
            self._data[key] = crypto.encrypt(self._key, serialized)
            self._persist()

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            del self._data[key]
            self._persist()

    def keys(self, prefix: str = "") -> list[str]:
        """Lists stored keys starting with ``prefix`` (reserved keys excluded)."""
        with self._lock:
            return [
                k for k in self._data if k.startswith(prefix) and k != self.VERSION_KEY
            ]

    def raw(self, key: str) -> StoredValue | None:
        """Returns the value exactly as held on disk, without decrypting."""
        with self._lock:
            return self._data.get(key)

    def wipe(self, reason: str = "requested") -> None:
        """Deletes the store file and empties the in-memory map."""
        with self._lock:
            try:
                self.storage_path.unlink(missing_ok=True)
            except OSError as e:
                log.error(f"Failed to delete store file: {e}")
            self._data = {}
            log.warning(f"[yellow]Encrypted store wiped ({reason}).[/yellow]")
            if self._events:
                self._events.wiped(reason)

    def close(self) -> None:
        """Flushes the in-memory map to disk."""
        with self._lock:
            if self._data:
                self._persist()
