"""
Keeps the server's content-hash manifest, the authority on whether cached
content is still current.
"""

import asyncio
import hashlib
import logging
from collections.abc import Callable

import aiohttp

from frontcache.api.client import FrontendAPIClient
from frontcache.models.entries import HashManifest, normalize_path, now_ms

from .encrypted_store import EncryptedStore

log = logging.getLogger(__name__)

DIGEST_LENGTH = 16


def compute_digest(content: str) -> str:
    """First 16 hex characters of the SHA-256 of ``content``."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


class HashRegistry:
    """
    Fetches and caches the hash manifest.

    A fresh manifest (younger than ``ttl_ms``) is served from memory or the
    store. When a refresh fails, the last known manifest is returned whatever
    its age, so an unreachable manifest endpoint never blocks the cache.
    """

    STORE_KEY = "hash-registry:manifest"

    def __init__(
        self,
        client: FrontendAPIClient,
        store: EncryptedStore,
        ttl_ms: int = 5 * 60 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self._client = client
        self._store = store
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._manifest: HashManifest | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def cached(self) -> HashManifest | None:
        """The manifest held in memory or the store, without any network call."""
        if self._manifest is None:
            self._manifest = HashManifest.from_dict(self._store.get(self.STORE_KEY))
        return self._manifest

    async def get_manifest(self) -> HashManifest | None:
        """
        Returns the current manifest, refreshing it once the TTL has elapsed.

        Returns:
            The manifest, or None if none was ever fetched successfully.
        """
        async with self._refresh_lock:
            cached = self.cached
            if cached and cached.is_fresh(self._clock(), self.ttl_ms):
                return cached

            try:
                manifest = await self._fetch()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                if cached:
                    log.warning(
                        f"Hash manifest refresh failed, using cached version "
                        f"{cached.version!r}: {e}"
                    )
                else:
                    log.warning(f"Hash manifest unavailable: {e}")
                return cached

            self._manifest = manifest
            self._store.set(self.STORE_KEY, manifest.to_dict())
            log.debug(
                f"Hash manifest {manifest.version!r} loaded "
                f"({len(manifest.assets)} entries)."
            )
            return manifest

    async def _fetch(self) -> HashManifest:
        data = await self._client.fetch_hashes()
        if not isinstance(data, dict) or not data.get("success"):
            raise ValueError("Hash manifest response was not successful.")

        inner = data.get("data")
        if not isinstance(inner, dict) or not isinstance(inner.get("assets"), dict):
            raise ValueError("Hash manifest response has no asset map.")

        manifest = HashManifest.from_dict(
            {
                "version": inner.get("version", ""),
                "data": {"assets": inner["assets"]},
                "fetchedAt": self._clock(),
            }
        )
        if manifest is None:
            raise ValueError("Hash manifest could not be parsed.")
        return manifest

    async def get_hash(self, path: str) -> str | None:
        """Digest registered for ``path``, or None when the path is unmapped."""
        manifest = await self.get_manifest()
        if manifest is None:
            return None
        return manifest.get(normalize_path(path))

    def invalidate(self) -> None:
        """Drops the cached manifest so the next lookup refetches it."""
        self._manifest = None
        self._store.remove(self.STORE_KEY)
