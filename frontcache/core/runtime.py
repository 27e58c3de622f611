"""
Assembles the store, API client, hash registry and content cache for one
process and owns their lifecycle.
"""

import logging
from pathlib import Path

from frontcache.api.client import FrontendAPIClient
from frontcache.models.config import CacheConfig
from frontcache.models.stats import MetricsSink
from frontcache.security.url_policy import UrlValidator
from frontcache.storage.content_cache import ContentCache
from frontcache.storage.encrypted_store import EncryptedStore
from frontcache.storage.hash_registry import HashRegistry
from frontcache.utils.structured_logger import (
    CacheEventLogger,
    StoreEventLogger,
    StructuredLogger,
)

log = logging.getLogger(__name__)


class CacheRuntime:
    """
    The single set of cache collaborators for a process.

    Use as an async context manager: entering starts the background sweep
    (and sync, when requested); leaving stops the tasks, closes the HTTP
    session, flushes the store and closes the event log.
    """

    def __init__(
        self,
        config: CacheConfig,
        validator: UrlValidator | None = None,
        metrics: MetricsSink | None = None,
        event_log: StructuredLogger | None = None,
        background_sync: bool = False,
    ):
        self.config = config
        self.background_sync = background_sync
        self.event_log = event_log
        cache_events = CacheEventLogger(event_log) if event_log else None
        store_events = StoreEventLogger(event_log) if event_log else None

        self.store = EncryptedStore(
            Path(config.data_dir),
            encryption_key=config.encryption_key or None,
            events=store_events,
        )
        self.client = FrontendAPIClient(
            config.base_url,
            files_endpoint=config.files_endpoint,
            hashes_endpoint=config.hashes_endpoint,
            list_endpoint=config.list_endpoint,
            cache_buster=config.cache_buster,
        )
        self.hash_registry = (
            HashRegistry(self.client, self.store, ttl_ms=config.manifest_ttl)
            if config.validation_mode == "hash"
            else None
        )
        self.cache = ContentCache(
            self.store,
            self.client,
            config,
            hash_registry=self.hash_registry,
            validator=validator,
            metrics=metrics,
            events=cache_events,
        )
        log.debug(
            f"Cache runtime ready (mode={self.cache.validation_mode}, "
            f"data_dir={config.data_dir})"
        )

    async def __aenter__(self) -> "CacheRuntime":
        await self.cache.start_background_sweep()
        if self.background_sync:
            await self.cache.start_background_sync()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        await self.cache.stop_background_tasks()
        await self.client.close()
        self.store.close()
        if self.event_log:
            self.event_log.close()
