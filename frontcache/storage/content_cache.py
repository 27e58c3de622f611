"""
A content cache for frontend pages and assets, layered on the encrypted store.

Entries are validated either by age (time mode) or against the server's hash
manifest (hash mode). Misses are fetched with exponential backoff; when every
attempt fails a stale copy is preferred over an error, and requests made while
offline are queued for a single replay once connectivity returns.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from contextlib import suppress

import aiohttp

from frontcache.api.backoff import ExponentialBackoff
from frontcache.api.client import AssetLister, FrontendAPIClient
from frontcache.exceptions import (
    FrontcacheError,
    NotFoundError,
    RateLimitedError,
    TransientFetchError,
    UnsafeUrlError,
)
from frontcache.models.config import CacheConfig
from frontcache.models.entries import (
    CacheEntry,
    OfflineQueueEntry,
    ReplaySummary,
    now_ms,
)
from frontcache.models.stats import CacheStats, MetricsSink
from frontcache.security.url_policy import AllowListUrlValidator, UrlValidator
from frontcache.utils.structured_logger import CacheEventLogger

from .encrypted_store import EncryptedStore
from .hash_registry import HashRegistry, compute_digest

log = logging.getLogger(__name__)


class ContentCache:
    """
    Serves remote files through the encrypted store with retry, stale-serve
    and offline queueing, plus background refresh and sweep tasks.
    """

    PAGES_BASE = "pages/"
    ASSETS_BASE = ""

    def __init__(
        self,
        store: EncryptedStore,
        client: FrontendAPIClient,
        config: CacheConfig,
        hash_registry: HashRegistry | None = None,
        validator: UrlValidator | None = None,
        metrics: MetricsSink | None = None,
        asset_lister: AssetLister | None = None,
        backoff: ExponentialBackoff | None = None,
        events: CacheEventLogger | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initializes the content cache.

        Args:
            store: The process-wide encrypted store.
            client: Transport for the frontend API.
            config: Validated cache settings.
            hash_registry: Enables hash-based validation when given; time-based
                validation is used otherwise.
            validator: URL policy; defaults to an allow-list built from config.
            metrics: External sink notified of every hit or miss.
            asset_lister: Source of CSS/JS names for background refresh.
            backoff: Retry policy; defaults to the config's retry settings.
            events: Optional structured event logger.
            clock: Millisecond clock, injectable for tests.
        """
        self._store = store
        self._client = client
        self._config = config
        self._hash_registry = hash_registry
        self._validator = validator or AllowListUrlValidator(
            [*config.allowed_domains, config.base_host]
        )
        self._metrics = metrics
        self._asset_lister = asset_lister or client
        self._backoff = backoff or ExponentialBackoff(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )
        self._events = events
        self._clock = clock

        self.stats = CacheStats()
        self._online = True
        self._offline_queue: list[OfflineQueueEntry] = []
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._sync_task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None

    @property
    def validation_mode(self) -> str:
        return "hash" if self._hash_registry is not None else "time"

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def offline_queue(self) -> tuple[OfflineQueueEntry, ...]:
        return tuple(self._offline_queue)

    def storage_key(self, path_rel: str) -> str:
        return self._config.storage_prefix + path_rel

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock

    def _record_outcome(self, hit: bool) -> None:
        self.stats.record_cache_outcome(hit)
        if self._metrics:
            self._metrics.record_cache_outcome(hit)

    # Public API

    async def fetch_file(self, path: str, ttl: int | None = None) -> CacheEntry:
        """Fetches a page file, e.g. ``login/index.html``."""
        effective_ttl = ttl if ttl is not None else self._config.page_ttl
        return await self.fetch_with_cache(path, self.PAGES_BASE, effective_ttl)

    async def fetch_asset(self, path: str, ttl: int | None = None) -> CacheEntry:
        """Fetches an asset; ``path`` already includes ``assets/``."""
        effective_ttl = ttl if ttl is not None else self._config.asset_ttl
        return await self.fetch_with_cache(path, self.ASSETS_BASE, effective_ttl)

    def clear(self, path: str) -> None:
        """Drops the cached entry for one logical path."""
        self._store.remove(self.storage_key(path))

    def clear_all(self) -> int:
        """Drops every cached file. Returns the number of removed entries."""
        keys = self._store.keys(self._config.storage_prefix)
        for key in keys:
            self._store.remove(key)
        log.info(f"Cleared {len(keys)} cached files.")
        return len(keys)

    async def fetch_with_cache(
        self, path_rel: str, base_path: str, ttl: int | None
    ) -> CacheEntry:
        """
        Returns the content for ``base_path + path_rel``.

        Args:
            path_rel: Logical path, also used for the storage key.
            base_path: Prefix under the files endpoint (``pages/`` or ``""``).
            ttl: Max entry age in milliseconds for time mode; None never expires.

        Raises:
            UnsafeUrlError: The URL is rejected by the policy.
            NotFoundError: The server answered 404.
            RateLimitedError: The server answered 429.
            TransientFetchError: All attempts failed and no stale copy exists.
        """
        return await self._fetch(path_rel, base_path, ttl, queue_on_failure=True)

    # Fetch pipeline

    async def _fetch(
        self, path_rel: str, base_path: str, ttl: int | None, queue_on_failure: bool
    ) -> CacheEntry:
        key = self.storage_key(path_rel)
        file_path = f"{base_path}{path_rel}"
        url = self._client.file_url(file_path)

        if not self._validator.is_safe(url):
            raise UnsafeUrlError(f"Unsafe URL blocked: {url}", path=path_rel)

        async with self._lock_for(key):
            cached = CacheEntry.from_dict(self._store.get(key))
            if cached:
                fresh = await self._validate(key, cached, file_path, ttl)
                if fresh:
                    self._record_outcome(True)
                    return fresh

            log.debug(f"Fetching {url}")
            try:
                return await self._fetch_with_retry(key, path_rel, url, cached)
            except TransientFetchError as e:
                return self._fallback(
                    path_rel, base_path, ttl, cached, e, queue_on_failure
                )

    async def _validate(
        self, key: str, cached: CacheEntry, file_path: str, ttl: int | None
    ) -> CacheEntry | None:
        """Returns the entry when it may be served as is, otherwise None."""
        now = self._clock()

        if self._hash_registry is None:
            if ttl is None or cached.age_ms(now) < ttl:
                self._log_hit(file_path, cached, now, "ttl")
                return cached
            return None

        expected = await self._hash_registry.get_hash(file_path)
        if expected is None:
            if self._config.trust_unmapped_paths:
                self._log_hit(file_path, cached, now, "unmapped")
                return cached
            return None

        digest = compute_digest(cached.content)
        if digest != expected:
            log.debug(f"Hash mismatch for {file_path}: {digest} != {expected}")
            return None

        # Confirmed by the manifest: refresh the timestamp so sweeps keep it.
        refreshed = dataclasses.replace(cached, fetched_at=now, hash=digest)
        self._store.set(key, refreshed.to_dict())
        self._log_hit(file_path, cached, now, "hash")
        return refreshed

    def _log_hit(self, path: str, entry: CacheEntry, now: int, reason: str) -> None:
        age_s = entry.age_ms(now) / 1000
        log.debug(f"Cache hit for {path} ({age_s:.0f}s old, {reason})")
        if self._events:
            self._events.cache_hit(path, age_s, reason)

    async def _fetch_with_retry(
        self, key: str, path_rel: str, url: str, cached: CacheEntry | None
    ) -> CacheEntry:
        # Conditional requests only make sense when freshness is clock based.
        etag = cached.etag if cached and self._hash_registry is None else None
        last_error: TransientFetchError | None = None

        for attempt in range(1, self._backoff.max_attempts + 1):
            try:
                response = await self._client.get_file(url, etag=etag)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = TransientFetchError(
                    f"Request failed for {path_rel}: {e}", path=path_rel
                )
            else:
                if response.status == 304 and cached:
                    refreshed = dataclasses.replace(cached, fetched_at=self._clock())
                    self._store.set(key, refreshed.to_dict())
                    log.debug(f"Cache hit for {path_rel} (304 Not Modified)")
                    self._record_outcome(True)
                    return refreshed

                if 200 <= response.status < 300:
                    entry = CacheEntry(
                        content=response.text,
                        etag=response.etag,
                        fetched_at=self._clock(),
                        hash=compute_digest(response.text),
                    )
                    self._store.set(key, entry.to_dict())
                    log.debug(f"Fetched {path_rel} ({len(response.text)} bytes)")
                    if self._events:
                        self._events.cache_miss(
                            path_rel, response.status, len(response.text)
                        )
                    self._record_outcome(False)
                    return entry

                if response.status == 404:
                    raise NotFoundError(f"File not found: {path_rel}", path=path_rel)
                if response.status == 429:
                    raise RateLimitedError(
                        "Rate limit exceeded. Please try again later.", path=path_rel
                    )
                last_error = TransientFetchError(
                    f"HTTP {response.status}: {response.reason}", path=path_rel
                )

            if not self._backoff.can_retry(attempt):
                break

            delay = self._backoff.delay_for(attempt - 1)
            log.debug(
                f"Retry {attempt}/{self._backoff.max_attempts - 1} for {path_rel} "
                f"in {delay:.2f}s: {last_error}"
            )
            if self._events:
                self._events.retry_scheduled(path_rel, attempt, delay, str(last_error))
            if delay > 0:
                await asyncio.sleep(delay)

        raise last_error or TransientFetchError(
            f"Fetch failed for {path_rel}", path=path_rel
        )

    def _fallback(
        self,
        path_rel: str,
        base_path: str,
        ttl: int | None,
        cached: CacheEntry | None,
        error: TransientFetchError,
        queue_on_failure: bool,
    ) -> CacheEntry:
        """Serves a stale copy, or queues the request when offline and re-raises."""
        log.error(f"Fetch failed for {path_rel}: {error}")

        if cached:
            log.warning(f"[yellow]Using stale cache for {path_rel}[/yellow]")
            self.stats.record_stale()
            if self._events:
                self._events.stale_served(path_rel, str(error))
            return dataclasses.replace(cached, stale=True)

        if not self._online and queue_on_failure:
            self._offline_queue.append(OfflineQueueEntry(path_rel, base_path, ttl))
            self.stats.record_queued()
            log.info(f"Queued {path_rel} for replay when back online.")
            if self._events:
                self._events.queued_offline(path_rel, len(self._offline_queue))

        raise error

    # Connectivity

    async def set_online_status(self, online: bool) -> ReplaySummary:
        """
        Records connectivity. Going from offline to online drains the queue.

        Returns:
            The replay outcome (empty when nothing was replayed).
        """
        was_offline = not self._online
        self._online = online
        log.info(f"Network status changed: {'ONLINE' if online else 'OFFLINE'}")

        if online and was_offline and self._offline_queue:
            return await self.process_offline_queue()
        return ReplaySummary()

    async def process_offline_queue(self) -> ReplaySummary:
        """Replays every queued request exactly once; failures are dropped."""
        queue, self._offline_queue = self._offline_queue, []
        summary = ReplaySummary()
        if not queue:
            return summary

        log.info(f"Replaying {len(queue)} queued requests.")
        for item in queue:
            try:
                await self._fetch(
                    item.path_rel, item.base_path, item.ttl, queue_on_failure=False
                )
            except Exception as e:
                summary.failed.append(item.path_rel)
                log.warning(f"Failed to sync {item.path_rel}: {e}")
                if self._events:
                    self._events.replay_finished(item.path_rel, False, str(e))
            else:
                summary.synced.append(item.path_rel)
                if self._events:
                    self._events.replay_finished(item.path_rel, True)

        self.stats.record_replay(summary.total)
        log.info(
            f"Offline replay complete: {len(summary.synced)} synced, "
            f"{len(summary.failed)} failed."
        )
        return summary

    # Maintenance

    def sweep(self) -> int:
        """Removes entries older than the configured max cache age."""
        now = self._clock()
        removed = 0
        keys = self._store.keys(self._config.storage_prefix)
        for key in keys:
            entry = CacheEntry.from_dict(self._store.get(key))
            if not entry or not entry.fetched_at:
                continue
            if entry.age_ms(now) > self._config.max_cache_age:
                self._store.remove(key)
                removed += 1
        if removed:
            log.debug(f"Cache sweep: removed {removed} old entries.")
        if self._events:
            self._events.sweep_completed(removed, len(keys) - removed)
        return removed

    async def preload_pages(self, pages: list[str] | None = None) -> list[str]:
        """
        Warms the cache for frequently visited pages.

        Returns:
            The pages whose files were all fetched.
        """
        pages = self._config.preload_pages if pages is None else pages
        loaded = []
        for page in pages:
            try:
                await self.fetch_file(f"{page}/index.html")
                await self.fetch_file(f"{page}/styles.css")
            except FrontcacheError as e:
                log.debug(f"Failed to preload {page}: {e}")
                continue
            loaded.append(page)
        log.debug(f"Preloaded {len(loaded)}/{len(pages)} pages.")
        return loaded

    async def refresh_assets(self) -> int:
        """
        Re-lists CSS/JS assets and warms each through the normal fetch path.
        Skipped while offline.

        Returns:
            The number of assets fetched or confirmed.
        """
        if not self._online:
            log.debug("Offline, skipping asset refresh.")
            return 0

        css_files = await self._asset_lister.list_css_files()
        js_files = await self._asset_lister.list_js_files()
        paths = [f"assets/css/{f}" for f in css_files] + [
            f"assets/js/{f}" for f in js_files
        ]

        warmed = 0
        for path in paths:
            try:
                await self.fetch_asset(path)
                warmed += 1
            except FrontcacheError as e:
                log.debug(f"Background refresh of {path} failed: {e}")
        log.debug(f"Background refresh complete: {warmed}/{len(paths)} assets.")
        return warmed

    async def start_background_sync(self) -> None:
        """Starts the periodic asset refresh task."""
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.create_task(self._sync_loop())
            log.debug(
                f"Started background sync ({self._config.sync_interval}s interval)."
            )

    async def _sync_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._config.sync_interval)
                await self.refresh_assets()
            except asyncio.CancelledError:
                log.debug("Background sync task cancelled.")
                break
            except Exception as e:
                log.warning(f"Error in background sync loop: {e}")

    async def start_background_sweep(self) -> None:
        """Starts the periodic sweep task; the first sweep runs immediately."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            log.debug("Started cache background sweep task.")

    async def _sweep_loop(self) -> None:
        while True:
            try:
                self.sweep()
                await asyncio.sleep(self._config.sweep_interval)
            except asyncio.CancelledError:
                log.debug("Cache sweep task cancelled.")
                break
            except Exception as e:
                log.warning(f"Error in cache sweep loop: {e}")
                await asyncio.sleep(self._config.sweep_interval)

    async def stop_background_sync(self) -> None:
        """Stops only the asset refresh task."""
        task, self._sync_task = self._sync_task, None
        if task and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def stop_background_tasks(self) -> None:
        """Stops the sync and sweep tasks gracefully."""
        for task in (self._sync_task, self._sweep_task):
            if task and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._sync_task = None
        self._sweep_task = None
