import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from frontcache.api.backoff import ExponentialBackoff
from frontcache.api.client import FrontendAPIClient
from frontcache.exceptions import (
    NotFoundError,
    RateLimitedError,
    TransientFetchError,
    UnsafeUrlError,
)
from frontcache.models.entries import CacheEntry, OfflineQueueEntry
from frontcache.storage.content_cache import ContentCache
from frontcache.storage.encrypted_store import EncryptedStore
from frontcache.storage.hash_registry import HashRegistry, compute_digest
from tests.conftest import TEST_KEY, file_url

LOGIN = "login/index.html"
LOGIN_URL = file_url(f"pages/{LOGIN}")
LOGIN_KEY = f"api-cache:{LOGIN}"
TTL = 600_000


def request_count(mock_http: aioresponses, url: str) -> int:
    return len(mock_http.requests.get(("GET", URL(url)), []))


def seed(store, key: str, content: str, fetched_at: int, etag: str | None = None):
    store.set(
        key,
        CacheEntry(content, etag, fetched_at, compute_digest(content)).to_dict(),
    )


class RecordingSink:
    def __init__(self):
        self.outcomes = []

    def record_cache_outcome(self, hit: bool) -> None:
        self.outcomes.append(hit)


class FakeLister:
    def __init__(self, css, js):
        self.css = css
        self.js = js

    async def list_css_files(self):
        return self.css

    async def list_js_files(self):
        return self.js


# Time-based validation


@pytest.mark.asyncio
async def test_first_fetch_stores_entry_and_repeat_is_served_from_cache(
    make_cache, store, clock
):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=200, body="<html>OK</html>", headers={"ETag": "abc"})

        first = await cache.fetch_with_cache(LOGIN, "pages/", TTL)
        second = await cache.fetch_with_cache(LOGIN, "pages/", TTL)

        assert request_count(mock_http, LOGIN_URL) == 1

    assert first.content == "<html>OK</html>"
    assert first.etag == "abc"
    assert first.fetched_at == clock.now
    assert second == first
    assert store.get(LOGIN_KEY) == {
        "content": "<html>OK</html>",
        "etag": "abc",
        "fetchedAt": clock.now,
        "hash": compute_digest("<html>OK</html>"),
    }
    assert cache.stats.misses == 1
    assert cache.stats.hits == 1


@pytest.mark.asyncio
async def test_expired_entry_sends_etag_and_304_refreshes_timestamp(
    make_cache, store, clock
):
    seed(store, LOGIN_KEY, "<html>OK</html>", clock.now, etag="abc")
    clock.advance(TTL + 1)
    cache = make_cache()

    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=304)
        entry = await cache.fetch_file(LOGIN, ttl=TTL)

        call = mock_http.requests[("GET", URL(LOGIN_URL))][0]
        assert call.kwargs["headers"] == {"If-None-Match": "abc"}

    assert entry.content == "<html>OK</html>"
    assert entry.fetched_at == clock.now
    assert store.get(LOGIN_KEY)["fetchedAt"] == clock.now
    assert cache.stats.hits == 1


@pytest.mark.asyncio
async def test_ttl_none_never_expires(make_cache, store, clock):
    seed(store, LOGIN_KEY, "cached", clock.now)
    clock.advance(365 * 24 * 60 * 60 * 1000)
    cache = make_cache()

    with aioresponses() as mock_http:
        entry = await cache.fetch_with_cache(LOGIN, "pages/", None)
        assert mock_http.requests == {}

    assert entry.content == "cached"


@pytest.mark.asyncio
async def test_fetch_asset_uses_asset_base_and_default_ttl(make_cache, store, clock):
    cache = make_cache()
    url = file_url("assets/css/main.css")
    with aioresponses() as mock_http:
        mock_http.get(url, status=200, body="body{}")
        entry = await cache.fetch_asset("assets/css/main.css")

    assert entry.content == "body{}"
    assert "api-cache:assets/css/main.css" in store


# Hash-based validation


def _manifest_payload(assets):
    return {"success": True, "data": {"version": "v1", "assets": assets}}


@pytest.mark.asyncio
async def test_matching_digest_is_served_without_network(
    make_cache, store, client, clock
):
    registry = HashRegistry(client, store, clock=clock)
    seed(store, LOGIN_KEY, "<html>OK</html>", clock.now - 10_000)
    cache = make_cache(hash_registry=registry)

    with aioresponses() as mock_http:
        mock_http.get(
            client.hashes_url,
            payload=_manifest_payload(
                {f"pages/{LOGIN}": compute_digest("<html>OK</html>")}
            ),
        )
        entry = await cache.fetch_file(LOGIN)

        assert request_count(mock_http, LOGIN_URL) == 0

    assert entry.content == "<html>OK</html>"
    # A confirmed entry is re-stamped so the sweep keeps it.
    assert store.get(LOGIN_KEY)["fetchedAt"] == clock.now
    assert cache.validation_mode == "hash"


@pytest.mark.asyncio
async def test_mismatching_digest_refetches_once_without_conditional_headers(
    make_cache, store, client, clock
):
    registry = HashRegistry(client, store, clock=clock)
    seed(store, LOGIN_KEY, "<html>old</html>", clock.now, etag="old")
    cache = make_cache(hash_registry=registry)

    with aioresponses() as mock_http:
        mock_http.get(
            client.hashes_url,
            payload=_manifest_payload(
                {f"/pages/{LOGIN}": compute_digest("<html>new</html>")}
            ),
        )
        mock_http.get(LOGIN_URL, status=200, body="<html>new</html>")
        entry = await cache.fetch_file(LOGIN)

        calls = mock_http.requests[("GET", URL(LOGIN_URL))]
        assert len(calls) == 1
        assert calls[0].kwargs["headers"] == {}

    assert entry.content == "<html>new</html>"
    assert entry.hash == compute_digest("<html>new</html>")


@pytest.mark.asyncio
async def test_unmapped_path_is_fresh_by_default(make_cache, store, client, clock):
    registry = HashRegistry(client, store, clock=clock)
    seed(store, LOGIN_KEY, "cached", clock.now)
    cache = make_cache(hash_registry=registry)

    with aioresponses() as mock_http:
        mock_http.get(client.hashes_url, payload=_manifest_payload({}))
        entry = await cache.fetch_file(LOGIN)
        assert request_count(mock_http, LOGIN_URL) == 0

    assert entry.content == "cached"


@pytest.mark.asyncio
async def test_unmapped_path_is_refetched_when_not_trusted(
    make_cache, store, client, clock, config
):
    registry = HashRegistry(client, store, clock=clock)
    seed(store, LOGIN_KEY, "cached", clock.now)
    strict = config.model_copy(update={"trust_unmapped_paths": False})
    cache = make_cache(hash_registry=registry, config=strict)

    with aioresponses() as mock_http:
        mock_http.get(client.hashes_url, payload=_manifest_payload({}))
        mock_http.get(LOGIN_URL, status=200, body="fresh")
        entry = await cache.fetch_file(LOGIN)

    assert entry.content == "fresh"


# Retry and error handling


@pytest.mark.asyncio
async def test_three_failures_raise_without_a_fourth_attempt(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=500, repeat=True)

        with pytest.raises(TransientFetchError) as exc_info:
            await cache.fetch_file(LOGIN)

        assert request_count(mock_http, LOGIN_URL) == 3

    assert exc_info.value.path == LOGIN
    assert cache.offline_queue == ()


@pytest.mark.asyncio
async def test_two_failures_then_success_returns_payload(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=503)
        mock_http.get(LOGIN_URL, exception=aiohttp.ClientConnectionError("reset"))
        mock_http.get(LOGIN_URL, status=200, body="<html>OK</html>")

        entry = await cache.fetch_file(LOGIN)

        assert request_count(mock_http, LOGIN_URL) == 3

    assert entry.content == "<html>OK</html>"
    assert entry.stale is False


@pytest.mark.asyncio
async def test_not_found_is_not_retried_and_skips_stale_copy(make_cache, store, clock):
    seed(store, LOGIN_KEY, "old", clock.now)
    clock.advance(TTL + 1)
    cache = make_cache()

    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=404, repeat=True)
        with pytest.raises(NotFoundError):
            await cache.fetch_file(LOGIN, ttl=TTL)
        assert request_count(mock_http, LOGIN_URL) == 1


@pytest.mark.asyncio
async def test_rate_limit_is_not_retried(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=429, repeat=True)
        with pytest.raises(RateLimitedError):
            await cache.fetch_file(LOGIN)
        assert request_count(mock_http, LOGIN_URL) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_serve_stale_copy(make_cache, store, clock):
    seed(store, LOGIN_KEY, "old", clock.now)
    clock.advance(TTL + 1)
    cache = make_cache()

    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=500, repeat=True)
        entry = await cache.fetch_file(LOGIN, ttl=TTL)

    assert entry.content == "old"
    assert entry.stale is True
    assert cache.stats.stale_served == 1
    # Stale flag is never persisted.
    assert "stale" not in store.get(LOGIN_KEY)


@pytest.mark.asyncio
async def test_undecodable_body_is_retried_then_served_stale(make_cache, store, clock):
    seed(store, LOGIN_KEY, "old", clock.now)
    clock.advance(TTL + 1)
    cache = make_cache()

    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=200, body=b"\xff\xfe\xfa bad", repeat=True)
        entry = await cache.fetch_file(LOGIN, ttl=TTL)

        assert request_count(mock_http, LOGIN_URL) == 3

    assert entry.content == "old"
    assert entry.stale is True
    assert store.get(LOGIN_KEY)["content"] == "old"


@pytest.mark.asyncio
async def test_undecodable_body_without_stale_copy_raises_transient_error(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=200, body=b"\xff\xfe\xfa bad", repeat=True)
        with pytest.raises(TransientFetchError) as exc_info:
            await cache.fetch_file(LOGIN)

    assert exc_info.value.path == LOGIN


@pytest.mark.asyncio
async def test_unsafe_url_is_blocked_before_any_request(store, config, backoff):
    insecure = config.model_copy(update={"base_url": "http://frontend.example.test"})
    client = FrontendAPIClient(insecure.base_url)
    cache = ContentCache(store, client, insecure, backoff=backoff)

    try:
        with aioresponses() as mock_http:
            with pytest.raises(UnsafeUrlError) as exc_info:
                await cache.fetch_file(LOGIN)
            assert mock_http.requests == {}
    finally:
        await client.close()

    assert exc_info.value.path == LOGIN


@pytest.mark.asyncio
async def test_concurrent_fetches_of_one_key_hit_the_network_once(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=200, body="<html>OK</html>", repeat=True)

        first, second = await asyncio.gather(
            cache.fetch_file(LOGIN), cache.fetch_file(LOGIN)
        )

        assert request_count(mock_http, LOGIN_URL) == 1

    assert first.content == second.content == "<html>OK</html>"


@pytest.mark.asyncio
async def test_retrying_fetch_keeps_other_key_written_during_its_backoff(
    store, client, config, clock, data_dir
):
    slow_backoff = ExponentialBackoff(
        max_attempts=3, base_delay=0.05, max_delay=0.05, jitter=0
    )
    cache = ContentCache(store, client, config, backoff=slow_backoff, clock=clock)
    home = "home/index.html"

    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=500)
        mock_http.get(LOGIN_URL, status=200, body="login page")
        mock_http.get(file_url(f"pages/{home}"), status=200, body="home page")

        login_entry, home_entry = await asyncio.gather(
            cache.fetch_file(LOGIN), cache.fetch_file(home)
        )

        assert request_count(mock_http, LOGIN_URL) == 2

    assert (login_entry.content, home_entry.content) == ("login page", "home page")
    assert store.get(LOGIN_KEY)["content"] == "login page"
    assert store.get(f"api-cache:{home}")["content"] == "home page"

    reopened = EncryptedStore(data_dir, encryption_key=TEST_KEY)
    assert reopened.get(LOGIN_KEY)["content"] == "login page"
    assert reopened.get(f"api-cache:{home}")["content"] == "home page"


@pytest.mark.asyncio
async def test_outcomes_reach_external_metrics_sink(make_cache):
    sink = RecordingSink()
    cache = make_cache(metrics=sink)
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=200, body="x")
        await cache.fetch_file(LOGIN)
        await cache.fetch_file(LOGIN)

    assert sink.outcomes == [False, True]


# Offline queue


@pytest.mark.asyncio
async def test_offline_failure_is_queued_and_replayed_once(make_cache, store):
    cache = make_cache()
    await cache.set_online_status(False)

    with aioresponses() as mock_http:
        for _ in range(3):
            mock_http.get(LOGIN_URL, status=500)
        mock_http.get(LOGIN_URL, status=200, body="<html>OK</html>")

        with pytest.raises(TransientFetchError):
            await cache.fetch_file(LOGIN, ttl=TTL)

        assert cache.offline_queue == (OfflineQueueEntry(LOGIN, "pages/", TTL),)

        summary = await cache.set_online_status(True)

        assert request_count(mock_http, LOGIN_URL) == 4

    assert summary.synced == [LOGIN]
    assert summary.failed == []
    assert cache.offline_queue == ()
    assert store.get(LOGIN_KEY)["content"] == "<html>OK</html>"
    assert cache.stats.queued_offline == 1


@pytest.mark.asyncio
async def test_failed_replay_is_dropped_not_requeued(make_cache):
    cache = make_cache()
    await cache.set_online_status(False)

    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=500, repeat=True)

        with pytest.raises(TransientFetchError):
            await cache.fetch_file(LOGIN)

        summary = await cache.set_online_status(True)

        # Three attempts while offline plus one replay cycle of three.
        assert request_count(mock_http, LOGIN_URL) == 6

    assert summary.failed == [LOGIN]
    assert cache.offline_queue == ()


@pytest.mark.asyncio
async def test_unexpected_replay_error_does_not_stop_the_drain(make_cache, store):
    cache = make_cache()
    first, second = "a.html", "b.html"
    first_url, second_url = file_url(f"pages/{first}"), file_url(f"pages/{second}")
    await cache.set_online_status(False)

    with aioresponses() as mock_http:
        for url in (first_url, second_url):
            for _ in range(3):
                mock_http.get(url, status=500)
        mock_http.get(first_url, exception=RuntimeError("boom"))
        mock_http.get(second_url, status=200, body="b")

        for path in (first, second):
            with pytest.raises(TransientFetchError):
                await cache.fetch_file(path)
        assert len(cache.offline_queue) == 2

        summary = await cache.set_online_status(True)

        assert request_count(mock_http, second_url) == 4

    assert summary.failed == [first]
    assert summary.synced == [second]
    assert cache.offline_queue == ()
    assert store.get(f"api-cache:{second}")["content"] == "b"


@pytest.mark.asyncio
async def test_online_failure_is_not_queued(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(LOGIN_URL, status=500, repeat=True)
        with pytest.raises(TransientFetchError):
            await cache.fetch_file(LOGIN)

    assert cache.offline_queue == ()
    assert (await cache.set_online_status(True)).total == 0


# Maintenance


@pytest.mark.asyncio
async def test_sweep_removes_only_entries_past_max_age(make_cache, store, config, clock):
    seed(store, "api-cache:old.html", "old", clock.now - config.max_cache_age - 1)
    seed(store, "api-cache:new.html", "new", clock.now - 1000)
    store.set("settings", {"theme": "dark"})
    cache = make_cache()

    assert cache.sweep() == 1
    assert "api-cache:old.html" not in store
    assert "api-cache:new.html" in store
    assert store.get("settings") == {"theme": "dark"}


@pytest.mark.asyncio
async def test_clear_and_clear_all_leave_other_keys(make_cache, store, clock):
    seed(store, "api-cache:a.html", "a", clock.now)
    seed(store, "api-cache:b.html", "b", clock.now)
    store.set("settings", {"theme": "dark"})
    cache = make_cache()

    cache.clear("a.html")
    assert "api-cache:a.html" not in store

    assert cache.clear_all() == 1
    assert store.keys("api-cache:") == []
    assert store.get("settings") == {"theme": "dark"}


@pytest.mark.asyncio
async def test_refresh_assets_warms_listed_files(make_cache, store):
    cache = make_cache(asset_lister=FakeLister(["main.css"], ["app.js", "gone.js"]))
    with aioresponses() as mock_http:
        mock_http.get(file_url("assets/css/main.css"), status=200, body="body{}")
        mock_http.get(file_url("assets/js/app.js"), status=200, body="run()")
        mock_http.get(file_url("assets/js/gone.js"), status=404)

        assert await cache.refresh_assets() == 2

    assert store.get("api-cache:assets/css/main.css")["content"] == "body{}"
    assert store.get("api-cache:assets/js/app.js")["content"] == "run()"


@pytest.mark.asyncio
async def test_refresh_assets_is_skipped_offline(make_cache):
    cache = make_cache(asset_lister=FakeLister(["main.css"], []))
    await cache.set_online_status(False)
    with aioresponses() as mock_http:
        assert await cache.refresh_assets() == 0
        assert mock_http.requests == {}


@pytest.mark.asyncio
async def test_preload_pages_reports_fully_loaded_pages(make_cache):
    cache = make_cache()
    with aioresponses() as mock_http:
        mock_http.get(file_url("pages/dashboard/index.html"), status=200, body="d")
        mock_http.get(file_url("pages/dashboard/styles.css"), status=200, body="s")
        mock_http.get(file_url("pages/rules/index.html"), status=404)

        loaded = await cache.preload_pages(["dashboard", "rules"])

    assert loaded == ["dashboard"]


@pytest.mark.asyncio
async def test_background_sweep_runs_immediately_and_stops(
    make_cache, store, config, clock
):
    seed(store, "api-cache:old.html", "old", clock.now - config.max_cache_age - 1)
    cache = make_cache()

    await cache.start_background_sweep()
    await asyncio.sleep(0)
    await cache.stop_background_tasks()

    assert "api-cache:old.html" not in store


@pytest.mark.asyncio
async def test_background_sync_can_be_stopped(make_cache):
    cache = make_cache(asset_lister=FakeLister([], []))
    await cache.start_background_sync()
    assert cache._sync_task is not None
    await cache.stop_background_sync()
    assert cache._sync_task is None

