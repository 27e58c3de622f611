import json

import pytest
from aioresponses import aioresponses

from frontcache.core.runtime import CacheRuntime
from frontcache.utils.structured_logger import StructuredLogger
from tests.conftest import TEST_KEY, file_url


@pytest.mark.asyncio
async def test_runtime_writes_events_and_closes_everything(config, tmp_path):
    event_log = StructuredLogger("frontcache.events", log_dir=tmp_path / "logs")
    config = config.model_copy(update={"encryption_key": TEST_KEY})

    async with CacheRuntime(config, event_log=event_log) as runtime:
        assert runtime.hash_registry is None
        with aioresponses() as mock_http:
            mock_http.get(file_url("pages/login/index.html"), status=200, body="ok")
            entry = await runtime.cache.fetch_file("login/index.html")

    assert entry.content == "ok"
    assert runtime.client._session.closed

    records = [json.loads(line) for line in event_log.json_path.read_text().splitlines()]
    events = [r["event"] for r in records]
    assert "store_migrated" in events
    assert "cache_miss" in events
    miss = next(r for r in records if r["event"] == "cache_miss")
    assert miss["path"] == "login/index.html"
    assert miss["size_bytes"] == 2
    assert "session_id" in miss


@pytest.mark.asyncio
async def test_hash_mode_runtime_builds_a_registry(config):
    config = config.model_copy(update={"validation_mode": "hash"})
    async with CacheRuntime(config) as runtime:
        assert runtime.hash_registry is not None
        assert runtime.cache.validation_mode == "hash"
