"""Shared fixtures for the cache and store tests."""

import pytest
import pytest_asyncio

from frontcache.api.backoff import ExponentialBackoff
from frontcache.api.client import FrontendAPIClient
from frontcache.models.config import CacheConfig
from frontcache.storage.content_cache import ContentCache
from frontcache.storage.encrypted_store import EncryptedStore

BASE_URL = "https://frontend.example.test"
TEST_KEY = "unit-test-encryption-key"


def file_url(path: str) -> str:
    return f"{BASE_URL}/files/{path}"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_dir):
    s = EncryptedStore(data_dir, encryption_key=TEST_KEY)
    yield s
    s.close()


@pytest.fixture
def config(data_dir):
    return CacheConfig(base_url=BASE_URL, validation_mode="time", data_dir=str(data_dir))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backoff():
    return ExponentialBackoff(max_attempts=3, base_delay=0, max_delay=0, jitter=0)


@pytest_asyncio.fixture
async def client():
    c = FrontendAPIClient(BASE_URL)
    yield c
    await c.close()


@pytest.fixture
def make_cache(store, client, config, backoff, clock):
    def _make(**kwargs) -> ContentCache:
        kwargs.setdefault("config", config)
        return ContentCache(store, client, backoff=backoff, clock=clock, **kwargs)

    return _make
