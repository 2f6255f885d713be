# tests/conftest.py
"""
Shared fixtures: an in-memory Redis behind a real CacheStore, a fresh lock
table, a mocked origin with its AsyncClient, and a scratch dir for remuxing.
"""

import pytest

from liverelay.cache_store import CacheStore
from liverelay.single_flight import KeyedLock
from tests.fakes import FakeRedis, Origin


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def store(fake_redis) -> CacheStore:
    return CacheStore(client=fake_redis)


@pytest.fixture()
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture()
def origin() -> Origin:
    return Origin()


@pytest.fixture()
async def http(origin):
    client = origin.client()
    yield client
    await client.aclose()


@pytest.fixture()
def scratch(tmp_path):
    path = tmp_path / "remux"
    path.mkdir()
    return str(path)
