# Copyright (c) Kirky.X. 2025. All rights reserved.
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis import aioredis as fake_aioredis

from appliance_cache.core.manager import EnhancedCacheManager
from appliance_cache.dal.analytics import AnalyticsStore
from appliance_cache.dal.database import Database
from appliance_cache.dal.redis_store import RedisStore
from appliance_cache.utils.config import Config, DatabaseConfig


# ==========================================
# Helpers
# ==========================================

class CountingFetcher:
    """Async fetcher that records how many times it was awaited."""

    def __init__(self, value=None, error: Exception = None):
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


# ==========================================
# Fixtures
# ==========================================

@pytest.fixture
def make_fetcher():
    return CountingFetcher


@pytest.fixture
def config() -> Config:
    return Config.default()


@pytest_asyncio.fixture
async def redis_client():
    # a private server per test, instances otherwise share data
    return fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=False)


@pytest_asyncio.fixture
async def store(redis_client) -> RedisStore:
    return RedisStore(redis_client)


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    db = Database(DatabaseConfig(type="sqlite", path=str(tmp_path / "cache_test.db")))
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def analytics(database) -> AnalyticsStore:
    return AnalyticsStore(database)


@pytest_asyncio.fixture
async def manager(config, store, analytics) -> AsyncGenerator[EnhancedCacheManager, None]:
    mgr = EnhancedCacheManager(config, store=store, analytics=analytics)
    await mgr.start()
    yield mgr
    await mgr.close()


@pytest_asyncio.fixture
async def passthrough_manager(config, analytics) -> AsyncGenerator[EnhancedCacheManager, None]:
    mgr = EnhancedCacheManager(config, store=None, analytics=analytics)
    await mgr.start()
    yield mgr
    await mgr.close()
