"""Pytest configuration and fixtures for shardstore tests."""

import logging
import os
from unittest.mock import patch

import pytest

from fakes import FakeRedis
from shardstore.core.shards import ResourceHandle, ShardSet, key_selector
from shardstore.db.client import ShardClient, SingleClient
from shardstore.db.sqlite import SQLiteBackend
from shardstore.kv.client import RedisShardClient, RedisSingleClient


@pytest.fixture(autouse=True, scope="session")
def mock_environment_variables():
    """Pin storage environment variables so a local .env cannot leak into tests."""
    env_vars = {
        "STORAGE_DATABASE_URL": "sqlite:///:memory:",
        "STORAGE_CONNECT_TIMEOUT": "5",
        "STORAGE_LOG_QUERIES": "false",
        "STORAGE_REDIS_ADDRESS": "",
        "STORAGE_SQL_SHARDS": "",
        "STORAGE_REDIS_SHARDS": "",
        # Logging - disable noisy logs during tests
        "LOG_LEVEL": "ERROR",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        yield


async def _open_sqlite(path) -> SQLiteBackend:
    backend = SQLiteBackend(str(path), min_pool_size=1, max_pool_size=4)
    await backend.initialize()
    await backend.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
    return backend


@pytest.fixture
async def sqlite_backend(tmp_path):
    """A file-backed SQLite backend with a ``users`` table."""
    backend = await _open_sqlite(tmp_path / "single.db")
    yield backend
    await backend.close()


@pytest.fixture
async def sql_client(sqlite_backend):
    return SingleClient(sqlite_backend)


@pytest.fixture
async def sql_shard_client(tmp_path):
    """Two SQLite shards, ``eu`` and ``us``, routed by shard key."""
    eu = await _open_sqlite(tmp_path / "eu.db")
    us = await _open_sqlite(tmp_path / "us.db")
    shards = ShardSet(
        [ResourceHandle(key="eu", resource=eu), ResourceHandle(key="us", resource=us)],
        key_selector(),
    )
    client = ShardClient(shards)
    yield client
    await client.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis):
    return RedisSingleClient(fake_redis)


@pytest.fixture
def redis_shard_client():
    shards = ShardSet(
        [
            ResourceHandle(key="eu", resource=FakeRedis()),
            ResourceHandle(key="us", resource=FakeRedis()),
        ],
        key_selector(),
    )
    return RedisShardClient(shards)


# Disable logging to reduce noise during tests
logging.getLogger().setLevel(logging.ERROR)
