"""Redis storage for single servers and sharded sets.

Examples:
    Single: ConnectionConfig(address="localhost", port=6379)
    Sharded: [ShardConnectConfig(key="eu", address="10.0.0.1", port=6379), ...]
"""

from .client import RedisClient, RedisShardClient, RedisSingleClient
from .connect import (
    ConnectionConfig,
    ShardConnectConfig,
    connect_client,
    connect_shard_client,
    connect_shards,
)
from .connect import connect as connect_redis
from .transactor import RedisTransaction, RedisTransactor

__all__ = [
    "RedisClient",
    "RedisSingleClient",
    "RedisShardClient",
    "ConnectionConfig",
    "ShardConnectConfig",
    "connect_redis",
    "connect_client",
    "connect_shards",
    "connect_shard_client",
    "RedisTransaction",
    "RedisTransactor",
]
