"""Opening Redis clients and sharded Redis sets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Sequence

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Check if redis is available
try:
    from redis.asyncio import Redis

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    Redis = None  # type: ignore[assignment]

from ..core.errors import ClientAddressEmptyError, ClientPortZeroError, PingError  # noqa: E402
from ..core.fanout import wait_all  # noqa: E402
from ..core.shards import ResourceHandle, Selector, ShardSet, validate_keys  # noqa: E402
from .client import RedisShardClient, RedisSingleClient  # noqa: E402

PING_TIMEOUT = 5.0


class ConnectionConfig(BaseModel):
    address: str = ""
    port: int = 0
    db: int = 0
    password: str = ""


class ShardConnectConfig(ConnectionConfig):
    """One Redis shard entry as it appears in configuration."""

    key: str = ""
    conditions: List[str] = Field(default_factory=list)


async def connect(
    address: str,
    port: int,
    db: int = 0,
    password: str = "",
    **options: Any,
) -> "Redis":
    """Open a Redis client and ping it.

    Extra keyword arguments are passed to ``redis.asyncio.Redis``.

    Raises:
        ClientAddressEmptyError: If ``address`` is empty
        ClientPortZeroError: If ``port`` is zero
        PingError: If the server does not answer within five seconds
    """
    if not REDIS_AVAILABLE:
        raise RuntimeError(
            "redis is required for the key-value store. Install with: pip install redis[hiredis]"
        )
    if not address:
        raise ClientAddressEmptyError()
    if not port:
        raise ClientPortZeroError()

    settings = {
        "encoding": "utf-8",
        "decode_responses": True,
        "socket_connect_timeout": PING_TIMEOUT,
        "socket_keepalive": True,
        "health_check_interval": 30,
    }
    settings.update(options)

    client = Redis(host=address, port=port, db=db, password=password or None, **settings)

    try:
        await asyncio.wait_for(client.ping(), timeout=PING_TIMEOUT)
    except Exception as e:
        await client.aclose()
        raise PingError(f"redis://{address}:{port}/{db}", e) from e

    logger.info(f"Redis connection established: {address}:{port}/{db}")
    return client


def validate_shard_configs(configs: Sequence[ShardConnectConfig]) -> None:
    """Check keys, addresses and ports before anything is opened."""
    validate_keys(cfg.key for cfg in configs)
    for cfg in configs:
        if not cfg.address:
            raise ClientAddressEmptyError(cfg.key)
        if not cfg.port:
            raise ClientPortZeroError(cfg.key)


async def connect_shards(
    configs: Sequence[ShardConnectConfig],
    selector: Selector,
    **options: Any,
) -> ShardSet["Redis"]:
    """Connect every configured shard, failing fast on the first broken one."""
    validate_shard_configs(configs)

    handles: List[ResourceHandle[Redis]] = []
    for cfg in configs:
        try:
            client = await connect(cfg.address, cfg.port, cfg.db, cfg.password, **options)
        except Exception:
            logger.error(f"Failed to connect Redis shard '{cfg.key}'")
            if handles:
                try:
                    await wait_all((h.close() for h in handles), label="shard connect cleanup")
                except Exception as close_error:
                    logger.error(f"Cleanup after failed shard connect also failed: {close_error}")
            raise
        handles.append(
            ResourceHandle(key=cfg.key, resource=client, conditions=tuple(cfg.conditions))
        )

    return ShardSet(handles, selector)


async def connect_client(config: ConnectionConfig, **options: Any) -> RedisSingleClient:
    client = await connect(config.address, config.port, config.db, config.password, **options)
    return RedisSingleClient(client)


async def connect_shard_client(
    configs: Sequence[ShardConnectConfig],
    selector: Selector,
    **options: Any,
) -> RedisShardClient:
    shards = await connect_shards(configs, selector, **options)
    return RedisShardClient(shards)

