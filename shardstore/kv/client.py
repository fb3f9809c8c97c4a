"""Redis clients for a single server or a sharded set of servers.

Reads always go to the live connection of the resolved shard. Writes go to
the same connection unless the context carries an open Redis transaction;
then they are queued on its MULTI/EXEC pipeline, return ``None``, and only
take effect when the transaction commits.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel

from ..core.context import Context, ensure
from ..core.errors import InvalidKeyError, KeyEmptyError, KeyNotFoundError, NotShardClientError
from ..core.fanout import each_shard, each_shard_async
from ..core.shards import ResourceHandle, ShardSet
from .transactor import RedisTransactor, _maybe_await, get_tx

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TTL = Union[int, float, timedelta, None]

SINGLE_CLIENT_KEY = "single-client"

_TRUE_STRINGS = {"1", "t", "true", "y", "yes", "on"}
_FALSE_STRINGS = {"0", "f", "false", "n", "no", "off", ""}


def validate_key(key: str) -> None:
    if not key:
        raise KeyEmptyError()


def clean_keys(keys: Sequence[str]) -> List[str]:
    """Drop empty keys from a batch."""
    return [key for key in keys if key]


def _ttl_ms(ttl: TTL) -> Optional[int]:
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        ms = int(ttl.total_seconds() * 1000)
    else:
        ms = int(float(ttl) * 1000)
    return ms if ms > 0 else None


def _to_bool(value: Any) -> bool:
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"cannot interpret {value!r} as bool")


class RedisClient(ABC):
    """Common command surface for single and sharded Redis clients."""

    @abstractmethod
    def _resolve(self, ctx: Context) -> ResourceHandle[Any]:
        ...

    @abstractmethod
    async def each_shard(self, fn: Callable[["RedisClient"], Awaitable[Any]]) -> None:
        ...

    @abstractmethod
    async def each_shard_async(
        self, fn: Callable[["RedisClient"], Awaitable[Any]], limit: Optional[int] = None
    ) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def transactor(self) -> RedisTransactor:
        return RedisTransactor(self)

    def _reader(self, ctx: Context, *keys: str) -> Any:
        ctx.validate()
        for key in keys:
            validate_key(key)
        return self._resolve(ctx).resource

    def _writer(self, ctx: Context, *keys: str) -> Tuple[Any, bool]:
        """Return the target for a write and whether it is a queued pipeline."""
        client = self._reader(ctx, *keys)
        pipeline, ok = get_tx(ctx)
        if ok:
            return pipeline, True
        return client, False

    async def _write(self, ctx: Context, call: Callable[[Any], Any], *keys: str) -> Any:
        target, queued = self._writer(ctx, *keys)
        if queued:
            await _maybe_await(call(target))
            return None
        return await ctx.run(call(target))

    # Connections

    async def client(self, ctx: Context) -> Any:
        """Raw ``redis.asyncio.Redis`` client of the shard serving ``ctx``."""
        return self._reader(ensure(ctx))

    async def pipeline(self, ctx: Context) -> Any:
        return self._reader(ensure(ctx)).pipeline(transaction=False)

    async def tx_pipeline(self, ctx: Context) -> Any:
        return self._reader(ensure(ctx)).pipeline(transaction=True)

    # Keys

    async def keys(self, ctx: Context, pattern: str) -> List[str]:
        ctx = ensure(ctx)
        return await ctx.run(self._reader(ctx).keys(pattern))

    async def scan(
        self, ctx: Context, cursor: int, pattern: str, count: int
    ) -> Tuple[List[str], int]:
        """One SCAN step; returns ``(keys, next_cursor)``."""
        ctx = ensure(ctx)
        next_cursor, keys = await ctx.run(
            self._reader(ctx).scan(cursor=cursor, match=pattern, count=count)
        )
        return list(keys), int(next_cursor)

    async def delete(self, ctx: Context, *keys: str) -> None:
        """Delete keys; empty keys are skipped and an empty batch is a no-op."""
        ctx = ensure(ctx)
        keys_to_delete = clean_keys(keys)
        if not keys_to_delete:
            ctx.validate()
            return
        await self._write(ctx, lambda c: c.delete(*keys_to_delete))

    async def dump(self, ctx: Context, key: str) -> Any:
        ctx = ensure(ctx)
        return await ctx.run(self._reader(ctx, key).dump(key))

    async def rename(self, ctx: Context, old_key: str, new_key: str) -> None:
        ctx = ensure(ctx)
        if not old_key:
            raise InvalidKeyError("old")
        if not new_key:
            raise InvalidKeyError("new")
        await self._write(ctx, lambda c: c.rename(old_key, new_key))

    async def refresh(self, ctx: Context, key: str, ttl: TTL) -> None:
        """Reset the expiry of ``key`` to ``ttl`` from now."""
        ctx = ensure(ctx)
        ms = _ttl_ms(ttl) or 0
        await self._write(ctx, lambda c: c.pexpire(key, ms), key)

    async def refresh_at(self, ctx: Context, key: str, at: datetime) -> None:
        ctx = ensure(ctx)
        await self._write(ctx, lambda c: c.expireat(key, at), key)

    async def ttl(self, ctx: Context, key: str) -> Optional[timedelta]:
        """Remaining time to live; ``None`` when the key never expires.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ctx = ensure(ctx)
        ms = await ctx.run(self._reader(ctx, key).pttl(key))
        if ms == -2:
            raise KeyNotFoundError(key)
        if ms < 0:
            return None
        return timedelta(milliseconds=ms)

    async def exists(self, ctx: Context, key: str) -> int:
        ctx = ensure(ctx)
        return int(await ctx.run(self._reader(ctx, key).exists(key)))

    # Strings

    async def set(self, ctx: Context, key: str, value: Any, ttl: TTL = None) -> None:
        ctx = ensure(ctx)
        ms = _ttl_ms(ttl)
        await self._write(ctx, lambda c: c.set(key, value, px=ms), key)

    async def set_nx(self, ctx: Context, key: str, value: Any, ttl: TTL = None) -> bool:
        """SET if not exists; always runs immediately because the caller needs the answer."""
        ctx = ensure(ctx)
        ms = _ttl_ms(ttl)
        result = await ctx.run(self._reader(ctx, key).set(key, value, px=ms, nx=True))
        return bool(result)

    async def get(self, ctx: Context, key: str) -> Any:
        """Value of ``key``.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ctx = ensure(ctx)
        value = await ctx.run(self._reader(ctx, key).get(key))
        if value is None:
            raise KeyNotFoundError(key)
        return value

    async def get_bytes(self, ctx: Context, key: str) -> bytes:
        value = await self.get(ctx, key)
        if isinstance(value, bytes):
            return value
        return str(value).encode("utf-8")

    async def get_int(self, ctx: Context, key: str) -> int:
        return int(await self.get(ctx, key))

    async def parse(self, ctx: Context, key: str, model: Optional[Type[M]] = None) -> Any:
        """Decode a JSON value, optionally validating it into ``model``."""
        raw = await self.get(ctx, key)
        if model is not None:
            return model.model_validate_json(raw)
        return json.loads(raw)

    async def mget(self, ctx: Context, keys: Sequence[str]) -> List[Any]:
        """Values for the non-empty ``keys``, in order; missing keys give ``None``."""
        ctx = ensure(ctx)
        wanted = clean_keys(keys)
        if not wanted:
            ctx.validate()
            return []
        return list(await ctx.run(self._reader(ctx).mget(wanted)))

    # Hashes

    async def hset(self, ctx: Context, key: str, mapping: Dict[str, Any]) -> None:
        ctx = ensure(ctx)
        await self._write(ctx, lambda c: c.hset(key, mapping=mapping), key)

    async def hgetall(self, ctx: Context, key: str) -> Dict[str, Any]:
        ctx = ensure(ctx)
        return dict(await ctx.run(self._reader(ctx, key).hgetall(key)))

    async def hget(self, ctx: Context, key: str, field: str) -> Any:
        """Value of ``field`` in hash ``key``.

        Raises:
            KeyNotFoundError: If the hash or the field does not exist
        """
        ctx = ensure(ctx)
        value = await ctx.run(self._reader(ctx, key).hget(key, field))
        if value is None:
            raise KeyNotFoundError(f"{key}.{field}")
        return value

    async def hget_int(self, ctx: Context, key: str, field: str) -> int:
        return int(await self.hget(ctx, key, field))

    async def hget_bool(self, ctx: Context, key: str, field: str) -> bool:
        return _to_bool(await self.hget(ctx, key, field))

    async def hexists(self, ctx: Context, key: str, field: str) -> bool:
        ctx = ensure(ctx)
        return bool(await ctx.run(self._reader(ctx, key).hexists(key, field)))

    async def hdelete(self, ctx: Context, key: str, *fields: str) -> None:
        ctx = ensure(ctx)
        if not fields:
            validate_key(key)
            return
        await self._write(ctx, lambda c: c.hdel(key, *fields), key)

    async def hscan(
        self, ctx: Context, key: str, cursor: int, pattern: str, count: int
    ) -> Tuple[Dict[str, Any], int]:
        """One HSCAN step; returns ``(fields, next_cursor)``."""
        ctx = ensure(ctx)
        next_cursor, fields = await ctx.run(
            self._reader(ctx, key).hscan(key, cursor=cursor, match=pattern, count=count)
        )
        return dict(fields), int(next_cursor)

    async def hincrby(self, ctx: Context, key: str, field: str, incr: int) -> Optional[int]:
        ctx = ensure(ctx)
        return await self._write(ctx, lambda c: c.hincrby(key, field, incr), key)

    async def hincrbyfloat(
        self, ctx: Context, key: str, field: str, incr: float
    ) -> Optional[float]:
        ctx = ensure(ctx)
        return await self._write(ctx, lambda c: c.hincrbyfloat(key, field, incr), key)

    async def hkeys(self, ctx: Context, key: str) -> List[str]:
        ctx = ensure(ctx)
        return list(await ctx.run(self._reader(ctx, key).hkeys(key)))

    async def hlen(self, ctx: Context, key: str) -> int:
        ctx = ensure(ctx)
        return int(await ctx.run(self._reader(ctx, key).hlen(key)))

    async def hmget(self, ctx: Context, key: str, *fields: str) -> List[Any]:
        ctx = ensure(ctx)
        if not fields:
            validate_key(key)
            return []
        return list(await ctx.run(self._reader(ctx, key).hmget(key, list(fields))))

    async def hvals(self, ctx: Context, key: str) -> List[Any]:
        ctx = ensure(ctx)
        return list(await ctx.run(self._reader(ctx, key).hvals(key)))

    async def hsetnx(self, ctx: Context, key: str, field: str, value: Any) -> None:
        ctx = ensure(ctx)
        await self._write(ctx, lambda c: c.hsetnx(key, field, value), key)

    # Scripting

    async def eval(self, ctx: Context, script: str, keys: Sequence[str], *args: Any) -> Any:
        ctx = ensure(ctx)
        return await ctx.run(self._reader(ctx).eval(script, len(keys), *keys, *args))

    async def evalsha(self, ctx: Context, sha1: str, keys: Sequence[str], *args: Any) -> Any:
        ctx = ensure(ctx)
        return await ctx.run(self._reader(ctx).evalsha(sha1, len(keys), *keys, *args))

    async def script_load(self, ctx: Context, script: str) -> str:
        ctx = ensure(ctx)
        return await ctx.run(self._reader(ctx).script_load(script))

    async def script_exists(self, ctx: Context, *hashes: str) -> List[bool]:
        ctx = ensure(ctx)
        return [bool(x) for x in await ctx.run(self._reader(ctx).script_exists(*hashes))]


class RedisSingleClient(RedisClient):
    """Client over exactly one Redis server."""

    def __init__(self, client: Any, key: str = SINGLE_CLIENT_KEY):
        self._handle: ResourceHandle[Any] = ResourceHandle(key=key, resource=client)

    @property
    def key(self) -> str:
        return self._handle.key

    def _resolve(self, ctx: Context) -> ResourceHandle[Any]:
        return self._handle

    async def each_shard(self, fn: Callable[[RedisClient], Awaitable[Any]]) -> None:
        raise NotShardClientError()

    async def each_shard_async(
        self, fn: Callable[[RedisClient], Awaitable[Any]], limit: Optional[int] = None
    ) -> None:
        raise NotShardClientError()

    async def close(self) -> None:
        await self._handle.close()


class RedisShardClient(RedisClient):
    """Client over a sharded set of Redis servers."""

    def __init__(self, shards: ShardSet[Any]):
        self._shards = shards

    @property
    def shards(self) -> ShardSet[Any]:
        return self._shards

    def _resolve(self, ctx: Context) -> ResourceHandle[Any]:
        return self._shards.resolve(ctx)

    def _shard_clients(self) -> List[RedisSingleClient]:
        return [RedisSingleClient(handle.resource, key=handle.key) for handle in self._shards]

    async def each_shard(self, fn: Callable[[RedisClient], Awaitable[Any]]) -> None:
        await each_shard(self._shard_clients(), fn)

    async def each_shard_async(
        self, fn: Callable[[RedisClient], Awaitable[Any]], limit: Optional[int] = None
    ) -> None:
        await each_shard_async(self._shard_clients(), fn, limit)

    async def close(self) -> None:
        await self._shards.close()
