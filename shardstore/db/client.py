"""SQL clients for a single database or a sharded set of databases.

Both clients expose the same surface. Every call resolves the shard for the
context first, then runs either on the ambient transaction (when the context
carries one) or straight on the shard's pool:

    client = ShardClient(shards)
    ctx = with_shard_key(background(), "eu")
    await client.execute(ctx, "INSERT INTO users (name) VALUES (?)", ("ann",))
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from ..core.context import Context, ensure, is_no_log
from ..core.errors import NotShardClientError, RecordNotFoundError
from ..core.fanout import each_shard, each_shard_async
from ..core.shards import ResourceHandle, ShardSet
from .base import BackendTransaction, ConnectionContext, DatabaseBackend, IsolationLevel, Row, Rows
from .transactor import SQLTransactor, get_tx

logger = logging.getLogger(__name__)

Params = Optional[Tuple[Any, ...]]

SINGLE_CLIENT_KEY = "single-client"


class RawExecutor:
    """Runs statements on a pooled connection, autocommitting each one."""

    def __init__(self, backend: DatabaseBackend):
        self._backend = backend

    async def execute(self, sql: str, parameters: Params = None) -> int:
        return await self._backend.execute(sql, parameters)

    async def executemany(self, sql: str, parameters: List[Tuple[Any, ...]]) -> None:
        await self._backend.executemany(sql, parameters)

    async def fetch_one(self, sql: str, parameters: Params = None) -> Optional[Row]:
        return await self._backend.fetch_one(sql, parameters)

    async def fetch_all(self, sql: str, parameters: Params = None) -> Rows:
        return await self._backend.fetch_all(sql, parameters)


class TransactionExecutor:
    """Runs statements on the connection pinned by an open transaction."""

    def __init__(self, tx: BackendTransaction):
        self._conn: ConnectionContext = tx.connection

    async def execute(self, sql: str, parameters: Params = None) -> int:
        cursor = await self._conn.execute(sql, parameters)
        return getattr(cursor, "rowcount", 0)

    async def executemany(self, sql: str, parameters: List[Tuple[Any, ...]]) -> None:
        await self._conn.executemany(sql, parameters)

    async def fetch_one(self, sql: str, parameters: Params = None) -> Optional[Row]:
        await self._conn.execute(sql, parameters)
        return await self._conn.fetchone()

    async def fetch_all(self, sql: str, parameters: Params = None) -> Rows:
        await self._conn.execute(sql, parameters)
        return await self._conn.fetchall()


class SQLClient(ABC):
    """Common delegation surface for single and sharded SQL clients."""

    def __init__(self, log_queries: bool = False):
        self._log_queries = log_queries

    @abstractmethod
    def _resolve(self, ctx: Context) -> ResourceHandle[DatabaseBackend]:
        ...

    @abstractmethod
    async def each_shard(self, fn: Callable[["SQLClient"], Awaitable[Any]]) -> None:
        ...

    @abstractmethod
    async def each_shard_async(
        self, fn: Callable[["SQLClient"], Awaitable[Any]], limit: Optional[int] = None
    ) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def connection(self, ctx: Optional[Context] = None) -> DatabaseBackend:
        """Return the backend that serves ``ctx``."""
        return self._resolve(ensure(ctx)).resource

    def transactor(
        self, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> SQLTransactor:
        return SQLTransactor(self, isolation)

    async def begin_tx(
        self, ctx: Context, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> BackendTransaction:
        """Open a transaction on the shard resolved for ``ctx``."""
        ctx = ensure(ctx)
        handle = self._resolve(ctx)
        return await ctx.run(handle.resource.begin(isolation))

    def _executor(self, ctx: Context, operation: str, sql: str, parameters: Any):
        handle = self._resolve(ctx)
        if self._log_queries and not is_no_log(ctx):
            logger.debug(f"[{handle.key}] {operation}: {sql} args={parameters!r}")

        tx, ok = get_tx(ctx)
        if ok:
            return TransactionExecutor(tx)
        return RawExecutor(handle.resource)

    async def execute(self, ctx: Context, sql: str, parameters: Params = None) -> int:
        """Execute a statement and return the affected row count."""
        ctx = ensure(ctx)
        executor = self._executor(ctx, "execute", sql, parameters)
        return await ctx.run(executor.execute(sql, parameters))

    async def executemany(
        self, ctx: Context, sql: str, parameters: List[Tuple[Any, ...]]
    ) -> None:
        ctx = ensure(ctx)
        if not parameters:
            return
        executor = self._executor(ctx, "executemany", sql, parameters)
        await ctx.run(executor.executemany(sql, parameters))

    async def fetch_one(self, ctx: Context, sql: str, parameters: Params = None) -> Optional[Row]:
        ctx = ensure(ctx)
        executor = self._executor(ctx, "fetch_one", sql, parameters)
        return await ctx.run(executor.fetch_one(sql, parameters))

    async def fetch_all(self, ctx: Context, sql: str, parameters: Params = None) -> Rows:
        ctx = ensure(ctx)
        executor = self._executor(ctx, "fetch_all", sql, parameters)
        return await ctx.run(executor.fetch_all(sql, parameters))

    async def fetch_value(self, ctx: Context, sql: str, parameters: Params = None) -> Any:
        """Return the first column of the first row, or None."""
        row = await self.fetch_one(ctx, sql, parameters)
        if row is None:
            return None
        return row[0]

    async def get(self, ctx: Context, sql: str, parameters: Params = None) -> Row:
        """Like ``fetch_one`` but a missing row raises RecordNotFoundError."""
        row = await self.fetch_one(ctx, sql, parameters)
        if row is None:
            raise RecordNotFoundError()
        return row


class SingleClient(SQLClient):
    """Client over exactly one database."""

    def __init__(
        self,
        backend: DatabaseBackend,
        key: str = SINGLE_CLIENT_KEY,
        log_queries: bool = False,
    ):
        super().__init__(log_queries=log_queries)
        self._handle: ResourceHandle[DatabaseBackend] = ResourceHandle(key=key, resource=backend)

    @property
    def key(self) -> str:
        return self._handle.key

    def _resolve(self, ctx: Context) -> ResourceHandle[DatabaseBackend]:
        return self._handle

    async def each_shard(self, fn: Callable[[SQLClient], Awaitable[Any]]) -> None:
        raise NotShardClientError()

    async def each_shard_async(
        self, fn: Callable[[SQLClient], Awaitable[Any]], limit: Optional[int] = None
    ) -> None:
        raise NotShardClientError()

    async def close(self) -> None:
        await self._handle.close()


class ShardClient(SQLClient):
    """Client over a sharded set of databases."""

    def __init__(self, shards: ShardSet[DatabaseBackend], log_queries: bool = False):
        super().__init__(log_queries=log_queries)
        self._shards = shards

    @property
    def shards(self) -> ShardSet[DatabaseBackend]:
        return self._shards

    def _resolve(self, ctx: Context) -> ResourceHandle[DatabaseBackend]:
        return self._shards.resolve(ctx)

    def _shard_clients(self) -> List[SingleClient]:
        return [
            SingleClient(handle.resource, key=handle.key, log_queries=self._log_queries)
            for handle in self._shards
        ]

    async def each_shard(self, fn: Callable[[SQLClient], Awaitable[Any]]) -> None:
        """Run ``fn`` on every shard in order; stop at the first failure."""
        await each_shard(self._shard_clients(), fn)

    async def each_shard_async(
        self, fn: Callable[[SQLClient], Awaitable[Any]], limit: Optional[int] = None
    ) -> None:
        """Run ``fn`` on every shard concurrently, at most ``limit`` at a time."""
        await each_shard_async(self._shard_clients(), fn, limit)

    async def close(self) -> None:
        await self._shards.close()


async def run_in_transaction(
    backend: DatabaseBackend,
    actions: Callable[[ConnectionContext], Awaitable[Any]],
    isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
) -> Any:
    """Run ``actions`` in a one-off transaction on ``backend``.

    Commits when ``actions`` returns, rolls back when it raises.
    """
    tx = await backend.begin(isolation)
    try:
        result = await actions(tx.connection)
    except BaseException:
        await tx.rollback()
        raise
    await tx.commit()
    return result
