"""SQLite database backend for development and small deployments."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiosqlite

from ..core.errors import BackendClosedError
from .base import BackendTransaction, DatabaseBackend, IsolationLevel, PoolStats, Row, Rows

logger = logging.getLogger(__name__)

# SQLite has no per-transaction isolation levels; the lock mode taken at
# BEGIN is the closest knob.
_BEGIN_STATEMENTS = {
    IsolationLevel.READ_UNCOMMITTED: "BEGIN DEFERRED",
    IsolationLevel.READ_COMMITTED: "BEGIN DEFERRED",
    IsolationLevel.REPEATABLE_READ: "BEGIN IMMEDIATE",
    IsolationLevel.SERIALIZABLE: "BEGIN EXCLUSIVE",
}


class SQLiteConnection:
    """Wrapper around aiosqlite connection to match our interface."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn
        self._cursor: Optional[aiosqlite.Cursor] = None
        self.rowcount: int = 0

    async def execute(
        self, sql: str, parameters: Optional[Tuple[Any, ...]] = None
    ) -> "SQLiteConnection":
        """Execute a SQL query, returning self for cursor-like interface."""
        self._cursor = await self._conn.execute(sql, parameters or ())
        self.rowcount = self._cursor.rowcount if self._cursor else 0
        return self

    async def executemany(self, sql: str, parameters: List[Tuple[Any, ...]]) -> Any:
        """Execute a SQL query with multiple parameter sets."""
        await self._conn.executemany(sql, parameters)

    async def fetchone(self) -> Optional[Row]:
        """Fetch one row from the last query."""
        if self._cursor:
            row = await self._cursor.fetchone()
            return tuple(row) if row is not None else None
        return None

    async def fetchall(self) -> Rows:
        """Fetch all rows from the last query."""
        if self._cursor:
            return [tuple(r) for r in await self._cursor.fetchall()]
        return []


class SQLiteTransaction(BackendTransaction):
    """Explicit BEGIN ... COMMIT/ROLLBACK on one pooled aiosqlite connection."""

    def __init__(self, backend: "SQLiteBackend", conn_info: Dict[str, Any]):
        self._backend = backend
        self._conn_info = conn_info
        self._connection = SQLiteConnection(conn_info["connection"])

    @property
    def connection(self) -> SQLiteConnection:
        return self._connection

    async def commit(self) -> None:
        try:
            await self._conn_info["connection"].commit()
        finally:
            await self._backend._release(self._conn_info)

    async def rollback(self) -> None:
        try:
            await self._conn_info["connection"].rollback()
        finally:
            await self._backend._release(self._conn_info)


class SQLiteBackend(DatabaseBackend):
    """SQLite backend for development and small-scale deployments."""

    backend_type = "sqlite"

    def __init__(
        self,
        db_path: str,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        max_lifetime: int = 3600,
    ):
        self._db_path = db_path
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._max_lifetime = max_lifetime
        self._pool: asyncio.Queue[dict] = asyncio.Queue(maxsize=max_pool_size)
        self._lock = asyncio.Lock()
        self._closed = False
        self._total_connections = 0
        self._total_queries = 0

        # Ensure directory exists
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

    async def initialize(self) -> None:
        """Initialize the connection pool with minimum connections."""
        logger.info(
            f"Initializing SQLite backend: {self._db_path} "
            f"(min: {self._min_pool_size}, max: {self._max_pool_size})"
        )

        # Pre-create minimum connections
        for _ in range(self._min_pool_size):
            conn_info = await self._create_connection()
            await self._pool.put(conn_info)

        logger.info("SQLite backend initialized")

    async def _create_connection(self) -> dict:
        """Create a new database connection."""
        # isolation_level=None: statements outside an explicit BEGIN autocommit
        conn = await aiosqlite.connect(
            self._db_path,
            timeout=30.0,
            isolation_level=None,
            check_same_thread=False,
        )

        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA busy_timeout=5000")

        self._total_connections += 1

        return {
            "connection": conn,
            "created_at": time.time(),
            "last_used": time.time(),
            "usage_count": 0,
        }

    async def close(self) -> None:
        """Close all connections."""
        self._closed = True

        while not self._pool.empty():
            try:
                conn_info = self._pool.get_nowait()
                await conn_info["connection"].close()
            except asyncio.QueueEmpty:
                break
            except Exception as e:
                logger.error(f"Error closing connection: {e}")

        logger.info("SQLite backend closed")

    async def _acquire(self) -> dict:
        if self._closed:
            raise BackendClosedError(self.backend_type)

        try:
            conn_info = self._pool.get_nowait()
        except asyncio.QueueEmpty:
            # Create new if pool is empty
            async with self._lock:
                conn_info = await self._create_connection()

        if time.time() - conn_info["created_at"] > self._max_lifetime:
            await conn_info["connection"].close()
            async with self._lock:
                conn_info = await self._create_connection()

        conn_info["last_used"] = time.time()
        conn_info["usage_count"] += 1
        return conn_info

    async def _release(self, conn_info: dict) -> None:
        if self._closed:
            await conn_info["connection"].close()
            return
        try:
            self._pool.put_nowait(conn_info)
        except asyncio.QueueFull:
            await conn_info["connection"].close()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SQLiteConnection]:
        """Get a connection from the pool."""
        conn_info = await self._acquire()
        try:
            yield SQLiteConnection(conn_info["connection"])
        finally:
            await self._release(conn_info)

    async def begin(
        self, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> SQLiteTransaction:
        """Pin a pooled connection and open a transaction on it."""
        conn_info = await self._acquire()
        try:
            await conn_info["connection"].execute(_BEGIN_STATEMENTS[isolation])
        except BaseException:
            await self._release(conn_info)
            raise
        return SQLiteTransaction(self, conn_info)

    async def ping(self) -> None:
        await self.fetch_one("SELECT 1")

    async def get_stats(self) -> PoolStats:
        """Get connection pool statistics."""
        return PoolStats(
            pool_size=self._pool.qsize(),
            min_pool_size=self._min_pool_size,
            max_pool_size=self._max_pool_size,
            active_connections=self._max_pool_size - self._pool.qsize(),
            idle_connections=self._pool.qsize(),
            total_connections_created=self._total_connections,
            total_queries_executed=self._total_queries,
            backend_type=self.backend_type,
            connection_string=f"sqlite:///{self._db_path}",
        )

    def get_placeholder(self, index: int) -> str:
        """SQLite uses ? for all placeholders."""
        return "?"

    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in SQLite."""
        row = await self.fetch_one(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return row is not None
