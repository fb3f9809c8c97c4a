"""PostgreSQL database backend for production use."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Check if asyncpg is available
try:
    import asyncpg
    from asyncpg.pool import Pool

    ASYNCPG_AVAILABLE = True
except ImportError:
    ASYNCPG_AVAILABLE = False
    asyncpg = None  # type: ignore[assignment]
    Pool = None  # type: ignore[assignment]

from .base import (  # noqa: E402
    BackendTransaction,
    DatabaseBackend,
    IsolationLevel,
    PoolStats,
    Row,
    Rows,
    sanitize_connection_string,
)

_ROW_RETURNING_PREFIXES = ("SELECT", "WITH", "VALUES", "SHOW", "EXPLAIN")


def _translate_sql(sql: str) -> str:
    """Convert ? placeholders to $1, $2, ... so callers can share SQL with SQLite."""
    if "?" not in sql:
        return sql

    result = []
    param_count = 0
    in_literal = False
    for ch in sql:
        if ch == "'":
            in_literal = not in_literal
        if ch == "?" and not in_literal:
            param_count += 1
            result.append(f"${param_count}")
        else:
            result.append(ch)
    return "".join(result)


def _returns_rows(sql: str) -> bool:
    head = sql.lstrip().upper()
    return head.startswith(_ROW_RETURNING_PREFIXES) or " RETURNING " in f" {head} "


def _parse_status(status: Optional[str]) -> int:
    # asyncpg returns command tags like "UPDATE 5" or "INSERT 0 3"
    try:
        return int(status.split()[-1]) if status else 0
    except (ValueError, IndexError):
        return 0


class PostgreSQLConnection:
    """Wrapper around asyncpg connection to match the SQLite interface."""

    def __init__(self, conn: "asyncpg.Connection"):
        self._conn = conn
        self._cursor_result: Optional[List[Any]] = None
        self.rowcount: int = 0

    async def execute(
        self, sql: str, parameters: Optional[Tuple[Any, ...]] = None
    ) -> "PostgreSQLConnection":
        """Execute a SQL query, returning self for cursor-like interface."""
        translated_sql = _translate_sql(sql)
        args = tuple(parameters or ())

        if _returns_rows(translated_sql):
            result = await self._conn.fetch(translated_sql, *args)
            self._cursor_result = list(result)
            self.rowcount = len(result)
        else:
            status = await self._conn.execute(translated_sql, *args)
            self._cursor_result = []
            self.rowcount = _parse_status(status)

        return self

    async def executemany(self, sql: str, parameters: List[Tuple[Any, ...]]) -> Any:
        """Execute a SQL query with multiple parameter sets."""
        await self._conn.executemany(_translate_sql(sql), parameters)

    async def fetchone(self) -> Optional[Row]:
        """Fetch one row from the last query."""
        if self._cursor_result:
            return tuple(self._cursor_result[0])
        return None

    async def fetchall(self) -> Rows:
        """Fetch all rows from the last query."""
        if self._cursor_result:
            return [tuple(r) for r in self._cursor_result]
        return []


class PostgreSQLTransaction(BackendTransaction):
    """asyncpg transaction holding its pool connection until it ends."""

    def __init__(self, pool: "Pool", conn: "asyncpg.Connection", transaction: Any):
        self._pool = pool
        self._conn = conn
        self._transaction = transaction
        self._connection = PostgreSQLConnection(conn)

    @property
    def connection(self) -> PostgreSQLConnection:
        return self._connection

    async def commit(self) -> None:
        try:
            await self._transaction.commit()
        finally:
            await self._pool.release(self._conn)

    async def rollback(self) -> None:
        try:
            await self._transaction.rollback()
        finally:
            await self._pool.release(self._conn)


class PostgreSQLBackend(DatabaseBackend):
    """PostgreSQL backend using asyncpg for high-performance async access."""

    backend_type = "postgresql"

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 5,
        max_pool_size: int = 50,
        command_timeout: Optional[float] = 60,
    ):
        if not ASYNCPG_AVAILABLE:
            raise RuntimeError(
                "asyncpg is required for PostgreSQL support. Install it with: pip install asyncpg"
            )

        self._connection_string = connection_string
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._command_timeout = command_timeout
        self._pool: Optional[Pool] = None
        self._total_queries = 0
        self._total_connections = 0

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        if self._pool is not None:
            return

        logger.info(
            f"Initializing PostgreSQL pool: {sanitize_connection_string(self._connection_string)} "
            f"(min: {self._min_pool_size}, max: {self._max_pool_size})"
        )

        self._pool = await asyncpg.create_pool(
            self._connection_string,
            min_size=self._min_pool_size,
            max_size=self._max_pool_size,
            command_timeout=self._command_timeout,
            max_inactive_connection_lifetime=300,
        )

        logger.info("PostgreSQL pool initialized successfully")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[PostgreSQLConnection]:
        """Get a connection from the pool."""
        if not self._pool:
            await self.initialize()

        assert self._pool is not None
        async with self._pool.acquire() as conn:
            self._total_connections += 1
            yield PostgreSQLConnection(conn)

    async def begin(
        self, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> PostgreSQLTransaction:
        if not self._pool:
            await self.initialize()

        assert self._pool is not None
        conn = await self._pool.acquire()
        self._total_connections += 1
        try:
            transaction = conn.transaction(isolation=isolation.value)
            await transaction.start()
        except BaseException:
            await self._pool.release(conn)
            raise
        return PostgreSQLTransaction(self._pool, conn, transaction)

    async def ping(self) -> None:
        async with self.connection() as conn:
            await conn.execute("SELECT 1")

    async def get_stats(self) -> PoolStats:
        """Get connection pool statistics."""
        if not self._pool:
            return PoolStats(
                pool_size=0,
                min_pool_size=self._min_pool_size,
                max_pool_size=self._max_pool_size,
                active_connections=0,
                idle_connections=0,
                total_connections_created=self._total_connections,
                total_queries_executed=self._total_queries,
                backend_type=self.backend_type,
                connection_string=sanitize_connection_string(self._connection_string),
            )

        return PoolStats(
            pool_size=self._pool.get_size(),
            min_pool_size=self._pool.get_min_size(),
            max_pool_size=self._pool.get_max_size(),
            active_connections=self._pool.get_size() - self._pool.get_idle_size(),
            idle_connections=self._pool.get_idle_size(),
            total_connections_created=self._total_connections,
            total_queries_executed=self._total_queries,
            backend_type=self.backend_type,
            connection_string=sanitize_connection_string(self._connection_string),
        )

    def get_placeholder(self, index: int) -> str:
        """PostgreSQL uses $1, $2, etc."""
        return f"${index}"

    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in PostgreSQL."""
        row = await self.fetch_one(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name = $1
            )
            """,
            (table_name,),
        )
        return bool(row and row[0])
