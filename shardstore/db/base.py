"""Base database abstractions for multi-backend support."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

# Type for database row results
Row = Tuple[Any, ...]
Rows = List[Row]


class IsolationLevel(str, Enum):
    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"


class ConnectionContext(Protocol):
    """Protocol for database connection context."""

    async def execute(self, sql: str, parameters: Optional[Tuple[Any, ...]] = None) -> Any:
        """Execute a SQL query."""
        ...

    async def executemany(self, sql: str, parameters: List[Tuple[Any, ...]]) -> Any:
        """Execute a SQL query with multiple parameter sets."""
        ...

    async def fetchone(self) -> Optional[Row]:
        """Fetch one row from the last query."""
        ...

    async def fetchall(self) -> Rows:
        """Fetch all rows from the last query."""
        ...


class BackendTransaction(ABC):
    """A transaction pinned to one pooled connection.

    The connection goes back to the pool when the transaction ends, whichever
    way it ends.
    """

    @property
    @abstractmethod
    def connection(self) -> ConnectionContext:
        ...

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


@dataclass
class PoolStats:
    """Database connection pool statistics."""

    pool_size: int
    min_pool_size: int
    max_pool_size: int
    active_connections: int
    idle_connections: int
    total_connections_created: int
    total_queries_executed: int
    backend_type: str
    connection_string: str  # Sanitized (no password)


class DatabaseBackend(ABC):
    """Abstract base class for database backends."""

    backend_type: str = "unknown"
    _total_queries: int = 0

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the database backend and connection pool."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close all connections and cleanup resources."""
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Round-trip a trivial query; raise if the database does not answer."""
        ...

    @abstractmethod
    @asynccontextmanager
    async def connection(self) -> AsyncIterator[ConnectionContext]:
        """Get a connection from the pool."""
        ...

    @abstractmethod
    async def begin(
        self, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> BackendTransaction:
        """Start a transaction on a dedicated connection."""
        ...

    async def execute(self, sql: str, parameters: Optional[Tuple[Any, ...]] = None) -> int:
        """Execute a statement and return the affected row count."""
        self._total_queries += 1
        async with self.connection() as conn:
            cursor = await conn.execute(sql, parameters)
            return getattr(cursor, "rowcount", 0)

    async def executemany(self, sql: str, parameters: List[Tuple[Any, ...]]) -> None:
        self._total_queries += 1
        async with self.connection() as conn:
            await conn.executemany(sql, parameters)

    async def fetch_one(
        self, sql: str, parameters: Optional[Tuple[Any, ...]] = None
    ) -> Optional[Row]:
        """Execute a query and fetch one row."""
        self._total_queries += 1
        async with self.connection() as conn:
            await conn.execute(sql, parameters)
            return await conn.fetchone()

    async def fetch_all(self, sql: str, parameters: Optional[Tuple[Any, ...]] = None) -> Rows:
        """Execute a query and fetch all rows."""
        self._total_queries += 1
        async with self.connection() as conn:
            await conn.execute(sql, parameters)
            return await conn.fetchall()

    @abstractmethod
    async def get_stats(self) -> PoolStats:
        """Get connection pool statistics."""
        ...

    @abstractmethod
    def get_placeholder(self, index: int) -> str:
        """Get the placeholder syntax for this backend.

        SQLite uses ?, PostgreSQL uses $1, $2, etc.
        """
        ...

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        ...


def sanitize_connection_string(conn_str: str) -> str:
    """Remove password from connection string for logging."""
    # Match patterns like :password@ and replace password
    return re.sub(r":([^:@/]+)@", r":***@", conn_str)
