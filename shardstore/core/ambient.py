"""Ambient transaction slots carried by a Context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from .context import Context


@dataclass(frozen=True)
class AmbientKey:
    """Context key for one resource kind.

    Each resource kind owns a distinct key so a single context can carry an
    open SQL transaction and an open Redis pipeline at the same time.
    """

    name: str

    def __str__(self) -> str:
        return self.name


SQL_TX_KEY = AmbientKey("storage_sql_tx")
REDIS_TX_KEY = AmbientKey("storage_redis_tx")


def with_transaction(ctx: Context, key: AmbientKey, handle: Any) -> Context:
    """Return a derived context carrying ``handle`` under ``key``."""
    return ctx.with_value(key, handle)


def lookup_transaction(ctx: Optional[Context], key: AmbientKey) -> Tuple[Any, bool]:
    """Find the transaction stored under ``key``.

    ``(None, False)`` means the caller is simply not inside a transaction.
    """
    if ctx is None:
        return None, False
    handle = ctx.value(key)
    if handle is None:
        return None, False
    return handle, True


def rewrite_transaction(key: AmbientKey, original: Context, target: Context) -> Context:
    """Copy the transaction under ``key`` from ``original`` onto ``target``."""
    handle, ok = lookup_transaction(original, key)
    if not ok:
        return target
    return with_transaction(target, key, handle)
