"""SQL transactor: transactions carried in the execution context."""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

from ..core.ambient import SQL_TX_KEY, lookup_transaction, with_transaction
from ..core.context import Context
from ..core.transactor import Transaction, Transactor
from .base import BackendTransaction, IsolationLevel

logger = logging.getLogger(__name__)


class TransactorConnectionProvider(Protocol):
    """Anything that can open a transaction on the shard serving ``ctx``."""

    async def begin_tx(
        self, ctx: Context, isolation: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> BackendTransaction:
        ...


def set_tx(ctx: Context, tx: BackendTransaction) -> Context:
    return with_transaction(ctx, SQL_TX_KEY, tx)


def get_tx(ctx: Optional[Context]) -> Tuple[Optional[BackendTransaction], bool]:
    tx, ok = lookup_transaction(ctx, SQL_TX_KEY)
    if ok and isinstance(tx, BackendTransaction):
        return tx, True
    return None, False


class SQLTransaction(Transaction):
    def __init__(self, parent_ctx: Context, tx: BackendTransaction):
        self._parent_ctx = parent_ctx
        self._tx = tx

    @property
    def backend_transaction(self) -> BackendTransaction:
        return self._tx

    def context(self) -> Context:
        return set_tx(self._parent_ctx, self._tx)

    async def commit(self, ctx: Context) -> None:
        await self._tx.commit()

    async def rollback(self, ctx: Context) -> None:
        await self._tx.rollback()


class SQLTransactor(Transactor):
    """Opens READ COMMITTED transactions on the shard the provider resolves."""

    def __init__(
        self,
        provider: TransactorConnectionProvider,
        isolation: IsolationLevel = IsolationLevel.READ_COMMITTED,
    ):
        self._provider = provider
        self._isolation = isolation

    def key(self) -> str:
        return SQL_TX_KEY.name

    def is_tx(self, ctx: Optional[Context]) -> bool:
        _, ok = get_tx(ctx)
        return ok

    async def begin(self, ctx: Context) -> SQLTransaction:
        tx = await self._provider.begin_tx(ctx, self._isolation)
        return SQLTransaction(ctx, tx)

    async def begin_ctx(self, ctx: Context) -> Context:
        tx = await self._provider.begin_tx(ctx, self._isolation)
        return set_tx(ctx, tx)

    async def commit_ctx(self, ctx: Context) -> None:
        tx, ok = get_tx(ctx)
        if not ok:
            return
        logger.debug("Committing ambient SQL transaction")
        await tx.commit()

    async def rollback_ctx(self, ctx: Context) -> None:
        tx, ok = get_tx(ctx)
        if not ok:
            return
        logger.debug("Rolling back ambient SQL transaction")
        await tx.rollback()
