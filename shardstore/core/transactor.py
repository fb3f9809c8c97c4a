"""Backend-neutral transaction protocol and the composite transactor.

Service code depends on :class:`Transactor` only, so it never needs to know
whether it is talking to SQL, Redis, or several of them at once:

    transactor = CompositeTransactor(sql_client.transactor(), redis_client.transactor())
    ctx = await transactor.begin_ctx(ctx)
    try:
        await orders.create(ctx, order)
        await cache.invalidate(ctx, order.user_id)
        await transactor.commit_ctx(ctx)
    except Exception:
        await transactor.rollback_ctx(ctx)
        raise
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from .context import Context
from .fanout import raise_first, wait_all

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Transaction(ABC):
    """One open transaction.

    Exactly one of :meth:`commit` or :meth:`rollback` must be called, once.
    """

    @abstractmethod
    def context(self) -> Optional[Context]:
        """Return the parent context with this transaction attached."""
        ...

    @abstractmethod
    async def commit(self, ctx: Context) -> None:
        ...

    @abstractmethod
    async def rollback(self, ctx: Context) -> None:
        ...


class Transactor(ABC):
    """Begin/commit/rollback protocol for one resource kind."""

    @abstractmethod
    def key(self) -> str:
        ...

    @abstractmethod
    def is_tx(self, ctx: Optional[Context]) -> bool:
        """True when ``ctx`` carries an open transaction for this resource kind."""
        ...

    @abstractmethod
    async def begin(self, ctx: Context) -> Transaction:
        ...

    @abstractmethod
    async def begin_ctx(self, ctx: Context) -> Context:
        """Open a transaction and return a context carrying it."""
        ...

    @abstractmethod
    async def commit_ctx(self, ctx: Context) -> None:
        """Commit the ambient transaction; a no-op when there is none."""
        ...

    @abstractmethod
    async def rollback_ctx(self, ctx: Context) -> None:
        """Roll back the ambient transaction; a no-op when there is none."""
        ...


class CompositeTransaction(Transaction):
    """Child transactions committed or rolled back together."""

    def __init__(self, transactions: Sequence[Transaction]):
        self._transactions: List[Transaction] = list(transactions)

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    def context(self) -> Optional[Context]:
        return None

    async def commit(self, ctx: Context) -> None:
        await wait_all((tx.commit(ctx) for tx in self._transactions), label="composite commit")

    async def rollback(self, ctx: Context) -> None:
        await wait_all((tx.rollback(ctx) for tx in self._transactions), label="composite rollback")


class CompositeTransactor(Transactor):
    """Treats several transactors as one unit.

    This is best-effort all-or-nothing, not a distributed transaction: a
    commit that succeeds on one child and fails on another is not undone.
    """

    def __init__(self, *transactors: Transactor):
        self._transactors: List[Transactor] = list(transactors)

    @property
    def transactors(self) -> List[Transactor]:
        return list(self._transactors)

    def key(self) -> str:
        return ",".join(tr.key() for tr in self._transactors)

    def is_tx(self, ctx: Optional[Context]) -> bool:
        return any(tr.is_tx(ctx) for tr in self._transactors)

    async def begin(self, ctx: Context) -> Transaction:
        opened: List[Transaction] = []
        for tr in self._transactors:
            try:
                opened.append(await tr.begin(ctx))
            except BaseException as exc:
                await _undo_partial_begin(
                    exc, [tx.rollback(ctx) for tx in opened], failed=tr.key()
                )
                raise
        return CompositeTransaction(opened)

    async def begin_ctx(self, ctx: Context) -> Context:
        current = ctx
        opened: List[Transactor] = []
        for tr in self._transactors:
            try:
                current = await tr.begin_ctx(current)
            except BaseException as exc:
                await _undo_partial_begin(
                    exc, [prev.rollback_ctx(current) for prev in opened], failed=tr.key()
                )
                raise
            opened.append(tr)
        return current

    async def commit_ctx(self, ctx: Context) -> None:
        await wait_all((tr.commit_ctx(ctx) for tr in self._transactors), label="composite commit")

    async def rollback_ctx(self, ctx: Context) -> None:
        await wait_all(
            (tr.rollback_ctx(ctx) for tr in self._transactors), label="composite rollback"
        )


async def _undo_partial_begin(
    cause: BaseException, rollbacks: List[Awaitable[Any]], failed: str
) -> None:
    """Roll back children opened before a failed begin.

    Rollback failures are logged and attached to ``cause`` so the begin
    error stays the one the caller sees.
    """
    if not rollbacks:
        return
    logger.warning(f"Begin failed on '{failed}', rolling back {len(rollbacks)} opened transaction(s)")
    results = await asyncio.gather(*rollbacks, return_exceptions=True)
    try:
        raise_first(results, label="partial begin rollback")
    except Exception as rollback_error:
        cause.add_note(f"rollback after failed begin also failed: {rollback_error!r}")


async def atomic(
    ctx: Context,
    transactor: Transactor,
    fn: Callable[[Context], Awaitable[T]],
) -> T:
    """Run ``fn`` inside a transaction.

    When ``ctx`` already carries a transaction for ``transactor``, ``fn``
    joins it and the outer owner decides the outcome. Otherwise a new
    transaction is opened, committed when ``fn`` returns and rolled back
    when it raises.
    """
    if transactor.is_tx(ctx):
        return await fn(ctx)

    tx_ctx = await transactor.begin_ctx(ctx)
    try:
        result = await fn(tx_ctx)
    except BaseException:
        try:
            await transactor.rollback_ctx(tx_ctx)
        except Exception as rollback_error:
            logger.error(f"Rollback failed for {transactor.key()}: {rollback_error}")
        raise

    await transactor.commit_ctx(tx_ctx)
    return result
