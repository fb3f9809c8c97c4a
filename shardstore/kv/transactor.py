"""Redis transactor: MULTI/EXEC pipelines carried in the execution context."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Optional, Protocol, Tuple

from ..core.ambient import REDIS_TX_KEY, lookup_transaction, with_transaction
from ..core.context import Context
from ..core.transactor import Transaction, Transactor

logger = logging.getLogger(__name__)


class TransactorClientProvider(Protocol):
    async def tx_pipeline(self, ctx: Context) -> Any:
        ...


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def set_tx(ctx: Context, pipeline: Any) -> Context:
    return with_transaction(ctx, REDIS_TX_KEY, pipeline)


def get_tx(ctx: Optional[Context]) -> Tuple[Any, bool]:
    return lookup_transaction(ctx, REDIS_TX_KEY)


async def exec_pipeline(ctx: Context, pipeline: Any) -> Any:
    return await ctx.run(pipeline.execute())


async def discard_pipeline(pipeline: Any) -> None:
    # redis.asyncio pipelines drop queued commands on reset()
    await _maybe_await(pipeline.reset())


class RedisTransaction(Transaction):
    def __init__(self, parent_ctx: Context, pipeline: Any):
        self._parent_ctx = parent_ctx
        self._pipeline = pipeline

    @property
    def pipeline(self) -> Any:
        return self._pipeline

    def context(self) -> Context:
        return set_tx(self._parent_ctx, self._pipeline)

    async def commit(self, ctx: Context) -> None:
        await exec_pipeline(ctx, self._pipeline)

    async def rollback(self, ctx: Context) -> None:
        await discard_pipeline(self._pipeline)


class RedisTransactor(Transactor):
    """Queues writes on a transactional pipeline until commit."""

    def __init__(self, provider: TransactorClientProvider):
        self._provider = provider

    def key(self) -> str:
        return REDIS_TX_KEY.name

    def is_tx(self, ctx: Optional[Context]) -> bool:
        _, ok = get_tx(ctx)
        return ok

    async def begin(self, ctx: Context) -> RedisTransaction:
        pipeline = await self._provider.tx_pipeline(ctx)
        return RedisTransaction(ctx, pipeline)

    async def begin_ctx(self, ctx: Context) -> Context:
        pipeline = await self._provider.tx_pipeline(ctx)
        return set_tx(ctx, pipeline)

    async def commit_ctx(self, ctx: Context) -> None:
        pipeline, ok = get_tx(ctx)
        if not ok:
            return
        logger.debug("Executing ambient Redis pipeline")
        await exec_pipeline(ctx, pipeline)

    async def rollback_ctx(self, ctx: Context) -> None:
        pipeline, ok = get_tx(ctx)
        if not ok:
            return
        logger.debug("Discarding ambient Redis pipeline")
        await discard_pipeline(pipeline)
