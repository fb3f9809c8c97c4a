import asyncio

import pytest

from shardstore.core.ambient import AmbientKey, lookup_transaction, with_transaction
from shardstore.core.context import background
from shardstore.core.transactor import (
    CompositeTransaction,
    CompositeTransactor,
    Transaction,
    Transactor,
    atomic,
)


class RecordingTransaction(Transaction):
    def __init__(self, name, log, fail_commit=False):
        self.name = name
        self.log = log
        self.fail_commit = fail_commit

    def context(self):
        return None

    async def commit(self, ctx):
        self.log.append(f"{self.name}:commit")
        if self.fail_commit:
            raise RuntimeError(f"{self.name} commit failed")

    async def rollback(self, ctx):
        self.log.append(f"{self.name}:rollback")


class RecordingTransactor(Transactor):
    """Stores a RecordingTransaction in the context under its own key."""

    def __init__(self, name, log, fail_begin=False, fail_commit=False):
        self.name = name
        self.log = log
        self.fail_begin = fail_begin
        self.fail_commit = fail_commit
        self.slot = AmbientKey(name)

    def key(self):
        return self.name

    def is_tx(self, ctx):
        _, ok = lookup_transaction(ctx, self.slot)
        return ok

    async def begin(self, ctx):
        if self.fail_begin:
            raise RuntimeError(f"{self.name} begin failed")
        self.log.append(f"{self.name}:begin")
        return RecordingTransaction(self.name, self.log, self.fail_commit)

    async def begin_ctx(self, ctx):
        tx = await self.begin(ctx)
        return with_transaction(ctx, self.slot, tx)

    async def commit_ctx(self, ctx):
        tx, ok = lookup_transaction(ctx, self.slot)
        if ok:
            await tx.commit(ctx)

    async def rollback_ctx(self, ctx):
        tx, ok = lookup_transaction(ctx, self.slot)
        if ok:
            await tx.rollback(ctx)


class TestCompositeTransactor:
    def test_key_joins_children(self):
        log = []
        composite = CompositeTransactor(RecordingTransactor("sql", log), RecordingTransactor("redis", log))
        assert composite.key() == "sql,redis"

    @pytest.mark.asyncio
    async def test_begin_ctx_opens_every_child(self):
        log = []
        sql, redis = RecordingTransactor("sql", log), RecordingTransactor("redis", log)
        composite = CompositeTransactor(sql, redis)

        ctx = await composite.begin_ctx(background())

        assert sql.is_tx(ctx) and redis.is_tx(ctx)
        assert composite.is_tx(ctx)
        assert not composite.is_tx(background())

    @pytest.mark.asyncio
    async def test_commit_ctx_on_plain_context_is_noop(self):
        log = []
        composite = CompositeTransactor(RecordingTransactor("sql", log))
        await composite.commit_ctx(background())
        await composite.rollback_ctx(background())
        assert log == []

    @pytest.mark.asyncio
    async def test_commit_reaches_every_child_after_a_failure(self):
        log = []
        composite = CompositeTransactor(
            RecordingTransactor("sql", log, fail_commit=True),
            RecordingTransactor("redis", log),
        )
        ctx = await composite.begin_ctx(background())

        with pytest.raises(RuntimeError, match="sql commit failed"):
            await composite.commit_ctx(ctx)

        assert "sql:commit" in log
        assert "redis:commit" in log

    @pytest.mark.asyncio
    async def test_failed_begin_ctx_rolls_back_opened_children(self):
        log = []
        composite = CompositeTransactor(
            RecordingTransactor("sql", log),
            RecordingTransactor("redis", log, fail_begin=True),
        )

        with pytest.raises(RuntimeError, match="redis begin failed"):
            await composite.begin_ctx(background())

        assert log == ["sql:begin", "sql:rollback"]

    @pytest.mark.asyncio
    async def test_failed_begin_rolls_back_opened_transactions(self):
        log = []
        composite = CompositeTransactor(
            RecordingTransactor("sql", log),
            RecordingTransactor("redis", log, fail_begin=True),
        )

        with pytest.raises(RuntimeError):
            await composite.begin(background())

        assert log == ["sql:begin", "sql:rollback"]

    @pytest.mark.asyncio
    async def test_cancelled_begin_still_rolls_back_opened_children(self):
        log = []

        class CancelledBegin(RecordingTransactor):
            async def begin(self, ctx):
                raise asyncio.CancelledError()

        composite = CompositeTransactor(RecordingTransactor("sql", log), CancelledBegin("redis", log))

        with pytest.raises(asyncio.CancelledError):
            await composite.begin_ctx(background())
        assert log == ["sql:begin", "sql:rollback"]

        log.clear()
        with pytest.raises(asyncio.CancelledError):
            await composite.begin(background())
        assert log == ["sql:begin", "sql:rollback"]

    @pytest.mark.asyncio
    async def test_begin_returns_composite_transaction(self):
        log = []
        composite = CompositeTransactor(RecordingTransactor("a", log), RecordingTransactor("b", log))

        tx = await composite.begin(background())
        assert isinstance(tx, CompositeTransaction)
        assert tx.context() is None

        await tx.rollback(background())
        assert log == ["a:begin", "b:begin", "a:rollback", "b:rollback"]


class TestAtomic:
    @pytest.mark.asyncio
    async def test_commits_on_success(self):
        log = []
        transactor = RecordingTransactor("sql", log)

        async def work(ctx):
            assert transactor.is_tx(ctx)
            return "done"

        assert await atomic(background(), transactor, work) == "done"
        assert log == ["sql:begin", "sql:commit"]

    @pytest.mark.asyncio
    async def test_rolls_back_and_reraises(self):
        log = []
        transactor = RecordingTransactor("sql", log)

        async def work(ctx):
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await atomic(background(), transactor, work)
        assert log == ["sql:begin", "sql:rollback"]

    @pytest.mark.asyncio
    async def test_joins_existing_transaction(self):
        log = []
        transactor = RecordingTransactor("sql", log)
        outer = await transactor.begin_ctx(background())

        async def work(ctx):
            return ctx

        assert await atomic(outer, transactor, work) is outer
        assert log == ["sql:begin"]
