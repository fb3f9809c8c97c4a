"""Storage-agnostic building blocks: contexts, shard routing and transactors."""

from .ambient import (
    REDIS_TX_KEY,
    SQL_TX_KEY,
    AmbientKey,
    lookup_transaction,
    rewrite_transaction,
    with_transaction,
)
from .context import Context, background, ensure, is_no_log, no_log
from .fanout import each_shard, each_shard_async, wait_all
from .shards import (
    ResourceHandle,
    Selector,
    ShardSet,
    condition_selector,
    first_selector,
    get_shard_key,
    key_selector,
    random_selector,
    round_robin_selector,
    with_shard_key,
)
from .transactor import CompositeTransaction, CompositeTransactor, Transaction, Transactor, atomic

__all__ = [
    "AmbientKey",
    "SQL_TX_KEY",
    "REDIS_TX_KEY",
    "with_transaction",
    "lookup_transaction",
    "rewrite_transaction",
    "Context",
    "background",
    "ensure",
    "no_log",
    "is_no_log",
    "each_shard",
    "each_shard_async",
    "wait_all",
    "ResourceHandle",
    "Selector",
    "ShardSet",
    "key_selector",
    "condition_selector",
    "round_robin_selector",
    "random_selector",
    "first_selector",
    "with_shard_key",
    "get_shard_key",
    "Transaction",
    "Transactor",
    "CompositeTransaction",
    "CompositeTransactor",
    "atomic",
]
