"""Resource handles, shard sets and shard selectors."""

from __future__ import annotations

import inspect
import itertools
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .context import Context
from .errors import (
    ConnectionKeyDuplicateError,
    ConnectionKeyEmptyError,
    ConnectionNotSelected,
    ShardSetEmptyError,
)
from .fanout import wait_all

logger = logging.getLogger(__name__)

R = TypeVar("R")

SHARD_KEY = "storage_shard_key"


@dataclass(frozen=True, eq=False)
class ResourceHandle(Generic[R]):
    """One physical connection plus its identifying key and routing tags."""

    key: str
    resource: R
    conditions: Tuple[str, ...] = field(default_factory=tuple)

    async def close(self) -> None:
        """Close the owned connection.

        Prefers ``aclose`` (redis.asyncio) and falls back to ``close``.
        """
        closer = getattr(self.resource, "aclose", None) or getattr(self.resource, "close", None)
        if closer is None:
            return
        result = closer()
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return f"ResourceHandle(key={self.key!r}, conditions={list(self.conditions)!r})"


Selector = Callable[[Context, Sequence[ResourceHandle[Any]]], Optional[ResourceHandle[Any]]]


class ShardSet(Generic[R]):
    """Ordered set of resource handles routed by a selector."""

    def __init__(self, handles: Iterable[ResourceHandle[R]], selector: Selector):
        self._handles: Tuple[ResourceHandle[R], ...] = tuple(handles)
        validate_keys(handle.key for handle in self._handles)
        self._selector = selector

    @property
    def handles(self) -> Tuple[ResourceHandle[R], ...]:
        return self._handles

    def keys(self) -> List[str]:
        return [handle.key for handle in self._handles]

    def resources(self) -> List[R]:
        """Return the raw connections in construction order."""
        return [handle.resource for handle in self._handles]

    def resolve(self, ctx: Context) -> ResourceHandle[R]:
        """Pick the handle serving ``ctx``.

        Raises:
            ConnectionNotSelected: If the selector returns nothing
        """
        handle = self._selector(ctx, self._handles)
        if handle is None:
            raise ConnectionNotSelected()
        return handle

    async def close(self) -> None:
        """Close every handle concurrently; all closes are attempted."""
        await wait_all((handle.close() for handle in self._handles), label="shard close")
        logger.info(f"Closed {len(self._handles)} shard connection(s): {', '.join(self.keys())}")

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[ResourceHandle[R]]:
        return iter(self._handles)


def validate_keys(keys: Any) -> None:
    """Fail on an empty key list, an empty key, or a duplicate key."""
    seen = set()
    for key in keys:
        if not key:
            raise ConnectionKeyEmptyError()
        if key in seen:
            raise ConnectionKeyDuplicateError(key)
        seen.add(key)
    if not seen:
        raise ShardSetEmptyError()


# Routing helpers


def with_shard_key(ctx: Context, key: str) -> Context:
    """Attach a routing key that the built-in selectors read."""
    return ctx.with_value(SHARD_KEY, key)


def get_shard_key(ctx: Optional[Context]) -> Optional[str]:
    if ctx is None:
        return None
    return ctx.value(SHARD_KEY)


def key_selector() -> Selector:
    """Select the handle whose key equals the context routing key."""

    def select(ctx: Context, handles: Sequence[ResourceHandle[Any]]) -> Optional[ResourceHandle[Any]]:
        shard_key = get_shard_key(ctx)
        if shard_key is None:
            return None
        for handle in handles:
            if handle.key == shard_key:
                return handle
        return None

    return select


def condition_selector() -> Selector:
    """Select the first handle whose conditions contain the context routing key."""

    def select(ctx: Context, handles: Sequence[ResourceHandle[Any]]) -> Optional[ResourceHandle[Any]]:
        shard_key = get_shard_key(ctx)
        if shard_key is None:
            return None
        for handle in handles:
            if shard_key in handle.conditions:
                return handle
        return None

    return select


def round_robin_selector() -> Selector:
    counter = itertools.count()

    def select(_: Context, handles: Sequence[ResourceHandle[Any]]) -> Optional[ResourceHandle[Any]]:
        if not handles:
            return None
        return handles[next(counter) % len(handles)]

    return select


def random_selector(rng: Optional[random.Random] = None) -> Selector:
    chooser = rng or random.Random()

    def select(_: Context, handles: Sequence[ResourceHandle[Any]]) -> Optional[ResourceHandle[Any]]:
        if not handles:
            return None
        return chooser.choice(list(handles))

    return select


def first_selector(_: Context, handles: Sequence[ResourceHandle[Any]]) -> Optional[ResourceHandle[Any]]:
    return handles[0] if handles else None
