"""Sequential and concurrent fan-out over shards."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def raise_first(results: Sequence[Any], label: str = "fan-out") -> None:
    """Raise the first exception in ``results`` (by position).

    Any further failures are attached to it as notes and logged, so nothing
    that went wrong is dropped.
    """
    errors = [r for r in results if isinstance(r, BaseException)]
    if not errors:
        return

    first = errors[0]
    for extra in errors[1:]:
        logger.warning(f"{label}: additional failure: {extra!r}")
        first.add_note(f"{label}: additional failure: {extra!r}")
    raise first


async def wait_all(awaitables: Iterable[Awaitable[Any]], label: str = "fan-out") -> List[Any]:
    """Launch every awaitable, wait for all of them, then report failures.

    No awaitable is skipped or cancelled because another one failed.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    raise_first(results, label)
    return list(results)


async def each_shard(items: Iterable[T], fn: Callable[[T], Awaitable[Any]]) -> None:
    """Apply ``fn`` to every item in order, stopping at the first failure."""
    for item in items:
        await fn(item)


async def each_shard_async(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[Any]],
    limit: Optional[int] = None,
) -> None:
    """Apply ``fn`` to every item concurrently.

    Args:
        items: Per-shard targets
        fn: Coroutine function applied to each target
        limit: Maximum number of calls in flight; ``None`` or ``<= 0`` means unbounded
    """
    gate: Optional[asyncio.Semaphore] = None
    if limit is not None and limit > 0:
        gate = asyncio.Semaphore(limit)

    async def _run(item: T) -> Any:
        if gate is None:
            return await fn(item)
        async with gate:
            return await fn(item)

    await wait_all((_run(item) for item in items), label="each_shard_async")
