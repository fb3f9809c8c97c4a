"""Immutable execution context threaded through every storage call."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

from .errors import ContextCancelledError, DeadlineExceededError

T = TypeVar("T")

_MISSING = object()
_NO_KEY = object()

NO_LOG_KEY = "STORAGE_NO_LOG"


@dataclass(frozen=True, eq=False)
class _CancelState:
    """Shared cancellation flag for a context subtree."""

    event: asyncio.Event = field(default_factory=asyncio.Event)
    parent: Optional["_CancelState"] = None

    def events(self) -> List[asyncio.Event]:
        """Events for this state and every ancestor state."""
        events = []
        state: Optional[_CancelState] = self
        while state is not None:
            events.append(state.event)
            state = state.parent
        return events

    def is_set(self) -> bool:
        state: Optional[_CancelState] = self
        while state is not None:
            if state.event.is_set():
                return True
            state = state.parent
        return False


@dataclass(frozen=True, eq=False)
class Context:
    """Append-only value chain with optional deadline and cancellation.

    A context is never mutated. ``with_value`` and friends return a derived
    context that points back at its parent, so values attached deeper in a
    call chain are invisible to callers holding an ancestor.
    """

    parent: Optional["Context"] = None
    key: Any = None
    val: Any = None
    deadline: Optional[float] = None
    cancel_state: Optional[_CancelState] = None

    @classmethod
    def background(cls) -> "Context":
        """Return an empty root context."""
        return cls()

    def with_value(self, key: Any, value: Any) -> "Context":
        return Context(
            parent=self,
            key=key,
            val=value,
            deadline=self.deadline,
            cancel_state=self.cancel_state,
        )

    def value(self, key: Any, default: Any = None) -> Any:
        """Walk the chain for ``key`` and return the nearest value."""
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx.parent is not None and ctx.key == key:
                return ctx.val
            ctx = ctx.parent
        return default

    def has_value(self, key: Any) -> bool:
        return self.value(key, _MISSING) is not _MISSING

    def with_timeout(self, seconds: float) -> "Context":
        """Derive a context whose deadline is at most ``seconds`` from now."""
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return Context(
            parent=self,
            key=_NO_KEY,
            val=None,
            deadline=deadline,
            cancel_state=self.cancel_state,
        )

    def with_cancel(self) -> Tuple["Context", Callable[[], None]]:
        """Derive a cancellable context and return it with its cancel function."""
        state = _CancelState(parent=self.cancel_state)
        ctx = Context(
            parent=self,
            key=_NO_KEY,
            val=None,
            deadline=self.deadline,
            cancel_state=state,
        )
        return ctx, state.event.set

    @property
    def cancelled(self) -> bool:
        return self.cancel_state is not None and self.cancel_state.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def done(self) -> bool:
        if self.cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def validate(self) -> None:
        """Raise if the context is already cancelled or past its deadline."""
        if self.cancelled:
            raise ContextCancelledError("context canceled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError("context deadline exceeded")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await a driver call under this context's deadline and cancellation.

        The call is bounded only by the context's own deadline; no timeout
        is added when the context has none. Cancelling the context while the
        call is in flight cancels the call and raises ContextCancelledError.
        """
        try:
            self.validate()
        except Exception:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise

        remaining = self.remaining()
        if self.cancel_state is None:
            if remaining is None:
                return await awaitable
            try:
                return await asyncio.wait_for(awaitable, timeout=remaining)
            except asyncio.TimeoutError as exc:
                raise DeadlineExceededError("context deadline exceeded") from exc

        task = asyncio.ensure_future(awaitable)
        waiters = [asyncio.ensure_future(event.wait()) for event in self.cancel_state.events()]
        try:
            done, _ = await asyncio.wait(
                {task, *waiters}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            task.cancel()
            raise
        finally:
            for waiter in waiters:
                waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        if done:
            raise ContextCancelledError("context canceled")
        raise DeadlineExceededError("context deadline exceeded")


def background() -> Context:
    return Context.background()


def ensure(ctx: Optional[Context]) -> Context:
    """Treat a missing context as the background context."""
    return ctx if ctx is not None else Context.background()


def no_log(ctx: Context) -> Context:
    """Mark a context so statement logging is skipped for calls made with it."""
    return ctx.with_value(NO_LOG_KEY, True)


def is_no_log(ctx: Optional[Context]) -> bool:
    if ctx is None:
        return False
    return bool(ctx.value(NO_LOG_KEY, False))
