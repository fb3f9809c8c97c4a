"""Helpers for building positional query arguments."""

from __future__ import annotations

from typing import Any, Callable, List, Tuple


def _numbered(index: int) -> str:
    return f"${index}"


class Arguments:
    """Collects query arguments and hands out matching placeholders.

    Useful for multi-row inserts:

        args = Arguments(placeholder=backend.get_placeholder)
        values = ", ".join(args.add_many(u.id, u.name) for u in users)
        await client.execute(ctx, f"INSERT INTO users (id, name) VALUES {values}", args.args())
    """

    def __init__(self, *args: Any, placeholder: Callable[[int], str] = _numbered):
        self._args: List[Any] = list(args)
        self._placeholder = placeholder

    def __len__(self) -> int:
        return len(self._args)

    def add(self, arg: Any) -> "Arguments":
        """Append one argument; follow with ``number()`` for its placeholder."""
        self._args.append(arg)
        return self

    def add_many(self, *args: Any) -> str:
        """Append several arguments and return ``"($n, $n+1, ...)"``."""
        if not args:
            return ""
        placeholders = [self.add(arg).number() for arg in args]
        return f"({', '.join(placeholders)})"

    def number(self) -> str:
        """Placeholder for the most recently added argument."""
        return self._placeholder(len(self._args))

    def args(self) -> Tuple[Any, ...]:
        return tuple(self._args)


def page(page_size: int, page: int) -> Tuple[int, int]:
    """Translate a 1-based page number into ``(offset, limit)``; page 0 means page 1."""
    if page <= 0:
        page = 1
    return (page - 1) * page_size, page_size
