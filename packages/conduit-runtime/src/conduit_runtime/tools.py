from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import Generic, TypeVar, overload

T = TypeVar("T")


class ToolRegistry(Sequence[T], Generic[T]):
    """Ordered, name-addressable collection of agents owned by another agent.

    The public surface is read-only.  Owners grow the registry through
    their own ``add_tool`` method, which calls :meth:`_append`.  Duplicate
    names are allowed; :meth:`get` returns the first match.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._items: list[T] = list(items)

    def _append(self, item: T) -> None:
        self._items.append(item)

    def get(self, name: str) -> T | None:
        return next(
            (item for item in self._items if getattr(item, "name", None) == name),
            None,
        )

    def names(self) -> list[str]:
        return [getattr(item, "name", "") for item in self._items]

    @overload
    def __getitem__(self, index: int) -> T: ...
    @overload
    def __getitem__(self, index: slice) -> list[T]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return self.get(item) is not None
        return item in self._items

    def __repr__(self) -> str:
        return f"ToolRegistry({self.names()!r})"
