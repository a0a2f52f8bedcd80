"""A growable list whose slots own their contents through a release callback."""

from __future__ import annotations

from typing import Any, Callable, Iterator, Optional

ARRAY_LIST_DEFAULT_SIZE = 32


class ArrayList:
    """Sparse, growable list; replaced or freed items go through free_fn."""

    def __init__(self, free_fn: Optional[Callable[[Any], None]] = None) -> None:
        self._free_fn = free_fn
        self._capacity = ARRAY_LIST_DEFAULT_SIZE
        self._items: list = []

    @property
    def capacity(self) -> int:
        """Number of slots currently reserved."""
        return self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int):
        if index < 0:
            raise IndexError("negative index")
        if index >= len(self._items):
            return None
        return self._items[index]

    def __iter__(self) -> Iterator:
        return iter(list(self._items))

    def _release(self, item) -> None:
        if item is not None and self._free_fn is not None:
            self._free_fn(item)

    def _expand(self, needed: int) -> None:
        if needed < self._capacity:
            return
        self._capacity = max(self._capacity << 1, needed)

    def put(self, index: int, data) -> None:
        """Store data at index, releasing any item it replaces."""
        if index < 0:
            raise IndexError("negative index")
        self._expand(index + 1)
        if index < len(self._items):
            self._release(self._items[index])
            self._items[index] = data
        else:
            self._items.extend([None] * (index - len(self._items)))
            self._items.append(data)

    def add(self, data) -> None:
        """Append data after the last occupied slot."""
        self.put(len(self._items), data)

    def sort(self, key: Optional[Callable[[Any], Any]] = None) -> None:
        """Sort the stored items in place."""
        self._items.sort(key=key)

    def free(self) -> None:
        """Release every stored item and empty the list."""
        for item in self._items:
            self._release(item)
        self._items.clear()
        self._capacity = ARRAY_LIST_DEFAULT_SIZE