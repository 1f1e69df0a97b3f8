# rows.py
from __future__ import annotations

from typing import Any, Generic, Iterable, Iterator, NamedTuple, Tuple, TypeVar

__all__ = ["DataRow", "PeekingIterator"]

T = TypeVar("T")

_SENTINEL = object()


class DataRow(NamedTuple):
    """An immutable table row: the RowID and its cells in column order."""

    key: str
    cells: Tuple[Any, ...]

    @property
    def num_cells(self) -> int:
        return len(self.cells)


class PeekingIterator(Generic[T]):
    """
    Iterator wrapper that can look at the next element without consuming it.

    The aggregate phase reads one batch per call and must leave the stream positioned at
    the first row of the next batch, so the same wrapper has to be reused across calls.
    """

    def __init__(self, iterable: Iterable[T]):
        self._it: Iterator[T] = iter(iterable)
        self._peeked: Any = _SENTINEL

    def __iter__(self) -> "PeekingIterator[T]":
        return self

    def __next__(self) -> T:
        if self._peeked is not _SENTINEL:
            item, self._peeked = self._peeked, _SENTINEL
            return item
        return next(self._it)

    def has_next(self) -> bool:
        if self._peeked is _SENTINEL:
            try:
                self._peeked = next(self._it)
            except StopIteration:
                return False
        return True

    def peek(self) -> T:
        if not self.has_next():
            raise StopIteration
        return self._peeked
