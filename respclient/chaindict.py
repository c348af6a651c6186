"""A hash table with separate chaining and power-of-two sized bucket arrays."""

from __future__ import annotations

import operator
import sys
from collections.abc import Callable, Hashable, Iterator
from dataclasses import dataclass
from typing import Any, Optional

__all__ = ["ChainedDict", "gen_hash_function", "INITIAL_SIZE"]

INITIAL_SIZE = 4
_MAX_SIZE = sys.maxsize
_HASH_SEED = 5381
_HASH_MASK = 0xFFFFFFFF


def gen_hash_function(data: bytes) -> int:
    """Bernstein's hash (hash * 33 + byte) over ``data``, as a 32-bit unsigned value."""
    value = _HASH_SEED
    for byte in bytes(data):
        value = (value * 33 + byte) & _HASH_MASK
    return value


def _next_power(size: int) -> int:
    """Smallest power of two, at least ``INITIAL_SIZE``, that holds ``size`` slots."""
    if size >= _MAX_SIZE:
        return _MAX_SIZE
    power = INITIAL_SIZE
    while power < size:
        power *= 2
    return power


@dataclass(slots=True)
class _Entry:
    key: Any
    value: Any


class ChainedDict:
    """Hash table keyed through a caller-supplied hash and equality function.

    The table grows to twice its size whenever it becomes full. Within a
    chain the most recently inserted entry comes first.
    """

    def __init__(
        self,
        hash_function: Callable[[Any], int],
        key_equal: Optional[Callable[[Any, Any], bool]] = None,
    ) -> None:
        self._hash = hash_function
        self._equal = key_equal if key_equal is not None else operator.eq
        self._table: list[list[_Entry]] = []
        self._used = 0

    def _slot(self, key: Hashable) -> int:
        return self._hash(key) & (len(self._table) - 1)

    def _lookup(self, key: Any) -> Optional[_Entry]:
        if not self._table:
            return None
        for entry in self._table[self._slot(key)]:
            if self._equal(key, entry.key):
                return entry
        return None

    def expand(self, size: int) -> None:
        """Resize the table to hold at least ``size`` slots, rehashing every entry."""
        if self._used > size:
            raise ValueError(
                f"cannot shrink a table holding {self._used} entries to {size} slots"
            )
        real_size = _next_power(size)
        mask = real_size - 1
        table: list[list[_Entry]] = [[] for _ in range(real_size)]
        for chain in self._table:
            for entry in chain:
                table[self._hash(entry.key) & mask].insert(0, entry)
        self._table = table

    def _expand_if_needed(self) -> None:
        if not self._table:
            self.expand(INITIAL_SIZE)
        elif self._used == len(self._table):
            self.expand(len(self._table) * 2)

    def add(self, key: Any, value: Any) -> None:
        """Insert a new entry; raise KeyError if the key is already present."""
        self._expand_if_needed()
        chain = self._table[self._slot(key)]
        if any(self._equal(key, entry.key) for entry in chain):
            raise KeyError(key)
        chain.insert(0, _Entry(key, value))
        self._used += 1

    def replace(self, key: Any, value: Any) -> bool:
        """Set the value for ``key``; return True if the key was newly added."""
        try:
            self.add(key, value)
        except KeyError:
            entry = self._lookup(key)
            if entry is not None:
                entry.value = value
            return False
        return True

    def delete(self, key: Any) -> None:
        """Remove the entry for ``key``; raise KeyError if there is none."""
        if not self._table:
            raise KeyError(key)
        chain = self._table[self._slot(key)]
        for position, entry in enumerate(chain):
            if self._equal(key, entry.key):
                del chain[position]
                self._used -= 1
                return
        raise KeyError(key)

    def find(self, key: Any) -> Any:
        """Return the value stored for ``key``; raise KeyError if there is none."""
        entry = self._lookup(key)
        if entry is None:
            raise KeyError(key)
        return entry.value

    def clear(self) -> None:
        """Drop every entry and release the bucket array."""
        self._table = []
        self._used = 0

    def slots(self) -> int:
        """Number of buckets currently allocated."""
        return len(self._table)

    def __len__(self) -> int:
        return self._used

    def __iter__(self) -> Iterator[Any]:
        """Yield keys bucket by bucket; the key just yielded may be deleted safely."""
        for chain in self._table:
            for entry in tuple(chain):
                yield entry.key