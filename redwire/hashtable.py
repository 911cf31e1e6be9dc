"""Chained hash table with power-of-two sizing and incremental growth."""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

INITIAL_SIZE = 4
_LONG_MAX = 2**63 - 1
_HASH_MASK = 0xFFFFFFFF

HashFunction = Callable[[Any], int]
KeyCompare = Callable[[Any, Any], bool]


def gen_hash_function(data: bytes | bytearray | memoryview | str) -> int:
    """Bernstein's djb2 hash (``hash * 33 + c``) truncated to 32 bits."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    value = 5381
    for byte in bytes(data):
        value = (value * 33 + byte) & _HASH_MASK
    return value


def _default_hash(key: Any) -> int:
    if isinstance(key, (bytes, bytearray, memoryview, str)):
        return gen_hash_function(key)
    return hash(key) & _HASH_MASK


def _next_power(size: int) -> int:
    if size >= _LONG_MAX:
        return _LONG_MAX
    power = INITIAL_SIZE
    while power < size:
        power *= 2
    return power


@dataclass
class _Entry:
    key: Any
    value: Any


class HashTable:
    """A hash table whose slot count is a power of two, doubling when full.

    Collisions are resolved by chaining; a new entry goes to the head of
    its chain.
    """

    def __init__(self, hash_function: Optional[HashFunction] = None,
                 key_compare: Optional[KeyCompare] = None) -> None:
        self.hash_function = hash_function if hash_function is not None else _default_hash
        self.key_compare = key_compare if key_compare is not None else operator.eq
        self._table: list[list[_Entry]] = []
        self._used = 0

    def _index(self, key: Any, size: int) -> int:
        return (self.hash_function(key) & _HASH_MASK) & (size - 1)

    def _locate(self, key: Any) -> Optional[tuple[list[_Entry], int]]:
        if not self._table:
            return None
        chain = self._table[self._index(key, len(self._table))]
        for pos, entry in enumerate(chain):
            if self.key_compare(key, entry.key):
                return chain, pos
        return None

    def expand(self, size: int) -> None:
        """Resize to the smallest power of two not below ``size``.

        Raises ValueError if ``size`` is smaller than the number of entries.
        """
        if self._used > size:
            raise ValueError(
                f"cannot shrink table holding {self._used} entries to {size} slots"
            )
        real_size = _next_power(size)
        table: list[list[_Entry]] = [[] for _ in range(real_size)]
        for chain in self._table:
            for entry in chain:
                table[self._index(entry.key, real_size)].insert(0, entry)
        self._table = table

    def _expand_if_needed(self) -> None:
        if not self._table:
            self.expand(INITIAL_SIZE)
        elif self._used == len(self._table):
            self.expand(len(self._table) * 2)

    def add(self, key: Any, value: Any) -> None:
        """Insert a new entry; raise KeyError if the key is already present."""
        self._expand_if_needed()
        chain = self._table[self._index(key, len(self._table))]
        if any(self.key_compare(key, entry.key) for entry in chain):
            raise KeyError(key)
        chain.insert(0, _Entry(key, value))
        self._used += 1

    def replace(self, key: Any, value: Any) -> bool:
        """Set ``key`` to ``value``; return True if the key was newly added."""
        try:
            self.add(key, value)
        except KeyError:
            found = self._locate(key)
            assert found is not None
            chain, pos = found
            chain[pos].value = value
            return False
        return True

    def delete(self, key: Any) -> None:
        """Remove the entry for ``key``; raise KeyError if it is absent."""
        found = self._locate(key)
        if found is None:
            raise KeyError(key)
        chain, pos = found
        del chain[pos]
        self._used -= 1

    def find(self, key: Any) -> Any:
        """Return the value stored for ``key``; raise KeyError if absent."""
        found = self._locate(key)
        if found is None:
            raise KeyError(key)
        chain, pos = found
        return chain[pos].value

    def clear(self) -> None:
        """Drop every entry and release the slots."""
        self._table = []
        self._used = 0

    def slots(self) -> int:
        """Number of slots currently allocated."""
        return len(self._table)

    def __len__(self) -> int:
        return self._used

    def __iter__(self) -> Iterator[tuple[Any, Any]]:
        """Yield ``(key, value)`` pairs; the current entry may be deleted."""
        for chain in self._table:
            for entry in list(chain):
                yield entry.key, entry.value

    def __contains__(self, key: Any) -> bool:
        return self._locate(key) is not None