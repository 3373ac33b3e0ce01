"""Filter blocks: one filter per 2KB range of data-block offsets.

Layout::

    filter[0] ... filter[n-1]
    offset of filter[i]: fixed32, for each i
    offset of the offset array: fixed32
    base_lg: one byte
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from sstkit.format import decode_fixed32, encode_fixed32

FILTER_BASE_LG = 11
FILTER_BASE = 1 << FILTER_BASE_LG


class FilterPolicy(ABC):
    """Builds compact summaries of key sets and tests keys against them."""

    @abstractmethod
    def name(self) -> str:
        """Return the policy's name, stored in the table's metaindex."""

    @abstractmethod
    def create_filter(self, keys: Sequence[bytes]) -> bytes:
        """Return a filter summarising ``keys``."""

    @abstractmethod
    def key_may_match(self, key: bytes, filter_data: bytes) -> bool:
        """Return False only if ``key`` was surely not in the filter's keys."""


class FilterBlockBuilder:
    """Collects keys per data block and produces the table's filter block.

    Calls must follow the pattern ``(start_block add_key*)* finish``.
    """

    def __init__(self, policy: FilterPolicy) -> None:
        self._policy = policy
        self._keys: list[bytes] = []
        self._result = bytearray()
        self._filter_offsets: list[int] = []

    def start_block(self, block_offset: int) -> None:
        """Note that a data block starts at ``block_offset``."""
        filter_index = block_offset // FILTER_BASE
        if filter_index < len(self._filter_offsets):
            raise ValueError("block offsets must not go backwards")
        while filter_index > len(self._filter_offsets):
            self._generate_filter()

    def add_key(self, key: bytes) -> None:
        """Add ``key`` to the current filter."""
        self._keys.append(bytes(key))

    def finish(self) -> bytes:
        """Return the complete filter block."""
        if self._keys:
            self._generate_filter()
        out = bytearray(self._result)
        array_offset = len(out)
        for offset in self._filter_offsets:
            out += encode_fixed32(offset)
        out += encode_fixed32(array_offset)
        out.append(FILTER_BASE_LG)
        return bytes(out)

    def _generate_filter(self) -> None:
        self._filter_offsets.append(len(self._result))
        if not self._keys:
            return
        self._result += self._policy.create_filter(list(self._keys))
        self._keys.clear()


class FilterBlockReader:
    """Answers membership queries against a filter block."""

    def __init__(self, policy: FilterPolicy, contents: bytes) -> None:
        self._policy = policy
        self._data = bytes(contents)
        self._offset = 0
        self._num = 0
        self._base_lg = 0
        n = len(self._data)
        if n < 5:
            return
        self._base_lg = self._data[n - 1]
        last_word = decode_fixed32(self._data, n - 5)
        if last_word > n - 5:
            return
        self._offset = last_word
        self._num = (n - 5 - last_word) // 4

    def key_may_match(self, block_offset: int, key: bytes) -> bool:
        """Return False only if ``key`` is surely absent from that data block."""
        index = block_offset >> self._base_lg
        if index < self._num:
            start = decode_fixed32(self._data, self._offset + index * 4)
            limit = decode_fixed32(self._data, self._offset + index * 4 + 4)
            if start <= limit <= self._offset:
                return self._policy.key_may_match(bytes(key), self._data[start:limit])
            if start == limit:
                # An empty filter matches no key.
                return False
        # Errors are treated as potential matches.
        return True