"""Prefix-compressed key/value blocks: building and reading.

An entry stores the number of key bytes shared with the previous key,
the number of unshared key bytes and the value length (all varints),
followed by the unshared key bytes and the value. Every
``block_restart_interval`` entries the key is stored whole; such an entry
is a restart point. The block ends with the restart offsets (fixed32
each) and their count (fixed32).
"""

from __future__ import annotations

from typing import Optional, Union

from sstkit.format import (
    BlockContents,
    CorruptionError,
    decode_fixed32,
    decode_varint,
    encode_fixed32,
    encode_varint,
)
from sstkit.iterators import (
    BytewiseComparator,
    KVIterator,
    new_empty_iterator,
    new_error_iterator,
)

_U32 = 4
_MAX_U32 = 0xFFFFFFFF


class BlockBuilder:
    """Builds one block from keys added in strictly increasing order."""

    def __init__(self, block_restart_interval: int = 16, comparator=None) -> None:
        if block_restart_interval < 1:
            raise ValueError("block_restart_interval must be at least 1")
        self.block_restart_interval = block_restart_interval
        self.comparator = comparator if comparator is not None else BytewiseComparator()
        self.reset()

    def reset(self) -> None:
        """Discard the contents as if the builder were new."""
        self._buffer = bytearray()
        self._restarts = [0]
        self._counter = 0
        self._finished = False
        self._last_key = b""

    def current_size_estimate(self) -> int:
        """Return the uncompressed size the block would have if finished now."""
        return len(self._buffer) + len(self._restarts) * _U32 + _U32

    def is_empty(self) -> bool:
        """Return whether no entry has been added since the last reset."""
        return not self._buffer

    def finish(self) -> bytes:
        """Append the restart array and return the finished block."""
        if not self._finished:
            for restart in self._restarts:
                self._buffer += encode_fixed32(restart)
            self._buffer += encode_fixed32(len(self._restarts))
            self._finished = True
        return bytes(self._buffer)

    def add(self, key: bytes, value: bytes) -> None:
        """Add an entry; ``key`` must sort after every key added before."""
        if self._finished:
            raise RuntimeError("cannot add to a finished block")
        key = bytes(key)
        value = bytes(value)
        if self._buffer and self.comparator.compare(key, self._last_key) <= 0:
            raise ValueError("keys must be added in strictly increasing order")

        shared = 0
        if self._counter < self.block_restart_interval:
            last = self._last_key
            limit = min(len(last), len(key))
            while shared < limit and last[shared] == key[shared]:
                shared += 1
        else:
            self._restarts.append(len(self._buffer))
            self._counter = 0
        non_shared = len(key) - shared

        self._buffer += encode_varint(shared)
        self._buffer += encode_varint(non_shared)
        self._buffer += encode_varint(len(value))
        self._buffer += key[shared:]
        self._buffer += value

        self._last_key = key
        self._counter += 1


def _decode_entry(
    data: bytes, pos: int, limit: int
) -> Optional[tuple[int, int, int, int]]:
    """Decode an entry header at ``pos`` without reading past ``limit``.

    Return ``(shared, non_shared, value_length, key_delta_offset)`` or
    ``None`` if the entry is malformed.
    """
    if limit - pos < 3:
        return None
    shared, non_shared, value_length = data[pos], data[pos + 1], data[pos + 2]
    if (shared | non_shared | value_length) < 128:
        pos += 3
    else:
        view = memoryview(data)[:limit]
        try:
            shared, pos = decode_varint(view, pos)
            non_shared, pos = decode_varint(view, pos)
            value_length, pos = decode_varint(view, pos)
        except CorruptionError:
            return None
        if max(shared, non_shared, value_length) > _MAX_U32:
            return None
    if limit - pos < non_shared + value_length:
        return None
    return shared, non_shared, value_length, pos


class BlockIterator(KVIterator):
    """Cursor over the entries of one block."""

    def __init__(self, comparator, data: bytes, restarts: int, num_restarts: int) -> None:
        super().__init__()
        if num_restarts <= 0:
            raise ValueError("a block iterator needs at least one restart point")
        self._comparator = comparator
        self._data = data
        self._restarts = restarts
        self._num_restarts = num_restarts
        self._current = restarts
        self._restart_index = num_restarts
        self._key = b""
        self._value_start = 0
        self._value_length = 0
        self._error: Optional[CorruptionError] = None

    def valid(self) -> bool:
        return self._current < self._restarts

    def status(self) -> Optional[BaseException]:
        return self._error

    def key(self) -> bytes:
        self._require_valid()
        return self._key

    def value(self) -> bytes:
        self._require_valid()
        return self._data[self._value_start : self._value_start + self._value_length]

    def next(self) -> None:
        self._require_valid()
        self._parse_next_key()

    def prev(self) -> None:
        self._require_valid()
        original = self._current
        while self._restart_point(self._restart_index) >= original:
            if self._restart_index == 0:
                self._invalidate()
                return
            self._restart_index -= 1
        self._seek_to_restart_point(self._restart_index)
        while self._parse_next_key() and self._next_entry_offset() < original:
            pass

    def seek(self, target: bytes) -> None:
        target = bytes(target)
        left = 0
        right = self._num_restarts - 1
        while left < right:
            mid = (left + right + 1) // 2
            entry = _decode_entry(self._data, self._restart_point(mid), self._restarts)
            if entry is None or entry[0] != 0:
                self._corruption()
                return
            _, non_shared, _, key_pos = entry
            mid_key = self._data[key_pos : key_pos + non_shared]
            if self._comparator.compare(mid_key, target) < 0:
                left = mid
            else:
                right = mid - 1
        self._seek_to_restart_point(left)
        while self._parse_next_key():
            if self._comparator.compare(self._key, target) >= 0:
                return

    def seek_to_first(self) -> None:
        self._seek_to_restart_point(0)
        self._parse_next_key()

    def seek_to_last(self) -> None:
        self._seek_to_restart_point(self._num_restarts - 1)
        while self._parse_next_key() and self._next_entry_offset() < self._restarts:
            pass

    def _require_valid(self) -> None:
        if not self.valid():
            raise RuntimeError("iterator is not positioned at an entry")

    def _next_entry_offset(self) -> int:
        return self._value_start + self._value_length

    def _restart_point(self, index: int) -> int:
        return decode_fixed32(self._data, self._restarts + index * _U32)

    def _seek_to_restart_point(self, index: int) -> None:
        self._key = b""
        self._restart_index = index
        self._value_start = self._restart_point(index)
        self._value_length = 0

    def _invalidate(self) -> None:
        self._current = self._restarts
        self._restart_index = self._num_restarts

    def _corruption(self) -> None:
        self._invalidate()
        self._error = CorruptionError("bad entry in block")
        self._key = b""
        self._value_start = 0
        self._value_length = 0

    def _parse_next_key(self) -> bool:
        self._current = self._next_entry_offset()
        if self._current >= self._restarts:
            self._invalidate()
            return False
        entry = _decode_entry(self._data, self._current, self._restarts)
        if entry is None or len(self._key) < entry[0]:
            self._corruption()
            return False
        shared, non_shared, value_length, pos = entry
        self._key = self._key[:shared] + self._data[pos : pos + non_shared]
        self._value_start = pos + non_shared
        self._value_length = value_length
        while (
            self._restart_index + 1 < self._num_restarts
            and self._restart_point(self._restart_index + 1) < self._current
        ):
            self._restart_index += 1
        return True


class Block:
    """A finished block, ready to be iterated."""

    def __init__(self, contents: Union[BlockContents, bytes, bytearray, memoryview]) -> None:
        data = contents.data if isinstance(contents, BlockContents) else contents
        self._data = bytes(data)
        self._size = len(self._data)
        self._restart_offset = 0
        if self._size < _U32:
            self._size = 0
        else:
            max_restarts = (self._size - _U32) // _U32
            num_restarts = self._num_restarts()
            if num_restarts > max_restarts:
                self._size = 0
            else:
                self._restart_offset = self._size - (1 + num_restarts) * _U32

    def _num_restarts(self) -> int:
        return decode_fixed32(self._data, self._size - _U32)

    def size(self) -> int:
        """Return the block size, or 0 if the contents are malformed."""
        return self._size

    def new_iterator(self, comparator=None) -> KVIterator:
        """Return an iterator over the block's entries."""
        if comparator is None:
            comparator = BytewiseComparator()
        if self._size < _U32:
            return new_error_iterator(CorruptionError("bad block contents"))
        num_restarts = self._num_restarts()
        if num_restarts == 0:
            return new_empty_iterator()
        return BlockIterator(comparator, self._data, self._restart_offset, num_restarts)