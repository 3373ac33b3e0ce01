"""Immutable sorted tables: writing them with TableBuilder, reading with Table.

A table file is a sequence of data blocks, an optional filter block, a
metaindex block, an index block and a fixed-size footer. Every block is
followed by a one-byte compression type and a masked CRC-32C.
"""

from __future__ import annotations

import functools
import itertools
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

from sstkit import crc32c
from sstkit.block import Block, BlockBuilder
from sstkit.filter_block import FilterBlockBuilder, FilterBlockReader, FilterPolicy
from sstkit.format import (
    BLOCK_TRAILER_SIZE,
    FOOTER_ENCODED_LENGTH,
    BlockHandle,
    CompressionType,
    CorruptionError,
    Footer,
    decode_block_handle,
    decode_footer,
    encode_fixed32,
    encode_fixed64,
    read_block,
)
from sstkit.iterators import (
    BytewiseComparator,
    KVIterator,
    new_error_iterator,
    new_two_level_iterator,
)

_BYTEWISE = BytewiseComparator()
_cache_ids = itertools.count(1)

Source = Union[bytes, bytearray, memoryview, BinaryIO]


@dataclass
class TableOptions:
    """Settings that control how a table is built and read."""

    comparator: object = _BYTEWISE
    block_size: int = 4096
    block_restart_interval: int = 16
    compression: CompressionType = CompressionType.NONE
    filter_policy: Optional[FilterPolicy] = None
    paranoid_checks: bool = False
    block_cache: Optional[MutableMapping] = None


class TableBuilder:
    """Writes a table to a binary file from keys added in increasing order."""

    def __init__(self, options: TableOptions, file: BinaryIO) -> None:
        self._options = options
        self._file = file
        self._offset = 0
        self._data_block = BlockBuilder(options.block_restart_interval, options.comparator)
        self._index_block = BlockBuilder(1, options.comparator)
        self._last_key = b""
        self._num_entries = 0
        self._closed = False
        self._filter_block = (
            FilterBlockBuilder(options.filter_policy)
            if options.filter_policy is not None
            else None
        )
        # The index entry for a block is written once the first key of the
        # next block is known, so that a short separator can be used.
        self._pending_index_entry = False
        self._pending_handle = BlockHandle()
        if self._filter_block is not None:
            self._filter_block.start_block(0)

    def change_options(self, options: TableOptions) -> None:
        """Switch to ``options``; the comparator may not change."""
        if options.comparator is not self._options.comparator:
            raise ValueError("changing comparator while building table")
        self._options = options
        self._data_block.block_restart_interval = options.block_restart_interval
        self._data_block.comparator = options.comparator
        self._index_block.comparator = options.comparator

    def _require_open(self) -> None:
        if self._closed:
            raise RuntimeError("table builder is already finished or abandoned")

    def add(self, key: bytes, value: bytes) -> None:
        """Add an entry; ``key`` must sort after every key added before."""
        self._require_open()
        key = bytes(key)
        value = bytes(value)
        comparator = self._options.comparator
        if self._num_entries > 0 and comparator.compare(key, self._last_key) <= 0:
            raise ValueError("keys must be added in strictly increasing order")

        if self._pending_index_entry:
            separator = comparator.find_shortest_separator(self._last_key, key)
            self._index_block.add(separator, self._pending_handle.encode())
            self._pending_index_entry = False

        if self._filter_block is not None:
            self._filter_block.add_key(key)

        self._last_key = key
        self._num_entries += 1
        self._data_block.add(key, value)

        if self._data_block.current_size_estimate() >= self._options.block_size:
            self.flush()

    def flush(self) -> None:
        """Write out the pending data block, if it holds any entries."""
        self._require_open()
        if self._data_block.is_empty():
            return
        self._pending_handle = self._write_block(self._data_block)
        self._pending_index_entry = True
        flush = getattr(self._file, "flush", None)
        if flush is not None:
            flush()
        if self._filter_block is not None:
            self._filter_block.start_block(self._offset)

    def _write_block(self, block: BlockBuilder) -> BlockHandle:
        raw = block.finish()
        # Snappy is not available, so every block is stored uncompressed.
        handle = self._write_raw_block(raw, CompressionType.NONE)
        block.reset()
        return handle

    def _write_raw_block(self, contents: bytes, block_type: CompressionType) -> BlockHandle:
        handle = BlockHandle(self._offset, len(contents))
        self._file.write(contents)
        type_byte = bytes([int(block_type)])
        crc = crc32c.extend(crc32c.value(contents), type_byte)
        self._file.write(type_byte + encode_fixed32(crc32c.mask(crc)))
        self._offset += len(contents) + BLOCK_TRAILER_SIZE
        return handle

    def finish(self) -> None:
        """Write the remaining blocks and the footer; the builder is then closed."""
        self.flush()
        self._closed = True
        options = self._options

        filter_handle = BlockHandle()
        if self._filter_block is not None:
            filter_handle = self._write_raw_block(
                self._filter_block.finish(), CompressionType.NONE
            )

        meta_index = BlockBuilder(options.block_restart_interval, options.comparator)
        if self._filter_block is not None and options.filter_policy is not None:
            key = b"filter." + options.filter_policy.name().encode()
            meta_index.add(key, filter_handle.encode())
        metaindex_handle = self._write_block(meta_index)

        if self._pending_index_entry:
            successor = options.comparator.find_short_successor(self._last_key)
            self._index_block.add(successor, self._pending_handle.encode())
            self._pending_index_entry = False
        index_handle = self._write_block(self._index_block)

        footer = Footer(metaindex_handle, index_handle).encode()
        self._file.write(footer)
        self._offset += len(footer)

    def abandon(self) -> None:
        """Stop building; nothing more is written."""
        self._require_open()
        self._closed = True

    def num_entries(self) -> int:
        """Return the number of entries added so far."""
        return self._num_entries

    def file_size(self) -> int:
        """Return the number of bytes written so far."""
        return self._offset


def _read_at(source: Source, offset: int, length: int) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source[offset : offset + length])
    source.seek(offset)
    return source.read(length)


class Table:
    """A table opened for reading."""

    def __init__(
        self,
        options: TableOptions,
        file: Source,
        metaindex_handle: BlockHandle,
        index_block: Block,
    ) -> None:
        self._options = options
        self._file = file
        self._metaindex_handle = metaindex_handle
        self._index_block = index_block
        self._cache_id = next(_cache_ids) if options.block_cache is not None else 0
        self._filter: Optional[FilterBlockReader] = None

    def _read_meta(self, footer: Footer) -> None:
        policy = self._options.filter_policy
        if policy is None:
            return
        verify = self._options.paranoid_checks
        try:
            contents = read_block(self._file, footer.metaindex_handle, verify)
        except (CorruptionError, OSError):
            # Meta information is not needed for correct operation.
            return
        key = b"filter." + policy.name().encode()
        with Block(contents).new_iterator(_BYTEWISE) as it:
            it.seek(key)
            if it.valid() and it.key() == key:
                self._read_filter(it.value())

    def _read_filter(self, handle_value: bytes) -> None:
        policy = self._options.filter_policy
        assert policy is not None
        try:
            handle, _ = decode_block_handle(handle_value)
            block = read_block(self._file, handle, self._options.paranoid_checks)
        except (CorruptionError, OSError):
            return
        self._filter = FilterBlockReader(policy, block.data)

    def _block_reader(
        self, verify_checksums: bool, fill_cache: bool, index_value: bytes
    ) -> KVIterator:
        try:
            handle, _ = decode_block_handle(index_value)
        except CorruptionError as exc:
            return new_error_iterator(exc)
        cache = self._options.block_cache
        try:
            if cache is not None:
                cache_key = encode_fixed64(self._cache_id) + encode_fixed64(handle.offset)
                block = cache.get(cache_key)
                if block is None:
                    contents = read_block(self._file, handle, verify_checksums)
                    block = Block(contents)
                    if contents.cachable and fill_cache:
                        cache[cache_key] = block
            else:
                block = Block(read_block(self._file, handle, verify_checksums))
        except (CorruptionError, OSError) as exc:
            return new_error_iterator(exc)
        return block.new_iterator(self._options.comparator)

    def new_iterator(
        self, verify_checksums: bool = False, fill_cache: bool = True
    ) -> KVIterator:
        """Return an iterator over every entry of the table."""
        return new_two_level_iterator(
            self._index_block.new_iterator(self._options.comparator),
            functools.partial(self._block_reader, verify_checksums, fill_cache),
        )

    def get(self, key: bytes) -> Optional[tuple[bytes, bytes]]:
        """Return the first entry at or after ``key`` in the block that may hold it.

        Return ``None`` if the index has no such block or its filter rules
        ``key`` out. Raise the error met while reading, if any.
        """
        key = bytes(key)
        result: Optional[tuple[bytes, bytes]] = None
        with self._index_block.new_iterator(self._options.comparator) as index_iter:
            index_iter.seek(key)
            if index_iter.valid():
                handle_value = index_iter.value()
                if not self._filtered_out(handle_value, key):
                    with self._block_reader(False, True, handle_value) as block_iter:
                        block_iter.seek(key)
                        if block_iter.valid():
                            result = (block_iter.key(), block_iter.value())
                        error = block_iter.status()
                    if error is not None:
                        raise error
            error = index_iter.status()
        if error is not None:
            raise error
        return result

    def _filtered_out(self, handle_value: bytes, key: bytes) -> bool:
        if self._filter is None:
            return False
        try:
            handle, _ = decode_block_handle(handle_value)
        except CorruptionError:
            return False
        return not self._filter.key_may_match(handle.offset, key)

    def approximate_offset_of(self, key: bytes) -> int:
        """Return the approximate file offset where data for ``key`` starts."""
        with self._index_block.new_iterator(self._options.comparator) as index_iter:
            index_iter.seek(bytes(key))
            if index_iter.valid():
                try:
                    handle, _ = decode_block_handle(index_iter.value())
                    return handle.offset
                except CorruptionError:
                    pass
        # Past the last key, or an undecodable handle: the metaindex block
        # sits close to the end of the file.
        return self._metaindex_handle.offset


def open_table(options: TableOptions, file: Source, size: int) -> Table:
    """Open the table held in the first ``size`` bytes of ``file``.

    ``file`` is a bytes-like object or a seekable binary file.
    """
    if size < FOOTER_ENCODED_LENGTH:
        raise CorruptionError("file is too short to be an sstable")
    footer_input = _read_at(file, size - FOOTER_ENCODED_LENGTH, FOOTER_ENCODED_LENGTH)
    footer = decode_footer(footer_input)
    contents = read_block(file, footer.index_handle, options.paranoid_checks)
    table = Table(options, file, footer.metaindex_handle, Block(contents))
    table._read_meta(footer)
    return table