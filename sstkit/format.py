"""Low-level encodings and the on-disk block/footer layout of table files."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, Union

from sstkit import crc32c

TABLE_MAGIC_NUMBER = 0xDB4775248B80FB57
BLOCK_TRAILER_SIZE = 5
MAX_ENCODED_LENGTH = 10 + 10
FOOTER_ENCODED_LENGTH = 2 * MAX_ENCODED_LENGTH + 8

_UNSET = (1 << 64) - 1
_FIXED32 = struct.Struct("<I")
_FIXED64 = struct.Struct("<Q")


class CorruptionError(ValueError):
    """Raised when stored data fails to decode or verify."""


class CompressionType(enum.IntEnum):
    """Block compression codes stored in each block trailer."""

    NONE = 0x0
    SNAPPY = 0x1


# ---------------------------------------------------------------- primitives


def encode_fixed32(value: int) -> bytes:
    """Encode the low 32 bits of ``value`` little-endian."""
    return _FIXED32.pack(value & 0xFFFFFFFF)


def decode_fixed32(data: bytes, offset: int = 0) -> int:
    """Decode a little-endian 32-bit integer at ``offset``."""
    try:
        return _FIXED32.unpack_from(data, offset)[0]
    except struct.error as exc:
        raise CorruptionError("truncated fixed32") from exc


def encode_fixed64(value: int) -> bytes:
    """Encode the low 64 bits of ``value`` little-endian."""
    return _FIXED64.pack(value & _UNSET)


def decode_fixed64(data: bytes, offset: int = 0) -> int:
    """Decode a little-endian 64-bit integer at ``offset``."""
    try:
        return _FIXED64.unpack_from(data, offset)[0]
    except struct.error as exc:
        raise CorruptionError("truncated fixed64") from exc


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer below 2**64 as a base-128 varint."""
    if value < 0 or value > _UNSET:
        raise ValueError(f"varint value out of range: {value}")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint at ``offset``; return ``(value, next_offset)``."""
    result = 0
    shift = 0
    pos = offset
    end = len(data)
    while shift <= 63 and pos < end:
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _UNSET, pos
        shift += 7
    raise CorruptionError("bad varint")


def put_length_prefixed(value: bytes) -> bytes:
    """Return ``value`` prefixed by its length as a varint."""
    return encode_varint(len(value)) + bytes(value)


def get_length_prefixed(data: bytes, offset: int = 0) -> tuple[bytes, int]:
    """Decode a length-prefixed string; return ``(value, next_offset)``."""
    length, pos = decode_varint(data, offset)
    if pos + length > len(data):
        raise CorruptionError("truncated length-prefixed value")
    return bytes(data[pos : pos + length]), pos + length


# ------------------------------------------------------------ block handles


@dataclass
class BlockHandle:
    """Offset and size of a block stored in a table file."""

    offset: int = _UNSET
    size: int = _UNSET

    def encode(self) -> bytes:
        if self.offset == _UNSET or self.size == _UNSET:
            raise ValueError("block handle has unset fields")
        return encode_varint(self.offset) + encode_varint(self.size)


def decode_block_handle(data: bytes, offset: int = 0) -> tuple[BlockHandle, int]:
    """Decode a block handle at ``offset``; return ``(handle, next_offset)``."""
    try:
        block_offset, pos = decode_varint(data, offset)
        block_size, pos = decode_varint(data, pos)
    except CorruptionError as exc:
        raise CorruptionError("bad block handle") from exc
    return BlockHandle(block_offset, block_size), pos


@dataclass
class Footer:
    """Fixed-size trailer at the end of every table file."""

    metaindex_handle: BlockHandle = field(default_factory=BlockHandle)
    index_handle: BlockHandle = field(default_factory=BlockHandle)

    def encode(self) -> bytes:
        handles = self.metaindex_handle.encode() + self.index_handle.encode()
        padded = handles.ljust(2 * MAX_ENCODED_LENGTH, b"\x00")
        return (
            padded
            + encode_fixed32(TABLE_MAGIC_NUMBER & 0xFFFFFFFF)
            + encode_fixed32(TABLE_MAGIC_NUMBER >> 32)
        )


def decode_footer(data: bytes) -> Footer:
    """Decode a footer from the first FOOTER_ENCODED_LENGTH bytes of ``data``."""
    if len(data) < FOOTER_ENCODED_LENGTH:
        raise CorruptionError("file is too short to be an sstable")
    magic_pos = FOOTER_ENCODED_LENGTH - 8
    magic_lo = decode_fixed32(data, magic_pos)
    magic_hi = decode_fixed32(data, magic_pos + 4)
    if (magic_hi << 32) | magic_lo != TABLE_MAGIC_NUMBER:
        raise CorruptionError("not an sstable (bad magic number)")
    metaindex, pos = decode_block_handle(data, 0)
    index, _ = decode_block_handle(data, pos)
    return Footer(metaindex, index)


# ------------------------------------------------------------------- blocks


@dataclass
class BlockContents:
    """The payload of a block read from a file."""

    data: bytes
    cachable: bool = False
    heap_allocated: bool = False


Source = Union[bytes, bytearray, memoryview, BinaryIO]


def _read_at(source: Source, offset: int, length: int) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source[offset : offset + length])
    source.seek(offset)
    return source.read(length)


def read_block(
    source: Source, handle: BlockHandle, verify_checksums: bool = False
) -> BlockContents:
    """Read and check the block identified by ``handle`` from ``source``.

    ``source`` is a bytes-like object or a seekable binary file.
    """
    n = handle.size
    raw = _read_at(source, handle.offset, n + BLOCK_TRAILER_SIZE)
    if len(raw) != n + BLOCK_TRAILER_SIZE:
        raise CorruptionError("truncated block read")

    if verify_checksums:
        expected = crc32c.unmask(decode_fixed32(raw, n + 1))
        actual = crc32c.value(raw[: n + 1])
        if actual != expected:
            raise CorruptionError("block checksum mismatch")

    block_type = raw[n]
    if block_type == CompressionType.NONE:
        return BlockContents(raw[:n], cachable=True, heap_allocated=True)
    if block_type == CompressionType.SNAPPY:
        # Snappy support is not available.
        raise CorruptionError("corrupted compressed block contents")
    raise CorruptionError("bad block type")