"""CRC-32C (Castagnoli) checksums as used by the table format."""

from __future__ import annotations

_POLY = 0x82F63B78
_MASK32 = 0xFFFFFFFF
_MASK_DELTA = 0xA282EAD8


def _build_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ _POLY if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_TABLE = _build_table()


def extend(crc: int, data: bytes) -> int:
    """Return the CRC-32C of the concatenation of the data checksummed as
    ``crc`` and ``data``."""
    state = (crc & _MASK32) ^ _MASK32
    table = _TABLE
    for byte in bytes(data):
        state = table[(state ^ byte) & 0xFF] ^ (state >> 8)
    return state ^ _MASK32


def value(data: bytes) -> int:
    """Return the CRC-32C of ``data``."""
    return extend(0, data)


def mask(crc: int) -> int:
    """Return a masked form of ``crc`` suitable for storing next to the data.

    Checksumming a string that itself contains embedded CRCs is
    problematic, so stored CRCs are rotated and offset by a constant.
    """
    crc &= _MASK32
    rotated = ((crc >> 15) | (crc << 17)) & _MASK32
    return (rotated + _MASK_DELTA) & _MASK32


def unmask(masked: int) -> int:
    """Return the CRC whose masked form is ``masked``."""
    rotated = (masked - _MASK_DELTA) & _MASK32
    return ((rotated >> 17) | (rotated << 15)) & _MASK32