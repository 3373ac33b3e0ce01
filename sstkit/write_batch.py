"""A batch of updates serialised in a compact binary form.

Layout::

    sequence: fixed64
    count:    fixed32
    records:  (VALUE key value | DELETION key)*

where keys and values are length-prefixed strings.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from sstkit.format import (
    CorruptionError,
    decode_fixed32,
    decode_fixed64,
    encode_fixed32,
    encode_fixed64,
    get_length_prefixed,
    put_length_prefixed,
)

_HEADER = 12


class ValueType(enum.IntEnum):
    """Record tags stored in a batch."""

    DELETION = 0x0
    VALUE = 0x1


class WriteBatchHandler(ABC):
    """Receives the records of a batch in order."""

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        """Handle a put record."""

    @abstractmethod
    def delete(self, key: bytes) -> None:
        """Handle a deletion record."""


class WriteBatch:
    """An ordered collection of puts and deletes applied together."""

    def __init__(self) -> None:
        self._rep = bytearray(_HEADER)

    def clear(self) -> None:
        """Remove every record and reset the header."""
        self._rep = bytearray(_HEADER)

    def count(self) -> int:
        """Return the number of records in the batch."""
        return decode_fixed32(self._rep, 8)

    def _set_count(self, n: int) -> None:
        self._rep[8:12] = encode_fixed32(n)

    def sequence(self) -> int:
        """Return the sequence number stored in the header."""
        return decode_fixed64(self._rep, 0)

    def set_sequence(self, seq: int) -> None:
        """Store ``seq`` as the batch's sequence number."""
        self._rep[0:8] = encode_fixed64(seq)

    def contents(self) -> bytes:
        """Return the serialised batch."""
        return bytes(self._rep)

    def put(self, key: bytes, value: bytes) -> None:
        """Record that ``key`` maps to ``value``."""
        self._set_count(self.count() + 1)
        self._rep.append(ValueType.VALUE)
        self._rep += put_length_prefixed(key)
        self._rep += put_length_prefixed(value)

    def delete(self, key: bytes) -> None:
        """Record that ``key`` is erased."""
        self._set_count(self.count() + 1)
        self._rep.append(ValueType.DELETION)
        self._rep += put_length_prefixed(key)

    def append(self, other: "WriteBatch") -> None:
        """Add the records of ``other`` after this batch's own."""
        self._set_count(self.count() + other.count())
        self._rep += other._rep[_HEADER:]

    def records(self) -> Iterator[tuple[ValueType, bytes, Optional[bytes]]]:
        """Yield ``(type, key, value)`` for each record; value is None for deletes.

        Raises CorruptionError when the contents are malformed.
        """
        data = bytes(self._rep)
        if len(data) < _HEADER:
            raise CorruptionError("malformed WriteBatch (too small)")
        pos = _HEADER
        found = 0
        while pos < len(data):
            found += 1
            tag = data[pos]
            pos += 1
            if tag == ValueType.VALUE:
                try:
                    key, pos = get_length_prefixed(data, pos)
                    value, pos = get_length_prefixed(data, pos)
                except CorruptionError as exc:
                    raise CorruptionError("bad WriteBatch Put") from exc
                yield ValueType.VALUE, key, value
            elif tag == ValueType.DELETION:
                try:
                    key, pos = get_length_prefixed(data, pos)
                except CorruptionError as exc:
                    raise CorruptionError("bad WriteBatch Delete") from exc
                yield ValueType.DELETION, key, None
            else:
                raise CorruptionError("unknown WriteBatch tag")
        if found != decode_fixed32(data, 8):
            raise CorruptionError("WriteBatch has wrong count")

    def iterate(self, handler: WriteBatchHandler) -> None:
        """Feed every record to ``handler`` in order.

        Records before a corrupt one are delivered before CorruptionError
        is raised.
        """
        for kind, key, value in self.records():
            if kind is ValueType.VALUE:
                assert value is not None
                handler.put(key, value)
            else:
                handler.delete(key)


def write_batch_from_contents(contents: bytes) -> WriteBatch:
    """Return a batch whose serialised form is ``contents``."""
    if len(contents) < _HEADER:
        raise CorruptionError("malformed WriteBatch (too small)")
    batch = WriteBatch()
    batch._rep = bytearray(contents)
    return batch