"""Key/value iterators: the common interface, merging and two-level iteration."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Callable, Iterator, Optional, Sequence


class BytewiseComparator:
    """Orders keys by plain lexicographic byte comparison."""

    def name(self) -> str:
        return "leveldb.BytewiseComparator"

    def compare(self, a: bytes, b: bytes) -> int:
        """Return a negative, zero or positive number as ``a`` <, == or > ``b``."""
        a = bytes(a)
        b = bytes(b)
        return (a > b) - (a < b)

    def find_shortest_separator(self, start: bytes, limit: bytes) -> bytes:
        """Return a short key in ``[start, limit)``, or ``start`` itself."""
        start = bytes(start)
        limit = bytes(limit)
        min_length = min(len(start), len(limit))
        diff_index = next(
            (i for i in range(min_length) if start[i] != limit[i]), min_length
        )
        if diff_index >= min_length:
            # One key is a prefix of the other: do not shorten.
            return start
        diff_byte = start[diff_index]
        if diff_byte < 0xFF and diff_byte + 1 < limit[diff_index]:
            return start[:diff_index] + bytes([diff_byte + 1])
        return start

    def find_short_successor(self, key: bytes) -> bytes:
        """Return a short key that is ``>= key``."""
        key = bytes(key)
        for i, byte in enumerate(key):
            if byte != 0xFF:
                return key[:i] + bytes([byte + 1])
        # Key is a run of 0xff bytes: leave it alone.
        return key


class KVIterator(ABC):
    """A cursor over an ordered sequence of key/value pairs.

    ``status()`` returns the first error met, or ``None``.
    """

    def __init__(self) -> None:
        self._cleanups: list[Callable[[], None]] = []

    @abstractmethod
    def valid(self) -> bool:
        """Return whether the iterator is positioned at an entry."""

    @abstractmethod
    def seek_to_first(self) -> None:
        """Position at the first entry, if any."""

    @abstractmethod
    def seek_to_last(self) -> None:
        """Position at the last entry, if any."""

    @abstractmethod
    def seek(self, target: bytes) -> None:
        """Position at the first entry whose key is at or past ``target``."""

    @abstractmethod
    def next(self) -> None:
        """Move to the next entry. Requires ``valid()``."""

    @abstractmethod
    def prev(self) -> None:
        """Move to the previous entry. Requires ``valid()``."""

    @abstractmethod
    def key(self) -> bytes:
        """Return the key of the current entry. Requires ``valid()``."""

    @abstractmethod
    def value(self) -> bytes:
        """Return the value of the current entry. Requires ``valid()``."""

    def status(self) -> Optional[BaseException]:
        """Return the error met so far, or ``None``."""
        return None

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield every ``(key, value)`` pair from the first entry on."""
        self.seek_to_first()
        while self.valid():
            yield self.key(), self.value()
            self.next()

    def register_cleanup(self, func: Callable[[], None]) -> None:
        """Arrange for ``func`` to run when the iterator is closed."""
        self._cleanups.append(func)

    def close(self) -> None:
        """Run the registered cleanup functions once."""
        cleanups, self._cleanups = self._cleanups, []
        for func in cleanups:
            func()

    def __enter__(self) -> "KVIterator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _not_valid() -> RuntimeError:
    return RuntimeError("iterator is not positioned at an entry")


class EmptyIterator(KVIterator):
    """An iterator with no entries, optionally carrying an error."""

    def __init__(self, error: Optional[BaseException] = None) -> None:
        super().__init__()
        self._error = error

    def valid(self) -> bool:
        return False

    def seek_to_first(self) -> None:
        pass

    def seek_to_last(self) -> None:
        pass

    def seek(self, target: bytes) -> None:
        pass

    def next(self) -> None:
        raise _not_valid()

    def prev(self) -> None:
        raise _not_valid()

    def key(self) -> bytes:
        raise _not_valid()

    def value(self) -> bytes:
        raise _not_valid()

    def status(self) -> Optional[BaseException]:
        return self._error


def new_empty_iterator() -> KVIterator:
    """Return an iterator with no entries and no error."""
    return EmptyIterator()


def new_error_iterator(error: BaseException) -> KVIterator:
    """Return an iterator with no entries that reports ``error``."""
    return EmptyIterator(error)


class _Wrapper:
    """Holds an iterator and caches its validity and current key."""

    def __init__(self, it: Optional[KVIterator] = None) -> None:
        self.iter: Optional[KVIterator] = None
        self._valid = False
        self._key = b""
        self.set(it)

    def set(self, it: Optional[KVIterator]) -> None:
        if self.iter is not None:
            self.iter.close()
        self.iter = it
        if it is None:
            self._valid = False
        else:
            self._update()

    def _update(self) -> None:
        assert self.iter is not None
        self._valid = self.iter.valid()
        if self._valid:
            self._key = self.iter.key()

    def valid(self) -> bool:
        return self._valid

    def key(self) -> bytes:
        if not self._valid:
            raise _not_valid()
        return self._key

    def value(self) -> bytes:
        if not self._valid or self.iter is None:
            raise _not_valid()
        return self.iter.value()

    def status(self) -> Optional[BaseException]:
        return None if self.iter is None else self.iter.status()

    def next(self) -> None:
        assert self.iter is not None
        self.iter.next()
        self._update()

    def prev(self) -> None:
        assert self.iter is not None
        self.iter.prev()
        self._update()

    def seek(self, target: bytes) -> None:
        assert self.iter is not None
        self.iter.seek(target)
        self._update()

    def seek_to_first(self) -> None:
        assert self.iter is not None
        self.iter.seek_to_first()
        self._update()

    def seek_to_last(self) -> None:
        assert self.iter is not None
        self.iter.seek_to_last()
        self._update()

    def close(self) -> None:
        self.set(None)


class _Direction(enum.Enum):
    FORWARD = enum.auto()
    REVERSE = enum.auto()


class MergingIterator(KVIterator):
    """Yields the union of several sorted children, without removing duplicates."""

    def __init__(self, comparator, children: Sequence[KVIterator]) -> None:
        super().__init__()
        self._comparator = comparator
        self._children = [_Wrapper(child) for child in children]
        self._current: Optional[_Wrapper] = None
        self._direction = _Direction.FORWARD

    def valid(self) -> bool:
        return self._current is not None

    def seek_to_first(self) -> None:
        for child in self._children:
            child.seek_to_first()
        self._find_smallest()
        self._direction = _Direction.FORWARD

    def seek_to_last(self) -> None:
        for child in self._children:
            child.seek_to_last()
        self._find_largest()
        self._direction = _Direction.REVERSE

    def seek(self, target: bytes) -> None:
        for child in self._children:
            child.seek(target)
        self._find_smallest()
        self._direction = _Direction.FORWARD

    def next(self) -> None:
        current = self._require_current()
        if self._direction is not _Direction.FORWARD:
            # Put every other child just past the current key.
            key = current.key()
            for child in self._children:
                if child is current:
                    continue
                child.seek(key)
                if child.valid() and self._comparator.compare(key, child.key()) == 0:
                    child.next()
            self._direction = _Direction.FORWARD
        current.next()
        self._find_smallest()

    def prev(self) -> None:
        current = self._require_current()
        if self._direction is not _Direction.REVERSE:
            # Put every other child just before the current key.
            key = current.key()
            for child in self._children:
                if child is current:
                    continue
                child.seek(key)
                if child.valid():
                    child.prev()
                else:
                    child.seek_to_last()
            self._direction = _Direction.REVERSE
        current.prev()
        self._find_largest()

    def key(self) -> bytes:
        return self._require_current().key()

    def value(self) -> bytes:
        return self._require_current().value()

    def status(self) -> Optional[BaseException]:
        for child in self._children:
            error = child.status()
            if error is not None:
                return error
        return None

    def close(self) -> None:
        for child in self._children:
            child.close()
        super().close()

    def _require_current(self) -> _Wrapper:
        if self._current is None:
            raise _not_valid()
        return self._current

    def _find_smallest(self) -> None:
        smallest: Optional[_Wrapper] = None
        for child in self._children:
            if child.valid() and (
                smallest is None
                or self._comparator.compare(child.key(), smallest.key()) < 0
            ):
                smallest = child
        self._current = smallest

    def _find_largest(self) -> None:
        largest: Optional[_Wrapper] = None
        for child in reversed(self._children):
            if child.valid() and (
                largest is None
                or self._comparator.compare(child.key(), largest.key()) > 0
            ):
                largest = child
        self._current = largest


def new_merging_iterator(comparator, children: Sequence[KVIterator]) -> KVIterator:
    """Return an iterator over the union of ``children``.

    The result takes ownership of the children; a key present in several
    children is yielded once per child.
    """
    children = list(children)
    if not children:
        return new_empty_iterator()
    if len(children) == 1:
        return children[0]
    return MergingIterator(comparator, children)


BlockFunction = Callable[[bytes], KVIterator]


class TwoLevelIterator(KVIterator):
    """Concatenates the blocks named by the values of an index iterator."""

    def __init__(self, index_iter: KVIterator, block_function: BlockFunction) -> None:
        super().__init__()
        self._block_function = block_function
        self._error: Optional[BaseException] = None
        self._index = _Wrapper(index_iter)
        self._data = _Wrapper(None)
        self._data_block_handle = b""

    def valid(self) -> bool:
        return self._data.valid()

    def key(self) -> bytes:
        return self._data.key()

    def value(self) -> bytes:
        return self._data.value()

    def status(self) -> Optional[BaseException]:
        error = self._index.status()
        if error is not None:
            return error
        if self._data.iter is not None:
            error = self._data.status()
            if error is not None:
                return error
        return self._error

    def seek(self, target: bytes) -> None:
        self._index.seek(target)
        self._init_data_block()
        if self._data.iter is not None:
            self._data.seek(target)
        self._skip_empty_forward()

    def seek_to_first(self) -> None:
        self._index.seek_to_first()
        self._init_data_block()
        if self._data.iter is not None:
            self._data.seek_to_first()
        self._skip_empty_forward()

    def seek_to_last(self) -> None:
        self._index.seek_to_last()
        self._init_data_block()
        if self._data.iter is not None:
            self._data.seek_to_last()
        self._skip_empty_backward()

    def next(self) -> None:
        if not self.valid():
            raise _not_valid()
        self._data.next()
        self._skip_empty_forward()

    def prev(self) -> None:
        if not self.valid():
            raise _not_valid()
        self._data.prev()
        self._skip_empty_backward()

    def close(self) -> None:
        self._data.close()
        self._index.close()
        super().close()

    def _save_error(self, error: Optional[BaseException]) -> None:
        if self._error is None and error is not None:
            self._error = error

    def _skip_empty_forward(self) -> None:
        while self._data.iter is None or not self._data.valid():
            if not self._index.valid():
                self._set_data_iterator(None)
                return
            self._index.next()
            self._init_data_block()
            if self._data.iter is not None:
                self._data.seek_to_first()

    def _skip_empty_backward(self) -> None:
        while self._data.iter is None or not self._data.valid():
            if not self._index.valid():
                self._set_data_iterator(None)
                return
            self._index.prev()
            self._init_data_block()
            if self._data.iter is not None:
                self._data.seek_to_last()

    def _set_data_iterator(self, data_iter: Optional[KVIterator]) -> None:
        if self._data.iter is not None:
            self._save_error(self._data.status())
        self._data.set(data_iter)

    def _init_data_block(self) -> None:
        if not self._index.valid():
            self._set_data_iterator(None)
            return
        handle = bytes(self._index.value())
        if self._data.iter is not None and handle == self._data_block_handle:
            # Already iterating over this block.
            return
        data_iter = self._block_function(handle)
        self._data_block_handle = handle
        self._set_data_iterator(data_iter)


def new_two_level_iterator(
    index_iter: KVIterator, block_function: BlockFunction
) -> KVIterator:
    """Return an iterator over the blocks that ``index_iter``'s values name.

    ``block_function`` turns an index value into an iterator over that block.
    """
    return TwoLevelIterator(index_iter, block_function)