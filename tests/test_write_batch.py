import pytest
from hypothesis import given
from hypothesis import strategies as st

from sstkit.format import CorruptionError
from sstkit.write_batch import (
    ValueType,
    WriteBatch,
    WriteBatchHandler,
    write_batch_from_contents,
)


class Recorder(WriteBatchHandler):
    def __init__(self):
        self.ops = []

    def put(self, key, value):
        self.ops.append(("put", key, value))

    def delete(self, key):
        self.ops.append(("delete", key))


def replay(batch):
    rec = Recorder()
    batch.iterate(rec)
    return rec.ops


def test_empty_batch_is_bare_header():
    batch = WriteBatch()
    assert batch.contents() == bytes(12)
    assert batch.count() == 0
    assert replay(batch) == []


def test_put_wire_bytes():
    batch = WriteBatch()
    batch.put(b"k", b"v")
    assert batch.contents()[12:] == b"\x01\x01k\x01v"


def test_multiple_records():
    batch = WriteBatch()
    batch.put(b"foo", b"bar")
    batch.delete(b"box")
    batch.put(b"baz", b"boo")
    batch.set_sequence(100)
    assert batch.sequence() == 100
    assert batch.count() == 3
    assert replay(batch) == [
        ("put", b"foo", b"bar"),
        ("delete", b"box"),
        ("put", b"baz", b"boo"),
    ]


def test_records_reports_types():
    batch = WriteBatch()
    batch.delete(b"x")
    assert list(batch.records()) == [(ValueType.DELETION, b"x", None)]


def test_clear_resets():
    batch = WriteBatch()
    batch.put(b"a", b"b")
    batch.clear()
    assert batch.count() == 0
    assert replay(batch) == []


def test_append():
    b1 = WriteBatch()
    b2 = WriteBatch()
    b1.set_sequence(200)
    b2.set_sequence(300)
    b1.append(b2)
    assert replay(b1) == []
    b2.put(b"a", b"va")
    b1.append(b2)
    assert replay(b1) == [("put", b"a", b"va")]
    b2.clear()
    b2.put(b"b", b"vb")
    b1.append(b2)
    assert replay(b1) == [("put", b"a", b"va"), ("put", b"b", b"vb")]
    b2.delete(b"foo")
    b1.append(b2)
    assert b1.count() == 4
    assert b1.sequence() == 200
    assert replay(b1)[-1] == ("delete", b"foo")


def test_truncated_put_is_corrupt_after_earlier_records():
    batch = WriteBatch()
    batch.put(b"foo", b"bar")
    batch.delete(b"box")
    contents = batch.contents()
    broken = write_batch_from_contents(contents[:-1])
    rec = Recorder()
    with pytest.raises(CorruptionError, match="bad WriteBatch Delete"):
        broken.iterate(rec)
    assert rec.ops == [("put", b"foo", b"bar")]


def test_unknown_tag_is_corrupt():
    batch = write_batch_from_contents(bytes(8) + b"\x01\x00\x00\x00" + b"\x07")
    assert batch.count() == 1
    rec = Recorder()
    with pytest.raises(CorruptionError, match="unknown WriteBatch tag"):
        batch.iterate(rec)
    assert rec.ops == []


def test_wrong_count_is_corrupt():
    batch = WriteBatch()
    batch.put(b"a", b"b")
    data = bytearray(batch.contents())
    data[8] = 5
    with pytest.raises(CorruptionError, match="wrong count"):
        replay(write_batch_from_contents(bytes(data)))


def test_too_small_contents_rejected():
    with pytest.raises(CorruptionError):
        write_batch_from_contents(b"\x00" * 11)


@given(
    st.lists(
        st.one_of(
            st.tuples(st.just("put"), st.binary(max_size=20), st.binary(max_size=40)),
            st.tuples(st.just("delete"), st.binary(max_size=20)),
        ),
        max_size=20,
    ),
    st.integers(min_value=0, max_value=(1 << 64) - 1),
)
def test_round_trip(ops, seq):
    batch = WriteBatch()
    for op in ops:
        if op[0] == "put":
            batch.put(op[1], op[2])
        else:
            batch.delete(op[1])
    batch.set_sequence(seq)
    copy = write_batch_from_contents(batch.contents())
    assert copy.count() == len(ops)
    assert copy.sequence() == seq
    assert replay(copy) == ops