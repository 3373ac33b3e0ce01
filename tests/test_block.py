import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from sstkit.block import Block, BlockBuilder, BlockIterator
from sstkit.format import BlockContents, CorruptionError, encode_fixed32


def build(items, interval=16):
    builder = BlockBuilder(block_restart_interval=interval)
    for key, value in items:
        builder.add(key, value)
    return Block(builder.finish())


ITEMS = [
    (b"apple", b"1"),
    (b"apply", b"2"),
    (b"banana", b"3"),
    (b"band", b"4"),
    (b"bandana", b"5"),
    (b"cherry", b"6"),
]


def test_empty_builder_finish_has_one_restart():
    builder = BlockBuilder()
    assert builder.is_empty()
    assert builder.finish() == encode_fixed32(0) + encode_fixed32(1)


def test_empty_block_iterator_is_not_valid():
    it = Block(BlockBuilder().finish()).new_iterator()
    it.seek_to_first()
    assert not it.valid()
    assert it.status() is None


def test_prefix_compression_wire_bytes():
    builder = BlockBuilder()
    builder.add(b"apple", b"x")
    builder.add(b"apply", b"z")
    data = builder.finish()
    entries = b"\x00\x05\x01applex" + b"\x04\x01\x01yz"
    assert data == entries + encode_fixed32(0) + encode_fixed32(1)


def test_size_estimate_grows_and_matches_finish():
    builder = BlockBuilder(block_restart_interval=2)
    initial = builder.current_size_estimate()
    assert initial == len(BlockBuilder().finish())
    for key, value in ITEMS:
        builder.add(key, value)
    estimate = builder.current_size_estimate()
    assert estimate > initial
    assert estimate == len(builder.finish())


@pytest.mark.parametrize("interval", [1, 2, 3, 16])
def test_forward_iteration_round_trip(interval):
    block = build(ITEMS, interval)
    assert list(block.new_iterator()) == ITEMS


@pytest.mark.parametrize("interval", [1, 2, 16])
def test_backward_iteration(interval):
    it = build(ITEMS, interval).new_iterator()
    it.seek_to_last()
    seen = []
    while it.valid():
        seen.append((it.key(), it.value()))
        it.prev()
    assert seen == list(reversed(ITEMS))


@pytest.mark.parametrize("interval", [1, 2, 16])
def test_seek(interval):
    it = build(ITEMS, interval).new_iterator()
    it.seek(b"bana")
    assert it.key() == b"banana"
    it.seek(b"band")
    assert it.key() == b"band"
    it.seek(b"a")
    assert it.key() == b"apple"
    it.seek(b"zzz")
    assert not it.valid()


def test_seek_then_prev_and_next():
    it = build(ITEMS, 2).new_iterator()
    it.seek(b"band")
    it.prev()
    assert it.key() == b"banana"
    it.next()
    it.next()
    assert it.key() == b"bandana"


def test_prev_from_first_invalidates():
    it = build(ITEMS).new_iterator()
    it.seek_to_first()
    it.prev()
    assert not it.valid()


def test_large_values_use_varint_lengths():
    items = [(b"k1", b"a" * 300), (b"k2", b"b" * 200)]
    assert list(build(items).new_iterator()) == items


def test_out_of_order_add_rejected():
    builder = BlockBuilder()
    builder.add(b"b", b"")
    with pytest.raises(ValueError):
        builder.add(b"a", b"")
    with pytest.raises(ValueError):
        builder.add(b"b", b"")


def test_add_after_finish_rejected():
    builder = BlockBuilder()
    builder.add(b"a", b"1")
    builder.finish()
    with pytest.raises(RuntimeError):
        builder.add(b"b", b"2")


def test_reset_clears_contents():
    builder = BlockBuilder()
    builder.add(b"z", b"1")
    builder.finish()
    builder.reset()
    assert builder.is_empty()
    builder.add(b"a", b"2")
    assert list(Block(builder.finish()).new_iterator()) == [(b"a", b"2")]


def test_invalid_restart_interval():
    with pytest.raises(ValueError):
        BlockBuilder(block_restart_interval=0)


def test_too_short_block_reports_corruption():
    block = Block(b"\x01\x02")
    assert block.size() == 0
    it = block.new_iterator()
    assert not it.valid()
    assert isinstance(it.status(), CorruptionError)


def test_restart_count_too_large_marks_block_bad():
    block = Block(encode_fixed32(100))
    assert block.size() == 0
    assert isinstance(block.new_iterator().status(), CorruptionError)


def test_zero_restarts_gives_empty_iterator():
    block = Block(encode_fixed32(0))
    it = block.new_iterator()
    it.seek_to_first()
    assert not it.valid()
    assert it.status() is None


def test_block_accepts_block_contents():
    data = BlockBuilder().finish()
    assert Block(BlockContents(data)).size() == len(data)


def test_corrupt_shared_length_reported():
    data = b"\x01\x01\x00a" + encode_fixed32(0) + encode_fixed32(1)
    it = Block(data).new_iterator()
    it.seek_to_first()
    assert not it.valid()
    assert isinstance(it.status(), CorruptionError)


def test_iterator_key_when_invalid_raises():
    it = build(ITEMS).new_iterator()
    assert isinstance(it, BlockIterator)
    with pytest.raises(RuntimeError):
        it.key()


@settings(max_examples=60)
@given(
    st.dictionaries(st.binary(max_size=8), st.binary(max_size=20), max_size=40),
    st.integers(min_value=1, max_value=5),
)
def test_round_trip_property(mapping, interval):
    items = sorted(mapping.items())
    block = build(items, interval)
    assert list(block.new_iterator()) == items
    it = block.new_iterator()
    for key, value in items:
        it.seek(key)
        assert it.valid()
        assert it.key() == key
        assert it.value() == value
    it.seek_to_last()
    backward = []
    while it.valid():
        backward.append((it.key(), it.value()))
        it.prev()
    assert backward == list(reversed(items))