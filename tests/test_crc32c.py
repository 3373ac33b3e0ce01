from hypothesis import given
from hypothesis import strategies as st

from sstkit import crc32c


def test_standard_check_value():
    assert crc32c.value(b"123456789") == 0xE3069283


def test_empty_is_zero():
    assert crc32c.value(b"") == 0


def test_different_inputs_differ():
    assert crc32c.value(b"a") != crc32c.value(b"foo")
    assert crc32c.value(b"a") == crc32c.value(b"a")


@given(st.binary(), st.binary())
def test_extend_matches_concatenation(a, b):
    assert crc32c.extend(crc32c.value(a), b) == crc32c.value(a + b)


@given(st.integers(min_value=0, max_value=0xFFFFFFFF))
def test_mask_round_trip(crc):
    assert crc32c.unmask(crc32c.mask(crc)) == crc


@given(st.binary(min_size=1))
def test_mask_changes_value(data):
    crc = crc32c.value(data)
    assert crc32c.mask(crc) != crc
    assert crc32c.mask(crc32c.mask(crc)) != crc32c.mask(crc)


@given(st.binary())
def test_value_is_32_bits(data):
    assert 0 <= crc32c.value(data) <= 0xFFFFFFFF