import glob, os
import pytest
from hypothesis import given, settings, strategies as st

from flexbuf_core import (Builder, DepthExceeded, Error, MalformedBuffer, OutOfBounds, Utf8Error, Validator,
                          deserialize, is_valid, serialize, validate)
from flexbuf_core.cli import parse_hex_file

VECTORS = os.path.join(os.path.dirname(__file__), "..", "vectors")
VALID = sorted(glob.glob(os.path.join(VECTORS, "valid", "*.hex")))
INVALID = sorted(glob.glob(os.path.join(VECTORS, "invalid", "*.hex")))

host_values = st.deferred(lambda: st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(1<<63), max_value=(1<<64)-1),
    st.floats(allow_nan=False),
    st.text(),
    st.binary(max_size=16),
    st.lists(host_values, max_size=5),
    st.dictionaries(st.text().filter(lambda s: "\x00" not in s), host_values, max_size=5),
))


def deep_vector(depth):
    b = Builder()
    markers = [b.start_vector() for _ in range(depth)]
    b.push_null()
    for m in reversed(markers):
        b.end_vector(m)
    return b.finish()


def test_vector_files_present():
    assert VALID and INVALID

@pytest.mark.parametrize("path", VALID, ids=os.path.basename)
def test_valid_vectors(path):
    data = parse_hex_file(path)
    validate(data)
    assert is_valid(data)
    assert serialize(deserialize(data)) == data

@pytest.mark.parametrize("path", INVALID, ids=os.path.basename)
def test_invalid_vectors(path):
    data = parse_hex_file(path)
    with pytest.raises(Error):
        validate(data)
    assert not is_valid(data)

@pytest.mark.parametrize("hexstr,error", [
    ("02686900051400", OutOfBounds),
    ("09686900031400", OutOfBounds),
    ("02c32800031400", Utf8Error),
    ("006c00", MalformedBuffer),
    ("000004", MalformedBuffer),
    ("00701101000a02", MalformedBuffer),
    ("6200610002050402010201020808042400", MalformedBuffer),
])
def test_rejection_reasons(hexstr, error):
    with pytest.raises(error):
        validate(bytes.fromhex(hexstr))

def test_non_null_payload_rejected():
    assert not is_valid(bytes.fromhex("010000"))

def test_bool_payload_must_be_zero_or_one():
    assert is_valid(bytes.fromhex("006800"))
    assert not is_valid(bytes.fromhex("026800"))

def test_inline_width_must_match_slot():
    # uint declared 16 bits wide in an 8-bit root slot
    assert not is_valid(bytes.fromhex("c80900"))

def test_float_needs_four_or_eight_bytes():
    assert not is_valid(bytes.fromhex("00000d01"))

def test_map_key_count_must_match_values():
    # {"a": 1} with the key vector length bumped to 2
    assert not is_valid(bytes.fromhex("610002030101010108022400"))

@pytest.mark.parametrize("value", [None, "hi", {"a": 1}, [1, 2, 3], 70000])
def test_every_truncation_is_rejected(value):
    data = serialize(value)
    for n in range(len(data)):
        assert not is_valid(data[:n]), data[:n].hex()

def test_unreferenced_bytes_rejected():
    # serialize([None, None]) cut before its root: the length byte 02 is orphaned
    assert not is_valid(bytes.fromhex("02000000"))
    with pytest.raises(MalformedBuffer):
        validate(bytes.fromhex("02000000"))
    # zero bytes in front of an 8-bit root are not padding
    assert not is_valid(bytes.fromhex("00000000"))

def test_alignment_padding_must_be_zero():
    # [256, "a"]: one byte of padding aligns the 16-bit vector
    data = bytes.fromhex("016100000200000107000914062900")
    assert serialize([256, "a"]) == data
    assert is_valid(data)
    assert not is_valid(data[:3] + b"\x01" + data[4:])

def test_orphaned_string_rejected():
    # "hi" with one extra byte between the string and the root offset
    assert is_valid(bytes.fromhex("02686900031400"))
    assert not is_valid(bytes.fromhex("0268690007041400"))

def test_prefix_can_be_a_complete_buffer():
    data = serialize([0, 0, 0])
    assert data[:3] == serialize(None)
    assert is_valid(data[:3])
    assert not is_valid(data[:4])

def test_not_bytes():
    assert not is_valid("000000")
    with pytest.raises(TypeError):
        validate(12)

def test_depth_limit():
    validate(deep_vector(4), max_depth=3)
    with pytest.raises(DepthExceeded):
        validate(deep_vector(5), max_depth=3)

def test_deep_buffer_is_structurally_valid():
    data = deep_vector(100000)
    assert is_valid(data)
    assert not is_valid(data, max_depth=128)

def test_shared_strings_are_valid():
    data = serialize([{"k": "same"}, {"k": "same"}, "same"])
    Validator(data).validate()
    assert deserialize(data) == [{"k": "same"}, {"k": "same"}, "same"]

def test_indirect_scalars_are_valid():
    b = Builder()
    v = b.start_vector()
    b.push_indirect_int(-(1 << 40))
    b.push_indirect_float(0.1)
    b.push_indirect_uint(7)
    b.end_vector(v)
    assert is_valid(b.finish())


@given(host_values)
@settings(max_examples=300, deadline=None)
def test_builder_output_always_validates(v):
    data = serialize(v)
    validate(data)
    assert deserialize(data) == v
    # re-encoding the decoded value reproduces the same bytes
    assert serialize(deserialize(data)) == data

@given(st.binary(max_size=96))
@settings(max_examples=500, deadline=None)
def test_arbitrary_bytes_never_crash(data):
    try:
        validate(data)
    except Error:
        accepted = False
    else:
        accepted = True
    try:
        deserialize(data)
    except Error:
        assert not accepted, "validated buffer failed to decode: " + data.hex()

@given(host_values, st.data())
@settings(max_examples=200, deadline=None)
def test_corrupted_builder_output_never_crashes(v, data):
    buf = bytearray(serialize(v))
    i = data.draw(st.integers(min_value=0, max_value=len(buf) - 1))
    buf[i] = data.draw(st.integers(min_value=0, max_value=255))
    buf = bytes(buf)
    try:
        validate(buf)
    except Error:
        return
    deserialize(buf)

@given(host_values)
@settings(max_examples=100, deadline=None)
def test_truncations_are_rejected(v):
    data = serialize(v)
    for n in range(len(data)):
        prefix = data[:n]
        if is_valid(prefix):
            # leading bytes can spell a complete scalar buffer, e.g. [0, 0, 0]
            assert len(prefix) == 2 + (1 << prefix[-1]), prefix.hex()
            deserialize(prefix)
