import pytest
from hypothesis import given, settings, strategies as st

from flexbuf_core import Blob, Bool, Float, Int, Map, Null, String, UInt, Vector, from_python, to_python

host_values = st.deferred(lambda: st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-(1<<63), max_value=(1<<64)-1),
    st.floats(allow_nan=False),
    st.text(),
    st.binary(max_size=16),
    st.lists(host_values, max_size=4),
    st.dictionaries(st.text(), host_values, max_size=4),
))


def test_integer_bridge():
    assert from_python(200) == UInt(200)
    assert from_python(0) == UInt(0)
    assert from_python(-1) == Int(-1)
    assert from_python((1 << 64) - 1) == UInt((1 << 64) - 1)
    assert from_python(-(1 << 63)) == Int(-(1 << 63))
    with pytest.raises(ValueError):
        from_python(1 << 64)
    with pytest.raises(ValueError):
        from_python(-(1 << 63) - 1)

def test_scalars():
    assert from_python(None) == Null()
    assert from_python(True) == Bool(True)
    assert from_python(1.5) == Float(1.5)
    assert from_python("hi") == String("hi")
    assert from_python(b"\x00\xff") == Blob(b"\x00\xff")
    assert from_python(bytearray(b"x")) == Blob(b"x")

def test_mixed_sign_lists_stay_homogeneous():
    assert from_python([1, -1]) == Vector([Int(1), Int(-1)])
    assert from_python([1, 2]) == Vector([UInt(1), UInt(2)])
    # 2**64-1 does not fit int64, so signs stay mixed
    assert from_python([-1, (1 << 64) - 1]) == Vector([Int(-1), UInt((1 << 64) - 1)])
    # bools are not integers here
    assert from_python([True, -1]) == Vector([Bool(True), Int(-1)])

def test_containers():
    assert from_python((1, "a")) == Vector([UInt(1), String("a")])
    assert from_python({"a": [None]}) == Map({"a": Vector([Null()])})
    assert from_python([]) == Vector([])
    assert from_python({}) == Map({})

def test_value_instances_pass_through():
    v = Map({"k": Int(-3)})
    assert from_python(v) is v

def test_rejects_unsupported():
    with pytest.raises(TypeError):
        from_python({1: 2})
    with pytest.raises(TypeError):
        from_python(object())
    with pytest.raises(TypeError):
        from_python({1.5})
    with pytest.raises(TypeError):
        to_python("plain str")

@given(host_values)
@settings(max_examples=200, deadline=None)
def test_to_python_inverts_from_python(v):
    assert to_python(from_python(v)) == v
