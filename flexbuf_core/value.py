"""Value model consumed by the builder and produced by the reader.

Plain Python objects cross into the model through :func:`from_python` and
come back out through :func:`to_python`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1
UINT64_MAX = (1 << 64) - 1


# ---- Value model ----
@dataclass
class Null: pass
@dataclass
class Bool: value: bool
@dataclass
class Int: value: int
@dataclass
class UInt: value: int
@dataclass
class Float: value: float
@dataclass
class String: value: str
@dataclass
class Blob: data: bytes
@dataclass
class Vector: items: List['Value'] = field(default_factory=list)
@dataclass
class Map: pairs: Dict[str, 'Value'] = field(default_factory=dict)

Value = Union[Null, Bool, Int, UInt, Float, String, Blob, Vector, Map]
SCALARS = (Null, Bool, Int, UInt, Float, String, Blob)


def _from_int(n: int) -> Value:
    if n < 0:
        if n < INT64_MIN:
            raise ValueError("integer out of int64 range: %d" % n)
        return Int(n)
    if n > UINT64_MAX:
        raise ValueError("integer out of uint64 range: %d" % n)
    return UInt(n)


def _from_list(items) -> Vector:
    ints = [x for x in items if isinstance(x, int) and not isinstance(x, bool)]
    # a list of integers with mixed signs stays homogeneous (and typed) when it fits int64
    if (ints and len(ints) == len(items) and any(x < 0 for x in ints)
            and all(INT64_MIN <= x <= INT64_MAX for x in ints)):
        return Vector([Int(x) for x in ints])
    return Vector([from_python(x) for x in items])


def from_python(obj: Any) -> Value:
    if obj is None:
        return Null()
    if isinstance(obj, bool):
        return Bool(obj)
    if isinstance(obj, int):
        return _from_int(obj)
    if isinstance(obj, float):
        return Float(obj)
    if isinstance(obj, str):
        return String(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return Blob(bytes(obj))
    if isinstance(obj, (list, tuple)):
        return _from_list(obj)
    if isinstance(obj, dict):
        pairs = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise TypeError("map keys must be str, got %s" % type(k).__name__)
            pairs[k] = from_python(v)
        return Map(pairs)
    if isinstance(obj, SCALARS + (Vector, Map)):
        return obj
    raise TypeError("unsupported type: %s" % type(obj).__name__)


def to_python(value: Value) -> Any:
    if isinstance(value, Null):
        return None
    if isinstance(value, (Bool, Int, UInt, Float, String)):
        return value.value
    if isinstance(value, Blob):
        return value.data
    if isinstance(value, Vector):
        return [to_python(x) for x in value.items]
    if isinstance(value, Map):
        return {k: to_python(v) for k, v in value.pairs.items()}
    raise TypeError("unsupported value: %s" % type(value).__name__)
