"""Lazy, bounds-checked access into a finished buffer.

A :class:`Ref` names one value by position, parent width, own width and
type. Navigation reads only the bytes of the requested step; siblings are
never decoded. Every offset is resolved against the buffer length before it
is followed.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional, Tuple, Union

from .errors import DepthExceeded, KeyNotFound, MalformedBuffer, OutOfBounds, Utf8Error
from .options import ReaderOptions
from .value import Blob, Bool, Float, Int, Map, Null, String, UInt, Value, Vector
from .wire import BitWidth, Type, as_bytes, unpack_float, unpack_type

logger = logging.getLogger(__name__)


def _check(buf: bytes, pos: int, size: int):
    if pos < 0 or pos + size > len(buf):
        raise OutOfBounds("read of %d bytes at %d outside buffer of %d bytes" % (size, pos, len(buf)))


def _read_uint(buf: bytes, pos: int, width: int) -> int:
    _check(buf, pos, width)
    return int.from_bytes(buf[pos:pos + width], "little")


def _read_int(buf: bytes, pos: int, width: int) -> int:
    _check(buf, pos, width)
    return int.from_bytes(buf[pos:pos + width], "little", signed=True)


def _read_float(buf: bytes, pos: int, width: int) -> float:
    _check(buf, pos, width)
    return unpack_float(buf, pos, width)


def _indirect(buf: bytes, pos: int, width: int) -> int:
    target = pos - _read_uint(buf, pos, width)
    if target < 0:
        raise OutOfBounds("offset at %d points before the buffer start" % pos)
    return target


def _read_cstring(buf: bytes, pos: int) -> bytes:
    _check(buf, pos, 0)
    nul = buf.find(b"\x00", pos)
    if nul < 0:
        raise OutOfBounds("unterminated key at %d" % pos)
    return buf[pos:nul]


def _decode_utf8(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise Utf8Error(str(e)) from e


def parse_root(buf, options: Optional[ReaderOptions] = None) -> "Ref":
    buf = as_bytes(buf)
    if len(buf) < 3:
        raise MalformedBuffer("buffer too short: %d bytes" % len(buf))
    width_log2 = buf[-1]
    if width_log2 > BitWidth.W64:
        raise MalformedBuffer("unsupported root width marker %d" % width_log2)
    byte_width = 1 << width_log2
    pos = len(buf) - 2 - byte_width
    if pos < 0:
        raise MalformedBuffer("root value of %d bytes does not fit in a %d-byte buffer" % (byte_width, len(buf)))
    return Ref.packed(buf, pos, byte_width, buf[-2], options)


class Ref:
    __slots__ = ("_buf", "_pos", "_parent_width", "_byte_width", "_type", "_options")

    def __init__(self, buf: bytes, pos: int, parent_width: int, byte_width: int, type_: Type,
                 options: Optional[ReaderOptions] = None):
        self._buf = buf
        self._pos = pos
        self._parent_width = parent_width
        self._byte_width = byte_width
        self._type = type_
        self._options = options or ReaderOptions()

    @classmethod
    def packed(cls, buf, pos, parent_width, packed_type, options=None) -> "Ref":
        type_, bit_width = unpack_type(packed_type)
        return cls(buf, pos, parent_width, 1 << bit_width, type_, options)

    def __repr__(self):
        return "Ref(%s at %d, width %d/%d)" % (self._type.name, self._pos, self._parent_width, self._byte_width)

    @property
    def type(self) -> Type:
        return self._type

    @property
    def byte_width(self) -> int:
        return self._byte_width

    @property
    def is_null(self): return self._type == Type.NULL
    @property
    def is_bool(self): return self._type == Type.BOOL
    @property
    def is_int(self): return self._type in (Type.INT, Type.INDIRECT_INT)
    @property
    def is_uint(self): return self._type in (Type.UINT, Type.INDIRECT_UINT)
    @property
    def is_float(self): return self._type in (Type.FLOAT, Type.INDIRECT_FLOAT)
    @property
    def is_key(self): return self._type == Type.KEY
    @property
    def is_string(self): return self._type == Type.STRING
    @property
    def is_blob(self): return self._type == Type.BLOB
    @property
    def is_map(self): return self._type == Type.MAP
    @property
    def is_vector(self): return Type.is_vector(self._type)

    def _target(self) -> int:
        return _indirect(self._buf, self._pos, self._parent_width)

    def _wrong_type(self, wanted):
        return TypeError("cannot read %s as %s" % (self._type.name, wanted))

    # ---- scalars ----

    def as_bool(self) -> bool:
        if self._type == Type.BOOL:
            return _read_uint(self._buf, self._pos, self._parent_width) != 0
        raise self._wrong_type("bool")

    def as_int(self) -> int:
        t = self._type
        if t == Type.INT:
            return _read_int(self._buf, self._pos, self._parent_width)
        if t == Type.INDIRECT_INT:
            return _read_int(self._buf, self._target(), self._byte_width)
        if t in (Type.UINT, Type.INDIRECT_UINT):
            return self.as_uint()
        if t == Type.BOOL:
            return int(self.as_bool())
        raise self._wrong_type("int")

    def as_uint(self) -> int:
        t = self._type
        if t == Type.UINT:
            return _read_uint(self._buf, self._pos, self._parent_width)
        if t == Type.INDIRECT_UINT:
            return _read_uint(self._buf, self._target(), self._byte_width)
        raise self._wrong_type("uint")

    def as_float(self) -> float:
        t = self._type
        if t == Type.FLOAT:
            return _read_float(self._buf, self._pos, self._parent_width)
        if t == Type.INDIRECT_FLOAT:
            return _read_float(self._buf, self._target(), self._byte_width)
        if t in (Type.INT, Type.INDIRECT_INT, Type.UINT, Type.INDIRECT_UINT):
            return float(self.as_int())
        raise self._wrong_type("float")

    def as_scalar(self) -> Union[None, bool, int, float]:
        t = self._type
        if t == Type.NULL:
            return None
        if t == Type.BOOL:
            return self.as_bool()
        if self.is_int or self.is_uint:
            return self.as_int()
        if self.is_float:
            return self.as_float()
        raise self._wrong_type("scalar")

    # ---- strings and blobs ----

    def _sized(self) -> Tuple[int, int]:
        target = self._target()
        length = _read_uint(self._buf, target - self._byte_width, self._byte_width)
        _check(self._buf, target, length)
        return target, length

    def as_key_bytes(self) -> bytes:
        if self._type == Type.KEY:
            return _read_cstring(self._buf, self._target())
        raise self._wrong_type("key")

    def as_str(self) -> str:
        if self._type == Type.STRING:
            target, length = self._sized()
            return _decode_utf8(self._buf[target:target + length])
        if self._type == Type.KEY:
            return _decode_utf8(self.as_key_bytes())
        raise self._wrong_type("string")

    def as_blob(self) -> bytes:
        if self._type in (Type.BLOB, Type.STRING):
            target, length = self._sized()
            return self._buf[target:target + length]
        if self._type == Type.KEY:
            return self.as_key_bytes()
        raise self._wrong_type("blob")

    # ---- containers ----

    def as_vector(self) -> "VectorRef":
        t = self._type
        if t == Type.VECTOR or t == Type.MAP:
            element_type, fixed_len = None, None
        elif Type.is_typed_vector(t):
            element_type, fixed_len = Type.to_typed_vector_element_type(t), None
        elif Type.is_fixed_typed_vector(t):
            element_type, fixed_len = Type.to_fixed_typed_vector_element_type(t)
        else:
            raise self._wrong_type("vector")
        target = self._target()
        if fixed_len is None:
            length = _read_uint(self._buf, target - self._byte_width, self._byte_width)
        else:
            length = fixed_len
        _check(self._buf, target, length * (self._byte_width + (element_type is None)))
        return VectorRef(self._buf, target, self._byte_width, length, element_type, self._options)

    def as_map(self) -> "MapRef":
        if self._type != Type.MAP:
            raise self._wrong_type("map")
        vec = self.as_vector()
        return MapRef(self._buf, vec._pos, self._byte_width, len(vec), self._options)

    def to_value(self, max_depth: Optional[int] = None) -> Value:
        """Materialise this value and everything below it.

        A container referenced from several offsets is built once, so the same
        :class:`Vector` or :class:`Map` instance appears at each of those places.
        Copy it before mutating one occurrence.
        """
        if max_depth is None:
            max_depth = self._options.max_depth
        try:
            return _Materializer(max_depth).visit(self, 0)
        except RecursionError as e:
            # max_depth set above what the interpreter stack can hold
            logger.debug("recursion limit reached while materialising %r", self)
            raise DepthExceeded("nesting exhausted the interpreter stack before max_depth %d" % max_depth) from e


class VectorRef:
    __slots__ = ("_buf", "_pos", "_byte_width", "_length", "_element_type", "_options")

    def __init__(self, buf, pos, byte_width, length, element_type=None, options=None):
        self._buf = buf
        self._pos = pos
        self._byte_width = byte_width
        self._length = length
        # None: generic vector, packed types follow the elements
        self._element_type = element_type
        self._options = options

    def __len__(self):
        return self._length

    @property
    def element_type(self) -> Optional[Type]:
        return self._element_type

    def at(self, index: int) -> Ref:
        if not 0 <= index < self._length:
            raise IndexError("vector index %d out of range (length %d)" % (index, self._length))
        elem = self._pos + index * self._byte_width
        if self._element_type is None:
            packed = _read_uint(self._buf, self._pos + self._length * self._byte_width + index, 1)
            return Ref.packed(self._buf, elem, self._byte_width, packed, self._options)
        return Ref(self._buf, elem, self._byte_width, 1, self._element_type, self._options)

    def __getitem__(self, index: int) -> Ref:
        if index < 0:
            index += self._length
        return self.at(index)

    def __iter__(self) -> Iterator[Ref]:
        for i in range(self._length):
            yield self.at(i)


class MapRef(VectorRef):
    """Values vector of a map; keys live in a sorted VectorKey reached through the prefix."""

    __slots__ = ("_keys_pos", "_keys_width")

    def __init__(self, buf, pos, byte_width, length, options=None):
        super().__init__(buf, pos, byte_width, length, None, options)
        self._keys_pos = _indirect(buf, pos - 3 * byte_width, byte_width)
        self._keys_width = _read_uint(buf, pos - 2 * byte_width, byte_width)
        if self._keys_width not in (1, 2, 4, 8):
            raise MalformedBuffer("invalid map keys width %d" % self._keys_width)
        key_count = _read_uint(buf, self._keys_pos - self._keys_width, self._keys_width)
        if key_count != length:
            raise MalformedBuffer("map has %d keys but %d values" % (key_count, length))
        _check(buf, self._keys_pos, length * self._keys_width)

    def keys(self) -> VectorRef:
        return VectorRef(self._buf, self._keys_pos, self._keys_width, self._length, Type.KEY, self._options)

    def key_bytes_at(self, index: int) -> bytes:
        if not 0 <= index < self._length:
            raise IndexError("map index %d out of range (length %d)" % (index, self._length))
        elem = self._keys_pos + index * self._keys_width
        return _read_cstring(self._buf, _indirect(self._buf, elem, self._keys_width))

    def key_at(self, index: int) -> str:
        return _decode_utf8(self.key_bytes_at(index))

    def index_of(self, key: Union[str, bytes]) -> int:
        """Binary search over the sorted keys."""
        data = key.encode("utf-8") if isinstance(key, str) else key
        lo, hi = 0, self._length - 1
        while lo <= hi:
            mid = (lo + hi) // 2
            candidate = self.key_bytes_at(mid)
            if candidate < data:
                lo = mid + 1
            elif candidate > data:
                hi = mid - 1
            else:
                return mid
        raise KeyNotFound(key)

    def get(self, key: Union[str, bytes]) -> Ref:
        return self.at(self.index_of(key))

    def __getitem__(self, key):
        if isinstance(key, (str, bytes)):
            return self.get(key)
        return super().__getitem__(key)

    def __contains__(self, key):
        try:
            self.index_of(key)
        except KeyNotFound:
            return False
        return True

    def __iter__(self) -> Iterator[str]:
        for i in range(self._length):
            yield self.key_at(i)

    def items(self) -> Iterator[Tuple[str, Ref]]:
        for i in range(self._length):
            yield self.key_at(i), self.at(i)


class _Materializer:
    """Recursive ``to_value`` with a depth bound.

    Containers reached again through shared offsets at the same depth are
    reused instead of being decoded twice.
    """

    def __init__(self, max_depth: int):
        self._max_depth = max_depth
        self._memo: Dict[Tuple[int, Type, int, int], Value] = {}

    def visit(self, ref: Ref, depth: int) -> Value:
        t = ref.type
        if t == Type.NULL:
            return Null()
        if t == Type.BOOL:
            return Bool(ref.as_bool())
        # inline scalars live in their parent's slot; only out-of-line values count as a level
        if not Type.is_inline(t) and depth > self._max_depth:
            raise DepthExceeded("nesting deeper than %d levels" % self._max_depth)
        if t in (Type.INT, Type.INDIRECT_INT):
            return Int(ref.as_int())
        if t in (Type.UINT, Type.INDIRECT_UINT):
            return UInt(ref.as_uint())
        if t in (Type.FLOAT, Type.INDIRECT_FLOAT):
            return Float(ref.as_float())
        if t in (Type.STRING, Type.KEY):
            return String(ref.as_str())
        if t == Type.BLOB:
            return Blob(ref.as_blob())
        if not Type.is_vector(t):
            raise MalformedBuffer("unexpected type %s" % t.name)

        memo_key = (ref._target(), t, ref.byte_width, depth)
        cached = self._memo.get(memo_key)
        if cached is not None:
            return cached
        if t == Type.MAP:
            m = ref.as_map()
            pairs = {}
            for i in range(len(m)):
                pairs[m.key_at(i)] = self.visit(m.at(i), depth + 1)
            value = Map(pairs)
        else:
            items = []
            for item in ref.as_vector():
                items.append(self.visit(item, depth + 1))
            value = Vector(items)
        self._memo[memo_key] = value
        return value
