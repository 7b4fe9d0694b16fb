"""Type codes and bit-width arithmetic shared by the builder, reader and validator."""

import enum
import struct

from .errors import MalformedBuffer


class BitWidth(enum.IntEnum):
    W8 = 0
    W16 = 1
    W32 = 2
    W64 = 3

    @staticmethod
    def U(value):
        """Smallest width whose unsigned range covers ``value``."""
        if value < 0:
            raise ValueError("unsigned value must not be negative: %d" % value)
        for width in BitWidth:
            if value < 1 << (8 << width):
                return width
        raise ValueError("value is too big to encode: %d" % value)

    @staticmethod
    def I(value):
        """Smallest width whose two's-complement range covers ``value``."""
        for width in BitWidth:
            bits = 8 << width
            if -(1 << (bits - 1)) <= value < 1 << (bits - 1):
                return width
        raise ValueError("value is too big to encode: %d" % value)

    @staticmethod
    def F(value):
        """W32 when the value survives a float32 round trip, W64 otherwise."""
        try:
            if struct.unpack("<f", struct.pack("<f", value))[0] == value:
                return BitWidth.W32
        except OverflowError:
            pass
        return BitWidth.W64

    @staticmethod
    def B(byte_width):
        try:
            return {1: BitWidth.W8, 2: BitWidth.W16, 4: BitWidth.W32, 8: BitWidth.W64}[byte_width]
        except KeyError:
            raise ValueError("invalid byte width: %r" % (byte_width,))


class Type(enum.IntEnum):
    NULL = 0
    INT = 1
    UINT = 2
    FLOAT = 3
    KEY = 4
    STRING = 5
    INDIRECT_INT = 6
    INDIRECT_UINT = 7
    INDIRECT_FLOAT = 8
    MAP = 9
    VECTOR = 10
    VECTOR_INT = 11
    VECTOR_UINT = 12
    VECTOR_FLOAT = 13
    VECTOR_KEY = 14
    VECTOR_STRING_DEPRECATED = 15
    VECTOR_INT2 = 16
    VECTOR_UINT2 = 17
    VECTOR_FLOAT2 = 18
    VECTOR_INT3 = 19
    VECTOR_UINT3 = 20
    VECTOR_FLOAT3 = 21
    VECTOR_INT4 = 22
    VECTOR_UINT4 = 23
    VECTOR_FLOAT4 = 24
    BLOB = 25
    BOOL = 26
    VECTOR_BOOL = 36

    @staticmethod
    def is_inline(type_):
        return type_ <= Type.FLOAT or type_ == Type.BOOL

    @staticmethod
    def is_typed_vector(type_):
        return Type.VECTOR_INT <= type_ <= Type.VECTOR_STRING_DEPRECATED or type_ == Type.VECTOR_BOOL

    @staticmethod
    def is_typed_vector_element(type_):
        return Type.INT <= type_ <= Type.STRING or type_ == Type.BOOL

    @staticmethod
    def is_fixed_typed_vector(type_):
        return Type.VECTOR_INT2 <= type_ <= Type.VECTOR_FLOAT4

    @staticmethod
    def is_fixed_typed_vector_element(type_):
        return Type.INT <= type_ <= Type.FLOAT

    @staticmethod
    def is_vector(type_):
        return (type_ == Type.VECTOR or type_ == Type.MAP
                or Type.is_typed_vector(type_) or Type.is_fixed_typed_vector(type_))

    @staticmethod
    def to_typed_vector(element_type, fixed_len=0):
        if fixed_len == 0:
            if not Type.is_typed_vector_element(element_type):
                raise ValueError("no typed vector for %s" % Type(element_type).name)
            if element_type == Type.BOOL:
                return Type.VECTOR_BOOL
            return Type(element_type - Type.INT + Type.VECTOR_INT)
        if not Type.is_fixed_typed_vector_element(element_type):
            raise ValueError("no fixed typed vector for %s" % Type(element_type).name)
        base = {2: Type.VECTOR_INT2, 3: Type.VECTOR_INT3, 4: Type.VECTOR_INT4}.get(fixed_len)
        if base is None:
            raise ValueError("fixed typed vectors hold 2, 3 or 4 elements, not %d" % fixed_len)
        return Type(element_type - Type.INT + base)

    @staticmethod
    def to_typed_vector_element_type(type_):
        if not Type.is_typed_vector(type_):
            raise ValueError("not a typed vector: %s" % Type(type_).name)
        return Type(type_ - Type.VECTOR_INT + Type.INT)

    @staticmethod
    def to_fixed_typed_vector_element_type(type_):
        """Return ``(element_type, count)`` for a fixed typed vector code."""
        if not Type.is_fixed_typed_vector(type_):
            raise ValueError("not a fixed typed vector: %s" % Type(type_).name)
        fixed_type = type_ - Type.VECTOR_INT2
        return Type(fixed_type % 3 + Type.INT), fixed_type // 3 + 2


_TYPE_CODES = frozenset(int(t) for t in Type)

_UNSIGNED = {1: struct.Struct("<B"), 2: struct.Struct("<H"), 4: struct.Struct("<I"), 8: struct.Struct("<Q")}
_SIGNED = {1: struct.Struct("<b"), 2: struct.Struct("<h"), 4: struct.Struct("<i"), 8: struct.Struct("<q")}
_FLOAT = {4: struct.Struct("<f"), 8: struct.Struct("<d")}


def packed_type(type_, bit_width):
    return type_ << 2 | bit_width


def unpack_type(packed):
    """Split a packed type byte into ``(Type, BitWidth)``."""
    code = packed >> 2
    if code not in _TYPE_CODES:
        raise MalformedBuffer("unknown type code %d" % code)
    return Type(code), BitWidth(packed & 3)


def padding_bytes(buf_size, byte_width):
    return -buf_size & (byte_width - 1)


def pack_uint(value, byte_width):
    return _UNSIGNED[byte_width].pack(value)


def pack_int(value, byte_width):
    return _SIGNED[byte_width].pack(value)


def pack_float(value, byte_width):
    if byte_width not in _FLOAT:
        raise ValueError("floats are stored in 4 or 8 bytes, not %d" % byte_width)
    return _FLOAT[byte_width].pack(value)


def unpack_float(buf, pos, byte_width):
    if byte_width not in _FLOAT:
        raise MalformedBuffer("unsupported float width %d" % byte_width)
    return _FLOAT[byte_width].unpack_from(buf, pos)[0]


def as_bytes(buf):
    if isinstance(buf, bytes):
        return buf
    if isinstance(buf, (bytearray, memoryview)):
        return bytes(buf)
    if isinstance(buf, (list, tuple)):
        try:
            return bytes(buf)
        except ValueError as e:
            raise MalformedBuffer("byte list holds a value outside 0..255") from e
    raise TypeError("expected a bytes-like object, got %s" % type(buf).__name__)
