"""Structural certification of untrusted buffers.

The scan uses an explicit work list and its own bounds-checked reads; it
does not go through :mod:`flexbuf_core.reader`, so it never assumes the
buffer is well formed. A node's content (prefix, payload, element types)
must lie wholly before the position that references it, which rules out
cycles and forward references. Every byte in front of the root slot must
belong to some reachable node or be zero padding shorter than the alignment
of the value that follows it.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from .errors import DepthExceeded, Error, MalformedBuffer, OutOfBounds, Utf8Error
from .wire import BitWidth, Type, as_bytes, unpack_type

logger = logging.getLogger(__name__)

_BYTE_WIDTHS = (1, 2, 4, 8)
_FLOAT_WIDTHS = (4, 8)

# (position, parent width, type, own byte width, depth)
_Node = Tuple[int, int, Type, int, int]


class Validator:
    def __init__(self, buf, max_depth: Optional[int] = None):
        self._buf = as_bytes(buf)
        self._max_depth = max_depth
        self._seen: Dict[Tuple[int, int, Type, int], int] = {}
        self._covered = bytearray(len(self._buf))
        # start of a covered range -> the alignment it was written with
        self._starts: Dict[int, int] = {}

    # ---- primitive checks ----

    def _uint(self, pos: int, width: int) -> int:
        if pos < 0 or pos + width > len(self._buf):
            raise OutOfBounds("read of %d bytes at %d outside buffer of %d bytes" % (width, pos, len(self._buf)))
        return int.from_bytes(self._buf[pos:pos + width], "little")

    def _indirect(self, pos: int, width: int) -> int:
        offset = self._uint(pos, width)
        if offset > pos:
            raise OutOfBounds("offset %d at %d points before the buffer start" % (offset, pos))
        return pos - offset

    @staticmethod
    def _aligned(pos: int, width: int):
        if pos % width:
            raise MalformedBuffer("position %d is not aligned to %d bytes" % (pos, width))

    def _utf8(self, start: int, end: int):
        try:
            self._buf[start:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise Utf8Error("invalid UTF-8 at %d: %s" % (start, e)) from e

    def _key(self, target: int, end: int) -> bytes:
        nul = self._buf.find(b"\x00", target, end)
        if nul < 0:
            raise OutOfBounds("key at %d is not terminated before %d" % (target, end))
        self._utf8(target, nul)
        self._cover(target, nul + 1)
        return self._buf[target:nul]

    def _cover(self, start: int, end: int, align: int = 1):
        self._covered[start:end] = b"\x01" * (end - start)
        if self._starts.get(start, 0) < align:
            self._starts[start] = align

    def _check_coverage(self, end: int):
        covered = self._covered
        gap = covered.find(0, 0, end)
        while gap >= 0:
            stop = covered.find(1, gap, end)
            if stop < 0:
                stop = end
            if any(self._buf[gap:stop]) or stop - gap >= self._starts.get(stop, 1):
                raise MalformedBuffer("bytes %d..%d are not part of any value" % (gap, stop))
            gap = covered.find(0, stop, end)

    def _inline(self, pos: int, width: int, type_: Type):
        if type_ == Type.FLOAT:
            if width not in _FLOAT_WIDTHS:
                raise MalformedBuffer("float stored in %d bytes" % width)
        elif type_ == Type.NULL:
            if self._uint(pos, width) != 0:
                raise MalformedBuffer("null at %d has a non-zero payload" % pos)
        elif type_ == Type.BOOL:
            if self._uint(pos, width) > 1:
                raise MalformedBuffer("bool at %d is neither 0 nor 1" % pos)

    def _child(self, pos: int, parent_width: int, packed: int, depth: int, work: List[_Node]):
        type_, bit_width = unpack_type(packed)
        byte_width = 1 << bit_width
        if Type.is_inline(type_):
            if byte_width != parent_width:
                raise MalformedBuffer("inline %s at %d declares %d bytes but is stored in %d"
                                      % (type_.name, pos, byte_width, parent_width))
            self._inline(pos, parent_width, type_)
            return
        work.append((pos, parent_width, type_, byte_width, depth))

    # ---- traversal ----

    def validate(self) -> None:
        buf = self._buf
        if len(buf) < 3:
            raise MalformedBuffer("buffer too short: %d bytes" % len(buf))
        width_log2 = buf[-1]
        if width_log2 > BitWidth.W64:
            raise MalformedBuffer("unsupported root width marker %d" % width_log2)
        byte_width = 1 << width_log2
        pos = len(buf) - 2 - byte_width
        if pos < 0:
            raise OutOfBounds("root value of %d bytes does not fit" % byte_width)
        self._aligned(pos, byte_width)
        self._cover(pos, len(buf), byte_width)
        work: List[_Node] = []
        self._child(pos, byte_width, buf[-2], 0, work)
        while work:
            self._visit(work.pop(), work)
        self._check_coverage(pos)

    def _visit(self, node: _Node, work: List[_Node]):
        pos, parent_width, type_, byte_width, depth = node
        if self._max_depth is not None and depth > self._max_depth:
            raise DepthExceeded("nesting deeper than %d levels" % self._max_depth)
        seen_key = (pos, parent_width, type_, byte_width)
        seen_depth = self._seen.get(seen_key)
        if seen_depth is not None and (self._max_depth is None or seen_depth <= depth):
            return
        self._seen[seen_key] = depth
        target = self._indirect(pos, parent_width)
        # everything this node owns must end at or before the referencing position
        end = pos

        if type_ == Type.KEY:
            self._key(target, end)
        elif type_ in (Type.STRING, Type.BLOB):
            self._aligned(target, byte_width)
            length = self._uint(target - byte_width, byte_width)
            if type_ == Type.STRING:
                if length >= end - target:
                    raise OutOfBounds("string of %d bytes at %d overruns %d" % (length, target, end))
                if _byte_at(self._buf, target + length) != 0:
                    raise MalformedBuffer("string at %d is not NUL-terminated" % target)
                self._utf8(target, target + length)
                self._cover(target - byte_width, target + length + 1, byte_width)
            elif length > end - target:
                raise OutOfBounds("blob of %d bytes at %d overruns %d" % (length, target, end))
            else:
                self._cover(target - byte_width, target + length, byte_width)
        elif type_ in (Type.INDIRECT_INT, Type.INDIRECT_UINT, Type.INDIRECT_FLOAT):
            self._aligned(target, byte_width)
            if target + byte_width > end:
                raise OutOfBounds("indirect scalar at %d overruns %d" % (target, end))
            if type_ == Type.INDIRECT_FLOAT and byte_width not in _FLOAT_WIDTHS:
                raise MalformedBuffer("float stored in %d bytes" % byte_width)
            self._cover(target, target + byte_width, byte_width)
        elif type_ in (Type.VECTOR, Type.MAP):
            self._aligned(target, byte_width)
            length = self._uint(target - byte_width, byte_width)
            if length > (end - target) // (byte_width + 1):
                raise OutOfBounds("vector of %d elements at %d overruns %d" % (length, target, end))
            if type_ == Type.MAP:
                self._map_keys(target, byte_width, length)
                self._cover(target - 3 * byte_width, target, byte_width)
            else:
                self._cover(target - byte_width, target, byte_width)
            types = target + length * byte_width
            self._cover(target, types + length)
            for i in range(length):
                self._child(target + i * byte_width, byte_width, self._buf[types + i], depth + 1, work)
        elif Type.is_typed_vector(type_):
            self._aligned(target, byte_width)
            length = self._uint(target - byte_width, byte_width)
            if length > (end - target) // byte_width:
                raise OutOfBounds("typed vector of %d elements at %d overruns %d" % (length, target, end))
            self._cover(target - byte_width, target + length * byte_width, byte_width)
            self._typed_elements(target, byte_width, Type.to_typed_vector_element_type(type_), length, depth, work)
        elif Type.is_fixed_typed_vector(type_):
            self._aligned(target, byte_width)
            element_type, length = Type.to_fixed_typed_vector_element_type(type_)
            if target + length * byte_width > end:
                raise OutOfBounds("fixed vector at %d overruns %d" % (target, end))
            self._cover(target, target + length * byte_width, byte_width)
            self._typed_elements(target, byte_width, element_type, length, depth, work)
        else:
            raise MalformedBuffer("unexpected type %s at %d" % (type_.name, pos))

    def _typed_elements(self, target: int, byte_width: int, element_type: Type, length: int,
                        depth: int, work: List[_Node]):
        if element_type in (Type.KEY, Type.STRING):
            for i in range(length):
                work.append((target + i * byte_width, byte_width, element_type, 1, depth + 1))
        elif element_type in (Type.FLOAT, Type.BOOL):
            for i in range(length):
                self._inline(target + i * byte_width, byte_width, element_type)

    def _map_keys(self, target: int, byte_width: int, length: int):
        keys_field = target - 3 * byte_width
        keys = self._indirect(keys_field, byte_width)
        keys_width = self._uint(target - 2 * byte_width, byte_width)
        if keys_width not in _BYTE_WIDTHS:
            raise MalformedBuffer("invalid map keys width %d" % keys_width)
        self._aligned(keys, keys_width)
        if self._uint(keys - keys_width, keys_width) != length:
            raise MalformedBuffer("map at %d has mismatched key and value counts" % target)
        if length > (keys_field - keys) // keys_width:
            raise OutOfBounds("map keys at %d overrun %d" % (keys, keys_field))
        self._cover(keys - keys_width, keys + length * keys_width, keys_width)
        previous = None
        for i in range(length):
            elem = keys + i * keys_width
            key = self._key(self._indirect(elem, keys_width), elem)
            if previous is not None and key < previous:
                raise MalformedBuffer("map keys at %d are not sorted" % keys)
            previous = key


def _byte_at(buf: bytes, pos: int) -> int:
    if not 0 <= pos < len(buf):
        raise OutOfBounds("read at %d outside buffer of %d bytes" % (pos, len(buf)))
    return buf[pos]


def validate(buf, max_depth: Optional[int] = None) -> None:
    """Raise the first structural violation found in ``buf``."""
    Validator(buf, max_depth).validate()


def is_valid(buf, max_depth: Optional[int] = None) -> bool:
    try:
        validate(buf, max_depth)
    except (Error, TypeError, ValueError) as e:
        logger.debug("rejected buffer: %s: %s", e.__class__.__name__, e)
        return False
    return True
