"""Back-to-front FlexBuffers builder.

Values are appended to one growing ``bytearray`` and tracked on an explicit
stack of :class:`StackEntry` records. Closing a vector or map replaces the
entries collected since the matching ``start_*`` call with a single entry
pointing at the freshly written container, so input nesting never touches
the interpreter call stack. Offsets always point backwards: nothing already
written is rewritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from .errors import BuilderState
from .options import BuilderOptions
from .value import Blob, Bool, Float, Int, Map, Null, String, UInt, Value, Vector
from .wire import BitWidth, Type, pack_float, pack_int, pack_uint, packed_type, padding_bytes

logger = logging.getLogger(__name__)

_VECTOR = "vector"
_MAP = "map"

# work-list opcodes used by Builder.push
_PUSH = 0
_PUSH_KEY = 1
_END_VECTOR = 2
_END_MAP = 3


@dataclass
class StackEntry:
    """A value already written to the buffer (``value`` is its location) or held inline."""

    type: Type
    min_bit_width: BitWidth
    value: Union[int, float]

    @property
    def is_inline(self) -> bool:
        return Type.is_inline(self.type)

    def elem_width(self, buf_size: int, elem_index: int) -> BitWidth:
        """Width needed to store this entry as element ``elem_index`` of a
        container whose data would start at ``buf_size``."""
        if self.is_inline:
            return self.min_bit_width
        for bit_width in BitWidth:
            byte_width = 1 << bit_width
            offset_loc = buf_size + padding_bytes(buf_size, byte_width) + elem_index * byte_width
            if BitWidth.U(offset_loc - self.value) <= bit_width:
                return bit_width
        raise ValueError("offset does not fit in 64 bits")

    def stored_width(self, parent_bit_width: BitWidth = BitWidth.W8) -> BitWidth:
        if self.is_inline:
            return max(self.min_bit_width, parent_bit_width)
        return self.min_bit_width

    def stored_packed_type(self, parent_bit_width: BitWidth = BitWidth.W8) -> int:
        return packed_type(self.type, self.stored_width(parent_bit_width))


def _key_order(key: Union[str, bytes]) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


def _choose_encoding(entries: List[StackEntry]) -> Tuple[bool, bool]:
    """Return ``(typed, fixed)`` for a vector holding ``entries``."""
    if not entries:
        return False, False
    first = entries[0].type
    if any(e.type != first for e in entries[1:]):
        return False, False
    if not Type.is_typed_vector_element(first):
        return False, False
    # typed string elements are read back with a one-byte length prefix
    if first == Type.STRING and any(e.min_bit_width != BitWidth.W8 for e in entries):
        return False, False
    fixed = Type.is_fixed_typed_vector_element(first) and 2 <= len(entries) <= 4
    return True, fixed


class Builder:
    """Single-use FlexBuffers writer.

    Either push a whole :mod:`flexbuf_core.value` tree with :meth:`push`, or
    drive the scopes by hand::

        b = Builder()
        m = b.start_map()
        b.push_key("id"); b.push_uint(7)
        b.end_map(m)
        data = b.finish()
    """

    def __init__(self, options: Optional[BuilderOptions] = None):
        self._options = options or BuilderOptions()
        self.reset()

    def reset(self) -> None:
        """Discard everything written so far, including a finished buffer."""
        self._buf = bytearray()
        self._stack: List[StackEntry] = []
        self._scopes: List[Tuple[str, int]] = []
        self._key_pool: Dict[bytes, int] = {}
        self._string_pool: Dict[bytes, Tuple[int, BitWidth]] = {}
        self._finished = False
        self._failure: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self._finished

    def __len__(self):
        return len(self._buf)

    # ---- low level writes ----

    def _check_writable(self):
        if self._failure is not None:
            raise BuilderState("builder abandoned after a failed push (%s); call reset()" % self._failure)
        if self._finished:
            raise BuilderState("builder already finished; create a new Builder")

    def _align(self, bit_width: BitWidth) -> int:
        byte_width = 1 << bit_width
        self._buf.extend(b"\x00" * padding_bytes(len(self._buf), byte_width))
        return byte_width

    def _write_offset(self, loc: int, byte_width: int):
        self._buf.extend(pack_uint(len(self._buf) - loc, byte_width))

    def _write_any(self, entry: StackEntry, byte_width: int):
        if entry.type in (Type.NULL, Type.BOOL, Type.UINT):
            self._buf.extend(pack_uint(int(entry.value), byte_width))
        elif entry.type == Type.INT:
            self._buf.extend(pack_int(entry.value, byte_width))
        elif entry.type == Type.FLOAT:
            self._buf.extend(pack_float(entry.value, byte_width))
        else:
            self._write_offset(entry.value, byte_width)

    def _write_blob(self, data: bytes, append_zero: bool) -> Tuple[int, BitWidth]:
        bit_width = BitWidth.U(len(data))
        byte_width = self._align(bit_width)
        self._buf.extend(pack_uint(len(data), byte_width))
        loc = len(self._buf)
        self._buf.extend(data)
        if append_zero:
            self._buf.append(0)
        return loc, bit_width

    def _append(self, entry: StackEntry) -> StackEntry:
        self._stack.append(entry)
        return entry

    # ---- scalars ----

    def push_null(self) -> StackEntry:
        self._check_writable()
        return self._append(StackEntry(Type.NULL, BitWidth.W8, 0))

    def push_bool(self, value: bool) -> StackEntry:
        self._check_writable()
        return self._append(StackEntry(Type.BOOL, BitWidth.W8, int(bool(value))))

    def push_int(self, value: int) -> StackEntry:
        self._check_writable()
        return self._append(StackEntry(Type.INT, BitWidth.I(value), value))

    def push_uint(self, value: int) -> StackEntry:
        self._check_writable()
        if value > (1 << 64) - 1:
            raise ValueError("integer out of uint64 range: %d" % value)
        return self._append(StackEntry(Type.UINT, BitWidth.U(value), value))

    def push_float(self, value: float) -> StackEntry:
        self._check_writable()
        value = float(value)
        return self._append(StackEntry(Type.FLOAT, BitWidth.F(value), value))

    def _push_indirect(self, type_: Type, bit_width: BitWidth, payload: bytes) -> StackEntry:
        self._align(bit_width)
        loc = len(self._buf)
        self._buf.extend(payload)
        return self._append(StackEntry(type_, bit_width, loc))

    def push_indirect_int(self, value: int) -> StackEntry:
        """Store ``value`` out of line so its parent can keep a narrow element width."""
        self._check_writable()
        bit_width = BitWidth.I(value)
        return self._push_indirect(Type.INDIRECT_INT, bit_width, pack_int(value, 1 << bit_width))

    def push_indirect_uint(self, value: int) -> StackEntry:
        self._check_writable()
        bit_width = BitWidth.U(value)
        return self._push_indirect(Type.INDIRECT_UINT, bit_width, pack_uint(value, 1 << bit_width))

    def push_indirect_float(self, value: float) -> StackEntry:
        self._check_writable()
        value = float(value)
        bit_width = BitWidth.F(value)
        return self._push_indirect(Type.INDIRECT_FLOAT, bit_width, pack_float(value, 1 << bit_width))

    # ---- strings, blobs and keys ----

    def push_string(self, value: Union[str, bytes]) -> StackEntry:
        self._check_writable()
        data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        if self._options.share_strings:
            cached = self._string_pool.get(data)
            if cached is not None:
                loc, bit_width = cached
                return self._append(StackEntry(Type.STRING, bit_width, loc))
        loc, bit_width = self._write_blob(data, append_zero=True)
        if self._options.share_strings:
            self._string_pool[data] = (loc, bit_width)
        return self._append(StackEntry(Type.STRING, bit_width, loc))

    def push_blob(self, value: bytes) -> StackEntry:
        self._check_writable()
        loc, bit_width = self._write_blob(bytes(value), append_zero=False)
        return self._append(StackEntry(Type.BLOB, bit_width, loc))

    def push_key(self, key: Union[str, bytes]) -> StackEntry:
        self._check_writable()
        data = _key_order(key)
        if b"\x00" in data:
            raise ValueError("key contains a zero byte: %r" % (key,))
        loc = self._key_pool.get(data)
        if loc is None:
            loc = len(self._buf)
            self._buf.extend(data)
            self._buf.append(0)
            self._key_pool[data] = loc
        return self._append(StackEntry(Type.KEY, BitWidth.W8, loc))

    def _key_bytes(self, loc: int) -> bytes:
        return bytes(self._buf[loc:self._buf.index(0, loc)])

    # ---- containers ----

    def start_vector(self) -> int:
        self._check_writable()
        marker = len(self._stack)
        self._scopes.append((_VECTOR, marker))
        return marker

    def start_map(self) -> int:
        self._check_writable()
        marker = len(self._stack)
        self._scopes.append((_MAP, marker))
        return marker

    def _close_scope(self, kind: str, marker: int):
        self._check_writable()
        if not self._scopes:
            raise BuilderState("end_%s without a matching start_%s" % (kind, kind))
        open_kind, open_marker = self._scopes[-1]
        if open_kind != kind or open_marker != marker:
            raise BuilderState("end_%s(%d) does not close the innermost %s scope opened at %d"
                               % (kind, marker, open_kind, open_marker))
        self._scopes.pop()

    def end_vector(self, marker: int) -> StackEntry:
        self._close_scope(_VECTOR, marker)
        entries = self._stack[marker:]
        typed, fixed = _choose_encoding(entries)
        vec = self._create_vector(entries, typed, fixed)
        del self._stack[marker:]
        return self._append(vec)

    def end_map(self, marker: int) -> StackEntry:
        self._close_scope(_MAP, marker)
        entries = self._stack[marker:]
        if len(entries) % 2:
            raise BuilderState("map scope holds %d entries; expected key/value pairs" % len(entries))
        keys = entries[::2]
        if any(k.type != Type.KEY for k in keys):
            raise BuilderState("map keys must be pushed with push_key")
        # stable sort: physical key order is byte order, not insertion order
        pairs = sorted(zip(keys, entries[1::2]), key=lambda pair: self._key_bytes(pair[0].value))
        for (a, _), (b, _) in zip(pairs, pairs[1:]):
            if self._key_bytes(a.value) == self._key_bytes(b.value):
                raise BuilderState("duplicate map key %r" % self._key_bytes(a.value))
        del self._stack[marker:]
        keys_vec = self._create_vector([k for k, _ in pairs], typed=True, fixed=False)
        values = self._create_vector([v for _, v in pairs], typed=False, fixed=False, keys=keys_vec)
        return self._append(values)

    def _create_vector(self, elements: List[StackEntry], typed: bool, fixed: bool,
                       keys: Optional[StackEntry] = None) -> StackEntry:
        length = len(elements)
        bit_width = max(self._options.force_min_bit_width, BitWidth.U(length))
        prefix_elems = 1
        if keys is not None:
            bit_width = max(bit_width, keys.elem_width(len(self._buf), 0))
            prefix_elems += 2
        vector_type = Type.KEY
        for i, e in enumerate(elements):
            bit_width = max(bit_width, e.elem_width(len(self._buf), prefix_elems + i))
            if typed:
                if i == 0:
                    vector_type = e.type
                elif e.type != vector_type:
                    raise BuilderState("typed vector elements must share one type")

        byte_width = self._align(bit_width)
        if keys is not None:
            self._write_offset(keys.value, byte_width)
            self._buf.extend(pack_uint(1 << keys.min_bit_width, byte_width))
        if not fixed:
            self._buf.extend(pack_uint(length, byte_width))
        loc = len(self._buf)
        for e in elements:
            self._write_any(e, byte_width)
        if not typed:
            for e in elements:
                self._buf.append(e.stored_packed_type(bit_width))

        if keys is not None:
            type_ = Type.MAP
        elif typed:
            type_ = Type.to_typed_vector(vector_type, length if fixed else 0)
        else:
            type_ = Type.VECTOR
        return StackEntry(type_, bit_width, loc)

    # ---- whole values ----

    def _push_scalar(self, value: Value) -> StackEntry:
        if isinstance(value, Null):
            return self.push_null()
        if isinstance(value, Bool):
            return self.push_bool(value.value)
        if isinstance(value, Int):
            return self.push_int(value.value)
        if isinstance(value, UInt):
            return self.push_uint(value.value)
        if isinstance(value, Float):
            return self.push_float(value.value)
        if isinstance(value, String):
            return self.push_string(value.value)
        if isinstance(value, Blob):
            return self.push_blob(value.data)
        raise TypeError("unsupported value: %s" % type(value).__name__)

    def push(self, value: Value) -> StackEntry:
        """Push a value tree; containers are walked with an explicit work list.

        A failure part way through leaves scopes and entries half built, so
        the builder refuses further writes until :meth:`reset`.
        """
        self._check_writable()
        work = [(_PUSH, value)]
        try:
            while work:
                op, item = work.pop()
                if op == _END_VECTOR:
                    self.end_vector(item)
                elif op == _END_MAP:
                    self.end_map(item)
                elif op == _PUSH_KEY:
                    self.push_key(item)
                elif isinstance(item, Vector):
                    work.append((_END_VECTOR, self.start_vector()))
                    work.extend((_PUSH, x) for x in reversed(item.items))
                elif isinstance(item, Map):
                    work.append((_END_MAP, self.start_map()))
                    # key byte order, independent of dict insertion order
                    for k, v in reversed(sorted(item.pairs.items(), key=lambda kv: _key_order(kv[0]))):
                        work.append((_PUSH, v))
                        work.append((_PUSH_KEY, k))
                else:
                    self._push_scalar(item)
        except (BuilderState, ValueError, TypeError) as e:
            self._failure = "%s: %s" % (e.__class__.__name__, e)
            raise
        return self._stack[-1]

    def finish(self) -> bytes:
        """Write the root and its 2-byte marker; the builder is spent afterwards."""
        self._check_writable()
        if self._scopes:
            raise BuilderState("%d vector/map scope(s) still open" % len(self._scopes))
        if len(self._stack) != 1:
            raise BuilderState("expected exactly one root value, found %d" % len(self._stack))
        root = self._stack[0]
        bit_width = root.elem_width(len(self._buf), 0)
        byte_width = self._align(bit_width)
        self._write_any(root, byte_width)
        self._buf.append(root.stored_packed_type())
        self._buf.append(bit_width)
        data = bytes(self._buf)
        logger.debug("finished buffer: %d bytes, root %s/%d, %d shared keys, %d shared strings",
                     len(data), root.type.name, byte_width, len(self._key_pool), len(self._string_pool))
        self._buf = bytearray()
        self._stack = []
        self._key_pool = {}
        self._string_pool = {}
        self._finished = True
        return data


def build(value: Value, options: Optional[BuilderOptions] = None) -> bytes:
    b = Builder(options)
    b.push(value)
    return b.finish()
