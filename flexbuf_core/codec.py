"""One-call entry points over the builder, reader and validator."""

from __future__ import annotations

from typing import Any, Optional

from .builder import build
from .errors import MalformedBuffer
from .options import BuilderOptions, ReaderOptions
from .reader import parse_root
from .validator import is_valid, validate
from .value import Value, from_python, to_python
from .wire import as_bytes

__all__ = ["encode", "decode", "serialize", "deserialize", "is_valid", "FlexBuffer"]


def encode(value: Value, options: Optional[BuilderOptions] = None) -> bytes:
    return build(value, options)


def decode(buf, options: Optional[ReaderOptions] = None) -> Value:
    return parse_root(buf, options).to_value()


def serialize(obj: Any, options: Optional[BuilderOptions] = None) -> bytes:
    return encode(from_python(obj), options)


def deserialize(buf, options: Optional[ReaderOptions] = None) -> Any:
    return to_python(decode(buf, options))


class FlexBuffer:
    """Holds one encoded buffer between serialize and deserialize calls."""

    def __init__(self, data: bytes = b"", builder_options: Optional[BuilderOptions] = None,
                 reader_options: Optional[ReaderOptions] = None):
        self._data = as_bytes(data)
        self._builder_options = builder_options
        self._reader_options = reader_options

    @classmethod
    def from_buffer(cls, buf, **kwargs) -> "FlexBuffer":
        """Wrap an existing buffer; raises if it does not validate under the
        holder's reader options."""
        data = as_bytes(buf)
        reader_options = kwargs.get("reader_options") or ReaderOptions()
        validate(data, reader_options.max_depth)
        return cls(data, **kwargs)

    def serialize(self, obj: Any) -> None:
        self._data = serialize(obj, self._builder_options)

    def deserialize(self) -> Any:
        if not self._data:
            raise MalformedBuffer("buffer is empty")
        return deserialize(self._data, self._reader_options)

    def get_buffer(self) -> bytes:
        return self._data

    def size(self) -> int:
        return len(self._data)

    __len__ = size
