"""FlexBuffers-compatible self-describing binary codec."""

from .builder import Builder, StackEntry, build
from .codec import FlexBuffer, decode, deserialize, encode, is_valid, serialize
from .errors import (BuilderState, DepthExceeded, Error, KeyNotFound, MalformedBuffer,
                     OutOfBounds, Utf8Error)
from .options import BuilderOptions, ReaderOptions
from .reader import MapRef, Ref, VectorRef, parse_root
from .validator import Validator, validate
from .value import (Blob, Bool, Float, Int, Map, Null, String, UInt, Value, Vector,
                    from_python, to_python)
from .wire import BitWidth, Type

__version__ = "0.1.0"
