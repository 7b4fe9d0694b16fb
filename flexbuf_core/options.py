"""Builder and reader settings, overridable from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .wire import BitWidth

DEFAULT_MAX_DEPTH = 128

_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class BuilderOptions:
    # keys are always shared; this only controls string values
    share_strings: bool = True
    force_min_bit_width: BitWidth = BitWidth.W8

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BuilderOptions":
        env = os.environ if environ is None else environ
        share = env.get("FLEXBUF_SHARE_STRINGS")
        width = env.get("FLEXBUF_FORCE_MIN_WIDTH")
        return cls(
            share_strings=True if share is None else share.strip().lower() not in _FALSE,
            force_min_bit_width=BitWidth.W8 if width is None else BitWidth.B(int(width)),
        )


@dataclass(frozen=True)
class ReaderOptions:
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self):
        if self.max_depth < 0:
            raise ValueError("max_depth must not be negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReaderOptions":
        env = os.environ if environ is None else environ
        depth = env.get("FLEXBUF_MAX_DEPTH")
        return cls(max_depth=DEFAULT_MAX_DEPTH if depth is None else int(depth))
