"""
flexbuf - command line front end for the codec.

Usage:
  flexbuf encode in.json -o out.flex     # JSON (or - for stdin) to a buffer
  flexbuf decode in.flex -o -            # buffer to JSON
  flexbuf validate a.flex b.flex         # structural check, reason on failure
  flexbuf check                          # runs over tests/vectors
  flexbuf check <file.hex>               # checks a single hex vector
  flexbuf corpus -o corpus/ -n 128       # deterministic random seeds

Blobs travel through JSON as {"$bytes": "<lowercase hex>"}.
Exits non-zero on failure.
"""

import argparse, binascii, glob, json, logging, os, re, sys
from typing import Any, List, Optional

from . import __version__
from .codec import deserialize, serialize
from .corpus import write_corpus
from .errors import Error
from .options import BuilderOptions, ReaderOptions
from .validator import validate

logger = logging.getLogger(__name__)


# ---- JSON bridge ----

def _bytes_hook(d: dict) -> Any:
    if set(d.keys()) == {"$bytes"} and isinstance(d["$bytes"], str):
        hx = d["$bytes"]
        if hx != hx.lower():
            raise ValueError("bytes hex must be lowercase")
        if len(hx) % 2 != 0:
            raise ValueError("bytes hex length must be even")
        return bytes.fromhex(hx)
    return d

def _json_default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return {"$bytes": bytes(obj).hex()}
    raise TypeError(f"not JSON serializable: {type(obj).__name__}")

def json_loads(text: str) -> Any:
    return json.loads(text, object_hook=_bytes_hook)

def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=_json_default)


# ---- I/O helpers ----

def _read_input(path: str, binary: bool):
    if path == "-":
        return sys.stdin.buffer.read() if binary else sys.stdin.read()
    if binary:
        with open(path, "rb") as f:
            return f.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()

def _write_output(path: str, data: bytes):
    if path == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return
    with open(path, "wb") as f:
        f.write(data)

def parse_hex_file(path: str) -> bytes:
    with open(path, "r", encoding="utf-8") as f:
        s = f.read()
    hex_str = re.sub(r'[^0-9A-Fa-f]', '', s)
    if len(hex_str) % 2 != 0:
        raise ValueError("odd hex length in " + path)
    return binascii.unhexlify(hex_str)


# ---- vectors ----

def roundtrip_bytes(b: bytes, builder_options=None, reader_options=None) -> bytes:
    validate(b)
    v = deserialize(b, reader_options)
    return serialize(v, builder_options)

def run_vectors(root: str, builder_options=None, reader_options=None) -> int:
    ok = 0; bad = 0
    valid = sorted(glob.glob(os.path.join(root, "valid", "*.hex")))
    invalid = sorted(glob.glob(os.path.join(root, "invalid", "*.hex")))
    # valid: must validate, decode and re-encode to identical bytes
    for p in valid:
        b = parse_hex_file(p)
        try:
            out = roundtrip_bytes(b, builder_options, reader_options)
            if out != b:
                print(f"[FAIL] re-encode mismatch: {os.path.basename(p)}")
                bad += 1
            else:
                ok += 1
        except Error as e:
            print(f"[FAIL] valid vector rejected: {os.path.basename(p)} -> {e.__class__.__name__}")
            bad += 1
    # invalid: must be rejected
    for p in invalid:
        b = parse_hex_file(p)
        try:
            _ = roundtrip_bytes(b, builder_options, reader_options)
            print(f"[FAIL] invalid vector accepted: {os.path.basename(p)}")
            bad += 1
        except Error:
            ok += 1
    print(f"\nSummary: {ok} ok, {bad} failed")
    return 1 if bad else 0


# ---- commands ----

def cmd_encode(args, builder_options, reader_options) -> int:
    obj = json_loads(_read_input(args.input, binary=False))
    _write_output(args.output, serialize(obj, builder_options))
    return 0

def cmd_decode(args, builder_options, reader_options) -> int:
    data = _read_input(args.input, binary=True)
    obj = deserialize(data, reader_options)
    _write_output(args.output, (json_dumps(obj) + "\n").encode("utf-8"))
    return 0

def cmd_validate(args, builder_options, reader_options) -> int:
    failed = 0
    for path in args.files:
        data = _read_input(path, binary=True)
        try:
            validate(data, reader_options.max_depth)
        except Error as e:
            print(f"INVALID {path}: {e.__class__.__name__}: {e}")
            failed += 1
        else:
            print(f"OK {path}")
    return 1 if failed else 0

def cmd_check(args, builder_options, reader_options) -> int:
    if args.vector:
        b = parse_hex_file(args.vector)
        try:
            out = roundtrip_bytes(b, builder_options, reader_options)
        except Error as e:
            print(f"Rejected: {e.__class__.__name__}")
            return 1
        if out != b:
            print("Mismatch after re-encode")
            return 1
        print("OK")
        return 0
    return run_vectors(args.root, builder_options, reader_options)

def cmd_corpus(args, builder_options, reader_options) -> int:
    written = write_corpus(args.outdir, seed=args.seed, count=args.count)
    print(f"wrote {written} seeds to {args.outdir}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="flexbuf", description="FlexBuffers encoder/decoder")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("-v", "--verbose", action="store_true", help="log debug output to stderr")
    ap.add_argument("--max-depth", type=int, default=None, help="nesting limit when decoding or validating")
    ap.add_argument("--no-share-strings", action="store_true", help="write every string value separately")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("encode", help="JSON to buffer")
    p.add_argument("input", help="JSON file, or - for stdin")
    p.add_argument("-o", "--output", required=True, help="output file, or - for stdout")
    p.set_defaults(func=cmd_encode)

    p = sub.add_parser("decode", help="buffer to JSON")
    p.add_argument("input", help="buffer file, or - for stdin")
    p.add_argument("-o", "--output", default="-", help="output file, or - for stdout")
    p.set_defaults(func=cmd_decode)

    p = sub.add_parser("validate", help="structurally validate buffers")
    p.add_argument("files", nargs="+")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("check", help="run hex test vectors")
    p.add_argument("vector", nargs="?", help="single .hex vector")
    p.add_argument("--root", default=os.path.join("tests", "vectors"))
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("corpus", help="write deterministic random buffers")
    p.add_argument("--seed", type=int, default=1337)
    p.add_argument("-n", "--count", type=int, default=128)
    p.add_argument("-o", "--outdir", type=str, required=True)
    p.set_defaults(func=cmd_corpus)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    builder_options = BuilderOptions.from_env()
    if args.no_share_strings:
        builder_options = BuilderOptions(share_strings=False,
                                         force_min_bit_width=builder_options.force_min_bit_width)
    reader_options = ReaderOptions.from_env()
    if args.max_depth is not None:
        reader_options = ReaderOptions(max_depth=args.max_depth)

    try:
        return args.func(args, builder_options, reader_options)
    except (Error, ValueError, TypeError, OSError) as e:
        logger.debug("command failed", exc_info=True)
        print(f"error: {e.__class__.__name__}: {e}", file=sys.stderr)
        return 1
