"""
Deterministic randomized values and buffers, to seed the fuzz corpus and
for differential testing.
"""
import binascii, pathlib, random
from typing import Any

from .codec import serialize

ALPH = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_ "
UNICODE = ["é", "ç", "ß", "Ω", "中", "\U0001d11e"]

def rand_str(rng: random.Random, max_len: int = 24) -> str:
    n = rng.randint(0, max_len)
    s = "".join(rng.choice(ALPH) for _ in range(n))
    # Occasionally inject some Unicode
    if n > 0 and rng.random() < 0.2:
        s += rng.choice(UNICODE)
    return s

def rand_bytes(rng: random.Random, max_bytes: int = 16) -> bytes:
    return bytes(rng.getrandbits(8) for _ in range(rng.randint(0, max_bytes)))

def rand_int(rng: random.Random) -> int:
    # Bias towards small ints, but include the edges of every width
    bucket = rng.random()
    if bucket < 0.05: return -(1 << 63)
    if bucket < 0.10: return (1 << 64) - 1
    if bucket < 0.20: return rng.choice([127, 128, 255, 256, 32767, 65535, 65536, -129, -32769])
    if bucket < 0.50: return rng.randint(-256, 256)
    return rng.randint(-(1 << 63), (1 << 63) - 1)

def rand_float(rng: random.Random) -> float:
    if rng.random() < 0.5:
        # exactly representable in float32
        return rng.randint(-1000, 1000) / 4.0
    return rng.uniform(-1e12, 1e12)

def rand_value(rng: random.Random, depth: int = 0) -> Any:
    if depth > 3:
        # cap nesting
        choices = ["null", "bool", "int", "float", "str", "bytes"]
    else:
        choices = ["null", "bool", "int", "float", "str", "bytes", "arr", "map"]
    k = rng.choice(choices)
    if k == "null":
        return None
    if k == "bool":
        return bool(rng.getrandbits(1))
    if k == "int":
        return rand_int(rng)
    if k == "float":
        return rand_float(rng)
    if k == "str":
        return rand_str(rng)
    if k == "bytes":
        return rand_bytes(rng)
    if k == "arr":
        n = rng.randint(0, 5)
        if rng.random() < 0.3:
            # homogeneous lists exercise the typed vector encodings
            return [rand_int(rng) for _ in range(n)]
        return [rand_value(rng, depth+1) for _ in range(n)]
    if k == "map":
        n = rng.randint(0, 4)
        m = {}
        for _ in range(n):
            key = rand_str(rng) or "k" + str(rng.randint(0, 9999))
            if key in m: continue
            m[key] = rand_value(rng, depth+1)
        return m
    raise AssertionError("unreachable")

def write_corpus(outdir, seed: int = 1337, count: int = 128) -> int:
    rng = random.Random(seed)
    outdir = pathlib.Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    written = 0
    for i in range(count):
        b = serialize(rand_value(rng, 0))
        h = binascii.hexlify(b[-16:]).decode("ascii")
        p = outdir / f"generated_{i:04d}_{h}.flex"
        with open(p, "wb") as f:
            f.write(b)
        written += 1
    return written
