import json, os
import pytest

from flexbuf_core import Builder, serialize
from flexbuf_core.cli import json_dumps, json_loads, main

VECTORS = os.path.join(os.path.dirname(__file__), "..", "vectors")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("FLEXBUF_SHARE_STRINGS", "FLEXBUF_FORCE_MIN_WIDTH", "FLEXBUF_MAX_DEPTH"):
        monkeypatch.delenv(name, raising=False)


def test_json_bytes_bridge():
    assert json_loads('{"$bytes": "00ff"}') == b"\x00\xff"
    assert json_loads('{"$bytes": 1}') == {"$bytes": 1}
    assert json_dumps([b"\x01"]) == '[{"$bytes": "01"}]'
    with pytest.raises(ValueError):
        json_loads('{"$bytes": "FF"}')
    with pytest.raises(ValueError):
        json_loads('{"$bytes": "abc"}')

def test_encode_decode(tmp_path):
    doc = {"a": [1, -2, {"$bytes": "00ff"}], "b": "text"}
    jf, nf, out = tmp_path / "in.json", tmp_path / "out.flex", tmp_path / "out.json"
    jf.write_text(json.dumps(doc), encoding="utf-8")
    assert main(["encode", str(jf), "-o", str(nf)]) == 0
    assert nf.read_bytes() == serialize({"a": [1, -2, b"\x00\xff"], "b": "text"})
    assert main(["decode", str(nf), "-o", str(out)]) == 0
    assert json.loads(out.read_text(encoding="utf-8")) == doc

def test_decode_to_stdout(tmp_path, capsysbinary):
    nf = tmp_path / "v.flex"
    nf.write_bytes(serialize({"k": None}))
    assert main(["decode", str(nf)]) == 0
    assert json.loads(capsysbinary.readouterr().out) == {"k": None}

def test_no_share_strings(tmp_path):
    jf, nf = tmp_path / "in.json", tmp_path / "out.flex"
    jf.write_text('["abc", "abc"]', encoding="utf-8")
    assert main(["--no-share-strings", "encode", str(jf), "-o", str(nf)]) == 0
    assert nf.read_bytes().count(b"abc") == 2

def test_validate(tmp_path, capsys):
    good, bad = tmp_path / "good.flex", tmp_path / "bad.flex"
    good.write_bytes(serialize([1, 2, 3]))
    bad.write_bytes(b"\x01\x02\x03\x04")
    assert main(["validate", str(good)]) == 0
    assert main(["validate", str(good), str(bad)]) == 1
    out = capsys.readouterr().out
    assert "OK " + str(good) in out
    assert "INVALID " + str(bad) in out

def test_validate_max_depth(tmp_path, capsys):
    b = Builder()
    outer = b.start_vector()
    inner = b.start_vector()
    b.push_null()
    b.end_vector(inner)
    b.end_vector(outer)
    nf = tmp_path / "deep.flex"
    nf.write_bytes(b.finish())
    assert main(["validate", str(nf)]) == 0
    assert main(["--max-depth", "0", "validate", str(nf)]) == 1
    assert "DepthExceeded" in capsys.readouterr().out

def test_decode_depth_error(tmp_path, capsys):
    nf = tmp_path / "nested.flex"
    nf.write_bytes(serialize([[[1]]]))
    assert main(["--max-depth", "1", "decode", str(nf)]) == 1
    assert "DepthExceeded" in capsys.readouterr().err

def test_decode_malformed(tmp_path, capsys):
    nf = tmp_path / "bad.flex"
    nf.write_bytes(b"\x00")
    assert main(["decode", str(nf)]) == 1
    assert "MalformedBuffer" in capsys.readouterr().err

def test_check_vectors(capsys):
    assert main(["check", "--root", VECTORS]) == 0
    out = capsys.readouterr().out
    assert "[FAIL]" not in out
    assert "Summary:" in out and ", 0 failed" in out

def test_check_single_vector(capsys):
    assert main(["check", os.path.join(VECTORS, "valid", "map_a_1.hex")]) == 0
    assert capsys.readouterr().out.strip() == "OK"
    assert main(["check", os.path.join(VECTORS, "invalid", "unsorted_keys.hex")]) == 1

def test_corpus(tmp_path, capsys):
    outdir = tmp_path / "corpus"
    assert main(["corpus", "-o", str(outdir), "-n", "5", "--seed", "3"]) == 0
    assert len(list(outdir.iterdir())) == 5
    assert "wrote 5 seeds" in capsys.readouterr().out

def test_missing_subcommand():
    with pytest.raises(SystemExit):
        main([])

def test_validate_depth_from_env(tmp_path, monkeypatch, capsys):
    nf = tmp_path / "nested.flex"
    nf.write_bytes(serialize([[[1]]]))
    assert main(["validate", str(nf)]) == 0
    monkeypatch.setenv("FLEXBUF_MAX_DEPTH", "1")
    assert main(["validate", str(nf)]) == 1
    assert "DepthExceeded" in capsys.readouterr().out
    assert main(["--max-depth", "2", "validate", str(nf)]) == 0
