import pytest

from flexbuf_core import BitWidth, BuilderOptions, ReaderOptions
from flexbuf_core.options import DEFAULT_MAX_DEPTH


def test_defaults():
    assert BuilderOptions() == BuilderOptions.from_env({})
    assert BuilderOptions().share_strings is True
    assert BuilderOptions().force_min_bit_width == BitWidth.W8
    assert ReaderOptions().max_depth == DEFAULT_MAX_DEPTH == 128
    assert ReaderOptions.from_env({}) == ReaderOptions()

@pytest.mark.parametrize("raw,expected", [
    ("0", False), ("false", False), ("No", False), (" off ", False),
    ("1", True), ("yes", True), ("true", True),
])
def test_share_strings_from_env(raw, expected):
    assert BuilderOptions.from_env({"FLEXBUF_SHARE_STRINGS": raw}).share_strings is expected

def test_force_min_width_from_env():
    opts = BuilderOptions.from_env({"FLEXBUF_FORCE_MIN_WIDTH": "4"})
    assert opts.force_min_bit_width == BitWidth.W32
    with pytest.raises(ValueError):
        BuilderOptions.from_env({"FLEXBUF_FORCE_MIN_WIDTH": "3"})

def test_max_depth_from_env():
    assert ReaderOptions.from_env({"FLEXBUF_MAX_DEPTH": "5"}).max_depth == 5
    with pytest.raises(ValueError):
        ReaderOptions.from_env({"FLEXBUF_MAX_DEPTH": "-1"})
    with pytest.raises(ValueError):
        ReaderOptions.from_env({"FLEXBUF_MAX_DEPTH": "deep"})

def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("FLEXBUF_SHARE_STRINGS", "off")
    monkeypatch.setenv("FLEXBUF_MAX_DEPTH", "7")
    assert BuilderOptions.from_env().share_strings is False
    assert ReaderOptions.from_env().max_depth == 7

def test_options_are_frozen():
    with pytest.raises(AttributeError):
        ReaderOptions().max_depth = 3
