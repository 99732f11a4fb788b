import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import progress_seal


@pytest.mark.parametrize("floors", [0, 1, 7, 10, 999, 123456])
def test_encode_decode_round_trip(floors):
    assert progress_seal.decode(progress_seal.encode(floors)) == floors


def test_encode_rejects_negative_and_non_integers():
    with pytest.raises(ValueError):
        progress_seal.encode(-1)
    with pytest.raises(ValueError):
        progress_seal.encode(3.0)
    with pytest.raises(ValueError):
        progress_seal.encode(True)


def test_decode_without_seal_is_none():
    assert progress_seal.decode("") is None
    assert progress_seal.decode(None) is None
    assert progress_seal.decode("just some chapters") is None


def test_seal_must_be_last():
    body = progress_seal.encode(10) + "\n\nmore text after the seal"
    assert progress_seal.decode(body) is None


def test_decode_tolerates_trailing_whitespace():
    body = "chapter\n\n" + progress_seal.encode(12) + "\n  "
    assert progress_seal.decode(body) == 12


def test_decode_uses_final_seal_only():
    body = "\n\n".join([progress_seal.encode(3), "chapter", progress_seal.encode(9)])
    assert progress_seal.decode(body) == 9


def test_strip_and_find_marker():
    seal = progress_seal.encode(5)
    body = f"Preamble\n\n---\n\nchapter one\n\n{seal}"
    assert progress_seal.strip_marker(body) == "Preamble\n\n---\n\nchapter one"
    assert progress_seal.find_marker(body) == seal
    assert progress_seal.strip_marker("no seal here ") == "no seal here"
    assert progress_seal.find_marker("no seal here") is None
