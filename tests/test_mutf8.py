from __future__ import annotations

import pytest

from cftp import mutf8


def test_ascii_matches_utf8():
    assert mutf8.encode('{"a":1}') == b'{"a":1}'


def test_nul_is_two_bytes():
    assert mutf8.encode("a\x00b") == b"a\xc0\x80b"
    assert mutf8.decode(b"a\xc0\x80b") == "a\x00b"


def test_supplementary_char_uses_surrogate_pair():
    raw = mutf8.encode("\U0001F600")
    assert raw == b"\xed\xa0\xbd\xed\xb8\x80"
    assert mutf8.decode(raw) == "\U0001F600"


def test_bmp_non_ascii_is_standard_utf8():
    assert mutf8.encode("héllo 世") == "héllo 世".encode("utf-8")


def test_decode_accepts_standard_four_byte_utf8():
    assert mutf8.decode("x\U0001F600".encode("utf-8")) == "x\U0001F600"


def test_decode_truncated_sequence():
    with pytest.raises(UnicodeDecodeError):
        mutf8.decode(b"ab\xe4\xb8")


def test_decode_bad_start_byte():
    with pytest.raises(UnicodeDecodeError):
        mutf8.decode(b"\xff")
