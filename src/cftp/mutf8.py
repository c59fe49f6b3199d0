"""Modified UTF-8, the string encoding of length-prefixed control frames.

It differs from standard UTF-8 in two ways: NUL is written as the two bytes
``C0 80`` and characters outside the BMP are written as a UTF-16 surrogate
pair, each half taking three bytes. Everything else is byte-identical, so the
common case is served by the builtin codec.
"""

from __future__ import annotations

ENCODING_NAME = "modified-utf-8"


def _needs_slow_path(text: str) -> bool:
    return "\x00" in text or any(ord(ch) > 0xFFFF for ch in text)


def _code_units(text: str):
    for ch in text:
        cp = ord(ch)
        if cp > 0xFFFF:
            cp -= 0x10000
            yield 0xD800 | (cp >> 10)
            yield 0xDC00 | (cp & 0x3FF)
        else:
            yield cp


def encode(text: str) -> bytes:
    if not _needs_slow_path(text):
        return text.encode("utf-8", "surrogatepass")

    out = bytearray()
    for unit in _code_units(text):
        if 0 < unit < 0x80:
            out.append(unit)
        elif unit < 0x800:
            out.append(0xC0 | (unit >> 6))
            out.append(0x80 | (unit & 0x3F))
        else:
            out.append(0xE0 | (unit >> 12))
            out.append(0x80 | ((unit >> 6) & 0x3F))
            out.append(0x80 | (unit & 0x3F))
    return bytes(out)


def _malformed(data: bytes, pos: int, end: int, reason: str) -> UnicodeDecodeError:
    return UnicodeDecodeError(ENCODING_NAME, data, pos, end, reason)


def _continuation(data: bytes, pos: int, start: int) -> int:
    if pos >= len(data):
        raise _malformed(data, start, len(data), "truncated multi-byte sequence")
    b = data[pos]
    if b & 0xC0 != 0x80:
        raise _malformed(data, start, pos + 1, "invalid continuation byte")
    return b & 0x3F


def decode(data: bytes) -> str:
    """Decode modified UTF-8. Standard 4-byte sequences are accepted as well."""
    try:
        # strict UTF-8 rejects C0 80 and encoded surrogates, which are the
        # only sequences where the two encodings disagree
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    units: list[int] = []
    pos = 0
    n = len(data)
    while pos < n:
        b = data[pos]
        if b < 0x80:
            units.append(b)
            pos += 1
        elif b & 0xE0 == 0xC0:
            units.append(((b & 0x1F) << 6) | _continuation(data, pos + 1, pos))
            pos += 2
        elif b & 0xF0 == 0xE0:
            hi = _continuation(data, pos + 1, pos)
            lo = _continuation(data, pos + 2, pos)
            units.append(((b & 0x0F) << 12) | (hi << 6) | lo)
            pos += 3
        elif b & 0xF8 == 0xF0:
            cp = (b & 0x07) << 18
            cp |= _continuation(data, pos + 1, pos) << 12
            cp |= _continuation(data, pos + 2, pos) << 6
            cp |= _continuation(data, pos + 3, pos)
            if cp < 0x10000 or cp > 0x10FFFF:
                raise _malformed(data, pos, pos + 4, "code point out of range")
            cp -= 0x10000
            units.append(0xD800 | (cp >> 10))
            units.append(0xDC00 | (cp & 0x3FF))
            pos += 4
        else:
            raise _malformed(data, pos, pos + 1, "invalid start byte")

    raw = b"".join(unit.to_bytes(2, "big") for unit in units)
    return raw.decode("utf-16-be", "surrogatepass")
