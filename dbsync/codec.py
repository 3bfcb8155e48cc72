"""Reversible text compaction used for cached row payloads.

Encoding is two passes: runs of more than three identical characters are
replaced by a ``[<char>x<count>]`` marker, then the result is UTF-8 encoded
and Brotli-compressed at maximum quality. Decoding reverses both.

The marker format is not escaped. Text that already contains something of
the shape ``[<char>x<digits>]`` (for example ``"[ax2]"``) is expanded on
decode and will not round-trip. Payloads written by earlier deployments use
the same format, so this is kept as a known limitation.

A marker whose character slot holds more than one character, or whose count
is not a plain decimal number, is left in the output literally.
"""

from typing import Optional

import brotli

RUN_THRESHOLD = 3
BROTLI_QUALITY = 11
TEXT_ENCODING = "utf-8"

_DIGITS = frozenset("0123456789")


def compact(text: str) -> str:
    parts = []
    i = 0
    length = len(text)
    while i < length:
        current = text[i]
        run_end = i + 1
        while run_end < length and text[run_end] == current:
            run_end += 1
        count = run_end - i
        if count > RUN_THRESHOLD:
            parts.append(f"[{current}x{count}]")
        else:
            parts.append(current * count)
        i = run_end
    return "".join(parts)


def _parse_marker(text: str, start: int):
    """Parse a ``[<char>x<count>]`` marker at ``start``.

    Returns ``(char, count, end)`` where ``end`` is the index after ``]``,
    or ``None`` if the text at ``start`` is not a well-formed marker.
    """
    # shortest marker is "[ax1]"
    if start + 4 >= len(text) or text[start + 2] != "x":
        return None
    char = text[start + 1]
    pos = start + 3
    while pos < len(text) and text[pos] in _DIGITS:
        pos += 1
    if pos == start + 3 or pos >= len(text) or text[pos] != "]":
        return None
    return char, int(text[start + 3:pos]), pos + 1


def expand(text: str) -> str:
    parts = []
    i = 0
    length = len(text)
    while i < length:
        if text[i] == "[":
            marker = _parse_marker(text, i)
            if marker is not None:
                char, count, i = marker
                parts.append(char * count)
                continue
        parts.append(text[i])
        i += 1
    return "".join(parts)


def encode(text: Optional[str]) -> bytes:
    if not text:
        return b""
    raw = compact(text).encode(TEXT_ENCODING)
    return brotli.compress(raw, quality=BROTLI_QUALITY)


def decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    raw = brotli.decompress(data)
    return expand(raw.decode(TEXT_ENCODING))
