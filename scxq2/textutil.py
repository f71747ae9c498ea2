from __future__ import annotations

import re
import time
from typing import Iterable, Union

# Python strings hold code points, the wire format counts UTF-16 code units.
# Any code point left in the surrogate range is a lone (unpaired) surrogate.
_LONE_SURROGATE = re.compile("[\ud800-\udfff]")
_ISO_UTC = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}(\.[0-9]+)?Z")


def utf16_be(s: str) -> bytes:
    """Big-endian UTF-16 code units of ``s``, lone surrogates included."""
    return s.encode("utf-16-be", "surrogatepass")


def utf16_len(s: str) -> int:
    return len(utf16_be(s)) // 2


def utf16_units(s: str) -> list[int]:
    raw = utf16_be(s)
    return [(raw[i] << 8) | raw[i + 1] for i in range(0, len(raw), 2)]


def join_units(parts: Iterable[str]) -> str:
    """Join string pieces and re-pair adjacent surrogate halves.

    ``chr(0xD83D) + chr(0xDE00)`` is two lone surrogates in Python; the same
    two UTF-16 units read as one code point, U+1F600.
    """
    joined = "".join(parts)
    if not _LONE_SURROGATE.search(joined):
        return joined
    return utf16_be(joined).decode("utf-16-be", "surrogatepass")


def utf8_bytes(text: Union[str, bytes]) -> bytes:
    """UTF-8 bytes with lone surrogates replaced by U+FFFD."""
    if isinstance(text, (bytes, bytearray)):
        return bytes(text)
    return _LONE_SURROGATE.sub("\ufffd", text).encode("utf-8")


def utf8_len(text: str) -> int:
    return len(utf8_bytes(text))


def normalize_newlines(s: str) -> str:
    return s.replace("\r\n", "\n").replace("\r", "\n")


def decode_input(data: Union[str, bytes]) -> str:
    """Coerce input text to ``str`` and normalize newlines.

    Bytes are read as UTF-8, with invalid sequences replaced.
    """
    if isinstance(data, str):
        s = data
    elif isinstance(data, (bytes, bytearray, memoryview)):
        s = bytes(data).decode("utf-8", "replace")
    else:
        raise TypeError("input must be str or bytes")
    return normalize_newlines(s)


def is_iso_utc(value: object) -> bool:
    return isinstance(value, str) and _ISO_UTC.fullmatch(value) is not None


def iso_utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
