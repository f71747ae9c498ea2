from __future__ import annotations

import base64
import binascii
import re
from typing import Iterable, Optional, Union

_PREFIX = "base64:"
_ALPHABET = re.compile(r"[A-Za-z0-9+/=]+")


def bytes_to_b64(data: Union[bytes, bytearray, Iterable[int]]) -> str:
    if not isinstance(data, (bytes, bytearray)):
        data = bytes(data)
    return base64.b64encode(bytes(data)).decode("ascii")


def b64_to_bytes(b64: str) -> bytes:
    """Decode base64, accepting an optional ``base64:`` prefix."""
    clean = str(b64)
    if clean.startswith(_PREFIX):
        clean = clean[len(_PREFIX):]
    return base64.b64decode(clean)


def strict_b64decode(b64: object) -> Optional[bytes]:
    """Strict decode used by the verifier.

    Returns None for anything other than a non-empty string of the standard
    alphabet with correct padding. No prefix is accepted here.
    """
    if not isinstance(b64, str) or not b64:
        return None
    if _ALPHABET.fullmatch(b64) is None:
        return None
    try:
        return base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError):
        return None
