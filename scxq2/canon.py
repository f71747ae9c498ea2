from __future__ import annotations

"""
Canonical JSON for SCXQ2 hash computations.

Rules
- Objects: keys sorted by code point, recursively
- Arrays: element order preserved
- Scalars: strings, integers, booleans and null only; floats are rejected
  since their textual form is not stable across implementations
- Compact separators, non-ASCII emitted verbatim, lone surrogates escaped

Every ``*_sha256_canon`` field is the SHA-256 of ``canonicalize(obj)`` with
that field removed from ``obj``.
"""

import json
import re
from typing import Any, Iterable, Mapping

from .errors import CanonError


_LONE_SURROGATE = re.compile("[\ud800-\udfff]")

# Deepest array/object nesting accepted in canonical form
MAX_DEPTH = 256


def sort_keys_deep(value: Any) -> Any:
    """Return a copy of ``value`` with every object's keys sorted.

    Also validates the value tree, raising :class:`CanonError` for anything
    that is not a string, integer, boolean, null, array or object, or that
    nests arrays and objects deeper than ``MAX_DEPTH``.
    """
    return _sorted(value, 0)


def _sorted(value: Any, depth: int) -> Any:
    if isinstance(value, (Mapping, list, tuple)):
        if depth >= MAX_DEPTH:
            raise CanonError(f"nesting deeper than {MAX_DEPTH} levels")
        if isinstance(value, Mapping):
            out = {}
            for key in sorted(value.keys(), key=_key_order):
                out[key] = _sorted(value[key], depth + 1)
            return out
        return [_sorted(v, depth + 1) for v in value]
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        raise CanonError(f"non-integer number not permitted in canonical form: {value!r}")
    raise CanonError(f"value of type {type(value).__name__} is not JSON")


def _key_order(key: Any) -> str:
    if not isinstance(key, str):
        raise CanonError(f"object key must be a string, got {type(key).__name__}")
    return key


def canon(value: Any) -> str:
    """Canonical JSON text of ``value``."""
    text = json.dumps(
        sort_keys_deep(value),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
    # Lone surrogates only occur inside string literals; escape them as
    # lowercase \uXXXX so the text encodes to UTF-8.
    return _LONE_SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group(0)), text)


def canonicalize(value: Any) -> bytes:
    """Canonical UTF-8 byte serialization of ``value``."""
    return canon(value).encode("utf-8")


def strip(obj: Mapping[str, Any], fields: Iterable[str]) -> dict:
    """Shallow copy of ``obj`` without ``fields``."""
    drop = set(fields)
    return {k: v for k, v in obj.items() if k not in drop}
