from __future__ import annotations

"""
SCXQ2 bytecode codec.

Wire alphabet
- 0x00..0x7F: one ASCII code unit
- 0x80 hi lo: dictionary reference, index (hi << 8) | lo
- 0x81 hi lo: one UTF-16 code unit (hi << 8) | lo
- 0x82..0xFF: invalid

Text is handled as UTF-16 code units throughout, so astral characters
travel as two units and lone surrogates survive the round trip.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import (
    BYTE_ASCII_MAX,
    BYTE_DICT_REF,
    BYTE_UTF16_LIT,
    MAX_DICT_ENTRIES,
    MAX_EDGES,
)
from .errors import DecodeError, EncodeError
from .textutil import join_units, utf16_be, utf16_len


DEFAULT_MAX_OUTPUT_UNITS = 134_217_728


def sort_dictionary(entries: Sequence[str]) -> List[str]:
    """Order entries for greedy matching: longest first, then by code units."""
    return sorted(entries, key=lambda t: (-utf16_len(t), utf16_be(t)))


@dataclass
class EncodeOutput:
    data: bytes
    edges: Optional[List[Tuple[int, int]]] = None


class Codec:
    """Encoder/decoder bound to one ordered dictionary.

    Greedy matching takes the first entry, in dictionary order, that is a
    prefix of the remaining text. Entries are bucketed by their first code
    unit; each bucket keeps dictionary order, so the match chosen is the one
    a linear scan over the whole dictionary would choose.
    """

    def __init__(self, dictionary: Sequence[str]):
        if len(dictionary) > MAX_DICT_ENTRIES:
            raise EncodeError(f"dictionary has {len(dictionary)} entries; at most {MAX_DICT_ENTRIES} are addressable")
        self.dictionary = list(dictionary)
        # A repeated entry is emitted under the index of its last occurrence
        self._index_of: Dict[str, int] = {tok: i for i, tok in enumerate(self.dictionary) if isinstance(tok, str)}
        self._buckets: Dict[bytes, List[Tuple[bytes, int]]] = {}
        for tok in self.dictionary:
            if not isinstance(tok, str) or not tok:
                continue
            raw = utf16_be(tok)
            self._buckets.setdefault(raw[:2], []).append((raw, self._index_of[tok]))

    def encode(self, text: str, *, edges: bool = False) -> EncodeOutput:
        units = utf16_be(text)
        n = len(units)
        out = bytearray()
        witness: Optional[List[Tuple[int, int]]] = [] if edges else None
        last_idx = -1
        pos = 0
        while pos < n:
            hit = None
            for raw, idx in self._buckets.get(units[pos:pos + 2], ()):
                if units.startswith(raw, pos):
                    hit = (raw, idx)
                    break
            if hit is not None:
                raw, idx = hit
                out += bytes((BYTE_DICT_REF, idx >> 8, idx & 0xFF))
                pos += len(raw)
                if witness is not None and last_idx >= 0:
                    witness.append((last_idx, idx))
                last_idx = idx
                continue
            u = (units[pos] << 8) | units[pos + 1]
            if u <= BYTE_ASCII_MAX:
                out.append(u)
            else:
                out += bytes((BYTE_UTF16_LIT, u >> 8, u & 0xFF))
            pos += 2
            last_idx = -1
        return EncodeOutput(data=bytes(out), edges=witness)

    def decode(self, data: bytes, max_output_units: int = DEFAULT_MAX_OUTPUT_UNITS) -> str:
        return decode(self.dictionary, data, max_output_units)


def encode(text: str, dictionary: Sequence[str]) -> bytes:
    """Encode ``text`` against an ordered ``dictionary``."""
    return Codec(dictionary).encode(text).data


def encode_with_edges(text: str, dictionary: Sequence[str]) -> EncodeOutput:
    """Encode and collect adjacency witnesses, capped at the edge limit."""
    res = Codec(dictionary).encode(text, edges=True)
    if res.edges is not None and len(res.edges) > MAX_EDGES:
        res.edges = res.edges[:MAX_EDGES]
    return res


def decode(dictionary: Sequence[object], data: bytes, max_output_units: int = DEFAULT_MAX_OUTPUT_UNITS) -> str:
    """Decode ``data`` against ``dictionary``; the formal inverse of encode.

    Raises:
        DecodeError: on any malformed input. ``kind`` is one of
            ``invalid_byte``, ``truncated_sequence``, ``dict_index_oob``,
            ``dict_entry_invalid``, ``output_limit`` or ``internal``.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError("internal", 0, message=f"decode input must be bytes, got {type(data).__name__}")
    buf = bytes(data)
    m = len(buf)
    dict_len = len(dictionary)
    parts: List[str] = []
    unit_lens: Dict[int, int] = {}
    out_units = 0
    i = 0
    while i < m:
        b = buf[i]
        if b <= BYTE_ASCII_MAX:
            parts.append(chr(b))
            out_units += 1
            i += 1
        elif b == BYTE_DICT_REF:
            if i + 2 >= m:
                raise DecodeError("truncated_sequence", i)
            j = (buf[i + 1] << 8) | buf[i + 2]
            if j >= dict_len:
                raise DecodeError("dict_index_oob", i, index=j)
            tok = dictionary[j]
            if not isinstance(tok, str):
                raise DecodeError("dict_entry_invalid", i, index=j)
            parts.append(tok)
            n = unit_lens.get(j)
            if n is None:
                n = unit_lens[j] = utf16_len(tok)
            out_units += n
            i += 3
        elif b == BYTE_UTF16_LIT:
            if i + 2 >= m:
                raise DecodeError("truncated_sequence", i)
            parts.append(chr((buf[i + 1] << 8) | buf[i + 2]))
            out_units += 1
            i += 3
        else:
            raise DecodeError("invalid_byte", i, byte=b)
        if out_units > max_output_units:
            raise DecodeError("output_limit", min(m - 1, i))
    return join_units(parts)
