from __future__ import annotations

"""
Token ranking and dictionary construction.

This heuristic is not part of the wire contract: any strategy may be used
as long as the dictionary it yields is ordered with ``sort_dictionary``.
Pinned golden vectors stay reproducible only with this builder.
"""

import re
from dataclasses import dataclass
from typing import Dict, List

from .codec import sort_dictionary
from .constants import DEFAULT_MAX_DICT, DEFAULT_MIN_LEN, MAX_DICT_ENTRIES
from .textutil import utf16_be, utf16_len, utf16_units


_IDENT = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]{2,}")
_WS_RUN = re.compile(r"[ \t]{2,}")
_PUNCT = re.compile(r"[{}()\[\];,.=:+\-*/<>!&|%^]{2,}")
_STRING_LIT = re.compile(r"\"([^\"\n]{3,64})\"|'([^'\n]{3,64})'")
_JSON_KEY = re.compile(r"\"([^\"\\\n]{1,64})\"\s*:")

# A dictionary reference costs three bytes on the wire
_REF_COST = 3


@dataclass(frozen=True)
class TokenStat:
    tok: str
    count: int
    total_savings: int


@dataclass(frozen=True)
class TokenizerFlags:
    no_strings: bool = False
    no_ws: bool = False
    no_punct: bool = False

    def to_json(self) -> Dict[str, bool]:
        return {"noStrings": self.no_strings, "noWS": self.no_ws, "noPunct": self.no_punct}


def estimate_bytes(s: str) -> int:
    """Wire size of ``s`` sent as literals."""
    return sum(1 if u < 128 else 3 for u in utf16_units(s))


def _clamp(v: int, lo: int, hi: int) -> int:
    return min(hi, max(lo, v))


class DictionaryBuilder:
    """Ranks candidate tokens by estimated savings and picks a dictionary."""

    def __init__(
        self,
        *,
        max_dict: int = DEFAULT_MAX_DICT,
        min_len: int = DEFAULT_MIN_LEN,
        flags: TokenizerFlags = TokenizerFlags(),
        field_ops: bool = False,
    ):
        self.max_dict = _clamp(int(max_dict), 1, MAX_DICT_ENTRIES)
        self.min_len = _clamp(int(min_len), 2, 128)
        self.flags = flags
        self.field_ops = field_ops

    def collect_tokens(self, text: str) -> List[TokenStat]:
        freq: Dict[str, int] = {}

        def add(tok: str) -> None:
            if not tok or utf16_len(tok) < self.min_len:
                return
            if "\x00" in tok:
                return
            freq[tok] = freq.get(tok, 0) + 1

        for m in _IDENT.finditer(text):
            add(m.group(0))
        if not self.flags.no_ws:
            for m in _WS_RUN.finditer(text):
                add(m.group(0))
        if not self.flags.no_punct:
            for m in _PUNCT.finditer(text):
                add(m.group(0))
        if not self.flags.no_strings:
            for m in _STRING_LIT.finditer(text):
                candidate = (m.group(1) or m.group(2) or "").strip()
                if candidate:
                    add(candidate)
        if self.field_ops:
            for m in _JSON_KEY.finditer(text):
                key = m.group(1)
                if key:
                    add(key)
                    add(f'"{key}"')

        scored = []
        for tok, count in freq.items():
            if count < 2:
                continue
            savings = (estimate_bytes(tok) - _REF_COST) * count
            if savings > 0:
                scored.append(TokenStat(tok=tok, count=count, total_savings=savings))
        scored.sort(key=lambda t: (-t.total_savings, -utf16_len(t.tok), utf16_be(t.tok)))
        return scored

    def build(self, stats: List[TokenStat]) -> List[str]:
        return sort_dictionary([t.tok for t in stats[: self.max_dict]])


def collect_tokens(text: str, builder: DictionaryBuilder | None = None) -> List[TokenStat]:
    return (builder or DictionaryBuilder()).collect_tokens(text)


def build_dict(stats: List[TokenStat], max_dict: int = DEFAULT_MAX_DICT) -> List[str]:
    return DictionaryBuilder(max_dict=max_dict).build(stats)
