from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .canon import canonicalize
from .constants import (
    ENGINE_ID,
    FORMAT_VERSION,
    OP_DECODE,
    OP_DICT,
    OP_EDGE,
    OP_ENCODE,
    OP_FIELD,
    OP_LANE,
    OP_NORM,
    TYPE_AUDIT,
    TYPE_LANES_AUDIT,
)
from .model import Block, Dictionary, Proof
from .textutil import utf8_len


def make_proof(
    source_sha: str,
    roundtrip_sha: str,
    dictionary: Dictionary,
    block: Block,
    *,
    created_utc: Optional[str] = None,
    field_ops: bool = False,
    edge_ops: bool = False,
) -> Proof:
    """Witness for a single-lane pack."""
    steps: List[Dict[str, Any]] = [
        {"op": OP_NORM, "sha": source_sha},
        {"op": OP_DICT, "dict_entries": len(dictionary.entries)},
    ]
    if field_ops:
        steps.append({"op": OP_FIELD})
    if edge_ops:
        steps.append({"op": OP_EDGE, "edges": len(block.edges or [])})
    steps.append({"op": OP_ENCODE, "block_sha": block.block_sha256})
    steps.append({"op": OP_DECODE, "roundtrip_sha": roundtrip_sha})
    return Proof(
        source_sha256=source_sha,
        dict_sha256=dictionary.dict_sha256 or "",
        block_sha256=block.block_sha256 or "",
        roundtrip_sha256=roundtrip_sha,
        engine=ENGINE_ID,
        created_utc=created_utc,
        steps=steps,
    )


def lanes_block_payload(blocks: Sequence[Block]) -> bytes:
    """Canonical bytes binding an ordered set of lane blocks; its SHA-256 is
    the proof's ``block_sha256_canon`` for a multi-lane pack."""
    return canonicalize([b.block_sha256 for b in blocks])


def make_lanes_proof(
    source_sha: str,
    roundtrip_sha: str,
    dictionary: Dictionary,
    blocks: Sequence[Block],
    block_sha: str,
    *,
    created_utc: Optional[str] = None,
) -> Proof:
    """Witness for a multi-lane pack.

    ``source_sha``/``roundtrip_sha`` cover the lane texts joined with the
    lane separator; per-lane hashes are listed under ``lanes``.
    """
    return Proof(
        source_sha256=source_sha,
        dict_sha256=dictionary.dict_sha256 or "",
        block_sha256=block_sha,
        roundtrip_sha256=roundtrip_sha,
        engine=ENGINE_ID,
        created_utc=created_utc,
        steps=[
            {"op": OP_LANE, "lanes": len(blocks)},
            {"op": OP_DICT, "dict_entries": len(dictionary.entries)},
        ],
        lanes=[
            {
                "lane_id": b.lane_id,
                "source_sha256_utf8": b.source_sha256,
                "block_sha256_canon": b.block_sha256,
            }
            for b in blocks
        ],
    )


def make_audit(source: str, token_stats: Sequence[Any], dictionary: Dictionary, block: Block,
               *, created_utc: Optional[str] = None, source_file: Optional[str] = None) -> Dict[str, Any]:
    src_bytes = utf8_len(source)
    b64_bytes = len(block.b64)
    audit = {
        "@type": TYPE_AUDIT,
        "@version": FORMAT_VERSION,
        "engine": ENGINE_ID,
        "created_utc": created_utc,
        "sizes": {
            "original_bytes_utf8": src_bytes,
            "encoded_b64_bytes_utf8": b64_bytes,
            "ratio": round(b64_bytes / src_bytes, 6) if src_bytes else None,
        },
        "dict": {
            "entries": len(dictionary.entries),
            "max_dict": dictionary.max_dict,
            "min_len": dictionary.min_len,
            "flags": dictionary.flags,
        },
        "top_tokens": [
            {"tok": t.tok, "count": t.count, "totalSavings": t.total_savings}
            for t in token_stats[:25]
        ],
    }
    if source_file is not None:
        audit["source_file"] = source_file
    return audit


def make_lanes_audit(dictionary: Dictionary, blocks: Sequence[Block], *, created_utc: Optional[str] = None,
                     source_file: Optional[str] = None) -> Dict[str, Any]:
    return {
        "@type": TYPE_LANES_AUDIT,
        "@version": FORMAT_VERSION,
        "engine": ENGINE_ID,
        "created_utc": created_utc,
        "dict_entries": len(dictionary.entries),
        "lane_count": len(blocks),
        "source_file": source_file,
    }
