from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .canon import canonicalize, strip
from .constants import (
    BLOCK_SHA_FIELD,
    DICT_SHA_FIELD,
    ENGINE_ID,
    FORMAT_VERSION,
    PACK_SHA_FIELD,
    ROUNDTRIP_SHA_FIELD,
    SCXQ2_ENCODING,
    SCXQ2_MODE,
    SOURCE_SHA_FIELD,
    TYPE_BLOCK,
    TYPE_DICT,
    TYPE_PACK,
    TYPE_PROOF,
)
from .errors import ErrorCode, PackFormatError
from .hashutil import sha256_hex


class ArtifactType(str, Enum):
    PACK = TYPE_PACK
    DICT = TYPE_DICT
    BLOCK = TYPE_BLOCK
    PROOF = TYPE_PROOF


def _require(obj: Mapping[str, Any], tag: ArtifactType) -> None:
    if not isinstance(obj, Mapping):
        raise PackFormatError(f"{tag.value}: expected a JSON object")
    if obj.get("@type") != tag.value:
        raise PackFormatError(f"expected @type {tag.value!r}, got {obj.get('@type')!r}")


def _extras(obj: Mapping[str, Any], known: Tuple[str, ...]) -> Dict[str, Any]:
    return {k: v for k, v in obj.items() if k not in known}


@dataclass
class Dictionary:
    entries: List[str]
    source_sha256: str
    created_utc: Optional[str] = None
    max_dict: Optional[int] = None
    min_len: Optional[int] = None
    flags: Optional[Dict[str, bool]] = None
    dict_sha256: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = ("@type", "@version", "mode", "encoding", "created_utc", SOURCE_SHA_FIELD,
               "max_dict", "min_len", "flags", "dict", DICT_SHA_FIELD)

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "@type": TYPE_DICT,
            "@version": FORMAT_VERSION,
            "mode": SCXQ2_MODE,
            "encoding": SCXQ2_ENCODING,
        }
        if self.created_utc is not None:
            out["created_utc"] = self.created_utc
        out[SOURCE_SHA_FIELD] = self.source_sha256
        if self.max_dict is not None:
            out["max_dict"] = self.max_dict
        if self.min_len is not None:
            out["min_len"] = self.min_len
        if self.flags is not None:
            out["flags"] = dict(self.flags)
        out["dict"] = list(self.entries)
        out.update(self.extra)
        if self.dict_sha256 is not None:
            out[DICT_SHA_FIELD] = self.dict_sha256
        return out

    def hash_payload(self) -> bytes:
        return canonicalize(strip(self.to_json(), [DICT_SHA_FIELD]))

    def seal(self) -> "Dictionary":
        self.dict_sha256 = sha256_hex(self.hash_payload())
        return self

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "Dictionary":
        _require(obj, ArtifactType.DICT)
        entries = obj.get("dict")
        if not isinstance(entries, list):
            raise PackFormatError("dict.dict must be an array", code=ErrorCode.DICT_ENTRY_TYPE_INVALID)
        return cls(
            entries=list(entries),
            source_sha256=obj.get(SOURCE_SHA_FIELD, ""),
            created_utc=obj.get("created_utc"),
            max_dict=obj.get("max_dict"),
            min_len=obj.get("min_len"),
            flags=obj.get("flags"),
            dict_sha256=obj.get(DICT_SHA_FIELD),
            extra=_extras(obj, cls._FIELDS),
        )


@dataclass
class Block:
    b64: str
    source_sha256: str
    dict_sha256: str
    lane_id: Optional[str] = None
    created_utc: Optional[str] = None
    original_bytes_utf8: Optional[int] = None
    edges: Optional[List[Tuple[int, int]]] = None
    block_sha256: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = ("@type", "@version", "mode", "encoding", "created_utc", "lane_id", SOURCE_SHA_FIELD,
               DICT_SHA_FIELD, "original_bytes_utf8", "b64", "edges", BLOCK_SHA_FIELD)

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "@type": TYPE_BLOCK,
            "@version": FORMAT_VERSION,
            "mode": SCXQ2_MODE,
            "encoding": SCXQ2_ENCODING,
        }
        if self.created_utc is not None:
            out["created_utc"] = self.created_utc
        if self.lane_id is not None:
            out["lane_id"] = self.lane_id
        out[SOURCE_SHA_FIELD] = self.source_sha256
        out[DICT_SHA_FIELD] = self.dict_sha256
        if self.original_bytes_utf8 is not None:
            out["original_bytes_utf8"] = self.original_bytes_utf8
        out["b64"] = self.b64
        if self.edges:
            out["edges"] = [[a, b] for a, b in self.edges]
        out.update(self.extra)
        if self.block_sha256 is not None:
            out[BLOCK_SHA_FIELD] = self.block_sha256
        return out

    def hash_payload(self) -> bytes:
        return canonicalize(strip(self.to_json(), [BLOCK_SHA_FIELD]))

    def seal(self) -> "Block":
        self.block_sha256 = sha256_hex(self.hash_payload())
        return self

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "Block":
        _require(obj, ArtifactType.BLOCK)
        edges = obj.get("edges")
        return cls(
            b64=obj.get("b64", ""),
            source_sha256=obj.get(SOURCE_SHA_FIELD, ""),
            dict_sha256=obj.get(DICT_SHA_FIELD, ""),
            lane_id=obj.get("lane_id"),
            created_utc=obj.get("created_utc"),
            original_bytes_utf8=obj.get("original_bytes_utf8"),
            edges=[(int(a), int(b)) for a, b in edges] if edges else None,
            block_sha256=obj.get(BLOCK_SHA_FIELD),
            extra=_extras(obj, cls._FIELDS),
        )


@dataclass
class Proof:
    source_sha256: str
    dict_sha256: str
    block_sha256: str
    roundtrip_sha256: str
    engine: str = ENGINE_ID
    created_utc: Optional[str] = None
    steps: Optional[List[Dict[str, Any]]] = None
    lanes: Optional[List[Dict[str, Any]]] = None

    @property
    def ok(self) -> bool:
        return self.source_sha256 == self.roundtrip_sha256

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "@type": TYPE_PROOF,
            "@version": FORMAT_VERSION,
            "engine": self.engine,
        }
        if self.created_utc is not None:
            out["created_utc"] = self.created_utc
        out[SOURCE_SHA_FIELD] = self.source_sha256
        out[DICT_SHA_FIELD] = self.dict_sha256
        out[BLOCK_SHA_FIELD] = self.block_sha256
        out[ROUNDTRIP_SHA_FIELD] = self.roundtrip_sha256
        out["ok"] = self.ok
        if self.lanes is not None:
            out["lanes"] = [dict(x) for x in self.lanes]
        if self.steps is not None:
            out["steps"] = [dict(s) for s in self.steps]
        return out

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "Proof":
        _require(obj, ArtifactType.PROOF)
        return cls(
            source_sha256=obj.get(SOURCE_SHA_FIELD, ""),
            dict_sha256=obj.get(DICT_SHA_FIELD, ""),
            block_sha256=obj.get(BLOCK_SHA_FIELD, ""),
            roundtrip_sha256=obj.get(ROUNDTRIP_SHA_FIELD, ""),
            engine=obj.get("engine", ENGINE_ID),
            created_utc=obj.get("created_utc"),
            steps=obj.get("steps"),
            lanes=obj.get("lanes"),
        )


@dataclass
class Pack:
    dictionary: Dictionary
    blocks: List[Block]
    proof: Optional[Proof] = None
    created_utc: Optional[str] = None
    pack_sha256: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "@type": TYPE_PACK,
            "@version": FORMAT_VERSION,
            "mode": SCXQ2_MODE,
            "encoding": SCXQ2_ENCODING,
        }
        if self.created_utc is not None:
            out["created_utc"] = self.created_utc
        out["dict"] = self.dictionary.to_json()
        out["blocks"] = [b.to_json() for b in self.blocks]
        if self.proof is not None:
            out["proof"] = self.proof.to_json()
        if self.pack_sha256 is not None:
            out[PACK_SHA_FIELD] = self.pack_sha256
        return out

    def hash_payload(self) -> bytes:
        return canonicalize(strip(self.to_json(), [PACK_SHA_FIELD]))

    def seal(self) -> "Pack":
        """Compute the whole-pack hash. Dictionary and blocks must be sealed."""
        self.pack_sha256 = sha256_hex(self.hash_payload())
        return self

    def block_for_lane(self, lane_id: Optional[str]) -> Block:
        if not self.blocks:
            raise PackFormatError("pack has no blocks", code=ErrorCode.PACK_BLOCKS_MISSING)
        if lane_id is None:
            return self.blocks[0]
        for b in self.blocks:
            if b.lane_id is not None and str(b.lane_id) == str(lane_id):
                return b
        lanes = ", ".join(str(b.lane_id) if b.lane_id is not None else "(unnamed)" for b in self.blocks)
        raise PackFormatError(f"lane not found: {lane_id} (available: {lanes})")

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "Pack":
        _require(obj, ArtifactType.PACK)
        blocks = obj.get("blocks")
        if not isinstance(blocks, list):
            raise PackFormatError("pack.blocks must be an array", code=ErrorCode.PACK_BLOCKS_MISSING)
        proof = obj.get("proof")
        if proof is not None and not isinstance(proof, Mapping):
            raise PackFormatError("pack.proof must be an object", code=ErrorCode.PROOF_TYPE_INVALID)
        return cls(
            dictionary=Dictionary.from_json(obj.get("dict") or {}),
            blocks=[Block.from_json(b) for b in blocks],
            proof=Proof.from_json(proof) if proof is not None else None,
            created_utc=obj.get("created_utc"),
            pack_sha256=obj.get(PACK_SHA_FIELD),
        )


_ARTIFACTS = {
    ArtifactType.PACK: Pack,
    ArtifactType.DICT: Dictionary,
    ArtifactType.BLOCK: Block,
    ArtifactType.PROOF: Proof,
}


def parse_artifact(obj: Mapping[str, Any]):
    """Read any SCXQ2 JSON object by its ``@type`` tag."""
    if not isinstance(obj, Mapping):
        raise PackFormatError("expected a JSON object")
    try:
        tag = ArtifactType(obj.get("@type"))
    except ValueError:
        raise PackFormatError(f"unknown @type: {obj.get('@type')!r}")
    return _ARTIFACTS[tag].from_json(obj)
