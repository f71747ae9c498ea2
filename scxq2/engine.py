from __future__ import annotations

"""
Compression engine: text in, sealed dictionary/block/proof out.

Pipeline: newline normalization, token ranking, dictionary build, bytecode
encode, base64 block, canonical hashes, roundtrip decode and proof. The
blocking and awaitable entry points share one implementation and differ
only in how SHA-256 digests are computed.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .b64util import b64_to_bytes, bytes_to_b64
from .codec import DEFAULT_MAX_OUTPUT_UNITS, Codec, decode, encode_with_edges
from .constants import (
    DEFAULT_MAX_DICT,
    DEFAULT_MIN_LEN,
    LANE_BREAK,
    MAX_DICT_ENTRIES,
    SCXQ2_ENCODING,
    SCXQ2_MODE,
    TYPE_BLOCK,
    TYPE_DICT,
)
from .errors import EncodeError, ErrorCode, PackFormatError
from .hashutil import HashProvider, run_hashing, run_hashing_async
from .model import Block, Dictionary, Pack, Proof
from .proof import lanes_block_payload, make_audit, make_lanes_audit, make_lanes_proof, make_proof
from .textutil import decode_input, iso_utc_now, utf16_be, utf8_bytes, utf8_len
from .tokenizer import DictionaryBuilder, TokenizerFlags


TextInput = Union[str, bytes]


@dataclass(frozen=True)
class CompressOptions:
    max_dict: int = DEFAULT_MAX_DICT
    min_len: int = DEFAULT_MIN_LEN
    created_utc: Optional[str] = None
    source_file: Optional[str] = None
    enable_field_ops: bool = False
    enable_edge_ops: bool = False
    no_strings: bool = False
    no_ws: bool = False
    no_punct: bool = False

    def resolved(self) -> "CompressOptions":
        """Clamp limits into range and fix the timestamp for this run."""
        return replace(
            self,
            max_dict=min(MAX_DICT_ENTRIES, max(1, int(self.max_dict))),
            min_len=min(128, max(2, int(self.min_len))),
            created_utc=self.created_utc or iso_utc_now(),
        )

    @property
    def flags(self) -> TokenizerFlags:
        return TokenizerFlags(no_strings=self.no_strings, no_ws=self.no_ws, no_punct=self.no_punct)

    def builder(self) -> DictionaryBuilder:
        return DictionaryBuilder(
            max_dict=self.max_dict,
            min_len=self.min_len,
            flags=self.flags,
            field_ops=self.enable_field_ops,
        )


@dataclass
class CompressResult:
    dictionary: Dictionary
    block: Block
    proof: Proof
    audit: Dict[str, Any]

    def to_json(self) -> Dict[str, Any]:
        return {
            "dict": self.dictionary.to_json(),
            "block": self.block.to_json(),
            "proof": self.proof.to_json(),
            "audit": self.audit,
        }


@dataclass
class LanesResult:
    dictionary: Dictionary
    lanes: List[Block]
    proof: Proof
    audit: Dict[str, Any]

    def to_json(self) -> Dict[str, Any]:
        return {
            "dict": self.dictionary.to_json(),
            "lanes": [b.to_json() for b in self.lanes],
            "proof": self.proof.to_json(),
            "audit": self.audit,
        }


_Steps = Generator[bytes, str, Any]


def _encode(src: str, entries: List[str], o: CompressOptions):
    if o.enable_edge_ops:
        return encode_with_edges(src, entries)
    return Codec(entries).encode(src)


def _new_dictionary(entries: List[str], source_sha: str, o: CompressOptions) -> Dictionary:
    return Dictionary(
        entries=entries,
        source_sha256=source_sha,
        created_utc=o.created_utc,
        max_dict=o.max_dict,
        min_len=o.min_len,
        flags=o.flags.to_json(),
    )


def _new_block(src: str, data: bytes, source_sha: str, d: Dictionary, o: CompressOptions,
               edges: Optional[List[Tuple[int, int]]], lane_id: Optional[str] = None) -> Block:
    return Block(
        b64=bytes_to_b64(data),
        source_sha256=source_sha,
        dict_sha256=d.dict_sha256 or "",
        lane_id=lane_id,
        created_utc=o.created_utc,
        original_bytes_utf8=utf8_len(src),
        edges=edges or None,
    )


def _compress_steps(data: TextInput, o: CompressOptions) -> _Steps:
    src = decode_input(data)
    src_sha = yield utf8_bytes(src)

    builder = o.builder()
    stats = builder.collect_tokens(src)
    entries = builder.build(stats)
    enc = _encode(src, entries, o)

    d = _new_dictionary(entries, src_sha, o)
    d.dict_sha256 = yield d.hash_payload()

    block = _new_block(src, enc.data, src_sha, d, o, enc.edges)
    block.block_sha256 = yield block.hash_payload()

    rt_sha = yield utf8_bytes(decompress(d, block))
    proof = make_proof(
        src_sha, rt_sha, d, block,
        created_utc=o.created_utc,
        field_ops=o.enable_field_ops,
        edge_ops=o.enable_edge_ops,
    )
    audit = make_audit(src, stats, d, block, created_utc=o.created_utc, source_file=o.source_file)
    return CompressResult(dictionary=d, block=block, proof=proof, audit=audit)


def _normalize_lanes(lanes: Union[Mapping[str, TextInput], Iterable[Any]]) -> List[Tuple[str, TextInput]]:
    """Accept ``{lane_id: text}``, ``[(lane_id, text), ...]`` or
    ``[{"lane_id": ..., "text": ...}, ...]``; return pairs sorted by lane id."""
    if isinstance(lanes, Mapping):
        items = list(lanes.items())
    else:
        items = []
        for lane in lanes:
            if isinstance(lane, Mapping):
                items.append((lane.get("lane_id"), lane.get("text")))
            else:
                lane_id, text = lane
                items.append((lane_id, text))
    if not items:
        raise EncodeError("no lanes given", code=ErrorCode.PACK_BLOCKS_MISSING)

    out: List[Tuple[str, TextInput]] = []
    seen = set()
    for lane_id, text in items:
        lid = str(lane_id if lane_id is not None else "").strip()
        if not lid:
            raise EncodeError("lane_id missing", code=ErrorCode.BLOCK_LANE_ID_INVALID)
        if lid in seen:
            raise EncodeError(f"duplicate lane_id: {lid}", code=ErrorCode.BLOCK_LANE_ID_INVALID)
        if not isinstance(text, (str, bytes, bytearray)):
            raise EncodeError(f"lane text must be str or bytes: {lid}", code=ErrorCode.PACK_TYPE_INVALID)
        seen.add(lid)
        out.append((lid, text))
    out.sort(key=lambda item: utf16_be(item[0]))
    return out


def _compress_lanes_steps(lanes: Sequence[Tuple[str, TextInput]], o: CompressOptions) -> _Steps:
    texts = [(lane_id, decode_input(text)) for lane_id, text in lanes]
    joined = LANE_BREAK.join(src for _, src in texts)
    joined_sha = yield utf8_bytes(joined)

    builder = o.builder()
    entries = builder.build(builder.collect_tokens(joined))

    d = _new_dictionary(entries, joined_sha, o)
    d.dict_sha256 = yield d.hash_payload()

    blocks: List[Block] = []
    decoded: List[str] = []
    for lane_id, src in texts:
        src_sha = yield utf8_bytes(src)
        enc = _encode(src, entries, o)
        block = _new_block(src, enc.data, src_sha, d, o, enc.edges, lane_id=lane_id)
        block.block_sha256 = yield block.hash_payload()

        rt = decompress(d, block)
        rt_sha = yield utf8_bytes(rt)
        if rt_sha != src_sha:
            raise EncodeError(f"lane roundtrip mismatch: {lane_id}", code=ErrorCode.POLICY_ROUNDTRIP_REQUIRED)
        blocks.append(block)
        decoded.append(rt)

    rt_joined_sha = yield utf8_bytes(LANE_BREAK.join(decoded))
    block_sha = yield lanes_block_payload(blocks)
    proof = make_lanes_proof(joined_sha, rt_joined_sha, d, blocks, block_sha, created_utc=o.created_utc)
    audit = make_lanes_audit(d, blocks, created_utc=o.created_utc, source_file=o.source_file or "lanes")
    return LanesResult(dictionary=d, lanes=blocks, proof=proof, audit=audit)


def compress(data: TextInput, options: Optional[CompressOptions] = None, *, hasher: Optional[HashProvider] = None) -> CompressResult:
    """Compress ``data`` into a sealed dictionary, block, proof and audit."""
    o = (options or CompressOptions()).resolved()
    return run_hashing(_compress_steps(data, o), hasher)


async def compress_async(data: TextInput, options: Optional[CompressOptions] = None,
                         *, hasher: Optional[HashProvider] = None) -> CompressResult:
    o = (options or CompressOptions()).resolved()
    return await run_hashing_async(_compress_steps(data, o), hasher)


def compress_lanes(lanes, options: Optional[CompressOptions] = None, *, hasher: Optional[HashProvider] = None) -> LanesResult:
    """Compress several named texts against one shared dictionary.

    Lanes are processed in lane-id order. Each lane is decoded again after
    encoding and :class:`EncodeError` is raised if it does not round-trip.
    """
    o = (options or CompressOptions()).resolved()
    return run_hashing(_compress_lanes_steps(_normalize_lanes(lanes), o), hasher)


async def compress_lanes_async(lanes, options: Optional[CompressOptions] = None,
                               *, hasher: Optional[HashProvider] = None) -> LanesResult:
    o = (options or CompressOptions()).resolved()
    return await run_hashing_async(_compress_lanes_steps(_normalize_lanes(lanes), o), hasher)


def _as_json(obj: Any) -> Any:
    return obj.to_json() if isinstance(obj, (Dictionary, Block)) else obj


def check_pair(dict_json: Any, block_json: Any) -> None:
    """Structural check of a dictionary/block pair before decoding.

    Raises:
        PackFormatError: if either object is malformed, uses another
            mode/encoding, or the block links to a different dictionary.
    """
    if not isinstance(dict_json, Mapping):
        raise PackFormatError("missing dict", code=ErrorCode.DICT_MISSING)
    if not isinstance(block_json, Mapping):
        raise PackFormatError("missing block", code=ErrorCode.BLOCK_TYPE_INVALID)
    if dict_json.get("@type") != TYPE_DICT:
        raise PackFormatError("invalid dict @type", code=ErrorCode.DICT_TYPE_INVALID)
    if block_json.get("@type") != TYPE_BLOCK:
        raise PackFormatError("invalid block @type", code=ErrorCode.BLOCK_TYPE_INVALID)
    if not isinstance(dict_json.get("dict"), list):
        raise PackFormatError("dict must be array", code=ErrorCode.DICT_ENTRY_TYPE_INVALID)
    if not isinstance(block_json.get("b64"), str):
        raise PackFormatError("block b64 must be string", code=ErrorCode.BLOCK_B64_MISSING)
    if dict_json.get("mode") != SCXQ2_MODE:
        raise PackFormatError("invalid dict mode", code=ErrorCode.PACK_MODE_MISMATCH)
    if block_json.get("mode") != SCXQ2_MODE:
        raise PackFormatError("invalid block mode", code=ErrorCode.BLOCK_MODE_MISMATCH)
    if dict_json.get("encoding") != SCXQ2_ENCODING:
        raise PackFormatError("invalid dict encoding", code=ErrorCode.PACK_ENCODING_MISMATCH)
    if block_json.get("encoding") != SCXQ2_ENCODING:
        raise PackFormatError("invalid block encoding", code=ErrorCode.BLOCK_ENCODING_MISMATCH)
    link = block_json.get("dict_sha256_canon")
    own = dict_json.get("dict_sha256_canon")
    if link and own and link != own:
        raise PackFormatError("dict linkage mismatch", code=ErrorCode.BLOCK_DICT_LINK_MISMATCH)


def decompress(dictionary: Union[Dictionary, Mapping[str, Any]], block: Union[Block, Mapping[str, Any]],
               max_output_units: int = DEFAULT_MAX_OUTPUT_UNITS) -> str:
    """Decode one block with its dictionary.

    Accepts model objects or their JSON form. Raises :class:`PackFormatError`
    for a malformed pair and :class:`DecodeError` for malformed bytecode.
    """
    dict_json = _as_json(dictionary)
    block_json = _as_json(block)
    check_pair(dict_json, block_json)
    try:
        data = b64_to_bytes(block_json["b64"])
    except ValueError as exc:
        raise PackFormatError(f"invalid base64: {exc}", code=ErrorCode.BLOCK_B64_INVALID)
    return decode(dict_json["dict"], data, max_output_units)


def seal_pack(dictionary: Dictionary, blocks: Sequence[Block], proof: Proof, created_utc: Optional[str] = None) -> Pack:
    """Assemble a pack from sealed parts and set its whole-pack hash."""
    for b in blocks:
        if b.dict_sha256 != dictionary.dict_sha256:
            raise PackFormatError("block is linked to a different dictionary", code=ErrorCode.BLOCK_DICT_LINK_MISMATCH)
    return Pack(dictionary=dictionary, blocks=list(blocks), proof=proof, created_utc=created_utc).seal()


def pack_text(data: TextInput, options: Optional[CompressOptions] = None) -> Pack:
    """Compress ``data`` and seal the result as a single-block pack."""
    o = (options or CompressOptions()).resolved()
    res = compress(data, o)
    return seal_pack(res.dictionary, [res.block], res.proof, o.created_utc)


def pack_lanes(lanes, options: Optional[CompressOptions] = None) -> Pack:
    """Compress named lanes and seal them as one multi-block pack."""
    o = (options or CompressOptions()).resolved()
    res = compress_lanes(lanes, o)
    return seal_pack(res.dictionary, res.lanes, res.proof, o.created_utc)
