from __future__ import annotations

"""
SCXQ2 pack verifier (v1), deterministic fail-first ordering.

Phases run in a fixed order and the first failing check is the only error
reported:

1. pack structure
2. dictionary structure
3. block structure (ascending block index)
4. canonical hashes (pack, dict, each block)
5. base64 + bytecode decode + roundtrip hash (ascending block index)
6. proof object
7. success

Reordering any check changes which error a malformed pack reports, so the
order here is part of the format.
"""

import concurrent.futures as _fut
from dataclasses import dataclass
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional

from .b64util import strict_b64decode
from .canon import canonicalize, strip
from .codec import decode
from .constants import (
    BLOCK_SHA_FIELD,
    DICT_SHA_FIELD,
    FORMAT_VERSION,
    KNOWN_BLOCK_FIELDS,
    KNOWN_PACK_FIELDS,
    MAX_EDGES,
    PACK_SHA_FIELD,
    PROOF_WITNESS_FIELDS,
    ROUNDTRIP_SHA_FIELD,
    SOURCE_SHA_FIELD,
    TYPE_BLOCK,
    TYPE_DICT,
    TYPE_PACK,
    TYPE_PROOF,
    TYPE_VERIFY_RESULT,
)
from .errors import (
    DECODE_KIND_CODES,
    CanonError,
    DecodeError,
    ErrorCode,
    HashUnavailableError,
    Phase,
    VerifyError,
)
from .hashutil import HashProvider, run_hashing, run_hashing_async
from .policy import DEFAULT_POLICY, Policy
from .textutil import is_iso_utc, utf16_len, utf8_bytes


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    error: Optional[VerifyError] = None
    pack_sha256: Optional[str] = None
    dict_sha256: Optional[str] = None
    blocks: int = 0

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"@type": TYPE_VERIFY_RESULT, "@version": FORMAT_VERSION, "ok": self.ok}
        if self.ok:
            out[PACK_SHA_FIELD] = self.pack_sha256
            out[DICT_SHA_FIELD] = self.dict_sha256
            out["blocks"] = self.blocks
        else:
            out["error"] = self.error.to_json() if self.error else None
        return out


def _fail(code: ErrorCode, phase: Phase, message: str, **at: Any) -> VerifyResult:
    return VerifyResult(ok=False, error=VerifyError(code=code, phase=phase, message=message, at=at))


def _present(value: Any) -> bool:
    """Field presence with JavaScript truthiness.

    ``None``, ``False``, ``0`` and ``""`` count as absent; empty arrays and
    objects count as present.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == value and value != 0
    if isinstance(value, str):
        return value != ""
    return True


def _same(a: Any, b: Any) -> bool:
    return type(a) is type(b) and a == b


def _has_unknown_fields(obj: Mapping[str, Any], known: frozenset) -> bool:
    return any(k not in known for k in obj.keys())


def _valid_edges(edges: List[Any], dict_len: int) -> bool:
    for pair in edges:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            return False
        for idx in pair:
            if isinstance(idx, bool) or not isinstance(idx, int) or not 0 <= idx < dict_len:
                return False
    return True


# Verification steps yield canonical byte payloads and receive their SHA-256
# hex digests back; see hashutil.run_hashing.
_Steps = Generator[bytes, str, VerifyResult]


def _check_pack(pack: Any, p: Policy) -> Optional[VerifyResult]:
    if not isinstance(pack, Mapping):
        if isinstance(pack, list):
            return _fail(ErrorCode.PACK_TYPE_INVALID, Phase.PACK, "bad @type", field="@type")
        return _fail(ErrorCode.PACK_MISSING, Phase.PACK, "pack missing")
    if not _same(pack.get("@type"), TYPE_PACK):
        return _fail(ErrorCode.PACK_TYPE_INVALID, Phase.PACK, "bad @type", field="@type")
    if not _same(pack.get("@version"), FORMAT_VERSION):
        return _fail(ErrorCode.PACK_VERSION_UNSUPPORTED, Phase.PACK, "unsupported @version", field="@version")
    if pack.get("mode") not in p.allowed_modes:
        return _fail(ErrorCode.PACK_MODE_MISMATCH, Phase.PACK, "mode not allowed", field="mode")
    if pack.get("encoding") not in p.allowed_encodings:
        return _fail(ErrorCode.PACK_ENCODING_MISMATCH, Phase.PACK, "encoding not allowed", field="encoding")
    if not p.allow_unknown_pack_fields and _has_unknown_fields(pack, KNOWN_PACK_FIELDS):
        return _fail(ErrorCode.PACK_FIELD_FORBIDDEN, Phase.PACK, "unknown pack field")
    if "created_utc" in pack and not is_iso_utc(pack["created_utc"]):
        return _fail(ErrorCode.PACK_CREATED_UTC_INVALID, Phase.PACK, "invalid created_utc", field="created_utc")
    if not _present(pack.get("dict")):
        return _fail(ErrorCode.DICT_MISSING, Phase.DICT, "dict missing", field="dict")
    blocks = pack.get("blocks")
    if not isinstance(blocks, list) or len(blocks) < 1:
        return _fail(ErrorCode.PACK_BLOCKS_MISSING, Phase.PACK, "blocks missing/empty", field="blocks")
    if len(blocks) > p.max_blocks:
        return _fail(ErrorCode.DECODE_INPUT_LIMIT, Phase.PACK, "too many blocks", field="blocks")
    if p.require_proof and not _present(pack.get("proof")):
        return _fail(ErrorCode.PACK_PROOF_MISSING, Phase.PACK, "proof required", field="proof")
    return None


def _check_dict(d: Any, p: Policy) -> Optional[VerifyResult]:
    if not isinstance(d, Mapping) or not _same(d.get("@type"), TYPE_DICT):
        return _fail(ErrorCode.DICT_TYPE_INVALID, Phase.DICT, "bad dict @type", field="dict.@type")
    if not _same(d.get("@version"), FORMAT_VERSION):
        return _fail(ErrorCode.DICT_VERSION_UNSUPPORTED, Phase.DICT, "unsupported dict @version", field="dict.@version")
    if d.get("mode") not in p.allowed_modes:
        return _fail(ErrorCode.PACK_MODE_MISMATCH, Phase.DICT, "dict mode mismatch", field="dict.mode")
    if d.get("encoding") not in p.allowed_encodings:
        return _fail(ErrorCode.PACK_ENCODING_MISMATCH, Phase.DICT, "dict encoding mismatch", field="dict.encoding")
    entries = d.get("dict")
    if not isinstance(entries, list):
        return _fail(ErrorCode.DICT_ENTRY_TYPE_INVALID, Phase.DICT, "dict.dict must be array", field="dict.dict")
    if len(entries) > p.max_dict_entries:
        return _fail(ErrorCode.DICT_SIZE_EXCEEDS_LIMIT, Phase.DICT, "dict too large", field="dict.dict")
    limit = p.max_dict_entry_units
    for j, e in enumerate(entries):
        if not isinstance(e, str):
            return _fail(ErrorCode.DICT_ENTRY_TYPE_INVALID, Phase.DICT, "dict entry not string", field="dict.dict", index=j)
        # A string of n code points holds at most 2n UTF-16 units
        if 2 * len(e) > limit and utf16_len(e) > limit:
            return _fail(ErrorCode.DICT_ENTRY_EXCEEDS_LIMIT, Phase.DICT, "dict entry too long", field="dict.dict", index=j)
    if not _present(d.get(DICT_SHA_FIELD)):
        return _fail(ErrorCode.DICT_SHA_MISSING, Phase.CANON, "dict sha missing", field="dict." + DICT_SHA_FIELD)
    return None


def _check_block(k: int, b: Any, dict_sha: Any, dict_len: int, p: Policy) -> Optional[VerifyResult]:
    if not isinstance(b, Mapping) or not _same(b.get("@type"), TYPE_BLOCK):
        return _fail(ErrorCode.BLOCK_TYPE_INVALID, Phase.BLOCK, "bad block @type", field="blocks", index=k)
    if b.get("mode") not in p.allowed_modes:
        return _fail(ErrorCode.BLOCK_MODE_MISMATCH, Phase.BLOCK, "block mode mismatch", field="blocks.mode", index=k)
    if b.get("encoding") not in p.allowed_encodings:
        return _fail(ErrorCode.BLOCK_ENCODING_MISMATCH, Phase.BLOCK, "block encoding mismatch", field="blocks.encoding", index=k)
    b64 = b.get("b64")
    if not isinstance(b64, str) or not b64:
        return _fail(ErrorCode.BLOCK_B64_MISSING, Phase.BLOCK, "b64 missing", field="blocks.b64", index=k)
    link = b.get(DICT_SHA_FIELD)
    if not _present(link):
        return _fail(ErrorCode.BLOCK_DICT_LINK_MISSING, Phase.BLOCK, "missing dict link", field="blocks." + DICT_SHA_FIELD, index=k)
    if not _same(link, dict_sha):
        return _fail(ErrorCode.BLOCK_DICT_LINK_MISMATCH, Phase.BLOCK, "dict link mismatch", field="blocks." + DICT_SHA_FIELD, index=k)
    if not _present(b.get(BLOCK_SHA_FIELD)):
        return _fail(ErrorCode.BLOCK_SHA_MISSING, Phase.CANON, "block sha missing", field="blocks." + BLOCK_SHA_FIELD, index=k)
    if p.require_roundtrip and not _present(b.get(SOURCE_SHA_FIELD)):
        return _fail(ErrorCode.BLOCK_SOURCE_SHA_MISSING, Phase.BLOCK, "source sha required", field="blocks." + SOURCE_SHA_FIELD, index=k)
    if not p.allow_unknown_block_fields and _has_unknown_fields(b, KNOWN_BLOCK_FIELDS):
        return _fail(ErrorCode.PACK_FIELD_FORBIDDEN, Phase.BLOCK, "unknown block field", field="blocks", index=k)
    if not p.allow_edges and "edges" in b:
        return _fail(ErrorCode.POLICY_DISABLED_FEATURE, Phase.BLOCK, "edges not allowed", field="blocks.edges", index=k)
    if "lane_id" in b:
        lane_id = b["lane_id"]
        if not isinstance(lane_id, str) or not lane_id.strip():
            return _fail(ErrorCode.BLOCK_LANE_ID_INVALID, Phase.BLOCK, "lane_id must be a non-empty string", field="blocks.lane_id", index=k)
    if "edges" in b:
        edges = b["edges"]
        if not isinstance(edges, list):
            return _fail(ErrorCode.BLOCK_EDGES_INVALID, Phase.BLOCK, "edges must be an array", field="blocks.edges", index=k)
        if len(edges) > MAX_EDGES:
            return _fail(ErrorCode.BLOCK_EDGES_EXCEEDS_LIMIT, Phase.BLOCK, "too many edges", field="blocks.edges", index=k)
        if not _valid_edges(edges, dict_len):
            return _fail(ErrorCode.BLOCK_EDGES_INVALID, Phase.BLOCK, "edges must be [index, index] pairs", field="blocks.edges", index=k)
    return None


def _check_proof(proof: Any, blocks: List[Mapping[str, Any]]) -> Optional[VerifyResult]:
    if not isinstance(proof, Mapping) or not _same(proof.get("@type"), TYPE_PROOF):
        return _fail(ErrorCode.PROOF_TYPE_INVALID, Phase.PROOF, "bad proof @type", field="proof.@type")
    if not _same(proof.get("@version"), FORMAT_VERSION):
        return _fail(ErrorCode.PROOF_VERSION_UNSUPPORTED, Phase.PROOF, "unsupported proof version", field="proof.@version")
    if proof.get("ok") is not True:
        return _fail(ErrorCode.PROOF_OK_FALSE, Phase.PROOF, "proof ok false", field="proof.ok")
    for f in PROOF_WITNESS_FIELDS:
        if not _present(proof.get(f)):
            return _fail(ErrorCode.PROOF_WITNESS_MISSING, Phase.PROOF, "missing proof witness", field="proof." + f)
    if not _same(proof.get(ROUNDTRIP_SHA_FIELD), proof.get(SOURCE_SHA_FIELD)):
        return _fail(ErrorCode.PROOF_ROUNDTRIP_SHA_MISMATCH, Phase.PROOF, "proof roundtrip sha differs from source sha",
                     field="proof." + ROUNDTRIP_SHA_FIELD)
    if len(blocks) == 1 and SOURCE_SHA_FIELD in blocks[0]:
        if not _same(proof.get(SOURCE_SHA_FIELD), blocks[0][SOURCE_SHA_FIELD]):
            return _fail(ErrorCode.PROOF_SOURCE_SHA_MISMATCH, Phase.PROOF, "proof source sha differs from block",
                         field="proof." + SOURCE_SHA_FIELD)
    return None


_DECODE_MESSAGES = {
    ErrorCode.DECODE_INVALID_BYTE: "invalid byte",
    ErrorCode.DECODE_TRUNCATED_SEQUENCE: "truncated sequence",
    ErrorCode.DECODE_DICT_INDEX_OOB: "dict index out of bounds",
    ErrorCode.DECODE_DICT_ENTRY_INVALID: "dict entry invalid",
    ErrorCode.DECODE_OUTPUT_LIMIT: "output limit exceeded",
    ErrorCode.DECODE_INTERNAL: "internal decode error",
}


def _decode_failure(exc: DecodeError, lane_id: Any, index: int) -> VerifyResult:
    code = DECODE_KIND_CODES.get(exc.kind, ErrorCode.DECODE_INTERNAL)
    return _fail(code, Phase.DECODE, _DECODE_MESSAGES[code], lane_id=lane_id, index=index, byte_offset=exc.byte_offset)


def _steps(pack: Any, p: Policy) -> _Steps:
    # 1. pack structure
    res = _check_pack(pack, p)
    if res:
        return res

    # 2. dictionary structure
    d = pack["dict"]
    res = _check_dict(d, p)
    if res:
        return res
    entries = d["dict"]
    dict_sha = d[DICT_SHA_FIELD]

    # 3. block structure
    blocks = pack["blocks"]
    for k, b in enumerate(blocks):
        res = _check_block(k, b, dict_sha, len(entries), p)
        if res:
            return res

    # 4. canonical hashes
    if not _present(pack.get(PACK_SHA_FIELD)):
        return _fail(ErrorCode.PACK_SHA_MISSING, Phase.CANON, "pack sha missing", field=PACK_SHA_FIELD)
    targets = [(pack, PACK_SHA_FIELD, ErrorCode.PACK_SHA_MISMATCH, "pack sha mismatch", PACK_SHA_FIELD, None),
               (d, DICT_SHA_FIELD, ErrorCode.DICT_SHA_MISMATCH, "dict sha mismatch", "dict." + DICT_SHA_FIELD, None)]
    targets += [(b, BLOCK_SHA_FIELD, ErrorCode.BLOCK_SHA_MISMATCH, "block sha mismatch", "blocks." + BLOCK_SHA_FIELD, k)
                for k, b in enumerate(blocks)]
    for obj, sha_field, code, message, at_field, index in targets:
        try:
            payload = canonicalize(strip(obj, [sha_field]))
        except CanonError as exc:
            return _fail(ErrorCode.CANON_INVALID_JSON, Phase.CANON, str(exc), field=at_field, index=index)
        digest = yield payload
        if not _same(digest, obj[sha_field]):
            return _fail(code, Phase.CANON, message, field=at_field, index=index)

    # 5. base64 + decode law + roundtrip
    for k, b in enumerate(blocks):
        data = strict_b64decode(b["b64"])
        if data is None:
            return _fail(ErrorCode.BLOCK_B64_INVALID, Phase.BLOCK, "invalid base64", field="blocks.b64", index=k)
        if len(data) > p.max_block_b64_bytes:
            return _fail(ErrorCode.DECODE_INPUT_LIMIT, Phase.DECODE, "block bytes exceed limit", field="blocks.b64", index=k)
        try:
            text = decode(entries, data, p.max_output_units)
        except DecodeError as exc:
            return _decode_failure(exc, b.get("lane_id"), k)
        if p.require_roundtrip:
            digest = yield utf8_bytes(text)
            if not _same(digest, b.get(SOURCE_SHA_FIELD)):
                return _fail(ErrorCode.PROOF_ROUNDTRIP_SHA_MISMATCH, Phase.PROOF, "roundtrip sha mismatch",
                             lane_id=b.get("lane_id"), index=k)

    # 6. proof object
    if p.require_proof:
        res = _check_proof(pack.get("proof"), blocks)
        if res:
            return res

    # 7. success
    return VerifyResult(ok=True, pack_sha256=pack[PACK_SHA_FIELD], dict_sha256=dict_sha, blocks=len(blocks))


def _hash_failure(exc: Exception) -> VerifyResult:
    return _fail(ErrorCode.CANON_HASH_FAILED, Phase.CANON, f"hash failed: {exc}")


def verify_pack(pack: Any, policy: Policy = DEFAULT_POLICY, *, hasher: Optional[HashProvider] = None) -> VerifyResult:
    """Verify a pack (parsed JSON) against ``policy``.

    Never raises for malformed input: the outcome, including the single
    error of a failed verification, is in the returned result.
    """
    try:
        return run_hashing(_steps(pack, policy), hasher)
    except HashUnavailableError as exc:
        return _hash_failure(exc)


async def verify_pack_async(pack: Any, policy: Policy = DEFAULT_POLICY, *, hasher: Optional[HashProvider] = None) -> VerifyResult:
    """Awaitable form of :func:`verify_pack` using the asynchronous hash path."""
    try:
        return await run_hashing_async(_steps(pack, policy), hasher)
    except HashUnavailableError as exc:
        return _hash_failure(exc)


def verify_many(packs: Iterable[Any], policy: Policy = DEFAULT_POLICY, *, jobs: int = 4) -> List[VerifyResult]:
    """Verify independent packs in parallel; results keep input order."""
    with _fut.ThreadPoolExecutor(max_workers=max(1, int(jobs))) as ex:
        return list(ex.map(lambda pk: verify_pack(pk, policy), packs))


def decode_utf16(entries: List[Any], data: bytes, limits: Optional[Mapping[str, int]] = None) -> Dict[str, Any]:
    """Decode and report the outcome as a JSON-style result object.

    ``{"ok": True, "value": text}`` or ``{"ok": False, "kind": ..., "byte_offset": ...}``.
    """
    max_out = (limits or {}).get("maxOutputUnits", DEFAULT_POLICY.max_output_units)
    try:
        return {"ok": True, "value": decode(entries, data, max_out)}
    except DecodeError as exc:
        return exc.to_json()

