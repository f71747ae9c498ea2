from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .constants import FORMAT_VERSION, TYPE_ERROR


_CODE_PREFIX = "scxq2.error."


class ErrorCode(str, Enum):
    """Versioned error code registry (v1). Values are the wire codes."""

    # pack
    PACK_MISSING = _CODE_PREFIX + "pack_missing"
    PACK_TYPE_INVALID = _CODE_PREFIX + "pack_type_invalid"
    PACK_VERSION_UNSUPPORTED = _CODE_PREFIX + "pack_version_unsupported"
    PACK_MODE_MISMATCH = _CODE_PREFIX + "pack_mode_mismatch"
    PACK_ENCODING_MISMATCH = _CODE_PREFIX + "pack_encoding_mismatch"
    PACK_CREATED_UTC_INVALID = _CODE_PREFIX + "pack_created_utc_invalid"
    PACK_BLOCKS_MISSING = _CODE_PREFIX + "pack_blocks_missing"
    PACK_PROOF_MISSING = _CODE_PREFIX + "pack_proof_missing"
    PACK_SHA_MISSING = _CODE_PREFIX + "pack_sha_missing"
    PACK_SHA_MISMATCH = _CODE_PREFIX + "pack_sha_mismatch"
    PACK_FIELD_FORBIDDEN = _CODE_PREFIX + "pack_field_forbidden"

    # dict
    DICT_MISSING = _CODE_PREFIX + "dict_missing"
    DICT_TYPE_INVALID = _CODE_PREFIX + "dict_type_invalid"
    DICT_VERSION_UNSUPPORTED = _CODE_PREFIX + "dict_version_unsupported"
    DICT_SHA_MISSING = _CODE_PREFIX + "dict_sha_missing"
    DICT_SHA_MISMATCH = _CODE_PREFIX + "dict_sha_mismatch"
    DICT_SIZE_EXCEEDS_LIMIT = _CODE_PREFIX + "dict_size_exceeds_limit"
    DICT_ENTRY_TYPE_INVALID = _CODE_PREFIX + "dict_entry_type_invalid"
    DICT_ENTRY_EXCEEDS_LIMIT = _CODE_PREFIX + "dict_entry_exceeds_limit"

    # block
    BLOCK_TYPE_INVALID = _CODE_PREFIX + "block_type_invalid"
    BLOCK_MODE_MISMATCH = _CODE_PREFIX + "block_mode_mismatch"
    BLOCK_ENCODING_MISMATCH = _CODE_PREFIX + "block_encoding_mismatch"
    BLOCK_B64_MISSING = _CODE_PREFIX + "block_b64_missing"
    BLOCK_B64_INVALID = _CODE_PREFIX + "block_b64_invalid"
    BLOCK_SHA_MISSING = _CODE_PREFIX + "block_sha_missing"
    BLOCK_SHA_MISMATCH = _CODE_PREFIX + "block_sha_mismatch"
    BLOCK_SOURCE_SHA_MISSING = _CODE_PREFIX + "block_source_sha_missing"
    BLOCK_DICT_LINK_MISSING = _CODE_PREFIX + "block_dict_link_missing"
    BLOCK_DICT_LINK_MISMATCH = _CODE_PREFIX + "block_dict_link_mismatch"
    BLOCK_LANE_ID_INVALID = _CODE_PREFIX + "block_lane_id_invalid"
    BLOCK_EDGES_INVALID = _CODE_PREFIX + "block_edges_invalid"
    BLOCK_EDGES_EXCEEDS_LIMIT = _CODE_PREFIX + "block_edges_exceeds_limit"

    # decode
    DECODE_INVALID_BYTE = _CODE_PREFIX + "decode_invalid_byte"
    DECODE_TRUNCATED_SEQUENCE = _CODE_PREFIX + "decode_truncated_sequence"
    DECODE_DICT_INDEX_OOB = _CODE_PREFIX + "decode_dict_index_oob"
    DECODE_DICT_ENTRY_INVALID = _CODE_PREFIX + "decode_dict_entry_invalid"
    DECODE_OUTPUT_LIMIT = _CODE_PREFIX + "decode_output_limit"
    DECODE_INPUT_LIMIT = _CODE_PREFIX + "decode_input_limit"
    DECODE_INTERNAL = _CODE_PREFIX + "decode_internal"

    # proof
    PROOF_TYPE_INVALID = _CODE_PREFIX + "proof_type_invalid"
    PROOF_VERSION_UNSUPPORTED = _CODE_PREFIX + "proof_version_unsupported"
    PROOF_WITNESS_MISSING = _CODE_PREFIX + "proof_witness_missing"
    PROOF_ROUNDTRIP_SHA_MISMATCH = _CODE_PREFIX + "proof_roundtrip_sha_mismatch"
    PROOF_SOURCE_SHA_MISMATCH = _CODE_PREFIX + "proof_source_sha_mismatch"
    PROOF_OK_FALSE = _CODE_PREFIX + "proof_ok_false"

    # canon
    CANON_INVALID_JSON = _CODE_PREFIX + "canon_invalid_json"
    CANON_HASH_FAILED = _CODE_PREFIX + "canon_hash_failed"

    # policy
    POLICY_ROUNDTRIP_REQUIRED = _CODE_PREFIX + "policy_roundtrip_required"
    POLICY_UNKNOWN_ENCODING = _CODE_PREFIX + "policy_unknown_encoding"
    POLICY_DISABLED_FEATURE = _CODE_PREFIX + "policy_disabled_feature"
    POLICY_BUDGET_EXHAUSTED = _CODE_PREFIX + "policy_budget_exhausted"


class Phase(str, Enum):
    PACK = "pack"
    DICT = "dict"
    BLOCK = "block"
    CANON = "canon"
    DECODE = "decode"
    PROOF = "proof"


# Decode failure kinds, as reported by the codec
DECODE_KIND_CODES = {
    "invalid_byte": ErrorCode.DECODE_INVALID_BYTE,
    "truncated_sequence": ErrorCode.DECODE_TRUNCATED_SEQUENCE,
    "dict_index_oob": ErrorCode.DECODE_DICT_INDEX_OOB,
    "dict_entry_invalid": ErrorCode.DECODE_DICT_ENTRY_INVALID,
    "output_limit": ErrorCode.DECODE_OUTPUT_LIMIT,
    "internal": ErrorCode.DECODE_INTERNAL,
}


class Scxq2Error(Exception):
    """Base class for SCXQ2-specific errors."""

    code: ErrorCode = ErrorCode.DECODE_INTERNAL

    def __init__(self, message: str, *, code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class CanonError(Scxq2Error):
    code = ErrorCode.CANON_INVALID_JSON


class HashUnavailableError(Scxq2Error):
    code = ErrorCode.CANON_HASH_FAILED


class EncodeError(Scxq2Error):
    code = ErrorCode.POLICY_BUDGET_EXHAUSTED


class PolicyError(Scxq2Error):
    code = ErrorCode.POLICY_DISABLED_FEATURE


class PackFormatError(Scxq2Error):
    """Raised when a JSON object cannot be read as the requested artifact."""

    code = ErrorCode.PACK_TYPE_INVALID


class DecodeError(Scxq2Error):
    """Typed decode failure.

    Malformed bytecode is an expected case: the decoder reports it through
    this exception with the failure ``kind`` and the ``byte_offset`` of the
    offending token, never through an unstructured error.
    """

    def __init__(
        self,
        kind: str,
        byte_offset: int,
        *,
        index: Optional[int] = None,
        byte: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.kind = kind
        self.byte_offset = byte_offset
        self.index = index
        self.byte = byte
        super().__init__(
            message or f"{kind.replace('_', ' ')} at byte {byte_offset}",
            code=DECODE_KIND_CODES.get(kind, ErrorCode.DECODE_INTERNAL),
        )

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": False, "kind": self.kind, "byte_offset": self.byte_offset}
        if self.index is not None:
            out["index"] = self.index
        if self.byte is not None:
            out["byte"] = self.byte
        return out


@dataclass(frozen=True)
class VerifyError:
    """The single structured error reported by a failed verification."""

    code: ErrorCode
    phase: Phase
    message: str
    at: Dict[str, Any] = field(default_factory=dict)
    severity: str = "fatal"

    def to_json(self) -> Dict[str, Any]:
        return {
            "@type": TYPE_ERROR,
            "@version": FORMAT_VERSION,
            "code": self.code.value,
            "phase": self.phase.value,
            "severity": self.severity,
            "message": self.message,
            "at": {k: v for k, v in self.at.items() if v is not None},
        }
