from types import MappingProxyType


# Engine identity (frozen)
ENGINE_VERSION = "1.0.0"

CC_ENGINE = MappingProxyType({
    "@id": "asx://cc/engine/scxq2.v1",
    "@type": "cc.engine",
    "@version": ENGINE_VERSION,
    "@status": "frozen",
    "$schema": "xjson://schema/core/v1",
})
ENGINE_ID = CC_ENGINE["@id"]

# Mode and encoding
SCXQ2_MODE = "SCXQ2-DICT16-B64"
SCXQ2_ENCODING = "SCXQ2-1"
FORMAT_VERSION = "1.0.0"

# Operator names recorded in proof steps
OP_NORM = "cc.norm.v1"
OP_DICT = "cc.dict.v1"
OP_FIELD = "cc.field.v1"
OP_LANE = "cc.lane.v1"
OP_EDGE = "cc.edge.v1"
OP_ENCODE = "scxq2.encode.v1"
OP_DECODE = "scxq2.decode.v1"

# Object type tags
TYPE_PACK = "scxq2.pack"
TYPE_DICT = "scxq2.dict"
TYPE_BLOCK = "scxq2.block"
TYPE_PROOF = "cc.proof"
TYPE_AUDIT = "cc.audit"
TYPE_LANES_AUDIT = "cc.lanes.audit"
TYPE_ERROR = "scxq2.error"
TYPE_VERIFY_RESULT = "scxq2.verify.result"

# Hash fields (each excluded from its own object's canonical hash)
PACK_SHA_FIELD = "pack_sha256_canon"
DICT_SHA_FIELD = "dict_sha256_canon"
BLOCK_SHA_FIELD = "block_sha256_canon"
SOURCE_SHA_FIELD = "source_sha256_utf8"
ROUNDTRIP_SHA_FIELD = "roundtrip_sha256_utf8"

# Wire bytecode markers
BYTE_ASCII_MAX = 0x7F
BYTE_DICT_REF = 0x80
BYTE_UTF16_LIT = 0x81

# Limits
MAX_DICT_ENTRIES = 65535
MAX_EDGES = 1000
DEFAULT_MAX_DICT = 1024
DEFAULT_MIN_LEN = 3

LANE_BREAK = "\n\n/*__LANE_BREAK__*/\n\n"

# Known field sets; a policy may forbid anything outside these
KNOWN_PACK_FIELDS = frozenset([
    "@type", "@version", "mode", "encoding", "created_utc",
    "dict", "blocks", "proof", PACK_SHA_FIELD,
])

KNOWN_BLOCK_FIELDS = frozenset([
    "@type", "@version", "mode", "encoding",
    "lane_id", SOURCE_SHA_FIELD, DICT_SHA_FIELD,
    "b64", BLOCK_SHA_FIELD, "edges", "ops",
    "created_utc", "original_bytes_utf8",
])

PROOF_WITNESS_FIELDS = (
    "engine",
    SOURCE_SHA_FIELD,
    DICT_SHA_FIELD,
    BLOCK_SHA_FIELD,
    ROUNDTRIP_SHA_FIELD,
)
