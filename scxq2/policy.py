from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Tuple

from .constants import MAX_DICT_ENTRIES, SCXQ2_ENCODING, SCXQ2_MODE
from .errors import ErrorCode, PolicyError


# Wire (camelCase) option name -> attribute name
_OPTION_NAMES = {
    "requireRoundtrip": "require_roundtrip",
    "requireProof": "require_proof",
    "maxDictEntries": "max_dict_entries",
    "maxDictEntryUnits": "max_dict_entry_units",
    "maxBlocks": "max_blocks",
    "maxBlockB64Bytes": "max_block_b64_bytes",
    "maxOutputUnits": "max_output_units",
    "allowEdges": "allow_edges",
    "allowUnknownPackFields": "allow_unknown_pack_fields",
    "allowUnknownBlockFields": "allow_unknown_block_fields",
    "allowedModes": "allowed_modes",
    "allowedEncodings": "allowed_encodings",
    "failOnFirstError": "fail_on_first_error",
}

_LIMITS = (
    "max_dict_entries",
    "max_dict_entry_units",
    "max_blocks",
    "max_block_b64_bytes",
    "max_output_units",
)

_FLAGS = (
    "require_roundtrip",
    "require_proof",
    "allow_edges",
    "allow_unknown_pack_fields",
    "allow_unknown_block_fields",
)

_KNOWN_ENCODINGS = frozenset([SCXQ2_ENCODING])


@dataclass(frozen=True)
class Policy:
    """Verifier configuration. Limits bound work on untrusted packs; none of
    them changes how a valid block decodes."""

    require_roundtrip: bool = True
    require_proof: bool = True
    max_dict_entries: int = MAX_DICT_ENTRIES
    max_dict_entry_units: int = 1_048_576
    max_blocks: int = 1024
    max_block_b64_bytes: int = 67_108_864
    max_output_units: int = 134_217_728
    allow_edges: bool = True
    allow_unknown_pack_fields: bool = True
    allow_unknown_block_fields: bool = True
    allowed_modes: Tuple[str, ...] = (SCXQ2_MODE,)
    allowed_encodings: Tuple[str, ...] = (SCXQ2_ENCODING,)
    fail_on_first_error: bool = True

    def __post_init__(self):
        # Lists from JSON or callers become tuples so the record stays hashable
        for name in ("allowed_modes", "allowed_encodings"):
            value = getattr(self, name)
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                raise PolicyError(f"{name} must be a list of strings", code=ErrorCode.POLICY_DISABLED_FEATURE)
            object.__setattr__(self, name, tuple(value))
        for name in _FLAGS:
            if not isinstance(getattr(self, name), bool):
                raise PolicyError(f"{name} must be true or false", code=ErrorCode.POLICY_DISABLED_FEATURE)
        for name in _LIMITS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise PolicyError(f"{name} must be a non-negative integer", code=ErrorCode.POLICY_BUDGET_EXHAUSTED)
        if self.max_dict_entries > MAX_DICT_ENTRIES:
            raise PolicyError(
                f"max_dict_entries may not exceed {MAX_DICT_ENTRIES}",
                code=ErrorCode.POLICY_BUDGET_EXHAUSTED,
            )
        unknown = [e for e in self.allowed_encodings if e not in _KNOWN_ENCODINGS]
        if unknown:
            raise PolicyError(f"unknown encoding(s): {', '.join(unknown)}", code=ErrorCode.POLICY_UNKNOWN_ENCODING)
        if self.fail_on_first_error is not True:
            raise PolicyError(
                "failOnFirstError=false (diagnostic collection) is not supported",
                code=ErrorCode.POLICY_DISABLED_FEATURE,
            )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any], base: "Policy | None" = None) -> "Policy":
        """Build a policy from camelCase (or attribute-named) options.

        Unknown option names are rejected rather than ignored.
        """
        attrs = {f.name for f in fields(cls)}
        updates: Dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_NAMES.get(key, key)
            if name not in attrs:
                raise PolicyError(f"unknown policy option: {key}", code=ErrorCode.POLICY_DISABLED_FEATURE)
            updates[name] = value
        return replace(base or DEFAULT_POLICY, **updates)

    def to_mapping(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for wire, name in _OPTION_NAMES.items():
            value = getattr(self, name)
            out[wire] = list(value) if isinstance(value, tuple) else value
        return out

    def with_options(self, **changes: Any) -> "Policy":
        return replace(self, **changes)


DEFAULT_POLICY = Policy()

STRICT_POLICY = Policy(
    allow_unknown_pack_fields=False,
    allow_unknown_block_fields=False,
    allow_edges=False,
)
