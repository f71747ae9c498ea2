"""
SCXQ2: deterministic, content-addressable text compression with proofs.

Features:

- Three-token bytecode (ASCII byte, dictionary reference, UTF-16 literal) with a
  formally specified decoder that fails closed on malformed input.
- Packs bind a dictionary, one or more blocks and a proof by canonical JSON
  SHA-256 hashes; any change to any field changes the pack identity.
- A fail-first verifier with a fixed check order, so every malformed pack
  reports exactly one stable error code.
- Multi-lane packs sharing one dictionary, and a CLI to encode, verify,
  decode and inspect packs.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "codec",
    "engine",
    "verify",
    "policy",
    "model",
]

# Programmatic API: scxq2.engine (compress/pack_text/decompress),
# scxq2.verify (verify_pack) and the CLI functions in scxq2.cli.
