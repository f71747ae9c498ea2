from __future__ import annotations

import sys
import argparse
import json as _json

from dataclasses import replace
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple

from scxq2.b64util import b64_to_bytes
from scxq2.engine import CompressOptions, pack_lanes, pack_text
from scxq2.errors import Scxq2Error, PolicyError, PackFormatError
from scxq2.packio import dump_pack, load_pack
from scxq2.policy import DEFAULT_POLICY, STRICT_POLICY, Policy
from scxq2.textutil import utf8_bytes
from scxq2.verify import VerifyResult, decode_utf16, verify_many, verify_pack


def _format_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f} KB"
    return f"{n / (1024 * 1024):.2f} MB"


def _dumps(obj: Any) -> str:
    return _json.dumps(obj, indent=2, ensure_ascii=True)


def _lane_arg(value: str) -> Tuple[str, str]:
    lane_id, sep, path = value.partition("=")
    if not sep or not lane_id.strip() or not path:
        raise argparse.ArgumentTypeError(f"expected ID=PATH, got {value!r}")
    return lane_id.strip(), path


def _policy_from_args(args: argparse.Namespace) -> Policy:
    """Build the verifier policy from command-line flags.

    Args:
        args: Parsed arguments carrying ``strict``, ``no_roundtrip``,
            ``no_proof`` and ``max_output_units``.

    Returns:
        The default (or strict) preset with the requested overrides applied.
    """
    base = STRICT_POLICY if args.strict else DEFAULT_POLICY
    changes: Dict[str, Any] = {}
    if args.no_roundtrip:
        changes["require_roundtrip"] = False
    if args.no_proof:
        changes["require_proof"] = False
    if args.max_output_units is not None:
        changes["max_output_units"] = args.max_output_units
    return base.with_options(**changes) if changes else base


def _report_failure(res: VerifyResult) -> None:
    print(_dumps(res.to_json()), file=sys.stderr)


def _read_pack(path: str) -> Tuple[bool, Any]:
    """Load pack JSON, reporting an unreadable file on stderr.

    Returns:
        ``(True, obj)`` on success, ``(False, None)`` if the file could not
        be read or parsed.
    """
    try:
        return True, load_pack(path)
    except (PackFormatError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return False, None


def _select_block(blocks: List[Dict[str, Any]], lane: Optional[str]) -> Optional[Dict[str, Any]]:
    if lane is None:
        return blocks[0]
    for b in blocks:
        if b.get("lane_id") is not None and str(b["lane_id"]) == str(lane):
            return b
    return None


def cmd_encode(
    input_path: Optional[str],
    *,
    output: Optional[str] = None,
    lanes: Optional[List[Tuple[str, str]]] = None,
    options: CompressOptions = CompressOptions(),
    quiet: bool = False,
) -> bool:
    """Compress a file (or several named lanes) into a sealed pack.

    Args:
        input_path: Source text file; ignored when ``lanes`` is given.
        output: Pack path. The pack JSON goes to stdout when omitted.
        lanes: ``(lane_id, path)`` pairs for a multi-lane pack.
        options: Compression options.
        quiet: Suppress the summary line.

    Returns:
        True on success.
    """
    if lanes:
        texts = {lane_id: Path(p).read_bytes() for lane_id, p in lanes}
        pack = pack_lanes(texts, options)
    else:
        if options.source_file is None:
            options = replace(options, source_file=Path(input_path).name)
        pack = pack_text(Path(input_path).read_bytes(), options)

    if output is None:
        sys.stdout.write(_dumps(pack.to_json()) + "\n")
        return True
    dump_pack(pack, output)
    if not quiet:
        total = sum(len(b64_to_bytes(b.b64)) for b in pack.blocks)
        print(f"Sealed pack: {output}")
        print(f"  Blocks: {len(pack.blocks)}  Dict entries: {len(pack.dictionary.entries)}  "
              f"Encoded: {_format_bytes(total)}")
        print(f"  pack_sha256_canon: {pack.pack_sha256}")
    return True


def cmd_verify(paths: List[str], policy: Policy, *, jobs: int = 4, as_json: bool = False) -> bool:
    """Verify one or more packs.

    Args:
        paths: Pack JSON files.
        policy: Verifier policy.
        jobs: Worker threads when verifying several packs.
        as_json: Emit one JSON summary for all packs.

    Returns:
        True if every pack verified.
    """
    loaded = [_read_pack(p) for p in paths]
    if not all(ok for ok, _ in loaded):
        return False
    packs = [obj for _, obj in loaded]
    results = verify_many(packs, policy, jobs=jobs) if len(packs) > 1 else [verify_pack(packs[0], policy)]

    if as_json:
        summary = [{"path": p, "result": r.to_json()} for p, r in zip(paths, results)]
        print(_dumps(summary))
        return all(r.ok for r in results)

    if len(results) == 1:
        res = results[0]
        if not res.ok:
            _report_failure(res)
            return False
        print(_dumps(res.to_json()))
        return True

    bad = 0
    for p, r in zip(paths, results):
        if r.ok:
            print(f"OK    {p}  ({r.blocks} blocks)")
        else:
            bad += 1
            print(f"FAIL  {p}: {r.error.code.value}: {r.error.message}", file=sys.stderr)
    print(f"Verified {len(results) - bad}/{len(results)} packs")
    return bad == 0


def cmd_decode(path: str, policy: Policy, *, lane: Optional[str] = None) -> bool:
    """Verify a pack, then write one block's text to stdout.

    Args:
        path: Pack JSON file.
        policy: Verifier policy; ``max_output_units`` also bounds the decode.
        lane: ``lane_id`` of the block to decode; the first block if None.

    Returns:
        True on success.
    """
    ok, obj = _read_pack(path)
    if not ok:
        return False
    res = verify_pack(obj, policy)
    if not res.ok:
        _report_failure(res)
        return False

    # Decode from the verified JSON; the proof is not reparsed
    block = _select_block(obj["blocks"], lane)
    if block is None:
        lanes = ", ".join(str(b["lane_id"]) if b.get("lane_id") is not None else "(unnamed)" for b in obj["blocks"])
        print(f"Error: lane not found: {lane} (available: {lanes})", file=sys.stderr)
        return False

    dec = decode_utf16(obj["dict"]["dict"], b64_to_bytes(block["b64"]), {"maxOutputUnits": policy.max_output_units})
    if not dec["ok"]:
        print(_dumps(dec), file=sys.stderr)
        return False
    sys.stdout.buffer.write(utf8_bytes(dec["value"]))
    sys.stdout.flush()
    return True


def cmd_inspect(path: str) -> bool:
    """Print a pack summary: hashes, dictionary size, per-block sizes."""
    ok, pack = _read_pack(path)
    if not ok:
        return False
    if not isinstance(pack, dict):
        print(f"Error: {path}: not a JSON object", file=sys.stderr)
        return False
    blocks = pack.get("blocks")
    if not isinstance(blocks, list):
        blocks = []
    d = pack.get("dict") or {}

    lanes = []
    total = 0
    for i, b in enumerate(blocks):
        size = None
        if isinstance(b, dict) and isinstance(b.get("b64"), str):
            try:
                size = len(b64_to_bytes(b["b64"]))
            except ValueError:
                size = None
        total += size or 0
        sha = b.get("block_sha256_canon") if isinstance(b, dict) else None
        lanes.append({
            "index": i,
            "lane_id": b.get("lane_id") if isinstance(b, dict) else None,
            "b64_bytes": size,
            "original_bytes": b.get("original_bytes_utf8") if isinstance(b, dict) else None,
            "block_sha": sha[:16] + "..." if isinstance(sha, str) else None,
        })

    entries = d.get("dict") if isinstance(d, dict) else None
    summary = {
        "pack_sha256_canon": pack.get("pack_sha256_canon"),
        "dict_sha256_canon": d.get("dict_sha256_canon") if isinstance(d, dict) else None,
        "dict_entries": len(entries) if isinstance(entries, list) else 0,
        "blocks": len(lanes),
        "total_encoded_bytes": total,
        "total_encoded_display": _format_bytes(total),
        "lanes": lanes,
    }
    print(_dumps(summary))
    return True


def _add_policy_flags(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--no-roundtrip", action="store_true", help="Skip roundtrip hash verification")
    ap.add_argument("--no-proof", action="store_true", help="Skip proof verification")
    ap.add_argument("--max-output-units", "--maxOutputUnits", dest="max_output_units", type=int,
                    help="Maximum decoded UTF-16 code units per block")
    ap.add_argument("--strict", action="store_true", help="Forbid unknown pack/block fields and edges")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(prog="scxq2", description="SCXQ2 pack tool")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_encode = sub.add_parser("encode", help="Compress text into a sealed pack")
    ap_encode.add_argument("input", nargs="?", help="Input text file")
    ap_encode.add_argument("-o", "--output", help="Output pack path (default: stdout)")
    ap_encode.add_argument("--lane", action="append", type=_lane_arg, metavar="ID=PATH",
                           help="Add a named lane (repeatable); builds a multi-lane pack")
    ap_encode.add_argument("--max-dict", type=int, default=1024, help="Maximum dictionary entries (default 1024)")
    ap_encode.add_argument("--min-len", type=int, default=3, help="Minimum token length (default 3)")
    ap_encode.add_argument("--edges", action="store_true", help="Record edge witnesses in blocks")
    ap_encode.add_argument("--field-ops", action="store_true", help="Add JSON keys as dictionary candidates")
    ap_encode.add_argument("--no-strings", action="store_true", help="Skip string literal tokens")
    ap_encode.add_argument("--no-ws", action="store_true", help="Skip whitespace-run tokens")
    ap_encode.add_argument("--no-punct", action="store_true", help="Skip punctuation-cluster tokens")
    ap_encode.add_argument("--created-utc", help="Fixed ISO-UTC timestamp (default: now)")
    ap_encode.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_verify = sub.add_parser("verify", help="Verify pack integrity")
    ap_verify.add_argument("packs", nargs="+", help="Pack JSON files")
    ap_verify.add_argument("--jobs", "-j", type=int, default=4, help="Parallel jobs (default 4)")
    ap_verify.add_argument("--json", action="store_true", help="Emit JSON result summary")
    _add_policy_flags(ap_verify)

    ap_decode = sub.add_parser("decode", help="Decode a block to stdout")
    ap_decode.add_argument("pack", help="Pack JSON file")
    ap_decode.add_argument("--lane", help="lane_id of the block to decode (default: first block)")
    _add_policy_flags(ap_decode)

    ap_inspect = sub.add_parser("inspect", help="Print pack summary (hashes, lanes, sizes)")
    ap_inspect.add_argument("pack", help="Pack JSON file")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "encode":
            if bool(args.input) == bool(args.lane):
                ap_encode.error("give either an input file or --lane ID=PATH")
            options = CompressOptions(
                max_dict=args.max_dict,
                min_len=args.min_len,
                created_utc=args.created_utc,
                enable_field_ops=args.field_ops,
                enable_edge_ops=args.edges,
                no_strings=args.no_strings,
                no_ws=args.no_ws,
                no_punct=args.no_punct,
            )
            success = cmd_encode(args.input, output=args.output, lanes=args.lane, options=options, quiet=args.quiet)
        elif args.cmd == "verify":
            success = cmd_verify(args.packs, _policy_from_args(args), jobs=args.jobs, as_json=args.json)
        elif args.cmd == "decode":
            success = cmd_decode(args.pack, _policy_from_args(args), lane=args.lane)
        elif args.cmd == "inspect":
            success = cmd_inspect(args.pack)
        else:
            raise RuntimeError("Unknown command")
        sys.exit(0 if success else 1)
    except PolicyError as e:
        print(f"Error: invalid policy: {e}", file=sys.stderr)
        sys.exit(2)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (Scxq2Error, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
