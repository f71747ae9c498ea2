from __future__ import annotations

import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from scxq2.codec import sort_dictionary
from scxq2.constants import CC_ENGINE, ENGINE_ID, LANE_BREAK
from scxq2.engine import (
    CompressOptions,
    compress,
    compress_async,
    compress_lanes,
    compress_lanes_async,
    decompress,
    pack_lanes,
    pack_text,
    seal_pack,
)
from scxq2.errors import DecodeError, EncodeError, ErrorCode, PackFormatError
from scxq2.hashutil import sha256_hex
from scxq2.model import Block, Dictionary, Pack, parse_artifact
from scxq2.packio import dump_pack, load_pack
from scxq2.tokenizer import DictionaryBuilder, TokenizerFlags, build_dict, collect_tokens
from scxq2.verify import verify_pack

_WHEN = "2025-06-01T12:00:00Z"
_JS = (
    "export function render(items) {\n"
    "    const result = [];\n"
    "    for (const item of items) {\n"
    "        result.push(\"<li>\" + item + \"</li>\");\n"
    "    }\n"
    "    return result;\n"
    "}\n"
) * 4
_JSON = '{"name": "alpha", "value": 1}\n{"name": "beta", "value": 2}\n{"name": "gamma", "value": 3}\n'


def _opts(**kw) -> CompressOptions:
    return CompressOptions(created_utc=_WHEN, **kw)


class CompressTests(unittest.TestCase):
    def test_single_lane_roundtrip(self):
        res = compress(_JS, _opts())
        self.assertEqual(decompress(res.dictionary, res.block), _JS)
        self.assertEqual(res.dictionary.entries, sort_dictionary(res.dictionary.entries))
        self.assertEqual(res.block.dict_sha256, res.dictionary.dict_sha256)
        self.assertEqual(res.block.source_sha256, sha256_hex(_JS))
        self.assertEqual(res.block.original_bytes_utf8, len(_JS.encode("utf-8")))
        self.assertTrue(res.proof.ok)
        self.assertEqual(res.proof.engine, ENGINE_ID)
        self.assertEqual(ENGINE_ID, CC_ENGINE["@id"])
        self.assertEqual(res.proof.block_sha256, res.block.block_sha256)
        self.assertLess(len(res.block.b64), len(_JS))

    def test_result_json(self):
        out = compress(_JS, _opts()).to_json()
        self.assertEqual(set(out), {"dict", "block", "proof", "audit"})
        self.assertEqual(out["dict"]["@type"], "scxq2.dict")
        self.assertEqual(out["dict"]["flags"], {"noStrings": False, "noWS": False, "noPunct": False})
        self.assertEqual(out["proof"]["steps"][0], {"op": "cc.norm.v1", "sha": sha256_hex(_JS)})
        json.dumps(out)

    def test_audit(self):
        res = compress(_JS, _opts(source_file="render.js"))
        audit = res.audit
        self.assertEqual(audit["@type"], "cc.audit")
        self.assertEqual(audit["sizes"]["original_bytes_utf8"], len(_JS))
        self.assertEqual(audit["sizes"]["encoded_b64_bytes_utf8"], len(res.block.b64))
        self.assertEqual(audit["dict"]["entries"], len(res.dictionary.entries))
        self.assertLessEqual(len(audit["top_tokens"]), 25)
        self.assertEqual(audit["source_file"], "render.js")

    def test_deterministic(self):
        self.assertEqual(compress(_JS, _opts()).to_json(), compress(_JS, _opts()).to_json())

    def test_async_matches_sync(self):
        self.assertEqual(asyncio.run(compress_async(_JS, _opts())).to_json(), compress(_JS, _opts()).to_json())

    def test_newlines_normalized(self):
        res = compress("a\r\nb\rc\n", _opts())
        self.assertEqual(decompress(res.dictionary, res.block), "a\nb\nc\n")

    def test_bytes_input(self):
        res = compress("héllo wörld héllo wörld".encode("utf-8") + b"\xff", _opts())
        self.assertEqual(decompress(res.dictionary, res.block), "héllo wörld héllo wörld\ufffd")

    def test_non_text_input(self):
        with self.assertRaises(TypeError):
            compress(12345, _opts())

    def test_unicode_and_lone_surrogates(self):
        text = "😀 emoji 😀 emoji \ud800 tail"
        res = compress(text, _opts())
        self.assertEqual(decompress(res.dictionary, res.block), text)
        self.assertTrue(res.proof.ok)

    def test_options_are_clamped(self):
        o = CompressOptions(max_dict=0, min_len=1).resolved()
        self.assertEqual((o.max_dict, o.min_len), (1, 2))
        o = CompressOptions(max_dict=10 ** 6, min_len=1000).resolved()
        self.assertEqual((o.max_dict, o.min_len), (65535, 128))
        self.assertIsNotNone(CompressOptions().resolved().created_utc)

    def test_max_dict_respected(self):
        res = compress(_JS, _opts(max_dict=2))
        self.assertEqual(len(res.dictionary.entries), 2)

    def test_edge_ops(self):
        res = compress(_JS, _opts(enable_edge_ops=True))
        self.assertTrue(res.block.edges)
        self.assertIn({"op": "cc.edge.v1", "edges": len(res.block.edges)}, res.proof.steps)
        self.assertEqual(decompress(res.dictionary, res.block), _JS)

    def test_field_ops(self):
        res = compress(_JSON, _opts(enable_field_ops=True))
        self.assertIn('"name"', res.dictionary.entries)
        self.assertIn({"op": "cc.field.v1"}, res.proof.steps)

    def test_empty_input(self):
        res = compress("", _opts())
        self.assertEqual(res.dictionary.entries, [])
        self.assertEqual(res.block.b64, "")
        self.assertEqual(decompress(res.dictionary, res.block), "")


class LanesTests(unittest.TestCase):
    lanes = {"ui": _JS, "data": _JSON, "api": "fetch(url).then(render); fetch(url).then(render);"}

    def test_lanes_share_dictionary(self):
        res = compress_lanes(self.lanes, _opts())
        self.assertEqual([b.lane_id for b in res.lanes], ["api", "data", "ui"])
        for b in res.lanes:
            self.assertEqual(b.dict_sha256, res.dictionary.dict_sha256)
            self.assertEqual(decompress(res.dictionary, b), self.lanes[b.lane_id])
        joined = LANE_BREAK.join(self.lanes[k] for k in ("api", "data", "ui"))
        self.assertEqual(res.dictionary.source_sha256, sha256_hex(joined))
        self.assertEqual(res.proof.source_sha256, res.proof.roundtrip_sha256)
        self.assertEqual([x["lane_id"] for x in res.proof.lanes], ["api", "data", "ui"])
        self.assertEqual(res.audit["lane_count"], 3)
        self.assertEqual(res.audit["source_file"], "lanes")

    def test_lane_input_forms(self):
        as_pairs = compress_lanes([("ui", _JS), ("data", _JSON)], _opts()).to_json()
        as_dicts = compress_lanes([{"lane_id": "data", "text": _JSON}, {"lane_id": "ui", "text": _JS}], _opts()).to_json()
        self.assertEqual(as_pairs, as_dicts)

    def test_async_matches_sync(self):
        self.assertEqual(asyncio.run(compress_lanes_async(self.lanes, _opts())).to_json(),
                         compress_lanes(self.lanes, _opts()).to_json())

    def test_bad_lanes(self):
        with self.assertRaises(EncodeError):
            compress_lanes({}, _opts())
        with self.assertRaises(EncodeError) as ctx:
            compress_lanes([(" ", "x")], _opts())
        self.assertEqual(ctx.exception.code, ErrorCode.BLOCK_LANE_ID_INVALID)
        with self.assertRaises(EncodeError):
            compress_lanes([("a", "x"), ("a", "y")], _opts())
        with self.assertRaises(EncodeError):
            compress_lanes([("a", 5)], _opts())

    def test_pack_lanes_verifies(self):
        pack = pack_lanes(self.lanes, _opts())
        self.assertEqual(pack.created_utc, _WHEN)
        self.assertTrue(verify_pack(pack.to_json()).ok)
        self.assertEqual(pack.block_for_lane("data").lane_id, "data")
        with self.assertRaises(PackFormatError) as ctx:
            pack.block_for_lane("nope")
        self.assertIn("api, data, ui", str(ctx.exception))


class DecompressTests(unittest.TestCase):
    def setUp(self):
        self.res = compress(_JS, _opts())

    def test_accepts_json_objects(self):
        self.assertEqual(decompress(self.res.dictionary.to_json(), self.res.block.to_json()), _JS)

    def test_pair_checks(self):
        d = self.res.dictionary.to_json()
        b = self.res.block.to_json()
        bad_cases = [
            (None, b, ErrorCode.DICT_MISSING),
            (dict(d, **{"@type": "x"}), b, ErrorCode.DICT_TYPE_INVALID),
            (d, dict(b, **{"@type": "x"}), ErrorCode.BLOCK_TYPE_INVALID),
            (dict(d, mode="x"), b, ErrorCode.PACK_MODE_MISMATCH),
            (d, dict(b, encoding="x"), ErrorCode.BLOCK_ENCODING_MISMATCH),
            (d, dict(b, dict_sha256_canon="f" * 64), ErrorCode.BLOCK_DICT_LINK_MISMATCH),
        ]
        for dj, bj, code in bad_cases:
            with self.assertRaises(PackFormatError) as ctx:
                decompress(dj, bj)
            self.assertEqual(ctx.exception.code, code)

    def test_malformed_bytecode(self):
        b = dict(self.res.block.to_json(), b64="gg==")
        with self.assertRaises(DecodeError):
            decompress(self.res.dictionary, b)

    def test_output_bound(self):
        with self.assertRaises(DecodeError) as ctx:
            decompress(self.res.dictionary, self.res.block, max_output_units=3)
        self.assertEqual(ctx.exception.kind, "output_limit")


class PackTests(unittest.TestCase):
    def test_pack_text_verifies(self):
        pack = pack_text(_JS, _opts())
        self.assertTrue(pack.pack_sha256)
        self.assertTrue(verify_pack(pack.to_json()).ok)

    def test_seal_rejects_foreign_block(self):
        a = compress(_JS, _opts())
        b = compress(_JSON, _opts())
        with self.assertRaises(PackFormatError):
            seal_pack(a.dictionary, [b.block], a.proof)

    def test_json_roundtrip(self):
        pack = pack_text(_JS, _opts(enable_edge_ops=True))
        obj = pack.to_json()
        again = Pack.from_json(obj)
        self.assertEqual(again.to_json(), obj)
        self.assertIsInstance(parse_artifact(obj["dict"]), Dictionary)
        self.assertIsInstance(parse_artifact(obj["blocks"][0]), Block)
        with self.assertRaises(PackFormatError):
            parse_artifact({"@type": "scxq2.unknown"})

    def test_packio(self):
        pack = pack_text("tail \ud800 tail tail", _opts())
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "p.json"
            dump_pack(pack, path)
            loaded = load_pack(path)
            self.assertEqual(loaded, pack.to_json())
            self.assertTrue(verify_pack(loaded).ok)

            (Path(tmp) / "bad.json").write_text("{not json", encoding="utf-8")
            with self.assertRaises(PackFormatError):
                load_pack(Path(tmp) / "bad.json")
            with self.assertRaises(OSError):
                load_pack(Path(tmp) / "missing.json")


class TokenizerTests(unittest.TestCase):
    def test_ranking(self):
        stats = collect_tokens(_JS)
        savings = [t.total_savings for t in stats]
        self.assertEqual(savings, sorted(savings, reverse=True))
        self.assertTrue(all(t.count >= 2 for t in stats))
        self.assertIn("result", [t.tok for t in stats])

    def test_flags(self):
        plain = {t.tok for t in collect_tokens(_JS)}
        self.assertIn("    ", plain)
        no_ws = {t.tok for t in collect_tokens(_JS, DictionaryBuilder(flags=TokenizerFlags(no_ws=True)))}
        self.assertNotIn("    ", no_ws)
        no_strings = {t.tok for t in collect_tokens(_JS, DictionaryBuilder(flags=TokenizerFlags(no_strings=True)))}
        self.assertNotIn("<li>", no_strings)
        self.assertIn("<li>", plain)

    def test_min_len(self):
        toks = {t.tok for t in collect_tokens(_JS, DictionaryBuilder(min_len=6))}
        self.assertTrue(all(len(t) >= 6 for t in toks))

    def test_build_dict(self):
        stats = collect_tokens(_JS)
        d = build_dict(stats, 3)
        self.assertEqual(len(d), 3)
        self.assertEqual(d, sort_dictionary([t.tok for t in stats[:3]]))


if __name__ == "__main__":
    unittest.main()
