from __future__ import annotations

import random
import unittest

from scxq2.codec import Codec, decode, encode, encode_with_edges, sort_dictionary
from scxq2.errors import DecodeError, EncodeError, ErrorCode
from scxq2.textutil import utf16_be, utf16_units


def _linear_encode(text, dictionary):
    """Reference encoder: scan the whole dictionary at every position."""
    units = utf16_units(text)
    entries = [(tok, utf16_units(tok)) for tok in dictionary]
    index_of = {tok: i for i, tok in enumerate(dictionary)}
    out = bytearray()
    i = 0
    while i < len(units):
        for tok, du in entries:
            if du and units[i:i + len(du)] == du:
                j = index_of[tok]
                out += bytes((0x80, j >> 8, j & 0xFF))
                i += len(du)
                break
        else:
            u = units[i]
            out += bytes([u]) if u < 0x80 else bytes((0x81, u >> 8, u & 0xFF))
            i += 1
    return bytes(out)


_ALPHABET = list("abcdefgh {}();:=\n\t") + ["é", "€", "中", "😀", "\ud800", "\udc00", "\x00", "\x7f"]


def _random_text(rng: random.Random, n: int) -> str:
    return "".join(rng.choice(_ALPHABET) for _ in range(n))


def _random_dictionary(rng: random.Random, sample: str, size: int):
    entries = set()
    for _ in range(size):
        if len(sample) < 2:
            break
        a = rng.randrange(len(sample) - 1)
        b = rng.randrange(a + 1, min(len(sample), a + 8) + 1)
        entries.add(sample[a:b])
    return sort_dictionary(list(entries))


class ScenarioTests(unittest.TestCase):
    def test_dictionary_references(self):
        data = bytes([0x80, 0x00, 0x00, 0x20, 0x80, 0x00, 0x01])
        self.assertEqual(decode(["hello", "world"], data), "hello world")
        self.assertEqual(encode("hello world", ["hello", "world"]), data)

    def test_invalid_byte(self):
        with self.assertRaises(DecodeError) as ctx:
            decode([], bytes([0x82]))
        self.assertEqual(ctx.exception.kind, "invalid_byte")
        self.assertEqual(ctx.exception.byte_offset, 0)
        self.assertEqual(ctx.exception.byte, 0x82)
        self.assertEqual(ctx.exception.code, ErrorCode.DECODE_INVALID_BYTE)

    def test_truncated_reference(self):
        with self.assertRaises(DecodeError) as ctx:
            decode(["test"], bytes([0x80, 0x00]))
        self.assertEqual(ctx.exception.kind, "truncated_sequence")
        self.assertEqual(ctx.exception.byte_offset, 0)

    def test_truncated_literal(self):
        with self.assertRaises(DecodeError) as ctx:
            decode([], b"ab" + bytes([0x81, 0x00]))
        self.assertEqual(ctx.exception.kind, "truncated_sequence")
        self.assertEqual(ctx.exception.byte_offset, 2)

    def test_index_out_of_bounds(self):
        with self.assertRaises(DecodeError) as ctx:
            decode(["only"], bytes([0x80, 0x00, 0x05]))
        self.assertEqual(ctx.exception.kind, "dict_index_oob")
        self.assertEqual(ctx.exception.index, 5)
        self.assertEqual(ctx.exception.to_json(), {"ok": False, "kind": "dict_index_oob", "byte_offset": 0, "index": 5})

    def test_utf16_literal(self):
        self.assertEqual(decode([], bytes([0x81, 0x00, 0xE9])), "é")
        self.assertEqual(encode("é", []), bytes([0x81, 0x00, 0xE9]))

    def test_non_string_entry(self):
        with self.assertRaises(DecodeError) as ctx:
            decode(["ok", 7], bytes([0x80, 0x00, 0x01]))
        self.assertEqual(ctx.exception.kind, "dict_entry_invalid")
        self.assertEqual(ctx.exception.index, 1)

    def test_non_bytes_input_is_structured(self):
        with self.assertRaises(DecodeError) as ctx:
            decode([], "abc")
        self.assertEqual(ctx.exception.kind, "internal")
        self.assertEqual(ctx.exception.code, ErrorCode.DECODE_INTERNAL)

    def test_output_limit(self):
        data = bytes([0x80, 0x00, 0x00, 0x80, 0x00, 0x00])
        self.assertEqual(decode(["abcd"], data, max_output_units=8), "abcdabcd")
        with self.assertRaises(DecodeError) as ctx:
            decode(["abcd"], data, max_output_units=5)
        self.assertEqual(ctx.exception.kind, "output_limit")
        self.assertEqual(ctx.exception.byte_offset, 5)

    def test_output_limit_counts_code_units(self):
        # One astral character is two UTF-16 units
        with self.assertRaises(DecodeError):
            decode(["😀"], bytes([0x80, 0x00, 0x00]), max_output_units=1)
        self.assertEqual(decode(["😀"], bytes([0x80, 0x00, 0x00]), max_output_units=2), "😀")

    def test_empty_input(self):
        self.assertEqual(decode([], b""), "")
        self.assertEqual(encode("", ["abc"]), b"")


class EncodeTests(unittest.TestCase):
    def test_ascii_passthrough(self):
        self.assertEqual(encode("plain text\n", []), b"plain text\n")

    def test_astral_becomes_two_literals(self):
        data = encode("😀", [])
        self.assertEqual(data, bytes([0x81, 0xD8, 0x3D, 0x81, 0xDE, 0x00]))
        self.assertEqual(decode([], data), "😀")

    def test_lone_surrogate_survives(self):
        text = "a\ud800b"
        self.assertEqual(decode([], encode(text, [])), text)

    def test_longest_first_order_wins(self):
        d = sort_dictionary(["ab", "abc"])
        self.assertEqual(d, ["abc", "ab"])
        self.assertEqual(encode("abcab", d), bytes([0x80, 0x00, 0x00, 0x80, 0x00, 0x01]))

    def test_greedy_without_backtracking(self):
        # "abc" is taken first even though "ab" + "cd" would cover more
        d = ["abc", "ab", "cd"]
        self.assertEqual(encode("abcd", d), bytes([0x80, 0x00, 0x00]) + b"d")

    def test_empty_entry_never_matches(self):
        self.assertEqual(encode("a", ["", "a"]), bytes([0x80, 0x00, 0x01]))

    def test_duplicate_entry_uses_last_index(self):
        self.assertEqual(encode("ab", ["ab", "ab"]), bytes([0x80, 0x00, 0x01]))

    def test_sort_dictionary_by_code_units(self):
        self.assertEqual(sort_dictionary(["a", "ccc", "bb", "bbb"]), ["bbb", "ccc", "bb", "a"])
        # U+FF01 sorts after the surrogate pair of U+1F600 in UTF-16 order
        self.assertEqual(sort_dictionary(["！x", "😀"]), ["😀", "！x"])

    def test_edges_follow_consecutive_references(self):
        out = Codec(["foo", "bar"]).encode("foobarXfoo", edges=True)
        self.assertEqual(out.edges, [(0, 1)])
        self.assertEqual(decode(["foo", "bar"], out.data), "foobarXfoo")
        self.assertIsNone(Codec(["foo"]).encode("foo").edges)

    def test_edges_are_capped(self):
        out = encode_with_edges("ab" * 1500, ["a", "b"])
        self.assertEqual(len(out.edges), 1000)


class DictionaryLimitTests(unittest.TestCase):
    def test_largest_addressable_dictionary(self):
        d = [f"t{i:05d}" for i in range(65535)]
        data = encode("t65534", d)
        self.assertEqual(data, bytes([0x80, 0xFF, 0xFE]))
        self.assertEqual(decode(d, data), "t65534")

    def test_oversized_dictionary_rejected(self):
        with self.assertRaises(EncodeError):
            Codec(["x"] * 65536)


class InverseLawTests(unittest.TestCase):
    def test_random_texts_roundtrip(self):
        rng = random.Random(1234)
        for _ in range(300):
            text = _random_text(rng, rng.randrange(0, 80))
            d = _random_dictionary(rng, text, rng.randrange(0, 12))
            out = decode(d, encode(text, d))
            # Equality in UTF-16 code units; adjacent lone halves read as one pair
            self.assertEqual(utf16_be(out), utf16_be(text))

    def test_parity_with_linear_scan(self):
        rng = random.Random(99)
        codecs_checked = 0
        for _ in range(300):
            text = _random_text(rng, rng.randrange(0, 80))
            d = _random_dictionary(rng, text + _random_text(rng, 20), rng.randrange(0, 16))
            if rng.random() < 0.3:
                d = d + [""] + d[:2]
            self.assertEqual(Codec(d).encode(text).data, _linear_encode(text, d))
            codecs_checked += 1
        self.assertEqual(codecs_checked, 300)

    def test_deterministic(self):
        d = sort_dictionary(["function", "return", "    "])
        text = "function f() {\n    return 1;\n}\n"
        self.assertEqual(encode(text, d), encode(text, list(d)))


if __name__ == "__main__":
    unittest.main()
