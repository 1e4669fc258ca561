"""
Canonical JSON encoding tests.

The compact encoding is the input to every digest, so these vectors pin it
byte for byte.
"""

import unittest

from govattest.canonicalization import (
    MAX_SAFE_INTEGER,
    canonicalize,
    canonicalize_str,
    parse_json_bytes,
    storage_encode,
    storage_encode_str,
)
from govattest.errors import (
    CanonicalizationError,
    CircularReference,
    FailureCode,
    NonFiniteNumber,
    SchemaMismatch,
    UnsafeInteger,
)


class TestCompactEncoding(unittest.TestCase):
    """Key ordering and whitespace"""

    def test_key_order_independence(self):
        self.assertEqual(canonicalize({"a": 1, "b": 2}), canonicalize({"b": 2, "a": 1}))

    def test_concrete_manifest_bytes(self):
        """{"b":2,"a":1} canonicalizes to exactly {"a":1,"b":2}."""
        self.assertEqual(canonicalize({"b": 2, "a": 1}), b'{"a":1,"b":2}')

    def test_nested_key_ordering(self):
        data = {
            "z": {"b": 1, "a": 2},
            "a": {"y": 3, "x": [{"d": 1, "c": 2}]},
        }
        self.assertEqual(
            canonicalize_str(data),
            '{"a":{"x":[{"c":2,"d":1}],"y":3},"z":{"a":2,"b":1}}',
        )

    def test_array_order_preserved(self):
        self.assertEqual(canonicalize([3, 1, 2]), b"[3,1,2]")
        self.assertNotEqual(canonicalize([1, 2]), canonicalize([2, 1]))

    def test_no_whitespace(self):
        canonical = canonicalize_str({"key": "value", "nested": {"inner": [1, 2]}})
        self.assertNotIn(" ", canonical)
        self.assertNotIn("\n", canonical)

    def test_utf16_key_order(self):
        # Uppercase sorts before lowercase.
        self.assertEqual(canonicalize_str({"b": 1, "B": 2, "a": 3}), '{"B":2,"a":3,"b":1}')

    def test_astral_keys_sort_by_surrogates(self):
        # U+1F600 is D83D DE00 in UTF-16, which sorts before U+FFFF.
        self.assertEqual(canonicalize_str({"\uffff": 1, "\U0001f600": 2}), '{"\U0001f600":2,"\uffff":1}')

    def test_unicode_is_not_escaped(self):
        self.assertEqual(canonicalize({"name": "Zoë"}), '{"name":"Zoë"}'.encode("utf-8"))

    def test_determinism(self):
        data = {"holders": [{"id": "h-1", "shares": "1000"}], "version": 3, "ok": True, "x": None}
        self.assertEqual(canonicalize(data), canonicalize(data))

    def test_tuple_encodes_as_array(self):
        self.assertEqual(canonicalize({"t": (1, 2)}), b'{"t":[1,2]}')


class TestNumbers(unittest.TestCase):
    """Numeric rendering"""

    def test_integral_float_renders_as_integer(self):
        self.assertEqual(canonicalize({"n": 1.0}), b'{"n":1}')
        self.assertEqual(canonicalize(1.0), canonicalize(1))

    def test_negative_zero(self):
        self.assertEqual(canonicalize(-0.0), b"0")

    def test_fraction_kept(self):
        self.assertEqual(canonicalize(0.5), b"0.5")

    def test_ecmascript_number_form(self):
        cases = [
            (1e-7, b"1e-7"),
            (1.5e-7, b"1.5e-7"),
            (0.000001, b"0.000001"),
            (123.456, b"123.456"),
            (-0.5, b"-0.5"),
            (1e16, b"10000000000000000"),
            (1.2345678901234568e+20, b"123456789012345680000"),
            (1e21, b"1e+21"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(canonicalize(value), expected)

    def test_non_finite_rejected(self):
        for value in (float("nan"), float("inf"), float("-inf")):
            with self.assertRaises(NonFiniteNumber) as ctx:
                canonicalize({"v": value})
            self.assertEqual(ctx.exception.code, FailureCode.NON_FINITE_NUMBER)

    def test_safe_integer_bounds(self):
        self.assertEqual(canonicalize(MAX_SAFE_INTEGER), str(MAX_SAFE_INTEGER).encode())
        self.assertEqual(canonicalize(-MAX_SAFE_INTEGER), str(-MAX_SAFE_INTEGER).encode())

    def test_unsafe_integer_rejected(self):
        with self.assertRaises(UnsafeInteger):
            canonicalize({"supply": MAX_SAFE_INTEGER + 1})

    def test_large_integer_as_string(self):
        big = str(10 ** 30)
        self.assertEqual(canonicalize({"supply": big}), ('{"supply":"%s"}' % big).encode())

    def test_booleans_are_not_integers(self):
        self.assertEqual(canonicalize([True, False, None]), b"[true,false,null]")


class TestStructuralErrors(unittest.TestCase):
    """Cycles and unsupported values"""

    def test_cycle_in_dict(self):
        data = {"a": {}}
        data["a"]["self"] = data
        with self.assertRaises(CircularReference) as ctx:
            canonicalize(data)
        self.assertEqual(ctx.exception.code, FailureCode.CIRCULAR_REFERENCE)

    def test_cycle_in_list(self):
        items = [1]
        items.append(items)
        with self.assertRaises(CircularReference):
            canonicalize(items)

    def test_shared_subtree_is_not_a_cycle(self):
        shared = {"k": 1}
        self.assertEqual(canonicalize({"a": shared, "b": shared}), b'{"a":{"k":1},"b":{"k":1}}')

    def test_non_string_keys_rejected(self):
        with self.assertRaises(CanonicalizationError):
            canonicalize({1: "one"})

    def test_unsupported_type_rejected(self):
        with self.assertRaises(CanonicalizationError):
            canonicalize({"when": object()})

    def test_errors_are_value_errors(self):
        self.assertTrue(issubclass(CircularReference, ValueError))


class TestStorageEncoding(unittest.TestCase):
    """Pretty encoding for files on disk"""

    def test_indent_and_trailing_newline(self):
        self.assertEqual(
            storage_encode_str({"b": 2, "a": [1]}),
            '{\n  "a": [\n    1\n  ],\n  "b": 2\n}\n',
        )

    def test_numbers_match_compact_form(self):
        self.assertEqual(storage_encode_str({"v": 1e-7, "w": 1e21}), '{\n  "v": 1e-7,\n  "w": 1e+21\n}\n')

    def test_empty_containers(self):
        self.assertEqual(storage_encode_str({"a": {}, "b": []}), '{\n  "a": {},\n  "b": []\n}\n')

    def test_differs_from_compact(self):
        data = {"a": 1}
        self.assertNotEqual(storage_encode(data), canonicalize(data))

    def test_same_semantics_as_compact(self):
        data = {"z": [1.0, {"y": None}], "a": "x"}
        self.assertEqual(canonicalize(parse_json_bytes(storage_encode(data))), canonicalize(data))


class TestParsing(unittest.TestCase):

    def test_rejects_nan_literal(self):
        with self.assertRaises(NonFiniteNumber):
            parse_json_bytes(b'{"v": NaN}')

    def test_invalid_json(self):
        with self.assertRaises(SchemaMismatch):
            parse_json_bytes(b"{not json")

    def test_formatting_absorbed(self):
        a = parse_json_bytes(b'{"b": 2,\n   "a": 1}')
        b = parse_json_bytes(b'{"a":1,"b":2}')
        self.assertEqual(canonicalize(a), canonicalize(b))


if __name__ == "__main__":
    unittest.main()
