"""
Tests for cache key derivation.
"""

import re
from datetime import date

import pytest
import xxhash

from reportcache.error_handling import CacheKeyError
from reportcache.keys import KEY_LENGTH, canonical_source, derive_key, param_fragment


class _Unprintable:
    def __str__(self):
        raise ValueError("no text form")


class TestCanonicalSource:
    def test_sorted_compact_json(self):
        source = canonical_source("SELECT 1", {"b": 2, "a": 1})
        assert source == '{"params":{"a":1,"b":2},"query":"SELECT 1"}'

    def test_none_params_match_empty_dict(self):
        assert canonical_source("SELECT 1") == canonical_source("SELECT 1", {})

    def test_non_string_keys_are_stringified(self):
        assert canonical_source("q", {1: "x"}) == canonical_source("q", {"1": "x"})

    def test_sets_render_in_stable_order(self):
        assert canonical_source("q", {"ids": {3, 1, 2}}) == canonical_source(
            "q", {"ids": {2, 3, 1}}
        )

    def test_dates_render_as_iso(self):
        assert '"2024-01-31"' in canonical_source("q", {"d": date(2024, 1, 31)})

    def test_unserializable_params_raise_key_error(self):
        with pytest.raises(CacheKeyError):
            canonical_source("q", {"bad": _Unprintable()})


class TestDeriveKey:
    def test_fixed_length_hex(self):
        key = derive_key("SELECT * FROM employees", {"id": 1})
        assert len(key) == KEY_LENGTH
        assert re.fullmatch(r"[0-9a-f]+", key)

    def test_deterministic(self):
        params = {"employee_id": 42, "start_date": "2024-01-01"}
        assert derive_key("SELECT 1", params) == derive_key("SELECT 1", dict(params))

    def test_stable_across_processes(self):
        # xxh3 is unseeded, so the digest can be recomputed independently
        source = canonical_source("SELECT 1", {"a": 1})
        expected = xxhash.xxh3_64(source.encode()).hexdigest()[:KEY_LENGTH]
        assert derive_key("SELECT 1", {"a": 1}) == expected

    def test_insertion_order_does_not_matter(self):
        assert derive_key("q", {"a": 1, "b": 2}) == derive_key("q", {"b": 2, "a": 1})

    def test_different_inputs_differ(self):
        assert derive_key("q", {"a": 1}) != derive_key("q", {"a": 2})
        assert derive_key("q1", {"a": 1}) != derive_key("q2", {"a": 1})

    def test_sequence_params(self):
        assert derive_key("q", [1, 2]) != derive_key("q", [2, 1])

    def test_identifier_does_not_survive_hashing(self):
        key = derive_key("q", {"employee": "emp-42"})
        assert "emp-42" not in key


class TestParamFragment:
    def test_fragment_appears_in_source(self):
        source = canonical_source("q", {"employee_id": 42, "z": 1})
        assert param_fragment("employee_id", 42) + "," in source

    def test_string_values_are_quoted(self):
        assert param_fragment("employee_id", "emp-42") == '"employee_id":"emp-42"'
