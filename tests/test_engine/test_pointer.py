"""Tests for JSON Pointer helpers."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from patchloop.engine.pointer import (
    array_index,
    format_pointer,
    parse_pointer,
    path_from_pointer,
    resolve,
)
from patchloop.exceptions import PatchApplyError
from tests.strategies import json_keys


class TestFormatAndParse:
    def test_root_is_empty_string(self):
        assert format_pointer(()) == ""
        assert parse_pointer("") == []

    def test_escapes_tilde_and_slash(self):
        assert format_pointer(("a/b", "m~n", 0)) == "/a~1b/m~0n/0"
        assert parse_pointer("/a~1b/m~0n/0") == ["a/b", "m~n", "0"]

    def test_escape_order(self):
        # "~01" is the literal "~1", not "/"
        assert parse_pointer("/~01") == ["~1"]

    def test_missing_leading_slash_rejected(self):
        with pytest.raises(PatchApplyError):
            parse_pointer("name")

    @given(st.lists(json_keys, max_size=4))
    def test_tokens_survive_formatting(self, tokens):
        assert parse_pointer(format_pointer(tokens)) == tokens


class TestArrayIndex:
    def test_plain_index(self):
        assert array_index("2", 3) == 2

    def test_dash_only_for_add(self):
        assert array_index("-", 3, allow_end=True) == 3
        with pytest.raises(IndexError):
            array_index("-", 3)

    def test_leading_zero_rejected(self):
        with pytest.raises(IndexError):
            array_index("01", 3)

    def test_out_of_range(self):
        with pytest.raises(IndexError):
            array_index("3", 3)
        assert array_index("3", 3, allow_end=True) == 3


class TestResolve:
    def test_nested(self):
        doc = {"a": [{"b": 1}]}
        assert resolve(doc, ["a", "0", "b"]) == 1

    def test_missing_member(self):
        with pytest.raises(KeyError):
            resolve({"a": 1}, ["b"])

    def test_descend_into_scalar(self):
        with pytest.raises(TypeError):
            resolve({"a": 1}, ["a", "b"])


class TestPathFromPointer:
    def test_list_positions_become_ints(self):
        doc = {"items": [{"name": "x"}]}
        assert path_from_pointer("/items/0/name", doc) == ("items", 0, "name")

    def test_digit_keys_of_objects_stay_strings(self):
        doc = {"labels": {"0": 1}}
        assert path_from_pointer("/labels/0", doc) == ("labels", "0")
