"""Tests for null pruning."""

from __future__ import annotations

from hypothesis import given

from patchloop.normalize.prune import prune_nulls
from tests.strategies import json_values


def _has_null_member(value) -> bool:
    if isinstance(value, dict):
        return any(v is None or _has_null_member(v) for v in value.values())
    if isinstance(value, list):
        return any(_has_null_member(v) for v in value)
    return False


class TestPruneNulls:
    def test_removes_null_members(self):
        value = {"model": "Auto", "calculation": None, "taxCalculation": None}
        assert prune_nulls(value) == {"model": "Auto"}

    def test_nested(self):
        assert prune_nulls({"a": {"b": None, "c": 1}}) == {"a": {"c": 1}}

    def test_null_sequence_elements_kept(self):
        assert prune_nulls({"a": [1, None, {"b": None}]}) == {"a": [1, None, {}]}

    def test_root_null(self):
        assert prune_nulls(None) is None

    def test_input_not_modified(self):
        value = {"a": None}
        prune_nulls(value)
        assert value == {"a": None}

    @given(json_values)
    def test_no_null_members_remain(self, value):
        assert not _has_null_member(prune_nulls(value))

    @given(json_values)
    def test_idempotent(self, value):
        once = prune_nulls(value)
        assert prune_nulls(once) == once
