"""Tests for the JSON Patch engine.

Covers RFC 6902 semantics, conflict strategies (ATOMIC, PARTIAL_APPLY)
and array strategies (REPLACE_WHOLE, INDEX_PRECISE, REORDER_REMOVALS).
"""

from __future__ import annotations

import copy

import pytest
from hypothesis import given, settings

from patchloop.engine.patcher import apply_patch
from patchloop.exceptions import PatchApplyError, PatchErrorKind
from patchloop.models.config import ArrayStrategy, ConflictStrategy
from patchloop.models.patch import PatchOperation
from tests.strategies import json_objects, patch_ops

ATOMIC = ConflictStrategy.ATOMIC
PARTIAL = ConflictStrategy.PARTIAL_APPLY


# ---------------------------------------------------------------------------
# RFC 6902 operations
# ---------------------------------------------------------------------------


class TestOperations:
    def test_add_member(self):
        result = apply_patch({"a": 1}, [{"op": "add", "path": "/b", "value": 2}])
        assert result.value == {"a": 1, "b": 2}

    def test_add_replaces_existing_member(self):
        result = apply_patch({"a": 1}, [{"op": "add", "path": "/a", "value": 5}])
        assert result.value == {"a": 5}

    def test_add_inserts_into_array(self):
        result = apply_patch({"a": [1, 3]}, [{"op": "add", "path": "/a/1", "value": 2}])
        assert result.value == {"a": [1, 2, 3]}

    def test_add_dash_appends(self):
        result = apply_patch({"a": [1]}, [{"op": "add", "path": "/a/-", "value": 2}])
        assert result.value == {"a": [1, 2]}

    def test_add_null_value(self):
        result = apply_patch({}, [{"op": "add", "path": "/a", "value": None}])
        assert result.value == {"a": None}

    def test_remove(self):
        result = apply_patch({"a": 1, "b": 2}, [{"op": "remove", "path": "/a"}])
        assert result.value == {"b": 2}

    def test_replace_root(self):
        result = apply_patch({"a": 1}, [{"op": "replace", "path": "", "value": [1]}])
        assert result.value == [1]

    def test_move(self):
        result = apply_patch(
            {"a": {"x": 1}, "b": {}},
            [{"op": "move", "from": "/a/x", "path": "/b/y"}],
        )
        assert result.value == {"a": {}, "b": {"y": 1}}

    def test_move_into_own_child_rejected(self):
        with pytest.raises(PatchApplyError):
            apply_patch({"a": {"b": {}}}, [{"op": "move", "from": "/a", "path": "/a/b/c"}])

    def test_copy_is_independent(self):
        result = apply_patch({"a": {"x": [1]}}, [{"op": "copy", "from": "/a", "path": "/b"}])
        result.value["b"]["x"].append(2)
        assert result.value["a"] == {"x": [1]}

    def test_test_passes(self):
        result = apply_patch({"a": [1, {"b": True}]}, [
            {"op": "test", "path": "/a", "value": [1, {"b": True}]},
        ])
        assert result.value == {"a": [1, {"b": True}]}

    def test_test_distinguishes_true_from_one(self):
        with pytest.raises(PatchApplyError) as exc_info:
            apply_patch({"a": 1}, [{"op": "test", "path": "/a", "value": True}])
        assert exc_info.value.kind is PatchErrorKind.PRECONDITION_FAILED

    def test_accepts_operation_models(self):
        result = apply_patch({"a": 1}, [PatchOperation.replace("/a", 2)])
        assert result.value == {"a": 2}
        assert result.applied == (PatchOperation.replace("/a", 2),)

    def test_null_parent_has_actionable_message(self):
        with pytest.raises(PatchApplyError) as exc_info:
            apply_patch({"calc": None}, [{"op": "add", "path": "/calc/rate", "value": 1}])
        assert "set the parent object" in exc_info.value.detail


# ---------------------------------------------------------------------------
# Conflict strategies
# ---------------------------------------------------------------------------


class TestConflictStrategies:
    def test_atomic_rejects_whole_patch(self):
        base = {"name": "a", "age": 25}
        ops = [
            {"op": "replace", "path": "/age", "value": 30},
            {"op": "remove", "path": "/missing"},
        ]
        with pytest.raises(PatchApplyError) as exc_info:
            apply_patch(base, ops, conflict_strategy=ATOMIC)
        err = exc_info.value
        assert err.kind is PatchErrorKind.UNRESOLVED_PATH
        assert err.op_index == 1
        assert err.path == "/missing"
        assert base == {"name": "a", "age": 25}

    def test_partial_apply_skips_failures(self):
        ops = [
            {"op": "replace", "path": "/age", "value": 30},
            {"op": "remove", "path": "/missing"},
        ]
        result = apply_patch({"name": "a", "age": 25}, ops, conflict_strategy=PARTIAL)
        assert result.value == {"name": "a", "age": 30}
        assert result.skipped_count == 1
        skipped = result.skipped[0]
        assert skipped.index == 1
        assert skipped.op.path == "/missing"
        assert skipped.error.op_index == 1
        assert "op 1 (remove /missing)" in str(skipped)

    def test_partial_apply_never_leaks_half_applied_move(self):
        # The remove half succeeds before the add half fails.
        ops = [{"op": "move", "from": "/a", "path": "/nope/x"}]
        result = apply_patch({"a": 1}, ops, conflict_strategy=PARTIAL)
        assert result.value == {"a": 1}
        assert result.skipped_count == 1

    def test_later_ops_see_earlier_results(self):
        ops = [
            {"op": "add", "path": "/obj", "value": {}},
            {"op": "add", "path": "/obj/x", "value": 1},
        ]
        result = apply_patch({}, ops, conflict_strategy=PARTIAL)
        assert result.value == {"obj": {"x": 1}}


# ---------------------------------------------------------------------------
# Array strategies
# ---------------------------------------------------------------------------


class TestArrayStrategies:
    def test_index_precise_removals_shift(self):
        ops = [{"op": "remove", "path": "/a/0"}, {"op": "remove", "path": "/a/1"}]
        result = apply_patch({"a": [1, 2, 3]}, ops, array_strategy=ArrayStrategy.INDEX_PRECISE)
        assert result.value == {"a": [2]}

    def test_reorder_removals_uses_original_indices(self):
        ops = [{"op": "remove", "path": "/a/0"}, {"op": "remove", "path": "/a/1"}]
        result = apply_patch(
            {"a": [1, 2, 3]}, ops, array_strategy=ArrayStrategy.REORDER_REMOVALS
        )
        assert result.value == {"a": [3]}

    def test_reorder_runs_removals_last(self):
        ops = [
            {"op": "remove", "path": "/a/0"},
            {"op": "replace", "path": "/a/0", "value": 9},
        ]
        result = apply_patch({"a": [1, 2]}, ops, array_strategy=ArrayStrategy.REORDER_REMOVALS)
        assert result.value == {"a": [2]}

    def test_replace_whole_rewrites_element_edit(self):
        result = apply_patch(
            {"items": [1, 2, 3]},
            [{"op": "replace", "path": "/items/1", "value": 9}],
            array_strategy=ArrayStrategy.REPLACE_WHOLE,
        )
        assert result.value == {"items": [1, 9, 3]}
        assert result.applied == (PatchOperation.replace("/items", [1, 9, 3]),)

    def test_replace_whole_appends_past_end(self):
        result = apply_patch(
            {"items": [1]},
            [{"op": "replace", "path": "/items/5", "value": 2}],
            array_strategy=ArrayStrategy.REPLACE_WHOLE,
        )
        assert result.value == {"items": [1, 2]}

    def test_replace_whole_nested_field_in_element(self):
        result = apply_patch(
            {"rows": [{"n": 1}, {"n": 2}]},
            [{"op": "replace", "path": "/rows/1/n", "value": 5}],
            array_strategy=ArrayStrategy.REPLACE_WHOLE,
        )
        assert result.value == {"rows": [{"n": 1}, {"n": 5}]}
        assert result.applied[0].path == "/rows"

    def test_replace_whole_leaves_object_ops_alone(self):
        op = PatchOperation.replace("/name", "b")
        result = apply_patch(
            {"name": "a"}, [op], array_strategy=ArrayStrategy.REPLACE_WHOLE
        )
        assert result.applied == (op,)


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:
    @given(json_objects, patch_ops)
    @settings(max_examples=200)
    def test_base_never_mutated(self, base, op):
        snapshot = copy.deepcopy(base)
        try:
            apply_patch(base, [op])
        except PatchApplyError:
            pass
        assert base == snapshot

    @given(json_objects, patch_ops)
    @settings(max_examples=200)
    def test_partial_apply_never_raises(self, base, op):
        result = apply_patch(base, [op, op], conflict_strategy=PARTIAL)
        assert len(result.applied) + result.skipped_count == 2
