"""JSON Patch (RFC 6902) application with array and conflict strategies.

The engine is schema-agnostic. The base document is deep-copied and
never mutated; every result is a fresh tree.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Union

from patchloop.engine.pointer import array_index, format_pointer, parse_pointer, resolve
from patchloop.exceptions import PatchApplyError, PatchErrorKind
from patchloop.models.config import ArrayStrategy, ConflictStrategy
from patchloop.models.patch import PatchOperation, SkippedOperation

logger = logging.getLogger(__name__)

OperationLike = Union[PatchOperation, Mapping[str, Any]]


@dataclass(frozen=True)
class PatchResult:
    """Outcome of :func:`apply_patch`.

    Attributes:
        value: The patched document.
        applied: Operations actually applied, after array rewriting.
        skipped: Operations skipped under PARTIAL_APPLY.
    """

    value: Any
    applied: tuple[PatchOperation, ...] = ()
    skipped: tuple[SkippedOperation, ...] = ()

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def apply_patch(
    base: Any,
    ops: Iterable[OperationLike],
    *,
    array_strategy: ArrayStrategy = ArrayStrategy.INDEX_PRECISE,
    conflict_strategy: ConflictStrategy = ConflictStrategy.ATOMIC,
) -> PatchResult:
    """Apply *ops* to a copy of *base*.

    Args:
        base: Document to patch. Never modified.
        ops: PatchOperation instances or RFC 6902 dicts.
        array_strategy: How element-level array edits are applied.
        conflict_strategy: ATOMIC rejects the whole patch on the first
            failing operation; PARTIAL_APPLY skips failing operations.

    Returns:
        PatchResult with the new document and the applied/skipped ops.

    Raises:
        PatchApplyError: Under ATOMIC, for the first failing operation.
    """
    indexed = list(enumerate(_coerce(op) for op in ops))
    if array_strategy is ArrayStrategy.REORDER_REMOVALS:
        indexed = _reorder_removals(indexed)

    doc = copy.deepcopy(base)
    applied: list[PatchOperation] = []
    skipped: list[SkippedOperation] = []

    for index, op in indexed:
        # PARTIAL_APPLY works on a scratch copy so a half-applied op
        # (e.g. a move whose add fails) never leaks into the document.
        target = doc if conflict_strategy is ConflictStrategy.ATOMIC else copy.deepcopy(doc)
        try:
            effective = (
                _rewrite_for_array(target, op)
                if array_strategy is ArrayStrategy.REPLACE_WHOLE
                else op
            )
            target = _apply_op(target, effective)
        except PatchApplyError as exc:
            error = PatchApplyError(exc.kind, exc.path, exc.detail, op_index=index)
            if conflict_strategy is ConflictStrategy.ATOMIC:
                raise error from exc
            logger.warning("Skipping patch operation: %s", error)
            skipped.append(SkippedOperation(index, op, error))
            continue
        doc = target
        applied.append(effective)

    return PatchResult(doc, tuple(applied), tuple(skipped))


# ----------------------------------------------------------------------
# Strategy helpers
# ----------------------------------------------------------------------


def _coerce(op: OperationLike) -> PatchOperation:
    if isinstance(op, PatchOperation):
        return op
    return PatchOperation.model_validate(op)


def _trailing_index(op: PatchOperation) -> int:
    last = op.path.rsplit("/", 1)[-1]
    return int(last) if last.isdigit() else -1


def _reorder_removals(
    indexed: Sequence[tuple[int, PatchOperation]],
) -> list[tuple[int, PatchOperation]]:
    """Move removals after all other ops, highest array index first."""
    others = [item for item in indexed if item[1].op != "remove"]
    removals = [item for item in indexed if item[1].op == "remove"]
    removals.sort(key=lambda item: -_trailing_index(item[1]))
    return others + removals


def _rewrite_for_array(doc: Any, op: PatchOperation) -> PatchOperation:
    """Turn an element-level add/remove/replace into a whole-array replace.

    The op is applied to a copy of the nearest enclosing array; an index
    at or past the end appends for add and replace.
    """
    if op.op not in ("add", "remove", "replace"):
        return op
    tokens = parse_pointer(op.path)

    array_depth: int | None = None
    node = doc
    for depth, token in enumerate(tokens[:-1]):
        if isinstance(node, list):
            array_depth = depth
        try:
            node = resolve(node, [token])
        except (KeyError, IndexError, TypeError):
            break
    else:
        if tokens and isinstance(node, list):
            array_depth = len(tokens) - 1

    if array_depth is None:
        return op

    array_tokens = tokens[:array_depth]
    relative = tokens[array_depth:]
    array = copy.deepcopy(_get(doc, array_tokens, format_pointer(array_tokens)))
    head = relative[0]
    if (
        len(relative) == 1
        and op.op in ("add", "replace")
        and (head == "-" or (head.isdigit() and int(head) >= len(array)))
    ):
        array.append(copy.deepcopy(op.value))
    else:
        array = _apply_op(array, op, relative)
    return PatchOperation.replace(format_pointer(array_tokens), array)


# ----------------------------------------------------------------------
# RFC 6902 primitives (operate in place on an owned document)
# ----------------------------------------------------------------------


def _apply_op(doc: Any, op: PatchOperation, tokens: list[str] | None = None) -> Any:
    """Apply one operation and return the (possibly new) root."""
    if tokens is None:
        tokens = parse_pointer(op.path)
    pointer = op.path

    if op.op == "add":
        return _add(doc, tokens, copy.deepcopy(op.value), pointer)
    if op.op == "remove":
        return _remove(doc, tokens, pointer)[0]
    if op.op == "replace":
        return _replace(doc, tokens, copy.deepcopy(op.value), pointer)
    if op.op == "test":
        actual = _get(doc, tokens, pointer)
        if not _json_equal(actual, op.value):
            raise PatchApplyError(
                PatchErrorKind.PRECONDITION_FAILED,
                pointer,
                f"expected {op.value!r}, found {actual!r}",
            )
        return doc

    from_tokens = parse_pointer(op.from_)
    if op.op == "move":
        if tokens[: len(from_tokens)] == from_tokens and len(tokens) > len(from_tokens):
            raise PatchApplyError(
                PatchErrorKind.UNRESOLVED_PATH,
                pointer,
                f"cannot move {op.from_!r} into its own child",
            )
        doc, value = _remove(doc, from_tokens, op.from_)
        return _add(doc, tokens, value, pointer)
    # copy
    value = copy.deepcopy(_get(doc, from_tokens, op.from_))
    return _add(doc, tokens, value, pointer)


def _get(doc: Any, tokens: Sequence[str], pointer: str) -> Any:
    try:
        return resolve(doc, tokens)
    except (KeyError, IndexError, TypeError) as exc:
        raise PatchApplyError(
            PatchErrorKind.UNRESOLVED_PATH, pointer, f"path does not exist ({exc})"
        ) from exc


def _parent(doc: Any, tokens: Sequence[str], pointer: str) -> Any:
    parent = _get(doc, tokens[:-1], pointer)
    if parent is None:
        raise PatchApplyError(
            PatchErrorKind.UNRESOLVED_PATH,
            pointer,
            "parent is null; set the parent object before its fields",
        )
    if not isinstance(parent, (dict, list)):
        raise PatchApplyError(
            PatchErrorKind.UNRESOLVED_PATH,
            pointer,
            f"parent is a {type(parent).__name__}, not a container",
        )
    return parent


def _index(token: str, length: int, pointer: str, *, allow_end: bool = False) -> int:
    try:
        return array_index(token, length, allow_end=allow_end)
    except IndexError as exc:
        raise PatchApplyError(PatchErrorKind.UNRESOLVED_PATH, pointer, str(exc)) from exc


def _add(doc: Any, tokens: Sequence[str], value: Any, pointer: str) -> Any:
    if not tokens:
        return value
    parent = _parent(doc, tokens, pointer)
    last = tokens[-1]
    if isinstance(parent, dict):
        parent[last] = value
    else:
        parent.insert(_index(last, len(parent), pointer, allow_end=True), value)
    return doc


def _remove(doc: Any, tokens: Sequence[str], pointer: str) -> tuple[Any, Any]:
    if not tokens:
        raise PatchApplyError(
            PatchErrorKind.UNRESOLVED_PATH, pointer, "cannot remove the document root"
        )
    parent = _parent(doc, tokens, pointer)
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise PatchApplyError(
                PatchErrorKind.UNRESOLVED_PATH, pointer, f"no member {last!r} to remove"
            )
        return doc, parent.pop(last)
    return doc, parent.pop(_index(last, len(parent), pointer))


def _replace(doc: Any, tokens: Sequence[str], value: Any, pointer: str) -> Any:
    if not tokens:
        return value
    parent = _parent(doc, tokens, pointer)
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise PatchApplyError(
                PatchErrorKind.UNRESOLVED_PATH, pointer, f"no member {last!r} to replace"
            )
        parent[last] = value
    else:
        parent[_index(last, len(parent), pointer)] = value
    return doc


def _json_equal(a: Any, b: Any) -> bool:
    """JSON value equality (``true`` is not ``1``)."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_json_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_json_equal(x, y) for x, y in zip(a, b))
    return a == b
