"""Structural decoding and semantic validation of normalized values.

Structural decoding is pydantic's JSON-mode validation of the target
type (strict by default, so no coercion after normalization). Issue
paths are rewritten from pydantic locations, which include union branch
labels, into the data's own field/index path so they line up with JSON
Patch addressing.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, Sequence

from pydantic import ValidationError

from patchloop.models.outcome import IssueKind, ValidationIssue, ValidationOutcome
from patchloop.models.schema import type_adapter

logger = logging.getLogger(__name__)

SemanticValidator = Callable[[Any], Optional[str]]


def decode_and_validate(
    value: Any,
    target: Any,
    validators: Sequence[SemanticValidator] = (),
    *,
    strict: bool = True,
) -> ValidationOutcome:
    """Decode *value* as *target*, then run semantic validators in order.

    Args:
        value: Normalized JSON value.
        target: Any pydantic-validatable type.
        validators: Callables taking the decoded value and returning a
            failure description, or None when the value passes. The first
            failure stops the run.
        strict: Exact type matching (no str-to-int style coercion).

    Returns:
        ValidationOutcome. Structural issues are ordered deepest path first;
        at most one semantic issue is reported.
    """
    try:
        payload = json.dumps(value)
    except (TypeError, ValueError) as exc:
        return ValidationOutcome.invalid(
            [ValidationIssue((), IssueKind.STRUCTURAL, f"value is not JSON data: {exc}")]
        )

    try:
        decoded = type_adapter(target).validate_json(payload, strict=strict)
    except ValidationError as exc:
        issues = _structural_issues(value, exc)
        logger.debug("Structural validation failed with %d issue(s)", len(issues))
        return ValidationOutcome.invalid(issues)

    for check in validators:
        message = check(decoded)
        if message is not None:
            return ValidationOutcome.invalid(
                [ValidationIssue((), IssueKind.SEMANTIC, message)]
            )
    return ValidationOutcome.valid(decoded)


def encode(value: Any, target: Any) -> Any:
    """Dump a decoded value back to JSON data (aliases applied)."""
    return type_adapter(target).dump_python(value, mode="json", by_alias=True)


def _structural_issues(value: Any, exc: ValidationError) -> list[ValidationIssue]:
    seen: set[tuple[tuple[str | int, ...], str]] = set()
    issues: list[ValidationIssue] = []
    for err in exc.errors():
        path = data_path(value, err["loc"], keep_last=err["type"] == "missing")
        key = (path, err["msg"])
        if key in seen:
            continue
        seen.add(key)
        issues.append(ValidationIssue(path, IssueKind.STRUCTURAL, err["msg"]))
    # sort is stable: equal depths keep pydantic's order
    issues.sort(key=lambda issue: -len(issue.path))
    return issues


def data_path(
    value: Any, loc: Sequence[str | int], *, keep_last: bool = False
) -> tuple[str | int, ...]:
    """Project a pydantic error location onto the data tree.

    Segments that do not resolve in *value* (union branch labels such as
    ``literal['Auto']`` or a model name) are skipped. With *keep_last*,
    a final unresolved field name is kept, which is how missing fields
    are addressed.
    """
    path: list[str | int] = []
    node = value
    for position, segment in enumerate(loc):
        if isinstance(node, dict) and isinstance(segment, str) and segment in node:
            path.append(segment)
            node = node[segment]
        elif isinstance(node, list) and isinstance(segment, int) and 0 <= segment < len(node):
            path.append(segment)
            node = node[segment]
        elif keep_last and position == len(loc) - 1 and isinstance(node, dict):
            path.append(str(segment))
    return tuple(path)
