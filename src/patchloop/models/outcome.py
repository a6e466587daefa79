"""Validation outcome types.

ValidationIssue is the structured problem unit fed back to the generator.
Named ValidationIssue (not ValidationError) to avoid collision with
pydantic.ValidationError.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Sequence

from patchloop.engine.pointer import format_pointer


class IssueKind(str, enum.Enum):
    """Category of a reported problem."""

    PARSE = "parse"
    NORMALIZATION = "normalization"
    STRUCTURAL = "structural"
    SEMANTIC = "semantic"
    PATCH = "patch"
    GENERATOR = "generator"


@dataclass(frozen=True)
class ValidationIssue:
    """One problem at one location.

    Attributes:
        path: Field names and list indices from the root.
        kind: Problem category.
        message: Human-readable description.
    """

    path: tuple[str | int, ...]
    kind: IssueKind
    message: str

    @property
    def pointer(self) -> str:
        """The path as a JSON Pointer, matching JSON Patch addressing."""
        return format_pointer(self.path)

    def __str__(self) -> str:
        return f"{self.pointer or '/'}: {self.message}"

    def to_dict(self) -> dict:
        return {"path": self.pointer, "kind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class ValidationOutcome:
    """Either a decoded value (passed) or an ordered list of issues.

    Attributes:
        passed: Whether decoding and every validator succeeded.
        value: Decoded value when passed, else None.
        issues: Problems found, deepest structural path first.
    """

    passed: bool
    value: Any = None
    issues: tuple[ValidationIssue, ...] = ()

    @classmethod
    def valid(cls, value: Any) -> ValidationOutcome:
        return cls(passed=True, value=value)

    @classmethod
    def invalid(cls, issues: Sequence[ValidationIssue]) -> ValidationOutcome:
        return cls(passed=False, issues=tuple(issues))

    def __repr__(self) -> str:
        if self.passed:
            return "ValidationOutcome(valid)"
        return f"ValidationOutcome(invalid, {len(self.issues)} issue(s))"


def format_problem(issues: Sequence[ValidationIssue]) -> str:
    """Render issues as the problem description sent with a patch request."""
    if not issues:
        return "The value failed validation."
    lines = [f"- [{i.kind.value}] {i}" for i in issues]
    return "Fix only these problems:\n" + "\n".join(lines)
