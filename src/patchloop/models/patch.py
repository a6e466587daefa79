"""JSON Patch (RFC 6902) operation model.

PatchOperation is what the generator sends back and what attempt
history records. ``from`` is a Python keyword, so the field is
``from_`` with the wire alias ``from``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from patchloop.exceptions import PatchApplyError

PatchOp = Literal["add", "remove", "replace", "move", "copy", "test"]

_NEEDS_VALUE = frozenset({"add", "replace", "test"})
_NEEDS_FROM = frozenset({"move", "copy"})


class PatchOperation(BaseModel):
    """One JSON Patch operation.

    ``value`` may legitimately be ``null``; presence is checked through
    ``model_fields_set`` rather than against None.
    """

    op: PatchOp
    path: str
    from_: Optional[str] = Field(default=None, alias="from")
    value: Any = None

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def _check_members(self) -> PatchOperation:
        if self.op in _NEEDS_VALUE and "value" not in self.model_fields_set:
            raise ValueError(f"'{self.op}' operation requires a 'value' member")
        if self.op in _NEEDS_FROM and self.from_ is None:
            raise ValueError(f"'{self.op}' operation requires a 'from' member")
        return self

    @classmethod
    def replace(cls, path: str, value: Any) -> PatchOperation:
        return cls(op="replace", path=path, value=value)

    def to_dict(self) -> dict[str, Any]:
        """RFC 6902 form, with only the members this op defines."""
        data: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.op in _NEEDS_FROM:
            data["from"] = self.from_
        if self.op in _NEEDS_VALUE:
            data["value"] = self.value
        return data

    def __str__(self) -> str:
        if self.op in _NEEDS_FROM:
            return f"{self.op} {self.from_} -> {self.path}"
        return f"{self.op} {self.path}"


class PatchDocument(BaseModel):
    """The ``{"patch": [...]}`` envelope requested from the generator."""

    patch: list[PatchOperation]


@dataclass(frozen=True)
class SkippedOperation:
    """An operation PARTIAL_APPLY could not apply.

    Attributes:
        index: Position of the operation in the submitted patch.
        op: The operation as submitted.
        error: Why it was skipped.
    """

    index: int
    op: PatchOperation
    error: PatchApplyError

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "op": self.op.to_dict(), "error": str(self.error)}

    def __str__(self) -> str:
        return f"op {self.index} ({self.op}): {self.error.detail}"
