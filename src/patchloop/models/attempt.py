"""Attempt history records for refinement sessions.

RefinementAttempt is frozen and appended once per cycle; history is
never rewritten. to_dict() gives the persisted/logged form with patches
in RFC 6902 shape.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass
from typing import Any

from patchloop.models.outcome import ValidationIssue
from patchloop.models.patch import PatchOperation, SkippedOperation


class AttemptStatus(str, enum.Enum):
    """How a refinement attempt ended."""

    VALID = "valid"
    INVALID = "invalid"
    PARSE_FAILED = "parse_failed"
    NORMALIZATION_FAILED = "normalization_failed"
    PATCH_FAILED = "patch_failed"
    GENERATOR_FAILED = "generator_failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RefinementAttempt:
    """One generate-or-patch, normalize, validate cycle.

    Attributes:
        index: 1-based position in the session history.
        status: Outcome of the cycle.
        generator: Generator identity (model) that served the request.
        instruction_sent: Prompt or problem description sent, if any.
        raw_output: Raw text of an initial generation.
        patch_received: Raw patch text returned by the generator.
        operations: Parsed patch operations as applied.
        value_after_patch: Candidate value after parsing or patching.
        issues: Problems found in this cycle.
        warnings: Non-fatal notes (dropped fields, skipped operations).
        skipped_operations: Operations PARTIAL_APPLY skipped.
    """

    index: int
    status: AttemptStatus
    generator: str | None = None
    instruction_sent: str | None = None
    raw_output: str | None = None
    patch_received: str | None = None
    operations: tuple[PatchOperation, ...] = ()
    value_after_patch: Any = None
    issues: tuple[ValidationIssue, ...] = ()
    warnings: tuple[str, ...] = ()
    skipped_operations: tuple[SkippedOperation, ...] = ()

    @property
    def passed(self) -> bool:
        return self.status is AttemptStatus.VALID

    @property
    def is_patch(self) -> bool:
        return self.patch_received is not None

    def summary(self) -> str:
        """One line: index, status and the first issue."""
        text = f"attempt {self.index} [{self.status.value}]"
        if self.generator:
            text += f" via {self.generator}"
        if self.issues:
            text += f": {self.issues[0]}"
            if len(self.issues) > 1:
                text += f" (+{len(self.issues) - 1} more)"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "status": self.status.value,
            "generator": self.generator,
            "instruction_sent": self.instruction_sent,
            "raw_output": self.raw_output,
            "patch_received": self.patch_received,
            "operations": [op.to_dict() for op in self.operations],
            "value_after_patch": copy.deepcopy(self.value_after_patch),
            "issues": [issue.to_dict() for issue in self.issues],
            "warnings": list(self.warnings),
            "skipped_operations": [s.to_dict() for s in self.skipped_operations],
        }

    def __repr__(self) -> str:
        return f"RefinementAttempt({self.summary()})"


@dataclass(frozen=True)
class RefinementResult:
    """A successful refinement.

    Attributes:
        value: The decoded, validated value.
        attempts: Number of attempts made (including the successful one).
        history: Every attempt, in order.
        generator: Identity that produced the final value.
    """

    value: Any
    attempts: int
    history: tuple[RefinementAttempt, ...]
    generator: str | None = None

    @property
    def escalated(self) -> bool:
        identities = {a.generator for a in self.history}
        return len(identities) > 1

    def __repr__(self) -> str:
        return f"RefinementResult(attempts={self.attempts}, generator={self.generator!r})"
