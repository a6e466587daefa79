"""patchloop exception hierarchy.

All patchloop-specific exceptions inherit from PatchloopError.

Inside a refinement session, parse/normalization/patch failures are
caught and recorded as attempt issues; only BudgetExhaustedError,
GeneratorError and SessionCancelledError reach the caller.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from patchloop.models.attempt import RefinementAttempt


class PatchloopError(Exception):
    """Base exception for all patchloop errors."""


class SchemaError(PatchloopError):
    """Raised when a target schema cannot be described."""


class ParseError(PatchloopError):
    """Raised when generator text is not valid JSON (or not a JSON Patch)."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        self.message = message
        self.raw_text = raw_text
        super().__init__(message)


class NormalizationErrorKind(str, enum.Enum):
    """Reason a normalization stage could not recover the tree."""

    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"
    MAP_SHAPE_AMBIGUOUS = "map_shape_ambiguous"


class NormalizationError(PatchloopError):
    """Raised when a normalization stage fails at a specific path.

    Attributes:
        kind: Which recovery rule failed.
        path: Location of the failing node (field names and indices).
        detail: Human-readable explanation.
    """

    def __init__(
        self,
        kind: NormalizationErrorKind,
        path: Sequence[str | int],
        detail: str,
    ) -> None:
        from patchloop.engine.pointer import format_pointer

        self.kind = kind
        self.path = tuple(path)
        self.detail = detail
        super().__init__(f"{kind.value} at '{format_pointer(self.path)}': {detail}")


class UnflattenError(NormalizationError):
    """Raised when no tagged-union variant can be selected for a node."""


class PatchErrorKind(str, enum.Enum):
    """Reason a patch operation could not be applied."""

    UNRESOLVED_PATH = "unresolved_path"
    PRECONDITION_FAILED = "precondition_failed"


class PatchApplyError(PatchloopError):
    """Raised when a JSON Patch operation cannot be applied.

    Attributes:
        kind: UNRESOLVED_PATH or PRECONDITION_FAILED.
        path: JSON Pointer the failing operation addressed.
        op_index: Position of the failing operation in the patch, or None
            when the error is raised outside a patch sequence.
    """

    def __init__(
        self,
        kind: PatchErrorKind,
        path: str,
        detail: str,
        op_index: int | None = None,
    ) -> None:
        self.kind = kind
        self.path = path
        self.detail = detail
        self.op_index = op_index
        where = f"op {op_index} " if op_index is not None else ""
        super().__init__(f"{where}({kind.value}) at '{path}': {detail}")


class GeneratorError(PatchloopError):
    """Raised when the text generator fails (transport, auth, bad response).

    Attributes:
        history: Attempts recorded by the session before the failure,
            filled in when the error escapes a RefinementSession.
    """

    def __init__(self, message: str = "Generator failed") -> None:
        self.history: list[RefinementAttempt] = []
        super().__init__(message)


class GenerationTimeoutError(GeneratorError):
    """The in-flight generation or patch request timed out.

    Recorded as a failed attempt; the session continues.
    """


class BudgetExhaustedError(PatchloopError):
    """All refinement attempts (including escalation) failed."""

    def __init__(self, history: Sequence[RefinementAttempt]) -> None:
        self.history = list(history)
        self.attempts = len(self.history)
        last = self.history[-1].summary() if self.history else "no attempts"
        super().__init__(
            f"Refinement budget exhausted after {self.attempts} attempt(s). "
            f"Last outcome: {last}"
        )


class SessionCancelledError(PatchloopError):
    """The session was cancelled before producing a valid value."""

    def __init__(self, history: Sequence[RefinementAttempt]) -> None:
        self.history = list(history)
        super().__init__(f"Refinement session cancelled after {len(self.history)} attempt(s)")


class SessionStateError(PatchloopError):
    """Raised on an illegal refinement state transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal session transition: {current} -> {target}")
