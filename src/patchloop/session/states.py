"""Refinement session states and the single transition table."""

from __future__ import annotations

import enum

from patchloop.exceptions import SessionStateError


class SessionState(str, enum.Enum):
    """States a refinement session moves through."""

    IDLE = "idle"
    GENERATING = "generating"
    NORMALIZING = "normalizing"
    VALIDATING = "validating"
    REQUESTING_PATCH = "requesting_patch"
    APPLYING_PATCH = "applying_patch"
    ESCALATING = "escalating"
    SUCCESS = "success"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


_S = SessionState

# GENERATING and REQUESTING_PATCH loop onto themselves when a request
# times out or returns unparseable text; both divert to ESCALATING when
# the budget for the active generator is spent.
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    _S.IDLE: frozenset({_S.GENERATING, _S.NORMALIZING, _S.REQUESTING_PATCH, _S.CANCELLED}),
    _S.GENERATING: frozenset(
        {
            _S.NORMALIZING,
            _S.GENERATING,
            _S.ESCALATING,
            _S.BUDGET_EXHAUSTED,
            _S.FAILED,
            _S.CANCELLED,
        }
    ),
    _S.NORMALIZING: frozenset({_S.VALIDATING, _S.REQUESTING_PATCH, _S.CANCELLED}),
    _S.VALIDATING: frozenset({_S.SUCCESS, _S.REQUESTING_PATCH, _S.CANCELLED}),
    _S.REQUESTING_PATCH: frozenset(
        {
            _S.APPLYING_PATCH,
            _S.REQUESTING_PATCH,
            _S.ESCALATING,
            _S.FAILED,
            _S.CANCELLED,
        }
    ),
    _S.APPLYING_PATCH: frozenset({_S.NORMALIZING, _S.REQUESTING_PATCH, _S.CANCELLED}),
    _S.ESCALATING: frozenset(
        {_S.GENERATING, _S.REQUESTING_PATCH, _S.BUDGET_EXHAUSTED, _S.CANCELLED}
    ),
    _S.SUCCESS: frozenset(),
    _S.BUDGET_EXHAUSTED: frozenset(),
    _S.FAILED: frozenset(),
    _S.CANCELLED: frozenset(),
}


def check_transition(current: SessionState, target: SessionState) -> None:
    """Raise SessionStateError unless ``current -> target`` is in the table."""
    if target not in TRANSITIONS[current]:
        raise SessionStateError(current.value, target.value)
