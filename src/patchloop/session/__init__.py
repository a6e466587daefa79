"""Refinement sessions: normalize, validate and patch until valid."""

from patchloop.session.runner import RefinementSession
from patchloop.session.states import TRANSITIONS, SessionState, check_transition

__all__ = [
    "RefinementSession",
    "SessionState",
    "TRANSITIONS",
    "check_transition",
]
