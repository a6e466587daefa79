"""RefinementSession: the bounded normalize/validate/patch loop.

One session corrects one value. It is strictly sequential; the only
suspend points are the generator round-trips (initial generation and
each patch request). Stage failures become recorded attempts and feed
the next patch request; only budget exhaustion, non-timeout generator
errors and cancellation end a session with an exception.

Budget accounting, per generator target:

- The first attempt on a target (the initial generation, the resumed
  value, or the first request after escalating) is free.
- Every further attempt spends one of ``max_retries``.
- Before spending, the session escalates when the budget is empty or
  when ``escalation.after_attempts`` attempts were made on the primary.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from typing import TYPE_CHECKING, Any, Callable, Sequence

from patchloop.engine.decoder import SemanticValidator, decode_and_validate
from patchloop.engine.parsing import parse_json_text, parse_patch_text
from patchloop.engine.patcher import apply_patch
from patchloop.engine.pointer import path_from_pointer
from patchloop.exceptions import (
    BudgetExhaustedError,
    GenerationTimeoutError,
    GeneratorError,
    NormalizationError,
    ParseError,
    PatchApplyError,
    SessionCancelledError,
)
from patchloop.models.attempt import AttemptStatus, RefinementAttempt, RefinementResult
from patchloop.models.config import (
    InvalidResultStrategy,
    NormalizeOptions,
    RefinementConfig,
)
from patchloop.models.outcome import IssueKind, ValidationIssue
from patchloop.models.patch import PatchOperation
from patchloop.models.schema import SchemaDescriptor, json_schema_for
from patchloop.normalize.pipeline import normalize_with_report
from patchloop.prompts.patch import build_problem_description
from patchloop.session.states import SessionState, check_transition

if TYPE_CHECKING:
    from patchloop.llm.protocols import Generator
    from patchloop.storage.sink import TraceSink

logger = logging.getLogger(__name__)

_MISSING: Any = object()


class RefinementSession:
    """Drive one value from raw generator output to a validated result.

    Usage::

        session = RefinementSession(ForecastConfig, generator,
                                    config=RefinementConfig(max_retries=2))
        result = session.run("Describe a monthly sales forecast setup")
        print(result.value, result.attempts)

    A session runs once. Create a new one per correction task.

    Args:
        target: Any pydantic-validatable type.
        generator: Object implementing the Generator protocol.
        config: Budget, escalation and strategy policy.
        validators: Semantic checks run in order after structural decoding.
        schema: Prebuilt descriptor for *target* (built and cached if None).
        sink: Optional trace sink receiving every attempt.
        normalize_options: Options for the normalization stages.
        session_id: Identifier used when recording to *sink*.
    """

    def __init__(
        self,
        target: Any,
        generator: Generator,
        *,
        config: RefinementConfig | None = None,
        validators: Sequence[SemanticValidator] = (),
        schema: SchemaDescriptor | None = None,
        sink: TraceSink | None = None,
        normalize_options: NormalizeOptions | None = None,
        session_id: str | None = None,
    ) -> None:
        self.target = target
        self.session_id = session_id or uuid.uuid4().hex
        self._generator = generator
        self._config = config or RefinementConfig()
        self._validators = tuple(validators)
        self._schema = schema or SchemaDescriptor.for_type(target)
        self._json_schema = json_schema_for(target)
        self._sink = sink
        self._options = normalize_options or NormalizeOptions()
        self._cancel_event = threading.Event()

        self._state = SessionState.IDLE
        self._history: list[RefinementAttempt] = []
        self._model = self._config.model
        self._retries_remaining = self._config.max_retries
        self._attempts_on_target = 0
        self._escalated = False

        self._prompt: str | None = None
        self._instruction: str | None = None
        self._pending_raw: str | None = None
        self._current: Any = _MISSING
        self._candidate: Any = _MISSING
        self._decoded: Any = None
        # Issues of the current value, plus one-shot notes about the
        # previous attempt (rejected patch, skipped ops) for the next request.
        self._pending_issues: tuple[ValidationIssue, ...] = ()
        self._feedback: tuple[ValidationIssue, ...] = ()
        self._carry: tuple[ValidationIssue, ...] = ()
        self._ops: list[PatchOperation] = []
        self._draft: dict[str, Any] | None = None

        self._steps: dict[SessionState, Callable[[], SessionState]] = {
            SessionState.GENERATING: self._generate,
            SessionState.NORMALIZING: self._normalize,
            SessionState.VALIDATING: self._validate,
            SessionState.REQUESTING_PATCH: self._request_patch,
            SessionState.APPLYING_PATCH: self._apply_patch,
            SessionState.ESCALATING: self._escalate,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> tuple[RefinementAttempt, ...]:
        return tuple(self._history)

    @property
    def model(self) -> str | None:
        """Active generator identity (changes on escalation)."""
        return self._model

    @property
    def retries_remaining(self) -> int:
        return self._retries_remaining

    @property
    def current_value(self) -> Any:
        """Copy of the current best value, or None before one exists."""
        return None if self._current is _MISSING else copy.deepcopy(self._current)

    def run(
        self,
        prompt: str | None = None,
        *,
        raw: str | None = None,
        initial: Any = None,
    ) -> RefinementResult:
        """Refine until valid, starting from a generation or a prior value.

        Args:
            prompt: Caller-authored prompt for the initial generation. Also
                used to regenerate when no parseable value exists yet.
            raw: Already generated text to use as the first attempt.
            initial: A prior JSON value to resume from (skips generation).

        Returns:
            RefinementResult with the decoded value and full history.

        Raises:
            BudgetExhaustedError: Retries and escalation are used up.
            GeneratorError: The generator failed with a non-timeout error.
            SessionCancelledError: cancel() was called.
            SessionStateError: The session already ran.
        """
        if prompt is None and raw is None and initial is None:
            raise ValueError("run() needs a prompt, raw text or an initial value")
        check_transition(self._state, SessionState.GENERATING)
        self._prompt = prompt
        if initial is not None:
            self._begin_attempt()
            self._candidate = copy.deepcopy(initial)
            self._draft["value_after_patch"] = copy.deepcopy(initial)
            return self._drive(SessionState.NORMALIZING)
        self._pending_raw = raw
        return self._drive(SessionState.GENERATING)

    def refine(self, current: Any, instruction: str) -> RefinementResult:
        """Apply a caller instruction to *current* through patch requests.

        The first attempt is a patch request carrying *instruction*; later
        requests repeat it as a reminder alongside outstanding issues.
        """
        check_transition(self._state, SessionState.REQUESTING_PATCH)
        self._current = copy.deepcopy(current)
        self._instruction = instruction
        return self._drive(SessionState.REQUESTING_PATCH)

    def cancel(self) -> None:
        """Request cancellation; the session stops at its next suspend point.

        Safe to call from another thread.
        """
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def _drive(self, first: SessionState) -> RefinementResult:
        self._transition(first)
        while True:
            if self._state is SessionState.SUCCESS:
                return RefinementResult(
                    value=self._decoded,
                    attempts=len(self._history),
                    history=tuple(self._history),
                    generator=self._model,
                )
            if self._state is SessionState.BUDGET_EXHAUSTED:
                raise BudgetExhaustedError(self._history)
            self._check_cancelled()
            self._transition(self._steps[self._state]())

    def _transition(self, target: SessionState) -> None:
        check_transition(self._state, target)
        logger.debug(
            "Session %s: %s -> %s", self.session_id[:8], self._state.value, target.value
        )
        self._state = target

    def _check_cancelled(self) -> None:
        if not self._cancel_event.is_set():
            return
        if self._draft is not None:
            self._finish_attempt(
                AttemptStatus.CANCELLED,
                (ValidationIssue((), IssueKind.GENERATOR, "cancelled"),),
            )
        self._transition(SessionState.CANCELLED)
        raise SessionCancelledError(self._history)

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _escalation_due(self) -> bool:
        policy = self._config.escalation
        return (
            policy is not None
            and not self._escalated
            and self._attempts_on_target >= policy.after_attempts
        )

    def _spend_budget(self) -> bool:
        """Reserve the next attempt; False means ESCALATING comes first."""
        if self._escalation_due():
            return False
        if self._attempts_on_target == 0:
            return True
        if self._retries_remaining == 0:
            return False
        self._retries_remaining -= 1
        return True

    def _retry(self) -> SessionState:
        if self._current is not _MISSING:
            return SessionState.REQUESTING_PATCH
        if self._prompt is None:
            logger.warning("No value and no prompt to regenerate from; giving up")
            return SessionState.BUDGET_EXHAUSTED
        return SessionState.GENERATING

    # ------------------------------------------------------------------
    # Attempt bookkeeping
    # ------------------------------------------------------------------

    def _begin_attempt(self, **fields: Any) -> None:
        self._attempts_on_target += 1
        self._carry = ()
        self._draft = {"generator": self._model, **fields}

    def _finish_attempt(
        self,
        status: AttemptStatus,
        issues: Sequence[ValidationIssue] = (),
    ) -> RefinementAttempt:
        draft = self._draft or {}
        self._draft = None
        attempt = RefinementAttempt(
            index=len(self._history) + 1,
            status=status,
            issues=tuple(issues),
            **draft,
        )
        self._history.append(attempt)
        if status is AttemptStatus.VALID:
            logger.debug("Session %s: %s", self.session_id[:8], attempt.summary())
        else:
            logger.warning("Session %s: %s", self.session_id[:8], attempt.summary())
        if self._sink is not None:
            self._sink.record(self.session_id, attempt)
        return attempt

    def _note(self, key: str, values: Sequence[Any]) -> None:
        assert self._draft is not None
        self._draft[key] = tuple(self._draft.get(key, ())) + tuple(values)

    def _fail_candidate(
        self, status: AttemptStatus, issues: Sequence[ValidationIssue]
    ) -> SessionState:
        """Close an attempt whose candidate value is invalid."""
        is_patch = self._draft is not None and "patch_received" in self._draft
        self._finish_attempt(status, issues)
        rollback = (
            is_patch
            and self._config.on_invalid is InvalidResultStrategy.ROLLBACK
            and self._current is not _MISSING
        )
        if rollback:
            first = issues[0] if issues else None
            self._feedback = (
                ValidationIssue(
                    (),
                    IssueKind.PATCH,
                    f"The previous patch was discarded because it caused: {first}",
                ),
            )
        else:
            self._current = self._candidate
            self._pending_issues = tuple(issues)
            self._feedback = self._carry
        self._candidate = _MISSING
        return self._retry()

    def _fail_request(
        self, status: AttemptStatus, issues: Sequence[ValidationIssue]
    ) -> SessionState:
        """Close an attempt that produced no candidate; the value is unchanged."""
        self._finish_attempt(status, issues)
        self._feedback = tuple(issues)
        return self._retry()

    def _call_generator(self, call: Callable[[], str]) -> str | None:
        """Run one generator round-trip; None means it timed out (recorded)."""
        try:
            text = call()
        except GenerationTimeoutError as exc:
            self._check_cancelled()
            self._finish_attempt(
                AttemptStatus.GENERATOR_FAILED,
                (ValidationIssue((), IssueKind.GENERATOR, str(exc)),),
            )
            return None
        except GeneratorError as exc:
            self._finish_attempt(
                AttemptStatus.GENERATOR_FAILED,
                (ValidationIssue((), IssueKind.GENERATOR, str(exc)),),
            )
            self._transition(SessionState.FAILED)
            exc.history = list(self._history)
            raise
        self._check_cancelled()
        return text

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _generate(self) -> SessionState:
        if not self._spend_budget():
            return SessionState.ESCALATING

        if self._pending_raw is not None:
            text = self._pending_raw
            self._pending_raw = None
            self._begin_attempt()
        else:
            self._begin_attempt(instruction_sent=self._prompt)
            text = self._call_generator(
                lambda: self._generator.generate(
                    self._prompt, self._json_schema, model=self._model
                )
            )
            if text is None:
                return self._retry()
        self._draft["raw_output"] = text

        try:
            value = parse_json_text(text)
        except ParseError as exc:
            return self._fail_request(
                AttemptStatus.PARSE_FAILED,
                (ValidationIssue((), IssueKind.PARSE, exc.message),),
            )
        self._candidate = value
        self._draft["value_after_patch"] = copy.deepcopy(value)
        return SessionState.NORMALIZING

    def _normalize(self) -> SessionState:
        try:
            report = normalize_with_report(self._candidate, self._schema, self._options)
        except NormalizationError as exc:
            return self._fail_candidate(
                AttemptStatus.NORMALIZATION_FAILED,
                (ValidationIssue(exc.path, IssueKind.NORMALIZATION, exc.detail),),
            )
        self._candidate = report.value
        self._note("warnings", [f"dropped {d}" for d in report.dropped])
        return SessionState.VALIDATING

    def _validate(self) -> SessionState:
        outcome = decode_and_validate(
            self._candidate, self.target, self._validators, strict=self._config.strict
        )
        if not outcome.passed:
            return self._fail_candidate(AttemptStatus.INVALID, outcome.issues)
        self._finish_attempt(AttemptStatus.VALID)
        self._current = self._candidate
        self._candidate = _MISSING
        self._decoded = outcome.value
        return SessionState.SUCCESS

    def _request_patch(self) -> SessionState:
        if not self._spend_budget():
            return SessionState.ESCALATING

        first_request = not self._history
        problem = build_problem_description(
            self._feedback + self._pending_issues,
            self._instruction,
            reminder=not first_request,
        )
        self._begin_attempt(instruction_sent=problem)
        current = copy.deepcopy(self._current)
        text = self._call_generator(
            lambda: self._generator.generate_patch(
                current, self._json_schema, problem, model=self._model
            )
        )
        if text is None:
            # Timed out: the same problem is sent again.
            return SessionState.REQUESTING_PATCH
        self._feedback = ()
        self._draft["patch_received"] = text

        try:
            self._ops = parse_patch_text(text)
        except ParseError as exc:
            return self._fail_request(
                AttemptStatus.PARSE_FAILED,
                (ValidationIssue((), IssueKind.PARSE, exc.message),),
            )
        return SessionState.APPLYING_PATCH

    def _apply_patch(self) -> SessionState:
        ops, self._ops = self._ops, []
        try:
            result = apply_patch(
                self._current,
                ops,
                array_strategy=self._config.array_strategy,
                conflict_strategy=self._config.conflict_strategy,
            )
        except PatchApplyError as exc:
            self._draft["operations"] = tuple(ops)
            path = path_from_pointer(exc.path, self._current) if exc.path.startswith("/") else ()
            return self._fail_request(
                AttemptStatus.PATCH_FAILED,
                (ValidationIssue(path, IssueKind.PATCH, str(exc)),),
            )

        skip_issues = tuple(
            ValidationIssue((), IssueKind.PATCH, f"skipped {skipped}")
            for skipped in result.skipped
        )
        self._draft["operations"] = result.applied
        self._draft["skipped_operations"] = result.skipped
        self._note("warnings", [f"skipped {s}" for s in result.skipped])
        if ops and not result.applied:
            return self._fail_request(AttemptStatus.PATCH_FAILED, skip_issues)

        self._carry = skip_issues
        self._candidate = result.value
        self._draft["value_after_patch"] = copy.deepcopy(result.value)
        return SessionState.NORMALIZING

    def _escalate(self) -> SessionState:
        policy = self._config.escalation
        if policy is None or self._escalated:
            logger.warning(
                "Session %s: refinement budget exhausted after %d attempt(s)",
                self.session_id[:8],
                len(self._history),
            )
            return SessionState.BUDGET_EXHAUSTED
        self._escalated = True
        logger.info(
            "Session %s: escalating from %s to %s after %d attempt(s)",
            self.session_id[:8],
            self._model,
            policy.target,
            self._attempts_on_target,
        )
        self._model = policy.target
        self._attempts_on_target = 0
        self._retries_remaining = self._config.max_retries
        return self._retry()
