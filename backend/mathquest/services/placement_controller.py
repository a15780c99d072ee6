"""
Grade Placement Controller — adaptive placement test for one operation.

Finds the grade a learner should practise at by testing small batches:

  - start at the learner's grade, clamped into [min_grade, max_grade];
  - a wrong answer ends the batch and drops one grade, unless the lower
    grade was already passed (finish there) or this is the floor (finish at
    the highest passed grade, else the floor);
  - a fully correct batch finishes the assessment at that grade. There is
    no upward climb after a clean pass.

State machine:

    Initializing → Testing(g) → Evaluating(g) → Testing(g)      next question
                                              → Testing(lower)  new batch
                                              → Complete(final)
                                              → Failed(g)       fetch error / cancel

Decisions are made by the pure function decide_next_step(); the controller
only applies them and performs the I/O they call for (fetching a batch,
recording the completion). submit_answer() is the single entry point while
testing and returns a Transition(state, effects).
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional, Union

from mathquest.models.placement import Question
from mathquest.services.completion_sink import CompletionSink
from mathquest.services.dedup_gate import DeduplicationGate, FetchRequest
from mathquest.services.errors import CompletionSinkFailure, SessionCancelled, StaleSessionWrite
from mathquest.services.grade_attempt_cache import GradeAttemptCache, GradeResult
from mathquest.services.grade_levels import (
    CEILING_GRADE,
    FLOOR_GRADE,
    clamp_grade,
    is_higher,
    next_lower,
)
from mathquest.services.telemetry import emit_event
from mathquest.utils.answer_checker import check_answer

logger = logging.getLogger(__name__)

_TELEMETRY_ROUTE = "placement"
_TELEMETRY_VERSION = "v1"

# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Initializing:
    status = "initializing"


@dataclass(frozen=True)
class Testing:
    grade: str
    question_index: int = 0
    status = "testing"


@dataclass(frozen=True)
class Evaluating:
    grade: str
    status = "evaluating"


@dataclass(frozen=True)
class Complete:
    final_grade: str
    status = "complete"


@dataclass(frozen=True)
class Failed:
    grade: str
    error: str
    status = "failed"


PlacementState = Union[Initializing, Testing, Evaluating, Complete, Failed]


def is_terminal(state: PlacementState) -> bool:
    return isinstance(state, (Complete, Failed))


# ---------------------------------------------------------------------------
# Effects: what a transition did, for callers and tests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GradeRecorded:
    grade: str
    passed: bool
    questions_answered: int
    correct_answers: int
    attempts: int
    kind = "grade_recorded"


@dataclass(frozen=True)
class BatchRequested:
    grade: str
    batch_size: int
    kind = "batch_requested"


@dataclass(frozen=True)
class AssessmentFinished:
    final_grade: str
    questions_answered: int
    kind = "assessment_finished"


@dataclass(frozen=True)
class AssessmentAborted:
    grade: str
    error: str
    kind = "assessment_aborted"


@dataclass(frozen=True)
class CompletionRecorded:
    final_grade: str
    kind = "completion_recorded"


@dataclass(frozen=True)
class CompletionFailed:
    final_grade: str
    error: str
    kind = "completion_failed"


def effect_to_dict(effect) -> dict:
    return {"kind": effect.kind, **asdict(effect)}


@dataclass
class Transition:
    state: PlacementState
    effects: list = field(default_factory=list)
    is_correct: Optional[bool] = None
    accepted: bool = True


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass
class AssessmentSession:
    session_id: str
    user_id: str
    operation: str
    current_grade: str
    start_grade: str
    batch: list[Question] = field(default_factory=list)
    answers: list[str] = field(default_factory=list)
    grade_cache: GradeAttemptCache = field(default_factory=GradeAttemptCache)
    max_grade_tested: Optional[str] = None
    state: PlacementState = field(default_factory=Initializing)
    questions_answered: int = 0
    completion_recorded: bool = False
    completion_error: Optional[str] = None

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    @property
    def final_grade(self) -> Optional[str]:
        return self.state.final_grade if isinstance(self.state, Complete) else None

    @property
    def current_question(self) -> Optional[Question]:
        if isinstance(self.state, Testing) and self.state.question_index < len(self.batch):
            return self.batch[self.state.question_index]
        return None


# ---------------------------------------------------------------------------
# Pure decision logic (no I/O)
# ---------------------------------------------------------------------------

ADVANCE = "advance"    # next question, same grade
COMPLETE = "complete"  # finish at step.grade
DROP = "drop"          # fetch a batch for step.grade (one lower)


@dataclass(frozen=True)
class NextStep:
    kind: str
    grade: str
    delta: Optional[GradeResult] = None


def highest_passed_grade(cache: GradeAttemptCache) -> Optional[str]:
    """Highest grade with passed=True, scanning ceiling to floor; None if none passed."""
    return cache.highest_passed()


def decide_next_step(
    grade: str,
    question_index: int,
    batch_size: int,
    is_correct: bool,
    cache: GradeAttemptCache,
    min_grade: str = FLOOR_GRADE,
) -> NextStep:
    """
    Decide what follows an answer at (*grade*, *question_index*).

    *delta* is the GradeResult to merge into the cache for *grade* before
    applying the step; it is None while a batch is still in progress.
    """
    if is_correct:
        if question_index + 1 < batch_size:
            return NextStep(ADVANCE, grade)
        passed = GradeResult(questions_answered=batch_size, correct_answers=batch_size, passed=True)
        return NextStep(COMPLETE, grade, passed)

    failed = GradeResult(questions_answered=question_index + 1, correct_answers=question_index, passed=False)
    lower = next_lower(grade, min_grade)
    if lower is None:
        return NextStep(COMPLETE, highest_passed_grade(cache) or grade, failed)
    if cache.is_passed(lower):
        # never re-test a passed grade; that is what would make the test cycle
        return NextStep(COMPLETE, lower, failed)
    return NextStep(DROP, lower, failed)


# ---------------------------------------------------------------------------
# GradePlacementController
# ---------------------------------------------------------------------------


class GradePlacementController:
    """
    Drives one AssessmentSession.

    Usage:
        ctrl = GradePlacementController(gate, completion_sink=sink)
        await ctrl.start(user_id="42", user_grade="3", operation="addition")
        while not ctrl.session.is_terminal:
            t = await ctrl.submit_answer(learner_answer())

    Only one submit_answer() may be in flight: while a batch is being
    fetched the session sits in Evaluating and further calls are rejected.
    """

    def __init__(
        self,
        gate: DeduplicationGate,
        completion_sink: Optional[CompletionSink] = None,
        answer_checker: Callable[[Question, str], bool] = check_answer,
        batch_size: int = 2,
        min_grade: str = FLOOR_GRADE,
        max_grade: str = CEILING_GRADE,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        clamp_grade(min_grade, min_grade, max_grade)  # validates the range
        self.gate = gate
        self.completion_sink = completion_sink
        self.answer_checker = answer_checker
        self.batch_size = batch_size
        self.min_grade = min_grade
        self.max_grade = max_grade
        self._session: Optional[AssessmentSession] = None
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def session(self) -> Optional[AssessmentSession]:
        return self._session

    # ── helpers ──────────────────────────────────────────────────────────

    def _is_live(self, session: AssessmentSession) -> bool:
        return self._session is session and not session.is_terminal

    def _terminate(self, session: AssessmentSession, state: PlacementState) -> bool:
        if session.is_terminal:
            logger.warning(
                "[placement] session=%s already %s; ignoring %s",
                session.session_id, session.status, state.status,
            )
            return False
        session.state = state
        return True

    def _enter_testing(self, session: AssessmentSession, grade: str, batch: list[Question]) -> None:
        session.current_grade = grade
        session.batch = list(batch)
        session.answers = []
        if session.max_grade_tested is None or is_higher(grade, session.max_grade_tested):
            session.max_grade_tested = grade
        session.state = Testing(grade, 0)

    async def _fetch_batch(self, session: AssessmentSession, grade: str) -> list[Question]:
        request = FetchRequest(operation=session.operation, grade=grade, batch_size=self.batch_size)
        return await self.gate.fetch(request, cancel_event=self._cancel_event)

    def _fail(self, session: AssessmentSession, grade: str, exc: Exception, effects: list) -> None:
        error = str(exc) or exc.__class__.__name__
        if not self._terminate(session, Failed(grade, error)):
            return
        effects.append(AssessmentAborted(grade, error))
        logger.warning(
            "[placement] session=%s failed at grade=%s: %s",
            session.session_id, grade, error,
        )
        emit_event("assessment_failed", route=_TELEMETRY_ROUTE, version=_TELEMETRY_VERSION,
                   user_id=session.user_id, session_id=session.session_id,
                   topic=session.operation, grade=grade,
                   error_type=exc.__class__.__name__, ok=False)

    async def _finish(self, session: AssessmentSession, final_grade: str, effects: list) -> None:
        if not self._terminate(session, Complete(final_grade)):
            return
        effects.append(AssessmentFinished(final_grade, session.questions_answered))
        logger.info(
            "[placement] session=%s %s placed at grade=%s after %d question(s)",
            session.session_id, session.operation, final_grade, session.questions_answered,
        )
        emit_event("assessment_complete", route=_TELEMETRY_ROUTE, version=_TELEMETRY_VERSION,
                   user_id=session.user_id, session_id=session.session_id,
                   topic=session.operation, grade=final_grade, ok=True)
        if self.completion_sink is None:
            return
        try:
            await self.record_completion()
            effects.append(CompletionRecorded(final_grade))
        except CompletionSinkFailure as exc:
            effects.append(CompletionFailed(final_grade, str(exc.cause)))

    # ── public API ───────────────────────────────────────────────────────

    async def start(self, user_id, user_grade, operation: str, session_id: Optional[str] = None) -> Transition:
        if self._session is not None and not self._session.is_terminal:
            raise RuntimeError(f"session {self._session.session_id} is still running")

        grade = clamp_grade(user_grade, self.min_grade, self.max_grade)
        session = AssessmentSession(
            session_id=session_id or uuid.uuid4().hex,
            user_id=str(user_id),
            operation=operation,
            current_grade=grade,
            start_grade=grade,
        )
        self._session = session
        self._cancel_event = asyncio.Event()
        logger.info(
            "[placement] session=%s user=%s starting %s at grade=%s (requested %r)",
            session.session_id, session.user_id, operation, grade, user_grade,
        )
        emit_event("assessment_started", route=_TELEMETRY_ROUTE, version=_TELEMETRY_VERSION,
                   user_id=session.user_id, session_id=session.session_id,
                   topic=operation, grade=grade)

        effects: list = [BatchRequested(grade, self.batch_size)]
        try:
            batch = await self._fetch_batch(session, grade)
        except StaleSessionWrite:
            logger.debug("[placement] session=%s discarded stale first batch", session.session_id)
            return Transition(session.state, effects)
        except Exception as exc:
            self._fail(session, grade, exc, effects)
            return Transition(session.state, effects)

        if not self._is_live(session):
            return Transition(session.state, effects)
        self._enter_testing(session, grade, batch)
        return Transition(session.state, effects)

    async def submit_answer(self, answer) -> Transition:
        session = self._session
        if session is None or not isinstance(session.state, Testing):
            status = session.status if session else "no session"
            logger.warning("[placement] submit_answer rejected while %s", status)
            return Transition(session.state if session else Initializing(), accepted=False)

        testing: Testing = session.state
        grade = testing.grade
        question = session.batch[testing.question_index]
        is_correct = bool(self.answer_checker(question, answer))

        session.state = Evaluating(grade)
        session.questions_answered += 1

        step = decide_next_step(
            grade, testing.question_index, len(session.batch), is_correct,
            session.grade_cache, self.min_grade,
        )
        effects: list = []
        if step.delta is not None:
            result = session.grade_cache.merge(grade, step.delta)
            effects.append(GradeRecorded(
                grade, result.passed, result.questions_answered, result.correct_answers, result.attempts,
            ))
        if is_correct:
            session.answers.append(str(answer))

        if step.kind == ADVANCE:
            session.state = Testing(grade, testing.question_index + 1)
        elif step.kind == COMPLETE:
            await self._finish(session, step.grade, effects)
        else:
            effects.append(BatchRequested(step.grade, self.batch_size))
            try:
                batch = await self._fetch_batch(session, step.grade)
            except StaleSessionWrite:
                logger.debug("[placement] session=%s discarded stale batch for grade=%s",
                             session.session_id, step.grade)
                return Transition(session.state, effects, is_correct=is_correct)
            except Exception as exc:
                self._fail(session, grade, exc, effects)
                return Transition(session.state, effects, is_correct=is_correct)

            if not self._is_live(session):
                return Transition(session.state, effects, is_correct=is_correct)
            logger.info("[placement] session=%s dropping grade %s → %s",
                        session.session_id, grade, step.grade)
            emit_event("grade_changed", route=_TELEMETRY_ROUTE, version=_TELEMETRY_VERSION,
                       user_id=session.user_id, session_id=session.session_id,
                       topic=session.operation, grade=step.grade)
            self._enter_testing(session, step.grade, batch)

        return Transition(session.state, effects, is_correct=is_correct)

    def cancel(self) -> Transition:
        """Tear the session down. Any fetch still in flight is abandoned."""
        session = self._session
        if session is None or session.is_terminal:
            return Transition(session.state if session else Initializing(), accepted=False)
        if self._cancel_event is not None:
            self._cancel_event.set()
        effects: list = []
        self._fail(session, session.current_grade, SessionCancelled("assessment cancelled"), effects)
        return Transition(session.state, effects)

    async def record_completion(self) -> CompletionRecorded:
        """
        Send the final grade to the completion sink.

        Safe to call again after a failure: the grade stays on the session.
        A Failed session records its last grade as a best-effort result.
        Raises CompletionSinkFailure if the sink errors.
        """
        session = self._session
        if session is None or not session.is_terminal:
            raise RuntimeError("assessment has not finished")
        if self.completion_sink is None:
            raise RuntimeError("no completion sink configured")

        state = session.state
        grade = state.final_grade if isinstance(state, Complete) else state.grade
        if session.completion_recorded:
            return CompletionRecorded(grade)

        try:
            await asyncio.to_thread(
                self.completion_sink.record_complete,
                session.user_id,
                session.operation,
                grade,
                session.questions_answered,
                session_id=session.session_id,
            )
        except Exception as exc:
            session.completion_error = str(exc)
            logger.error(
                "[placement] session=%s failed to record completion at grade=%s: %s",
                session.session_id, grade, exc,
            )
            raise CompletionSinkFailure(grade, exc) from exc

        session.completion_recorded = True
        session.completion_error = None
        return CompletionRecorded(grade)

    def snapshot(self) -> dict:
        session = self._session
        if session is None:
            return {}
        state = session.state
        question = session.current_question
        return {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "operation": session.operation,
            "status": session.status,
            "current_grade": session.current_grade,
            "question_index": state.question_index if isinstance(state, Testing) else 0,
            "batch_size": len(session.batch),
            "current_question": question.public_dict() if question else None,
            "final_grade": session.final_grade,
            "error": state.error if isinstance(state, Failed) else session.completion_error,
            "questions_answered": session.questions_answered,
            "max_grade_tested": session.max_grade_tested,
            "grade_cache": session.grade_cache.as_dict(),
            "completion_recorded": session.completion_recorded,
        }
