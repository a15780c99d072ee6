"""
Tests for the adaptive placement controller.

decide_next_step is tested directly as a pure function; the controller is
driven end-to-end against a fake content source whose every question has
the answer "ok".
"""
import sys
import os
import asyncio
import random

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from mathquest.models.placement import Question
from mathquest.services.completion_sink import CompletionSink, InMemoryCompletionSink
from mathquest.services.content_source import ContentFetcher
from mathquest.services.dedup_gate import DeduplicationGate
from mathquest.services.errors import CompletionSinkFailure, ContentUnavailable
from mathquest.services.grade_attempt_cache import GradeAttemptCache, GradeResult
from mathquest.services.history_store import QuestionHistoryStore
from mathquest.services.kv_store import InMemoryKeyValueStore
from mathquest.services.placement_controller import (
    ADVANCE,
    COMPLETE,
    DROP,
    AssessmentAborted,
    AssessmentFinished,
    BatchRequested,
    Complete,
    CompletionFailed,
    CompletionRecorded,
    Evaluating,
    Failed,
    GradePlacementController,
    GradeRecorded,
    Testing,
    decide_next_step,
    effect_to_dict,
)

RIGHT = "ok"
WRONG = "nope"


def _run(coro):
    return asyncio.run(coro)


class FakeFetcher(ContentFetcher):
    """Unique questions per call; grades listed in *fail_grades* raise."""

    def __init__(self, fail_grades=()):
        self.fail_grades = set(fail_grades)
        self.requests = []
        self.counter = 0
        self.release = None

    async def fetch(self, operation, grade, exclude_ids, force_dynamic=False, batch_size=1):
        self.requests.append(grade)
        if self.release is not None:
            await self.release.wait()
        if grade in self.fail_grades:
            raise ContentUnavailable(operation, grade, "backend down")
        out = []
        for _ in range(batch_size):
            self.counter += 1
            out.append(Question(
                id=f"{operation}-{grade}-{self.counter}",
                question_text=f"{operation} question {self.counter} for grade {grade}",
                answer=RIGHT,
                operation=operation,
                grade=grade,
            ))
        return out


class BrokenSink(CompletionSink):
    def __init__(self, failures=1):
        self.failures = failures
        self.calls = 0
        self.recorded = []

    def record_complete(self, user_id, operation, final_grade, questions_answered, *, session_id):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("sink offline")
        self.recorded.append((session_id, final_grade, questions_answered))


def _controller(fetcher=None, sink=None, **kw):
    history = QuestionHistoryStore(InMemoryKeyValueStore())
    history.load("42")
    gate = DeduplicationGate(fetcher or FakeFetcher(), history)
    return GradePlacementController(gate, completion_sink=sink, **kw)


def _play(ctrl, answers, user_grade="3", operation="addition"):
    async def scenario():
        await ctrl.start(user_id="42", user_grade=user_grade, operation=operation)
        transitions = []
        for answer in answers:
            transitions.append(await ctrl.submit_answer(answer))
        return transitions
    return _run(scenario())


# ── decide_next_step ────────────────────────────────────────────────────────

class TestDecideNextStep:
    def test_correct_mid_batch_advances(self):
        step = decide_next_step("3", 0, 2, True, GradeAttemptCache())
        assert step.kind == ADVANCE
        assert step.delta is None

    def test_correct_batch_end_completes(self):
        step = decide_next_step("3", 1, 2, True, GradeAttemptCache())
        assert (step.kind, step.grade) == (COMPLETE, "3")
        assert step.delta.passed and step.delta.correct_answers == 2

    def test_incorrect_drops(self):
        step = decide_next_step("3", 1, 2, False, GradeAttemptCache())
        assert (step.kind, step.grade) == (DROP, "2")
        assert step.delta.questions_answered == 2
        assert step.delta.correct_answers == 1
        assert not step.delta.passed

    def test_incorrect_with_lower_passed_completes_there(self):
        cache = GradeAttemptCache()
        cache.merge("2", GradeResult(questions_answered=2, correct_answers=2, passed=True))
        step = decide_next_step("3", 0, 2, False, cache)
        assert (step.kind, step.grade) == (COMPLETE, "2")

    def test_incorrect_at_floor(self):
        assert decide_next_step("K", 0, 2, False, GradeAttemptCache()).grade == "K"
        cache = GradeAttemptCache()
        cache.merge("1", GradeResult(passed=True))
        step = decide_next_step("K", 0, 2, False, cache)
        assert (step.kind, step.grade) == (COMPLETE, "1")

    def test_configured_floor(self):
        step = decide_next_step("2", 0, 2, False, GradeAttemptCache(), min_grade="2")
        assert (step.kind, step.grade) == (COMPLETE, "2")


# ── controller scenarios ────────────────────────────────────────────────────

class TestPlacementScenarios:
    def test_clean_pass_finishes_at_start_grade(self):
        ctrl = _controller()
        transitions = _play(ctrl, [RIGHT, RIGHT], user_grade="3")
        assert ctrl.session.state == Complete("3")
        assert ctrl.session.questions_answered == 2
        assert transitions[0].state == Testing("3", 1)
        assert any(isinstance(e, AssessmentFinished) for e in transitions[-1].effects)

    def test_kindergarten_miss_finishes_at_k(self):
        ctrl = _controller()
        _play(ctrl, [WRONG], user_grade="K")
        assert ctrl.session.final_grade == "K"
        assert ctrl.session.questions_answered == 1

    def test_drop_then_pass(self):
        fetcher = FakeFetcher()
        ctrl = _controller(fetcher)
        transitions = _play(ctrl, [WRONG], user_grade="3")
        assert ctrl.session.state == Testing("2", 0)
        assert fetcher.requests == ["3", "2"]
        kinds = [type(e) for e in transitions[0].effects]
        assert GradeRecorded in kinds and BatchRequested in kinds

        async def finish():
            await ctrl.submit_answer(RIGHT)
            await ctrl.submit_answer(RIGHT)
        _run(finish())
        assert ctrl.session.final_grade == "2"
        assert ctrl.session.max_grade_tested == "3"
        assert ctrl.session.grade_cache.is_passed("2")
        assert not ctrl.session.grade_cache.is_passed("3")

    def test_lower_grade_already_passed_finishes_without_fetch(self):
        fetcher = FakeFetcher()
        ctrl = _controller(fetcher)

        async def scenario():
            await ctrl.start(user_id="42", user_grade="3", operation="addition")
            ctrl.session.grade_cache.merge("2", GradeResult(questions_answered=2, correct_answers=2, passed=True))
            return await ctrl.submit_answer(WRONG)

        t = _run(scenario())
        assert t.state == Complete("2")
        assert fetcher.requests == ["3"]

    def test_grade_above_range_clamped(self):
        fetcher = FakeFetcher()
        ctrl = _controller(fetcher)
        _play(ctrl, [RIGHT, RIGHT], user_grade="8")
        assert ctrl.session.start_grade == "6"
        assert ctrl.session.final_grade == "6"
        assert fetcher.requests == ["6"]

    def test_question_payload_hides_answer(self):
        ctrl = _controller()
        _play(ctrl, [])
        snap = ctrl.snapshot()
        assert snap["status"] == "testing"
        assert "answer" not in snap["current_question"]
        assert snap["batch_size"] == 2

    def test_always_terminates(self):
        rng = random.Random(1234)
        for _ in range(200):
            ctrl = _controller()
            start = rng.choice(["K", "1", "2", "3", "4", "5", "6"])

            async def scenario():
                await ctrl.start(user_id="42", user_grade=start, operation="addition")
                submits = 0
                while not ctrl.session.is_terminal:
                    await ctrl.submit_answer(rng.choice([RIGHT, WRONG]))
                    submits += 1
                return submits

            submits = _run(scenario())
            assert submits <= 14
            assert isinstance(ctrl.session.state, Complete)

    def test_effects_serialise(self):
        ctrl = _controller()
        transitions = _play(ctrl, [RIGHT, RIGHT])
        dicts = [effect_to_dict(e) for e in transitions[-1].effects]
        assert dicts[0]["kind"] == "grade_recorded"
        assert dicts[0]["passed"] is True


# ── rejected and failed transitions ─────────────────────────────────────────

class TestRejections:
    def test_submit_after_complete_rejected(self):
        ctrl = _controller()
        transitions = _play(ctrl, [RIGHT, RIGHT, RIGHT])
        assert transitions[-1].accepted is False
        assert transitions[-1].effects == []
        assert ctrl.session.questions_answered == 2

    def test_submit_before_start_rejected(self):
        ctrl = _controller()
        t = _run(ctrl.submit_answer(RIGHT))
        assert t.accepted is False

    def test_fetch_failure_on_start(self):
        ctrl = _controller(FakeFetcher(fail_grades={"3"}))
        t = _run(ctrl.start(user_id="42", user_grade="3", operation="addition"))
        assert isinstance(t.state, Failed)
        assert t.state.grade == "3"
        assert any(isinstance(e, AssessmentAborted) for e in t.effects)

    def test_fetch_failure_on_drop_keeps_grade(self):
        ctrl = _controller(FakeFetcher(fail_grades={"2"}))
        transitions = _play(ctrl, [WRONG], user_grade="3")
        state = transitions[0].state
        assert isinstance(state, Failed)
        assert state.grade == "3"
        assert ctrl.session.grade_cache.get("3").questions_answered == 1

    def test_restart_while_running_rejected(self):
        ctrl = _controller()

        async def scenario():
            await ctrl.start(user_id="42", user_grade="2", operation="addition")
            await ctrl.start(user_id="42", user_grade="2", operation="addition")

        with pytest.raises(RuntimeError):
            _run(scenario())


# ── concurrency and cancellation ────────────────────────────────────────────

class TestConcurrency:
    def test_second_submit_rejected_while_evaluating(self):
        fetcher = FakeFetcher()
        ctrl = _controller(fetcher)

        async def scenario():
            await ctrl.start(user_id="42", user_grade="3", operation="addition")
            fetcher.release = asyncio.Event()
            pending = asyncio.ensure_future(ctrl.submit_answer(WRONG))
            for _ in range(5):
                await asyncio.sleep(0)
            assert isinstance(ctrl.session.state, Evaluating)
            rejected = await ctrl.submit_answer(RIGHT)
            fetcher.release.set()
            first = await pending
            return rejected, first

        rejected, first = _run(scenario())
        assert rejected.accepted is False
        assert first.state == Testing("2", 0)
        assert ctrl.session.questions_answered == 1

    def test_cancel_discards_late_batch(self):
        fetcher = FakeFetcher()
        ctrl = _controller(fetcher)

        async def scenario():
            await ctrl.start(user_id="42", user_grade="3", operation="addition")
            fetcher.release = asyncio.Event()
            pending = asyncio.ensure_future(ctrl.submit_answer(WRONG))
            for _ in range(5):
                await asyncio.sleep(0)
            cancelled = ctrl.cancel()
            fetcher.release.set()
            late = await pending
            return cancelled, late

        cancelled, late = _run(scenario())
        assert isinstance(cancelled.state, Failed)
        assert late.state is cancelled.state
        assert ctrl.session.current_grade == "3"
        history_ids = ctrl.gate.history.build_exclusion_list()
        assert not any(qid.startswith("addition-2-") for qid in history_ids)

    def test_cancel_after_complete_is_noop(self):
        ctrl = _controller()
        _play(ctrl, [RIGHT, RIGHT])
        t = ctrl.cancel()
        assert t.accepted is False
        assert ctrl.session.state == Complete("3")


# ── completion sink ─────────────────────────────────────────────────────────

class TestCompletion:
    def test_recorded_once_on_finish(self):
        sink = InMemoryCompletionSink()
        ctrl = _controller(sink=sink)
        transitions = _play(ctrl, [RIGHT, RIGHT], user_grade="4")
        assert any(isinstance(e, CompletionRecorded) for e in transitions[-1].effects)
        record = sink.get(ctrl.session.session_id)
        assert record.final_grade == "4"
        assert record.questions_answered == 2

        _run(ctrl.record_completion())
        assert sink.get(ctrl.session.session_id) is record
        assert len(sink._data) == 1

    def test_failure_keeps_grade_for_retry(self):
        sink = BrokenSink(failures=1)
        ctrl = _controller(sink=sink)
        transitions = _play(ctrl, [WRONG], user_grade="K")
        failed = [e for e in transitions[-1].effects if isinstance(e, CompletionFailed)]
        assert failed and failed[0].final_grade == "K"
        assert ctrl.session.final_grade == "K"
        assert ctrl.session.completion_recorded is False
        assert ctrl.snapshot()["error"] == "sink offline"

        result = _run(ctrl.record_completion())
        assert result.final_grade == "K"
        assert ctrl.session.completion_recorded is True
        assert sink.recorded == [(ctrl.session.session_id, "K", 1)]

    def test_failure_raises_on_explicit_call(self):
        sink = BrokenSink(failures=5)
        ctrl = _controller(sink=sink)
        _play(ctrl, [RIGHT, RIGHT])
        with pytest.raises(CompletionSinkFailure) as exc:
            _run(ctrl.record_completion())
        assert exc.value.final_grade == "3"

    def test_record_before_finish_rejected(self):
        ctrl = _controller(sink=InMemoryCompletionSink())
        _play(ctrl, [RIGHT])
        with pytest.raises(RuntimeError):
            _run(ctrl.record_completion())
