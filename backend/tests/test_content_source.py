"""
Tests for the math-fact skill contracts and MathFactsContentFetcher.

Uses seeded random.Random instances; no network.
"""
import sys
import os
import asyncio
import random

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from mathquest.services.content_source import MathFactsContentFetcher
from mathquest.services.errors import ContentUnavailable
from mathquest.services.grade_levels import GRADE_ORDER
from mathquest.skills.base import MathFactContract
from mathquest.skills.registry import OPERATIONS, SKILL_REGISTRY


def _run(coro):
    return asyncio.run(coro)


class OneFactContract(MathFactContract):
    """A pool with exactly one fact, for exhausting the source."""
    operation = "addition"
    symbol = "+"
    ranges = {"default": {}}

    def build_variant(self, rng, grade):
        return {"a": 1, "b": 1, "answer": 2}


# ── skill contracts ─────────────────────────────────────────────────────────

class TestSkillContracts:
    def test_registry_covers_four_operations(self):
        assert OPERATIONS == ("addition", "subtraction", "multiplication", "division")

    @pytest.mark.parametrize("operation", ["addition", "subtraction", "multiplication", "division"])
    def test_every_grade_produces_valid_facts(self, operation):
        contract = SKILL_REGISTRY[operation]
        rng = random.Random(7)
        for grade in GRADE_ORDER:
            for _ in range(20):
                q = contract.build_question(rng, grade)
                assert q.operation == operation
                assert q.grade == grade
                assert q.id.startswith(f"{operation}:")
                assert len(q.options) == 4
                assert len(set(q.options)) == 4
                assert q.answer in q.options
                assert all(int(o) >= 0 for o in q.options)

    def test_answers_are_correct(self):
        rng = random.Random(11)
        checks = {
            "addition": lambda a, b: a + b,
            "subtraction": lambda a, b: a - b,
            "multiplication": lambda a, b: a * b,
            "division": lambda a, b: a // b,
        }
        for operation, fn in checks.items():
            contract = SKILL_REGISTRY[operation]
            for grade in GRADE_ORDER:
                variant = contract.build_variant(rng, grade)
                assert fn(variant["a"], variant["b"]) == variant["answer"]
                if operation == "division":
                    assert variant["a"] % variant["b"] == 0
                if operation == "subtraction":
                    assert variant["answer"] >= 0

    def test_kindergarten_addition_stays_small(self):
        contract = SKILL_REGISTRY["addition"]
        rng = random.Random(3)
        for _ in range(50):
            v = contract.build_variant(rng, "K")
            assert v["answer"] <= 10

    def test_commutative_facts_share_an_id(self):
        contract = SKILL_REGISTRY["addition"]
        assert contract.question_text({"a": 3, "b": 4}) == "3 + 4 = ?"
        rng = random.Random(0)
        ids = {contract.build_question(rng, "K").id for _ in range(300)}
        # 5 × 5 ordered pairs collapse to 15 unordered facts
        assert len(ids) == 15


# ── MathFactsContentFetcher ─────────────────────────────────────────────────

class TestMathFactsContentFetcher:
    def test_batch_has_unique_ids(self):
        fetcher = MathFactsContentFetcher(rng=random.Random(1))
        out = _run(fetcher.fetch("multiplication", "3", [], batch_size=5))
        assert len(out) == 5
        assert len({q.id for q in out}) == 5
        assert all(q.source == "static" for q in out)

    def test_force_dynamic_marks_source(self):
        fetcher = MathFactsContentFetcher(rng=random.Random(1))
        out = _run(fetcher.fetch("addition", "2", [], force_dynamic=True, batch_size=2))
        assert all(q.source == "dynamic" for q in out)

    def test_exclusions_honoured_when_pool_allows(self):
        rng = random.Random(5)
        contract = SKILL_REGISTRY["addition"]
        excluded = sorted({contract.build_question(rng, "K").id for _ in range(100)})[:10]
        fetcher = MathFactsContentFetcher(rng=random.Random(9))
        for _ in range(10):
            out = _run(fetcher.fetch("addition", "K", excluded, batch_size=2))
            assert not {q.id for q in out} & set(excluded)

    def test_exhausted_pool_falls_back_to_excluded(self):
        fetcher = MathFactsContentFetcher(rng=random.Random(1), registry={"addition": OneFactContract()})
        out = _run(fetcher.fetch("addition", "K", ["addition:1+1"], batch_size=3))
        assert [q.id for q in out] == ["addition:1+1"]

    def test_unknown_operation(self):
        fetcher = MathFactsContentFetcher()
        with pytest.raises(ContentUnavailable):
            _run(fetcher.fetch("exponents", "3", []))
