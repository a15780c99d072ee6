"""
Tests for question signatures, operation fingerprints and answer checking.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from mathquest.models.placement import Question
from mathquest.utils.answer_checker import check_answer
from mathquest.utils.question_signature import operation_fingerprints, question_signature


def _q(answer="12", text="7 + 5 = ?") -> Question:
    return Question(id="addition:5+7", question_text=text, answer=answer, operation="addition", grade="1")


# ── question_signature ──────────────────────────────────────────────────────

class TestSignature:
    def test_lowercases_and_collapses_whitespace(self):
        assert question_signature("  What IS   3 +\t4? ") == "what is 3 + 4?"

    def test_empty(self):
        assert question_signature("") == ""
        assert question_signature(None) == ""


# ── operation_fingerprints ──────────────────────────────────────────────────

class TestFingerprints:
    def test_simple_addition(self):
        assert operation_fingerprints("3 + 4 = ?") == ["3+4"]

    def test_commutative_operands_sorted(self):
        assert operation_fingerprints("What is 4 + 3?") == ["3+4"]
        assert operation_fingerprints("8 × 7") == ["7×8"]

    def test_operator_spellings_canonicalised(self):
        assert operation_fingerprints("7 x 8") == ["7×8"]
        assert operation_fingerprints("7*8") == ["7×8"]
        assert operation_fingerprints("81 / 9") == ["81÷9"]
        assert operation_fingerprints("9 − 2") == ["9-2"]

    def test_non_commutative_order_kept(self):
        assert operation_fingerprints("9 - 2 = ?") == ["9-2"]
        assert operation_fingerprints("12 ÷ 3 = ?") == ["12÷3"]

    def test_multiple_and_deduplicated(self):
        assert operation_fingerprints("3 + 4 and 4 + 3 and 10 - 1") == ["3+4", "10-1"]

    def test_no_pattern(self):
        assert operation_fingerprints("How many apples?") == []


# ── check_answer ────────────────────────────────────────────────────────────

class TestCheckAnswer:
    def test_exact_match(self):
        assert check_answer(_q(), "12")

    def test_whitespace_and_numeric_forms(self):
        assert check_answer(_q(), " 12 ")
        assert check_answer(_q(), "12.0")
        assert check_answer(_q(answer="1200"), "1,200")

    def test_wrong_answers(self):
        assert not check_answer(_q(), "13")
        assert not check_answer(_q(), "")
        assert not check_answer(_q(), None)
        assert not check_answer(_q(), "twelve")
