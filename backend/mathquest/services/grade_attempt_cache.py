from dataclasses import dataclass, asdict
from typing import Optional

from mathquest.services.grade_levels import GRADE_ORDER


@dataclass
class GradeResult:
    questions_answered: int = 0
    correct_answers: int = 0
    attempts: int = 0
    passed: bool = False

    def to_dict(self):
        return asdict(self)


class GradeAttemptCache:
    """Per-assessment pass/fail totals per grade. Merge-only; passed is sticky."""

    def __init__(self):
        self._data: dict[str, GradeResult] = {}

    def get(self, grade: str) -> Optional[GradeResult]:
        return self._data.get(grade)

    def merge(self, grade: str, delta: GradeResult) -> GradeResult:
        existing = self._data.get(grade) or GradeResult()
        merged = GradeResult(
            questions_answered=existing.questions_answered + delta.questions_answered,
            correct_answers=existing.correct_answers + delta.correct_answers,
            attempts=existing.attempts + 1,
            passed=delta.passed or existing.passed,
        )
        self._data[grade] = merged
        return merged

    def is_passed(self, grade: str) -> bool:
        result = self._data.get(grade)
        return bool(result and result.passed)

    def highest_passed(self) -> Optional[str]:
        for grade in reversed(GRADE_ORDER):
            if self.is_passed(grade):
                return grade
        return None

    def as_dict(self) -> dict[str, dict]:
        return {g: self._data[g].to_dict() for g in GRADE_ORDER if g in self._data}

    def __contains__(self, grade: str) -> bool:
        return grade in self._data

    def __len__(self) -> int:
        return len(self._data)
