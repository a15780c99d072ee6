"""Base skill contract for math-fact question generation.

Every operation (addition, subtraction, ...) subclasses MathFactContract
and overrides build_variant. Number ranges are keyed by grade number
(K = 0) and follow the on-grade computation ranges:

  – K-2:   single-digit facts
  – Gr 3:  add/sub to 1 000; ×/÷ facts through 10
  – Gr 4:  add/sub to 10 000; 2-digit × 2-digit; 4-digit ÷ 1-digit
  – Gr 5+: multi-digit operations
"""

import random

from mathquest.models.placement import Question
from mathquest.services.grade_levels import GRADE_ORDER, grade_number
from mathquest.utils.question_signature import operation_fingerprints


class MathFactContract:
    operation: str = ""
    symbol: str = ""
    ranges: dict = {}

    def range_for(self, grade: str) -> dict:
        return self.ranges.get(grade_number(grade), self.ranges["default"])

    def build_variant(self, rng: random.Random, grade: str) -> dict:
        """Return {"a": int, "b": int, "answer": int} for one fact at *grade*."""
        raise NotImplementedError

    def question_text(self, variant: dict) -> str:
        return f"{variant['a']} {self.symbol} {variant['b']} = ?"

    def build_options(self, rng: random.Random, answer: int, count: int = 4) -> list[str]:
        """
        Correct answer plus count-1 distinct, non-negative distractors near it.

        The spread widens when the neighbourhood is too small (answer 0 or 1
        only has a couple of neighbours within 20%).
        """
        variance = max(1, answer // 5)
        wrong: set[int] = set()
        while len(wrong) < count - 1:
            offset = rng.randint(1, variance)
            candidate = answer + offset if rng.random() < 0.5 else answer - offset
            if candidate >= 0 and candidate != answer:
                wrong.add(candidate)
            if len(wrong) < count - 1 and variance < count * 2:
                variance += 1
        options = [str(answer)] + [str(n) for n in sorted(wrong)]
        rng.shuffle(options)
        return options

    def build_question(self, rng: random.Random, grade: str, source: str = "static") -> Question:
        variant = self.build_variant(rng, grade)
        text = self.question_text(variant)
        fingerprint = operation_fingerprints(text)[0]
        return Question(
            id=f"{self.operation}:{fingerprint}",
            question_text=text,
            answer=str(variant["answer"]),
            options=self.build_options(rng, variant["answer"]),
            operation=self.operation,
            grade=grade if grade in GRADE_ORDER else GRADE_ORDER[0],
            source=source,
        )
