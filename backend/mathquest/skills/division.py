"""Division facts — MathFactContract implementation."""

from .base import MathFactContract
import random


class DivisionFactContract(MathFactContract):
    operation = "division"
    symbol = "÷"
    # always exact: dividend is built as quotient × divisor
    ranges = {
        0: {"min_divisor": 2, "max_divisor": 5, "min_quotient": 1, "max_quotient": 4},
        1: {"min_divisor": 2, "max_divisor": 5, "min_quotient": 1, "max_quotient": 4},
        2: {"min_divisor": 2, "max_divisor": 5, "min_quotient": 1, "max_quotient": 4},
        3: {"min_divisor": 2, "max_divisor": 10, "min_quotient": 1, "max_quotient": 9},
        4: {"min_divisor": 2, "max_divisor": 9, "min_quotient": 10, "max_quotient": 9999},
        5: {"min_divisor": 2, "max_divisor": 99, "min_quotient": 10, "max_quotient": 999},
        6: {"min_divisor": 2, "max_divisor": 99, "min_quotient": 10, "max_quotient": 999},
        "default": {"min_divisor": 2, "max_divisor": 99, "min_quotient": 10, "max_quotient": 999},
    }

    def build_variant(self, rng: random.Random, grade: str) -> dict:
        r = self.range_for(grade)
        quotient = rng.randint(r["min_quotient"], r["max_quotient"])
        divisor = rng.randint(r["min_divisor"], r["max_divisor"])
        return {"a": quotient * divisor, "b": divisor, "answer": quotient}
