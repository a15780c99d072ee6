"""Subtraction facts — MathFactContract implementation."""

from .base import MathFactContract
import random


class SubtractionFactContract(MathFactContract):
    operation = "subtraction"
    symbol = "-"
    # subtrahend range plus the range of the difference; answers never go negative
    ranges = {
        0: {"min2": 1, "max2": 3, "min_diff": 0, "max_diff": 4},
        1: {"min2": 1, "max2": 5, "min_diff": 0, "max_diff": 9},
        2: {"min2": 1, "max2": 10, "min_diff": 0, "max_diff": 19},
        3: {"min2": 1, "max2": 999, "min_diff": 0, "max_diff": 999},
        4: {"min2": 1, "max2": 9999, "min_diff": 0, "max_diff": 9999},
        5: {"min2": 1, "max2": 99999, "min_diff": 0, "max_diff": 99999},
        6: {"min2": 1, "max2": 99999, "min_diff": 0, "max_diff": 99999},
        "default": {"min2": 1, "max2": 99999, "min_diff": 0, "max_diff": 99999},
    }

    def build_variant(self, rng: random.Random, grade: str) -> dict:
        r = self.range_for(grade)
        b = rng.randint(r["min2"], r["max2"])
        diff = rng.randint(r["min_diff"], r["max_diff"])
        return {"a": b + diff, "b": b, "answer": diff}
