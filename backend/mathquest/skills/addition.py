"""Addition facts — MathFactContract implementation."""

from .base import MathFactContract
import random


class AdditionFactContract(MathFactContract):
    operation = "addition"
    symbol = "+"
    ranges = {
        0: {"min1": 1, "max1": 5, "min2": 1, "max2": 5},          # sums within 10
        1: {"min1": 1, "max1": 10, "min2": 1, "max2": 10},
        2: {"min1": 1, "max1": 20, "min2": 1, "max2": 20},
        3: {"min1": 100, "max1": 999, "min2": 100, "max2": 999},
        4: {"min1": 1000, "max1": 9999, "min2": 1000, "max2": 9999},
        5: {"min1": 10000, "max1": 99999, "min2": 10000, "max2": 99999},
        6: {"min1": 10000, "max1": 99999, "min2": 10000, "max2": 99999},
        "default": {"min1": 10000, "max1": 99999, "min2": 10000, "max2": 99999},
    }

    def build_variant(self, rng: random.Random, grade: str) -> dict:
        r = self.range_for(grade)
        a = rng.randint(r["min1"], r["max1"])
        b = rng.randint(r["min2"], r["max2"])
        return {"a": a, "b": b, "answer": a + b}
