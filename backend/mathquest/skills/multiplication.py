"""Multiplication facts — MathFactContract implementation."""

from .base import MathFactContract
import random


class MultiplicationFactContract(MathFactContract):
    operation = "multiplication"
    symbol = "×"
    ranges = {
        # K-2 multiplication is enrichment
        0: {"min1": 1, "max1": 5, "min2": 1, "max2": 5},
        1: {"min1": 1, "max1": 5, "min2": 1, "max2": 5},
        2: {"min1": 1, "max1": 5, "min2": 1, "max2": 5},
        3: {"min1": 1, "max1": 10, "min2": 1, "max2": 10},
        4: {"min1": 10, "max1": 99, "min2": 10, "max2": 99},
        5: {"min1": 100, "max1": 999, "min2": 10, "max2": 99},
        6: {"min1": 100, "max1": 999, "min2": 10, "max2": 99},
        "default": {"min1": 100, "max1": 999, "min2": 10, "max2": 99},
    }

    def build_variant(self, rng: random.Random, grade: str) -> dict:
        r = self.range_for(grade)
        a = rng.randint(r["min1"], r["max1"])
        b = rng.randint(r["min2"], r["max2"])
        return {"a": a, "b": b, "answer": a * b}
