"""
question_signature.py — duplicate-detection keys for question text.

Two questions can carry different ids and still be the same fact
("3 + 4 = ?" from the static bank, "What is 4 + 3?" from the generator).
The signature catches rewordings that only differ in case or spacing;
the operation fingerprints catch the same operands under a new wording.
"""
import re

_WHITESPACE_RE = re.compile(r"\s+")

# "12 + 7", "7×8", "7 x 8", "7 * 8", "81 ÷ 9", "81 / 9", "9 - 2", "9 − 2"
_OPERATION_RE = re.compile(r"(\d+)\s*([+\-−×xX*÷/])\s*(\d+)")

_CANONICAL_OPS = {
    "+": "+",
    "-": "-",
    "−": "-",
    "×": "×",
    "x": "×",
    "X": "×",
    "*": "×",
    "÷": "÷",
    "/": "÷",
}

_COMMUTATIVE = frozenset({"+", "×"})


def question_signature(text: str) -> str:
    """Lower-case and collapse whitespace. "  What is 3 +  4? " → "what is 3 + 4?" """
    return _WHITESPACE_RE.sub(" ", (text or "").lower()).strip()


def operation_fingerprints(text: str) -> list[str]:
    """
    Extract canonical operand/operator keys from question text.

    Examples:
        "3 + 4 = ?"          → ["3+4"]
        "What is 4 + 3?"     → ["3+4"]   (commutative operands sorted)
        "7 x 8"              → ["7×8"]
        "81 / 9 and 2 - 1"   → ["81÷9", "2-1"]
    """
    fingerprints: list[str] = []
    for a, op, b in _OPERATION_RE.findall(text or ""):
        canonical = _CANONICAL_OPS[op]
        left, right = int(a), int(b)
        if canonical in _COMMUTATIVE and left > right:
            left, right = right, left
        key = f"{left}{canonical}{right}"
        if key not in fingerprints:
            fingerprints.append(key)
    return fingerprints
