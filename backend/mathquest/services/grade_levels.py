"""
Grade level ordering for placement.

Grades are plain strings ("K", "1" .. "6") so they serialise cleanly into
JSON blobs and API payloads. All ordering goes through GRADE_ORDER.
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Union

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

GRADE_ORDER: list[str] = ["K", "1", "2", "3", "4", "5", "6"]
FLOOR_GRADE = GRADE_ORDER[0]
CEILING_GRADE = GRADE_ORDER[-1]

_GRADE_NUMBER_RE = re.compile(r"(\d+)")

GradeInput = Union[str, int, None]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def grade_number(grade: GradeInput) -> int:
    """
    Convert any grade spelling to a number with K = 0.

    Accepts "K", "k", "Kindergarten", 0, "3", 3, "Grade 3", "Class 3".
    Numbers above 6 are returned as-is so callers can clamp them.
    Unparseable input maps to 0 (the floor).
    """
    if grade is None:
        return 0
    if isinstance(grade, bool):
        return 0
    if isinstance(grade, int):
        return max(0, grade)
    text = str(grade).strip()
    if not text or text.lower().startswith("k"):
        return 0
    m = _GRADE_NUMBER_RE.search(text)
    if not m:
        logger.warning("[grade_levels] Unrecognised grade %r; using floor", grade)
        return 0
    return int(m.group(1))


def grade_index(grade: str) -> int:
    """Position of a canonical grade in GRADE_ORDER. Raises ValueError if unknown."""
    return GRADE_ORDER.index(grade)


def clamp_grade(grade: GradeInput, min_grade: str = FLOOR_GRADE, max_grade: str = CEILING_GRADE) -> str:
    """
    Normalise *grade* and clamp it into [min_grade, max_grade].

    Examples:
        "9"  → "6"   (above the assessable ceiling)
        "k"  → "K"
        "Grade 3" → "3"
    """
    lo, hi = grade_index(min_grade), grade_index(max_grade)
    if lo > hi:
        raise ValueError(f"min_grade {min_grade!r} is above max_grade {max_grade!r}")
    idx = min(grade_number(grade), len(GRADE_ORDER) - 1)
    return GRADE_ORDER[max(lo, min(hi, idx))]


def next_lower(grade: str, min_grade: str = FLOOR_GRADE) -> Optional[str]:
    """Grade one step down, or None when *grade* is already the floor."""
    idx = grade_index(grade)
    if idx <= grade_index(min_grade):
        return None
    return GRADE_ORDER[idx - 1]


def is_higher(a: str, b: str) -> bool:
    return grade_index(a) > grade_index(b)
