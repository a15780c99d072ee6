"""
answer_checker.py — default answer comparison for math facts.

Answers arrive as whatever the learner typed or tapped ("12", " 12 ",
"12.0", "1,200"). Compare as trimmed strings first, then as numbers.
"""
from decimal import Decimal, InvalidOperation


def _as_number(value) -> Decimal | None:
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def check_answer(question, submitted) -> bool:
    if submitted is None:
        return False
    expected = str(question.answer).strip()
    given = str(submitted).strip()
    if given.lower() == expected.lower():
        return True
    a, b = _as_number(expected), _as_number(given)
    return a is not None and b is not None and a == b
