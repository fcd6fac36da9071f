"""
Answer normalization and grading.
"""
import re
from typing import Optional, Sequence

from .models import Answer, Question, Score

_LINE_BREAKS = re.compile(r"\r\n?")
_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")


def normalize_answer(text: Optional[str]) -> str:
    """
    Canonicalize free text for comparison.

    Line breaks are unified to ``\\n`` and kept, so multi-line answers are
    compared line by line. Within each line, runs of horizontal whitespace
    collapse to a single space.
    """
    if text is None:
        return ""
    text = _LINE_BREAKS.sub("\n", str(text)).strip().lower()
    lines = [_HORIZONTAL_SPACE.sub(" ", line).strip() for line in text.split("\n")]
    return "\n".join(lines)


def _as_choice_index(value: Answer) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        # isdecimal() still admits non-ASCII digits such as Arabic-Indic ones
        if not text.isascii() or not text.isdecimal():
            return None
        try:
            return int(text)
        except ValueError:
            return None
    return None


def is_correct(question: Optional[Question], submitted: Answer) -> bool:
    """Grade one answer. Malformed or missing submissions are simply wrong."""
    if question is None:
        return False

    if question.is_multiple_choice:
        index = _as_choice_index(submitted)
        return index is not None and index == question.answer_index

    if submitted is None or not str(submitted).strip():
        return False

    canonical = normalize_answer(str(submitted))
    if not canonical:
        return False

    targets = question.answer if isinstance(question.answer, (list, tuple)) else [question.answer]
    return any(normalize_answer(target) == canonical for target in targets)


def compute_score(questions: Sequence[Question], answers: Sequence[Answer]) -> Score:
    """Score a whole answer sequence; ``total`` is always ``len(questions)``."""
    correct = 0
    for position, question in enumerate(questions):
        answer = answers[position] if position < len(answers) else None
        if is_correct(question, answer):
            correct += 1
    return Score(correct=correct, total=len(questions))
