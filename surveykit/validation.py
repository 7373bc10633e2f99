"""Checks a submitted answers map against a survey's current questions.

Every question type has exactly one answer check in ``ANSWER_CHECKS``. A
check returns ``None`` when the value fits, otherwise the tail of an error
message ("expects ...").
"""
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .errors import InvalidInput
from .models import QuestionType


def is_empty_answer(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _check_text(question, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return "expects a text answer"
    return None


def _check_single_choice(question, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return "expects one option as text"
    if question.options and value not in question.options:
        return f"has '{value}', which is not one of its options"
    return None


def _check_multi_choice(question, value: Any) -> Optional[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return "expects a list of options"
    if question.options:
        invalid = [v for v in value if v not in question.options]
        if invalid:
            return f"has '{invalid[0]}', which is not one of its options"
    if len(set(value)) != len(value):
        return "lists the same option more than once"
    return None


def _check_rating(question, value: Any) -> Optional[str]:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "expects a numeric rating"
    return None


def _check_date(question, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return "expects an ISO-8601 date"
    try:
        date.fromisoformat(value)
    except ValueError:
        try:
            datetime.fromisoformat(value)
        except ValueError:
            return "expects an ISO-8601 date"
    return None


ANSWER_CHECKS: Dict[QuestionType, Callable[[Any, Any], Optional[str]]] = {
    QuestionType.TEXT: _check_text,
    QuestionType.TEXTAREA: _check_text,
    QuestionType.RADIO: _check_single_choice,
    QuestionType.SELECT: _check_single_choice,
    QuestionType.CHECKBOX: _check_multi_choice,
    QuestionType.RATING: _check_rating,
    QuestionType.DATE: _check_date,
}


def validate_answers(questions: Iterable, answers: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate ``answers`` (question id -> value) and return a plain copy.

    Raises ``InvalidInput`` naming the first offending key or question, in
    this order: unknown question ids, missing required answers, answers of
    the wrong shape.
    """
    ordered = sorted(questions, key=lambda q: q.order)
    by_id = {q.id: q for q in ordered}

    for key in answers:
        if key not in by_id:
            raise InvalidInput(
                f"Answer given for unknown question '{key}'.", field=f"answers.{key}"
            )

    for question in ordered:
        if question.required and is_empty_answer(answers.get(question.id)):
            raise InvalidInput(
                f"Question '{question.text}' is required.", field=f"answers.{question.id}"
            )

    for question in ordered:
        value = answers.get(question.id)
        if is_empty_answer(value):
            continue
        problem = ANSWER_CHECKS[QuestionType(question.type)](question, value)
        if problem:
            raise InvalidInput(
                f"Question '{question.text}' {problem}.", field=f"answers.{question.id}"
            )

    return dict(answers)
