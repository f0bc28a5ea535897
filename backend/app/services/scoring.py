"""Automatic grading of quiz responses.

Everything here is pure: no session, no clock, no randomness. Raw JSON
answers are parsed into typed answers once (``parse_answer``) and grading
dispatches on ``QuestionType`` only.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from app.core.errors import ValidationError
from app.models.question import QuestionType


@dataclass(frozen=True)
class MultipleChoiceAnswer:
    option_ids: frozenset[str]


@dataclass(frozen=True)
class TrueFalseAnswer:
    value: bool


@dataclass(frozen=True)
class ShortAnswerAnswer:
    text: str


@dataclass(frozen=True)
class EssayAnswer:
    text: str


Answer = Union[MultipleChoiceAnswer, TrueFalseAnswer, ShortAnswerAnswer, EssayAnswer]


def _norm_id(value: str) -> str:
    return value.strip().lower()


def _norm_text(value: str) -> str:
    return value.strip().casefold()


@dataclass(frozen=True)
class AnswerKey:
    question_type: QuestionType
    multiple_correct: bool = False
    correct_option_ids: frozenset[str] = frozenset()
    correct_boolean: bool | None = None
    correct_text: str | None = None

    @classmethod
    def from_question(cls, question, options: Iterable = ()) -> "AnswerKey":
        qtype = QuestionType(question.question_type)
        return cls(
            question_type=qtype,
            multiple_correct=bool(question.multiple_correct),
            correct_option_ids=frozenset(_norm_id(str(o.id)) for o in options if o.is_correct),
            correct_boolean=question.correct_boolean,
            correct_text=question.correct_answer,
        )


def parse_answer(question_type: QuestionType, raw: Any) -> Answer | None:
    """Turn one raw response value into a typed answer.

    Returns None for an absent/blank response. Raises ValidationError when the
    value has the wrong shape for the question type.
    """
    if raw is None:
        return None

    if question_type == QuestionType.multiple_choice:
        if isinstance(raw, str):
            ids = [raw]
        elif isinstance(raw, (list, tuple)) and all(isinstance(x, str) for x in raw):
            ids = list(raw)
        else:
            raise ValidationError("multiple-choice answer must be an option id or a list of option ids")
        norm = frozenset(_norm_id(x) for x in ids if x.strip())
        return MultipleChoiceAnswer(norm) if norm else None

    if question_type == QuestionType.true_false:
        # bool only: "true", 1 and friends are rejected
        if not isinstance(raw, bool):
            raise ValidationError("true-false answer must be a boolean")
        return TrueFalseAnswer(raw)

    if question_type == QuestionType.short_answer:
        if not isinstance(raw, str):
            raise ValidationError("short-answer answer must be a string")
        return ShortAnswerAnswer(raw) if raw.strip() else None

    if question_type == QuestionType.essay:
        if not isinstance(raw, str):
            raise ValidationError("essay answer must be a string")
        return EssayAnswer(raw) if raw.strip() else None

    raise ValidationError(f"unsupported question type: {question_type}")


def grade_answer(key: AnswerKey, answer: Answer | None) -> bool | None:
    """True/False for auto-gradable questions, None for essays."""
    if key.question_type == QuestionType.essay:
        return None
    if answer is None:
        return False

    if key.question_type == QuestionType.multiple_choice:
        if not isinstance(answer, MultipleChoiceAnswer) or not key.correct_option_ids:
            return False
        if key.multiple_correct:
            # exact set, no partial credit
            return answer.option_ids == key.correct_option_ids
        return len(answer.option_ids) == 1 and answer.option_ids <= key.correct_option_ids

    if key.question_type == QuestionType.true_false:
        if not isinstance(answer, TrueFalseAnswer) or key.correct_boolean is None:
            return False
        return answer.value is bool(key.correct_boolean)

    if key.question_type == QuestionType.short_answer:
        if not isinstance(answer, ShortAnswerAnswer) or not (key.correct_text or "").strip():
            return False
        return _norm_text(answer.text) == _norm_text(key.correct_text or "")

    return False


@dataclass(frozen=True)
class ScoredItem:
    question_id: str
    key: AnswerKey
    points: float
    answer: Answer | None


@dataclass
class QuestionResult:
    is_correct: bool | None
    points_awarded: float
    points_possible: float
    requires_manual_grading: bool = False
    manually_graded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_correct": self.is_correct,
            "points_awarded": self.points_awarded,
            "points_possible": self.points_possible,
            "requires_manual_grading": self.requires_manual_grading,
            "manually_graded": self.manually_graded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuestionResult":
        return cls(
            is_correct=data.get("is_correct"),
            points_awarded=float(data.get("points_awarded") or 0),
            points_possible=float(data.get("points_possible") or 0),
            requires_manual_grading=bool(data.get("requires_manual_grading", False)),
            manually_graded=bool(data.get("manually_graded", False)),
        )


@dataclass
class AttemptScore:
    total_score: float
    max_score: float
    percentage: float
    results: dict[str, QuestionResult] = field(default_factory=dict)

    @property
    def pending_review(self) -> int:
        return sum(1 for r in self.results.values() if r.requires_manual_grading)

    def is_passing(self, passing_score: float) -> bool:
        return self.percentage >= float(passing_score)


def percentage_of(total: float, maximum: float) -> float:
    if maximum <= 0:
        return 0.0
    return total / maximum * 100


def score_items(items: Iterable[ScoredItem]) -> AttemptScore:
    total = 0.0
    maximum = 0.0
    results: dict[str, QuestionResult] = {}
    for item in items:
        points = float(item.points)
        maximum += points
        verdict = grade_answer(item.key, item.answer)
        awarded = points if verdict is True else 0.0
        total += awarded
        results[item.question_id] = QuestionResult(
            is_correct=verdict,
            points_awarded=awarded,
            points_possible=points,
            requires_manual_grading=verdict is None,
        )
    return AttemptScore(total_score=total, max_score=maximum, percentage=percentage_of(total, maximum), results=results)


def apply_manual_awards(results: dict[str, QuestionResult], awards: dict[str, float]) -> AttemptScore:
    """Overlay grader-assigned points on stored per-question results."""
    merged = {qid: QuestionResult(**vars(r)) for qid, r in results.items()}
    for qid, points in awards.items():
        current = merged.get(qid)
        if current is None:
            raise ValidationError(f"question {qid} is not part of this quiz")
        points = float(points)
        if points < 0 or points > current.points_possible:
            raise ValidationError(f"points for question {qid} must be between 0 and {current.points_possible:g}")
        current.points_awarded = points
        current.requires_manual_grading = False
        current.manually_graded = True

    total = sum(r.points_awarded for r in merged.values())
    maximum = sum(r.points_possible for r in merged.values())
    return AttemptScore(total_score=total, max_score=maximum, percentage=percentage_of(total, maximum), results=merged)
