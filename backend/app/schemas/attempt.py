from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.quiz import QuestionPublic

# Raw answer as sent by the client: option id, option ids, boolean or text.
# Left untyped here so "1" or 1 never coerce to a boolean; the scoring engine
# checks the shape per question type.
RawAnswer = Any


class AttemptQuizSummary(BaseModel):
    id: str
    title: str
    description: str | None
    duration: int
    instructions: str | None
    show_results: bool
    allow_review: bool


class AttemptStartResponse(BaseModel):
    attempt_id: str
    attempt_number: int
    quiz: AttemptQuizSummary
    questions: list[QuestionPublic]
    started_at: datetime
    expires_at: datetime


class AttemptSubmitRequest(BaseModel):
    responses: dict[str, RawAnswer] = Field(default_factory=dict)
    time_spent: int | None = Field(default=None, ge=0)


class AttemptSubmitResponse(BaseModel):
    attempt_id: str
    score: float
    total_score: float
    max_score: float
    is_passing: bool
    pending_review: int
    show_results: bool
    allow_review: bool


class AttemptGradeRequest(BaseModel):
    awards: dict[str, float] = Field(default_factory=dict)


class QuestionResultPublic(BaseModel):
    is_correct: bool | None
    points_awarded: float
    points_possible: float
    requires_manual_grading: bool = False
    manually_graded: bool = False


class AttemptPublic(BaseModel):
    id: str
    quiz_id: str
    user_id: str
    attempt_number: int
    status: str
    started_at: datetime
    submitted_at: datetime | None
    graded_at: datetime | None
    time_spent: int
    score: float | None
    total_score: float | None
    max_score: float | None
    is_passing: bool | None
    pending_review: int


class ResultQuestion(BaseModel):
    id: str
    text: str
    question_type: str
    multiple_correct: bool
    max_length: int | None
    points: int
    order: int
    options: list[dict[str, Any]]
    user_response: RawAnswer = None
    result: QuestionResultPublic | None = None
    correct_option_ids: list[str] | None = None
    correct_boolean: bool | None = None
    correct_answer: str | None = None
    sample_answer: str | None = None
    explanation: str | None = None


class AttemptResultsResponse(BaseModel):
    attempt: AttemptPublic
    questions: list[ResultQuestion]
    show_results: bool
    allow_review: bool
