from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.quiz import EvaluationType, QuizStatus


class QuizQuestionIn(BaseModel):
    question_id: str
    points: int | None = Field(default=None, ge=0)


class QuizCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    course_id: str
    evaluation_type: EvaluationType = EvaluationType.practice
    start_date: datetime
    end_date: datetime
    duration: int = Field(gt=0)
    max_attempts: int = Field(default=1, ge=1)
    passing_score: float = Field(default=50.0, ge=0, le=100)
    show_results: bool = False
    allow_review: bool = False
    shuffle_questions: bool = False
    shuffle_options: bool = False
    instructions: str | None = None
    class_ids: list[str] = Field(default_factory=list)
    questions: list[QuizQuestionIn] = Field(default_factory=list)


class QuizUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    evaluation_type: EvaluationType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    duration: int | None = Field(default=None, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)
    passing_score: float | None = Field(default=None, ge=0, le=100)
    show_results: bool | None = None
    allow_review: bool | None = None
    shuffle_questions: bool | None = None
    shuffle_options: bool | None = None
    instructions: str | None = None
    class_ids: list[str] | None = None
    questions: list[QuizQuestionIn] | None = None


class QuizStatusRequest(BaseModel):
    status: QuizStatus


class QuizPublic(BaseModel):
    id: str
    quiz_code: str
    title: str
    description: str | None
    course_id: str
    evaluation_type: str
    status: str
    start_date: datetime
    end_date: datetime
    duration: int
    max_attempts: int
    passing_score: float
    show_results: bool
    allow_review: bool
    shuffle_questions: bool
    shuffle_options: bool
    instructions: str | None
    total_points: int
    total_questions: int
    total_attempts: int
    participation_rate: float
    average_score: float
    completion_rate: float
    graded_responses: int


class OptionPublic(BaseModel):
    id: str
    text: str
    order: int
    is_correct: bool | None = None
    explanation: str | None = None


class QuestionPublic(BaseModel):
    id: str
    text: str
    question_type: str
    multiple_correct: bool
    max_length: int | None
    points: int
    order: int = 0
    options: list[OptionPublic]


class QuestionWithKey(QuestionPublic):
    correct_option_ids: list[str] = Field(default_factory=list)
    correct_boolean: bool | None = None
    correct_answer: str | None = None
    sample_answer: str | None = None
    explanation: str | None = None


class BankQuestion(QuestionWithKey):
    course_id: str | None
    difficulty: str
    topic: str | None


class QuizDetail(QuizPublic):
    class_ids: list[str]
    questions: list[QuestionWithKey]


class QuizOverviewStatistics(BaseModel):
    total_quizzes: int
    total_attempts: int
    active_quizzes: int
    avg_score: float


class QuizListResponse(BaseModel):
    quizzes: list[QuizPublic]
    statistics: QuizOverviewStatistics


class QuizResponseRow(BaseModel):
    id: str
    user_id: str
    user_name: str
    user_email: str
    attempt_number: int
    status: str
    score: float
    started_at: datetime
    submitted_at: datetime | None
    graded_at: datetime | None
    time_spent: int


class QuizResponseStatistics(BaseModel):
    total_responses: int
    average_score: float
    graded_responses: int
    completion_rate: float


class QuizResponsesResponse(BaseModel):
    responses: list[QuizResponseRow]
    statistics: QuizResponseStatistics
