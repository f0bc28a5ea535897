import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, enum_values


class EvaluationType(str, enum.Enum):
    practice = "practice"
    mid_term = "mid-term"
    final = "final"
    assignment = "assignment"
    draft = "draft"


class QuizStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    scheduled = "scheduled"
    completed = "completed"
    archived = "archived"


# Forward-only lifecycle; a quiz may skip ahead but never move back.
QUIZ_STATUS_RANK: dict[QuizStatus, int] = {
    QuizStatus.draft: 0,
    QuizStatus.active: 1,
    QuizStatus.scheduled: 2,
    QuizStatus.completed: 3,
    QuizStatus.archived: 4,
}


class Quiz(Base):
    __tablename__ = "quizzes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quiz_code: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("courses.id"), index=True)

    evaluation_type: Mapped[EvaluationType] = mapped_column(
        Enum(EvaluationType, name="evaluationtype", values_callable=enum_values),
        default=EvaluationType.practice,
    )
    status: Mapped[QuizStatus] = mapped_column(Enum(QuizStatus), default=QuizStatus.draft, index=True)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration: Mapped[int] = mapped_column(Integer)  # minutes
    max_attempts: Mapped[int] = mapped_column(Integer, default=1)
    passing_score: Mapped[float] = mapped_column(Float, default=50.0)

    show_results: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_review: Mapped[bool] = mapped_column(Boolean, default=False)
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, default=False)
    shuffle_options: Mapped[bool] = mapped_column(Boolean, default=False)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    # rollups, re-derived by StatisticsService / QuizService
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    participation_rate: Mapped[float] = mapped_column(Float, default=0.0)
    average_score: Mapped[float] = mapped_column(Float, default=0.0)
    completion_rate: Mapped[float] = mapped_column(Float, default=0.0)
    graded_responses: Mapped[int] = mapped_column(Integer, default=0)

    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quiz_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("quizzes.id"), index=True)
    question_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("questions.id"), index=True)

    # None falls back to Question.points
    points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (UniqueConstraint("quiz_id", "question_id", name="uq_quiz_question"),)


class QuizClass(Base):
    __tablename__ = "quiz_classes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quiz_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("quizzes.id"), index=True)
    class_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("classes.id"), index=True)

    __table_args__ = (UniqueConstraint("quiz_id", "class_id", name="uq_quiz_class"),)
