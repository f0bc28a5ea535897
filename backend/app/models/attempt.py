import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Float, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, enum_values


class AttemptStatus(str, enum.Enum):
    in_progress = "in-progress"
    submitted = "submitted"
    graded = "graded"
    expired = "expired"


FINISHED_STATUSES = (AttemptStatus.submitted, AttemptStatus.graded)

_JSON = JSON().with_variant(JSONB(), "postgresql")


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quiz_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("quizzes.id"), index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)

    attempt_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[AttemptStatus] = mapped_column(
        Enum(AttemptStatus, name="attemptstatus", values_callable=enum_values),
        default=AttemptStatus.in_progress,
        index=True,
    )

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)  # seconds

    # question id -> raw answer as submitted
    responses: Mapped[dict[str, Any]] = mapped_column(_JSON, default=dict)
    # question id -> {is_correct, points_awarded, points_possible, requires_manual_grading}
    question_results: Mapped[dict[str, Any]] = mapped_column(_JSON, default=dict)

    score: Mapped[float] = mapped_column(Float, default=0.0)
    total_score: Mapped[float] = mapped_column(Float, default=0.0)
    max_score: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("quiz_id", "user_id", "attempt_number", name="uq_quiz_attempt_number"),
    )
