from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.attempt import FINISHED_STATUSES, AttemptStatus, QuizAttempt
from app.models.course import ClassStudent, EnrollmentStatus
from app.models.quiz import Quiz, QuizClass, QuizStatus

log = logging.getLogger(__name__)


def _rate(part: int | float, whole: int | float) -> float:
    if not whole:
        return 0.0
    return round(float(part) / float(whole) * 100, 1)


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


class StatisticsService:
    """Quiz rollups, always re-derived from attempt rows (never incremented)."""

    def __init__(self, db: Session):
        self.db = db

    def eligible_students(self, quiz_id: uuid.UUID) -> int:
        """Distinct students currently enrolled in any class the quiz is open to."""
        class_ids = select(QuizClass.class_id).where(QuizClass.quiz_id == quiz_id)
        count = self.db.scalar(
            select(func.count(distinct(ClassStudent.student_id))).where(
                ClassStudent.class_id.in_(class_ids),
                ClassStudent.enrollment_status == EnrollmentStatus.enrolled,
            )
        )
        return int(count or 0)

    def recompute(self, quiz_id: uuid.UUID) -> Quiz:
        quiz = self.db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFoundError("quiz not found")

        scores = [
            float(s)
            for s in self.db.scalars(
                select(QuizAttempt.score).where(
                    QuizAttempt.quiz_id == quiz_id,
                    QuizAttempt.status.in_(FINISHED_STATUSES),
                )
            )
        ]
        all_attempts = self.db.scalar(select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz_id)) or 0
        graded = (
            self.db.scalar(
                select(func.count(QuizAttempt.id)).where(
                    QuizAttempt.quiz_id == quiz_id,
                    QuizAttempt.status == AttemptStatus.graded,
                )
            )
            or 0
        )
        eligible = self.eligible_students(quiz_id)

        quiz.total_attempts = len(scores)
        quiz.average_score = _mean(scores)
        quiz.participation_rate = _rate(len(scores), eligible)
        quiz.graded_responses = int(graded)
        quiz.completion_rate = _rate(len(scores), all_attempts)
        self.db.commit()

        log.info(
            "quiz statistics recomputed quiz_id=%s attempts=%s avg=%s participation=%s eligible=%s",
            quiz_id,
            quiz.total_attempts,
            quiz.average_score,
            quiz.participation_rate,
            eligible,
        )
        return quiz

    def recompute_best_effort(self, quiz_id: uuid.UUID) -> None:
        # Rollups never fail the operation that triggered them.
        try:
            self.recompute(quiz_id)
        except Exception:
            self.db.rollback()
            log.exception("quiz statistics recompute failed quiz_id=%s", quiz_id)

    def response_statistics(self, quiz_id: uuid.UUID) -> dict[str, Any]:
        rows = self.db.execute(
            select(QuizAttempt.status, QuizAttempt.score).where(QuizAttempt.quiz_id == quiz_id)
        ).all()
        finished = [float(score) for status, score in rows if status in FINISHED_STATUSES]
        graded = sum(1 for status, _ in rows if status == AttemptStatus.graded)
        return {
            "total_responses": len(rows),
            "average_score": _mean(finished),
            "graded_responses": graded,
            "completion_rate": _rate(len(finished), len(rows)),
        }

    def overview(self) -> dict[str, Any]:
        total_quizzes = self.db.scalar(select(func.count(Quiz.id))) or 0
        active_quizzes = self.db.scalar(select(func.count(Quiz.id)).where(Quiz.status == QuizStatus.active)) or 0
        total_attempts = self.db.scalar(select(func.count(QuizAttempt.id))) or 0
        avg = self.db.scalar(select(func.avg(QuizAttempt.score)).where(QuizAttempt.status.in_(FINISHED_STATUSES)))
        return {
            "total_quizzes": int(total_quizzes),
            "total_attempts": int(total_attempts),
            "active_quizzes": int(active_quizzes),
            "avg_score": round(float(avg or 0.0), 1),
        }
