from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import require_staff
from app.db.session import get_db
from app.models.question import Difficulty, QuestionType
from app.models.user import User
from app.schemas.quiz import BankQuestion
from app.services.quizzes import QuizService

router = APIRouter(prefix="/question-bank", tags=["question-bank"])


@router.get("", response_model=list[BankQuestion])
def question_bank(
    course_id: str | None = None,
    difficulty: Difficulty | None = None,
    question_type: QuestionType | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return QuizService(db).question_bank(
        course_id=course_id,
        difficulty=difficulty,
        question_type=question_type,
        search=search,
    )
