from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user, require_staff
from app.db.session import get_db
from app.models.attempt import AttemptStatus
from app.models.quiz import EvaluationType, QuizStatus
from app.models.user import User
from app.routers.attempts import attempt_service
from app.schemas.attempt import AttemptStartResponse
from app.schemas.quiz import (
    QuizCreateRequest,
    QuizDetail,
    QuizListResponse,
    QuizPublic,
    QuizResponsesResponse,
    QuizStatusRequest,
    QuizUpdateRequest,
)
from app.services.attempts import AttemptService
from app.services.quizzes import QuizService, quiz_view
from app.services.statistics import StatisticsService

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


@router.get("", response_model=QuizListResponse)
def list_quizzes(
    status: QuizStatus | None = None,
    course_id: str | None = None,
    evaluation_type: EvaluationType | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    quizzes = QuizService(db).list_quizzes(status=status, course_id=course_id, evaluation_type=evaluation_type)
    return {
        "quizzes": [quiz_view(q) for q in quizzes],
        "statistics": StatisticsService(db).overview(),
    }


@router.post("", response_model=QuizPublic, status_code=201)
def create_quiz(
    body: QuizCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    return quiz_view(QuizService(db).create(body, user))


@router.get("/{quiz_id}", response_model=QuizDetail)
def get_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return QuizService(db).detail(quiz_id)


@router.put("/{quiz_id}", response_model=QuizPublic)
def update_quiz(
    quiz_id: str,
    body: QuizUpdateRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return quiz_view(QuizService(db).update(quiz_id, body))


@router.delete("/{quiz_id}")
def delete_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    QuizService(db).delete(quiz_id)
    return {"ok": True}


@router.post("/{quiz_id}/publish", response_model=QuizPublic)
def publish_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return quiz_view(QuizService(db).publish(quiz_id))


@router.post("/{quiz_id}/status", response_model=QuizPublic)
def change_quiz_status(
    quiz_id: str,
    body: QuizStatusRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return quiz_view(QuizService(db).transition(quiz_id, body.status))


@router.get("/{quiz_id}/responses", response_model=QuizResponsesResponse)
def quiz_responses(
    quiz_id: str,
    student_id: str | None = None,
    status: AttemptStatus | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return QuizService(db).responses(quiz_id, student_id=student_id, status=status)


@router.post("/{quiz_id}/attempt", response_model=AttemptStartResponse, status_code=201)
def start_attempt(
    quiz_id: str,
    user: User = Depends(get_current_user),
    service: AttemptService = Depends(attempt_service),
    _: object = rate_limit(key_prefix="attempt_start", limit=settings.rate_limit_attempt_start),
):
    return service.start(quiz_id, user)
