from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user, require_staff
from app.db.session import get_db
from app.models.user import User
from app.schemas.attempt import (
    AttemptGradeRequest,
    AttemptPublic,
    AttemptResultsResponse,
    AttemptSubmitRequest,
    AttemptSubmitResponse,
)
from app.services.attempts import AttemptService

router = APIRouter(prefix="/attempts", tags=["attempts"])


def attempt_service(request: Request, db: Session = Depends(get_db)) -> AttemptService:
    return AttemptService(db, rng=request.app.state.rng)


@router.post("/{attempt_id}/submit", response_model=AttemptSubmitResponse)
def submit_attempt(
    attempt_id: str,
    body: AttemptSubmitRequest,
    user: User = Depends(get_current_user),
    service: AttemptService = Depends(attempt_service),
    _: object = rate_limit(key_prefix="attempt_submit", limit=settings.rate_limit_attempt_submit),
):
    return service.submit(attempt_id, body.responses, body.time_spent, user)


@router.get("/{attempt_id}/results", response_model=AttemptResultsResponse)
def attempt_results(
    attempt_id: str,
    user: User = Depends(get_current_user),
    service: AttemptService = Depends(attempt_service),
):
    return service.get_results(attempt_id, user)


@router.post("/{attempt_id}/grade", response_model=AttemptPublic)
def grade_attempt(
    attempt_id: str,
    body: AttemptGradeRequest,
    user: User = Depends(require_staff),
    service: AttemptService = Depends(attempt_service),
):
    return service.grade(attempt_id, body.awards, user)
