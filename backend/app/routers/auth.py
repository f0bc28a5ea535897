import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import create_access_token, get_current_user, verify_password
from app.db.session import get_db
from app.models.user import User, UserRole

router = APIRouter(prefix="/auth", tags=["auth"])

log = logging.getLogger(__name__)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None


class MeResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str


@router.post("/token", response_model=TokenResponse)
def token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    _: object = rate_limit(key_prefix="auth_token", limit=20, window_seconds=60),
):
    email = str(form_data.username or "").strip().lower()
    user = db.scalar(select(User).where(func.lower(User.email) == email))
    if user is None or not user.is_active or not verify_password(form_data.password, user.password_hash):
        log.info("login failed email=%s", email)
        raise HTTPException(status_code=401, detail="invalid credentials")

    return TokenResponse(
        access_token=create_access_token(user_id=str(user.id), role=UserRole(user.role).value),
        expires_in=int(settings.jwt_access_token_minutes) * 60,
    )


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "role": UserRole(user.role).value,
    }
