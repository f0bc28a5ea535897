import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import text

from app.core.redis_client import get_redis
from app.core.security import require_cron_secret
from app.services.attempt_expiry_jobs import enqueue_expiry_sweep

router = APIRouter(tags=["health"])

log = logging.getLogger(__name__)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready(request: Request):
    try:
        db = request.app.state.database.session()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as e:
        log.warning("readiness: database unavailable: %s", e)
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        get_redis().ping()
    except Exception as e:
        log.warning("readiness: redis unavailable: %s", e)
        raise HTTPException(status_code=503, detail="redis not ready") from e

    return {"status": "ready"}


@router.post("/health/cron/expire-attempts", dependencies=[Depends(require_cron_secret)])
def cron_expire_attempts():
    return enqueue_expiry_sweep()
